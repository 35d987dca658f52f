"""SQLite stores for the IVR — per-call sessions and enrolled identities.

call_state — ephemeral per-call session blob. Deleted when the call ends,
             pruned by TTL when a call is abandoned.
identities — enrolled customers keyed by (ssn_last4, dob, zip). Seeded once
             from a JSON file at process start, updated key-by-key.
"""

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

from errors import ExternalLookupError, PersistenceError
from models import IdentityRecord, Session, Step

logger = logging.getLogger(__name__)

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS call_state (
    call_id             TEXT PRIMARY KEY,
    phone               TEXT,
    state_json          TEXT NOT NULL DEFAULT '{}',
    created_at          REAL NOT NULL,
    updated_at          REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS identities (
    ssn_last4           TEXT NOT NULL,
    dob                 TEXT NOT NULL,
    zip                 TEXT NOT NULL,
    name                TEXT NOT NULL,
    phone_number        TEXT,
    created_at          TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at          TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (ssn_last4, dob, zip)
);
"""


def _connect(db_path):
    """Open a new connection with WAL mode."""
    conn = sqlite3.connect(str(db_path), timeout=5)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(_CREATE_TABLES)
    return conn


# ── Call State ───────────────────────────────────────────────────────

class CallStateStore:
    """Keyed lazy-create storage of per-call sessions.

    Read and write failures surface as ExternalLookupError. Housekeeping
    (delete, TTL cleanup) failures surface as PersistenceError.
    """

    def __init__(self, db_path, entry_step=Step.MINI_MIRANDA):
        self.db_path = Path(db_path)
        self.entry_step = entry_step

    def get_or_create(self, call_id, phone_number=None, entry_step=None):
        """Return the stored session for a call, or a fresh one at the entry step."""
        try:
            conn = _connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT state_json FROM call_state WHERE call_id = ?", (call_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ExternalLookupError(f"session load failed: {e}") from e

        if row:
            return Session.from_dict(json.loads(row[0]))

        logger.info(f"get_or_create: new session call_id={call_id}")
        return Session(
            call_id=call_id,
            current_step=entry_step or self.entry_step,
            phone_number=phone_number or None,
        )

    def save(self, session):
        """Upsert the JSON blob for a call."""
        now = time.time()
        blob = json.dumps(session.to_dict(), default=str)
        try:
            conn = _connect(self.db_path)
            try:
                conn.execute(
                    """INSERT INTO call_state (call_id, phone, state_json, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(call_id) DO UPDATE SET
                           phone = excluded.phone,
                           state_json = excluded.state_json,
                           updated_at = excluded.updated_at""",
                    (session.call_id, session.phone_number, blob, now, now),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ExternalLookupError(f"session save failed: {e}") from e

    def delete(self, call_id):
        """Remove a call's session after the call ends."""
        try:
            conn = _connect(self.db_path)
            try:
                conn.execute("DELETE FROM call_state WHERE call_id = ?", (call_id,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"session delete failed: {e}") from e
        logger.info(f"Deleted call state for call_id={call_id}")

    def cleanup_stale(self, max_age_hours=24):
        """Prune abandoned calls older than max_age_hours. Returns the count."""
        cutoff = time.time() - (max_age_hours * 3600)
        try:
            conn = _connect(self.db_path)
            try:
                cursor = conn.execute(
                    "DELETE FROM call_state WHERE updated_at < ?", (cutoff,)
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"stale session cleanup failed: {e}") from e
        if cursor.rowcount:
            logger.info(f"Cleaned up {cursor.rowcount} stale call states")
        return cursor.rowcount


# ── Identities ───────────────────────────────────────────────────────

def _record_from_row(row):
    return IdentityRecord(
        ssn_last4=row["ssn_last4"],
        dob=row["dob"],
        zip=row["zip"],
        name=row["name"],
        phone_number=row["phone_number"],
    )


class IdentityStore:
    """Enrolled customer records, addressed by (ssn_last4, dob, zip)."""

    def __init__(self, db_path):
        self.db_path = Path(db_path)

    def find(self, ssn_last4, dob, zip):
        """Exact match on all three key fields. Returns IdentityRecord or None."""
        try:
            conn = _connect(self.db_path)
            try:
                row = conn.execute(
                    """SELECT * FROM identities
                       WHERE ssn_last4 = ? AND dob = ? AND zip = ?
                       ORDER BY rowid LIMIT 1""",
                    (ssn_last4, dob, zip),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ExternalLookupError(f"identity lookup failed: {e}") from e
        return _record_from_row(row) if row else None

    def upsert(self, record):
        """Create or update one record. COALESCE preserves an existing phone number."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            conn = _connect(self.db_path)
            try:
                conn.execute(
                    """INSERT INTO identities
                           (ssn_last4, dob, zip, name, phone_number, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(ssn_last4, dob, zip) DO UPDATE SET
                           name = excluded.name,
                           phone_number = COALESCE(excluded.phone_number, identities.phone_number),
                           updated_at = excluded.updated_at""",
                    (record.ssn_last4, record.dob, record.zip, record.name,
                     record.phone_number, now, now),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"identity upsert failed: {e}") from e

    def link_phone_number(self, record, phone_number):
        """Store the caller's number on a verified record."""
        record.phone_number = phone_number
        self.upsert(record)
        logger.info(f"Linked phone number to identity name={record.name}")

    def _insert_new(self, conn, record):
        """Insert a seed record unless its key is already enrolled. True if inserted."""
        now = datetime.now(timezone.utc).isoformat()
        cursor = conn.execute(
            """INSERT INTO identities
                   (ssn_last4, dob, zip, name, phone_number, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(ssn_last4, dob, zip) DO NOTHING""",
            (record.ssn_last4, record.dob, record.zip, record.name,
             record.phone_number, now, now),
        )
        return cursor.rowcount == 1

    def load_seed(self, path):
        """Load a JSON array of records (db.json layout). Returns the count loaded.

        The first record for a key wins; later duplicates are skipped.
        """
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        count = 0
        try:
            conn = _connect(self.db_path)
            try:
                for entry in entries:
                    record = IdentityRecord(
                        ssn_last4=str(entry.get("last4ssn") or entry.get("ssn_last4")),
                        dob=str(entry["dob"]),
                        zip=str(entry["zip"]),
                        name=entry.get("name", ""),
                        phone_number=entry.get("phoneNumber") or entry.get("phone_number"),
                    )
                    if self._insert_new(conn, record):
                        count += 1
                    else:
                        logger.warning(f"load_seed: duplicate identity key skipped name={record.name}")
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"identity seed failed: {e}") from e
        logger.info(f"Loaded {count} identity records from {path}")
        return count
