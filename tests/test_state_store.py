import json

import pytest

import state_store
from errors import ExternalLookupError, PersistenceError
from models import IdentityRecord, Session, Step
from state_store import CallStateStore, IdentityStore


# ── Call State ───────────────────────────────────────────────────────

def test_get_or_create_returns_fresh_session(sessions):
    session = sessions.get_or_create("CA1", "+15551234567")
    assert session.call_id == "CA1"
    assert session.current_step == Step.MINI_MIRANDA
    assert session.phone_number == "+15551234567"
    assert session.language is None
    assert set(session.attempts.values()) == {0}


def test_get_or_create_uses_entry_step(sessions):
    session = sessions.get_or_create("CA1", entry_step=Step.LANGUAGE_SELECTION)
    assert session.current_step == Step.LANGUAGE_SELECTION


def test_save_then_load(sessions):
    session = sessions.get_or_create("CA1")
    session.current_step = Step.ASK_DOB
    session.language = "es"
    session.ssn_last4 = "6789"
    session.attempts["dob"] = 2
    sessions.save(session)

    loaded = sessions.get_or_create("CA1")
    assert loaded == session


def test_sessions_are_independent(sessions):
    first = sessions.get_or_create("CA1")
    first.language = "es"
    sessions.save(first)
    assert sessions.get_or_create("CA2").language is None


def test_delete(sessions):
    session = sessions.get_or_create("CA1")
    session.language = "en"
    sessions.save(session)
    sessions.delete("CA1")
    assert sessions.get_or_create("CA1").language is None


def test_cleanup_stale_prunes_old_calls(sessions, monkeypatch):
    monkeypatch.setattr(state_store.time, "time", lambda: 1000.0)
    old = sessions.get_or_create("OLD")
    old.language = "en"
    sessions.save(old)

    monkeypatch.setattr(state_store.time, "time", lambda: 1000.0 + 23 * 3600)
    recent = sessions.get_or_create("NEW")
    recent.language = "es"
    sessions.save(recent)

    monkeypatch.setattr(state_store.time, "time", lambda: 1000.0 + 25 * 3600)
    assert sessions.cleanup_stale(24) == 1
    assert sessions.get_or_create("OLD").language is None
    assert sessions.get_or_create("NEW").language == "es"


# ── Identities ───────────────────────────────────────────────────────

def _identity_count(store):
    conn = state_store._connect(store.db_path)
    try:
        return conn.execute("SELECT COUNT(*) FROM identities").fetchone()[0]
    finally:
        conn.close()


def test_find_exact_match(identities):
    record = identities.find("6789", "01011990", "90210")
    assert record.name == "Tony"
    assert record.phone_number is None


def test_find_no_match(identities):
    assert identities.find("6789", "01011990", "00000") is None
    assert identities.find("6789", "1011990", "90210") is None


def test_upsert_keeps_existing_phone_number(identities):
    identities.link_phone_number(identities.find("6789", "01011990", "90210"), "+15551234567")
    identities.upsert(IdentityRecord("6789", "01011990", "90210", "Tony Stark"))

    record = identities.find("6789", "01011990", "90210")
    assert record.name == "Tony Stark"
    assert record.phone_number == "+15551234567"
    assert _identity_count(identities) == 1


def test_link_phone_number_overwrites(identities):
    record = identities.find("6789", "01011990", "90210")
    identities.link_phone_number(record, "+15550000001")
    identities.link_phone_number(record, "+15550000002")
    assert identities.find("6789", "01011990", "90210").phone_number == "+15550000002"


def test_load_seed(tmp_path, db_path):
    seed = tmp_path / "db.json"
    seed.write_text(json.dumps([
        {"last4ssn": "6789", "dob": "01011990", "zip": "90210", "name": "Tony"},
        {"last4ssn": "1234", "dob": "12251985", "zip": "10001", "name": "Pepper",
         "phoneNumber": "+15559876543"},
    ]))
    store = IdentityStore(db_path)
    assert store.load_seed(seed) == 2
    assert store.find("1234", "12251985", "10001").phone_number == "+15559876543"
    assert _identity_count(store) == 2


def test_unreachable_store_raises(tmp_path):
    store = IdentityStore(tmp_path / "missing" / "ivr.db")
    with pytest.raises(ExternalLookupError):
        store.find("6789", "01011990", "90210")
    with pytest.raises(PersistenceError):
        store.upsert(IdentityRecord("6789", "01011990", "90210", "Tony"))


def test_load_seed_keeps_first_duplicate(tmp_path, db_path):
    seed = tmp_path / "db.json"
    seed.write_text(json.dumps([
        {"last4ssn": "6789", "dob": "01011990", "zip": "90210", "name": "Tony"},
        {"last4ssn": "6789", "dob": "01011990", "zip": "90210", "name": "Tina"},
    ]))
    store = IdentityStore(db_path)
    assert store.load_seed(seed) == 1
    assert store.find("6789", "01011990", "90210").name == "Tony"
    assert _identity_count(store) == 1


def test_load_seed_does_not_replace_enrolled_record(tmp_path, identities):
    identities.link_phone_number(identities.find("6789", "01011990", "90210"), "+15551234567")
    seed = tmp_path / "db.json"
    seed.write_text(json.dumps([
        {"last4ssn": "6789", "dob": "01011990", "zip": "90210", "name": "Tina"},
    ]))
    assert identities.load_seed(seed) == 0
    record = identities.find("6789", "01011990", "90210")
    assert record.name == "Tony"
    assert record.phone_number == "+15551234567"


def test_unreachable_session_store_raises(tmp_path):
    store = CallStateStore(tmp_path / "missing" / "ivr.db")
    with pytest.raises(ExternalLookupError):
        store.get_or_create("CA1")
    with pytest.raises(ExternalLookupError):
        store.save(Session(call_id="CA1"))
    with pytest.raises(PersistenceError):
        store.delete("CA1")
    with pytest.raises(PersistenceError):
        store.cleanup_stale(24)
