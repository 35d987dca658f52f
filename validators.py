"""Keypad input validators and the CSR availability gate.

All functions here are pure. Digits are extracted from raw input before any
length check, so "12-34" is a valid last-four entry.
"""

import re
from datetime import date, datetime

import pytz


def digits_only(raw):
    """Strip every non-digit character. None becomes ''."""
    return re.sub(r"\D", "", raw or "")


def valid_ssn_last4(raw):
    return len(digits_only(raw)) == 4


def valid_zip(raw):
    return len(digits_only(raw)) == 5


def _localize(now, tz_name):
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(pytz.timezone(tz_name))


def valid_dob(raw, now=None, tz_name=None):
    """Validate a keypad date of birth entered as MMDDYYYY.

    Rejects months outside 1-12, years before 1900, days the calendar cannot
    hold (Feb 30, Feb 29 outside leap years) and dates after ``now``. With
    ``tz_name`` the cutoff is today's date in that timezone.
    """
    dob = digits_only(raw)
    if len(dob) != 8:
        return False

    month = int(dob[0:2])
    day = int(dob[2:4])
    year = int(dob[4:8])

    if month < 1 or month > 12:
        return False
    if year < 1900:
        return False

    try:
        born = date(year, month, day)
    except ValueError:
        return False

    if now is None:
        now = datetime.now()
    if isinstance(now, datetime):
        today = (_localize(now, tz_name) if tz_name else now).date()
    else:
        today = now
    return born <= today


def csr_available(now, cutoff_hour, tz_name):
    """True iff the local hour in ``tz_name`` is before ``cutoff_hour``.

    A naive ``now`` is read as UTC.
    """
    return _localize(now, tz_name).hour < cutoff_hour
