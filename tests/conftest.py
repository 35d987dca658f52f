"""Shared fixtures: temporary SQLite stores and a router with fixed settings."""

from datetime import datetime, timezone

import pytest

from api_clients import keyword_classify
from ivr_flow import AttemptGuard, StepRouter
from models import CallEvent, IdentityRecord
from state_store import CallStateStore, IdentityStore

TARGET = "+19343453827"
SERVICE = "+12295446861"
CALLER = "+15551234567"

# 12:00 in America/Chicago (CDT)
NOON_CHICAGO = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)
# 22:00 in America/Chicago on March 9
LATE_CHICAGO = datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ivr.db"


@pytest.fixture
def sessions(db_path):
    return CallStateStore(db_path)


@pytest.fixture
def identities(db_path):
    store = IdentityStore(db_path)
    store.upsert(IdentityRecord(ssn_last4="6789", dob="01011990", zip="90210", name="Tony"))
    return store


@pytest.fixture
def make_router(sessions, identities):
    def _make(**overrides):
        settings = dict(
            classifier=keyword_classify,
            flow="speech",
            mini_miranda=True,
            target_number=TARGET,
            service_number=SERVICE,
            guard=AttemptGuard(max_attempts=4, max_verify_cycles=0),
            csr_cutoff_hour=20,
            csr_timezone="America/Chicago",
            clock=lambda: NOON_CHICAGO,
        )
        settings.update(overrides)
        return StepRouter(sessions, identities, **settings)
    return _make


@pytest.fixture
def router(make_router):
    return make_router()


@pytest.fixture
def send():
    """Deliver one event to a router for call CA1."""
    def _send(router, step=None, user_input=None, call_id="CA1", caller=CALLER):
        return router.handle(CallEvent(
            call_id=call_id,
            caller_number=caller,
            user_input=user_input,
            explicit_step=step,
        ))
    return _send
