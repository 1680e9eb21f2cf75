"""
Shared test fixtures.

Provides:
  • booking engine fixtures over both store backends (in-memory and a
    temporary SQLite file), driven by a frozen venue clock
  • a FastAPI TestClient wired to a temporary SQLite database (via the
    app lifespan), the mock pitch catalog and the same frozen clock

The `client` fixture runs the full lifespan (DB init / shutdown) so the
endpoints talk to a real SQLite store.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from pitchbook.db import SqliteReservationStore
from pitchbook.dependencies import create_jwt
from pitchbook.main import app
from pitchbook.services.booking_service import BookingService
from pitchbook.services.conflict_checker import BookingPolicy
from pitchbook.services.memory_store import InMemoryReservationStore
from tests.mocks.models import MOCK_ACCOUNT, MOCK_PITCHES, PAYMENT_CALLBACK_SECRET, VENUE_KEY
from tests.mocks.services import FakePaymentGateway, FrozenClock


# ── Engine fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def memory_store() -> InMemoryReservationStore:
    return InMemoryReservationStore(MOCK_PITCHES)


@pytest.fixture()
async def sqlite_store(tmp_path):
    store = SqliteReservationStore(str(tmp_path / "engine.db"))
    await store.init()
    for pitch in MOCK_PITCHES:
        await store.upsert_resource(pitch)
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    """Each test using this fixture runs once per store backend."""
    if request.param == "memory":
        yield InMemoryReservationStore(MOCK_PITCHES)
        return

    sqlite = SqliteReservationStore(str(tmp_path / "param.db"))
    await sqlite.init()
    for pitch in MOCK_PITCHES:
        await sqlite.upsert_resource(pitch)
    yield sqlite
    await sqlite.close()


@pytest.fixture()
def payments() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture()
def service(memory_store, clock, payments) -> BookingService:
    return BookingService(memory_store, payments=payments, policy=BookingPolicy(), clock=clock)


# ── App fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, clock):
    """
    Internal fixture that patches the DB path, catalog and clock so that
    the app lifespan runs cleanly against a temp database.
    """
    # ── Temp database ─────────────────────────────────────────────────
    import pitchbook.db as db_mod

    monkeypatch.setattr(db_mod, "DB_PATH", str(tmp_path / "test.db"))

    # ── Mock catalog and frozen clock ─────────────────────────────────
    monkeypatch.setattr("pitchbook.main.load_catalog", lambda path: list(MOCK_PITCHES))
    monkeypatch.setattr("pitchbook.services.booking_service.venue_now", clock)

    # ── No payment provider ───────────────────────────────────────────
    monkeypatch.setattr("pitchbook.main.PAYMENT_API_URL", "")

    # ── Known bearer credentials ──────────────────────────────────────
    monkeypatch.setattr("pitchbook.dependencies.PAYMENT_CALLBACK_SECRET", PAYMENT_CALLBACK_SECRET)
    monkeypatch.setattr("pitchbook.dependencies.VENUE_API_KEY", VENUE_KEY)

    # ── Disable rate limiting in tests ────────────────────────────────
    from pitchbook.rate_limit import limiter as _limiter
    monkeypatch.setattr(_limiter, "enabled", False)

    return clock


@pytest.fixture()
def client(_test_env) -> TestClient:
    """
    FastAPI TestClient with temp DB and no session cookie.

    Uses a context manager so the lifespan runs (DB init/shutdown).
    """
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc


@pytest.fixture()
def authed_client(_test_env) -> TestClient:
    """TestClient carrying a valid session cookie for MOCK_ACCOUNT."""
    with TestClient(app, raise_server_exceptions=False) as tc:
        tc.cookies.set("session", create_jwt(MOCK_ACCOUNT.account_id))
        yield tc
