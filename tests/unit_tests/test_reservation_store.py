"""Tests for the store backends (every test runs against memory and SQLite)."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from pitchbook.errors import DuplicateError, NotFoundError, PersistenceError
from pitchbook.models import CancelActor, ReservationStatus
from tests.mocks.models import (
    MOCK_ACCOUNT,
    MOCK_ACCOUNT_2,
    MOCK_GUEST,
    MOCK_PITCH,
    MOCK_PITCH_2,
    TOMORROW,
    make_reservation,
)

_KEY = (MOCK_PITCH.id, TOMORROW)


async def _insert(store, reservation):
    async with store.transaction((reservation.resource_id, reservation.booking_date)) as uow:
        await uow.insert_reservation(reservation)
    return reservation


# ── Catalog ────────────────────────────────────────────────────────────────


class TestCatalog:
    @pytest.mark.asyncio
    async def test_get_resource(self, store):
        pitch = await store.get_resource(MOCK_PITCH.id)
        assert pitch == MOCK_PITCH

    @pytest.mark.asyncio
    async def test_get_missing_resource(self, store):
        assert await store.get_resource("nope") is None

    @pytest.mark.asyncio
    async def test_list_resources_sorted_by_name(self, store):
        names = [p.name for p in await store.list_resources()]
        assert names == sorted(names)

    @pytest.mark.asyncio
    async def test_upsert_updates_rate(self, store):
        await store.upsert_resource(MOCK_PITCH.model_copy(update={"hourly_rate": Decimal("4000")}))
        assert (await store.get_resource(MOCK_PITCH.id)).hourly_rate == Decimal("4000")


# ── Reservations ───────────────────────────────────────────────────────────


class TestReservations:
    @pytest.mark.asyncio
    async def test_insert_and_read_back(self, store):
        r = await _insert(store, make_reservation())
        assert await store.get_reservation(r.id) == r

    @pytest.mark.asyncio
    async def test_guest_holder_round_trip(self, store):
        r = await _insert(store, make_reservation(holder=MOCK_GUEST))
        assert (await store.get_reservation(r.id)).holder == MOCK_GUEST

    @pytest.mark.asyncio
    async def test_load_reservations_filters_pitch_and_date(self, store):
        a = await _insert(store, make_reservation(name="a"))
        await _insert(store, make_reservation(name="b", resource=MOCK_PITCH_2))
        await _insert(store, make_reservation(name="c", booking_date=TOMORROW + timedelta(days=1)))
        rows = await store.load_reservations(MOCK_PITCH.id, TOMORROW)
        assert [r.id for r in rows] == [a.id]

    @pytest.mark.asyncio
    async def test_list_by_account_and_status(self, store):
        mine = await _insert(store, make_reservation(name="mine", start_time="08:00", duration_hours=1))
        await _insert(store, make_reservation(name="theirs", holder=MOCK_ACCOUNT_2))
        await _insert(
            store,
            make_reservation(
                name="pending", start_time="15:00", status=ReservationStatus.PENDING
            ),
        )
        rows = await store.list_reservations(
            account_id=MOCK_ACCOUNT.account_id, status=ReservationStatus.CONFIRMED
        )
        assert [r.id for r in rows] == [mine.id]

    @pytest.mark.asyncio
    async def test_list_ordered_by_date_then_start(self, store):
        late = await _insert(store, make_reservation(name="late", start_time="18:00", duration_hours=1))
        early = await _insert(store, make_reservation(name="early", start_time="07:00", duration_hours=1))
        nxt = await _insert(
            store, make_reservation(name="next", booking_date=TOMORROW + timedelta(days=1), start_time="06:00")
        )
        rows = await store.list_reservations(resource_id=MOCK_PITCH.id)
        assert [r.id for r in rows] == [early.id, late.id, nxt.id]

    @pytest.mark.asyncio
    async def test_update_reservation(self, store):
        r = await _insert(store, make_reservation())
        async with store.transaction(_KEY) as uow:
            updated = await uow.update_reservation(
                r.id,
                status=ReservationStatus.CANCELLED,
                cancelled_by=CancelActor.VENUE,
                refund_amount=Decimal("7000"),
            )
        assert updated.status is ReservationStatus.CANCELLED
        assert updated.updated_at > r.updated_at

        stored = await store.get_reservation(r.id)
        assert stored.cancelled_by is CancelActor.VENUE
        assert stored.refund_amount == Decimal("7000")

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            async with store.transaction(_KEY) as uow:
                await uow.update_reservation("missing", status=ReservationStatus.CANCELLED)


# ── Transactions ───────────────────────────────────────────────────────────


class TestTransactions:
    @pytest.mark.asyncio
    async def test_writes_visible_inside_transaction(self, store):
        r = make_reservation()
        async with store.transaction(_KEY) as uow:
            await uow.insert_reservation(r)
            assert [x.id for x in await uow.load_reservations(*_KEY)] == [r.id]
            assert await uow.get_reservation(r.id) == r

    @pytest.mark.asyncio
    async def test_exception_discards_writes(self, store):
        r = make_reservation()
        with pytest.raises(RuntimeError):
            async with store.transaction(_KEY) as uow:
                await uow.insert_reservation(r)
                raise RuntimeError("boom")
        assert await store.get_reservation(r.id) is None

    @pytest.mark.asyncio
    async def test_partial_update_rolled_back(self, store):
        r = await _insert(store, make_reservation())
        with pytest.raises(RuntimeError):
            async with store.transaction(_KEY) as uow:
                await uow.update_reservation(r.id, status=ReservationStatus.CANCELLED)
                raise RuntimeError("boom")
        assert (await store.get_reservation(r.id)).status is ReservationStatus.CONFIRMED


# ── Unique confirmed starts ────────────────────────────────────────────────


class TestUniqueConfirmedStart:
    @pytest.mark.asyncio
    async def test_second_confirmed_start_is_duplicate(self, store):
        await _insert(store, make_reservation(name="first"))
        with pytest.raises(DuplicateError):
            await _insert(store, make_reservation(name="second", holder=MOCK_ACCOUNT_2))
        assert len(await store.load_reservations(*_KEY)) == 1

    @pytest.mark.asyncio
    async def test_cancelled_start_does_not_clash(self, store):
        await _insert(store, make_reservation(name="old", status=ReservationStatus.CANCELLED))
        await _insert(store, make_reservation(name="new"))
        rows = await store.load_reservations(*_KEY)
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_confirming_onto_a_taken_start_is_duplicate(self, store):
        await _insert(store, make_reservation(name="cash"))
        hold = await _insert(
            store,
            make_reservation(name="hold", holder=MOCK_ACCOUNT_2, status=ReservationStatus.PENDING),
        )
        with pytest.raises(DuplicateError):
            async with store.transaction(_KEY) as uow:
                await uow.update_reservation(hold.id, status=ReservationStatus.CONFIRMED)
        assert (await store.get_reservation(hold.id)).status is ReservationStatus.PENDING


# ── In-memory specifics ────────────────────────────────────────────────────


class TestMemoryLocks:
    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self, memory_store):
        for offset in range(3):
            key = (MOCK_PITCH.id, TOMORROW + timedelta(days=offset))
            async with memory_store.transaction(key, _KEY):
                assert key in memory_store._locks
        assert memory_store._locks == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_a_writer_waits(self, memory_store):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with memory_store.transaction(_KEY):
                entered.set()
                await release.wait()

        async def second():
            await entered.wait()
            async with memory_store.transaction(_KEY):
                pass

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await entered.wait()
        await asyncio.sleep(0)
        assert _KEY in memory_store._locks
        release.set()
        await asyncio.gather(*tasks)
        assert memory_store._locks == {}


# ── SQLite specifics ───────────────────────────────────────────────────────


class TestSqliteConstraints:
    @pytest.mark.asyncio
    async def test_unknown_pitch_is_persistence_error(self, sqlite_store):
        orphan = make_reservation().model_copy(update={"resource_id": "ghost"})
        with pytest.raises(PersistenceError):
            await _insert(sqlite_store, orphan)

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        from pitchbook.db import SqliteReservationStore

        path = str(tmp_path / "reopen.db")
        first = SqliteReservationStore(path)
        await first.init()
        await first.upsert_resource(MOCK_PITCH)
        r = await _insert(first, make_reservation())
        await first.close()

        second = SqliteReservationStore(path)
        await second.init()
        try:
            assert await second.get_reservation(r.id) == r
        finally:
            await second.close()
