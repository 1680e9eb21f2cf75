"""
In-process reservation store.

Writers are serialized with one ``asyncio.Lock`` per (pitch, date) key,
taken in sorted order so two transactions over overlapping key sets can't
deadlock.  Locks live in this process only: run a single instance of the
service when using this store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Iterable

from pitchbook.errors import DuplicateError, NotFoundError
from pitchbook.models import Reservation, ReservationStatus, Resource
from pitchbook.services.store import SlotKey

logger = logging.getLogger(__name__)


def _sort_key(r: Reservation) -> tuple:
    return (r.booking_date, r.interval.start, r.created_at)


class _MemoryUnitOfWork:
    """Stages writes and overlays them on reads until commit."""

    def __init__(self, store: InMemoryReservationStore) -> None:
        self._store = store
        self._staged: dict[str, Reservation] = {}

    def _visible(self) -> dict[str, Reservation]:
        return {**self._store._reservations, **self._staged}

    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        rows = [
            r
            for r in self._visible().values()
            if r.resource_id == resource_id and r.booking_date == on_date
        ]
        return sorted(rows, key=_sort_key)

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self._visible().get(reservation_id)

    def _check_unique(self, reservation: Reservation) -> None:
        """Mirror of the SQLite unique index on confirmed starts."""
        if reservation.status is not ReservationStatus.CONFIRMED:
            return
        for other in self._visible().values():
            if (
                other.id != reservation.id
                and other.status is ReservationStatus.CONFIRMED
                and other.resource_id == reservation.resource_id
                and other.booking_date == reservation.booking_date
                and other.interval.start == reservation.interval.start
            ):
                raise DuplicateError(
                    f"{reservation.resource_id} {reservation.booking_date} "
                    f"{reservation.start_time} is already confirmed"
                )

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        if reservation.id in self._visible():
            raise DuplicateError(f"Reservation {reservation.id} already exists")
        self._check_unique(reservation)
        self._staged[reservation.id] = reservation
        return reservation

    async def update_reservation(self, reservation_id: str, **fields: Any) -> Reservation:
        current = self._visible().get(reservation_id)
        if current is None:
            raise NotFoundError(reservation_id)
        updated = current.model_copy(
            update={**fields, "updated_at": datetime.now(timezone.utc)}
        )
        self._check_unique(updated)
        self._staged[reservation_id] = updated
        return updated

    def commit(self) -> None:
        self._store._reservations.update(self._staged)
        self._staged.clear()


class InMemoryReservationStore:
    """Dictionary-backed implementation of the ReservationStore protocol."""

    def __init__(self, resources: Iterable[Resource] = ()) -> None:
        self._resources: dict[str, Resource] = {r.id: r for r in resources}
        self._reservations: dict[str, Reservation] = {}
        self._locks: dict[SlotKey, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped when this reaches 0.
        self._lock_users: Counter[SlotKey] = Counter()

    # ── Catalog ────────────────────────────────────────────────────────

    async def get_resource(self, resource_id: str) -> Resource | None:
        return self._resources.get(resource_id)

    async def list_resources(self) -> list[Resource]:
        return sorted(self._resources.values(), key=lambda r: r.name)

    async def upsert_resource(self, resource: Resource) -> Resource:
        self._resources[resource.id] = resource
        return resource

    # ── Reads ──────────────────────────────────────────────────────────

    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        return await self.list_reservations(
            resource_id=resource_id, date_from=on_date, date_to=on_date
        )

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self._reservations.get(reservation_id)

    async def list_reservations(
        self,
        *,
        resource_id: str | None = None,
        account_id: str | None = None,
        status: ReservationStatus | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Reservation]:
        rows = list(self._reservations.values())
        if resource_id is not None:
            rows = [r for r in rows if r.resource_id == resource_id]
        if account_id is not None:
            rows = [
                r for r in rows
                if r.holder.kind == "account" and r.holder.account_id == account_id
            ]
        if status is not None:
            rows = [r for r in rows if r.status is status]
        if date_from is not None:
            rows = [r for r in rows if r.booking_date >= date_from]
        if date_to is not None:
            rows = [r for r in rows if r.booking_date <= date_to]
        return sorted(rows, key=_sort_key)

    # ── Writes ─────────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _hold(self, key: SlotKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @contextlib.asynccontextmanager
    async def transaction(self, *keys: SlotKey) -> AsyncIterator[_MemoryUnitOfWork]:
        async with contextlib.AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._hold(key))
            uow = _MemoryUnitOfWork(self)
            yield uow
            uow.commit()
