"""
Abstract interface for reservation storage.

The booking service talks to storage only through these protocols so the
engine is decoupled from the backing database.  Implementations:

  • ``pitchbook.db.SqliteReservationStore`` – durable, multi-process safe
  • ``pitchbook.services.memory_store.InMemoryReservationStore`` – one process
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Any, Protocol

from pitchbook.models import Reservation, ReservationStatus, Resource

# Serialization key for writers: one pitch on one date.
SlotKey = tuple[str, date]


class UnitOfWork(Protocol):
    """
    Reads and writes inside one store transaction.

    Everything done through a unit of work is committed together when the
    ``transaction()`` block exits normally and discarded if it raises.
    """

    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        """Every reservation (any status) for the pitch and date."""
        ...

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        ...

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        """Store a new reservation. Raises ``DuplicateError`` on a constraint clash."""
        ...

    async def update_reservation(self, reservation_id: str, **fields: Any) -> Reservation:
        """
        Change status / payment fields and bump ``updated_at``.

        Raises ``NotFoundError`` for an unknown id and ``DuplicateError``
        if the change would break a uniqueness constraint.
        """
        ...


class ReservationStore(Protocol):
    """Protocol that every storage backend must satisfy."""

    # ── Catalog ───────────────────────────────────────────────────────
    async def get_resource(self, resource_id: str) -> Resource | None:
        ...

    async def list_resources(self) -> list[Resource]:
        ...

    async def upsert_resource(self, resource: Resource) -> Resource:
        ...

    # ── Lock-free reads ───────────────────────────────────────────────
    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        ...

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        ...

    async def list_reservations(
        self,
        *,
        resource_id: str | None = None,
        account_id: str | None = None,
        status: ReservationStatus | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Reservation]:
        """Filtered listing, ordered by date then start time."""
        ...

    # ── Serialized writes ─────────────────────────────────────────────
    def transaction(self, *keys: SlotKey) -> AbstractAsyncContextManager[UnitOfWork]:
        """
        Open a unit of work that excludes every other writer touching any
        of *keys* until it finishes.
        """
        ...
