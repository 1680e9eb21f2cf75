"""
SQLite reservation store using aiosqlite.

Stores the pitch catalog and every reservation ever made.
Tables are created automatically on ``init()``.

Writers never share a connection: each ``transaction()`` opens its own
and starts with ``BEGIN IMMEDIATE``, so SQLite's write lock serializes the
read-check-write sequence across coroutines *and* processes pointing at
the same file.  A partial unique index on confirmed start times backs
this up; a clash surfaces as ``DuplicateError``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from pitchbook.config import DB_PATH, PERSISTENCE_TIMEOUT_SECONDS
from pitchbook.errors import DuplicateError, NotFoundError, PersistenceError
from pitchbook.models import (
    AccountHolder,
    GuestHolder,
    Reservation,
    ReservationStatus,
    Resource,
)
from pitchbook.services.store import SlotKey

logger = logging.getLogger(__name__)


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS resources (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    location        TEXT NOT NULL DEFAULT '',
    hourly_rate     TEXT NOT NULL,  -- Decimal as text
    opens_at        TEXT NOT NULL,
    closes_at       TEXT NOT NULL,
    capacity        INTEGER,
    amenities       TEXT,           -- JSON array
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reservations (
    id              TEXT PRIMARY KEY,
    resource_id     TEXT NOT NULL REFERENCES resources(id),
    booking_date    TEXT NOT NULL,
    start_time      TEXT NOT NULL,
    start_minute    INTEGER NOT NULL,
    end_minute      INTEGER NOT NULL,
    duration_hours  INTEGER NOT NULL,
    status          TEXT NOT NULL,
    holder_kind     TEXT NOT NULL,
    account_id      TEXT,
    guest_name      TEXT,
    guest_email     TEXT,
    guest_phone     TEXT,
    total_price     TEXT NOT NULL,
    currency        TEXT NOT NULL,
    payment_method  TEXT NOT NULL,
    payment_state   TEXT NOT NULL,
    payment_reference TEXT,
    rescheduled_from TEXT,
    cancelled_by    TEXT,
    refund_amount   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    CHECK (
        (holder_kind = 'account' AND account_id IS NOT NULL AND guest_email IS NULL)
        OR (holder_kind = 'guest' AND account_id IS NULL AND guest_email IS NOT NULL)
    )
);

CREATE INDEX IF NOT EXISTS idx_res_slot ON reservations(resource_id, booking_date);
CREATE INDEX IF NOT EXISTS idx_res_account ON reservations(account_id);
CREATE INDEX IF NOT EXISTS idx_res_status ON reservations(status);

CREATE UNIQUE INDEX IF NOT EXISTS uq_res_confirmed_start
    ON reservations(resource_id, booking_date, start_minute)
    WHERE status = 'confirmed';
"""

# Columns that update_reservation() may touch.
_UPDATABLE = frozenset(
    {
        "status",
        "payment_state",
        "payment_reference",
        "cancelled_by",
        "refund_amount",
    }
)


# ── Helpers ───────────────────────────────────────────────────────────────


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _db_value(value: Any) -> Any:
    """Convert enums / decimals to something sqlite3 can bind."""
    if value is None:
        return None
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def _row_to_resource(row: aiosqlite.Row) -> Resource:
    return Resource(
        id=row["id"],
        name=row["name"],
        location=row["location"],
        hourly_rate=Decimal(row["hourly_rate"]),
        opens_at=row["opens_at"],
        closes_at=row["closes_at"],
        capacity=row["capacity"],
        amenities=json.loads(row["amenities"]) if row["amenities"] else [],
    )


def _row_to_reservation(row: aiosqlite.Row) -> Reservation:
    if row["holder_kind"] == "account":
        holder: AccountHolder | GuestHolder = AccountHolder(account_id=row["account_id"])
    else:
        holder = GuestHolder(
            name=row["guest_name"],
            email=row["guest_email"],
            phone=row["guest_phone"],
        )
    return Reservation(
        id=row["id"],
        resource_id=row["resource_id"],
        booking_date=date.fromisoformat(row["booking_date"]),
        start_time=row["start_time"],
        duration_hours=row["duration_hours"],
        status=row["status"],
        holder=holder,
        total_price=Decimal(row["total_price"]),
        currency=row["currency"],
        payment_method=row["payment_method"],
        payment_state=row["payment_state"],
        payment_reference=row["payment_reference"],
        rescheduled_from=row["rescheduled_from"],
        cancelled_by=row["cancelled_by"],
        refund_amount=Decimal(row["refund_amount"]) if row["refund_amount"] is not None else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _reservation_params(r: Reservation) -> tuple:
    interval = r.interval
    account_id = guest_name = guest_email = guest_phone = None
    if isinstance(r.holder, AccountHolder):
        account_id = r.holder.account_id
    else:
        guest_name, guest_email, guest_phone = r.holder.name, r.holder.email, r.holder.phone
    return (
        r.id, r.resource_id, r.booking_date.isoformat(), r.start_time,
        interval.start, interval.end, r.duration_hours,
        r.status.value, r.holder.kind,
        account_id, guest_name, guest_email, guest_phone,
        str(r.total_price), r.currency,
        r.payment_method.value, r.payment_state.value, r.payment_reference,
        r.rescheduled_from, _db_value(r.cancelled_by), _db_value(r.refund_amount),
        r.created_at.isoformat(), r.updated_at.isoformat(),
    )


def _translate(exc: sqlite3.Error, what: str) -> Exception:
    """Map a driver error onto the gateway error taxonomy."""
    if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc):
        return DuplicateError(f"{what}: {exc}")
    return PersistenceError(f"{what}: {exc}")


async def _fetch_reservations(
    db: aiosqlite.Connection, where: str, params: list
) -> list[Reservation]:
    sql = f"SELECT * FROM reservations {where} ORDER BY booking_date, start_minute, created_at"
    async with db.execute(sql, params) as cur:
        rows = await cur.fetchall()
    return [_row_to_reservation(r) for r in rows]


async def _fetch_reservation(db: aiosqlite.Connection, reservation_id: str) -> Reservation | None:
    async with db.execute(
        "SELECT * FROM reservations WHERE id = ?", (reservation_id,)
    ) as cur:
        row = await cur.fetchone()
    return _row_to_reservation(row) if row else None


# ══════════════════════════════════════════════════════════════════════════
#                    UNIT OF WORK
# ══════════════════════════════════════════════════════════════════════════


class _SqliteUnitOfWork:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        try:
            return await _fetch_reservations(
                self._db,
                "WHERE resource_id = ? AND booking_date = ?",
                [resource_id, on_date.isoformat()],
            )
        except sqlite3.Error as exc:
            raise _translate(exc, "load reservations") from exc

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        try:
            return await _fetch_reservation(self._db, reservation_id)
        except sqlite3.Error as exc:
            raise _translate(exc, "get reservation") from exc

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        try:
            await self._db.execute(
                """
                INSERT INTO reservations (
                    id, resource_id, booking_date, start_time,
                    start_minute, end_minute, duration_hours,
                    status, holder_kind,
                    account_id, guest_name, guest_email, guest_phone,
                    total_price, currency,
                    payment_method, payment_state, payment_reference,
                    rescheduled_from, cancelled_by, refund_amount,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _reservation_params(reservation),
            )
        except sqlite3.Error as exc:
            raise _translate(exc, "insert reservation") from exc
        return reservation

    async def update_reservation(self, reservation_id: str, **fields: Any) -> Reservation:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in fields] + ["updated_at = ?"]
        params = [_db_value(v) for v in fields.values()] + [_now_iso(), reservation_id]
        try:
            cur = await self._db.execute(
                f"UPDATE reservations SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
        except sqlite3.Error as exc:
            raise _translate(exc, "update reservation") from exc
        if cur.rowcount == 0:
            raise NotFoundError(reservation_id)

        updated = await self.get_reservation(reservation_id)
        assert updated is not None
        return updated


# ══════════════════════════════════════════════════════════════════════════
#                    STORE
# ══════════════════════════════════════════════════════════════════════════


class SqliteReservationStore:
    """aiosqlite implementation of the ReservationStore protocol."""

    def __init__(
        self,
        db_path: str | None = None,
        *,
        timeout: float = PERSISTENCE_TIMEOUT_SECONDS,
    ) -> None:
        self._db_path = db_path
        self._timeout = timeout
        # Shared connection for lock-free reads and catalog writes.
        self._db: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        # Resolved late so tests can monkeypatch DB_PATH.
        return self._db_path or DB_PATH

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def init(self) -> None:
        """Open the database and create tables if they don't exist."""
        db_path = Path(self.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(db_path), timeout=self._timeout)
        self._db.row_factory = aiosqlite.Row  # dict-like rows
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        logger.info("Database initialized at %s", db_path)

    async def close(self) -> None:
        """Close the shared connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    def _conn(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized, call init() first"
        return self._db

    # ── Catalog ────────────────────────────────────────────────────────

    async def get_resource(self, resource_id: str) -> Resource | None:
        try:
            async with self._conn().execute(
                "SELECT * FROM resources WHERE id = ?", (resource_id,)
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as exc:
            raise _translate(exc, "get resource") from exc
        return _row_to_resource(row) if row else None

    async def list_resources(self) -> list[Resource]:
        try:
            async with self._conn().execute("SELECT * FROM resources ORDER BY name") as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as exc:
            raise _translate(exc, "list resources") from exc
        return [_row_to_resource(r) for r in rows]

    async def upsert_resource(self, resource: Resource) -> Resource:
        """Insert a pitch or refresh its catalog fields."""
        db = self._conn()
        now = _now_iso()
        try:
            await db.execute(
                """
                INSERT INTO resources (
                    id, name, location, hourly_rate, opens_at, closes_at,
                    capacity, amenities, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    location = excluded.location,
                    hourly_rate = excluded.hourly_rate,
                    opens_at = excluded.opens_at,
                    closes_at = excluded.closes_at,
                    capacity = excluded.capacity,
                    amenities = excluded.amenities,
                    updated_at = excluded.updated_at
                """,
                (
                    resource.id, resource.name, resource.location,
                    str(resource.hourly_rate), resource.opens_at, resource.closes_at,
                    resource.capacity, json.dumps(resource.amenities),
                    now, now,
                ),
            )
            await db.commit()
        except sqlite3.Error as exc:
            raise _translate(exc, "upsert resource") from exc
        return resource

    # ── Reads ──────────────────────────────────────────────────────────

    async def load_reservations(self, resource_id: str, on_date: date) -> list[Reservation]:
        return await self.list_reservations(
            resource_id=resource_id, date_from=on_date, date_to=on_date
        )

    async def get_reservation(self, reservation_id: str) -> Reservation | None:
        try:
            return await _fetch_reservation(self._conn(), reservation_id)
        except sqlite3.Error as exc:
            raise _translate(exc, "get reservation") from exc

    async def list_reservations(
        self,
        *,
        resource_id: str | None = None,
        account_id: str | None = None,
        status: ReservationStatus | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Reservation]:
        clauses: list[str] = []
        params: list = []

        if resource_id is not None:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if date_from is not None:
            clauses.append("booking_date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("booking_date <= ?")
            params.append(date_to.isoformat())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            return await _fetch_reservations(self._conn(), where, params)
        except sqlite3.Error as exc:
            raise _translate(exc, "list reservations") from exc

    # ── Writes ─────────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def transaction(self, *keys: SlotKey) -> AsyncIterator[_SqliteUnitOfWork]:
        # BEGIN IMMEDIATE takes the database-wide write lock, which covers
        # every key at once; *keys* only matter for other backends.
        try:
            db = await aiosqlite.connect(self.path, timeout=self._timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise _translate(exc, "connect") from exc

        try:
            db.row_factory = aiosqlite.Row
            try:
                await db.execute("PRAGMA foreign_keys=ON")
                await db.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise _translate(exc, "begin transaction") from exc

            try:
                yield _SqliteUnitOfWork(db)
            except BaseException:
                await db.execute("ROLLBACK")
                raise

            try:
                await db.execute("COMMIT")
            except sqlite3.Error as exc:
                await db.execute("ROLLBACK")
                raise _translate(exc, "commit") from exc
        finally:
            await db.close()
