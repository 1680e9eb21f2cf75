from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from pitchbook.errors import Err
from pitchbook.models import ReservationStatus
from pitchbook.services.booking_service import BookingService
from pitchbook.services.store import ReservationStore

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Base class for services that run a periodic background loop."""

    def __init__(self, *, interval: float, name: str) -> None:
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        await self._on_start()
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %ds)", self._name, self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("%s stopped", self._name)

    async def _on_start(self) -> None:
        pass

    async def _tick(self) -> None:
        raise NotImplementedError

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._tick()
            except Exception:
                logger.exception("%s tick failed, will retry", self._name)


class PendingPaymentReaper(BackgroundWorker):
    """
    Releases online-payment holds that were never settled.

    A ``pending`` reservation older than *hold* is treated as a failed
    payment: ``record_payment(succeeded=False)`` cancels it on behalf of
    the system.
    """

    def __init__(
        self,
        service: BookingService,
        store: ReservationStore,
        *,
        hold: timedelta,
        interval: float,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(interval=interval, name="PendingPaymentReaper")
        self._service = service
        self._store = store
        self._hold = hold
        # Compared against created_at, which is stored in UTC.
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _tick(self) -> None:
        await self.reap()

    async def reap(self) -> int:
        """Cancel every expired hold. Returns how many were released."""
        pending = await self._store.list_reservations(status=ReservationStatus.PENDING)
        now = self._clock()
        released = 0
        for reservation in pending:
            if now - reservation.created_at < self._hold:
                continue
            result = await self._service.record_payment(reservation.id, succeeded=False)
            if isinstance(result, Err):
                logger.warning(
                    "Could not release hold %s: %s", reservation.id, result.error.code
                )
                continue
            released += 1

        if released:
            logger.info("Released %d expired payment hold(s)", released)
        return released
