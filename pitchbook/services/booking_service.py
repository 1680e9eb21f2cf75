"""
Booking service – the only entry point that mutates reservations.

Every public operation is total: business outcomes come back as
``Ok(value)`` or ``Err(error)``; store failures and timeouts come back as
``Err(Unavailable)``.  Read-check-write sequences run inside one store
transaction keyed by (pitch, date) so two callers can never both pass the
conflict check against the same stale calendar.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import groupby
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from pitchbook.config import (
    CURRENCY,
    PAYMENT_TIMEOUT_SECONDS,
    PERSISTENCE_TIMEOUT_SECONDS,
    VENUE_TIMEZONE,
)
from pitchbook.errors import (
    AlreadyCancelled,
    BookingError,
    ConflictError,
    DuplicateError,
    Err,
    InvalidInterval,
    InvalidTransition,
    NotFound,
    Ok,
    PaymentError,
    PersistenceError,
    Result,
    SlotTaken,
    Unavailable,
    UnknownResource,
)
from pitchbook.models import (
    AccountHolder,
    CancelActor,
    GuestHolder,
    PaymentMethod,
    PaymentState,
    Reservation,
    ReservationStatus,
    Resource,
    ScheduleDay,
    Timeline,
    format_minutes,
)
from pitchbook.services.conflict_checker import BookingPolicy, ConflictChecker, SlotRequest
from pitchbook.services.lifecycle import (
    initial_payment_state,
    initial_status,
    requires_upfront_payment,
    transition,
)
from pitchbook.services.payments import PaymentGateway
from pitchbook.services.refund_policy import refund_amount
from pitchbook.services.slot_calendar import SlotCalendar
from pitchbook.services.store import ReservationStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def venue_now() -> datetime:
    """Current wall-clock time at the venue, as a naive datetime."""
    return datetime.now(ZoneInfo(VENUE_TIMEZONE)).replace(tzinfo=None)


class _Rollback(Exception):
    """Raised inside a transaction to discard its writes and return *error*."""

    def __init__(self, error: BookingError) -> None:
        super().__init__(error.message)
        self.error = error


class BookingService:
    def __init__(
        self,
        store: ReservationStore,
        *,
        payments: PaymentGateway | None = None,
        policy: BookingPolicy | None = None,
        clock: Clock | None = None,
        currency: str = CURRENCY,
        timeout: float = PERSISTENCE_TIMEOUT_SECONDS,
        payment_timeout: float = PAYMENT_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._payments = payments
        self._checker = ConflictChecker(policy)
        self._clock = clock or venue_now
        self._currency = currency
        self._timeout = timeout
        self._payment_timeout = payment_timeout

    @property
    def policy(self) -> BookingPolicy:
        return self._checker.policy

    def today(self) -> date:
        """Current date at the venue."""
        return self._clock().date()

    # ── Infrastructure boundary ────────────────────────────────────────

    async def _guarded(self, operation: str, work: Awaitable[Result]) -> Result:
        """Bound *work* by the persistence timeout and map store failures."""
        try:
            return await asyncio.wait_for(work, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss", operation, self._timeout)
            return Err(Unavailable(f"{operation} timed out", timeout=self._timeout))
        except PersistenceError as exc:
            logger.warning("%s failed: %s", operation, exc)
            return Err(Unavailable(f"{operation} failed: storage unavailable"))

    async def _resource(self, resource_id: str) -> Result[Resource, UnknownResource]:
        resource = await self._store.get_resource(resource_id)
        if resource is None:
            return Err(UnknownResource(f"Unknown pitch {resource_id!r}", resource_id=resource_id))
        return Ok(resource)

    # ── Create ─────────────────────────────────────────────────────────

    async def create_booking(
        self,
        resource_id: str,
        booking_date: date,
        start_time: str,
        duration_hours: int,
        holder: AccountHolder | GuestHolder,
        payment_method: PaymentMethod = PaymentMethod.CASH,
    ) -> Result[Reservation, ConflictError | Unavailable]:
        """Book a pitch. Online payments hold the slot as ``pending``."""
        return await self._guarded(
            "create_booking",
            self._create(resource_id, booking_date, start_time, duration_hours, holder, payment_method),
        )

    async def _create(
        self,
        resource_id: str,
        booking_date: date,
        start_time: str,
        duration_hours: int,
        holder: AccountHolder | GuestHolder,
        payment_method: PaymentMethod,
    ) -> Result[Reservation, ConflictError]:
        looked_up = await self._resource(resource_id)
        if isinstance(looked_up, Err):
            return looked_up
        resource = looked_up.value

        request = SlotRequest(resource_id, booking_date, start_time, duration_hours)
        now = self._clock()

        async with self._store.transaction((resource_id, booking_date)) as uow:
            existing = await uow.load_reservations(resource_id, booking_date)
            verdict = self._checker.check(request, resource, existing, now)
            if isinstance(verdict, Err):
                logger.info(
                    "Rejected booking %s %s %s (%dh): %s",
                    resource_id, booking_date, start_time, duration_hours, verdict.error.code,
                )
                return verdict

            stamp = datetime.now(timezone.utc)
            reservation = Reservation(
                id=str(uuid.uuid4()),
                resource_id=resource_id,
                booking_date=booking_date,
                start_time=verdict.value.start_label,
                duration_hours=duration_hours,
                status=initial_status(requires_upfront_payment(payment_method)),
                holder=holder,
                total_price=total_price(resource, duration_hours),
                currency=self._currency,
                payment_method=payment_method,
                payment_state=initial_payment_state(payment_method),
                created_at=stamp,
                updated_at=stamp,
            )
            try:
                await uow.insert_reservation(reservation)
            except DuplicateError:
                logger.info("Lost race for %s %s %s", resource_id, booking_date, start_time)
                return Err(SlotTaken(f"{start_time} on {booking_date} was just booked"))

        logger.info(
            "Booked %s on %s %s for %dh (%s, %s)",
            reservation.id, resource_id, booking_date, duration_hours,
            reservation.status.value, reservation.total_price,
        )
        return Ok(reservation)

    # ── Cancel ─────────────────────────────────────────────────────────

    async def cancel_booking(
        self, reservation_id: str, actor: CancelActor = CancelActor.HOLDER
    ) -> Result[Reservation, BookingError]:
        """Cancel a reservation; paid ones get ``refund_amount`` filled in."""
        return await self._guarded("cancel_booking", self._cancel(reservation_id, actor))

    async def _cancel(self, reservation_id: str, actor: CancelActor) -> Result[Reservation, BookingError]:
        original = await self._store.get_reservation(reservation_id)
        if original is None:
            return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))

        now = self._clock()
        async with self._store.transaction((original.resource_id, original.booking_date)) as uow:
            current = await uow.get_reservation(reservation_id)
            if current is None:
                return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))
            try:
                transition(current.status, ReservationStatus.CANCELLED)
            except (AlreadyCancelled, InvalidTransition) as exc:
                return Err(exc)

            updated = await uow.update_reservation(
                reservation_id,
                status=ReservationStatus.CANCELLED,
                cancelled_by=actor,
                refund_amount=refund_amount(current, now, actor),
            )

        logger.info("Cancelled %s by %s (refund %s)", reservation_id, actor.value, updated.refund_amount)
        return Ok(updated)

    # ── Reschedule ─────────────────────────────────────────────────────

    async def reschedule_booking(
        self,
        reservation_id: str,
        new_date: date,
        new_start: str,
        new_duration: int | None = None,
    ) -> Result[Reservation, BookingError]:
        """
        Move a reservation to a new slot.

        The original is cancelled and a replacement created in the same
        transaction; on any failure neither write happens.  Holder, payment
        method, payment state and status carry over.  Pending reservations
        are refused until their payment is settled.
        """
        return await self._guarded(
            "reschedule_booking",
            self._reschedule(reservation_id, new_date, new_start, new_duration),
        )

    async def _reschedule(
        self,
        reservation_id: str,
        new_date: date,
        new_start: str,
        new_duration: int | None,
    ) -> Result[Reservation, BookingError]:
        original = await self._store.get_reservation(reservation_id)
        if original is None:
            return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))
        refused = _unmovable(original)
        if refused is not None:
            return refused

        looked_up = await self._resource(original.resource_id)
        if isinstance(looked_up, Err):
            return looked_up
        resource = looked_up.value

        duration = original.duration_hours if new_duration is None else new_duration
        request = SlotRequest(
            resource.id, new_date, new_start, duration, rescheduling=reservation_id
        )
        now = self._clock()
        keys = {(resource.id, original.booking_date), (resource.id, new_date)}

        try:
            async with self._store.transaction(*keys) as uow:
                current = await uow.get_reservation(reservation_id)
                if current is None:
                    return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))
                refused = _unmovable(current)
                if refused is not None:
                    return refused

                existing = await uow.load_reservations(resource.id, new_date)
                verdict = self._checker.check(request, resource, existing, now)
                if isinstance(verdict, Err):
                    logger.info("Rejected reschedule of %s: %s", reservation_id, verdict.error.code)
                    return verdict

                # Free the old slot first so a same-start move doesn't trip
                # the unique index on confirmed starts.
                await uow.update_reservation(
                    reservation_id,
                    status=ReservationStatus.CANCELLED,
                    cancelled_by=CancelActor.HOLDER,
                )
                stamp = datetime.now(timezone.utc)
                replacement = current.model_copy(
                    update={
                        "id": str(uuid.uuid4()),
                        "booking_date": new_date,
                        "start_time": verdict.value.start_label,
                        "duration_hours": duration,
                        "total_price": total_price(resource, duration),
                        "rescheduled_from": reservation_id,
                        "cancelled_by": None,
                        "refund_amount": None,
                        "created_at": stamp,
                        "updated_at": stamp,
                    }
                )
                try:
                    await uow.insert_reservation(replacement)
                except DuplicateError:
                    raise _Rollback(SlotTaken(f"{new_start} on {new_date} was just booked")) from None
        except _Rollback as rollback:
            logger.info("Reschedule of %s rolled back: %s", reservation_id, rollback.error.code)
            return Err(rollback.error)

        logger.info(
            "Rescheduled %s -> %s (%s %s %dh)",
            reservation_id, replacement.id, new_date, replacement.start_time, duration,
        )
        return Ok(replacement)

    # ── Availability ───────────────────────────────────────────────────

    async def list_available_starts(
        self, resource_id: str, booking_date: date, duration_hours: int
    ) -> Result[list[str], ConflictError | Unavailable]:
        """
        Hourly start times (HH:MM) that fit *duration_hours* on the date.

        Lock-free and possibly stale; the authoritative check happens again
        when the booking is written.
        """
        return await self._guarded(
            "list_available_starts",
            self._available_starts(resource_id, booking_date, duration_hours),
        )

    async def _available_starts(
        self, resource_id: str, booking_date: date, duration_hours: int
    ) -> Result[list[str], ConflictError]:
        looked_up = await self._resource(resource_id)
        if isinstance(looked_up, Err):
            return looked_up
        resource = looked_up.value

        max_hours = self.policy.max_duration_hours
        if not isinstance(duration_hours, int) or not 1 <= duration_hours <= max_hours:
            return Err(
                InvalidInterval(
                    f"Duration must be between 1 and {max_hours} hours",
                    duration_hours=duration_hours,
                )
            )

        length = duration_hours * 60
        candidates = [
            format_minutes(minute)
            for minute in range(resource.opening_minute, resource.closing_minute - length + 1, 60)
        ]
        reservations = await self._store.load_reservations(resource_id, booking_date)
        calendar = SlotCalendar.build(resource_id, booking_date, reservations)
        return Ok(calendar.free_slots_from(candidates, duration_hours))

    # ── Payments ───────────────────────────────────────────────────────

    async def record_payment(
        self, reservation_id: str, succeeded: bool, reference: str | None = None
    ) -> Result[Reservation, BookingError]:
        """
        Apply the provider's verdict to a ``pending`` reservation.

        Success confirms it unless a confirmed booking took the slot in the
        meantime; then it is cancelled by the system with a full refund and
        ``SlotTaken`` is returned.  Failure cancels it.
        """
        return await self._guarded(
            "record_payment", self._record_payment(reservation_id, succeeded, reference)
        )

    async def _record_payment(
        self, reservation_id: str, succeeded: bool, reference: str | None
    ) -> Result[Reservation, BookingError]:
        original = await self._store.get_reservation(reservation_id)
        if original is None:
            return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))

        async with self._store.transaction((original.resource_id, original.booking_date)) as uow:
            current = await uow.get_reservation(reservation_id)
            if current is None:
                return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))

            refused = _unpayable(current)
            if refused is not None:
                return refused

            if not succeeded:
                updated = await uow.update_reservation(
                    reservation_id,
                    status=ReservationStatus.CANCELLED,
                    cancelled_by=CancelActor.SYSTEM,
                )
                logger.info("Payment failed for %s; hold released", reservation_id)
                return Ok(updated)

            existing = await uow.load_reservations(current.resource_id, current.booking_date)
            calendar = SlotCalendar.build(current.resource_id, current.booking_date, existing)
            taken_by = calendar.conflicts(current.interval, excluding=reservation_id)
            if taken_by:
                await uow.update_reservation(
                    reservation_id,
                    status=ReservationStatus.CANCELLED,
                    payment_state=PaymentState.PAID,
                    payment_reference=reference,
                    cancelled_by=CancelActor.SYSTEM,
                    refund_amount=current.total_price,
                )
                logger.warning(
                    "Paid hold %s lost its slot to %s; cancelled with full refund",
                    reservation_id, taken_by,
                )
                return Err(
                    SlotTaken(
                        f"{current.interval.start_label}-{current.interval.end_label} "
                        "was confirmed for someone else; payment will be refunded",
                        conflicting=taken_by,
                    )
                )

            try:
                updated = await uow.update_reservation(
                    reservation_id,
                    status=ReservationStatus.CONFIRMED,
                    payment_state=PaymentState.PAID,
                    payment_reference=reference,
                )
            except DuplicateError:
                return Err(SlotTaken(f"Slot for {reservation_id} was just booked"))

        logger.info("Payment recorded for %s (ref %s)", reservation_id, reference)
        return Ok(updated)

    async def settle_payment(self, reservation_id: str) -> Result[Reservation, BookingError]:
        """Charge a pending reservation through the gateway and record the outcome."""
        if self._payments is None:
            return Err(Unavailable("No payment gateway configured"))

        looked_up = await self.get_booking(reservation_id)
        if isinstance(looked_up, Err):
            return looked_up
        reservation = looked_up.value
        refused = _unpayable(reservation)
        if refused is not None:
            return refused

        try:
            receipt = await asyncio.wait_for(
                self._payments.confirm_payment(
                    reservation.id, reservation.total_price, reservation.currency
                ),
                timeout=self._payment_timeout,
            )
        except (PaymentError, asyncio.TimeoutError) as exc:
            logger.warning("Payment for %s failed: %s", reservation.id, str(exc) or "timeout")
            return await self.record_payment(reservation.id, succeeded=False)

        return await self.record_payment(reservation.id, succeeded=True, reference=receipt.reference)

    # ── Queries ────────────────────────────────────────────────────────

    async def list_pitches(self) -> Result[list[Resource], Unavailable]:
        return await self._guarded("list_pitches", self._list_pitches())

    async def _list_pitches(self) -> Result[list[Resource], Unavailable]:
        return Ok(await self._store.list_resources())

    async def get_pitch(self, resource_id: str) -> Result[Resource, UnknownResource | Unavailable]:
        return await self._guarded("get_pitch", self._resource(resource_id))

    async def get_booking(self, reservation_id: str) -> Result[Reservation, NotFound | Unavailable]:
        return await self._guarded("get_booking", self._get(reservation_id))

    async def _get(self, reservation_id: str) -> Result[Reservation, NotFound]:
        reservation = await self._store.get_reservation(reservation_id)
        if reservation is None:
            return Err(NotFound(f"No reservation {reservation_id}", reservation_id=reservation_id))
        return Ok(reservation)

    async def list_holder_bookings(
        self, account_id: str, when: Timeline = Timeline.ALL
    ) -> Result[list[Reservation], Unavailable]:
        """An account's bookings; upcoming soonest first, past most recent first."""
        return await self._guarded("list_holder_bookings", self._holder_bookings(account_id, when))

    async def _holder_bookings(self, account_id: str, when: Timeline) -> Result[list[Reservation], BookingError]:
        rows = await self._store.list_reservations(account_id=account_id)
        if when is Timeline.ALL:
            return Ok(rows)

        now = self._clock()
        rows = [r for r in rows if r.timeline(now) is when]
        if when is Timeline.UPCOMING:
            # Cancelled bookings and unpaid holds are not games to turn up for.
            rows = [r for r in rows if r.status is ReservationStatus.CONFIRMED]
        if when is Timeline.PAST:
            rows.sort(key=lambda r: r.starts_at, reverse=True)
        return Ok(rows)

    async def venue_schedule(
        self,
        resource_id: str,
        date_from: date,
        date_to: date,
        include_cancelled: bool = False,
    ) -> Result[list[ScheduleDay], ConflictError | Unavailable]:
        """Bookings on one pitch grouped by date, as on the venue dashboard."""
        return await self._guarded(
            "venue_schedule",
            self._schedule(resource_id, date_from, date_to, include_cancelled),
        )

    async def _schedule(
        self,
        resource_id: str,
        date_from: date,
        date_to: date,
        include_cancelled: bool,
    ) -> Result[list[ScheduleDay], ConflictError]:
        if date_from > date_to:
            return Err(
                InvalidInterval(
                    "date_from must not be after date_to",
                    date_from=date_from.isoformat(),
                    date_to=date_to.isoformat(),
                )
            )
        looked_up = await self._resource(resource_id)
        if isinstance(looked_up, Err):
            return looked_up

        rows = await self._store.list_reservations(
            resource_id=resource_id, date_from=date_from, date_to=date_to
        )
        if not include_cancelled:
            rows = [r for r in rows if r.status is not ReservationStatus.CANCELLED]

        days = [
            ScheduleDay(booking_date=day, bookings=list(group))
            for day, group in groupby(rows, key=lambda r: r.booking_date)
        ]
        return Ok(days)


def _unmovable(reservation: Reservation) -> Err | None:
    if reservation.status is ReservationStatus.CANCELLED:
        return Err(AlreadyCancelled("Reservation is already cancelled", reservation_id=reservation.id))
    if reservation.status is ReservationStatus.PENDING:
        # The provider settles against this id; a replacement would orphan it.
        return Err(
            InvalidTransition(
                "Pending reservations can be moved once the payment is settled",
                reservation_id=reservation.id,
                current=reservation.status.value,
            )
        )
    return None


def _unpayable(reservation: Reservation) -> Err | None:
    """Payment events apply to pending reservations only."""
    if reservation.status is ReservationStatus.CANCELLED:
        return Err(AlreadyCancelled("Reservation is already cancelled", reservation_id=reservation.id))
    if reservation.status is not ReservationStatus.PENDING:
        return Err(
            InvalidTransition(
                "Payment events only apply to pending reservations",
                reservation_id=reservation.id,
                current=reservation.status.value,
            )
        )
    return None


def total_price(resource: Resource, duration_hours: int) -> Decimal:
    """Price of *duration_hours* at the pitch's current rate."""
    return resource.hourly_rate * duration_hours
