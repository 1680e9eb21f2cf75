"""
Conflict checker – validates one candidate booking before it is written.

Checks run in a fixed order and the first failure wins:

1.  interval validity (duration bounds, operating hours)
2.  advance notice
3.  booking horizon
4.  calendar overlap against confirmed reservations

The checker is pure.  Atomicity against concurrent writers is the
caller's job (see ``BookingService``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from pitchbook.config import (
    BOOKING_HORIZON_DAYS,
    BOOKING_NOTICE_HOURS,
    MAX_DURATION_HOURS,
    RESCHEDULE_NOTICE_HOURS,
)
from pitchbook.errors import (
    ConflictError,
    Err,
    InvalidInterval,
    Ok,
    Result,
    SlotTaken,
    TooFarAhead,
    TooSoon,
)
from pitchbook.models import Reservation, Resource, TimeInterval
from pitchbook.services.slot_calendar import SlotCalendar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingPolicy:
    """Business rules applied to every booking request."""

    notice: timedelta = timedelta(hours=24)
    reschedule_notice: timedelta = timedelta(hours=24)
    horizon: timedelta = timedelta(days=30)
    max_duration_hours: int = 3

    def __post_init__(self) -> None:
        if self.max_duration_hours < 1:
            raise ValueError("max_duration_hours must be at least 1")
        if self.reschedule_notice > self.notice:
            raise ValueError("reschedule_notice may not exceed notice")

    @classmethod
    def from_config(cls) -> BookingPolicy:
        return cls(
            notice=timedelta(hours=BOOKING_NOTICE_HOURS),
            reschedule_notice=timedelta(hours=RESCHEDULE_NOTICE_HOURS),
            horizon=timedelta(days=BOOKING_HORIZON_DAYS),
            max_duration_hours=MAX_DURATION_HOURS,
        )


@dataclass(frozen=True)
class SlotRequest:
    """A candidate (pitch, date, start, duration)."""

    resource_id: str
    booking_date: date
    start_time: str
    duration_hours: int
    # Id of the reservation being moved; it never conflicts with itself.
    rescheduling: str | None = None


class ConflictChecker:
    def __init__(self, policy: BookingPolicy | None = None) -> None:
        self.policy = policy or BookingPolicy.from_config()

    def validate_interval(
        self, request: SlotRequest, resource: Resource
    ) -> Result[TimeInterval, ConflictError]:
        """Check 1: shape of the interval and operating hours."""
        max_hours = self.policy.max_duration_hours
        if not isinstance(request.duration_hours, int) or not 1 <= request.duration_hours <= max_hours:
            return Err(
                InvalidInterval(
                    f"Duration must be between 1 and {max_hours} hours",
                    duration_hours=request.duration_hours,
                )
            )
        try:
            interval = TimeInterval.from_start(request.start_time, request.duration_hours)
        except ValueError as exc:
            return Err(InvalidInterval(str(exc), start_time=request.start_time))

        if interval.start < resource.opening_minute or interval.end > resource.closing_minute:
            return Err(
                InvalidInterval(
                    f"{interval.start_label}-{interval.end_label} is outside operating hours "
                    f"{resource.opens_at}-{resource.closes_at}",
                    opens_at=resource.opens_at,
                    closes_at=resource.closes_at,
                )
            )
        return Ok(interval)

    def check_window(
        self, request: SlotRequest, interval: TimeInterval, now: datetime
    ) -> Result[TimeInterval, ConflictError]:
        """Checks 2 and 3: notice and horizon, against venue-local *now*."""
        starts_at = datetime.combine(request.booking_date, time()) + timedelta(minutes=interval.start)
        notice = (
            self.policy.reschedule_notice if request.rescheduling else self.policy.notice
        )
        if starts_at <= now + notice:
            return Err(
                TooSoon(
                    f"Bookings need at least {notice.total_seconds() / 3600:g} hours notice",
                    earliest=(now + notice).isoformat(timespec="minutes"),
                )
            )

        latest = (now + self.policy.horizon).date()
        if request.booking_date > latest:
            return Err(
                TooFarAhead(
                    f"Bookings open at most {self.policy.horizon.days} days ahead",
                    latest_date=latest.isoformat(),
                )
            )
        return Ok(interval)

    def check(
        self,
        request: SlotRequest,
        resource: Resource,
        reservations: Iterable[Reservation],
        now: datetime,
    ) -> Result[TimeInterval, ConflictError]:
        verdict = self.validate_interval(request, resource)
        if isinstance(verdict, Err):
            return verdict
        interval = verdict.value

        verdict = self.check_window(request, interval, now)
        if isinstance(verdict, Err):
            return verdict

        calendar = SlotCalendar.build(
            resource.id,
            request.booking_date,
            reservations,
            excluding=request.rescheduling,
        )
        taken_by = calendar.conflicts(interval)
        if taken_by:
            logger.debug(
                "Slot %s %s-%s on %s overlaps %s",
                resource.id,
                interval.start_label,
                interval.end_label,
                request.booking_date,
                taken_by,
            )
            return Err(
                SlotTaken(
                    f"{interval.start_label}-{interval.end_label} is already booked",
                    conflicting=taken_by,
                )
            )
        return Ok(interval)
