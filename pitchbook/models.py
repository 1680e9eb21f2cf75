"""Pydantic models for the Pitch Booking API and engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field

from pitchbook.config import DEFAULT_CLOSES_AT, DEFAULT_OPENS_AT

_HHMM = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"
# Closing time may be midnight, written as 24:00.
_CLOSING_HHMM = r"^(([01][0-9]|2[0-3]):[0-5][0-9]|24:00)$"

MINUTES_PER_DAY = 24 * 60


def minutes_of_day(value: str) -> int:
    """Parse ``HH:MM`` into minutes after midnight (``24:00`` -> 1440)."""
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if minutes > 59 or hours > 24 or (hours == 24 and minutes):
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Inverse of :func:`minutes_of_day`."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# ── Enumerations ──────────────────────────────────────────────────────────


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentState(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    NOT_REQUIRED = "not_required"


class PaymentMethod(str, Enum):
    CASH = "cash"
    ONLINE = "online"
    NONE = "none"


class CancelActor(str, Enum):
    HOLDER = "holder"
    VENUE = "venue"
    SYSTEM = "system"


class Timeline(str, Enum):
    """Derived position of a booking relative to the current time."""

    UPCOMING = "upcoming"
    PAST = "past"
    ALL = "all"


# ── Time intervals ────────────────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class TimeInterval:
    """Half-open ``[start, end)`` span in minutes-of-day."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(f"Invalid interval [{self.start}, {self.end})")

    @classmethod
    def from_start(cls, start_time: str, duration_hours: int) -> TimeInterval:
        start = minutes_of_day(start_time)
        return cls(start=start, end=start + duration_hours * 60)

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    @property
    def start_label(self) -> str:
        return format_minutes(self.start)

    @property
    def end_label(self) -> str:
        return format_minutes(self.end)


# ── Catalog ───────────────────────────────────────────────────────────────


class Resource(BaseModel):
    """A bookable pitch."""

    id: str = Field(..., min_length=1, description="Unique pitch identifier")
    name: str = Field(..., description="Pitch name")
    location: str = Field(default="", description="Venue address or area")
    hourly_rate: Decimal = Field(..., ge=0, description="Price per hour")
    opens_at: str = Field(default=DEFAULT_OPENS_AT, pattern=_HHMM, description="Opening time (HH:MM)")
    closes_at: str = Field(default=DEFAULT_CLOSES_AT, pattern=_CLOSING_HHMM, description="Closing time (HH:MM)")
    capacity: Optional[int] = Field(None, ge=1, description="Players per side")
    amenities: List[str] = Field(default_factory=list, description="Facilities on site")

    @property
    def opening_minute(self) -> int:
        return minutes_of_day(self.opens_at)

    @property
    def closing_minute(self) -> int:
        return minutes_of_day(self.closes_at)


# ── Holders ───────────────────────────────────────────────────────────────


class AccountHolder(BaseModel):
    """A registered player account."""

    kind: Literal["account"] = "account"
    account_id: str = Field(..., min_length=1)


class GuestHolder(BaseModel):
    """Inline contact details for someone booking without an account."""

    kind: Literal["guest"] = "guest"
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)


Holder = Annotated[Union[AccountHolder, GuestHolder], Field(discriminator="kind")]


# ── Reservations ──────────────────────────────────────────────────────────


class Reservation(BaseModel):
    """One request to occupy a pitch for a date, start time and duration."""

    id: str
    resource_id: str
    booking_date: date
    start_time: str = Field(..., pattern=_HHMM)
    duration_hours: int = Field(..., ge=1)
    status: ReservationStatus
    holder: Holder
    total_price: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_state: PaymentState
    payment_reference: Optional[str] = None
    rescheduled_from: Optional[str] = None
    cancelled_by: Optional[CancelActor] = None
    refund_amount: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.from_start(self.start_time, self.duration_hours)

    @property
    def starts_at(self) -> datetime:
        """Venue-local start, as a naive datetime."""
        return datetime.combine(self.booking_date, time()) + timedelta(minutes=self.interval.start)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.booking_date, time()) + timedelta(minutes=self.interval.end)

    def timeline(self, now: datetime) -> Timeline:
        """Upcoming until the booking starts, past afterwards."""
        return Timeline.UPCOMING if self.starts_at > now else Timeline.PAST


# ── API request bodies ────────────────────────────────────────────────────


class BookingCreate(BaseModel):
    """Request to book a pitch."""

    resource_id: str = Field(..., description="Pitch identifier")
    booking_date: date = Field(..., description="Date of play")
    start_time: str = Field(..., description="Start time (HH:MM)")
    duration_hours: int = Field(..., description="Whole hours")
    holder: Optional[Holder] = Field(
        None, description="Guest or account holder; defaults to the session account"
    )
    payment_method: PaymentMethod = Field(default=PaymentMethod.CASH)


class RescheduleRequest(BaseModel):
    """Move an existing booking to a new date and time."""

    booking_date: date
    start_time: str
    duration_hours: Optional[int] = Field(None, description="Defaults to the current duration")


class PaymentEvent(BaseModel):
    """Outcome reported by the payment provider for a pending booking."""

    succeeded: bool
    reference: Optional[str] = None


# ── API responses ─────────────────────────────────────────────────────────


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int


class ResourceListResponse(BaseModel):
    items: List[Resource]
    meta: PaginationMeta


class ReservationListResponse(BaseModel):
    items: List[Reservation]
    meta: PaginationMeta


class AvailableStartsResponse(BaseModel):
    resource_id: str
    booking_date: date
    duration_hours: int
    starts: List[str] = Field(..., description="Free start times (HH:MM)")


class ScheduleDay(BaseModel):
    booking_date: date
    bookings: List[Reservation]


class ScheduleResponse(BaseModel):
    """Venue dashboard view: bookings grouped by date."""

    resource_id: str
    total_bookings: int
    days: List[ScheduleDay]


class Error(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
