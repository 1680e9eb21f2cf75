"""
Error taxonomy and result values for the booking engine.

Business outcomes travel as ``Ok`` / ``Err`` values so that every public
booking operation is total.  Infrastructure adapters (stores, payment
gateways) raise the gateway exceptions at the bottom of this module; the
booking service catches them at its boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]


# ── Business errors ───────────────────────────────────────────────────────


class BookingError(Exception):
    """Base class for every business-level booking failure."""

    code = "booking_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ConflictError(BookingError):
    """The requested slot cannot be accepted."""

    code = "conflict"


class InvalidInterval(ConflictError):
    code = "invalid_interval"


class TooSoon(ConflictError):
    code = "too_soon"


class TooFarAhead(ConflictError):
    code = "too_far_ahead"


class SlotTaken(ConflictError):
    code = "slot_taken"


class UnknownResource(ConflictError):
    code = "unknown_resource"


class CancelError(BookingError):
    code = "cancel_error"


class AlreadyCancelled(CancelError):
    code = "already_cancelled"


class NotFound(CancelError):
    code = "not_found"


class InvalidTransition(BookingError):
    """A lifecycle transition outside the allowed table was requested."""

    code = "invalid_transition"


class Unavailable(BookingError):
    """Persistence unreachable or too slow. Safe to retry with backoff."""

    code = "unavailable"
    retryable = True


# ── Gateway errors ────────────────────────────────────────────────────────


class PersistenceError(Exception):
    """The store could not complete a call (I/O, locking, connection)."""


class DuplicateError(Exception):
    """A uniqueness constraint rejected an insert or update."""


class NotFoundError(Exception):
    """The store has no row for the given identifier."""


class PaymentError(Exception):
    """The payment provider declined, failed, or returned garbage."""
