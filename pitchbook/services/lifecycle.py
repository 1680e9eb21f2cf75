"""
Reservation lifecycle – the closed set of status transitions.

    pending ──► confirmed ──► cancelled
       └──────────────────────►┘

Rescheduling is not a state: the old reservation is cancelled and a new
one is created, so history is kept and the machine stays this small.
"""

from __future__ import annotations

from pitchbook.errors import AlreadyCancelled, InvalidTransition
from pitchbook.models import PaymentMethod, PaymentState, ReservationStatus

_ALLOWED: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.CANCELLED}),
    ReservationStatus.CANCELLED: frozenset(),
}


def initial_status(payment_required: bool) -> ReservationStatus:
    """Online payments hold the slot as pending until the provider settles."""
    return ReservationStatus.PENDING if payment_required else ReservationStatus.CONFIRMED


def initial_payment_state(method: PaymentMethod) -> PaymentState:
    if method is PaymentMethod.NONE:
        return PaymentState.NOT_REQUIRED
    # Cash is collected at the venue, online is settled by the provider.
    return PaymentState.UNPAID


def requires_upfront_payment(method: PaymentMethod) -> bool:
    return method is PaymentMethod.ONLINE


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in _ALLOWED[current]


def transition(current: ReservationStatus, target: ReservationStatus) -> ReservationStatus:
    """Return *target* if the move is allowed, otherwise raise."""
    if current is ReservationStatus.CANCELLED:
        raise AlreadyCancelled("Reservation is already cancelled")
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move a {current.value} reservation to {target.value}",
            current=current.value,
            target=target.value,
        )
    return target


def occupies_calendar(status: ReservationStatus) -> bool:
    """Only confirmed reservations block other callers."""
    return status is ReservationStatus.CONFIRMED
