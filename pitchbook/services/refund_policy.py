"""
Refunds owed when a paid booking is cancelled.

More than 24 hours before kick-off the full amount is returned, between
12 and 24 hours half of it, and nothing after that.  Cancellations made
by the venue or by the system are always refunded in full.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from pitchbook.models import CancelActor, PaymentState, Reservation

FULL_REFUND_BEFORE = timedelta(hours=24)
HALF_REFUND_BEFORE = timedelta(hours=12)


def refund_amount(
    reservation: Reservation, cancelled_at: datetime, actor: CancelActor
) -> Decimal | None:
    """Amount to return, or None when nothing was paid up front."""
    if reservation.payment_state is not PaymentState.PAID:
        return None

    total = reservation.total_price
    if actor is not CancelActor.HOLDER:
        return total

    lead = reservation.starts_at - cancelled_at
    if lead > FULL_REFUND_BEFORE:
        return total
    if lead >= HALF_REFUND_BEFORE:
        return (total / 2).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal("0")
