"""
Booking endpoints – create, cancel, reschedule and payment callbacks.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from pitchbook.dependencies import (
    BookingActor,
    Bookings,
    CurrentAccount,
    OptionalAccount,
    PaginationParams,
    get_booking_actor,
    paginate,
    unwrap,
    verify_payment_callback,
)
from pitchbook.models import (
    BookingCreate,
    Error,
    PaymentEvent,
    RescheduleRequest,
    Reservation,
    ReservationListResponse,
    Timeline,
)
from pitchbook.rate_limit import BOOKING, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


@router.post(
    "",
    response_model=Reservation,
    status_code=status.HTTP_201_CREATED,
    operation_id="createBooking",
    summary="Book a pitch",
)
@limiter.limit(BOOKING)
async def create_booking(
    request: Request,
    body: BookingCreate,
    bookings: Bookings,
    account: OptionalAccount,
) -> Reservation:
    """
    Book a pitch for a date, start time and whole-hour duration.

    Signed-in players book under their account; guests must send their
    contact details in ``holder``.
    """
    holder = body.holder or account
    if holder is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=Error(
                error="holder_required",
                message="Sign in or provide guest contact details",
            ).model_dump(),
        )

    return unwrap(
        await bookings.create_booking(
            body.resource_id,
            body.booking_date,
            body.start_time,
            body.duration_hours,
            holder,
            body.payment_method,
        )
    )


@router.get(
    "/mine",
    response_model=ReservationListResponse,
    operation_id="listMyBookings",
    summary="Bookings of the signed-in player",
)
async def list_my_bookings(
    account: CurrentAccount,
    bookings: Bookings,
    pagination: PaginationParams = Depends(PaginationParams),
    when: Timeline = Query(Timeline.UPCOMING, description="upcoming, past or all"),
) -> ReservationListResponse:
    rows = unwrap(await bookings.list_holder_bookings(account.account_id, when))
    return paginate(rows, pagination, ReservationListResponse)


@router.get(
    "/{booking_id}",
    response_model=Reservation,
    operation_id="getBooking",
    summary="Get a booking",
)
async def get_booking(booking_id: str, bookings: Bookings) -> Reservation:
    return unwrap(await bookings.get_booking(booking_id))


@router.post(
    "/{booking_id}/cancel",
    response_model=Reservation,
    operation_id="cancelBooking",
    summary="Cancel a booking",
)
@limiter.limit(BOOKING)
async def cancel_booking(
    request: Request,
    booking_id: str,
    bookings: Bookings,
    actor: BookingActor,
) -> Reservation:
    """
    Cancel as the signed-in holder, or as venue staff (bearer key).

    The refund follows from who cancels: venue cancellations are refunded
    in full, holder cancellations by how close kick-off is.
    """
    return unwrap(await bookings.cancel_booking(booking_id, actor))


@router.post(
    "/{booking_id}/reschedule",
    response_model=Reservation,
    operation_id="rescheduleBooking",
    summary="Move a booking to another slot",
    dependencies=[Depends(get_booking_actor)],
)
@limiter.limit(BOOKING)
async def reschedule_booking(
    request: Request,
    booking_id: str,
    body: RescheduleRequest,
    bookings: Bookings,
) -> Reservation:
    """Returns the replacement booking; the original is cancelled."""
    return unwrap(
        await bookings.reschedule_booking(
            booking_id, body.booking_date, body.start_time, body.duration_hours
        )
    )


@router.post(
    "/{booking_id}/payment",
    response_model=Reservation,
    operation_id="recordPayment",
    summary="Payment provider callback for a pending booking",
    dependencies=[Depends(verify_payment_callback)],
)
async def record_payment(
    booking_id: str,
    body: PaymentEvent,
    bookings: Bookings,
) -> Reservation:
    logger.info("Payment event for %s: succeeded=%s", booking_id, body.succeeded)
    return unwrap(await bookings.record_payment(booking_id, body.succeeded, body.reference))


@router.post(
    "/{booking_id}/settle",
    response_model=Reservation,
    operation_id="settleBooking",
    summary="Charge a pending booking through the payment provider",
    dependencies=[Depends(get_booking_actor)],
)
@limiter.limit(BOOKING)
async def settle_booking(
    request: Request,
    booking_id: str,
    bookings: Bookings,
) -> Reservation:
    return unwrap(await bookings.settle_payment(booking_id))
