import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Annotated, TypeVar

import jwt
from fastapi import Cookie, Depends, Header, HTTPException, Query, Request, status

from pitchbook.config import (
    JWT_ALGORITHM,
    JWT_EXPIRY_DAYS,
    JWT_SECRET,
    PAYMENT_CALLBACK_SECRET,
    VENUE_API_KEY,
)
from pitchbook.errors import BookingError, Err, Result
from pitchbook.models import AccountHolder, CancelActor, Error, PaginationMeta
from pitchbook.services.booking_service import BookingService

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Pagination ─────────────────────────────────────────────────────────────


class PaginationParams:
    def __init__(
        self,
        page: Annotated[int, Query(ge=1, description="Page number (1-indexed)")] = 1,
        page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
    ):
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def paginate(items: list, pagination: PaginationParams, response_cls: type):
    total = len(items)
    start = pagination.offset
    end = start + pagination.page_size
    return response_cls(
        items=items[start:end],
        meta=PaginationMeta(
            page=pagination.page,
            page_size=pagination.page_size,
            total_items=total,
            total_pages=max(1, -(-total // pagination.page_size)),
        ),
    )


# ── Error mapping ──────────────────────────────────────────────────────────

_STATUS_BY_CODE: dict[str, int] = {
    "invalid_interval": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "too_soon": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "too_far_ahead": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "slot_taken": status.HTTP_409_CONFLICT,
    "already_cancelled": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "unknown_resource": status.HTTP_404_NOT_FOUND,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(error: BookingError) -> HTTPException:
    """Translate a business error into an HTTPException with an Error body."""
    headers = {"Retry-After": "1"} if error.retryable else None
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=Error(
            error=error.code,
            message=error.message,
            details=error.details or None,
        ).model_dump(),
        headers=headers,
    )


def unwrap(result: Result[T, BookingError]) -> T:
    if isinstance(result, Err):
        raise error_response(result.error)
    return result.value


# ── Services ───────────────────────────────────────────────────────────────


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


Bookings = Annotated[BookingService, Depends(get_booking_service)]


# ── JWT / Session ──────────────────────────────────────────────────────────


def create_jwt(account_id: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": account_id,
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRY_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_session_account(session: str | None) -> str | None:
    if not session:
        return None
    try:
        payload = jwt.decode(session, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload.get("sub")
    except jwt.PyJWTError:
        return None


async def get_current_account(
    session: Annotated[str | None, Cookie()] = None,
) -> AccountHolder:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please log in.",
        )

    try:
        payload = jwt.decode(session, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
        ) from None
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session. Please log in again.",
        ) from None

    account_id: str | None = payload.get("sub")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload.",
        )

    return AccountHolder(account_id=account_id)


async def get_optional_account(
    session: Annotated[str | None, Cookie()] = None,
) -> AccountHolder | None:
    """Like get_current_account, but guests (no or bad cookie) get None."""
    account_id = decode_session_account(session)
    return AccountHolder(account_id=account_id) if account_id else None


CurrentAccount = Annotated[AccountHolder, Depends(get_current_account)]
OptionalAccount = Annotated[AccountHolder | None, Depends(get_optional_account)]


# ── Bearer keys (venue staff, payment provider) ────────────────────────────


def _bearer_matches(authorization: str | None, secret: str) -> bool:
    if not authorization or not secret:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return secrets.compare_digest(token.strip().encode(), secret.encode())


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=Error(error="unauthorized", message=message).model_dump(),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def is_venue_staff(
    authorization: Annotated[str | None, Header()] = None,
) -> bool:
    return _bearer_matches(authorization, VENUE_API_KEY)


async def verify_payment_callback(
    booking_id: str,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Only the payment provider may report the outcome of a payment."""
    if not _bearer_matches(authorization, PAYMENT_CALLBACK_SECRET):
        logger.warning("Rejected unauthenticated payment callback for %s", booking_id)
        raise _unauthorized("Payment callbacks must carry the provider's credentials")


VenueStaff = Annotated[bool, Depends(is_venue_staff)]


async def get_booking_actor(
    booking_id: str,
    bookings: Bookings,
    account: OptionalAccount,
    venue_staff: VenueStaff,
) -> CancelActor:
    """
    Who is changing the booking: venue staff, or the account that holds it.

    Guest bookings have no account to sign in with, so only the venue can
    change them.
    """
    if venue_staff:
        return CancelActor.VENUE
    if account is None:
        raise _unauthorized("Sign in to change your booking")

    reservation = unwrap(await bookings.get_booking(booking_id))
    holder = reservation.holder
    if holder.kind != "account" or holder.account_id != account.account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=Error(
                error="forbidden",
                message="This booking belongs to someone else",
            ).model_dump(),
        )
    return CancelActor.HOLDER


BookingActor = Annotated[CancelActor, Depends(get_booking_actor)]
