"""
Pitch endpoints – catalog, free start times and the venue schedule.
"""

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from pitchbook.dependencies import Bookings, PaginationParams, paginate, unwrap
from pitchbook.models import (
    AvailableStartsResponse,
    Resource,
    ResourceListResponse,
    ScheduleResponse,
)

router = APIRouter(prefix="/api/pitches", tags=["pitches"])


@router.get(
    "",
    response_model=ResourceListResponse,
    operation_id="listPitches",
    summary="List bookable pitches",
)
async def list_pitches(
    bookings: Bookings,
    pagination: PaginationParams = Depends(PaginationParams),
    location: str | None = Query(None, description="Filter by location (case-insensitive)"),
) -> ResourceListResponse:
    pitches = unwrap(await bookings.list_pitches())
    if location:
        pitches = [p for p in pitches if location.lower() in p.location.lower()]
    return paginate(pitches, pagination, ResourceListResponse)


@router.get(
    "/{pitch_id}",
    response_model=Resource,
    operation_id="getPitch",
    summary="Get details of a specific pitch",
)
async def get_pitch(pitch_id: str, bookings: Bookings) -> Resource:
    return unwrap(await bookings.get_pitch(pitch_id))


@router.get(
    "/{pitch_id}/available-starts",
    response_model=AvailableStartsResponse,
    operation_id="listAvailableStarts",
    summary="Hourly start times that are still free",
)
async def list_available_starts(
    pitch_id: str,
    bookings: Bookings,
    booking_date: date = Query(..., alias="date", description="Date of play"),
    duration: int = Query(1, description="Duration in whole hours"),
) -> AvailableStartsResponse:
    starts = unwrap(await bookings.list_available_starts(pitch_id, booking_date, duration))
    return AvailableStartsResponse(
        resource_id=pitch_id,
        booking_date=booking_date,
        duration_hours=duration,
        starts=starts,
    )


@router.get(
    "/{pitch_id}/schedule",
    response_model=ScheduleResponse,
    operation_id="getPitchSchedule",
    summary="Bookings on a pitch grouped by date",
)
async def get_schedule(
    pitch_id: str,
    bookings: Bookings,
    date_from: date | None = Query(None, description="Start date (inclusive, defaults to today at the venue)"),
    date_to: date | None = Query(None, description="End date (inclusive, defaults to +7 days)"),
    include_cancelled: bool = Query(False),
) -> ScheduleResponse:
    date_from = date_from or bookings.today()
    date_to = date_to or date_from + timedelta(days=7)
    days = unwrap(
        await bookings.venue_schedule(pitch_id, date_from, date_to, include_cancelled)
    )
    return ScheduleResponse(
        resource_id=pitch_id,
        total_bookings=sum(len(d.bookings) for d in days),
        days=days,
    )
