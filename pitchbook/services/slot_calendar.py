"""
Slot calendar – the occupied timeline of one pitch on one date.

Built on demand from the confirmed reservations loaded out of the store;
never persisted and never a source of truth.  Every overlap question in
the engine goes through :func:`overlaps`.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

from pitchbook.models import Reservation, TimeInterval
from pitchbook.services.lifecycle import occupies_calendar


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """True iff the half-open intervals share at least one minute."""
    return a.start < b.end and b.start < a.end


class SlotCalendar:
    """
    Confirmed intervals for one (pitch, date), sorted by start.

    Only ``confirmed`` reservations occupy the calendar; pending and
    cancelled ones are ignored.
    """

    def __init__(
        self,
        resource_id: str,
        on_date: date,
        entries: Iterable[tuple[TimeInterval, str]] = (),
    ) -> None:
        self.resource_id = resource_id
        self.on_date = on_date
        self._entries: list[tuple[TimeInterval, str]] = sorted(entries)

    @classmethod
    def build(
        cls,
        resource_id: str,
        on_date: date,
        reservations: Iterable[Reservation],
        excluding: str | None = None,
    ) -> SlotCalendar:
        entries = [
            (r.interval, r.id)
            for r in reservations
            if occupies_calendar(r.status)
            and r.resource_id == resource_id
            and r.booking_date == on_date
            and r.id != excluding
        ]
        return cls(resource_id, on_date, entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def intervals(self) -> list[TimeInterval]:
        return [interval for interval, _ in self._entries]

    def conflicts(
        self, candidate: TimeInterval, excluding: str | None = None
    ) -> list[str]:
        """Ids of the stored reservations whose interval overlaps *candidate*."""
        found = []
        for interval, reservation_id in self._entries:
            if interval.start >= candidate.end:
                break
            if reservation_id != excluding and overlaps(interval, candidate):
                found.append(reservation_id)
        return found

    def is_free(self, candidate: TimeInterval, excluding: str | None = None) -> bool:
        return not self.conflicts(candidate, excluding)

    def free_slots_from(
        self, candidate_starts: Iterable[str], duration_hours: int
    ) -> list[str]:
        """Subset of *candidate_starts* (HH:MM) that fit *duration_hours*."""
        free = []
        for start in candidate_starts:
            if self.is_free(TimeInterval.from_start(start, duration_hours)):
                free.append(start)
        return free
