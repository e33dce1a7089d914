"""
Slot availability.

A provider's day is cut into fixed slots from a working-hours template; a
slot is offered only when it lies in the future and no non-cancelled
appointment of the provider overlaps any part of it. Nothing is cached, every
query is recomputed from the stored appointments.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

from core.config import settings
from core.errors import ValidationError
from core.models import TimeSlot
from core.utils import day_bounds, parse_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingHours:
    start_hour: int = 9
    end_hour: int = 17
    slot_minutes: int = 60

    @classmethod
    def from_settings(cls) -> "WorkingHours":
        return cls(
            start_hour=settings.working_hours_start,
            end_hour=settings.working_hours_end,
            slot_minutes=settings.slot_duration_minutes,
        )

    def candidate_slots(self, day: date) -> List[TimeSlot]:
        day_start, _ = day_bounds(day)
        opening = day_start + timedelta(hours=self.start_hour)
        closing = day_start + timedelta(hours=self.end_hour)
        step = timedelta(minutes=self.slot_minutes)

        slots = []
        slot_start = opening
        while slot_start + step <= closing:
            slots.append(TimeSlot(slot_start, slot_start + step))
            slot_start += step
        return slots


def compute_available_slots(
    day: date,
    booked: Iterable[Dict],
    now: datetime,
    hours: WorkingHours = WorkingHours(),
) -> List[TimeSlot]:
    """Template slots for ``day`` minus booked intervals and past slots."""
    intervals = [(apt["start_time"], apt["end_time"]) for apt in booked]

    available = []
    for slot in hours.candidate_slots(day):
        if slot.start_time <= now:
            continue
        if any(slot.overlaps(start, end) for start, end in intervals):
            continue
        available.append(slot)
    return available


class SlotService:
    def __init__(
        self,
        db,
        hours: Optional[WorkingHours] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.hours = hours or WorkingHours.from_settings()
        self.clock = clock

    async def get_available_slots(
        self, day: Union[date, str, None], provider_id: str
    ) -> List[TimeSlot]:
        if not day:
            raise ValidationError("Date is required")

        if isinstance(day, str):
            parsed = parse_date(day)
            if parsed is None:
                raise ValidationError(f"Invalid date '{day}'")
            day = parsed

        day_start, day_end = day_bounds(day)
        booked = await self.db.find_provider_appointments_between(
            provider_id, day_start, day_end
        )

        slots = compute_available_slots(day, booked, self.clock(), self.hours)
        logger.debug(
            f"[Slots] {day.isoformat()} provider={provider_id} "
            f"booked={len(booked)} available={len(slots)}"
        )
        return slots
