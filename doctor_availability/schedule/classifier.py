"""Fullness classification for slots and whole days.

Nothing here is stored: statuses are recomputed from ``booked_tokens`` on
every read.
"""

from dataclasses import dataclass
from enum import Enum

from doctor_availability.core import config
from doctor_availability.schedule.types import Availability, TimeSlot


class SlotStatus(str, Enum):
    UNAVAILABLE = 'Unavailable'
    FULL = 'Full'
    ALMOST_FULL = 'Almost Full'
    AVAILABLE = 'Available'


# Worst first.
_SEVERITY = {
    SlotStatus.UNAVAILABLE: 3,
    SlotStatus.FULL: 2,
    SlotStatus.ALMOST_FULL: 1,
    SlotStatus.AVAILABLE: 0,
}


@dataclass(frozen=True)
class SlotCapacity:
    capacity: int
    booked: int
    status: SlotStatus

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.booked)


@dataclass(frozen=True)
class WeeklySummary:
    days: int
    total_hours: float
    total_tokens: int
    booked_tokens: int


def classify(
    booked: int,
    capacity: int,
    is_available: bool,
    almost_full_percent: int = config.ALMOST_FULL_PERCENT,
) -> SlotStatus:
    if not is_available:
        return SlotStatus.UNAVAILABLE
    if booked >= capacity:
        return SlotStatus.FULL
    if booked * 100 >= capacity * almost_full_percent:
        return SlotStatus.ALMOST_FULL
    return SlotStatus.AVAILABLE


def classify_slot(slot: TimeSlot, is_available: bool = True) -> SlotStatus:
    return classify(slot.booked_count, slot.token_count, is_available)


def slot_capacity(slot: TimeSlot, is_available: bool = True) -> SlotCapacity:
    return SlotCapacity(
        capacity=slot.token_count,
        booked=slot.booked_count,
        status=classify_slot(slot, is_available),
    )


def worst(statuses) -> SlotStatus:
    return max(statuses, key=_SEVERITY.__getitem__, default=SlotStatus.UNAVAILABLE)


def classify_availability(availability: Availability) -> SlotStatus:
    if not availability.is_available:
        return SlotStatus.UNAVAILABLE
    return worst(classify_slot(slot) for slot in availability.slots)


def summarize_week(records: list[Availability]) -> WeeklySummary:
    return WeeklySummary(
        days=len(records),
        total_hours=sum(slot.hours_available for record in records for slot in record.slots),
        total_tokens=sum(slot.token_count for record in records for slot in record.slots),
        booked_tokens=sum(slot.booked_count for record in records for slot in record.slots),
    )
