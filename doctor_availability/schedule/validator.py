"""Slot validation run before any write that changes a day's slots."""

from doctor_availability.core import config
from doctor_availability.schedule.errors import ConflictError, SlotValidationError
from doctor_availability.schedule.types import DAY_NAMES, TimeSlot, format_clock


def _describe(slot: TimeSlot) -> str:
    return f'{format_clock(slot.start_time)}-{format_clock(slot.end_time)}'


def validate_day_of_week(day_of_week: int, closed_days: frozenset[int] = config.CLOSED_DAYS) -> None:
    if day_of_week < 0 or day_of_week > 6:
        raise SlotValidationError(
            'Day of week must be between 0 (Sunday) and 6 (Saturday).',
            day_of_week=day_of_week,
        )
    if day_of_week in closed_days:
        raise SlotValidationError(
            f'Cannot set availability for {DAY_NAMES[day_of_week]}.',
            day_of_week=day_of_week,
        )


def validate_slot(slot: TimeSlot, tolerance_hours: float = config.HOURS_TOLERANCE) -> None:
    if slot.start_time >= slot.end_time:
        raise SlotValidationError(
            f'Slot {_describe(slot)} must start before it ends.',
            slot=_describe(slot),
        )

    if slot.token_count < 1:
        raise SlotValidationError(
            f'Slot {_describe(slot)} must offer at least one token.',
            slot=_describe(slot),
        )

    if slot.hours_available is None or slot.hours_available <= 0:
        raise SlotValidationError(
            f'Slot {_describe(slot)} must have a positive hoursAvailable.',
            slot=_describe(slot),
        )

    if abs(slot.hours_available - slot.duration_hours) > tolerance_hours:
        raise SlotValidationError(
            f'Slot {_describe(slot)} declares {slot.hours_available} hours '
            f'but spans {slot.duration_hours:g} hours.',
            slot=_describe(slot),
        )


def validate_slots(slots: list[TimeSlot], tolerance_hours: float = config.HOURS_TOLERANCE) -> None:
    """Reject malformed slots first, then any two slots that overlap.

    Intervals are half-open, so a slot ending at 10:00 and one starting at
    10:00 do not conflict.
    """
    for slot in slots:
        validate_slot(slot, tolerance_hours)

    ordered = sorted(slots, key=lambda slot: slot.start_time)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.overlaps(current):
            raise ConflictError(
                f'Slot {_describe(previous)} overlaps slot {_describe(current)}.',
                slots=[_describe(previous), _describe(current)],
            )
