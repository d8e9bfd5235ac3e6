"""Domain records for recurring doctor availability."""

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, time

from doctor_availability.schedule.errors import NotFound, SlotValidationError

CLOCK_PATTERN = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


def parse_clock(value: str) -> time:
    match = CLOCK_PATTERN.match(value.strip())
    if not match:
        raise SlotValidationError(f'Time must be in HH:MM format, got {value!r}.', field='time')
    return time(int(match.group(1)), int(match.group(2)))


def format_clock(value: time) -> str:
    return value.strftime('%H:%M')


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class AuditStamp:
    actor_id: str
    role: str
    display_name: str
    timestamp: datetime


@dataclass(frozen=True)
class DoctorProfile:
    id: str
    first_name: str
    last_name: str
    branch_id: str
    specialization: str | None = None
    department: str | None = None
    email: str | None = None
    phone_number: str | None = None
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'


@dataclass(frozen=True)
class Reservation:
    doctor_id: str
    day_of_week: int
    slot_index: int
    token_number: int


@dataclass
class TimeSlot:
    start_time: time
    end_time: time
    token_count: int
    hours_available: float | None = None
    booked_tokens: set[int] = field(default_factory=set)
    # request key -> token granted for it
    reservation_keys: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.hours_available is None:
            self.hours_available = self.duration_hours

    @property
    def duration_hours(self) -> float:
        return (minutes_of_day(self.end_time) - minutes_of_day(self.start_time)) / 60

    @property
    def booked_count(self) -> int:
        return len(self.booked_tokens)

    @property
    def window(self) -> tuple[time, time]:
        return self.start_time, self.end_time

    def overlaps(self, other: 'TimeSlot') -> bool:
        return self.start_time < other.end_time and other.start_time < self.end_time

    def lowest_free_token(self) -> int | None:
        for token_number in range(1, self.token_count + 1):
            if token_number not in self.booked_tokens:
                return token_number
        return None

    def to_dict(self) -> dict:
        return {
            'startTime': format_clock(self.start_time),
            'endTime': format_clock(self.end_time),
            'hoursAvailable': self.hours_available,
            'tokenCount': self.token_count,
            'bookedTokens': sorted(self.booked_tokens),
            'reservationKeys': dict(self.reservation_keys),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TimeSlot':
        return cls(
            start_time=parse_clock(data['startTime']),
            end_time=parse_clock(data['endTime']),
            token_count=int(data['tokenCount']),
            hours_available=data.get('hoursAvailable'),
            booked_tokens={int(token) for token in data.get('bookedTokens', [])},
            reservation_keys={str(key): int(token) for key, token in data.get('reservationKeys', {}).items()},
        )


@dataclass
class Availability:
    doctor_id: str
    day_of_week: int
    slots: list[TimeSlot]
    added_by: AuditStamp
    is_available: bool = True
    updated_by: AuditStamp | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # 0 until the store has persisted the record.
    version: int = 0

    @property
    def key(self) -> tuple[str, int]:
        return self.doctor_id, self.day_of_week

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    def slot(self, slot_index: int) -> TimeSlot:
        if slot_index < 0 or slot_index >= len(self.slots):
            raise NotFound(
                f'Slot {slot_index} not found for {self.day_name}.',
                doctor_id=self.doctor_id,
                day_of_week=self.day_of_week,
                slot_index=slot_index,
            )
        return self.slots[slot_index]

    def reservations(self) -> list[Reservation]:
        return [
            Reservation(self.doctor_id, self.day_of_week, slot_index, token_number)
            for slot_index, slot in enumerate(self.slots)
            for token_number in sorted(slot.booked_tokens)
        ]

    def copy(self) -> 'Availability':
        return copy.deepcopy(self)
