"""Public scheduling operations.

Every operation authorizes the actor against the doctor's branch before it
touches the store. Schedule edits surface ``VersionConflict`` to the caller,
who must reload and resubmit; token operations retry internally.
"""

import logging
from dataclasses import dataclass

from doctor_availability.core import config
from doctor_availability.schedule.actors import Actor
from doctor_availability.schedule.allocator import TokenAllocator
from doctor_availability.schedule.audit import AuditTrail
from doctor_availability.schedule.classifier import (
    SlotCapacity,
    SlotStatus,
    WeeklySummary,
    classify_availability,
    slot_capacity,
    summarize_week,
)
from doctor_availability.schedule.deadline import Deadline
from doctor_availability.schedule.errors import HasActiveBookings, NotFound, SlotValidationError, VersionConflict
from doctor_availability.schedule.scope import BranchScopeGuard, Permission
from doctor_availability.schedule.types import (
    Availability,
    DoctorProfile,
    Reservation,
    TimeSlot,
    format_clock,
)
from doctor_availability.schedule.validator import validate_day_of_week, validate_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityView:
    """An availability record with statuses computed at read time."""
    availability: Availability
    status: SlotStatus
    slot_capacities: list[SlotCapacity]


def annotate(availability: Availability) -> AvailabilityView:
    return AvailabilityView(
        availability=availability,
        status=classify_availability(availability),
        slot_capacities=[slot_capacity(slot, availability.is_available) for slot in availability.slots],
    )


def _resource_id(doctor_id: str, day_of_week: int) -> str:
    return f'{doctor_id}:{day_of_week}'


def _reservation_details(reservations: list[Reservation]) -> list[dict]:
    return [
        {'slotIndex': reservation.slot_index, 'tokenNumber': reservation.token_number}
        for reservation in reservations
    ]


class ScheduleService:
    def __init__(
        self,
        store,
        directory,
        audit: AuditTrail | None = None,
        allocator: TokenAllocator | None = None,
        tolerance_hours: float = config.HOURS_TOLERANCE,
        closed_days: frozenset[int] = config.CLOSED_DAYS,
    ) -> None:
        self.store = store
        self.directory = directory
        self.audit = audit or AuditTrail()
        self.guard = BranchScopeGuard(directory, self.audit)
        self.allocator = allocator or TokenAllocator(store)
        self.tolerance_hours = tolerance_hours
        self.closed_days = closed_days

    def open(self) -> None:
        self.store.open()

    def close(self) -> None:
        self.store.close()

    # Reads

    def list_doctors_in_branch(self, actor: Actor) -> list[DoctorProfile]:
        doctors = self.directory.list_active(self.guard.visible_branch(actor))
        self.audit.record(actor, 'READ', {'count': len(doctors)}, resource='doctors_list')
        return doctors

    def list_availability(
        self,
        actor: Actor,
        doctor_id: str | None = None,
        day_of_week: int | None = None,
        deadline: Deadline | None = None,
    ) -> list[AvailabilityView]:
        if doctor_id is not None:
            self.guard.authorize(actor, doctor_id, Permission.READ)
            doctor_ids = [doctor_id]
        else:
            doctor_ids = [doctor.id for doctor in self.directory.list_active(self.guard.visible_branch(actor))]

        records = self.store.list_for_doctors(doctor_ids, deadline)
        if day_of_week is not None:
            records = [record for record in records if record.day_of_week == day_of_week]

        self.audit.record(
            actor,
            'READ',
            {'filters': {'doctorId': doctor_id, 'dayOfWeek': day_of_week}, 'count': len(records)},
        )
        return [annotate(record) for record in records]

    def get_weekly_schedule(
        self,
        actor: Actor,
        doctor_id: str,
        deadline: Deadline | None = None,
    ) -> list[AvailabilityView]:
        self.guard.authorize(actor, doctor_id, Permission.READ)
        records = self.store.list_by_doctor(doctor_id, deadline)
        self.audit.record(actor, 'READ', {'doctorId': doctor_id, 'count': len(records)}, resource_id=doctor_id)
        return [annotate(record) for record in records]

    def get_weekly_summary(
        self,
        actor: Actor,
        doctor_id: str,
        deadline: Deadline | None = None,
    ) -> WeeklySummary:
        self.guard.authorize(actor, doctor_id, Permission.READ)
        return summarize_week(self.store.list_by_doctor(doctor_id, deadline))

    def peek_capacity(
        self,
        actor: Actor,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        deadline: Deadline | None = None,
    ) -> SlotCapacity:
        self.guard.authorize(actor, doctor_id, Permission.READ)
        validate_day_of_week(day_of_week, closed_days=frozenset())
        return self.allocator.peek_capacity(doctor_id, day_of_week, slot_index, deadline)

    # Schedule edits

    def upsert_day_slots(
        self,
        actor: Actor,
        doctor_id: str,
        day_of_week: int,
        slots: list[TimeSlot],
        *,
        is_available: bool = True,
        expected_version: int | None = None,
        force: bool = False,
        require_existing: bool = False,
        deadline: Deadline | None = None,
    ) -> AvailabilityView:
        """Replace the slot list of one day, creating the record if needed.

        Slots keep their bookings when their start and end times are
        unchanged. Dropping a slot that holds bookings needs ``force``.
        """
        self.guard.authorize(actor, doctor_id, Permission.WRITE)
        validate_day_of_week(day_of_week, self.closed_days)
        if not slots:
            raise SlotValidationError('At least one time slot is required.')
        validate_slots(slots, self.tolerance_hours)

        current = self.store.get(doctor_id, day_of_week, deadline)
        if current is None and require_existing:
            raise NotFound('Availability not found.', doctor_id=doctor_id, day_of_week=day_of_week)

        current_version = current.version if current else 0
        if expected_version is not None and expected_version != current_version:
            raise VersionConflict(
                'Availability was changed by someone else. Reload and try again.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                expected_version=expected_version,
                current_version=current_version,
            )

        merged, revoked = self._merge_slots(doctor_id, day_of_week, current, slots)
        if revoked and not force:
            raise HasActiveBookings(
                'Removing these slots would cancel booked tokens. Confirm with force to proceed.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                reservations=_reservation_details(revoked),
            )

        stamp = self.audit.stamp(actor)
        if current is None:
            record = Availability(
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                slots=merged,
                added_by=stamp,
                is_available=is_available,
            )
        else:
            record = current.copy()
            record.slots = merged
            record.is_available = is_available
            record.updated_by = stamp

        saved = self.store.put(record, current_version, deadline)

        if revoked:
            logger.warning(
                'Slot edit on %s/%s by %s revoked %s reservations: %s',
                doctor_id, day_of_week, actor.actor_id, len(revoked), _reservation_details(revoked),
            )
        logger.info(
            'Saved %s slots for doctor %s on day %s (version %s) by %s',
            len(saved.slots), doctor_id, day_of_week, saved.version, actor.actor_id,
        )
        self.audit.record(
            actor,
            'CREATE' if current is None else 'UPDATE',
            {
                'doctorId': doctor_id,
                'dayOfWeek': day_of_week,
                'slotsCount': len(saved.slots),
                'isAvailable': is_available,
                'version': saved.version,
                'revokedReservations': _reservation_details(revoked),
            },
            resource_id=_resource_id(doctor_id, day_of_week),
        )
        return annotate(saved)

    def update_day_slots(self, actor: Actor, doctor_id: str, day_of_week: int, slots: list[TimeSlot], **kwargs) -> AvailabilityView:
        return self.upsert_day_slots(actor, doctor_id, day_of_week, slots, require_existing=True, **kwargs)

    def delete_day(
        self,
        actor: Actor,
        doctor_id: str,
        day_of_week: int,
        *,
        force: bool = False,
        expected_version: int | None = None,
        deadline: Deadline | None = None,
    ) -> list[Reservation]:
        """Delete a day's record and return the reservations it revoked."""
        self.guard.authorize(actor, doctor_id, Permission.WRITE)
        validate_day_of_week(day_of_week, closed_days=frozenset())

        current = self.store.get(doctor_id, day_of_week, deadline)
        if current is None:
            raise NotFound('Availability not found.', doctor_id=doctor_id, day_of_week=day_of_week)
        if expected_version is not None and expected_version != current.version:
            raise VersionConflict(
                'Availability was changed by someone else. Reload and try again.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                expected_version=expected_version,
                current_version=current.version,
            )

        revoked = current.reservations()
        if revoked and not force:
            raise HasActiveBookings(
                f'{current.day_name} has {len(revoked)} booked tokens. Confirm with force to delete it.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                reservations=_reservation_details(revoked),
            )

        self.store.delete(doctor_id, day_of_week, current.version, deadline)

        if revoked:
            logger.warning(
                'Deleted %s for doctor %s by %s, revoking %s reservations: %s',
                current.day_name, doctor_id, actor.actor_id, len(revoked), _reservation_details(revoked),
            )
        else:
            logger.info('Deleted %s for doctor %s by %s', current.day_name, doctor_id, actor.actor_id)
        self.audit.record(
            actor,
            'DELETE',
            {
                'doctorId': doctor_id,
                'dayOfWeek': day_of_week,
                'forced': force,
                'revokedReservations': _reservation_details(revoked),
            },
            resource_id=_resource_id(doctor_id, day_of_week),
        )
        return revoked

    # Tokens

    def reserve_token(
        self,
        actor: Actor,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        *,
        token_number: int | None = None,
        request_key: str | None = None,
        deadline: Deadline | None = None,
    ) -> int:
        self.guard.authorize(actor, doctor_id, Permission.BOOK)
        validate_day_of_week(day_of_week, closed_days=frozenset())
        granted = self.allocator.reserve(
            doctor_id,
            day_of_week,
            slot_index,
            token_number=token_number,
            request_key=request_key,
            stamp=self.audit.stamp(actor),
            deadline=deadline,
        )
        self.audit.record(
            actor,
            'RESERVE',
            {'doctorId': doctor_id, 'dayOfWeek': day_of_week, 'slotIndex': slot_index, 'tokenNumber': granted},
            resource_id=_resource_id(doctor_id, day_of_week),
        )
        return granted

    def release_token(
        self,
        actor: Actor,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        token_number: int,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        self.guard.authorize(actor, doctor_id, Permission.BOOK)
        validate_day_of_week(day_of_week, closed_days=frozenset())
        self.allocator.release(
            doctor_id,
            day_of_week,
            slot_index,
            token_number,
            stamp=self.audit.stamp(actor),
            deadline=deadline,
        )
        self.audit.record(
            actor,
            'RELEASE',
            {'doctorId': doctor_id, 'dayOfWeek': day_of_week, 'slotIndex': slot_index, 'tokenNumber': token_number},
            resource_id=_resource_id(doctor_id, day_of_week),
        )

    def _merge_slots(
        self,
        doctor_id: str,
        day_of_week: int,
        current: Availability | None,
        incoming: list[TimeSlot],
    ) -> tuple[list[TimeSlot], list[Reservation]]:
        existing = {
            slot.window: (slot_index, slot)
            for slot_index, slot in enumerate(current.slots if current else [])
        }

        merged: list[TimeSlot] = []
        for slot in sorted(incoming, key=lambda item: item.start_time):
            fresh = TimeSlot(
                start_time=slot.start_time,
                end_time=slot.end_time,
                token_count=slot.token_count,
                hours_available=slot.hours_available,
            )
            _, previous = existing.pop(slot.window, (None, None))
            if previous is not None and previous.booked_tokens:
                highest = max(previous.booked_tokens)
                if slot.token_count < previous.booked_count or slot.token_count < highest:
                    raise SlotValidationError(
                        f'Slot {format_clock(slot.start_time)}-{format_clock(slot.end_time)} has '
                        f'{previous.booked_count} booked tokens (highest #{highest}); '
                        f'tokenCount cannot drop to {slot.token_count}.',
                        booked_tokens=sorted(previous.booked_tokens),
                        token_count=slot.token_count,
                    )
                fresh.booked_tokens = set(previous.booked_tokens)
                fresh.reservation_keys = dict(previous.reservation_keys)
            merged.append(fresh)

        revoked = [
            Reservation(doctor_id, day_of_week, slot_index, token_number)
            for slot_index, slot in sorted(existing.values(), key=lambda item: item[0])
            for token_number in sorted(slot.booked_tokens)
        ]
        return merged, revoked
