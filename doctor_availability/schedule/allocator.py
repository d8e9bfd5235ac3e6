"""Token reservation against a single slot's capacity.

Reservations are read-modify-write cycles against the store, guarded by the
record version. When another writer wins the race the whole cycle is redone
from a fresh read, up to ``max_attempts`` times, after which the caller gets
``Contention``. No lock is held between the read and the write.
"""

import logging
import random
import time

from doctor_availability.core import config
from doctor_availability.schedule.classifier import SlotCapacity, slot_capacity
from doctor_availability.schedule.deadline import Deadline
from doctor_availability.schedule.errors import (
    CapacityExceeded,
    Contention,
    DayUnavailable,
    NotFound,
    SlotValidationError,
    TokenTaken,
    VersionConflict,
)
from doctor_availability.schedule.types import DAY_NAMES, AuditStamp, Availability, TimeSlot

logger = logging.getLogger(__name__)


class TokenAllocator:
    def __init__(
        self,
        store,
        max_attempts: int = config.TOKEN_RESERVE_MAX_ATTEMPTS,
        backoff_seconds: float = config.TOKEN_RESERVE_BACKOFF_SECONDS,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def reserve(
        self,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        *,
        token_number: int | None = None,
        request_key: str | None = None,
        stamp: AuditStamp | None = None,
        deadline: Deadline | None = None,
    ) -> int:
        """Grant a token in the slot: ``token_number`` when given, otherwise
        the lowest free one.

        A ``request_key`` seen before on this slot returns the token already
        granted for it, so retrying a reserve whose outcome was lost does not
        consume a second token.
        """
        for attempt in range(1, self.max_attempts + 1):
            record = self._load(doctor_id, day_of_week, deadline)
            if not record.is_available:
                raise DayUnavailable(
                    f'Doctor is not available on {record.day_name}.',
                    doctor_id=doctor_id,
                    day_of_week=day_of_week,
                )
            slot = record.slot(slot_index)

            if request_key is not None and request_key in slot.reservation_keys:
                granted = slot.reservation_keys[request_key]
                logger.info(
                    'Reserve for %s/%s slot %s replayed request %s -> token %s',
                    doctor_id, day_of_week, slot_index, request_key, granted,
                )
                return granted

            if token_number is not None:
                self._check_requested(slot, token_number, doctor_id, day_of_week, slot_index)
                granted = token_number
            else:
                granted = slot.lowest_free_token()
            if granted is None:
                raise CapacityExceeded(
                    'All tokens for this time slot are booked.',
                    doctor_id=doctor_id,
                    day_of_week=day_of_week,
                    slot_index=slot_index,
                    capacity=slot.token_count,
                )

            slot.booked_tokens.add(granted)
            if request_key is not None:
                slot.reservation_keys[request_key] = granted
            if stamp is not None:
                record.updated_by = stamp

            try:
                self.store.put(record, record.version, deadline)
            except VersionConflict:
                self._back_off(attempt, doctor_id, day_of_week, slot_index, deadline)
                continue

            logger.info(
                'Reserved token %s of %s for %s/%s slot %s (attempt %s)',
                granted, slot.token_count, doctor_id, day_of_week, slot_index, attempt,
            )
            return granted

        raise self._contention(doctor_id, day_of_week, slot_index)

    def release(
        self,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        token_number: int,
        *,
        stamp: AuditStamp | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Return a token to the slot. Releasing a free token is a no-op."""
        for attempt in range(1, self.max_attempts + 1):
            record = self._load(doctor_id, day_of_week, deadline)
            slot = record.slot(slot_index)

            if token_number not in slot.booked_tokens:
                logger.debug(
                    'Token %s for %s/%s slot %s already free',
                    token_number, doctor_id, day_of_week, slot_index,
                )
                return

            slot.booked_tokens.discard(token_number)
            slot.reservation_keys = {
                key: token for key, token in slot.reservation_keys.items() if token != token_number
            }
            if stamp is not None:
                record.updated_by = stamp

            try:
                self.store.put(record, record.version, deadline)
            except VersionConflict:
                self._back_off(attempt, doctor_id, day_of_week, slot_index, deadline)
                continue

            logger.info('Released token %s for %s/%s slot %s', token_number, doctor_id, day_of_week, slot_index)
            return

        raise self._contention(doctor_id, day_of_week, slot_index)

    def peek_capacity(
        self,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        deadline: Deadline | None = None,
    ) -> SlotCapacity:
        record = self._load(doctor_id, day_of_week, deadline)
        return slot_capacity(record.slot(slot_index), record.is_available)

    def _check_requested(
        self,
        slot: TimeSlot,
        token_number: int,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
    ) -> None:
        if token_number < 1 or token_number > slot.token_count:
            raise SlotValidationError(
                f'Token number must be between 1 and {slot.token_count}.',
                token_number=token_number,
                capacity=slot.token_count,
            )
        if token_number in slot.booked_tokens:
            raise TokenTaken(
                f'Token number {token_number} is already booked.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                slot_index=slot_index,
                token_number=token_number,
            )

    def _load(self, doctor_id: str, day_of_week: int, deadline: Deadline | None) -> Availability:
        record = self.store.get(doctor_id, day_of_week, deadline)
        if record is None:
            raise NotFound(
                f'No availability for {DAY_NAMES[day_of_week] if 0 <= day_of_week <= 6 else day_of_week}.',
                doctor_id=doctor_id,
                day_of_week=day_of_week,
            )
        return record

    def _back_off(
        self,
        attempt: int,
        doctor_id: str,
        day_of_week: int,
        slot_index: int,
        deadline: Deadline | None,
    ) -> None:
        logger.debug('Version race on %s/%s slot %s, attempt %s', doctor_id, day_of_week, slot_index, attempt)
        if attempt >= self.max_attempts:
            return
        delay = random.uniform(0, self.backoff_seconds * attempt)
        if deadline is not None:
            delay = min(delay, deadline.remaining())
        if delay > 0:
            time.sleep(delay)

    def _contention(self, doctor_id: str, day_of_week: int, slot_index: int) -> Contention:
        logger.warning(
            'Gave up on %s/%s slot %s after %s version conflicts',
            doctor_id, day_of_week, slot_index, self.max_attempts,
        )
        return Contention(
            'The time slot is busy. Please try again.',
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            slot_index=slot_index,
        )
