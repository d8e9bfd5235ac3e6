import threading
from datetime import datetime, time, timezone

import pytest

from doctor_availability.schedule.allocator import TokenAllocator
from doctor_availability.schedule.classifier import SlotStatus
from doctor_availability.schedule.deadline import Deadline
from doctor_availability.schedule.errors import (
    CapacityExceeded,
    Contention,
    DayUnavailable,
    DeadlineExceeded,
    NotFound,
    SlotValidationError,
    TokenTaken,
    VersionConflict,
)
from doctor_availability.schedule.store import InMemoryScheduleStore
from doctor_availability.schedule.types import AuditStamp, Availability, TimeSlot

CREATOR = AuditStamp('admin-1', 'sub_admin', 'Nora Admin', datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc))
DESK = AuditStamp('desk-1', 'receptionist', 'Front Desk', datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))


def seed(store, token_count: int = 3, is_available: bool = True) -> None:
    store.put(
        Availability(
            doctor_id='doc-1',
            day_of_week=1,
            slots=[TimeSlot(start_time=time(9, 0), end_time=time(10, 0), token_count=token_count)],
            added_by=CREATOR,
            is_available=is_available,
        ),
        expected_version=0,
    )


def booked(store) -> set[int]:
    return store.get('doc-1', 1).slots[0].booked_tokens


@pytest.fixture
def allocator(memory_store) -> TokenAllocator:
    return TokenAllocator(memory_store, max_attempts=5, backoff_seconds=0)


def test_reserve_hands_out_lowest_free_tokens_until_full(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)

    assert [allocator.reserve('doc-1', 1, 0) for _ in range(3)] == [1, 2, 3]

    with pytest.raises(CapacityExceeded) as exception_info:
        allocator.reserve('doc-1', 1, 0)
    assert exception_info.value.details['capacity'] == 3

    allocator.release('doc-1', 1, 0, 2)
    assert booked(memory_store) == {1, 3}

    assert allocator.reserve('doc-1', 1, 0) == 2
    assert booked(memory_store) == {1, 2, 3}


def test_reserve_works_against_sql_store(sql_store) -> None:
    seed(sql_store, token_count=2)
    allocator = TokenAllocator(sql_store, backoff_seconds=0)

    assert allocator.reserve('doc-1', 1, 0) == 1
    assert allocator.reserve('doc-1', 1, 0) == 2
    with pytest.raises(CapacityExceeded):
        allocator.reserve('doc-1', 1, 0)
    assert booked(sql_store) == {1, 2}


def test_release_is_idempotent(memory_store, allocator) -> None:
    seed(memory_store)
    allocator.reserve('doc-1', 1, 0)
    allocator.reserve('doc-1', 1, 0)

    allocator.release('doc-1', 1, 0, 1)
    version_after_first_release = memory_store.get('doc-1', 1).version
    allocator.release('doc-1', 1, 0, 1)

    assert booked(memory_store) == {2}
    assert memory_store.get('doc-1', 1).version == version_after_first_release


def test_release_of_never_booked_token_is_a_no_op(memory_store, allocator) -> None:
    seed(memory_store)

    allocator.release('doc-1', 1, 0, 3)

    assert booked(memory_store) == set()
    assert memory_store.get('doc-1', 1).version == 1


def test_reserve_with_repeated_request_key_returns_same_token(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)

    first = allocator.reserve('doc-1', 1, 0, request_key='appt-42')
    retried = allocator.reserve('doc-1', 1, 0, request_key='appt-42')
    other = allocator.reserve('doc-1', 1, 0, request_key='appt-43')

    assert first == retried == 1
    assert other == 2
    assert booked(memory_store) == {1, 2}


def test_release_forgets_request_key(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)
    allocator.reserve('doc-1', 1, 0, request_key='appt-42')

    allocator.release('doc-1', 1, 0, 1)

    assert memory_store.get('doc-1', 1).slots[0].reservation_keys == {}


def test_reserve_stamps_updated_by(memory_store, allocator) -> None:
    seed(memory_store)

    allocator.reserve('doc-1', 1, 0, stamp=DESK)

    record = memory_store.get('doc-1', 1)
    assert record.updated_by == DESK
    assert record.added_by == CREATOR


def test_reserve_missing_day_or_slot_is_not_found(memory_store, allocator) -> None:
    with pytest.raises(NotFound):
        allocator.reserve('doc-1', 2, 0)

    seed(memory_store)
    with pytest.raises(NotFound):
        allocator.reserve('doc-1', 1, 1)
    with pytest.raises(NotFound):
        allocator.release('doc-1', 1, -1, 1)


def test_reserve_on_deactivated_day_is_rejected(memory_store, allocator) -> None:
    seed(memory_store, is_available=False)

    with pytest.raises(DayUnavailable):
        allocator.reserve('doc-1', 1, 0)


def test_peek_capacity_is_read_only(memory_store, allocator) -> None:
    seed(memory_store, token_count=5)
    for _ in range(4):
        allocator.reserve('doc-1', 1, 0)

    capacity = allocator.peek_capacity('doc-1', 1, 0)

    assert (capacity.capacity, capacity.booked, capacity.available) == (5, 4, 1)
    assert capacity.status == SlotStatus.ALMOST_FULL
    assert memory_store.get('doc-1', 1).version == 5


class RacingStore(InMemoryScheduleStore):
    """Lets a competing reservation commit between our read and our write."""

    def __init__(self, competing_writes: int) -> None:
        super().__init__()
        self.competing_writes = competing_writes
        self.put_calls = 0

    def put(self, availability, expected_version, deadline=None):
        self.put_calls += 1
        if self.competing_writes and expected_version > 0:
            self.competing_writes -= 1
            rival = super().get(availability.doctor_id, availability.day_of_week)
            rival.slots[0].booked_tokens.add(rival.slots[0].lowest_free_token())
            super().put(rival, rival.version)
        return super().put(availability, expected_version, deadline)


def test_reserve_retries_after_losing_a_race() -> None:
    store = RacingStore(competing_writes=1)
    seed(store, token_count=3)
    allocator = TokenAllocator(store, max_attempts=3, backoff_seconds=0)

    token_number = allocator.reserve('doc-1', 1, 0)

    # The rival took token 1, so the retry must pick 2 rather than reuse 1.
    assert token_number == 2
    assert booked(store) == {1, 2}


def test_reserve_reports_capacity_when_race_loser_finds_slot_full() -> None:
    store = RacingStore(competing_writes=1)
    seed(store, token_count=1)
    allocator = TokenAllocator(store, max_attempts=3, backoff_seconds=0)

    with pytest.raises(CapacityExceeded):
        allocator.reserve('doc-1', 1, 0)
    assert booked(store) == {1}


def test_reserve_gives_up_with_contention_after_bounded_attempts() -> None:
    store = RacingStore(competing_writes=100)
    seed(store, token_count=50)
    allocator = TokenAllocator(store, max_attempts=3, backoff_seconds=0)

    with pytest.raises(Contention):
        allocator.reserve('doc-1', 1, 0)

    # seed + three losing attempts
    assert store.put_calls == 4


def test_reserve_stops_when_deadline_has_passed(memory_store, allocator) -> None:
    seed(memory_store)

    with pytest.raises(DeadlineExceeded):
        allocator.reserve('doc-1', 1, 0, deadline=Deadline(expires_at=0))
    assert booked(memory_store) == set()


@pytest.mark.parametrize('callers', [2, 8, 25])
def test_concurrent_reserves_on_last_token_grant_exactly_one(memory_store, callers: int) -> None:
    seed(memory_store, token_count=1)
    allocator = TokenAllocator(memory_store, max_attempts=5, backoff_seconds=0.001)
    barrier = threading.Barrier(callers)
    outcomes = []
    outcomes_lock = threading.Lock()

    def reserve() -> None:
        barrier.wait()
        try:
            result = allocator.reserve('doc-1', 1, 0)
        except CapacityExceeded as exc:
            result = exc
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=reserve) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    granted = [outcome for outcome in outcomes if outcome == 1]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, CapacityExceeded)]
    assert len(granted) == 1
    assert len(rejected) == callers - 1
    assert booked(memory_store) == {1}


def test_concurrent_reserves_never_exceed_capacity(memory_store) -> None:
    seed(memory_store, token_count=10)
    allocator = TokenAllocator(memory_store, max_attempts=50, backoff_seconds=0.001)
    barrier = threading.Barrier(16)
    granted = []
    granted_lock = threading.Lock()

    def reserve() -> None:
        barrier.wait()
        try:
            token_number = allocator.reserve('doc-1', 1, 0)
        except CapacityExceeded:
            return
        with granted_lock:
            granted.append(token_number)

    threads = [threading.Thread(target=reserve) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(granted) == list(range(1, 11))
    assert booked(memory_store) == set(range(1, 11))


def test_release_retries_after_losing_a_race() -> None:
    store = RacingStore(competing_writes=0)
    seed(store, token_count=3)
    allocator = TokenAllocator(store, max_attempts=2, backoff_seconds=0)
    allocator.reserve('doc-1', 1, 0)
    store.competing_writes = 1

    try:
        allocator.release('doc-1', 1, 0, 1)
    except VersionConflict:
        pytest.fail('release leaked a VersionConflict')

    assert booked(store) == {2}


def test_reserve_grants_requested_token_number(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)

    assert allocator.reserve('doc-1', 1, 0, token_number=3) == 3
    assert allocator.reserve('doc-1', 1, 0) == 1
    assert booked(memory_store) == {1, 3}


def test_reserve_rejects_requested_token_already_booked(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)
    allocator.reserve('doc-1', 1, 0, token_number=2)

    with pytest.raises(TokenTaken) as exception_info:
        allocator.reserve('doc-1', 1, 0, token_number=2)

    assert exception_info.value.status_code == 409
    assert exception_info.value.details['token_number'] == 2
    assert booked(memory_store) == {2}


@pytest.mark.parametrize('token_number', [0, -1, 4])
def test_reserve_rejects_requested_token_outside_slot(memory_store, allocator, token_number: int) -> None:
    seed(memory_store, token_count=3)

    with pytest.raises(SlotValidationError):
        allocator.reserve('doc-1', 1, 0, token_number=token_number)

    assert booked(memory_store) == set()


def test_reserve_requested_token_replays_request_key(memory_store, allocator) -> None:
    seed(memory_store, token_count=3)

    first = allocator.reserve('doc-1', 1, 0, token_number=2, request_key='appt-7')
    retried = allocator.reserve('doc-1', 1, 0, token_number=2, request_key='appt-7')

    assert first == retried == 2
    assert memory_store.get('doc-1', 1).slots[0].reservation_keys == {'appt-7': 2}


def test_requested_token_taken_by_race_winner_is_reported() -> None:
    store = RacingStore(competing_writes=1)
    seed(store, token_count=3)
    allocator = TokenAllocator(store, max_attempts=3, backoff_seconds=0)

    # The rival books token 1 between our read and our write.
    with pytest.raises(TokenTaken):
        allocator.reserve('doc-1', 1, 0, token_number=1)

    assert booked(store) == {1}


@pytest.mark.parametrize('callers', [2, 8])
def test_concurrent_reserves_of_same_token_number_grant_exactly_one(memory_store, callers: int) -> None:
    seed(memory_store, token_count=5)
    allocator = TokenAllocator(memory_store, max_attempts=5, backoff_seconds=0.001)
    barrier = threading.Barrier(callers)
    outcomes = []
    outcomes_lock = threading.Lock()

    def reserve() -> None:
        barrier.wait()
        try:
            result = allocator.reserve('doc-1', 1, 0, token_number=4)
        except TokenTaken as exc:
            result = exc
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=reserve) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(4) == 1
    assert len([outcome for outcome in outcomes if isinstance(outcome, TokenTaken)]) == callers - 1
    assert booked(memory_store) == {4}


def test_retryable_errors_say_so_in_their_payload() -> None:
    store = RacingStore(competing_writes=100)
    seed(store, token_count=50)
    allocator = TokenAllocator(store, max_attempts=2, backoff_seconds=0)

    with pytest.raises(Contention) as exception_info:
        allocator.reserve('doc-1', 1, 0)

    assert exception_info.value.to_dict()['retryable'] is True
    assert CapacityExceeded('full').to_dict()['retryable'] is False
    assert VersionConflict('stale').to_dict() == {'error': 'version_conflict', 'message': 'stale', 'retryable': True}
    assert DeadlineExceeded('late').to_dict()['retryable'] is True
