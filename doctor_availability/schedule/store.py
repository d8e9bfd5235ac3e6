"""Keyed storage for availability records with optimistic versioning.

Every write names the version it expects to replace. A mismatch raises
``VersionConflict`` instead of overwriting; ``expected_version=0`` means
the record must not exist yet. Successful writes bump ``version`` and stamp
``updated_at``.
"""

import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from doctor_availability.database import Base, ensure_availability_schema
from doctor_availability.models.availability import DoctorAvailability
from doctor_availability.schedule.audit import utcnow
from doctor_availability.schedule.deadline import Deadline, check_deadline
from doctor_availability.schedule.errors import DeadlineExceeded, VersionConflict
from doctor_availability.schedule.types import AuditStamp, Availability, TimeSlot

logger = logging.getLogger(__name__)


def _version_conflict(doctor_id: str, day_of_week: int, expected_version: int) -> VersionConflict:
    return VersionConflict(
        'Availability was changed by someone else. Reload and try again.',
        doctor_id=doctor_id,
        day_of_week=day_of_week,
        expected_version=expected_version,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands DateTime(timezone=True) columns back naive.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _stamp_from_row(actor_id, role, name, timestamp: datetime | None) -> AuditStamp | None:
    if actor_id is None:
        return None
    return AuditStamp(actor_id=actor_id, role=role, display_name=name, timestamp=_as_utc(timestamp))


def _to_availability(row: DoctorAvailability) -> Availability:
    return Availability(
        doctor_id=row.doctor_id,
        day_of_week=row.day_of_week,
        is_available=bool(row.is_available),
        slots=[TimeSlot.from_dict(slot) for slot in row.slots or []],
        added_by=_stamp_from_row(row.added_by_id, row.added_by_role, row.added_by_name, row.added_by_at),
        updated_by=_stamp_from_row(row.updated_by_id, row.updated_by_role, row.updated_by_name, row.updated_by_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        version=row.version,
    )


def _mutable_columns(availability: Availability) -> dict:
    updated_by = availability.updated_by
    return {
        'is_available': availability.is_available,
        'slots': [slot.to_dict() for slot in availability.slots],
        'updated_by_id': updated_by.actor_id if updated_by else None,
        'updated_by_role': updated_by.role if updated_by else None,
        'updated_by_name': updated_by.display_name if updated_by else None,
        'updated_by_at': updated_by.timestamp if updated_by else None,
    }


class SqlScheduleStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def open(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        ensure_availability_schema(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def _query(self, db: Session, doctor_id: str, day_of_week: int):
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.day_of_week == day_of_week,
        )

    def get(self, doctor_id: str, day_of_week: int, deadline: Deadline | None = None) -> Availability | None:
        check_deadline(deadline, 'availability read')
        db = self.session_factory()
        try:
            row = self._query(db, doctor_id, day_of_week).first()
            return _to_availability(row) if row else None
        finally:
            db.close()

    def list_by_doctor(self, doctor_id: str, deadline: Deadline | None = None) -> list[Availability]:
        return self.list_for_doctors([doctor_id], deadline)

    def list_for_doctors(self, doctor_ids: list[str], deadline: Deadline | None = None) -> list[Availability]:
        check_deadline(deadline, 'availability list')
        if not doctor_ids:
            return []
        db = self.session_factory()
        try:
            rows = db.query(DoctorAvailability).filter(
                DoctorAvailability.doctor_id.in_(doctor_ids),
            ).order_by(DoctorAvailability.doctor_id.asc(), DoctorAvailability.day_of_week.asc()).all()
            return [_to_availability(row) for row in rows]
        finally:
            db.close()

    def put(
        self,
        availability: Availability,
        expected_version: int,
        deadline: Deadline | None = None,
    ) -> Availability:
        check_deadline(deadline, 'availability write')
        doctor_id, day_of_week = availability.key
        now = utcnow()

        db = self.session_factory()
        try:
            if expected_version == 0:
                added_by = availability.added_by
                db.add(
                    DoctorAvailability(
                        doctor_id=doctor_id,
                        day_of_week=day_of_week,
                        added_by_id=added_by.actor_id,
                        added_by_role=added_by.role,
                        added_by_name=added_by.display_name,
                        added_by_at=added_by.timestamp,
                        created_at=now,
                        updated_at=now,
                        version=1,
                        **_mutable_columns(availability),
                    )
                )
                db.flush()
            else:
                # Creator stamp and created_at are never rewritten.
                result = db.execute(
                    update(DoctorAvailability)
                    .where(
                        DoctorAvailability.doctor_id == doctor_id,
                        DoctorAvailability.day_of_week == day_of_week,
                        DoctorAvailability.version == expected_version,
                    )
                    .values(
                        updated_at=now,
                        version=expected_version + 1,
                        **_mutable_columns(availability),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    db.rollback()
                    raise _version_conflict(doctor_id, day_of_week, expected_version)

            saved = _to_availability(self._query(db, doctor_id, day_of_week).one())
            self._commit(db, deadline, 'availability write')
            return saved
        except IntegrityError as exc:
            db.rollback()
            raise _version_conflict(doctor_id, day_of_week, expected_version) from exc
        finally:
            db.close()

    def delete(
        self,
        doctor_id: str,
        day_of_week: int,
        expected_version: int,
        deadline: Deadline | None = None,
    ) -> None:
        check_deadline(deadline, 'availability delete')
        db = self.session_factory()
        try:
            result = db.execute(
                delete(DoctorAvailability)
                .where(
                    DoctorAvailability.doctor_id == doctor_id,
                    DoctorAvailability.day_of_week == day_of_week,
                    DoctorAvailability.version == expected_version,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise _version_conflict(doctor_id, day_of_week, expected_version)
            self._commit(db, deadline, 'availability delete')
        finally:
            db.close()

    def _commit(self, db: Session, deadline: Deadline | None, operation: str) -> None:
        try:
            check_deadline(deadline, operation)
        except DeadlineExceeded:
            db.rollback()
            logger.warning('Rolled back %s: deadline passed before commit.', operation)
            raise
        db.commit()


class InMemoryScheduleStore:
    """Process-local store for development and tests.

    The lock only covers the compare-and-swap itself; records are copied in
    and out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, int], Availability] = {}
        self._lock = threading.Lock()

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def get(self, doctor_id: str, day_of_week: int, deadline: Deadline | None = None) -> Availability | None:
        check_deadline(deadline, 'availability read')
        with self._lock:
            record = self._records.get((doctor_id, day_of_week))
            return record.copy() if record else None

    def list_by_doctor(self, doctor_id: str, deadline: Deadline | None = None) -> list[Availability]:
        return self.list_for_doctors([doctor_id], deadline)

    def list_for_doctors(self, doctor_ids: list[str], deadline: Deadline | None = None) -> list[Availability]:
        check_deadline(deadline, 'availability list')
        wanted = set(doctor_ids)
        with self._lock:
            records = [record.copy() for key, record in self._records.items() if key[0] in wanted]
        return sorted(records, key=lambda record: record.key)

    def put(
        self,
        availability: Availability,
        expected_version: int,
        deadline: Deadline | None = None,
    ) -> Availability:
        check_deadline(deadline, 'availability write')
        key = availability.key
        now = utcnow()

        with self._lock:
            current = self._records.get(key)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise _version_conflict(key[0], key[1], expected_version)

            saved = availability.copy()
            saved.version = expected_version + 1
            saved.updated_at = now
            if current is None:
                saved.created_at = now
            else:
                saved.created_at = current.created_at
                saved.added_by = current.added_by
            self._records[key] = saved
            return saved.copy()

    def delete(
        self,
        doctor_id: str,
        day_of_week: int,
        expected_version: int,
        deadline: Deadline | None = None,
    ) -> None:
        check_deadline(deadline, 'availability delete')
        key = (doctor_id, day_of_week)
        with self._lock:
            current = self._records.get(key)
            if current is None or current.version != expected_version:
                raise _version_conflict(doctor_id, day_of_week, expected_version)
            del self._records[key]


def build_store(backend: str, engine: Engine | None = None):
    if backend == 'memory':
        return InMemoryScheduleStore()
    if backend == 'sql':
        if engine is None:
            raise ValueError('The sql schedule store needs an engine.')
        return SqlScheduleStore(engine)
    raise ValueError(f'Unknown schedule store backend {backend!r}.')
