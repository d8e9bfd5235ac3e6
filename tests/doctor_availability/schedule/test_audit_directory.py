import logging

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from doctor_availability.database import Base
from doctor_availability.models.audit_log import AuditLogEntry
from doctor_availability.models.doctor import Doctor
from doctor_availability.schedule.audit import AuditTrail
from doctor_availability.schedule.directory import SqlDoctorDirectory
from doctor_availability.schedule.errors import Forbidden
from doctor_availability.schedule.scope import BranchScopeGuard, Permission


@pytest.fixture
def session_factory(sql_engine):
    Base.metadata.create_all(bind=sql_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=sql_engine)


def audit_rows(session_factory) -> list[AuditLogEntry]:
    db = session_factory()
    try:
        return db.query(AuditLogEntry).order_by(AuditLogEntry.id.asc()).all()
    finally:
        db.close()


def test_audit_trail_persists_entries(session_factory, sub_admin) -> None:
    trail = AuditTrail(session_factory)

    trail.record(sub_admin, 'UPDATE', {'dayOfWeek': 1, 'slotsCount': 2}, resource_id='doc-1:1')

    [row] = audit_rows(session_factory)
    assert row.actor_id == 'admin-1'
    assert row.actor_role == 'sub_admin'
    assert row.branch_id == 'branch-north'
    assert row.action == 'UPDATE'
    assert row.resource == 'doctor_availability'
    assert row.resource_id == 'doc-1:1'
    assert row.details == {'dayOfWeek': 1, 'slotsCount': 2}
    assert row.success is True


def test_denied_access_is_audited(session_factory, directory, sub_admin) -> None:
    guard = BranchScopeGuard(directory, AuditTrail(session_factory))

    with pytest.raises(Forbidden):
        guard.authorize(sub_admin, 'doc-3', Permission.WRITE)

    [row] = audit_rows(session_factory)
    assert row.action == 'DENIED'
    assert row.success is False
    assert row.error_message == 'doctor belongs to another branch'


def test_audit_failure_does_not_fail_the_caller(sql_engine, sub_admin, caplog) -> None:
    # No tables created, so the insert fails.
    trail = AuditTrail(sessionmaker(bind=sql_engine))

    with caplog.at_level(logging.ERROR, logger='doctor_availability.schedule.audit'):
        trail.record(sub_admin, 'READ', {})

    assert 'Failed to save audit log entry' in caplog.text
    with pytest.raises(OperationalError):
        audit_rows(sessionmaker(bind=sql_engine))


def test_audit_stamp_copies_actor_identity(doctor_actor) -> None:
    stamp = AuditTrail().stamp(doctor_actor)

    assert (stamp.actor_id, stamp.role, stamp.display_name) == ('user-doc-1', 'doctor', 'Dr. Asha Rao')
    assert stamp.timestamp.tzinfo is not None


def test_sql_directory_lists_active_doctors_by_branch(session_factory) -> None:
    db = session_factory()
    db.add_all([
        Doctor(id='doc-1', first_name='Asha', last_name='Rao', branch_id='branch-north', email='asha@example.org'),
        Doctor(id='doc-2', first_name='Aaron', last_name='Bell', branch_id='branch-north', email='aaron@example.org'),
        Doctor(id='doc-3', first_name='Chen', last_name='Wei', branch_id='branch-south', email='chen@example.org'),
        Doctor(
            id='doc-4',
            first_name='Dana',
            last_name='Ortiz',
            branch_id='branch-north',
            email='dana@example.org',
            is_active=False,
        ),
    ])
    db.commit()
    db.close()
    directory = SqlDoctorDirectory(session_factory)

    assert [doctor.id for doctor in directory.list_active('branch-north')] == ['doc-2', 'doc-1']
    assert [doctor.id for doctor in directory.list_active()] == ['doc-2', 'doc-1', 'doc-3']
    assert directory.get('doc-4').is_active is False
    assert directory.get('doc-3').full_name == 'Chen Wei'
    assert directory.get('missing') is None
