import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from doctor_availability.schedule.actors import DoctorActor, MasterAdmin, Receptionist, SubAdmin  # noqa: E402
from doctor_availability.schedule.audit import AuditTrail  # noqa: E402
from doctor_availability.schedule.directory import InMemoryDoctorDirectory  # noqa: E402
from doctor_availability.schedule.service import ScheduleService  # noqa: E402
from doctor_availability.schedule.store import InMemoryScheduleStore, SqlScheduleStore  # noqa: E402
from doctor_availability.schedule.types import DoctorProfile  # noqa: E402

NORTH = 'branch-north'
SOUTH = 'branch-south'


@pytest.fixture
def directory() -> InMemoryDoctorDirectory:
    return InMemoryDoctorDirectory([
        DoctorProfile(id='doc-1', first_name='Asha', last_name='Rao', branch_id=NORTH, specialization='Cardiology'),
        DoctorProfile(id='doc-2', first_name='Bilal', last_name='Khan', branch_id=NORTH),
        DoctorProfile(id='doc-3', first_name='Chen', last_name='Wei', branch_id=SOUTH),
        DoctorProfile(id='doc-4', first_name='Dana', last_name='Ortiz', branch_id=NORTH, is_active=False),
    ])


@pytest.fixture
def sub_admin() -> SubAdmin:
    return SubAdmin(actor_id='admin-1', display_name='Nora Admin', branch_id=NORTH)


@pytest.fixture
def receptionist() -> Receptionist:
    return Receptionist(actor_id='desk-1', display_name='Front Desk', branch_id=NORTH)


@pytest.fixture
def doctor_actor() -> DoctorActor:
    return DoctorActor(actor_id='user-doc-1', display_name='Dr. Asha Rao', branch_id=NORTH, doctor_id='doc-1')


@pytest.fixture
def master_admin() -> MasterAdmin:
    return MasterAdmin(actor_id='root', display_name='Master Admin')


@pytest.fixture
def memory_store() -> InMemoryScheduleStore:
    return InMemoryScheduleStore()


@pytest.fixture
def sql_engine():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sql_store(sql_engine) -> SqlScheduleStore:
    store = SqlScheduleStore(sql_engine)
    store.open()
    return store


@pytest.fixture
def service(memory_store, directory) -> ScheduleService:
    return ScheduleService(memory_store, directory, AuditTrail())
