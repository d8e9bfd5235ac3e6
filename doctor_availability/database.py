from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from doctor_availability.core import config


def build_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Sync endpoints run in FastAPI's threadpool.
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked: set[str] = set()


def ensure_availability_schema(bind: Engine | None = None) -> None:
    """Add columns introduced after the first availability table shipped."""
    bind = bind or engine
    key = str(bind.url)

    if key in _availability_schema_checked:
        return

    with _schema_lock:
        if key in _availability_schema_checked:
            return

        inspector = inspect(bind)

        if 'doctor_availability' not in inspector.get_table_names():
            _availability_schema_checked.add(key)
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctor_availability')}
        migration_steps = [
            ('version', 'ALTER TABLE doctor_availability ADD COLUMN version INTEGER NOT NULL DEFAULT 1'),
            ('updated_by_id', 'ALTER TABLE doctor_availability ADD COLUMN updated_by_id VARCHAR'),
            ('updated_by_role', 'ALTER TABLE doctor_availability ADD COLUMN updated_by_role VARCHAR'),
            ('updated_by_name', 'ALTER TABLE doctor_availability ADD COLUMN updated_by_name VARCHAR'),
            ('updated_by_at', 'ALTER TABLE doctor_availability ADD COLUMN updated_by_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_doctor_availability_doctor_day '
                    'ON doctor_availability(doctor_id, day_of_week)'
                )
            )

        _availability_schema_checked.add(key)
