from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_windows' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_doctor_day '
                    'ON availability_windows(tenant_id, doctor_id, day_of_week)'
                )
            )
            if 'blackout_periods' in inspector.get_table_names():
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_blackout_doctor_dates '
                        'ON blackout_periods(tenant_id, doctor_id, start_date, end_date)'
                    )
                )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        table_names = inspector.get_table_names()
        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        lock_columns = (
            {column['name'] for column in inspector.get_columns('schedule_locks')}
            if 'schedule_locks' in table_names
            else None
        )
        migration_steps = [
            ('guest_name', 'ALTER TABLE appointments ADD COLUMN guest_name VARCHAR'),
            ('location', 'ALTER TABLE appointments ADD COLUMN location VARCHAR'),
            ('cancel_reason', 'ALTER TABLE appointments ADD COLUMN cancel_reason VARCHAR'),
            ('visit_id', 'ALTER TABLE appointments ADD COLUMN visit_id VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            if lock_columns is not None and 'acquired_at' not in lock_columns:
                connection.execute(text('ALTER TABLE schedule_locks ADD COLUMN acquired_at TIMESTAMP'))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date '
                    'ON appointments(tenant_id, doctor_id, date, start_min, end_min)'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    'ON appointments(tenant_id, doctor_id, date, start_min) '
                    "WHERE status != 'Cancelled'"
                )
            )

        _appointment_schema_checked = True
