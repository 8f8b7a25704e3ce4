from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.clock import Clock, system_clock
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.database import SessionLocal, ensure_appointment_schema, ensure_availability_schema
from clinic_scheduler.services.booking import BookingCoordinator

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

clock: Clock = system_clock


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def to_http_exception(error: SchedulingError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)


def current_time() -> datetime:
    return clock()


def build_coordinator(db: Session, tenant_id: str) -> BookingCoordinator:
    return BookingCoordinator(db, tenant_id, clock=clock)
