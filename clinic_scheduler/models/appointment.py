"""Appointment model definitions."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, text

from clinic_scheduler.core.clock import to_date_key
from clinic_scheduler.database import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CHECKED_IN = "CheckedIn"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Statuses that occupy the doctor's time.
BLOCKING_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CHECKED_IN.value,
    AppointmentStatus.IN_PROGRESS.value,
    AppointmentStatus.COMPLETED.value,
)

ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CHECKED_IN.value,
    AppointmentStatus.IN_PROGRESS.value,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """Represents a booked clinical appointment."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_date", "tenant_id", "doctor_id", "date", "start_min", "end_min"),
        Index(
            "uq_appointments_active_slot",
            "tenant_id",
            "doctor_id",
            "date",
            "start_min",
            unique=True,
            sqlite_where=text("status != 'Cancelled'"),
            postgresql_where=text("status != 'Cancelled'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False)
    patient_id = Column(String, nullable=True, index=True)
    guest_name = Column(String, nullable=True)
    doctor_id = Column(String, nullable=False)
    department = Column(String, nullable=False, default="General")
    date = Column(Date, nullable=False)
    start_min = Column(Integer, nullable=False)
    end_min = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    cancel_reason = Column(String, nullable=True)
    visit_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def date_key(self) -> str:
        return to_date_key(self.date)
