"""Availability model definitions."""

from sqlalchemy import Column, Index, Integer, String

from clinic_scheduler.core.clock import WindowSpan
from clinic_scheduler.database import Base


class AvailabilityWindow(Base):
    """A doctor's recurring weekly availability on one weekday."""
    __tablename__ = "availability_windows"
    __table_args__ = (
        Index("idx_availability_doctor_day", "tenant_id", "doctor_id", "day_of_week"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    doctor_id = Column(String, nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_min = Column(Integer, nullable=False)
    end_min = Column(Integer, nullable=False)

    def span(self) -> WindowSpan:
        return WindowSpan(self.start_min, self.end_min)


class DefaultAvailabilityWindow(Base):
    """Clinic-wide fallback window for doctors without custom availability."""
    __tablename__ = "default_availability_windows"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    start_min = Column(Integer, nullable=False)
    end_min = Column(Integer, nullable=False)

    def span(self) -> WindowSpan:
        return WindowSpan(self.start_min, self.end_min)
