"""Blackout model definitions."""

from sqlalchemy import Column, Date, Index, Integer, String

from clinic_scheduler.core.clock import MINUTES_PER_DAY, WindowSpan, to_date
from clinic_scheduler.database import Base


class BlackoutPeriod(Base):
    """Leave or other unavailability that removes a doctor's time.

    The period runs from ``start_min`` on ``start_date`` to ``end_min`` on
    ``end_date``; missing minutes mean the whole day.
    """
    __tablename__ = "blackout_periods"
    __table_args__ = (
        Index("idx_blackout_doctor_dates", "tenant_id", "doctor_id", "start_date", "end_date"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, nullable=False)
    doctor_id = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_min = Column(Integer, nullable=True)
    end_min = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)

    def segment_for(self, date_key: str) -> WindowSpan | None:
        day = to_date(date_key)
        if day < self.start_date or day > self.end_date:
            return None

        start = (self.start_min or 0) if day == self.start_date else 0
        end = self.end_min if day == self.end_date and self.end_min is not None else MINUTES_PER_DAY
        if end <= start:
            return None

        return WindowSpan(start, end)
