"""Schedule lock model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from clinic_scheduler.database import Base


class ScheduleLock(Base):
    """One row per serialization scope, locked with SELECT ... FOR UPDATE or rewritten on SQLite."""
    __tablename__ = "schedule_locks"

    lock_key = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    acquired_at = Column(DateTime(timezone=True), nullable=True)
