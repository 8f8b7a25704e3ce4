"""Visit model definitions."""

import uuid

from sqlalchemy import Column, Date, String

from clinic_scheduler.database import Base


class Visit(Base):
    """Minimal clinical visit record linked from completed appointments."""
    __tablename__ = "visits"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    patient_id = Column(String, nullable=False)
    doctor_id = Column(String, nullable=False)
    visit_date = Column(Date, nullable=False)
    department = Column(String, nullable=True)
    reason = Column(String, nullable=True)
    appointment_id = Column(String, nullable=True)
