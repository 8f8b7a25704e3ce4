"""Linkage between completed appointments and clinical visit records."""

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from clinic_scheduler.core.clock import to_date
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.visit import Visit

logger = logging.getLogger(__name__)


class VisitLinkError(Exception):
    pass


class VisitLinker(Protocol):
    def link_or_create_visit(self, appointment_id: str, patient_id: str | None, doctor_id: str, date_key: str) -> str:
        ...


class DatabaseVisitLinker:
    """Reuses the patient's visit with the same doctor on the same day, or opens one.

    Writes happen in the caller's session and are committed together with the
    appointment's status change.
    """

    def __init__(self, db: Session, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id

    def link_or_create_visit(self, appointment_id: str, patient_id: str | None, doctor_id: str, date_key: str) -> str:
        if not patient_id:
            raise VisitLinkError('Guest appointments need a patient record before a visit can be linked.')

        visit_date = to_date(date_key)
        existing = self.db.query(Visit).filter(
            Visit.tenant_id == self.tenant_id,
            Visit.patient_id == patient_id,
            Visit.doctor_id == doctor_id,
            Visit.visit_date == visit_date,
        ).first()
        if existing:
            return existing.id

        appointment = self.db.get(Appointment, appointment_id)
        visit = Visit(
            tenant_id=self.tenant_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            visit_date=visit_date,
            department=appointment.department if appointment else None,
            reason=appointment.reason if appointment else None,
            appointment_id=appointment_id,
        )
        self.db.add(visit)
        self.db.flush()

        logger.info('Opened visit %s for appointment %s', visit.id, appointment_id)
        return visit.id
