from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import Actor, ensure_doctor_scope, get_current_actor, require_staff
from clinic_scheduler.core import config
from clinic_scheduler.core.clock import format_local_iso, minutes_until, parse_local_instant, today_local
from clinic_scheduler.core.errors import InvalidTimestampError, SchedulingError, SlotNoLongerAvailableError
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.routes import common
from clinic_scheduler.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.services.booking import BookingCoordinator

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 500
MAX_QUEUE_DAYS = 7


def _normalize_optional_text(value: str | None, field_name: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'{field_name} must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class SlotSelection(BaseModel):
    """A requested start, either as ``date`` + ``start_min`` or as a ``slot_start`` timestamp."""

    date: str | None = None
    start_min: int | None = None
    slot_start: str | None = None
    duration_min: int | None = None

    def resolve_start(self) -> tuple[str, int]:
        if self.slot_start:
            parsed = parse_local_instant(self.slot_start)
            return parsed.date_key, parsed.minute_of_day

        if self.date is None or self.start_min is None:
            raise InvalidTimestampError('Provide slot_start, or both date and start_min.')

        return self.date.strip(), self.start_min


class CreateAppointmentRequest(SlotSelection):
    doctor_id: str
    patient_id: str | None = None
    guest_name: str | None = None
    department: str = 'General'
    reason: str | None = None
    location: str | None = None

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Doctor is required.')
        return normalized

    @field_validator('patient_id', 'guest_name', 'location')
    @classmethod
    def validate_identity(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('department')
    @classmethod
    def validate_department(cls, value: str) -> str:
        return value.strip() or 'General'

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, 'Reason')


class RescheduleRequest(SlotSelection):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, 'Reason')


class CancelRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, 'Cancel reason')


class CompleteRequest(BaseModel):
    defer_visit_link: bool = False


class AppointmentResponse(BaseModel):
    id: str
    doctor_id: str
    patient_id: str | None = None
    guest_name: str | None = None
    department: str
    date: date
    start_min: int
    end_min: int
    slot_start: str
    slot_end: str
    status: str
    reason: str | None = None
    location: str | None = None
    cancel_reason: str | None = None
    visit_id: str | None = None
    can_cancel: bool
    can_reschedule: bool


def to_appointment_response(appointment: Appointment, coordinator: BookingCoordinator) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        guest_name=appointment.guest_name,
        department=appointment.department,
        date=appointment.date,
        start_min=appointment.start_min,
        end_min=appointment.end_min,
        slot_start=format_local_iso(appointment.date_key, appointment.start_min),
        slot_end=format_local_iso(appointment.date_key, appointment.end_min),
        status=appointment.status,
        reason=appointment.reason,
        location=appointment.location,
        cancel_reason=appointment.cancel_reason,
        visit_id=appointment.visit_id,
        can_cancel=coordinator.can_cancel(appointment),
        can_reschedule=coordinator.can_reschedule(appointment),
    )


def ensure_appointment_access(actor: Actor, appointment: Appointment) -> None:
    ensure_doctor_scope(actor, appointment.doctor_id)
    if actor.is_patient and (not actor.patient_id or appointment.patient_id != actor.patient_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You do not have access to this appointment.',
        )


def ensure_patient_lead_time(date_key: str, start_min: int) -> None:
    lead = minutes_until(date_key, start_min, common.current_time())
    if lead < config.MIN_BOOKING_LEAD_MINUTES:
        raise SlotNoLongerAvailableError('Selected time is too soon to book.')


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    patient_id = data.patient_id
    guest_name = data.guest_name

    if actor.is_patient:
        if not config.PATIENT_BOOKING_ENABLED:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Online booking is not enabled for this clinic.',
            )
        if not actor.patient_id or (patient_id and patient_id != actor.patient_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for themselves.',
            )
        patient_id = actor.patient_id
        guest_name = None

    if not patient_id and not guest_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='A patient or guest name is required.',
        )

    ensure_doctor_scope(actor, data.doctor_id)
    ensure_database_ready()

    try:
        date_key, start_min = data.resolve_start()
        if actor.is_patient:
            ensure_patient_lead_time(date_key, start_min)

        coordinator = common.build_coordinator(db, actor.tenant_id)
        appointment = coordinator.book(
            data.doctor_id,
            date_key,
            start_min,
            data.duration_min,
            patient_id,
            data.reason,
            department=data.department,
            location=data.location,
            guest_name=guest_name,
        )
        return to_appointment_response(appointment, coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: str = Query(...),
    date_key: str = Query(..., alias='date'),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        return [
            to_appointment_response(appointment, coordinator)
            for appointment in coordinator.list_for_doctor(doctor_id, date_key)
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/queue', response_model=list[AppointmentResponse])
def list_queue(
    doctor_id: str = Query(...),
    days: int = Query(default=1, ge=1, le=MAX_QUEUE_DAYS),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        today = today_local(common.clock).date_key
        return [
            to_appointment_response(appointment, coordinator)
            for appointment in coordinator.queue(doctor_id, today, days)
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        appointment = coordinator.get(appointment_id)
        ensure_appointment_access(actor, appointment)
        return to_appointment_response(appointment, coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        ensure_appointment_access(actor, coordinator.get(appointment_id))

        date_key, start_min = data.resolve_start()
        if actor.is_patient:
            ensure_patient_lead_time(date_key, start_min)

        appointment = coordinator.reschedule(
            appointment_id,
            date_key,
            start_min,
            data.duration_min,
            reason=data.reason,
        )
        return to_appointment_response(appointment, coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    data: CancelRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    enforce_window = actor.is_patient or not config.STAFF_CANCEL_BYPASSES_WINDOW

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        ensure_appointment_access(actor, coordinator.get(appointment_id))

        appointment = coordinator.cancel(
            appointment_id,
            data.reason if data else None,
            enforce_cancel_window=enforce_window,
        )
        return to_appointment_response(appointment, coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/check-in', response_model=AppointmentResponse)
def check_in_appointment(
    appointment_id: str,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        ensure_appointment_access(actor, coordinator.get(appointment_id))
        return to_appointment_response(coordinator.check_in(appointment_id), coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/start', response_model=AppointmentResponse)
def start_appointment(
    appointment_id: str,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        ensure_appointment_access(actor, coordinator.get(appointment_id))
        return to_appointment_response(coordinator.start(appointment_id), coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    data: CompleteRequest | None = None,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        coordinator = common.build_coordinator(db, actor.tenant_id)
        ensure_appointment_access(actor, coordinator.get(appointment_id))
        appointment = coordinator.complete(
            appointment_id,
            defer_visit_link=data.defer_visit_link if data else False,
        )
        return to_appointment_response(appointment, coordinator)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
