from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import Actor, ensure_doctor_scope, get_current_actor, require_staff
from clinic_scheduler.core import config
from clinic_scheduler.core.clock import (
    WindowSpan,
    day_of_week,
    format_minutes,
    minutes_until,
    to_date_key,
    today_local,
)
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.models.availability import AvailabilityWindow, DefaultAvailabilityWindow
from clinic_scheduler.models.blackout import BlackoutPeriod
from clinic_scheduler.routes import common
from clinic_scheduler.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.services.availability_store import AvailabilityStore
from clinic_scheduler.services.blackout_store import BlackoutStore
from clinic_scheduler.services.slot_generator import Slot, SlotQuery

router = APIRouter(tags=['availability'])

MAX_BLACKOUT_REASON_LENGTH = 300


class CreateWindowRequest(BaseModel):
    day_of_week: int
    start_min: int
    end_min: int


class CreateDefaultWindowRequest(BaseModel):
    start_min: int
    end_min: int


class CreateBlackoutRequest(BaseModel):
    start_date: date
    end_date: date | None = None
    start_min: int | None = None
    end_min: int | None = None
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_BLACKOUT_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_BLACKOUT_REASON_LENGTH} characters or fewer.')

        return normalized


class TimeRangeResponse(BaseModel):
    start_min: int
    end_min: int
    start: str
    end: str


class AvailabilityWindowResponse(BaseModel):
    id: int
    doctor_id: str
    day_of_week: int
    start_min: int
    end_min: int
    start: str
    end: str


class DoctorAvailabilityResponse(BaseModel):
    doctor_id: str
    availability: list[AvailabilityWindowResponse]
    default_availability: list[TimeRangeResponse]


class BlackoutResponse(BaseModel):
    id: int
    doctor_id: str
    start_date: date
    end_date: date
    start_min: int | None = None
    end_min: int | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    date: str
    start_min: int
    end_min: int
    start: str
    end: str
    start_utc: datetime


class DayOverviewResponse(BaseModel):
    doctor_id: str
    date: str
    day_of_week: int
    availability: list[TimeRangeResponse]
    blocked: list[TimeRangeResponse]
    free: list[TimeRangeResponse]


def to_range_response(span: WindowSpan | DefaultAvailabilityWindow) -> TimeRangeResponse:
    return TimeRangeResponse(
        start_min=span.start_min,
        end_min=span.end_min,
        start=format_minutes(span.start_min),
        end=format_minutes(span.end_min),
    )


def to_window_response(window: AvailabilityWindow) -> AvailabilityWindowResponse:
    return AvailabilityWindowResponse(
        id=window.id,
        doctor_id=window.doctor_id,
        day_of_week=window.day_of_week,
        start_min=window.start_min,
        end_min=window.end_min,
        start=format_minutes(window.start_min),
        end=format_minutes(window.end_min),
    )


def to_slot_response(slot: Slot) -> SlotResponse:
    return SlotResponse(
        date=slot.date_key,
        start_min=slot.start_min,
        end_min=slot.end_min,
        start=slot.start,
        end=slot.end,
        start_utc=slot.start_instant,
    )


def is_bookable_by_patient(slot: Slot) -> bool:
    lead = minutes_until(slot.date_key, slot.start_min, common.current_time())
    return lead >= config.MIN_BOOKING_LEAD_MINUTES


@router.get('/doctors/{doctor_id}/slots', response_model=list[SlotResponse])
def list_slots(
    doctor_id: str,
    date_key: str = Query(..., alias='date'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        slots = SlotQuery(db, actor.tenant_id).slots(doctor_id, date_key, config.SLOT_DURATION_MINUTES)
        if actor.is_patient:
            slots = [slot for slot in slots if is_bookable_by_patient(slot)]

        return [to_slot_response(slot) for slot in slots]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/overview', response_model=DayOverviewResponse)
def get_day_overview(
    doctor_id: str,
    date_key: str = Query(..., alias='date'),
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        schedule = SlotQuery(db, actor.tenant_id).day_schedule(doctor_id, date_key)

        return DayOverviewResponse(
            doctor_id=doctor_id,
            date=schedule.date_key,
            day_of_week=day_of_week(schedule.date_key),
            availability=[to_range_response(span) for span in schedule.windows],
            blocked=[to_range_response(span) for span in schedule.blocked],
            free=[to_range_response(span) for span in schedule.free],
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/windows', response_model=DoctorAvailabilityResponse)
def list_doctor_windows(
    doctor_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        store = AvailabilityStore(db, actor.tenant_id)

        return DoctorAvailabilityResponse(
            doctor_id=doctor_id,
            availability=[to_window_response(window) for window in store.list_windows(doctor_id)],
            default_availability=[to_range_response(span) for span in store.list_defaults()],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/doctors/{doctor_id}/windows',
    response_model=AvailabilityWindowResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_doctor_window(
    doctor_id: str,
    data: CreateWindowRequest,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        window = AvailabilityStore(db, actor.tenant_id).add_window(
            doctor_id,
            data.day_of_week,
            data.start_min,
            data.end_min,
        )
        return to_window_response(window)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/defaults', response_model=list[TimeRangeResponse])
def list_default_windows(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [to_range_response(span) for span in AvailabilityStore(db, actor.tenant_id).list_defaults()]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/defaults', response_model=TimeRangeResponse, status_code=status.HTTP_201_CREATED)
def create_default_window(
    data: CreateDefaultWindowRequest,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = AvailabilityStore(db, actor.tenant_id).add_default_window(data.start_min, data.end_min)
        return to_range_response(window)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/blackouts', response_model=list[BlackoutResponse])
def list_doctor_blackouts(
    doctor_id: str,
    from_date: str | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        start = from_date or today_local(common.clock).date_key
        return BlackoutStore(db, actor.tenant_id).list_upcoming(doctor_id, start)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/doctors/{doctor_id}/blackouts',
    response_model=BlackoutResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_doctor_blackout(
    doctor_id: str,
    data: CreateBlackoutRequest,
    actor: Actor = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_doctor_scope(actor, doctor_id)
    ensure_database_ready()

    try:
        blackout: BlackoutPeriod = BlackoutStore(db, actor.tenant_id).add_blackout(
            doctor_id,
            to_date_key(data.start_date),
            to_date_key(data.end_date or data.start_date),
            start_min=data.start_min,
            end_min=data.end_min,
            reason=data.reason,
        )
        return blackout
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

