import os
from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.auth.dependencies import Actor  # noqa: E402
from clinic_scheduler.core import config  # noqa: E402
from clinic_scheduler.database import Base  # noqa: E402
from clinic_scheduler.routes.availability_routes import (  # noqa: E402
    CreateBlackoutRequest,
    CreateDefaultWindowRequest,
    CreateWindowRequest,
    create_default_window,
    create_doctor_blackout,
    create_doctor_window,
    get_day_overview,
    list_default_windows,
    list_doctor_blackouts,
    list_doctor_windows,
    list_slots,
)
from clinic_scheduler.services.booking import BookingCoordinator  # noqa: E402

STAFF = Actor(subject='staff-1', role='admin_assistant', tenant_id='clinic-a')
PATIENT = Actor(subject='user-1', role='patient', tenant_id='clinic-a', patient_id='patient-1')
MONDAY = '2026-01-05'


@pytest.fixture
def availability_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('clinic_scheduler.routes.availability_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr(config, 'SLOT_DURATION_MINUTES', 30)
    monkeypatch.setattr(config, 'DEFAULT_AVAILABILITY', '09:00-17:00')
    monkeypatch.setattr(config, 'MIN_BOOKING_LEAD_MINUTES', 60)
    # Monday 2026-01-05 08:30 at the clinic.
    monkeypatch.setattr(
        'clinic_scheduler.routes.common.clock',
        lambda: datetime(2026, 1, 5, 2, 0, tzinfo=timezone.utc),
    )

    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def test_create_blackout_request_normalizes_reason() -> None:
    request = CreateBlackoutRequest(start_date=date(2026, 1, 5), reason='  Annual leave ')

    assert request.reason == 'Annual leave'
    assert CreateBlackoutRequest(start_date=date(2026, 1, 5), reason='   ').reason is None


def test_create_blackout_request_rejects_long_reason() -> None:
    with pytest.raises(ValidationError):
        CreateBlackoutRequest(start_date=date(2026, 1, 5), reason='x' * 301)


def test_list_slots_uses_custom_window_and_skips_bookings(availability_db) -> None:
    create_doctor_window('dr-1', CreateWindowRequest(day_of_week=1, start_min=540, end_min=720), actor=STAFF, db=availability_db)
    BookingCoordinator(availability_db, 'clinic-a').book('dr-1', MONDAY, 570, patient_id='patient-9')

    slots = list_slots('dr-1', date_key=MONDAY, actor=STAFF, db=availability_db)

    assert [slot.start_min for slot in slots] == [540, 600, 630, 660, 690]
    assert slots[0].start == '2026-01-05T09:00:00+06:30'
    assert slots[0].end == '2026-01-05T09:30:00+06:30'


def test_list_slots_falls_back_to_default_windows(availability_db) -> None:
    slots = list_slots('dr-2', date_key=MONDAY, actor=STAFF, db=availability_db)

    assert len(slots) == 16


def test_list_slots_hides_slots_inside_patient_lead_time(availability_db) -> None:
    slots = list_slots('dr-2', date_key=MONDAY, actor=PATIENT, db=availability_db)

    assert len(slots) == 15
    assert slots[0].start_min == 570


def test_list_slots_rejects_malformed_date(availability_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_slots('dr-1', date_key='05/01/2026', actor=STAFF, db=availability_db)

    assert exception_info.value.status_code == 400


def test_create_doctor_window_maps_overlap_to_conflict(availability_db) -> None:
    create_doctor_window('dr-1', CreateWindowRequest(day_of_week=1, start_min=540, end_min=720), actor=STAFF, db=availability_db)

    with pytest.raises(HTTPException) as exception_info:
        create_doctor_window(
            'dr-1',
            CreateWindowRequest(day_of_week=1, start_min=600, end_min=780),
            actor=STAFF,
            db=availability_db,
        )

    assert exception_info.value.status_code == 409


def test_create_doctor_window_maps_bad_bounds_to_bad_request(availability_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_doctor_window(
            'dr-1',
            CreateWindowRequest(day_of_week=1, start_min=600, end_min=540),
            actor=STAFF,
            db=availability_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'endMin must be greater than startMin.'


def test_list_doctor_windows_includes_defaults(availability_db) -> None:
    create_doctor_window('dr-1', CreateWindowRequest(day_of_week=3, start_min=780, end_min=900), actor=STAFF, db=availability_db)

    response = list_doctor_windows('dr-1', actor=PATIENT, db=availability_db)

    assert [(window.day_of_week, window.start, window.end) for window in response.availability] == [(3, '13:00', '15:00')]
    assert [(span.start, span.end) for span in response.default_availability] == [('09:00', '17:00')]


def test_create_default_window_overrides_configured_defaults(availability_db) -> None:
    created = create_default_window(CreateDefaultWindowRequest(start_min=480, end_min=600), actor=STAFF, db=availability_db)

    assert (created.start, created.end) == ('08:00', '10:00')
    assert [span.start_min for span in list_default_windows(actor=STAFF, db=availability_db)] == [480]
    assert len(list_slots('dr-2', date_key=MONDAY, actor=STAFF, db=availability_db)) == 4


def test_blackout_removes_slots_and_is_listed(availability_db) -> None:
    created = create_doctor_blackout(
        'dr-1',
        CreateBlackoutRequest(start_date=date(2026, 1, 5), start_min=720, end_min=840, reason='Clinic meeting'),
        actor=STAFF,
        db=availability_db,
    )

    slots = list_slots('dr-1', date_key=MONDAY, actor=STAFF, db=availability_db)
    blackouts = list_doctor_blackouts('dr-1', from_date=None, actor=STAFF, db=availability_db)

    assert [slot.start_min for slot in slots if 690 <= slot.start_min < 870] == [690, 840]
    assert [blackout.id for blackout in blackouts] == [created.id]
    assert created.end_date == date(2026, 1, 5)


def test_get_day_overview_reports_free_ranges(availability_db) -> None:
    create_doctor_window('dr-1', CreateWindowRequest(day_of_week=1, start_min=540, end_min=720), actor=STAFF, db=availability_db)
    BookingCoordinator(availability_db, 'clinic-a').book('dr-1', MONDAY, 600, 60, patient_id='patient-9')

    overview = get_day_overview('dr-1', date_key=MONDAY, actor=STAFF, db=availability_db)

    assert overview.day_of_week == 1
    assert [(span.start, span.end) for span in overview.blocked] == [('10:00', '11:00')]
    assert [(span.start, span.end) for span in overview.free] == [('09:00', '10:00'), ('11:00', '12:00')]


def test_list_slots_reports_utc_start(availability_db) -> None:
    slots = list_slots('dr-2', date_key=MONDAY, actor=STAFF, db=availability_db)

    assert slots[0].start_utc == datetime(2026, 1, 5, 2, 30, tzinfo=timezone.utc)


def test_list_doctor_blackouts_defaults_to_clinic_local_today(availability_db, monkeypatch: pytest.MonkeyPatch) -> None:
    create_doctor_blackout(
        'dr-1',
        CreateBlackoutRequest(start_date=date(2026, 1, 5), reason='Training'),
        actor=STAFF,
        db=availability_db,
    )
    tuesday = create_doctor_blackout(
        'dr-1',
        CreateBlackoutRequest(start_date=date(2026, 1, 6), reason='Leave'),
        actor=STAFF,
        db=availability_db,
    )
    # Still Monday in UTC, already 00:15 on Tuesday at the clinic.
    monkeypatch.setattr(
        'clinic_scheduler.routes.common.clock',
        lambda: datetime(2026, 1, 5, 17, 45, tzinfo=timezone.utc),
    )

    blackouts = list_doctor_blackouts('dr-1', from_date=None, actor=STAFF, db=availability_db)

    assert [blackout.id for blackout in blackouts] == [tuesday.id]


def test_doctor_cannot_edit_another_doctors_windows(availability_db) -> None:
    doctor = Actor(subject='doc-1', role='doctor', tenant_id='clinic-a', doctor_id='dr-1')

    created = create_doctor_window(
        'dr-1',
        CreateWindowRequest(day_of_week=1, start_min=540, end_min=720),
        actor=doctor,
        db=availability_db,
    )
    with pytest.raises(HTTPException) as exception_info:
        create_doctor_window(
            'dr-2',
            CreateWindowRequest(day_of_week=1, start_min=540, end_min=720),
            actor=doctor,
            db=availability_db,
        )

    assert created.doctor_id == 'dr-1'
    assert exception_info.value.status_code == 403
    assert list_doctor_windows('dr-2', actor=STAFF, db=availability_db).availability == []
