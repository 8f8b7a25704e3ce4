from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from clinic_scheduler.auth.dependencies import Actor, ensure_doctor_scope, get_current_actor, require_staff
from clinic_scheduler.auth.jwt_handler import create_access_token, decode_access_token
from clinic_scheduler.core import config


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_create_access_token_round_trips_claims() -> None:
    token = create_access_token('user-1', 'patient', 'clinic-a', patient_id='patient-1')

    payload = decode_access_token(token)

    assert payload['sub'] == 'user-1'
    assert payload['role'] == 'patient'
    assert payload['tenant'] == 'clinic-a'
    assert payload['patient_id'] == 'patient-1'


def test_get_current_actor_builds_patient_actor() -> None:
    token = create_access_token('user-1', 'patient', 'clinic-a', patient_id='patient-1')

    actor = get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert actor == Actor(subject='user-1', role='patient', tenant_id='clinic-a', patient_id='patient-1')
    assert actor.is_patient
    assert not actor.is_staff


def test_get_current_actor_lets_staff_switch_tenant() -> None:
    token = create_access_token('staff-1', 'admin_assistant', 'clinic-a')

    actor = get_current_actor(credentials=_credentials(token), x_tenant_id=' clinic-b ')

    assert actor.tenant_id == 'clinic-b'


def test_get_current_actor_ignores_tenant_header_for_patients() -> None:
    token = create_access_token('user-1', 'patient', 'clinic-a', patient_id='patient-1')

    actor = get_current_actor(credentials=_credentials(token), x_tenant_id='clinic-b')

    assert actor.tenant_id == 'clinic-a'


def test_get_current_actor_rejects_garbage_token() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(credentials=_credentials('not-a-token'), x_tenant_id=None)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_actor_rejects_expired_token() -> None:
    token = create_access_token('user-1', 'doctor', 'clinic-a', expires_minutes=-5)

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert exception_info.value.status_code == 401


def test_get_current_actor_rejects_unknown_role() -> None:
    token = create_access_token('user-1', 'pharmacist', 'clinic-a')

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert exception_info.value.status_code == 403


def test_get_current_actor_requires_tenant() -> None:
    token = jwt.encode(
        {
            'sub': 'staff-1',
            'role': 'doctor',
            'doctor_id': 'dr-1',
            'exp': datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Tenant is required'


def test_require_staff_rejects_patients() -> None:
    with pytest.raises(HTTPException) as exception_info:
        require_staff(actor=Actor(subject='user-1', role='patient', tenant_id='clinic-a'))

    assert exception_info.value.status_code == 403


def test_require_staff_returns_staff_actor() -> None:
    actor = Actor(subject='staff-1', role='it_admin', tenant_id='clinic-a')

    assert require_staff(actor=actor) is actor


def test_get_current_actor_carries_doctor_claim() -> None:
    token = create_access_token('doc-1', 'doctor', 'clinic-a', doctor_id='dr-1')

    actor = get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert actor.doctor_id == 'dr-1'
    assert actor.is_doctor
    assert actor.is_staff


def test_get_current_actor_rejects_doctor_without_doctor_id() -> None:
    token = create_access_token('doc-1', 'doctor', 'clinic-a')

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(credentials=_credentials(token), x_tenant_id=None)

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Doctor token is missing doctor_id'


def test_ensure_doctor_scope_limits_doctors_only() -> None:
    doctor = Actor(subject='doc-1', role='doctor', tenant_id='clinic-a', doctor_id='dr-1')
    assistant = Actor(subject='staff-1', role='admin_assistant', tenant_id='clinic-a')

    ensure_doctor_scope(doctor, 'dr-1')
    ensure_doctor_scope(assistant, 'dr-2')
    with pytest.raises(HTTPException) as exception_info:
        ensure_doctor_scope(doctor, 'dr-2')

    assert exception_info.value.status_code == 403
