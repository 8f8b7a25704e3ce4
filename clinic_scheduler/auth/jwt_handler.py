from datetime import datetime, timedelta, timezone

import jwt

from clinic_scheduler.core import config


def create_access_token(
    subject: str,
    role: str,
    tenant_id: str,
    patient_id: str | None = None,
    doctor_id: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": subject,
        "role": role,
        "tenant": tenant_id,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    if patient_id:
        payload["patient_id"] = patient_id
    if doctor_id:
        payload["doctor_id"] = doctor_id
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
