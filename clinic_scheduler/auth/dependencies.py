from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_scheduler.auth import jwt_handler

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"
STAFF_ROLES = frozenset({"admin_assistant", DOCTOR_ROLE, "it_admin"})

security = HTTPBearer()


@dataclass(frozen=True)
class Actor:
    subject: str
    role: str
    tenant_id: str
    patient_id: str | None = None
    doctor_id: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_patient(self) -> bool:
        return self.role == PATIENT_ROLE

    @property
    def is_doctor(self) -> bool:
        return self.role == DOCTOR_ROLE


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    x_tenant_id: str | None = Header(default=None),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    role = payload.get("role")
    if role != PATIENT_ROLE and role not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Unknown role")

    doctor_id = payload.get("doctor_id")
    if role == DOCTOR_ROLE and not doctor_id:
        raise HTTPException(status_code=403, detail="Doctor token is missing doctor_id")

    tenant_id = payload.get("tenant")
    if x_tenant_id and role in STAFF_ROLES:
        tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=400, detail="Tenant is required")

    return Actor(
        subject=subject,
        role=role,
        tenant_id=tenant_id,
        patient_id=payload.get("patient_id"),
        doctor_id=doctor_id,
    )


def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise HTTPException(status_code=403, detail="Only clinic staff can perform this action.")
    return actor


def ensure_doctor_scope(actor: Actor, doctor_id: str) -> None:
    """Doctors may only act on their own schedule; other roles are unrestricted here."""
    if actor.is_doctor and actor.doctor_id != doctor_id:
        raise HTTPException(status_code=403, detail="Doctors can only access their own schedule.")
