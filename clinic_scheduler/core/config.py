import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

SLOT_DURATION_MINUTES = _get_int("SLOT_DURATION_MINUTES", 30)
CANCEL_WINDOW_HOURS = _get_int("CANCEL_WINDOW_HOURS", 2)
MIN_BOOKING_LEAD_MINUTES = _get_int("MIN_BOOKING_LEAD_MINUTES", 60)
PATIENT_BOOKING_ENABLED = _get_bool(os.getenv("PATIENT_BOOKING_ENABLED"), default=True)
STAFF_CANCEL_BYPASSES_WINDOW = _get_bool(os.getenv("STAFF_CANCEL_BYPASSES_WINDOW"), default=True)

# Comma-separated HH:MM-HH:MM ranges used when a clinic has no defaults stored.
DEFAULT_AVAILABILITY = os.getenv("DEFAULT_AVAILABILITY", "09:00-17:00")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = _get_int("JWT_EXPIRES_MINUTES", 60)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be a positive number of minutes.")
    if CANCEL_WINDOW_HOURS < 0 or MIN_BOOKING_LEAD_MINUTES < 0:
        raise RuntimeError("CANCEL_WINDOW_HOURS and MIN_BOOKING_LEAD_MINUTES cannot be negative.")

    from clinic_scheduler.core.clock import parse_window_ranges
    from clinic_scheduler.core.errors import SchedulingError

    try:
        parse_window_ranges(DEFAULT_AVAILABILITY)
    except SchedulingError as exc:
        raise RuntimeError(f"DEFAULT_AVAILABILITY is invalid: {exc.detail}") from exc
