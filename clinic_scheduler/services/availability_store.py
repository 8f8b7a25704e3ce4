import logging

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.clock import MINUTES_PER_DAY, WindowSpan, parse_window_ranges
from clinic_scheduler.core.errors import InvalidRangeError, OverlapConflictError
from clinic_scheduler.models.availability import AvailabilityWindow, DefaultAvailabilityWindow
from clinic_scheduler.services.locking import (
    ScheduleLockRegistry,
    availability_scope,
    default_lock_registry,
    defaults_scope,
)

logger = logging.getLogger(__name__)


def validate_window_bounds(start_min: int, end_min: int) -> None:
    if start_min < 0:
        raise InvalidRangeError('startMin must be zero or greater.')
    if end_min > MINUTES_PER_DAY:
        raise InvalidRangeError('endMin must be 1440 or less.')
    if start_min >= end_min:
        raise InvalidRangeError('endMin must be greater than startMin.')


def configured_default_windows() -> list[WindowSpan]:
    return parse_window_ranges(config.DEFAULT_AVAILABILITY)


class AvailabilityStore:
    """Recurring weekly windows per doctor and clinic-wide default windows."""

    def __init__(self, db: Session, tenant_id: str, lock_registry: ScheduleLockRegistry | None = None):
        self.db = db
        self.tenant_id = tenant_id
        self.lock_registry = lock_registry or default_lock_registry

    def add_window(self, doctor_id: str, day_of_week: int, start_min: int, end_min: int) -> AvailabilityWindow:
        if not 0 <= day_of_week <= 6:
            raise InvalidRangeError('dayOfWeek must be between 0 (Sunday) and 6 (Saturday).')
        validate_window_bounds(start_min, end_min)

        with self.lock_registry.hold(self.db, availability_scope(self.tenant_id, doctor_id, day_of_week)):
            overlapping = self.db.query(AvailabilityWindow).filter(
                AvailabilityWindow.tenant_id == self.tenant_id,
                AvailabilityWindow.doctor_id == doctor_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.start_min < end_min,
                AvailabilityWindow.end_min > start_min,
            ).first()

            if overlapping:
                logger.warning(
                    'Rejected availability window %s-%s for doctor %s on day %s: overlaps window %s',
                    start_min, end_min, doctor_id, day_of_week, overlapping.id,
                )
                raise OverlapConflictError()

            window = AvailabilityWindow(
                tenant_id=self.tenant_id,
                doctor_id=doctor_id,
                day_of_week=day_of_week,
                start_min=start_min,
                end_min=end_min,
            )
            self.db.add(window)
            self.db.commit()

        self.db.refresh(window)
        logger.info('Added availability window %s for doctor %s', window.id, doctor_id)
        return window

    def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        return self.db.query(AvailabilityWindow).filter(
            AvailabilityWindow.tenant_id == self.tenant_id,
            AvailabilityWindow.doctor_id == doctor_id,
        ).order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_min.asc()).all()

    def windows_for_day(self, doctor_id: str, day_of_week: int) -> list[WindowSpan]:
        rows = self.db.query(AvailabilityWindow.start_min, AvailabilityWindow.end_min).filter(
            AvailabilityWindow.tenant_id == self.tenant_id,
            AvailabilityWindow.doctor_id == doctor_id,
            AvailabilityWindow.day_of_week == day_of_week,
        ).order_by(AvailabilityWindow.start_min.asc()).all()

        return [WindowSpan(start_min, end_min) for start_min, end_min in rows]

    def list_defaults(self) -> list[WindowSpan]:
        rows = self.db.query(DefaultAvailabilityWindow.start_min, DefaultAvailabilityWindow.end_min).filter(
            DefaultAvailabilityWindow.tenant_id == self.tenant_id,
        ).order_by(DefaultAvailabilityWindow.start_min.asc()).all()

        if not rows:
            return configured_default_windows()

        return [WindowSpan(start_min, end_min) for start_min, end_min in rows]

    def add_default_window(self, start_min: int, end_min: int) -> DefaultAvailabilityWindow:
        validate_window_bounds(start_min, end_min)

        with self.lock_registry.hold(self.db, defaults_scope(self.tenant_id)):
            overlapping = self.db.query(DefaultAvailabilityWindow).filter(
                DefaultAvailabilityWindow.tenant_id == self.tenant_id,
                DefaultAvailabilityWindow.start_min < end_min,
                DefaultAvailabilityWindow.end_min > start_min,
            ).first()

            if overlapping:
                raise OverlapConflictError('Default availability overlaps with an existing window.')

            window = DefaultAvailabilityWindow(
                tenant_id=self.tenant_id,
                start_min=start_min,
                end_min=end_min,
            )
            self.db.add(window)
            self.db.commit()

        self.db.refresh(window)
        logger.info('Added default availability window %s for tenant %s', window.id, self.tenant_id)
        return window
