import logging

from sqlalchemy.orm import Session

from clinic_scheduler.core.clock import MINUTES_PER_DAY, to_date
from clinic_scheduler.core.errors import InvalidRangeError
from clinic_scheduler.models.blackout import BlackoutPeriod

logger = logging.getLogger(__name__)


class BlackoutStore:
    """Doctor-specific exception periods.

    Blackouts only ever remove time, so writes need no conflict checks.
    """

    def __init__(self, db: Session, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id

    def add_blackout(
        self,
        doctor_id: str,
        start_date: str,
        end_date: str,
        start_min: int | None = None,
        end_min: int | None = None,
        reason: str | None = None,
    ) -> BlackoutPeriod:
        first_day = to_date(start_date)
        last_day = to_date(end_date)

        if last_day < first_day:
            raise InvalidRangeError('Blackout end date must not be before its start date.')
        for value in (start_min, end_min):
            if value is not None and not 0 <= value <= MINUTES_PER_DAY:
                raise InvalidRangeError('Blackout minutes must be between 0 and 1440.')
        if first_day == last_day and (start_min or 0) >= (end_min if end_min is not None else MINUTES_PER_DAY):
            raise InvalidRangeError('Blackout must end after it starts.')

        blackout = BlackoutPeriod(
            tenant_id=self.tenant_id,
            doctor_id=doctor_id,
            start_date=first_day,
            end_date=last_day,
            start_min=start_min,
            end_min=end_min,
            reason=reason,
        )
        self.db.add(blackout)
        self.db.commit()
        self.db.refresh(blackout)

        logger.info('Added blackout %s for doctor %s (%s to %s)', blackout.id, doctor_id, start_date, end_date)
        return blackout

    def list_blackouts(self, doctor_id: str, date_key: str) -> list[BlackoutPeriod]:
        day = to_date(date_key)
        return self.db.query(BlackoutPeriod).filter(
            BlackoutPeriod.tenant_id == self.tenant_id,
            BlackoutPeriod.doctor_id == doctor_id,
            BlackoutPeriod.start_date <= day,
            BlackoutPeriod.end_date >= day,
        ).order_by(BlackoutPeriod.start_date.asc(), BlackoutPeriod.id.asc()).all()

    def list_upcoming(self, doctor_id: str, from_date_key: str) -> list[BlackoutPeriod]:
        day = to_date(from_date_key)
        return self.db.query(BlackoutPeriod).filter(
            BlackoutPeriod.tenant_id == self.tenant_id,
            BlackoutPeriod.doctor_id == doctor_id,
            BlackoutPeriod.end_date >= day,
        ).order_by(BlackoutPeriod.start_date.asc(), BlackoutPeriod.id.asc()).all()
