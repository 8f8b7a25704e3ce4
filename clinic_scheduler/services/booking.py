"""Booking coordinator and appointment lifecycle.

Every write is all-or-nothing: a failed operation rolls the session back and
leaves the stored appointment exactly as it was. Conflicts are reported to
the caller and never retried here.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.clock import (
    MINUTES_PER_DAY,
    Clock,
    add_days,
    minutes_until,
    system_clock,
    to_date,
    validate_date_key,
)
from clinic_scheduler.core.errors import (
    AppointmentNotFoundError,
    CancelWindowViolationError,
    InvalidRangeError,
    InvalidTransitionError,
    SchedulingError,
    SlotNoLongerAvailableError,
    VisitLinkRequiredError,
)
from clinic_scheduler.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from clinic_scheduler.services.locking import ScheduleLockRegistry, booking_scope, default_lock_registry
from clinic_scheduler.services.slot_generator import SlotQuery
from clinic_scheduler.services.visits import DatabaseVisitLinker, VisitLinker

logger = logging.getLogger(__name__)

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CHECKED_IN, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CHECKED_IN: frozenset({AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED}),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN})


def check_transition(current: str, target: AppointmentStatus) -> bool:
    """Return False when ``current`` already is ``target``; raise if the move is illegal."""
    current_status = AppointmentStatus(current)
    if current_status == target:
        return False
    if target not in TRANSITIONS[current_status]:
        raise InvalidTransitionError(f'Cannot move appointment from {current_status.value} to {target.value}.')
    return True


class BookingCoordinator:
    def __init__(
        self,
        db: Session,
        tenant_id: str,
        *,
        clock: Clock = system_clock,
        slot_duration_min: int | None = None,
        cancel_window_hours: int | None = None,
        visit_linker: VisitLinker | None = None,
        lock_registry: ScheduleLockRegistry | None = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.clock = clock
        self.slot_duration_min = slot_duration_min or config.SLOT_DURATION_MINUTES
        self.cancel_window_hours = (
            config.CANCEL_WINDOW_HOURS if cancel_window_hours is None else cancel_window_hours
        )
        self.visit_linker = visit_linker or DatabaseVisitLinker(db, tenant_id)
        self.lock_registry = lock_registry or default_lock_registry
        self.slot_query = SlotQuery(db, tenant_id)

    def get(self, appointment_id: str, for_update: bool = False) -> Appointment:
        query = self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.id == appointment_id,
        )
        if for_update:
            query = query.with_for_update()

        appointment = query.first()
        if appointment is None:
            raise AppointmentNotFoundError()
        return appointment

    def list_for_doctor(self, doctor_id: str, date_key: str) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.doctor_id == doctor_id,
            Appointment.date == to_date(date_key),
        ).order_by(Appointment.start_min.asc()).all()

    def queue(self, doctor_id: str, from_date_key: str, days: int = 1) -> list[Appointment]:
        if days < 1:
            raise InvalidRangeError('days must be at least 1.')

        return self.db.query(Appointment).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.date >= to_date(from_date_key),
            Appointment.date < to_date(add_days(from_date_key, days)),
        ).order_by(Appointment.date.asc(), Appointment.start_min.asc()).all()

    def minutes_until_start(self, appointment: Appointment) -> float:
        return minutes_until(appointment.date_key, appointment.start_min, self.clock())

    def can_cancel(self, appointment: Appointment, cancel_window_hours: int | None = None) -> bool:
        hours = self.cancel_window_hours if cancel_window_hours is None else cancel_window_hours
        return (
            AppointmentStatus(appointment.status) in CANCELLABLE_STATUSES
            and self.minutes_until_start(appointment) >= hours * 60
        )

    def can_reschedule(self, appointment: Appointment, cancel_window_hours: int | None = None) -> bool:
        return appointment.status == AppointmentStatus.SCHEDULED.value and self.can_cancel(
            appointment, cancel_window_hours
        )

    def _validate_interval(self, start_min: int, duration_min: int) -> None:
        if duration_min <= 0 or duration_min % self.slot_duration_min != 0:
            raise InvalidRangeError(
                f'Duration must be a positive multiple of {self.slot_duration_min} minutes.'
            )
        if start_min < 0 or start_min + duration_min > MINUTES_PER_DAY:
            raise InvalidRangeError('Appointment must start and end within the same day.')

    def _require_offered(
        self,
        doctor_id: str,
        date_key: str,
        start_min: int,
        duration_min: int,
        exclude_appointment_id: str | None = None,
    ) -> None:
        offered = {
            slot.start_min
            for slot in self.slot_query.slots(
                doctor_id, date_key, self.slot_duration_min, exclude_appointment_id
            )
        }
        needed = range(start_min, start_min + duration_min, self.slot_duration_min)

        if not all(minute in offered for minute in needed):
            logger.warning(
                'Slot %s+%smin on %s for doctor %s is not available',
                start_min, duration_min, date_key, doctor_id,
            )
            raise SlotNoLongerAvailableError()

    def _commit_slot(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Another writer claimed the same start time first.
            raise SlotNoLongerAvailableError() from exc

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def book(
        self,
        doctor_id: str,
        date_key: str,
        start_min: int,
        duration_min: int | None = None,
        patient_id: str | None = None,
        reason: str | None = None,
        *,
        department: str = 'General',
        location: str | None = None,
        guest_name: str | None = None,
    ) -> Appointment:
        date_key = validate_date_key(date_key)
        if duration_min is None:
            duration_min = self.slot_duration_min
        self._validate_interval(start_min, duration_min)
        if not patient_id and not guest_name:
            raise SchedulingError('A patient or guest name is required to book an appointment.')

        with self.lock_registry.hold(self.db, booking_scope(self.tenant_id, doctor_id, date_key)):
            self._require_offered(doctor_id, date_key, start_min, duration_min)

            appointment = Appointment(
                tenant_id=self.tenant_id,
                patient_id=patient_id,
                guest_name=guest_name,
                doctor_id=doctor_id,
                department=department,
                date=to_date(date_key),
                start_min=start_min,
                end_min=start_min + duration_min,
                reason=reason,
                location=location,
                status=AppointmentStatus.SCHEDULED.value,
            )
            self.db.add(appointment)
            self._commit_slot()

        self.db.refresh(appointment)
        logger.info(
            'Booked appointment %s for doctor %s on %s at %s',
            appointment.id, doctor_id, date_key, start_min,
        )
        return appointment

    def reschedule(
        self,
        appointment_id: str,
        new_date_key: str,
        new_start_min: int,
        new_duration_min: int | None = None,
        reason: str | None = None,
    ) -> Appointment:
        appointment = self.get(appointment_id)
        new_date_key = validate_date_key(new_date_key)
        duration_min = new_duration_min
        if duration_min is None:
            duration_min = appointment.end_min - appointment.start_min
        self._validate_interval(new_start_min, duration_min)

        with self.lock_registry.hold(self.db, booking_scope(self.tenant_id, appointment.doctor_id, new_date_key)):
            self.db.refresh(appointment)
            if appointment.status != AppointmentStatus.SCHEDULED.value:
                raise InvalidTransitionError('Only scheduled appointments can be rescheduled.')

            self._require_offered(
                appointment.doctor_id,
                new_date_key,
                new_start_min,
                duration_min,
                exclude_appointment_id=appointment.id,
            )

            appointment.date = to_date(new_date_key)
            appointment.start_min = new_start_min
            appointment.end_min = new_start_min + duration_min
            if reason is not None:
                appointment.reason = reason
            self._commit_slot()

        self.db.refresh(appointment)
        logger.info('Rescheduled appointment %s to %s at %s', appointment.id, new_date_key, new_start_min)
        return appointment

    def cancel(
        self,
        appointment_id: str,
        reason: str | None = None,
        *,
        enforce_cancel_window: bool = False,
        cancel_window_hours: int | None = None,
    ) -> Appointment:
        """Cancel a scheduled or checked-in appointment.

        Whether the cancel window applies is the caller's policy decision;
        pass ``enforce_cancel_window=True`` for cancellations that must
        respect it.
        """
        appointment = self.get(appointment_id, for_update=True)
        if not check_transition(appointment.status, AppointmentStatus.CANCELLED):
            return appointment

        if enforce_cancel_window:
            hours = self.cancel_window_hours if cancel_window_hours is None else cancel_window_hours
            if self.minutes_until_start(appointment) < hours * 60:
                self.db.rollback()
                raise CancelWindowViolationError(
                    f'Appointments must be cancelled at least {hours} hours before they start.'
                )

        appointment.status = AppointmentStatus.CANCELLED.value
        appointment.cancel_reason = reason or appointment.cancel_reason
        self._commit()

        logger.info('Cancelled appointment %s', appointment.id)
        return appointment

    def _advance(self, appointment_id: str, target: AppointmentStatus) -> Appointment:
        appointment = self.get(appointment_id, for_update=True)
        if not check_transition(appointment.status, target):
            return appointment

        appointment.status = target.value
        self._commit()

        logger.info('Appointment %s is now %s', appointment.id, target.value)
        return appointment

    def check_in(self, appointment_id: str) -> Appointment:
        return self._advance(appointment_id, AppointmentStatus.CHECKED_IN)

    def start(self, appointment_id: str) -> Appointment:
        return self._advance(appointment_id, AppointmentStatus.IN_PROGRESS)

    def complete(self, appointment_id: str, *, defer_visit_link: bool = False) -> Appointment:
        appointment = self.get(appointment_id, for_update=True)
        if not check_transition(appointment.status, AppointmentStatus.COMPLETED):
            return appointment

        if not defer_visit_link:
            try:
                appointment.visit_id = self.visit_linker.link_or_create_visit(
                    appointment.id,
                    appointment.patient_id,
                    appointment.doctor_id,
                    appointment.date_key,
                )
            except Exception as exc:
                self.db.rollback()
                logger.exception('Visit linkage failed for appointment %s', appointment_id)
                raise VisitLinkRequiredError() from exc

        appointment.status = AppointmentStatus.COMPLETED.value
        appointment.cancel_reason = None
        self._commit()

        logger.info('Completed appointment %s (visit %s)', appointment.id, appointment.visit_id)
        return appointment
