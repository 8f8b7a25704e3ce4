"""Bookable slot generation.

``generate_slots`` is a pure function of its inputs: it never reads the
clock or the database, so it is safe to call repeatedly and concurrently.
``SlotQuery`` gathers those inputs for one doctor and date.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from clinic_scheduler.core.clock import WindowSpan, day_of_week, format_local_iso, to_date, to_local_instant
from clinic_scheduler.core.errors import InvalidRangeError
from clinic_scheduler.models.appointment import BLOCKING_STATUSES, Appointment
from clinic_scheduler.models.blackout import BlackoutPeriod
from clinic_scheduler.services.availability_store import AvailabilityStore
from clinic_scheduler.services.blackout_store import BlackoutStore


@dataclass(frozen=True)
class Slot:
    date_key: str
    start_min: int
    end_min: int

    @property
    def start(self) -> str:
        return format_local_iso(self.date_key, self.start_min)

    @property
    def end(self) -> str:
        return format_local_iso(self.date_key, self.end_min)

    @property
    def start_instant(self) -> datetime:
        return to_local_instant(self.date_key, self.start_min)


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


def candidate_windows(custom: Sequence[WindowSpan], defaults: Sequence[WindowSpan]) -> list[WindowSpan]:
    if custom:
        return list(custom)
    return list(defaults)


def discretize(window: WindowSpan, slot_duration_min: int) -> list[WindowSpan]:
    spans: list[WindowSpan] = []
    start = window.start_min
    while start + slot_duration_min <= window.end_min:
        spans.append(WindowSpan(start, start + slot_duration_min))
        start += slot_duration_min
    return spans


def blackout_segments(blackouts: Iterable[BlackoutPeriod], date_key: str) -> list[WindowSpan]:
    segments = (blackout.segment_for(date_key) for blackout in blackouts)
    return [segment for segment in segments if segment is not None]


def generate_slots(
    date_key: str,
    slot_duration_min: int,
    custom_windows: Sequence[WindowSpan],
    default_windows: Sequence[WindowSpan],
    blackouts: Sequence[WindowSpan],
    appointments: Sequence[WindowSpan],
) -> list[Slot]:
    """Turn availability windows into free, fixed-width slots for one date.

    ``blackouts`` and ``appointments`` are the minute ranges already taken on
    ``date_key``; callers pass only non-cancelled appointments.
    """
    if slot_duration_min <= 0:
        raise InvalidRangeError('Slot duration must be a positive number of minutes.')
    to_date(date_key)

    blockers = [*blackouts, *appointments]
    slots: list[Slot] = []

    for window in candidate_windows(custom_windows, default_windows):
        for span in discretize(window, slot_duration_min):
            if any(overlaps(span.start_min, span.end_min, blocker.start_min, blocker.end_min) for blocker in blockers):
                continue
            slots.append(Slot(date_key, span.start_min, span.end_min))

    return sorted(set(slots), key=lambda slot: slot.start_min)


def merge_segments(segments: Iterable[WindowSpan]) -> list[WindowSpan]:
    ordered = sorted(segment for segment in segments if segment.end_min > segment.start_min)
    merged: list[WindowSpan] = []

    for segment in ordered:
        if merged and segment.start_min <= merged[-1].end_min:
            last = merged[-1]
            merged[-1] = WindowSpan(last.start_min, max(last.end_min, segment.end_min))
        else:
            merged.append(segment)

    return merged


def free_segments(windows: Sequence[WindowSpan], blockers: Sequence[WindowSpan]) -> list[WindowSpan]:
    """Subtract merged blockers from each window, keeping the uncovered ranges."""
    merged = merge_segments(blockers)
    free: list[WindowSpan] = []

    for window in windows:
        current = window.start_min
        for blocker in merged:
            if blocker.end_min <= current:
                continue
            if blocker.start_min >= window.end_min:
                break
            if blocker.start_min > current:
                free.append(WindowSpan(current, blocker.start_min))
            current = max(current, blocker.end_min)
            if current >= window.end_min:
                break
        if current < window.end_min:
            free.append(WindowSpan(current, window.end_min))

    return free


@dataclass
class DaySchedule:
    """Everything the generator needs for one doctor and date."""

    date_key: str
    windows: list[WindowSpan]
    blackouts: list[WindowSpan]
    appointments: list[WindowSpan]

    @property
    def blocked(self) -> list[WindowSpan]:
        return merge_segments([*self.blackouts, *self.appointments])

    @property
    def free(self) -> list[WindowSpan]:
        return free_segments(self.windows, [*self.blackouts, *self.appointments])


class SlotQuery:
    def __init__(self, db: Session, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id
        self.availability = AvailabilityStore(db, tenant_id)
        self.blackouts = BlackoutStore(db, tenant_id)

    def booked_segments(
        self,
        doctor_id: str,
        date_key: str,
        exclude_appointment_id: str | None = None,
    ) -> list[WindowSpan]:
        query = self.db.query(Appointment.start_min, Appointment.end_min).filter(
            Appointment.tenant_id == self.tenant_id,
            Appointment.doctor_id == doctor_id,
            Appointment.date == to_date(date_key),
            Appointment.status.in_(BLOCKING_STATUSES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        return [WindowSpan(start_min, end_min) for start_min, end_min in query.all()]

    def day_schedule(
        self,
        doctor_id: str,
        date_key: str,
        exclude_appointment_id: str | None = None,
    ) -> DaySchedule:
        custom = self.availability.windows_for_day(doctor_id, day_of_week(date_key))
        windows = candidate_windows(custom, self.availability.list_defaults() if not custom else [])

        return DaySchedule(
            date_key=date_key,
            windows=windows,
            blackouts=blackout_segments(self.blackouts.list_blackouts(doctor_id, date_key), date_key),
            appointments=self.booked_segments(doctor_id, date_key, exclude_appointment_id),
        )

    def slots(
        self,
        doctor_id: str,
        date_key: str,
        slot_duration_min: int,
        exclude_appointment_id: str | None = None,
    ) -> list[Slot]:
        schedule = self.day_schedule(doctor_id, date_key, exclude_appointment_id)
        return generate_slots(
            date_key,
            slot_duration_min,
            custom_windows=schedule.windows,
            default_windows=[],
            blackouts=schedule.blackouts,
            appointments=schedule.appointments,
        )
