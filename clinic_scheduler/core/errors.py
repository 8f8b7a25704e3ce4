"""Scheduling error taxonomy.

Every error is scoped to the request that raised it. ``retryable`` tells the
caller whether re-fetching current state and trying again with a fresh
choice can succeed; the scheduling core itself never retries.
"""


class SchedulingError(Exception):
    status_code = 400
    retryable = False
    default_detail = 'Scheduling request failed.'

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidRangeError(SchedulingError):
    default_detail = 'Invalid time range.'


class InvalidTimestampError(SchedulingError):
    default_detail = 'Invalid date or time value.'


class InvalidTransitionError(SchedulingError):
    status_code = 409
    default_detail = 'Invalid status transition.'


class OverlapConflictError(SchedulingError):
    status_code = 409
    retryable = True
    default_detail = 'Availability overlaps with an existing window.'


class SlotNoLongerAvailableError(SchedulingError):
    status_code = 409
    retryable = True
    default_detail = 'Selected time is no longer available.'


class CancelWindowViolationError(SchedulingError):
    status_code = 422
    default_detail = 'Appointment can no longer be cancelled.'


class VisitLinkRequiredError(SchedulingError):
    status_code = 424
    retryable = True
    default_detail = 'Visit record could not be linked; appointment was not completed.'


class AppointmentNotFoundError(SchedulingError):
    status_code = 404
    default_detail = 'Appointment not found.'
