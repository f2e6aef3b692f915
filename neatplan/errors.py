"""Domain errors raised by the service layer and translated to HTTP by the API."""

from __future__ import annotations


class ScheduleServiceError(Exception):
    """Base class for predictable, user-facing service errors."""

    status_code = 400


class NotFoundError(ScheduleServiceError):
    status_code = 404


class AssignmentExistsError(ScheduleServiceError):
    """The schedule is already assigned to this room or equipment."""

    status_code = 409


class AssignmentMismatchError(ScheduleServiceError):
    """The assignment does not belong to the room or equipment in the request."""


class FrequencyRequiredError(ScheduleServiceError):
    """No explicit frequency and the schedule has no suggested one."""


class DuplicateNameError(ScheduleServiceError):
    status_code = 409


class InvalidInputError(ScheduleServiceError):
    pass
