"""Schedule cycle engine: due dates, status derivation and frequency inference.

Everything here is pure. Callers pass ``now`` explicitly so the sweep, the
completion path and the tests all agree on the instant being evaluated, and
nothing in this module touches the database or the system clock unless the
caller leaves ``now``/``base_date`` out.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Protocol, Union

from dateutil.relativedelta import relativedelta

from neatplan.modules.schedules.models import ScheduleFrequency, ScheduleStatus

# A due assignment stays PENDING for this long before it is reported OVERDUE.
# The same window keeps a just-completed assignment COMPLETED.
GRACE_WINDOW = dt.timedelta(hours=24)

FrequencyLike = Union[ScheduleFrequency, str]

_INTERVALS: dict[ScheduleFrequency, Union[dt.timedelta, relativedelta]] = {
    ScheduleFrequency.DAILY: dt.timedelta(days=1),
    ScheduleFrequency.WEEKLY: dt.timedelta(days=7),
    ScheduleFrequency.BIWEEKLY: dt.timedelta(days=14),
    ScheduleFrequency.MONTHLY: relativedelta(months=1),
    ScheduleFrequency.QUARTERLY: relativedelta(months=3),
    ScheduleFrequency.YEARLY: relativedelta(years=1),
    ScheduleFrequency.CUSTOM: dt.timedelta(days=7),  # no interval of its own
}

# Order matters: the first category with a matching keyword wins, so
# "bi-weekly" resolves to WEEKLY and "weekly monthly" to WEEKLY.
FREQUENCY_KEYWORDS: tuple[tuple[ScheduleFrequency, tuple[str, ...]], ...] = (
    (ScheduleFrequency.DAILY, ("daily", "every day", "each day")),
    (ScheduleFrequency.WEEKLY, ("weekly", "every week", "once a week")),
    (ScheduleFrequency.BIWEEKLY, ("bi-weekly", "biweekly", "every two weeks", "fortnightly")),
    (ScheduleFrequency.MONTHLY, ("monthly", "every month", "once a month", "per month")),
    (
        ScheduleFrequency.QUARTERLY,
        (
            "quarterly", "every quarter", "every 3 months", "three months",
            "after vacancy", "post-infection",
        ),
    ),
    (ScheduleFrequency.YEARLY, ("yearly", "annually", "every year", "once a year")),
    (ScheduleFrequency.CUSTOM, ("as needed", "when required", "irregular", "variable")),
)

DEFAULT_FREQUENCY = ScheduleFrequency.WEEKLY

_LABELS = {
    ScheduleFrequency.DAILY: "Daily",
    ScheduleFrequency.WEEKLY: "Weekly",
    ScheduleFrequency.BIWEEKLY: "Bi-weekly",
    ScheduleFrequency.MONTHLY: "Monthly",
    ScheduleFrequency.QUARTERLY: "Quarterly",
    ScheduleFrequency.YEARLY: "Yearly",
    ScheduleFrequency.CUSTOM: "Custom",
}


class UnsupportedFrequencyError(ValueError):
    """Raised for a frequency value outside ScheduleFrequency."""

    def __init__(self, frequency: Any) -> None:
        self.frequency = frequency
        super().__init__(f"Unsupported frequency: {frequency!r}")


class AssignmentState(Protocol):
    """The slice of an assignment that status derivation looks at."""

    status: Any
    next_due: dt.datetime
    last_completed: Optional[dt.datetime]


def coerce_frequency(frequency: FrequencyLike) -> ScheduleFrequency:
    """Return the enum member for ``frequency`` or raise UnsupportedFrequencyError."""
    if isinstance(frequency, ScheduleFrequency):
        return frequency
    try:
        return ScheduleFrequency(frequency)
    except ValueError:
        raise UnsupportedFrequencyError(frequency) from None


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


def calculate_next_due_date(
    frequency: FrequencyLike,
    base_date: Optional[dt.datetime] = None,
) -> dt.datetime:
    """Advance ``base_date`` by one interval of ``frequency``.

    MONTHLY, QUARTERLY and YEARLY move by calendar months and clamp to the
    last day of a shorter month (Jan 31 + 1 month is Feb 28/29). CUSTOM has
    no interval of its own and advances like WEEKLY.

    Raises:
        UnsupportedFrequencyError: ``frequency`` is not a ScheduleFrequency.
    """
    freq = coerce_frequency(frequency)
    if base_date is None:
        base_date = dt.datetime.now(dt.UTC)
    return base_date + _INTERVALS[freq]


def is_overdue(next_due: dt.datetime, now: dt.datetime) -> bool:
    """True once ``next_due`` is at least a full grace window in the past."""
    return ensure_utc(now) - ensure_utc(next_due) >= GRACE_WINDOW


def derive_status(assignment: AssignmentState, now: dt.datetime) -> ScheduleStatus:
    """Compute the status an assignment should have at ``now``.

    This is the one rule the sweep, the listing endpoints and the CLI all
    apply, and it only reads current data, so a stale status corrects itself
    on the next evaluation.
    """
    now = ensure_utc(now)
    status = ScheduleStatus(assignment.status)

    if status == ScheduleStatus.PAUSED:
        return ScheduleStatus.PAUSED

    if status == ScheduleStatus.COMPLETED and assignment.last_completed is not None:
        if now - ensure_utc(assignment.last_completed) < GRACE_WINDOW:
            return ScheduleStatus.COMPLETED

    next_due = ensure_utc(assignment.next_due)
    if next_due <= now:
        if now - next_due < GRACE_WINDOW:
            return ScheduleStatus.PENDING
        return ScheduleStatus.OVERDUE

    return ScheduleStatus.PENDING


def map_frequency_string_to_enum(text: Optional[str]) -> ScheduleFrequency:
    """Map free-text frequency wording (e.g. from document analysis) to the enum.

    Advisory only: the result is a suggestion and an explicit frequency on an
    assignment always takes precedence.
    """
    if not text:
        return DEFAULT_FREQUENCY

    normalized = text.lower().strip()
    for frequency, keywords in FREQUENCY_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return frequency
    return DEFAULT_FREQUENCY


# Detected schedule-level wording goes through the same table.
schedule_primary_frequency = map_frequency_string_to_enum


def _task_frequency(task: Any) -> Optional[str]:
    if isinstance(task, Mapping):
        return task.get("frequency")
    return getattr(task, "frequency", None)


def infer_frequency_from_tasks(tasks: Optional[Iterable[Any]]) -> ScheduleFrequency:
    """Most common mapped frequency across ``tasks``.

    Ties go to the frequency seen first; no tasks means WEEKLY.
    """
    counts = Counter(map_frequency_string_to_enum(_task_frequency(task)) for task in tasks or ())
    if not counts:
        return DEFAULT_FREQUENCY
    # most_common keeps first-encountered order among equal counts
    return counts.most_common(1)[0][0]


def suggest_frequency(
    detected_frequency: Optional[str],
    tasks: Optional[Iterable[Any]] = None,
) -> ScheduleFrequency:
    """Suggested frequency for an imported schedule.

    Detected schedule-level wording wins; otherwise the task frequencies vote.
    """
    if detected_frequency:
        return schedule_primary_frequency(detected_frequency)
    return infer_frequency_from_tasks(tasks)


def frequency_label(frequency: FrequencyLike) -> str:
    """Human-readable label, e.g. ``Bi-weekly``."""
    try:
        return _LABELS[coerce_frequency(frequency)]
    except UnsupportedFrequencyError:
        return "Unknown"
