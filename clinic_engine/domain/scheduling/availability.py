"""
Effective Availability

Pure functions that turn a weekly template and the leaves recorded for a
date into the bookable slots of that date. Nothing here touches storage;
callers load the template and leaves and pass them in, so the result is
recomputed on every call and can never drift from the two source tables.

Times are compared as minutes since midnight over half-open intervals
``[start, end)``; a full day is ``[0, 1440)``.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, NamedTuple, Optional

from clinic_engine.core.exceptions import ValidationError

ALLOWED_SLOT_DURATIONS = (10, 15, 20, 30, 45, 60)
MINUTES_PER_DAY = 24 * 60

DEFAULT_START_TIME = time(9, 0)
DEFAULT_END_TIME = time(17, 0)
DEFAULT_SLOT_DURATION = 15


class Slot(NamedTuple):
    start: time
    end: time


@dataclass(frozen=True)
class WeeklyTemplate:
    """Recurring availability for one day of the week"""
    enabled: bool = False
    start_time: time = DEFAULT_START_TIME
    end_time: time = DEFAULT_END_TIME
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION
    max_patients_per_slot: int = 1

    def errors(self) -> List[str]:
        """Validation messages for this entry; disabled days are not checked"""
        if not self.enabled:
            return []
        problems = []
        if self.end_time <= self.start_time:
            problems.append("end_time must be after start_time")
        if self.slot_duration_minutes not in ALLOWED_SLOT_DURATIONS:
            allowed = ", ".join(str(d) for d in ALLOWED_SLOT_DURATIONS)
            problems.append(f"slot_duration_minutes must be one of {allowed}")
        if self.max_patients_per_slot < 1:
            problems.append("max_patients_per_slot must be at least 1")
        return problems

    @property
    def window(self) -> "TimeWindow":
        return TimeWindow(to_minutes(self.start_time), to_minutes(self.end_time))


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval of minutes since midnight"""
    start: int
    end: int

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end

    @property
    def is_full_day(self) -> bool:
        return self.start == 0 and self.end >= MINUTES_PER_DAY


FULL_DAY = TimeWindow(0, MINUTES_PER_DAY)


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Inverse of to_minutes, clamped to the last minute of the day"""
    minutes = max(0, min(minutes, MINUTES_PER_DAY - 1))
    return time(minutes // 60, minutes % 60)


def day_of_week(target_date: date) -> int:
    """Day index with Sunday as 0"""
    return target_date.isoweekday() % 7


def leave_window(
    is_full_day: bool,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None
) -> TimeWindow:
    """Blocked interval of a leave, validating a partial window"""
    if is_full_day:
        return FULL_DAY
    if start_time is None or end_time is None:
        raise ValidationError(
            message="Both start time and end time are required for a partial day leave",
            details={"start_time": start_time and start_time.isoformat(),
                     "end_time": end_time and end_time.isoformat()}
        )
    # Seconds are dropped, so the comparison is on whole minutes
    window = TimeWindow(to_minutes(start_time), to_minutes(end_time))
    if window.end <= window.start:
        raise ValidationError(
            message="Leave end time must be at least one minute after start time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()}
        )
    return window


def truncate_to_minute(value: Optional[time]) -> Optional[time]:
    if value is None:
        return None
    return value.replace(second=0, microsecond=0)


def template_slots(template: WeeklyTemplate) -> List[Slot]:
    """Walk [start, end) in slot-sized steps; a trailing partial slot is dropped"""
    if not template.enabled or template.slot_duration_minutes <= 0:
        return []

    slots = []
    current = to_minutes(template.start_time)
    end = to_minutes(template.end_time)
    step = template.slot_duration_minutes

    while current + step <= end:
        slots.append(Slot(from_minutes(current), from_minutes(current + step)))
        current += step

    return slots


def effective_slots(template: WeeklyTemplate, blocked: Iterable[TimeWindow]) -> List[Slot]:
    """Template slots of a date minus every slot touching a leave window"""
    blocked = list(blocked)
    if any(window.is_full_day for window in blocked):
        return []

    return [
        slot for slot in template_slots(template)
        if not any(
            TimeWindow(to_minutes(slot.start), to_minutes(slot.end)).overlaps(window)
            for window in blocked
        )
    ]


def is_available_at(template: WeeklyTemplate, blocked: Iterable[TimeWindow], at: time) -> bool:
    """Whether a visit starting at ``at`` falls inside effective availability"""
    if not template.enabled:
        return False
    minute = to_minutes(at)
    if not template.window.contains(minute):
        return False
    return not any(window.contains(minute) for window in blocked)
