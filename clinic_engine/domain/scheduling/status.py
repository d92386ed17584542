"""
Visit Status Machine

Every appointment moves through an explicit, staff-driven, single-step
state graph. No state may be skipped, so each visit is accounted for at
check-in before it is called in.
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from clinic_engine.core.exceptions import InvalidTransitionError
from clinic_engine.domain.scheduling.models import Appointment, AppointmentStatus

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CHECKED_IN: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Visits that still hold a place in the practitioner's day
ACTIVE_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CHECKED_IN,
    AppointmentStatus.IN_PROGRESS,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Validate a transition.

    Returns True when the transition must be applied and False when it is a
    repeat of the terminal state the visit is already in. Anything else
    outside the graph raises InvalidTransitionError.
    """
    if current == target and is_terminal(current):
        return False

    allowed = ALLOWED_TRANSITIONS[current]
    if target not in allowed:
        raise InvalidTransitionError(
            message=f"Cannot change status from {current.value} to {target.value}",
            details={
                "current": current.value,
                "requested": target.value,
                "allowed": sorted(status.value for status in allowed),
            }
        )
    return True


def apply_transition(
    appointment: Appointment,
    target: AppointmentStatus,
    reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> bool:
    """Move an appointment to ``target`` and stamp the matching timestamp.

    Returns whether the appointment changed.
    """
    if not check_transition(appointment.status, target):
        return False

    now = now or utcnow()
    appointment.status = target
    if target == AppointmentStatus.CHECKED_IN:
        appointment.checked_in_at = now
    elif target == AppointmentStatus.IN_PROGRESS:
        appointment.started_at = now
    elif target == AppointmentStatus.COMPLETED:
        appointment.completed_at = now
    elif target == AppointmentStatus.CANCELLED:
        appointment.cancelled_at = now
        appointment.cancellation_reason = reason
    return True
