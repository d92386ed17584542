# Scheduling domain module
from clinic_engine.domain.scheduling.models import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    LeaveDayLock,
    PractitionerLeave,
    TokenCounter,
    WeeklySchedule,
)

__all__ = [
    "Appointment",
    "AppointmentSource",
    "AppointmentStatus",
    "LeaveDayLock",
    "PractitionerLeave",
    "TokenCounter",
    "WeeklySchedule",
]
