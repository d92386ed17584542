"""
Scheduling Domain Models

Implements the database models for:
- Practitioner weekly availability templates
- Practitioner leaves (date-scoped exceptions)
- Appointments / walk-in queue entries
- Per clinic, practitioner and day token counters
"""

from sqlalchemy import (
    Column, String, Date, Boolean, DateTime,
    Integer, Time, Text, Enum, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from clinic_engine.infrastructure.database import Base
import uuid
import enum


def gen_uuid():
    return str(uuid.uuid4())


class AppointmentStatus(str, enum.Enum):
    """Visit status enumeration"""
    SCHEDULED = "SCHEDULED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentSource(str, enum.Enum):
    """How the visit entered the queue"""
    WALK_IN = "WALK_IN"
    BOOKED = "BOOKED"


class WeeklySchedule(Base):
    """Recurring availability for one practitioner on one day of the week"""
    __tablename__ = "weekly_schedules"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    practitioner_id = Column(String(64), nullable=False, index=True)

    # Day of week (0=Sunday, 6=Saturday)
    day_of_week = Column(Integer, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Slot configuration
    slot_duration_minutes = Column(Integer, nullable=False, default=15)
    max_patients_per_slot = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='check_day_of_week'),
        UniqueConstraint('practitioner_id', 'day_of_week', name='unique_schedule_per_practitioner_day'),
    )


class PractitionerLeave(Base):
    """Full or partial day absence of a practitioner on a calendar date"""
    __tablename__ = "practitioner_leaves"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    practitioner_id = Column(String(64), nullable=False)
    leave_date = Column(Date, nullable=False)

    # Both null for a full day leave
    start_time = Column(Time)
    end_time = Column(Time)

    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint(
            '(start_time IS NULL AND end_time IS NULL) OR '
            '(start_time IS NOT NULL AND end_time IS NOT NULL AND start_time < end_time)',
            name='check_leave_window'
        ),
        UniqueConstraint('practitioner_id', 'leave_date', 'start_time', 'end_time', name='unique_leave_window'),
        Index('ix_practitioner_leaves_practitioner_date', 'practitioner_id', 'leave_date'),
    )

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None


class Appointment(Base):
    """Booked or walk-in visit; also the queue entry staff work through"""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=gen_uuid)

    clinic_id = Column(String(64), nullable=False)
    practitioner_id = Column(String(64), nullable=False)
    patient_ref = Column(String(64), nullable=False)
    patient_label = Column(String(255))

    # Scheduling
    appointment_date = Column(Date, nullable=False)
    time_slot_start = Column(Time, nullable=False)
    time_slot_end = Column(Time, nullable=False)
    token_number = Column(Integer, nullable=False)

    status = Column(Enum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    source = Column(Enum(AppointmentSource), nullable=False, default=AppointmentSource.WALK_IN)
    chief_complaint = Column(Text)

    # Status tracking
    checked_in_at = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('token_number >= 1', name='check_token_positive'),
        UniqueConstraint(
            'clinic_id', 'practitioner_id', 'appointment_date', 'token_number',
            name='unique_token_per_practitioner_day'
        ),
        Index('ix_appointments_practitioner_date', 'practitioner_id', 'appointment_date'),
        Index('ix_appointments_clinic_date', 'clinic_id', 'appointment_date'),
    )


class TokenCounter(Base):
    """Last issued token for a (clinic, practitioner, date) queue"""
    __tablename__ = "token_counters"

    clinic_id = Column(String(64), primary_key=True)
    practitioner_id = Column(String(64), primary_key=True)
    counter_date = Column(Date, primary_key=True)
    last_token = Column(Integer, nullable=False, default=0)


class LeaveDayLock(Base):
    """Row locked by every leave commit of a (practitioner, date)"""
    __tablename__ = "leave_day_locks"

    practitioner_id = Column(String(64), primary_key=True)
    leave_date = Column(Date, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
