"""
Scheduling API Schemas

Pydantic models for availability, leave and queue requests and responses.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime, date, time

from clinic_engine.domain.scheduling.availability import (
    DEFAULT_END_TIME, DEFAULT_SLOT_DURATION, DEFAULT_START_TIME, WeeklyTemplate
)
from clinic_engine.domain.scheduling.models import AppointmentSource, AppointmentStatus


# ==================== Weekly Schedule Schemas ====================

class DayTemplate(BaseModel):
    """One day of a practitioner's recurring week"""
    day_of_week: int = Field(..., description="Day of week (0=Sunday, 6=Saturday)")
    enabled: bool = False
    start_time: time = DEFAULT_START_TIME
    end_time: time = DEFAULT_END_TIME
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION
    max_patients_per_slot: int = 1

    def to_template(self) -> WeeklyTemplate:
        return WeeklyTemplate(
            enabled=self.enabled,
            start_time=self.start_time,
            end_time=self.end_time,
            slot_duration_minutes=self.slot_duration_minutes,
            max_patients_per_slot=self.max_patients_per_slot
        )

    @classmethod
    def from_template(cls, day_of_week: int, template: WeeklyTemplate) -> "DayTemplate":
        return cls(
            day_of_week=day_of_week,
            enabled=template.enabled,
            start_time=template.start_time,
            end_time=template.end_time,
            slot_duration_minutes=template.slot_duration_minutes,
            max_patients_per_slot=template.max_patients_per_slot
        )


class WeekUpdate(BaseModel):
    """Full replacement of a practitioner's week"""
    days: List[DayTemplate]

    @field_validator('days')
    @classmethod
    def validate_unique_days(cls, v):
        seen = [d.day_of_week for d in v]
        if len(seen) != len(set(seen)):
            raise ValueError('Each day_of_week may appear only once')
        return v


class WeekResponse(BaseModel):
    practitioner_id: str
    days: List[DayTemplate]


class SlotResponse(BaseModel):
    start: time
    end: time


class SlotsResponse(BaseModel):
    practitioner_id: str
    date: date
    slots: List[SlotResponse]


class AvailableSlot(SlotResponse):
    remaining_capacity: int


class AvailableSlotsResponse(BaseModel):
    practitioner_id: str
    date: date
    slots: List[AvailableSlot]


# ==================== Leave Schemas ====================

class LeaveWindow(BaseModel):
    """Candidate leave used for both preview and commit"""
    practitioner_id: str = Field(..., min_length=1, max_length=64)
    leave_date: date
    is_full_day: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class LeaveCreate(LeaveWindow):
    reason: str = Field(..., max_length=1000)


class LeaveResponse(BaseModel):
    id: str
    practitioner_id: str
    leave_date: date
    is_full_day: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AffectedAppointmentResponse(BaseModel):
    id: str
    token_number: int
    time_slot: str
    patient_label: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LeavePreviewResponse(BaseModel):
    affected_count: int
    affected_appointments: List[AffectedAppointmentResponse]


class LeaveCommitResponse(BaseModel):
    leave: LeaveResponse
    affected_count: int


class LeaveListResponse(BaseModel):
    items: List[LeaveResponse]


# ==================== Queue Schemas ====================

class AppointmentResponse(BaseModel):
    id: str
    clinic_id: str
    practitioner_id: str
    patient_ref: str
    patient_label: Optional[str] = None
    appointment_date: date
    time_slot_start: time
    time_slot_end: time
    token_number: int
    status: AppointmentStatus
    source: AppointmentSource
    chief_complaint: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class WalkInCreate(BaseModel):
    """Walk-in registration at reception"""
    practitioner_id: str = Field(..., min_length=1, max_length=64)
    visit_date: date
    patient_ref: str = Field(..., min_length=1, max_length=64)
    patient_label: Optional[str] = Field(None, max_length=255)
    chief_complaint: Optional[str] = Field(None, max_length=2000)
    arrival_time: Optional[time] = None
    allow_outside_hours: bool = False


class WalkInResponse(BaseModel):
    token_number: int
    appointment_id: str
    appointment: AppointmentResponse


class BookingCreate(BaseModel):
    """Scheduled booking into one of the practitioner's slots"""
    practitioner_id: str = Field(..., min_length=1, max_length=64)
    visit_date: date
    slot_start: time
    patient_ref: str = Field(..., min_length=1, max_length=64)
    patient_label: Optional[str] = Field(None, max_length=255)
    chief_complaint: Optional[str] = Field(None, max_length=2000)


class QueueListResponse(BaseModel):
    clinic_id: str
    queue_date: date
    items: List[AppointmentResponse]


class StatusUpdate(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=500)


class WaitingToken(BaseModel):
    token_number: int
    patient_label: Optional[str] = None
    status: AppointmentStatus


class PractitionerBoard(BaseModel):
    practitioner_id: str
    current_token: Optional[int] = None
    current_patient: Optional[str] = None
    waiting: List[WaitingToken]


class QueueBoardResponse(BaseModel):
    clinic_id: str
    queue_date: date
    queues: List[PractitionerBoard]
    timestamp: datetime
