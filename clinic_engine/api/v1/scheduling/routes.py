"""
Scheduling API Routes

API endpoints for practitioner availability, leaves and the reception queue.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from typing import Optional
from datetime import date, datetime, timezone

from clinic_engine.api.deps import get_clinic_id
from clinic_engine.infrastructure.database import get_db
from clinic_engine.domain.scheduling.service import (
    AvailabilityService, LeaveService, QueueCoordinator
)
from clinic_engine.api.v1.scheduling.schemas import (
    # Weekly schedule schemas
    DayTemplate, WeekUpdate, WeekResponse,
    SlotResponse, SlotsResponse, AvailableSlot, AvailableSlotsResponse,
    # Leave schemas
    LeaveWindow, LeaveCreate, LeaveResponse, LeaveCommitResponse,
    LeaveListResponse, LeavePreviewResponse, AffectedAppointmentResponse,
    # Queue schemas
    AppointmentResponse, WalkInCreate, WalkInResponse, BookingCreate,
    QueueListResponse, StatusUpdate, QueueBoardResponse
)

router = APIRouter()


# ==================== Weekly Schedule Endpoints ====================

@router.put("/practitioners/{practitioner_id}/week", response_model=WeekResponse)
def set_week(
    practitioner_id: str,
    week: WeekUpdate,
    db = Depends(get_db)
):
    """Replace a practitioner's weekly schedule"""
    service = AvailabilityService(db)
    saved = service.set_week(
        practitioner_id,
        {day.day_of_week: day.to_template() for day in week.days}
    )
    return WeekResponse(
        practitioner_id=practitioner_id,
        days=[DayTemplate.from_template(day, template) for day, template in saved.items()]
    )


@router.get("/practitioners/{practitioner_id}/week", response_model=WeekResponse)
def get_week(
    practitioner_id: str,
    db = Depends(get_db)
):
    """Get a practitioner's weekly schedule"""
    service = AvailabilityService(db)
    week = service.get_week(practitioner_id)
    return WeekResponse(
        practitioner_id=practitioner_id,
        days=[DayTemplate.from_template(day, template) for day, template in week.items()]
    )


@router.get("/practitioners/{practitioner_id}/slots", response_model=SlotsResponse)
def get_slots(
    practitioner_id: str,
    target_date: date = Query(..., alias="date"),
    db = Depends(get_db)
):
    """Effective slots of a practitioner on a date"""
    service = AvailabilityService(db)
    slots = service.slots_for(practitioner_id, target_date)
    return SlotsResponse(
        practitioner_id=practitioner_id,
        date=target_date,
        slots=[SlotResponse(start=slot.start, end=slot.end) for slot in slots]
    )


@router.get("/practitioners/{practitioner_id}/available-slots", response_model=AvailableSlotsResponse)
def get_available_slots(
    practitioner_id: str,
    target_date: date = Query(..., alias="date"),
    db = Depends(get_db)
):
    """Effective slots that still have capacity"""
    service = AvailabilityService(db)
    slots = service.available_slots(practitioner_id, target_date)
    return AvailableSlotsResponse(
        practitioner_id=practitioner_id,
        date=target_date,
        slots=[AvailableSlot(**slot) for slot in slots]
    )


# ==================== Leave Endpoints ====================

@router.post("/leaves/preview", response_model=LeavePreviewResponse)
def preview_leave(
    candidate: LeaveWindow,
    db = Depends(get_db)
):
    """List the booked appointments a leave would affect, without saving it"""
    service = LeaveService(db)
    affected = service.preview_leave(
        practitioner_id=candidate.practitioner_id,
        leave_date=candidate.leave_date,
        is_full_day=candidate.is_full_day,
        start_time=candidate.start_time,
        end_time=candidate.end_time
    )
    return LeavePreviewResponse(
        affected_count=len(affected),
        affected_appointments=[
            AffectedAppointmentResponse.model_validate(item) for item in affected
        ]
    )


@router.post("/leaves", response_model=LeaveCommitResponse, status_code=status.HTTP_201_CREATED)
def commit_leave(
    leave_data: LeaveCreate,
    db = Depends(get_db)
):
    """Commit a leave after its preview was confirmed"""
    service = LeaveService(db)
    leave, affected_count = service.commit_leave(
        practitioner_id=leave_data.practitioner_id,
        leave_date=leave_data.leave_date,
        reason=leave_data.reason,
        is_full_day=leave_data.is_full_day,
        start_time=leave_data.start_time,
        end_time=leave_data.end_time
    )
    return LeaveCommitResponse(
        leave=LeaveResponse.model_validate(leave),
        affected_count=affected_count
    )


@router.delete("/leaves/{leave_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_leave(
    leave_id: str,
    db = Depends(get_db)
):
    """Delete a leave; deleting a missing leave succeeds"""
    service = LeaveService(db)
    service.remove_leave(leave_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/leaves", response_model=LeaveListResponse)
def list_leaves(
    practitioner_id: Optional[str] = None,
    upcoming: bool = Query(False),
    today: Optional[date] = Query(None, description="Caller's local calendar day"),
    db = Depends(get_db)
):
    """List leaves ordered by date"""
    service = LeaveService(db)
    leaves = service.list_leaves(practitioner_id, upcoming_only=upcoming, today=today)
    return LeaveListResponse(items=[LeaveResponse.model_validate(leave) for leave in leaves])


# ==================== Queue Endpoints ====================

@router.post("/queue/walk-in", response_model=WalkInResponse, status_code=status.HTTP_201_CREATED)
def register_walk_in(
    walk_in: WalkInCreate,
    clinic_id: str = Depends(get_clinic_id),
    db = Depends(get_db)
):
    """Register a walk-in patient and issue a token"""
    coordinator = QueueCoordinator(db)
    registration = coordinator.register_walk_in(
        clinic_id=clinic_id,
        practitioner_id=walk_in.practitioner_id,
        visit_date=walk_in.visit_date,
        patient_ref=walk_in.patient_ref,
        chief_complaint=walk_in.chief_complaint,
        patient_label=walk_in.patient_label,
        arrival_time=walk_in.arrival_time,
        allow_outside_hours=walk_in.allow_outside_hours
    )
    return WalkInResponse(
        token_number=registration.token_number,
        appointment_id=registration.appointment_id,
        appointment=AppointmentResponse.model_validate(registration.appointment)
    )


@router.post("/queue/book", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    booking: BookingCreate,
    clinic_id: str = Depends(get_clinic_id),
    db = Depends(get_db)
):
    """Book a scheduled visit into an available slot"""
    coordinator = QueueCoordinator(db)
    return coordinator.book_appointment(
        clinic_id=clinic_id,
        practitioner_id=booking.practitioner_id,
        visit_date=booking.visit_date,
        slot_start=booking.slot_start,
        patient_ref=booking.patient_ref,
        patient_label=booking.patient_label,
        chief_complaint=booking.chief_complaint
    )


@router.get("/queue", response_model=QueueListResponse)
def list_queue(
    queue_date: date = Query(..., alias="date"),
    practitioner_id: Optional[str] = None,
    include_cancelled: bool = Query(False),
    clinic_id: str = Depends(get_clinic_id),
    db = Depends(get_db)
):
    """Get the clinic's queue of a day in token order"""
    coordinator = QueueCoordinator(db)
    items = coordinator.list_queue(clinic_id, queue_date, practitioner_id, include_cancelled)
    return QueueListResponse(
        clinic_id=clinic_id,
        queue_date=queue_date,
        items=[AppointmentResponse.model_validate(item) for item in items]
    )


@router.get("/queue/board", response_model=QueueBoardResponse)
def get_queue_board(
    queue_date: date = Query(..., alias="date"),
    clinic_id: str = Depends(get_clinic_id),
    db = Depends(get_db)
):
    """Token being served and tokens waiting, per practitioner"""
    coordinator = QueueCoordinator(db)
    return QueueBoardResponse(
        clinic_id=clinic_id,
        queue_date=queue_date,
        queues=coordinator.queue_board(clinic_id, queue_date),
        timestamp=datetime.now(timezone.utc)
    )


@router.patch("/queue/{appointment_id}/status", response_model=AppointmentResponse)
def transition_status(
    appointment_id: str,
    update: StatusUpdate,
    db = Depends(get_db)
):
    """Move a visit one step through its status workflow"""
    coordinator = QueueCoordinator(db)
    return coordinator.transition_status(appointment_id, update.status, reason=update.reason)
