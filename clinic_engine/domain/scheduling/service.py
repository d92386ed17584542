"""
Scheduling Service Layer

Business logic for weekly availability, practitioner leaves, leave conflict
previews and the walk-in queue.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import logging
import time as time_module

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from clinic_engine.core.config import settings
from clinic_engine.core.exceptions import (
    ConflictError, NotFoundError, OutsideHoursError,
    TransientError, ValidationError, handle_database_error
)
from clinic_engine.domain.scheduling.availability import (
    FULL_DAY, Slot, TimeWindow, WeeklyTemplate,
    day_of_week, effective_slots, from_minutes, is_available_at,
    leave_window, to_minutes, truncate_to_minute
)
from clinic_engine.domain.scheduling.models import (
    Appointment, AppointmentSource, AppointmentStatus,
    PractitionerLeave, WeeklySchedule
)
from clinic_engine.domain.scheduling.repository import (
    AppointmentRepository, LeaveRepository,
    TokenCounterRepository, WeeklyScheduleRepository
)
from clinic_engine.domain.scheduling.status import ACTIVE_STATUSES, apply_transition

logger = logging.getLogger(__name__)

# Visits a leave can still invalidate; later states already happened or are moot
PREVIEW_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN)

WAITING_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN)


@dataclass(frozen=True)
class AffectedAppointment:
    """Booked visit overlapping a candidate leave"""
    id: str
    token_number: int
    time_slot_start: time
    time_slot_end: time
    patient_label: Optional[str]

    @property
    def time_slot(self) -> str:
        return f"{self.time_slot_start.strftime('%H:%M')} - {self.time_slot_end.strftime('%H:%M')}"


@dataclass(frozen=True)
class WalkInRegistration:
    token_number: int
    appointment_id: str
    appointment: Appointment


def _template_from_row(row: WeeklySchedule) -> WeeklyTemplate:
    return WeeklyTemplate(
        enabled=row.is_enabled,
        start_time=row.start_time,
        end_time=row.end_time,
        slot_duration_minutes=row.slot_duration_minutes,
        max_patients_per_slot=row.max_patients_per_slot
    )


def _booked_in_slot(counts: Dict[time, int], slot: Slot) -> int:
    # Walk-ins start at arrival, so any start inside the slot uses its capacity
    return sum(count for start, count in counts.items() if slot.start <= start < slot.end)


def _leave_blocked_window(leave: PractitionerLeave) -> TimeWindow:
    if leave.is_full_day:
        return FULL_DAY
    return TimeWindow(to_minutes(leave.start_time), to_minutes(leave.end_time))


class AvailabilityService:
    """Weekly templates and the slots they yield once leaves are applied"""

    def __init__(self, db):
        self.db = db
        self.schedule_repo = WeeklyScheduleRepository(db)
        self.leave_repo = LeaveRepository(db)
        self.appointment_repo = AppointmentRepository(db)

    def set_week(
        self,
        practitioner_id: str,
        templates: Mapping[int, WeeklyTemplate]
    ) -> Dict[int, WeeklyTemplate]:
        """Replace the practitioner's whole week, or nothing at all"""
        day_errors: Dict[int, List[str]] = {}
        for day, template in templates.items():
            problems = []
            if not isinstance(day, int) or day < 0 or day > 6:
                problems.append("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
            problems.extend(template.errors())
            if problems:
                day_errors[day] = problems

        if day_errors:
            raise ValidationError(
                message="Weekly schedule is invalid",
                details={"days": day_errors}
            )

        rows = [
            {
                "day_of_week": day,
                "is_enabled": template.enabled,
                "start_time": template.start_time,
                "end_time": template.end_time,
                "slot_duration_minutes": template.slot_duration_minutes,
                "max_patients_per_slot": template.max_patients_per_slot,
            }
            for day, template in sorted(templates.items())
        ]

        try:
            self.schedule_repo.replace_week(practitioner_id, rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise handle_database_error(e, "save weekly schedule")

        logger.info(
            f"Saved weekly schedule for practitioner {practitioner_id}: "
            f"{sum(1 for t in templates.values() if t.enabled)} working days"
        )
        return self.get_week(practitioner_id)

    def get_week(self, practitioner_id: str) -> Dict[int, WeeklyTemplate]:
        """Every day of the week, defaulting unconfigured days to disabled"""
        week = {day: WeeklyTemplate() for day in range(7)}
        for row in self.schedule_repo.get_by_practitioner(practitioner_id):
            week[row.day_of_week] = _template_from_row(row)
        return week

    def get_template(self, practitioner_id: str, target_date: date) -> WeeklyTemplate:
        row = self.schedule_repo.get_for_day(practitioner_id, day_of_week(target_date))
        return _template_from_row(row) if row else WeeklyTemplate()

    def blocked_windows(self, practitioner_id: str, target_date: date) -> List[TimeWindow]:
        return [
            _leave_blocked_window(leave)
            for leave in self.leave_repo.get_for_date(practitioner_id, target_date)
        ]

    def slots_for(self, practitioner_id: str, target_date: date) -> List[Slot]:
        """Effective slots of a date: template slots minus leave windows"""
        return effective_slots(
            self.get_template(practitioner_id, target_date),
            self.blocked_windows(practitioner_id, target_date)
        )

    def available_slots(self, practitioner_id: str, target_date: date) -> List[Dict]:
        """Effective slots that still have room, with their remaining capacity"""
        template = self.get_template(practitioner_id, target_date)
        slots = effective_slots(template, self.blocked_windows(practitioner_id, target_date))
        if not slots:
            return []

        booked = self.appointment_repo.count_by_slot_start(
            practitioner_id, target_date, ACTIVE_STATUSES | {AppointmentStatus.COMPLETED}
        )

        available = []
        for slot in slots:
            remaining = template.max_patients_per_slot - _booked_in_slot(booked, slot)
            if remaining > 0:
                available.append({
                    "start": slot.start,
                    "end": slot.end,
                    "remaining_capacity": remaining
                })
        return available


class ConflictDetector:
    """Read-only preview of the appointments a candidate leave would hit"""

    def __init__(self, db):
        self.db = db
        self.appointment_repo = AppointmentRepository(db)

    def preview(
        self,
        practitioner_id: str,
        leave_date: date,
        is_full_day: bool,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None
    ) -> List[AffectedAppointment]:
        if is_full_day and (start_time is not None or end_time is not None):
            raise ValidationError(
                message="A full day leave cannot carry a time window",
                details={"is_full_day": True}
            )
        blocked = leave_window(is_full_day, start_time, end_time)

        candidates = self.appointment_repo.find_by_practitioner_and_date(
            practitioner_id, leave_date, PREVIEW_STATUSES
        )

        return [
            AffectedAppointment(
                id=appointment.id,
                token_number=appointment.token_number,
                time_slot_start=appointment.time_slot_start,
                time_slot_end=appointment.time_slot_end,
                patient_label=appointment.patient_label
            )
            for appointment in candidates
            if TimeWindow(
                to_minutes(appointment.time_slot_start),
                _slot_end_minutes(appointment.time_slot_end)
            ).overlaps(blocked)
        ]


def _slot_end_minutes(value: time) -> int:
    # A slot clamped to 23:59 still runs to the end of the day
    minutes = to_minutes(value)
    return minutes + 1 if minutes == 24 * 60 - 1 else minutes


class LeaveService:
    """Date-scoped practitioner absences"""

    def __init__(self, db, max_attempts: Optional[int] = None, backoff_seconds: Optional[float] = None):
        self.db = db
        self.leave_repo = LeaveRepository(db)
        self.conflict_detector = ConflictDetector(db)
        self.max_attempts = max_attempts or settings.STORAGE_RETRY_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.STORAGE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    def _log_contention(self, practitioner_id: str, leave_date: date, attempt: int, error: Exception):
        logger.warning(
            f"Leave commit contention for practitioner {practitioner_id} on {leave_date} "
            f"(attempt {attempt}/{self.max_attempts}): {error}"
        )
        if attempt < self.max_attempts:
            time_module.sleep(self.backoff_seconds * attempt)

    def add_leave(
        self,
        practitioner_id: str,
        leave_date: date,
        reason: str,
        is_full_day: bool = True,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None
    ) -> PractitionerLeave:
        """Record a leave, rejecting any overlap with an existing one"""
        leave, _ = self.commit_leave(
            practitioner_id, leave_date, reason, is_full_day, start_time, end_time
        )
        return leave

    def preview_leave(
        self,
        practitioner_id: str,
        leave_date: date,
        is_full_day: bool = True,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None
    ) -> List[AffectedAppointment]:
        """Appointments the leave would invalidate; writes nothing"""
        return self.conflict_detector.preview(
            practitioner_id, leave_date, is_full_day, start_time, end_time
        )

    def commit_leave(
        self,
        practitioner_id: str,
        leave_date: date,
        reason: str,
        is_full_day: bool = True,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None
    ) -> Tuple[PractitionerLeave, int]:
        """Create the leave in one transaction.

        Returns the leave and the number of appointments it overlaps at
        commit time. Those appointments are left untouched; staff cancel
        them one by one.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(message="Reason is required", details={"reason": reason})

        affected = self.conflict_detector.preview(
            practitioner_id, leave_date, is_full_day, start_time, end_time
        )
        blocked = leave_window(is_full_day, start_time, end_time)

        if not is_full_day:
            start_time = truncate_to_minute(start_time)
            end_time = truncate_to_minute(end_time)

        for attempt in range(1, self.max_attempts + 1):
            try:
                # Held until commit, so the overlap check below cannot race
                self.leave_repo.lock_day(practitioner_id, leave_date)
            except (OperationalError, IntegrityError) as e:
                self.db.rollback()
                self._log_contention(practitioner_id, leave_date, attempt, e)
                continue

            existing = self.leave_repo.get_for_date(practitioner_id, leave_date)
            overlapping = [
                leave for leave in existing if _leave_blocked_window(leave).overlaps(blocked)
            ]
            if overlapping:
                self.db.rollback()
                raise ConflictError(
                    message="Leave overlaps an existing leave on this date",
                    details={"conflicting_leave_ids": [leave.id for leave in overlapping]}
                )

            try:
                leave = self.leave_repo.create({
                    "practitioner_id": practitioner_id,
                    "leave_date": leave_date,
                    "start_time": None if is_full_day else start_time,
                    "end_time": None if is_full_day else end_time,
                    "reason": reason
                })
                self.db.commit()
                break
            except OperationalError as e:
                self.db.rollback()
                self._log_contention(practitioner_id, leave_date, attempt, e)
            except IntegrityError:
                self.db.rollback()
                raise ConflictError(
                    message="Leave overlaps an existing leave on this date",
                    details={"practitioner_id": practitioner_id, "leave_date": leave_date.isoformat()}
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                raise handle_database_error(e, "commit leave")
        else:
            raise TransientError(details={
                "practitioner_id": practitioner_id,
                "leave_date": leave_date.isoformat(),
                "attempts": self.max_attempts
            })

        logger.info(
            f"Committed leave {leave.id} for practitioner {practitioner_id} on {leave_date} "
            f"({len(affected)} affected appointments)"
        )
        return leave, len(affected)

    def remove_leave(self, leave_id: str) -> bool:
        """Delete a leave; a missing id is a successful no-op"""
        try:
            removed = self.leave_repo.delete(leave_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise handle_database_error(e, "remove leave")

        if removed:
            logger.info(f"Removed leave {leave_id}")
        return removed

    def list_leaves(
        self,
        practitioner_id: Optional[str] = None,
        upcoming_only: bool = False,
        today: Optional[date] = None
    ) -> List[PractitionerLeave]:
        """Leaves by date ascending; ``today`` is the caller's local day"""
        date_from = (today or date.today()) if upcoming_only else None
        return self.leave_repo.get_all(practitioner_id=practitioner_id, date_from=date_from)


class QueueCoordinator:
    """Walk-in registration, bookings, token allocation and visit status"""

    def __init__(
        self,
        db,
        outside_hours_policy: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.availability = AvailabilityService(db)
        self.appointment_repo = AppointmentRepository(db)
        self.counter_repo = TokenCounterRepository(db)
        self.outside_hours_policy = outside_hours_policy or settings.WALK_IN_OUTSIDE_HOURS_POLICY
        self.max_attempts = max_attempts or settings.STORAGE_RETRY_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.STORAGE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.clock = clock or datetime.now

    def _check_walk_in_hours(
        self,
        practitioner_id: str,
        visit_date: date,
        template: WeeklyTemplate,
        arrival: time
    ) -> None:
        blocked = self.availability.blocked_windows(practitioner_id, visit_date)
        if is_available_at(template, blocked, arrival):
            return

        if not template.enabled:
            cause = "DAY_DISABLED"
        elif any(window.is_full_day for window in blocked):
            cause = "ON_LEAVE"
        elif any(window.contains(to_minutes(arrival)) for window in blocked):
            cause = "ON_LEAVE"
        else:
            cause = "OUTSIDE_WORKING_HOURS"

        raise OutsideHoursError(
            message="Practitioner is not available for walk-ins at this time",
            details={
                "practitioner_id": practitioner_id,
                "date": visit_date.isoformat(),
                "arrival_time": arrival.strftime("%H:%M"),
                "cause": cause
            }
        )

    def _allocate_and_create(
        self,
        appointment_data: dict,
        before_create: Optional[Callable[[], None]] = None
    ) -> Appointment:
        """Allocate a token and create the appointment as one unit.

        Storage contention rolls both back and retries with a short backoff;
        no token survives without its appointment.
        """
        clinic_id = appointment_data["clinic_id"]
        practitioner_id = appointment_data["practitioner_id"]
        visit_date = appointment_data["appointment_date"]
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                token_number = self.counter_repo.allocate_next(clinic_id, practitioner_id, visit_date)
                if before_create:
                    before_create()
                appointment = self.appointment_repo.create(
                    dict(appointment_data, token_number=token_number)
                )
                self.db.commit()
            except (OperationalError, IntegrityError) as e:
                self.db.rollback()
                last_error = e
                logger.warning(
                    f"Token allocation contention for {clinic_id}/{practitioner_id}/{visit_date} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    time_module.sleep(self.backoff_seconds * attempt)
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                raise handle_database_error(e, "token allocation")
            except Exception:
                self.db.rollback()
                raise

            logger.info(
                f"Issued token {appointment.token_number} for {clinic_id}/{practitioner_id}/{visit_date} "
                f"(appointment {appointment.id})"
            )
            return appointment

        details = {
            "clinic_id": clinic_id,
            "practitioner_id": practitioner_id,
            "date": visit_date.isoformat(),
            "attempts": self.max_attempts
        }
        if isinstance(last_error, IntegrityError):
            raise ConflictError(message="Token number collision, please retry", details=details)
        raise TransientError(details=details)

    def register_walk_in(
        self,
        clinic_id: str,
        practitioner_id: str,
        visit_date: date,
        patient_ref: str,
        chief_complaint: Optional[str] = None,
        patient_label: Optional[str] = None,
        arrival_time: Optional[time] = None,
        allow_outside_hours: bool = False
    ) -> WalkInRegistration:
        """Queue a walk-in patient under the next token of the day"""
        if not patient_ref or not patient_ref.strip():
            raise ValidationError(message="patient_ref is required", details={"patient_ref": patient_ref})

        template = self.availability.get_template(practitioner_id, visit_date)
        if arrival_time is None:
            now = self.clock()
            if visit_date == now.date():
                arrival_time = time(now.hour, now.minute)
            else:
                arrival_time = template.start_time

        if not (allow_outside_hours or self.outside_hours_policy == "allow"):
            self._check_walk_in_hours(practitioner_id, visit_date, template, arrival_time)

        duration = (
            template.slot_duration_minutes if template.enabled else settings.WALK_IN_SLOT_MINUTES
        )
        slot_start = time(arrival_time.hour, arrival_time.minute)
        slot_end = from_minutes(to_minutes(slot_start) + duration)

        appointment = self._allocate_and_create({
            "clinic_id": clinic_id,
            "practitioner_id": practitioner_id,
            "patient_ref": patient_ref.strip(),
            "patient_label": patient_label.strip() if patient_label else None,
            "appointment_date": visit_date,
            "time_slot_start": slot_start,
            "time_slot_end": slot_end,
            "status": AppointmentStatus.SCHEDULED,
            "source": AppointmentSource.WALK_IN,
            "chief_complaint": chief_complaint.strip() if chief_complaint and chief_complaint.strip() else None
        })

        return WalkInRegistration(
            token_number=appointment.token_number,
            appointment_id=appointment.id,
            appointment=appointment
        )

    def book_appointment(
        self,
        clinic_id: str,
        practitioner_id: str,
        visit_date: date,
        slot_start: time,
        patient_ref: str,
        patient_label: Optional[str] = None,
        chief_complaint: Optional[str] = None
    ) -> Appointment:
        """Book a scheduled visit into an effective slot that still has room"""
        if not patient_ref or not patient_ref.strip():
            raise ValidationError(message="patient_ref is required", details={"patient_ref": patient_ref})

        template = self.availability.get_template(practitioner_id, visit_date)
        slots = effective_slots(template, self.availability.blocked_windows(practitioner_id, visit_date))
        slot = next((s for s in slots if s.start == slot_start), None)
        if slot is None:
            raise OutsideHoursError(
                message="Requested slot is not in the practitioner's availability",
                details={
                    "practitioner_id": practitioner_id,
                    "date": visit_date.isoformat(),
                    "slot_start": slot_start.strftime("%H:%M")
                }
            )

        def ensure_capacity():
            # Runs after the counter row is locked, so bookings of one queue serialize here
            booked = _booked_in_slot(
                self.appointment_repo.count_by_slot_start(
                    practitioner_id, visit_date, ACTIVE_STATUSES | {AppointmentStatus.COMPLETED}
                ),
                slot
            )
            if booked >= template.max_patients_per_slot:
                raise ConflictError(
                    message="This time slot is fully booked",
                    details={
                        "slot_start": slot.start.strftime("%H:%M"),
                        "capacity": template.max_patients_per_slot
                    }
                )

        return self._allocate_and_create(
            {
                "clinic_id": clinic_id,
                "practitioner_id": practitioner_id,
                "patient_ref": patient_ref.strip(),
                "patient_label": patient_label.strip() if patient_label else None,
                "appointment_date": visit_date,
                "time_slot_start": slot.start,
                "time_slot_end": slot.end,
                "status": AppointmentStatus.SCHEDULED,
                "source": AppointmentSource.BOOKED,
                "chief_complaint": chief_complaint.strip() if chief_complaint and chief_complaint.strip() else None
            },
            before_create=ensure_capacity
        )

    def list_queue(
        self,
        clinic_id: str,
        visit_date: date,
        practitioner_id: Optional[str] = None,
        include_cancelled: bool = False
    ) -> List[Appointment]:
        """The line staff work through, in token order"""
        statuses = None
        if not include_cancelled:
            statuses = [s for s in AppointmentStatus if s != AppointmentStatus.CANCELLED]
        return self.appointment_repo.get_queue(clinic_id, visit_date, practitioner_id, statuses)

    def queue_board(self, clinic_id: str, visit_date: date) -> List[Dict]:
        """Per practitioner: the token being served and the tokens waiting"""
        entries = self.appointment_repo.get_queue(
            clinic_id, visit_date, statuses=ACTIVE_STATUSES
        )

        boards: Dict[str, Dict] = {}
        for appointment in entries:
            board = boards.setdefault(appointment.practitioner_id, {
                "practitioner_id": appointment.practitioner_id,
                "current_token": None,
                "current_patient": None,
                "waiting": []
            })
            if appointment.status == AppointmentStatus.IN_PROGRESS:
                board["current_token"] = appointment.token_number
                board["current_patient"] = appointment.patient_label
            elif appointment.status in WAITING_STATUSES:
                board["waiting"].append({
                    "token_number": appointment.token_number,
                    "patient_label": appointment.patient_label,
                    "status": appointment.status
                })

        return sorted(boards.values(), key=lambda board: board["practitioner_id"])

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.appointment_repo.get_by_id(appointment_id)
        if not appointment:
            raise NotFoundError(
                message="Appointment not found",
                details={"appointment_id": appointment_id}
            )
        return appointment

    def transition_status(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        reason: Optional[str] = None
    ) -> Appointment:
        """Drive a visit one step through the status machine"""
        try:
            appointment = self.appointment_repo.get_by_id(appointment_id, for_update=True)
            if not appointment:
                raise NotFoundError(
                    message="Appointment not found",
                    details={"appointment_id": appointment_id}
                )
            previous = appointment.status
            changed = apply_transition(appointment, target, reason=reason)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise handle_database_error(e, "status transition")
        except Exception:
            self.db.rollback()
            raise

        if changed:
            logger.info(
                f"Appointment {appointment_id} (token {appointment.token_number}) "
                f"{previous.value} -> {target.value}"
            )
        return appointment
