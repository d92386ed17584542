"""
Scheduling Repository Layer

Provides data access operations for weekly schedules, leaves, appointments
and token counters. Repositories only flush; the service layer owns the
transaction and decides when to commit or roll back.
"""

from typing import Dict, Iterable, List, Optional
from datetime import date, time

from sqlalchemy import and_, func, update

from clinic_engine.domain.scheduling.models import (
    Appointment, AppointmentStatus,
    LeaveDayLock, PractitionerLeave, TokenCounter, WeeklySchedule
)


class WeeklyScheduleRepository:
    """Repository for weekly schedule data access operations"""

    def __init__(self, db):
        self.db = db

    def get_by_practitioner(self, practitioner_id: str) -> List[WeeklySchedule]:
        """Get the stored week of a practitioner ordered by day"""
        return self.db.query(WeeklySchedule).filter(
            WeeklySchedule.practitioner_id == practitioner_id
        ).order_by(WeeklySchedule.day_of_week).all()

    def get_for_day(self, practitioner_id: str, day_of_week: int) -> Optional[WeeklySchedule]:
        """Get the template of one day of the week"""
        return self.db.query(WeeklySchedule).filter(
            and_(
                WeeklySchedule.practitioner_id == practitioner_id,
                WeeklySchedule.day_of_week == day_of_week
            )
        ).first()

    def replace_week(self, practitioner_id: str, rows: Iterable[dict]) -> List[WeeklySchedule]:
        """Drop every stored day of the practitioner and write ``rows`` instead"""
        self.db.query(WeeklySchedule).filter(
            WeeklySchedule.practitioner_id == practitioner_id
        ).delete(synchronize_session=False)

        schedules = [
            WeeklySchedule(practitioner_id=practitioner_id, **row) for row in rows
        ]
        self.db.add_all(schedules)
        self.db.flush()
        return schedules


class LeaveRepository:
    """Repository for practitioner leave data access operations"""

    def __init__(self, db):
        self.db = db

    def lock_day(self, practitioner_id: str, leave_date: date) -> None:
        """Serialize leave writes of one practitioner and date.

        Bumps the lock row with a single UPDATE, which holds it until the
        caller's transaction ends. A missing row is inserted; a concurrent
        insert of the same key surfaces as IntegrityError.
        """
        result = self.db.execute(
            update(LeaveDayLock)
            .where(and_(
                LeaveDayLock.practitioner_id == practitioner_id,
                LeaveDayLock.leave_date == leave_date
            ))
            .values(version=LeaveDayLock.version + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self.db.add(LeaveDayLock(
                practitioner_id=practitioner_id,
                leave_date=leave_date,
                version=1
            ))
            self.db.flush()

    def create(self, leave_data: dict) -> PractitionerLeave:
        """Stage a new leave"""
        leave = PractitionerLeave(**leave_data)
        self.db.add(leave)
        self.db.flush()
        return leave

    def get_by_id(self, leave_id: str) -> Optional[PractitionerLeave]:
        """Get leave by ID"""
        return self.db.query(PractitionerLeave).filter(
            PractitionerLeave.id == leave_id
        ).first()

    def get_for_date(self, practitioner_id: str, leave_date: date) -> List[PractitionerLeave]:
        """Get every leave of a practitioner on a calendar date"""
        return self.db.query(PractitionerLeave).filter(
            and_(
                PractitionerLeave.practitioner_id == practitioner_id,
                PractitionerLeave.leave_date == leave_date
            )
        ).order_by(PractitionerLeave.start_time.asc().nullsfirst()).all()

    def get_all(
        self,
        practitioner_id: Optional[str] = None,
        date_from: Optional[date] = None
    ) -> List[PractitionerLeave]:
        """Get leaves ordered by date, full day leaves first within a date"""
        query = self.db.query(PractitionerLeave)
        if practitioner_id:
            query = query.filter(PractitionerLeave.practitioner_id == practitioner_id)
        if date_from:
            query = query.filter(PractitionerLeave.leave_date >= date_from)

        return query.order_by(
            PractitionerLeave.leave_date.asc(),
            PractitionerLeave.start_time.asc().nullsfirst(),
            PractitionerLeave.created_at.asc()
        ).all()

    def delete(self, leave_id: str) -> bool:
        """Delete a leave"""
        result = self.db.query(PractitionerLeave).filter(
            PractitionerLeave.id == leave_id
        ).delete(synchronize_session=False)
        self.db.flush()
        return result > 0


class AppointmentRepository:
    """Repository for appointment data access operations.

    ``find_by_practitioner_and_date`` is the read port the conflict
    detector depends on.
    """

    def __init__(self, db):
        self.db = db

    def create(self, appointment_data: dict) -> Appointment:
        """Stage a new appointment"""
        appointment = Appointment(**appointment_data)
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def get_by_id(self, appointment_id: str, for_update: bool = False) -> Optional[Appointment]:
        """Get appointment by ID, optionally locking the row"""
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_by_practitioner_and_date(
        self,
        practitioner_id: str,
        appointment_date: date,
        statuses: Iterable[AppointmentStatus]
    ) -> List[Appointment]:
        """Get a practitioner's appointments of a date in the given statuses"""
        return self.db.query(Appointment).filter(
            and_(
                Appointment.practitioner_id == practitioner_id,
                Appointment.appointment_date == appointment_date,
                Appointment.status.in_(list(statuses))
            )
        ).order_by(
            Appointment.time_slot_start,
            Appointment.token_number
        ).all()

    def count_by_slot_start(
        self,
        practitioner_id: str,
        appointment_date: date,
        statuses: Iterable[AppointmentStatus]
    ) -> Dict[time, int]:
        """Number of appointments per slot start time"""
        rows = self.db.query(
            Appointment.time_slot_start, func.count(Appointment.id)
        ).filter(
            and_(
                Appointment.practitioner_id == practitioner_id,
                Appointment.appointment_date == appointment_date,
                Appointment.status.in_(list(statuses))
            )
        ).group_by(Appointment.time_slot_start).all()
        return {slot_start: count for slot_start, count in rows}

    def get_queue(
        self,
        clinic_id: str,
        appointment_date: date,
        practitioner_id: Optional[str] = None,
        statuses: Optional[Iterable[AppointmentStatus]] = None
    ) -> List[Appointment]:
        """Get a clinic's queue of a date in token order"""
        query = self.db.query(Appointment).filter(
            and_(
                Appointment.clinic_id == clinic_id,
                Appointment.appointment_date == appointment_date
            )
        )
        if practitioner_id:
            query = query.filter(Appointment.practitioner_id == practitioner_id)
        if statuses is not None:
            query = query.filter(Appointment.status.in_(list(statuses)))

        return query.order_by(
            Appointment.token_number,
            Appointment.created_at
        ).all()


class TokenCounterRepository:
    """Atomic per (clinic, practitioner, date) token counter"""

    def __init__(self, db):
        self.db = db

    def _key(self, clinic_id: str, practitioner_id: str, counter_date: date):
        return and_(
            TokenCounter.clinic_id == clinic_id,
            TokenCounter.practitioner_id == practitioner_id,
            TokenCounter.counter_date == counter_date
        )

    def allocate_next(self, clinic_id: str, practitioner_id: str, counter_date: date) -> int:
        """Increment-and-read the counter inside the caller's transaction.

        The increment is a single UPDATE, so the row stays locked until the
        caller commits or rolls back. A missing row is inserted with token 1;
        a concurrent insert of the same key surfaces as IntegrityError.
        """
        result = self.db.execute(
            update(TokenCounter)
            .where(self._key(clinic_id, practitioner_id, counter_date))
            .values(last_token=TokenCounter.last_token + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self.db.add(TokenCounter(
                clinic_id=clinic_id,
                practitioner_id=practitioner_id,
                counter_date=counter_date,
                last_token=1
            ))
            self.db.flush()
            return 1

        return self.db.query(TokenCounter.last_token).filter(
            self._key(clinic_id, practitioner_id, counter_date)
        ).scalar()

    def get_last(self, clinic_id: str, practitioner_id: str, counter_date: date) -> int:
        """Last issued token, 0 when none was issued"""
        value = self.db.query(TokenCounter.last_token).filter(
            self._key(clinic_id, practitioner_id, counter_date)
        ).scalar()
        return value or 0
