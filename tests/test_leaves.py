import pytest
import time as time_module
from concurrent.futures import ThreadPoolExecutor
from datetime import date, time

from sqlalchemy.exc import OperationalError

from clinic_engine.core.exceptions import ConflictError, TransientError, ValidationError
from clinic_engine.domain.scheduling.models import PractitionerLeave
from clinic_engine.domain.scheduling.repository import LeaveRepository
from clinic_engine.domain.scheduling.service import LeaveService

VISIT_DATE = date(2025, 6, 2)
PRACTITIONER_ID = "dr-asha"


@pytest.mark.integration
@pytest.mark.leaves
class TestLeaveService:

    def test_add_full_day_leave(self, leave_service):
        leave = leave_service.add_leave(PRACTITIONER_ID, VISIT_DATE, "  Conference  ")

        assert leave.id
        assert leave.is_full_day
        assert leave.start_time is None and leave.end_time is None
        assert leave.reason == "Conference"

    def test_reason_is_required(self, leave_service):
        with pytest.raises(ValidationError):
            leave_service.add_leave(PRACTITIONER_ID, VISIT_DATE, "   ")
        assert leave_service.list_leaves(PRACTITIONER_ID) == []

    def test_partial_leave_needs_end_after_start(self, leave_service):
        with pytest.raises(ValidationError):
            leave_service.add_leave(
                PRACTITIONER_ID, VISIT_DATE, "Errand",
                is_full_day=False, start_time=time(11, 0), end_time=time(10, 0)
            )

    def test_partial_leave_needs_both_times(self, leave_service):
        with pytest.raises(ValidationError):
            leave_service.add_leave(
                PRACTITIONER_ID, VISIT_DATE, "Errand",
                is_full_day=False, start_time=time(11, 0)
            )

    def test_overlapping_partial_leaves_conflict(self, leave_service):
        leave_service.add_leave(
            PRACTITIONER_ID, VISIT_DATE, "Errand",
            is_full_day=False, start_time=time(10, 0), end_time=time(12, 0)
        )

        with pytest.raises(ConflictError):
            leave_service.add_leave(
                PRACTITIONER_ID, VISIT_DATE, "Dentist",
                is_full_day=False, start_time=time(11, 0), end_time=time(13, 0)
            )

        # Touching windows are fine
        leave_service.add_leave(
            PRACTITIONER_ID, VISIT_DATE, "Lunch",
            is_full_day=False, start_time=time(12, 0), end_time=time(13, 0)
        )
        assert len(leave_service.list_leaves(PRACTITIONER_ID)) == 2

    def test_full_day_conflicts_with_partial(self, leave_service):
        existing = leave_service.add_leave(
            PRACTITIONER_ID, VISIT_DATE, "Errand",
            is_full_day=False, start_time=time(10, 0), end_time=time(12, 0)
        )

        with pytest.raises(ConflictError) as exc_info:
            leave_service.add_leave(PRACTITIONER_ID, VISIT_DATE, "Sick")
        assert exc_info.value.details["conflicting_leave_ids"] == [existing.id]

    def test_other_practitioner_is_independent(self, leave_service):
        leave_service.add_leave(PRACTITIONER_ID, VISIT_DATE, "Conference")
        leave_service.add_leave("dr-ben", VISIT_DATE, "Conference")
        assert len(leave_service.list_leaves()) == 2

    def test_remove_leave_is_idempotent(self, leave_service):
        leave = leave_service.add_leave(PRACTITIONER_ID, VISIT_DATE, "Conference")

        assert leave_service.remove_leave(leave.id) is True
        assert leave_service.remove_leave(leave.id) is False
        assert leave_service.remove_leave("no-such-leave") is False

    def test_list_leaves_ordering_and_upcoming_filter(self, leave_service):
        leave_service.add_leave(PRACTITIONER_ID, date(2025, 6, 10), "Later")
        leave_service.add_leave(
            PRACTITIONER_ID, date(2025, 6, 2), "Afternoon",
            is_full_day=False, start_time=time(14, 0), end_time=time(16, 0)
        )
        leave_service.add_leave(
            PRACTITIONER_ID, date(2025, 6, 2), "Morning",
            is_full_day=False, start_time=time(9, 0), end_time=time(10, 0)
        )
        leave_service.add_leave(PRACTITIONER_ID, date(2025, 5, 20), "Past")

        reasons = [leave.reason for leave in leave_service.list_leaves(PRACTITIONER_ID)]
        assert reasons == ["Past", "Morning", "Afternoon", "Later"]

        upcoming = leave_service.list_leaves(
            PRACTITIONER_ID, upcoming_only=True, today=date(2025, 6, 2)
        )
        assert [leave.reason for leave in upcoming] == ["Morning", "Afternoon", "Later"]

    def test_commit_reports_affected_count(self, leave_service, coordinator, working_monday):
        coordinator.book_appointment("clinic-1", PRACTITIONER_ID, VISIT_DATE, time(10, 0), "p-1")
        coordinator.book_appointment("clinic-1", PRACTITIONER_ID, VISIT_DATE, time(15, 0), "p-2")

        leave, affected_count = leave_service.commit_leave(
            PRACTITIONER_ID, VISIT_DATE, "Afternoon off",
            is_full_day=False, start_time=time(14, 0), end_time=time(17, 0)
        )

        assert leave.id
        assert affected_count == 1
        # Appointments are left for staff to cancel
        queue = coordinator.list_queue("clinic-1", VISIT_DATE)
        assert len(queue) == 2

    def test_seconds_are_dropped_from_partial_windows(self, leave_service):
        with pytest.raises(ValidationError):
            leave_service.add_leave(
                PRACTITIONER_ID, VISIT_DATE, "Blink",
                is_full_day=False, start_time=time(10, 0, 30), end_time=time(10, 0, 45)
            )

        leave = leave_service.add_leave(
            PRACTITIONER_ID, VISIT_DATE, "Errand",
            is_full_day=False, start_time=time(10, 0, 30), end_time=time(10, 30, 15)
        )
        assert leave.start_time == time(10, 0)
        assert leave.end_time == time(10, 30)


@pytest.mark.integration
@pytest.mark.leaves
class TestLeaveCommitContention:

    def test_concurrent_identical_full_day_leaves_store_one(
        self, session_factory, db_session, monkeypatch
    ):
        read_leaves = LeaveRepository.get_for_date

        def slow_get_for_date(self, practitioner_id, leave_date):
            # Widen the gap between the overlap check and the insert
            leaves = read_leaves(self, practitioner_id, leave_date)
            time_module.sleep(0.2)
            return leaves

        monkeypatch.setattr(LeaveRepository, "get_for_date", slow_get_for_date)

        def commit(i):
            session = session_factory()
            try:
                service = LeaveService(session, max_attempts=10, backoff_seconds=0.05)
                service.commit_leave(PRACTITIONER_ID, VISIT_DATE, f"Conference {i}")
                return "committed"
            except ConflictError:
                return "conflict"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=4) as executor:
            outcomes = list(executor.map(commit, range(4)))

        assert sorted(outcomes) == ["committed", "conflict", "conflict", "conflict"]
        assert db_session.query(PractitionerLeave).count() == 1

    def test_persistent_contention_surfaces_transient_error(self, db_session, monkeypatch):
        calls = []

        def locked_create(self, leave_data):
            calls.append(leave_data)
            raise OperationalError("INSERT INTO practitioner_leaves", {}, Exception("database is locked"))

        monkeypatch.setattr(LeaveRepository, "create", locked_create)
        service = LeaveService(db_session, max_attempts=3, backoff_seconds=0)

        with pytest.raises(TransientError) as exc_info:
            service.commit_leave(PRACTITIONER_ID, VISIT_DATE, "Conference")

        assert len(calls) == 3
        assert exc_info.value.details["attempts"] == 3
        assert db_session.query(PractitionerLeave).count() == 0

    def test_contention_then_success_stores_one_leave(self, db_session, monkeypatch):
        create_leave = LeaveRepository.create
        calls = []

        def flaky_create(self, leave_data):
            calls.append(leave_data)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO practitioner_leaves", {}, Exception("database is locked"))
            return create_leave(self, leave_data)

        monkeypatch.setattr(LeaveRepository, "create", flaky_create)
        service = LeaveService(db_session, max_attempts=3, backoff_seconds=0)

        leave, affected_count = service.commit_leave(PRACTITIONER_ID, VISIT_DATE, "Conference")

        assert leave.id
        assert affected_count == 0
        assert len(calls) == 2
        assert db_session.query(PractitionerLeave).count() == 1
