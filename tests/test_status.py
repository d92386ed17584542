import pytest
from datetime import date, datetime

from clinic_engine.core.exceptions import InvalidTransitionError, NotFoundError
from clinic_engine.domain.scheduling.models import Appointment, AppointmentStatus
from clinic_engine.domain.scheduling.status import (
    ALLOWED_TRANSITIONS, TERMINAL_STATUSES, apply_transition, check_transition
)

VISIT_DATE = date(2025, 6, 2)
CLINIC_ID = "clinic-1"
PRACTITIONER_ID = "dr-asha"

S = AppointmentStatus


@pytest.mark.unit
@pytest.mark.queue
class TestStatusGraph:

    @pytest.mark.parametrize("current,target", [
        (S.SCHEDULED, S.CHECKED_IN),
        (S.SCHEDULED, S.CANCELLED),
        (S.SCHEDULED, S.NO_SHOW),
        (S.CHECKED_IN, S.IN_PROGRESS),
        (S.CHECKED_IN, S.NO_SHOW),
        (S.IN_PROGRESS, S.COMPLETED),
    ])
    def test_allowed_transitions(self, current, target):
        assert check_transition(current, target) is True

    @pytest.mark.parametrize("current,target", [
        (S.SCHEDULED, S.IN_PROGRESS),
        (S.SCHEDULED, S.COMPLETED),
        (S.CHECKED_IN, S.CANCELLED),
        (S.CHECKED_IN, S.SCHEDULED),
        (S.IN_PROGRESS, S.CANCELLED),
        (S.COMPLETED, S.SCHEDULED),
        (S.CANCELLED, S.CHECKED_IN),
        (S.NO_SHOW, S.COMPLETED),
        (S.SCHEDULED, S.SCHEDULED),
        (S.CHECKED_IN, S.CHECKED_IN),
    ])
    def test_rejected_transitions(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition(current, target)
        assert exc_info.value.details["current"] == current.value
        assert exc_info.value.details["requested"] == target.value

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_repeat_is_a_no_op(self, terminal):
        assert check_transition(terminal, terminal) is False

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.COMPLETED, S.CANCELLED, S.NO_SHOW}
        assert all(ALLOWED_TRANSITIONS[s] == frozenset() for s in TERMINAL_STATUSES)

    def test_apply_transition_stamps_times(self):
        appointment = Appointment(status=S.SCHEDULED)
        now = datetime(2025, 6, 2, 9, 5)

        assert apply_transition(appointment, S.CHECKED_IN, now=now)
        assert appointment.checked_in_at == now
        assert apply_transition(appointment, S.IN_PROGRESS, now=now)
        assert appointment.started_at == now
        assert apply_transition(appointment, S.COMPLETED, now=now)
        assert appointment.completed_at == now
        assert not apply_transition(appointment, S.COMPLETED, now=datetime(2025, 6, 2, 11, 0))
        assert appointment.completed_at == now

    def test_cancel_records_reason(self):
        appointment = Appointment(status=S.SCHEDULED)
        apply_transition(appointment, S.CANCELLED, reason="Patient called")

        assert appointment.status == S.CANCELLED
        assert appointment.cancelled_at is not None
        assert appointment.cancellation_reason == "Patient called"


@pytest.mark.integration
@pytest.mark.queue
class TestStatusTransitions:

    def _walk_in(self, coordinator):
        return coordinator.register_walk_in(CLINIC_ID, PRACTITIONER_ID, VISIT_DATE, "p-1")

    def test_full_visit_workflow(self, coordinator, working_monday):
        registration = self._walk_in(coordinator)

        for target in (S.CHECKED_IN, S.IN_PROGRESS, S.COMPLETED):
            appointment = coordinator.transition_status(registration.appointment_id, target)
            assert appointment.status == target

        stored = coordinator.get_appointment(registration.appointment_id)
        assert stored.status == S.COMPLETED
        assert stored.checked_in_at <= stored.started_at <= stored.completed_at

    def test_skipping_check_in_is_rejected(self, coordinator, working_monday):
        registration = self._walk_in(coordinator)

        with pytest.raises(InvalidTransitionError):
            coordinator.transition_status(registration.appointment_id, S.IN_PROGRESS)

        assert coordinator.get_appointment(registration.appointment_id).status == S.SCHEDULED

    def test_repeating_terminal_status_succeeds(self, coordinator, working_monday):
        registration = self._walk_in(coordinator)
        cancelled = coordinator.transition_status(
            registration.appointment_id, S.CANCELLED, reason="Left early"
        )
        cancelled_at = cancelled.cancelled_at

        again = coordinator.transition_status(registration.appointment_id, S.CANCELLED)
        assert again.status == S.CANCELLED
        assert again.cancelled_at == cancelled_at
        assert again.cancellation_reason == "Left early"

    def test_leaving_terminal_status_is_rejected(self, coordinator, working_monday):
        registration = self._walk_in(coordinator)
        coordinator.transition_status(registration.appointment_id, S.NO_SHOW)

        with pytest.raises(InvalidTransitionError):
            coordinator.transition_status(registration.appointment_id, S.CHECKED_IN)

    def test_unknown_appointment(self, coordinator):
        with pytest.raises(NotFoundError):
            coordinator.transition_status("missing", S.CHECKED_IN)
        with pytest.raises(NotFoundError):
            coordinator.get_appointment("missing")
