"""
Tests for the appointment state machine, refunds and list bucketing.
"""

from datetime import date, datetime, time, timedelta
from types import SimpleNamespace

import pytest

from lumina.errors import ConflictError, NotFoundError, OutcomeCode, OwnershipError, StateError
from lumina.lifecycle import (
    TERMINAL_STATUSES,
    Transition,
    can_transition,
    compute_refund,
    ensure_can_check_in,
    ensure_can_reschedule,
    is_history,
    is_upcoming,
    next_status,
    split_upcoming_history,
)
from lumina.models import AppointmentStatus as S

from conftest import NOW


def _appt(status=S.CONFIRMED, staff_id=1, day=None, start=time(10, 0), reschedule_count=0):
    return SimpleNamespace(
        status=status,
        staff_id=staff_id,
        appointment_date=day or NOW.date(),
        start_time=start,
        end_time=(datetime.combine(date.min, start) + timedelta(hours=1)).time(),
        reschedule_count=reschedule_count,
    )


# ============================================================================
# TRANSITIONS
# ============================================================================

class TestTransitions:

    @pytest.mark.parametrize(
        "current,transition,target",
        [
            (S.PENDING, Transition.RESCHEDULE, S.CONFIRMED),
            (S.CONFIRMED, Transition.RESCHEDULE, S.CONFIRMED),
            (S.CONFIRMED, Transition.CHECK_IN, S.CHECKED_IN),
            (S.CHECKED_IN, Transition.COMPLETE, S.COMPLETED),
            (S.CONFIRMED, Transition.MARK_ABSENCE, S.ABSENCE),
            (S.PENDING, Transition.CANCEL, S.CANCELLED),
            (S.CONFIRMED, Transition.CANCEL, S.CANCELLED),
        ],
    )
    def test_allowed(self, current, transition, target):
        assert next_status(current, transition) == target

    @pytest.mark.parametrize(
        "current,transition",
        [
            (S.CONFIRMED, Transition.COMPLETE),
            (S.PENDING, Transition.COMPLETE),
            (S.CHECKED_IN, Transition.CANCEL),
            (S.CHECKED_IN, Transition.RESCHEDULE),
            (S.PENDING, Transition.CHECK_IN),
        ],
    )
    def test_rejected(self, current, transition):
        with pytest.raises(StateError):
            next_status(current, transition)

    def test_terminal_states_go_nowhere(self):
        for status in TERMINAL_STATUSES:
            for transition in Transition:
                assert can_transition(status, transition) is False

    def test_complete_requires_check_in_message(self):
        with pytest.raises(StateError) as exc:
            next_status(S.CONFIRMED, Transition.COMPLETE)
        assert "checked in" in exc.value.message
        assert exc.value.code == OutcomeCode.STATE_ERROR


class TestReschedule:

    def test_under_limit(self):
        ensure_can_reschedule(_appt(reschedule_count=2))

    def test_limit_reached(self):
        with pytest.raises(ConflictError):
            ensure_can_reschedule(_appt(reschedule_count=3))

    def test_checked_in_cannot_reschedule(self):
        with pytest.raises(StateError):
            ensure_can_reschedule(_appt(status=S.CHECKED_IN))


# ============================================================================
# CHECK-IN PRECONDITIONS
# ============================================================================

class TestCheckIn:

    def test_missing_appointment(self):
        with pytest.raises(NotFoundError) as exc:
            ensure_can_check_in(None, 1)
        assert exc.value.message == "Appointment not found."

    def test_ownership_checked_before_status(self):
        with pytest.raises(OwnershipError) as exc:
            ensure_can_check_in(_appt(status=S.COMPLETED, staff_id=2), 1)
        assert exc.value.message == "Appointment belongs to another stylist."

    @pytest.mark.parametrize(
        "status,message",
        [
            (S.COMPLETED, "Appointment already completed."),
            (S.CHECKED_IN, "Customer already checked in."),
            (S.CANCELLED, "Appointment was cancelled."),
            (S.ABSENCE, "Appointment marked as Absence."),
            (S.PENDING, "Appointment is not confirmed."),
        ],
    )
    def test_status_rejections(self, status, message):
        with pytest.raises(StateError) as exc:
            ensure_can_check_in(_appt(status=status), 1)
        assert exc.value.message == message

    def test_confirmed_passes(self):
        ensure_can_check_in(_appt(), 1)


# ============================================================================
# REFUNDS
# ============================================================================

class TestComputeRefund:

    def test_less_than_three_days_refunds_nothing(self):
        assert compute_refund(11340, date(2026, 3, 4), date(2026, 3, 2)) == 0

    def test_same_day_refunds_nothing(self):
        assert compute_refund(11340, date(2026, 3, 2), date(2026, 3, 2)) == 0

    def test_exactly_three_days_refunds_eighty_percent(self):
        assert compute_refund(11340, date(2026, 3, 5), date(2026, 3, 2)) == 9072

    def test_refund_rounds_half_up(self):
        """80% of 1001 is 800.8."""
        assert compute_refund(1001, date(2026, 3, 20), date(2026, 3, 2)) == 801

    def test_custom_policy(self):
        assert compute_refund(10000, date(2026, 3, 20), date(2026, 3, 2), notice_days=30) == 0
        assert compute_refund(10000, date(2026, 3, 20), date(2026, 3, 2), refund_percent=50) == 5000


# ============================================================================
# UPCOMING / HISTORY
# ============================================================================

class TestBuckets:

    def test_future_confirmed_is_upcoming(self):
        appt = _appt(day=NOW.date() + timedelta(days=1))
        assert is_upcoming(appt, NOW) is True
        assert is_history(appt, NOW) is False

    def test_future_checked_in_is_upcoming(self):
        appt = _appt(status=S.CHECKED_IN, start=time(11, 0))
        assert is_upcoming(appt, NOW) is True

    def test_future_cancelled_is_not_upcoming(self):
        appt = _appt(status=S.CANCELLED, day=NOW.date() + timedelta(days=5))
        assert is_upcoming(appt, NOW) is False

    def test_completed_within_week_is_history(self):
        appt = _appt(status=S.COMPLETED, day=NOW.date() - timedelta(days=6))
        assert is_history(appt, NOW) is True

    def test_completed_older_than_week_hidden(self):
        appt = _appt(status=S.COMPLETED, day=NOW.date() - timedelta(days=8))
        assert is_history(appt, NOW) is False

    def test_cancelled_hidden_after_a_day(self):
        recent = _appt(status=S.CANCELLED, start=time(9, 0))
        old = _appt(status=S.CANCELLED, day=NOW.date() - timedelta(days=2))
        assert is_history(recent, NOW) is True
        assert is_history(old, NOW) is False

    def test_past_absence_is_history(self):
        appt = _appt(status=S.ABSENCE, day=NOW.date() - timedelta(days=30))
        assert is_history(appt, NOW) is True

    def test_split_orders_buckets(self):
        soon = _appt(day=NOW.date() + timedelta(days=1))
        later = _appt(day=NOW.date() + timedelta(days=9))
        recent = _appt(status=S.COMPLETED, day=NOW.date() - timedelta(days=1))
        older = _appt(status=S.COMPLETED, day=NOW.date() - timedelta(days=3))

        upcoming, history = split_upcoming_history([later, older, soon, recent], NOW)

        assert upcoming == [soon, later]
        assert history == [recent, older]
