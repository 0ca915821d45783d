"""
Tests for the clock-driven reconciliation sweeps.
"""

from datetime import time, timedelta

import pytest
from sqlalchemy import select

from lumina import reconciler
from lumina.models import AppointmentStatus, Notification, NotificationType
from lumina.reconciler import run_reconciliation

from conftest import NOW, TODAY


TOMORROW = TODAY + timedelta(days=1)


@pytest.fixture
def book_for(catalog, customer, make_appointment):
    async def _make(day, start, status=AppointmentStatus.CONFIRMED, duration_minutes=60):
        return await make_appointment(
            customer,
            catalog.staff["jessica"],
            catalog.services["cut"],
            day,
            start,
            status=status,
            duration_minutes=duration_minutes,
        )
    return _make


async def reminders(session):
    result = await session.execute(select(Notification).where(Notification.type == NotificationType.REMINDER))
    return result.scalars().all()


class TestAbsences:

    @pytest.mark.asyncio
    async def test_ended_without_check_in_becomes_absence(self, session, book_for):
        appt = await book_for(TODAY, time(9, 0), duration_minutes=45)

        report = await run_reconciliation(session, NOW)

        assert report.absences == 1
        await session.refresh(appt)
        assert appt.status == AppointmentStatus.ABSENCE

    @pytest.mark.asyncio
    async def test_ending_right_now_is_left_alone(self, session, book_for):
        appt = await book_for(TODAY, time(9, 0), duration_minutes=60)

        report = await run_reconciliation(session, NOW)

        assert report.absences == 0
        await session.refresh(appt)
        assert appt.status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_yesterdays_late_appointment(self, session, book_for):
        appt = await book_for(TODAY - timedelta(days=1), time(17, 0))

        await run_reconciliation(session, NOW)

        await session.refresh(appt)
        assert appt.status == AppointmentStatus.ABSENCE


class TestCompletions:

    @pytest.mark.asyncio
    async def test_checked_in_past_end_becomes_completed(self, session, book_for):
        appt = await book_for(TODAY - timedelta(days=1), time(15, 0), status=AppointmentStatus.CHECKED_IN)

        report = await run_reconciliation(session, NOW)

        assert report.completions == 1
        await session.refresh(appt)
        assert appt.status == AppointmentStatus.COMPLETED
        assert appt.completed_at is not None

    @pytest.mark.asyncio
    async def test_in_progress_left_alone(self, session, book_for):
        appt = await book_for(TODAY, time(9, 30), status=AppointmentStatus.CHECKED_IN)

        await run_reconciliation(session, NOW)

        await session.refresh(appt)
        assert appt.status == AppointmentStatus.CHECKED_IN


class TestRepeatedRuns:

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, session, book_for):
        missed = await book_for(TODAY, time(9, 0), duration_minutes=45)
        served = await book_for(TODAY - timedelta(days=1), time(15, 0), status=AppointmentStatus.CHECKED_IN)

        first = await run_reconciliation(session, NOW)
        await session.refresh(served)
        completed_at = served.completed_at

        second = await run_reconciliation(session, NOW + timedelta(hours=1))

        assert (first.absences, first.completions) == (1, 1)
        assert (second.absences, second.completions) == (0, 0)
        await session.refresh(missed)
        await session.refresh(served)
        assert missed.status == AppointmentStatus.ABSENCE
        assert served.status == AppointmentStatus.COMPLETED
        assert served.completed_at == completed_at


class TestReminders:

    @pytest.mark.asyncio
    async def test_one_reminder_per_appointment(self, session, book_for):
        """Running the sweep again does not send a second reminder."""
        appt = await book_for(TOMORROW, time(10, 0))

        first = await run_reconciliation(session, NOW)
        second = await run_reconciliation(session, NOW + timedelta(minutes=20))

        assert first.reminders == 1
        assert second.reminders == 0
        sent = await reminders(session)
        assert len(sent) == 1
        assert sent[0].appointment_id == appt.id
        assert sent[0].message == "You have a booking for Wash & Cut with Jessica Alva tomorrow at 10:00."

    @pytest.mark.asyncio
    async def test_outside_window_not_reminded(self, session, book_for):
        await book_for(TOMORROW, time(12, 0))
        await book_for(TODAY + timedelta(days=3), time(10, 0))

        report = await run_reconciliation(session, NOW)

        assert report.reminders == 0
        assert await reminders(session) == []

    @pytest.mark.asyncio
    async def test_cancelled_not_reminded(self, session, book_for):
        await book_for(TOMORROW, time(10, 0), status=AppointmentStatus.CANCELLED)

        report = await run_reconciliation(session, NOW)

        assert report.reminders == 0


class TestFailures:

    @pytest.mark.asyncio
    async def test_failing_step_is_reported_not_raised(self, session, book_for, monkeypatch):
        await book_for(TODAY, time(9, 0), duration_minutes=30)
        await book_for(TOMORROW, time(10, 0))

        async def broken(session, now):
            raise RuntimeError("completion sweep exploded")

        monkeypatch.setattr(reconciler, "sweep_completions", broken)

        report = await run_reconciliation(session, NOW)

        assert report.failed_steps == ["completions"]
        assert report.absences == 1
        assert report.reminders == 1
        assert report.to_dict()["failed_steps"] == ["completions"]
