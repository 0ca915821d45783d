"""
Background reconciler.

Catches up appointment state that depends on the clock:
    1. confirmed appointments whose end time has passed become absence
    2. checked-in appointments whose end time has passed become completed
    3. confirmed appointments starting about 24h from now get one reminder

Each step commits on its own. A failing step is logged, rolled back and
skipped; the sweep never raises to its caller, so a screen refresh is never
blocked by it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .availability import format_slot, local_today, to_local
from .core.config import get_settings
from .lifecycle import Transition, appointment_end, appointment_start, next_status
from .models import AppointmentStatus, NotificationType
from .notifications import notify_customer, reminder_dedupe_key, reminder_message

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    absences: int = 0
    completions: int = 0
    reminders: int = 0
    failed_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "absences": self.absences,
            "completions": self.completions,
            "reminders": self.reminders,
            "failed_steps": list(self.failed_steps),
        }


async def _sweep_ended(
    session: AsyncSession,
    now: datetime,
    source: AppointmentStatus,
    transition: Transition,
) -> int:
    today = local_today(now)
    candidates = await repository.find_appointments_by_status(session, source, on_or_before=today)
    moved = 0
    for appt in candidates:
        if appointment_end(appt) < now:
            await repository.update_appointment_status(
                session, appt, next_status(appt.status, transition), now
            )
            moved += 1
    return moved


async def sweep_absences(session: AsyncSession, now: datetime) -> int:
    """Confirmed appointments that ended without a check-in become absence."""
    return await _sweep_ended(session, now, AppointmentStatus.CONFIRMED, Transition.MARK_ABSENCE)


async def sweep_completions(session: AsyncSession, now: datetime) -> int:
    return await _sweep_ended(session, now, AppointmentStatus.CHECKED_IN, Transition.COMPLETE)


async def sweep_reminders(session: AsyncSession, now: datetime) -> int:
    settings = get_settings()
    target = to_local(now) + timedelta(hours=settings.reminder_lead_hours)
    window = timedelta(minutes=settings.reminder_window_minutes)
    window_start, window_end = target - window, target + window

    candidates = await repository.find_appointments_by_status(
        session,
        AppointmentStatus.CONFIRMED,
        between=(window_start.date(), window_end.date()),
    )
    sent = 0
    for appt in candidates:
        if not (window_start <= appointment_start(appt) <= window_end):
            continue
        key = reminder_dedupe_key(appt.id)
        if await repository.notification_exists(session, key):
            continue
        service = await repository.get_service(session, appt.service_id)
        staff = await repository.get_staff(session, appt.staff_id)
        await notify_customer(
            session,
            appt.customer_id,
            NotificationType.REMINDER,
            "Appointment Reminder",
            reminder_message(
                service.name if service else "Service",
                staff.name if staff else "Stylist",
                format_slot(appt.start_time),
            ),
            appointment_id=appt.id,
            dedupe_key=key,
        )
        sent += 1
    return sent


async def _run_step(
    session: AsyncSession,
    name: str,
    step: Callable[[AsyncSession, datetime], Awaitable[int]],
    now: datetime,
) -> int | None:
    try:
        count = await step(session, now)
        await session.commit()
        return count
    except Exception:
        await session.rollback()
        logger.exception(f"Reconciliation step {name} failed")
        return None


async def run_reconciliation(session: AsyncSession, now: datetime) -> ReconciliationReport:
    """Run absence, completion and reminder sweeps in that order."""
    report = ReconciliationReport()
    for name, step in (
        ("absences", sweep_absences),
        ("completions", sweep_completions),
        ("reminders", sweep_reminders),
    ):
        count = await _run_step(session, name, step, now)
        if count is None:
            report.failed_steps.append(name)
        else:
            setattr(report, name, count)

    if report.absences or report.completions or report.reminders:
        logger.info(
            f"Reconciled: {report.absences} absences, {report.completions} completions, "
            f"{report.reminders} reminders"
        )
    return report
