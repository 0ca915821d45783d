"""
Appointment lifecycle state machine.

    pending ──┐
              ├─► confirmed ──► checked-in ──► completed
   (create) ──┘       │  ▲
                      │  └── reschedule (max 3)
                      ├─► cancelled
                      └─► absence (sweep, after the end time passes)

completed, cancelled and absence are terminal.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from .availability import combine_local
from .core.config import get_settings
from .errors import ConflictError, NotFoundError, OwnershipError, StateError
from .models import AppointmentStatus
from .pricing import round_half_up


class Transition(str, Enum):
    RESCHEDULE = "reschedule"
    CHECK_IN = "check_in"
    COMPLETE = "complete"
    MARK_ABSENCE = "mark_absence"
    CANCEL = "cancel"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset
    target: AppointmentStatus
    rejection: str


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.ABSENCE}
)

UPCOMING_STATUSES = frozenset(
    {AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING, AppointmentStatus.CHECKED_IN}
)

TRANSITIONS = {
    Transition.RESCHEDULE: TransitionRule(
        frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        AppointmentStatus.CONFIRMED,
        "Only pending or confirmed appointments can be rescheduled.",
    ),
    Transition.CHECK_IN: TransitionRule(
        frozenset({AppointmentStatus.CONFIRMED}),
        AppointmentStatus.CHECKED_IN,
        "Appointment is not confirmed.",
    ),
    Transition.COMPLETE: TransitionRule(
        frozenset({AppointmentStatus.CHECKED_IN}),
        AppointmentStatus.COMPLETED,
        "Customer must be checked in before the appointment can be completed.",
    ),
    Transition.MARK_ABSENCE: TransitionRule(
        frozenset({AppointmentStatus.CONFIRMED}),
        AppointmentStatus.ABSENCE,
        "Only confirmed appointments can be marked as absence.",
    ),
    Transition.CANCEL: TransitionRule(
        frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        AppointmentStatus.CANCELLED,
        "Only pending or confirmed appointments can be cancelled.",
    ),
}


def can_transition(current: AppointmentStatus, transition: Transition) -> bool:
    return AppointmentStatus(current) in TRANSITIONS[transition].sources


def next_status(current: AppointmentStatus, transition: Transition) -> AppointmentStatus:
    """Target status for a transition, or StateError if it is not allowed."""
    rule = TRANSITIONS[transition]
    if AppointmentStatus(current) not in rule.sources:
        raise StateError(rule.rejection, {"status": AppointmentStatus(current).value})
    return rule.target


def ensure_can_reschedule(appointment, limit: Optional[int] = None) -> None:
    if limit is None:
        limit = get_settings().max_reschedules
    next_status(appointment.status, Transition.RESCHEDULE)
    if appointment.reschedule_count >= limit:
        raise ConflictError(
            "Reschedule limit reached.",
            {"reschedule_count": appointment.reschedule_count, "limit": limit},
        )


# Check-in rejections in the order they are evaluated
_CHECK_IN_REJECTIONS = (
    (AppointmentStatus.COMPLETED, "Appointment already completed."),
    (AppointmentStatus.CHECKED_IN, "Customer already checked in."),
    (AppointmentStatus.CANCELLED, "Appointment was cancelled."),
    (AppointmentStatus.ABSENCE, "Appointment marked as Absence."),
)


def ensure_can_check_in(appointment, staff_id: int) -> None:
    """
    Validate a stylist scanning a customer's booking reference.

    Order matters: existence, then ownership, then status.
    """
    if appointment is None:
        raise NotFoundError("Appointment not found.")
    if appointment.staff_id != staff_id:
        raise OwnershipError("Appointment belongs to another stylist.")
    status = AppointmentStatus(appointment.status)
    for rejected, message in _CHECK_IN_REJECTIONS:
        if status == rejected:
            raise StateError(message, {"status": status.value})
    next_status(status, Transition.CHECK_IN)


def compute_refund(
    paid_cents: int,
    appointment_date: date,
    today: date,
    notice_days: Optional[int] = None,
    refund_percent: Optional[int] = None,
) -> int:
    """
    Refund owed when a customer cancels.

    Less than `notice_days` calendar days ahead refunds nothing, otherwise
    `refund_percent` of the amount paid.
    """
    settings = get_settings()
    if notice_days is None:
        notice_days = settings.refund_notice_days
    if refund_percent is None:
        refund_percent = settings.refund_percent

    days_ahead = (appointment_date - today).days
    if days_ahead < notice_days:
        return 0
    return round_half_up(Decimal(paid_cents) * Decimal(refund_percent) / Decimal(100))


def appointment_start(appointment) -> datetime:
    return combine_local(appointment.appointment_date, appointment.start_time)


def appointment_end(appointment) -> datetime:
    return combine_local(appointment.appointment_date, appointment.end_time)


def is_upcoming(appointment, now: datetime) -> bool:
    return AppointmentStatus(appointment.status) in UPCOMING_STATUSES and appointment_start(appointment) > now


def is_history(appointment, now: datetime) -> bool:
    age = now - appointment_start(appointment)
    status = AppointmentStatus(appointment.status)
    if status == AppointmentStatus.COMPLETED:
        return age <= timedelta(days=7)
    if status == AppointmentStatus.CANCELLED:
        return age <= timedelta(days=1)
    return age >= timedelta(0)


def split_upcoming_history(appointments: Iterable, now: datetime) -> tuple[list, list]:
    """Upcoming sorted soonest first, history sorted most recent first."""
    items = list(appointments)
    upcoming = sorted((a for a in items if is_upcoming(a, now)), key=appointment_start)
    history = sorted((a for a in items if is_history(a, now)), key=appointment_start, reverse=True)
    return upcoming, history
