"""
Availability checks for the hourly booking grid.

A slot is taken when it is the lunch break, or when the stylist already has
a non-cancelled appointment starting at the same hour and minute on that
date. When the customer picks "any stylist" only the lunch rule applies;
the real stylist is chosen at submission time.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from .core.config import get_settings
from .models import AppointmentStatus


ANY_STAFF = "any"

StaffChoice = Union[int, str]


@dataclass(frozen=True)
class TimeSlot:
    time: str
    available: bool

    def to_dict(self) -> dict:
        return {"time": self.time, "available": self.available}


def salon_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().salon_timezone)


def get_local_now() -> datetime:
    """Current datetime in the salon's timezone."""
    return datetime.now(salon_tz())


def to_local(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=salon_tz())
    return moment.astimezone(salon_tz())


def local_today(now: Optional[datetime] = None) -> date:
    return to_local(now or get_local_now()).date()


def combine_local(day: date, at: time) -> datetime:
    """Salon wall-clock date and time as an aware datetime."""
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=salon_tz())


def parse_slot(value: str) -> time:
    """Parse "HH:MM" (seconds tolerated) into a time."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time: {value!r}")
    return time(int(parts[0]), int(parts[1]))


def format_slot(value: time) -> str:
    return value.strftime("%H:%M")


def configured_slots() -> list[time]:
    return [parse_slot(slot) for slot in get_settings().time_slots_list]


def lunch_slot() -> time:
    return parse_slot(get_settings().lunch_break_slot)


def is_configured_slot(value: time) -> bool:
    return (value.hour, value.minute) in {(s.hour, s.minute) for s in configured_slots()}


def calculate_end_time(start: time, duration_minutes: int) -> time:
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    end = datetime.combine(date.min, start) + timedelta(minutes=duration_minutes)
    return end.time()


def earliest_bookable_date(today: date, lead_days: Optional[int] = None) -> date:
    if lead_days is None:
        lead_days = get_settings().booking_lead_days
    return today + timedelta(days=lead_days)


def is_date_bookable(day: date, today: date, lead_days: Optional[int] = None) -> bool:
    return day >= earliest_bookable_date(today, lead_days)


def _same_minute(a: time, b: time) -> bool:
    return a.hour == b.hour and a.minute == b.minute


def is_slot_taken(
    staff: StaffChoice,
    day: date,
    slot: time,
    appointments: Iterable,
    lunch: Optional[time] = None,
) -> bool:
    """
    Whether a start time is unavailable for a stylist.

    Args:
        staff: Stylist id, or ANY_STAFF
        day: Appointment date
        slot: Proposed start time
        appointments: Existing appointments to check against (any status)
        lunch: Lunch break slot, defaults to the configured one
    """
    if _same_minute(slot, lunch or lunch_slot()):
        return True
    if staff == ANY_STAFF:
        return False
    for appt in appointments:
        if appt.status == AppointmentStatus.CANCELLED:
            continue
        if appt.staff_id == staff and appt.appointment_date == day and _same_minute(appt.start_time, slot):
            return True
    return False


def list_time_slots(staff: StaffChoice, day: date, appointments: Iterable) -> list[TimeSlot]:
    existing = list(appointments)
    lunch = lunch_slot()
    return [
        TimeSlot(time=format_slot(slot), available=not is_slot_taken(staff, day, slot, existing, lunch))
        for slot in configured_slots()
    ]
