"""
Notification emission and feeds.

Notifications are rows, not pushes: delivery to devices is somebody else's
job. Each notification type has a fixed set of audiences; emitting a type
to an audience it does not belong to is a programming error.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .models import Appointment, AppointmentStatus, Notification, NotificationType, Promotion

logger = logging.getLogger(__name__)


class Audience(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


AUDIENCES: dict[NotificationType, frozenset] = {
    NotificationType.INFO: frozenset({Audience.CUSTOMER}),
    NotificationType.RECEIPT: frozenset({Audience.CUSTOMER}),
    NotificationType.PROMO: frozenset({Audience.CUSTOMER}),
    NotificationType.REMINDER: frozenset({Audience.CUSTOMER}),
    NotificationType.REVIEW: frozenset({Audience.CUSTOMER, Audience.STAFF}),
    NotificationType.SYSTEM: frozenset({Audience.STAFF}),
    NotificationType.BOOKING: frozenset({Audience.STAFF}),
}

_unmapped = set(NotificationType) - set(AUDIENCES)
if _unmapped:
    raise RuntimeError(f"Notification types without an audience: {sorted(t.value for t in _unmapped)}")

STAFF_FEED_TYPES = tuple(t for t, audiences in AUDIENCES.items() if Audience.STAFF in audiences)
STAFF_FEED_LIMIT = 20
PROMOTION_EXPIRY_WARNING_DAYS = 3


def audiences_for(notification_type: NotificationType) -> frozenset:
    return AUDIENCES[NotificationType(notification_type)]


def _check_audience(notification_type: NotificationType, audience: Audience) -> None:
    if audience not in audiences_for(notification_type):
        raise ValueError(f"{notification_type.value} notifications are not sent to {audience.value}")


async def notify_customer(
    session: AsyncSession,
    customer_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
    appointment_id: Optional[uuid.UUID] = None,
    dedupe_key: Optional[str] = None,
) -> Notification:
    _check_audience(notification_type, Audience.CUSTOMER)
    return await repository.insert_notification(
        session,
        customer_id=customer_id,
        title=title,
        message=message,
        type=notification_type,
        data=data,
        appointment_id=appointment_id,
        dedupe_key=dedupe_key,
    )


async def notify_staff(
    session: AsyncSession,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
    appointment_id: Optional[uuid.UUID] = None,
) -> Notification:
    _check_audience(notification_type, Audience.STAFF)
    return await repository.insert_notification(
        session,
        customer_id=None,
        title=title,
        message=message,
        type=notification_type,
        data=data,
        appointment_id=appointment_id,
    )


# ============================================================================
# MESSAGE TEXT
# ============================================================================

def reschedule_message(service_name: str, old_slot: str, new_slot: str, remaining: int) -> str:
    return f"{service_name} rescheduled from {old_slot} to {new_slot}. {remaining} reschedule(s) left."


def reminder_message(service_name: str, staff_name: str, start_hhmm: str) -> str:
    return f"You have a booking for {service_name} with {staff_name} tomorrow at {start_hhmm}."


def new_booking_message(customer_name: str, date_str: str, time_str: str) -> str:
    return f"{customer_name or 'Client'} booked a service for {date_str} {time_str}."


def reminder_dedupe_key(appointment_id: uuid.UUID) -> str:
    return f"reminder:{appointment_id}"


# ============================================================================
# FEEDS
# ============================================================================

@dataclass
class FeedItem:
    id: str
    title: str
    message: str
    type: NotificationType
    read: bool
    date: str
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "read": self.read,
            "date": self.date,
            "data": self.data,
        }


def _feed_item(notification: Notification) -> FeedItem:
    return FeedItem(
        id=str(notification.id),
        title=notification.title,
        message=notification.message,
        type=notification.type,
        read=notification.read,
        date=notification.created_at.isoformat() if notification.created_at else "",
        data=notification.data,
    )


async def customer_feed(session: AsyncSession, customer_id: int) -> list[FeedItem]:
    notifications = await repository.list_notifications(session, customer_id)
    return [_feed_item(n) for n in notifications]


async def staff_feed(session: AsyncSession, today: date) -> list[FeedItem]:
    """
    Staff notification feed.

    Stored booking/system/review notifications, plus two computed entries:
    a daily summary of today's confirmed appointments and a warning for
    each active promotion ending within the next three days.
    """
    stored = await repository.list_notifications(session, None, types=STAFF_FEED_TYPES)
    items = [_feed_item(n) for n in stored[:STAFF_FEED_LIMIT]]

    result = await session.execute(
        select(func.count(Appointment.id)).where(
            Appointment.appointment_date == today,
            Appointment.status == AppointmentStatus.CONFIRMED,
        )
    )
    confirmed_today = result.scalar_one()
    if confirmed_today > 0:
        items.insert(
            0,
            FeedItem(
                id="summary-today",
                title="Daily Summary",
                message=f"You have {confirmed_today} confirmed appointments today.",
                type=NotificationType.SYSTEM,
                read=False,
                date="Today",
            ),
        )

    result = await session.execute(
        select(Promotion).where(
            Promotion.active.is_(True),
            Promotion.end_date > today,
            Promotion.end_date < today + timedelta(days=PROMOTION_EXPIRY_WARNING_DAYS),
        )
    )
    for idx, promo in enumerate(result.scalars().all()):
        items.insert(
            0,
            FeedItem(
                id=f"expiry-{idx}",
                title="Promotion Expiring Soon",
                message=f'"{promo.title}" ends on {promo.end_date.isoformat()}.',
                type=NotificationType.SYSTEM,
                read=False,
                date="System",
            ),
        )
    return items
