"""
Storage contract used by the booking and loyalty services.

Every function works on the caller's AsyncSession and never commits; the
caller owns the unit of work.
"""

import uuid
from datetime import date, datetime, time
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Appointment,
    AppointmentStatus,
    Customer,
    Notification,
    NotificationType,
    Order,
    OrderDiscount,
    PointEntryType,
    PointHistory,
    Promotion,
    Review,
    Service,
    Staff,
    Voucher,
    utcnow,
)
from .lifecycle import UPCOMING_STATUSES


# ============================================================================
# CUSTOMERS
# ============================================================================

async def find_customer_profile(session: AsyncSession, user_id: str) -> Optional[Customer]:
    result = await session.execute(select(Customer).where(Customer.user_id == user_id))
    return result.scalar_one_or_none()


async def get_customer(session: AsyncSession, customer_id: int, for_update: bool = False) -> Optional[Customer]:
    stmt = select(Customer).where(Customer.id == customer_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_customer_profile(
    session: AsyncSession,
    user_id: str,
    email: str,
    name: str,
    phone: Optional[str] = None,
) -> Customer:
    customer = Customer(user_id=user_id, email=email, name=name, phone=phone, points=0, lifetime_points=0)
    session.add(customer)
    await session.flush()
    return customer


async def adjust_customer_points(
    session: AsyncSession,
    customer: Customer,
    delta: int,
    lifetime_delta: int = 0,
) -> Customer:
    customer.points += delta
    customer.lifetime_points += lifetime_delta
    await session.flush()
    return customer


async def append_point_history(
    session: AsyncSession,
    customer_id: int,
    title: str,
    points: int,
    entry_type: PointEntryType,
    appointment_id: Optional[uuid.UUID] = None,
) -> PointHistory:
    entry = PointHistory(
        customer_id=customer_id,
        title=title,
        points=points,
        entry_type=entry_type,
        appointment_id=appointment_id,
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_point_history(session: AsyncSession, customer_id: int) -> Sequence[PointHistory]:
    result = await session.execute(
        select(PointHistory)
        .where(PointHistory.customer_id == customer_id)
        .order_by(PointHistory.created_at.desc(), PointHistory.id.desc())
    )
    return result.scalars().all()


# ============================================================================
# CATALOG
# ============================================================================

async def list_services(session: AsyncSession) -> Sequence[Service]:
    result = await session.execute(select(Service).order_by(Service.id))
    return result.scalars().all()


async def get_service(session: AsyncSession, service_id: int) -> Optional[Service]:
    result = await session.execute(select(Service).where(Service.id == service_id))
    return result.scalar_one_or_none()


async def list_staff(session: AsyncSession, active_only: bool = True) -> Sequence[Staff]:
    stmt = select(Staff).order_by(Staff.id)
    if active_only:
        stmt = stmt.where(Staff.active.is_(True))
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_staff(session: AsyncSession, staff_id: int, for_update: bool = False) -> Optional[Staff]:
    stmt = select(Staff).where(Staff.id == staff_id)
    if for_update:
        # Serializes bookings per stylist on backends that support row locks
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_staff_by_email(session: AsyncSession, email: str) -> Optional[Staff]:
    result = await session.execute(select(Staff).where(Staff.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def list_promotions(session: AsyncSession, active_only: bool = False) -> Sequence[Promotion]:
    stmt = select(Promotion).order_by(Promotion.id)
    if active_only:
        stmt = stmt.where(Promotion.active.is_(True))
    result = await session.execute(stmt)
    return result.scalars().all()


# ============================================================================
# APPOINTMENTS
# ============================================================================

async def get_appointment(
    session: AsyncSession,
    appointment_id: uuid.UUID,
    for_update: bool = False,
) -> Optional[Appointment]:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_appointments_by_staff(
    session: AsyncSession,
    staff_id: int,
    on_date: Optional[date] = None,
) -> Sequence[Appointment]:
    stmt = select(Appointment).where(Appointment.staff_id == staff_id)
    if on_date is not None:
        stmt = stmt.where(Appointment.appointment_date == on_date)
    result = await session.execute(stmt.order_by(Appointment.appointment_date, Appointment.start_time))
    return result.scalars().all()


async def find_appointments_by_customer(session: AsyncSession, customer_id: int) -> Sequence[Appointment]:
    result = await session.execute(
        select(Appointment)
        .where(Appointment.customer_id == customer_id)
        .order_by(Appointment.appointment_date, Appointment.start_time)
    )
    return result.scalars().all()


async def find_appointment_by_ref(session: AsyncSession, ref_id: str) -> Optional[Appointment]:
    """Look up a booking reference, preferring the active booking that holds it."""
    result = await session.execute(
        select(Appointment)
        .where(Appointment.ref_id == ref_id.strip().upper())
        .order_by(Appointment.created_at.desc())
    )
    candidates = result.scalars().all()
    for appt in candidates:
        if appt.status in UPCOMING_STATUSES:
            return appt
    return candidates[0] if candidates else None


async def find_conflicting_appointment(
    session: AsyncSession,
    staff_id: int,
    on_date: date,
    start_time: time,
    exclude_id: Optional[uuid.UUID] = None,
) -> Optional[Appointment]:
    stmt = select(Appointment).where(
        Appointment.staff_id == staff_id,
        Appointment.appointment_date == on_date,
        Appointment.start_time == start_time,
        Appointment.status != AppointmentStatus.CANCELLED,
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def ref_id_in_use(session: AsyncSession, ref_id: str) -> bool:
    result = await session.execute(
        select(Appointment.id).where(
            Appointment.ref_id == ref_id,
            Appointment.status.in_(list(UPCOMING_STATUSES)),
        )
    )
    return result.first() is not None


async def insert_appointment(session: AsyncSession, appointment: Appointment) -> Appointment:
    session.add(appointment)
    await session.flush()
    return appointment


async def update_appointment_status(
    session: AsyncSession,
    appointment: Appointment,
    status: AppointmentStatus,
    at: Optional[datetime] = None,
) -> Appointment:
    at = at or utcnow()
    appointment.status = status
    if status == AppointmentStatus.CHECKED_IN:
        appointment.checked_in_at = at
    elif status == AppointmentStatus.COMPLETED:
        appointment.completed_at = at
    elif status == AppointmentStatus.CANCELLED:
        appointment.cancelled_at = at
    await session.flush()
    return appointment


async def find_appointments_by_status(
    session: AsyncSession,
    status: AppointmentStatus,
    on_or_before: Optional[date] = None,
    between: Optional[tuple[date, date]] = None,
) -> Sequence[Appointment]:
    stmt = select(Appointment).where(Appointment.status == status)
    if on_or_before is not None:
        stmt = stmt.where(Appointment.appointment_date <= on_or_before)
    if between is not None:
        stmt = stmt.where(Appointment.appointment_date.between(between[0], between[1]))
    result = await session.execute(stmt)
    return result.scalars().all()


# ============================================================================
# ORDERS
# ============================================================================

async def insert_order(session: AsyncSession, order: Order) -> Order:
    session.add(order)
    await session.flush()
    return order


async def insert_order_discount(session: AsyncSession, discount: OrderDiscount) -> OrderDiscount:
    session.add(discount)
    await session.flush()
    return discount


async def find_order_for_appointment(session: AsyncSession, appointment_id: uuid.UUID) -> Optional[Order]:
    result = await session.execute(select(Order).where(Order.appointment_id == appointment_id))
    return result.scalar_one_or_none()


# ============================================================================
# VOUCHERS
# ============================================================================

async def list_vouchers(session: AsyncSession, customer_id: int) -> Sequence[Voucher]:
    result = await session.execute(
        select(Voucher).where(Voucher.customer_id == customer_id).order_by(Voucher.expires_on)
    )
    return result.scalars().all()


async def get_voucher(session: AsyncSession, voucher_id: uuid.UUID, for_update: bool = False) -> Optional[Voucher]:
    stmt = select(Voucher).where(Voucher.id == voucher_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def serial_number_exists(session: AsyncSession, serial_number: str) -> bool:
    result = await session.execute(select(Voucher.id).where(Voucher.serial_number == serial_number))
    return result.first() is not None


async def insert_voucher(session: AsyncSession, voucher: Voucher) -> Voucher:
    session.add(voucher)
    await session.flush()
    return voucher


async def mark_voucher_used(session: AsyncSession, voucher: Voucher, at: Optional[datetime] = None) -> bool:
    """Flag a voucher as spent. Returns False if another request got there first."""
    result = await session.execute(
        update(Voucher)
        .where(Voucher.id == voucher.id, Voucher.used.is_(False))
        .values(used=True, used_at=at or utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    voucher.used = True
    voucher.used_at = at or utcnow()
    return True


# ============================================================================
# REVIEWS
# ============================================================================

async def find_review_for_appointment(session: AsyncSession, appointment_id: uuid.UUID) -> Optional[Review]:
    result = await session.execute(select(Review).where(Review.appointment_id == appointment_id))
    return result.scalar_one_or_none()


async def get_review(session: AsyncSession, review_id: uuid.UUID) -> Optional[Review]:
    result = await session.execute(select(Review).where(Review.id == review_id))
    return result.scalar_one_or_none()


# ============================================================================
# NOTIFICATIONS
# ============================================================================

async def insert_notification(
    session: AsyncSession,
    customer_id: Optional[int],
    title: str,
    message: str,
    type: NotificationType,
    data: Optional[dict] = None,
    appointment_id: Optional[uuid.UUID] = None,
    dedupe_key: Optional[str] = None,
) -> Notification:
    notification = Notification(
        customer_id=customer_id,
        title=title,
        message=message,
        type=type,
        data=data,
        appointment_id=appointment_id,
        dedupe_key=dedupe_key,
    )
    session.add(notification)
    await session.flush()
    return notification


async def notification_exists(session: AsyncSession, dedupe_key: str) -> bool:
    result = await session.execute(select(Notification.id).where(Notification.dedupe_key == dedupe_key))
    return result.first() is not None


async def list_notifications(
    session: AsyncSession,
    customer_id: Optional[int],
    types: Optional[Sequence[NotificationType]] = None,
) -> Sequence[Notification]:
    if customer_id is None:
        stmt = select(Notification).where(Notification.customer_id.is_(None))
    else:
        stmt = select(Notification).where(Notification.customer_id == customer_id)
    if types:
        stmt = stmt.where(Notification.type.in_(list(types)))
    result = await session.execute(stmt.order_by(Notification.created_at.desc(), Notification.id.desc()))
    return result.scalars().all()


async def mark_notifications_read(session: AsyncSession, customer_id: Optional[int]) -> int:
    stmt = update(Notification).where(Notification.read.is_(False))
    if customer_id is None:
        stmt = stmt.where(Notification.customer_id.is_(None))
    else:
        stmt = stmt.where(Notification.customer_id == customer_id)
    result = await session.execute(stmt.values(read=True).execution_options(synchronize_session=False))
    return result.rowcount or 0
