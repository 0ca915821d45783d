"""
Booking Orchestrator

Runs the booking lifecycle end to end: price preview, creation after the
gateway confirms payment, reschedule, cancel with refund, staff check-in
and completion.

Each public operation is one unit of work. Everything it writes
(appointment, order, discount, voucher use, points, ledger, notifications)
is committed together or not at all, and the caller gets an Outcome with a
reason code instead of an exception.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .availability import (
    ANY_STAFF,
    TimeSlot,
    calculate_end_time,
    earliest_bookable_date,
    format_slot,
    is_configured_slot,
    is_date_bookable,
    list_time_slots,
    local_today,
    lunch_slot,
    parse_slot,
)
from .core.config import get_settings
from .errors import (
    ConflictError,
    NotFoundError,
    Outcome,
    OwnershipError,
    ValidationError,
    run_operation,
)
from .lifecycle import (
    Transition,
    appointment_start,
    compute_refund,
    ensure_can_check_in,
    ensure_can_reschedule,
    next_status,
    split_upcoming_history,
)
from .models import (
    Appointment,
    AppointmentStatus,
    Customer,
    DiscountSource,
    NotificationType,
    Order,
    OrderDiscount,
    OrderStatus,
    PaymentMethod,
    Promotion,
    Service,
    Staff,
    Voucher,
)
from .notifications import new_booking_message, notify_customer, notify_staff, reschedule_message
from .payments import generate_transaction_ref, validate_card, validate_pin, verify_pin
from .pricing import (
    InapplicableDiscountError,
    PriceBreakdown,
    calculate_checkout_price,
    discount_from_record,
    filter_applicable_vouchers,
    select_auto_promotion,
)
from .receipts import ReceiptView, build_receipt, format_rm
from .rewards import award_booking_points

logger = logging.getLogger(__name__)


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class CardDetails(BaseModel):
    number: str
    expiry: str = Field(..., description="MM/YY")
    cvc: str
    holder_name: str


class CheckoutRequest(BaseModel):
    service_id: int
    staff_id: Optional[int] = Field(default=None, description="None lets the salon pick a stylist")
    appointment_date: date
    start_time: str = Field(..., description="HH:MM")
    voucher_id: Optional[uuid.UUID] = None


class CreateAppointmentRequest(CheckoutRequest):
    payment_method: PaymentMethod
    expected_total_cents: int = Field(..., ge=0, description="Amount the payer confirmed")
    card: Optional[CardDetails] = None
    pin: Optional[str] = None
    transaction_ref: Optional[str] = None


@dataclass
class CheckoutPreview:
    price: PriceBreakdown
    promotion: Optional[Promotion] = None
    voucher: Optional[Voucher] = None
    applicable_vouchers: list[Voucher] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "price": self.price.to_dict(),
            "promotion": {"id": self.promotion.id, "title": self.promotion.title}
            if self.promotion
            else None,
            "voucher_id": str(self.voucher.id) if self.voucher else None,
            "applicable_vouchers": [
                {"id": str(v.id), "title": v.title, "serial_number": v.serial_number}
                for v in self.applicable_vouchers
            ],
        }


@dataclass
class BookingConfirmation:
    appointment: Appointment
    order: Order
    receipt: ReceiptView
    points_earned: int


@dataclass
class CancellationResult:
    appointment: Appointment
    refund_cents: int


@dataclass
class AppointmentView:
    id: str
    ref_id: str
    service_id: int
    service_name: str
    staff_id: int
    staff_name: str
    appointment_date: str
    start_time: str
    end_time: str
    status: str
    reschedule_count: int
    reschedules_left: int
    price_paid_cents: int
    reviewed: bool

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class AppointmentBuckets:
    upcoming: list[AppointmentView]
    history: list[AppointmentView]

    def to_dict(self) -> dict:
        return {
            "upcoming": [a.to_dict() for a in self.upcoming],
            "history": [a.to_dict() for a in self.history],
        }


# ============================================================================
# HELPERS
# ============================================================================

def generate_ref_id() -> str:
    return f"A{secrets.randbelow(10000):04d}"


def validate_slot(day: date, start: time, today: date) -> None:
    if not is_configured_slot(start):
        raise ValidationError("Selected time is not a bookable slot.", {"start_time": format_slot(start)})
    if (start.hour, start.minute) == (lunch_slot().hour, lunch_slot().minute):
        raise ValidationError("The lunch break slot cannot be booked.", {"start_time": format_slot(start)})
    if not is_date_bookable(day, today):
        raise ValidationError(
            f"Bookings open from {earliest_bookable_date(today).isoformat()}.",
            {"appointment_date": day.isoformat()},
        )


def parse_start_time(value: str) -> time:
    try:
        return parse_slot(value)
    except ValueError:
        raise ValidationError("Invalid start time.", {"start_time": value})


def validate_payment(request: CreateAppointmentRequest, customer: Customer, today: date) -> None:
    if request.payment_method == PaymentMethod.CARD:
        if request.card is None:
            raise ValidationError("Card details are required.")
        validate_card(
            request.card.number,
            request.card.expiry,
            request.card.cvc,
            request.card.holder_name,
            today,
        )
    else:
        validate_pin(request.pin)
        if not customer.pin_hash:
            raise ValidationError("Set a transaction PIN before paying with Touch 'n Go.")
        if not verify_pin(customer, request.pin):
            raise ValidationError("Incorrect PIN.")


async def _load_service(session: AsyncSession, service_id: int) -> Service:
    service = await repository.get_service(session, service_id)
    if service is None:
        raise NotFoundError("Service not found.")
    return service


async def _load_voucher(
    session: AsyncSession,
    voucher_id: Optional[uuid.UUID],
    customer_id: int,
    today: date,
    for_update: bool = False,
) -> Optional[Voucher]:
    if voucher_id is None:
        return None
    voucher = await repository.get_voucher(session, voucher_id, for_update=for_update)
    if voucher is None:
        raise NotFoundError("Voucher not found.")
    if voucher.customer_id != customer_id:
        raise OwnershipError("Voucher belongs to another customer.")
    if voucher.used:
        raise ValidationError("Voucher has already been used.")
    if voucher.expires_on < today:
        raise ValidationError("Voucher has expired.")
    return voucher


async def _price(
    session: AsyncSession,
    service: Service,
    rank,
    voucher: Optional[Voucher],
    today: date,
) -> tuple[PriceBreakdown, Optional[Promotion]]:
    """A selected voucher replaces the auto-applied promotion."""
    promotion = None
    if voucher is None:
        promotions = await repository.list_promotions(session, active_only=True)
        promotion = select_auto_promotion(promotions, service.id, today)
    promo_discount = (
        discount_from_record(promotion.discount_kind, promotion.discount_value) if promotion else None
    )
    voucher_discount = (
        discount_from_record(voucher.discount_kind, voucher.discount_value) if voucher else None
    )
    try:
        price = calculate_checkout_price(
            service.price_cents,
            rank=rank,
            voucher=voucher_discount,
            promotion=promo_discount,
            tax_percent=get_settings().sst_percent,
        )
    except InapplicableDiscountError as e:
        raise ValidationError(str(e))
    return price, promotion


async def _pick_staff(
    session: AsyncSession,
    staff_id: Optional[int],
    day: date,
    start: time,
    exclude_id: Optional[uuid.UUID] = None,
) -> Staff:
    """Chosen stylist, locked and free at the slot, or the first free one."""
    if staff_id is not None:
        staff = await repository.get_staff(session, staff_id, for_update=True)
        if staff is None or not staff.active:
            raise NotFoundError("Stylist not found.")
        if await repository.find_conflicting_appointment(session, staff.id, day, start, exclude_id):
            raise ConflictError("Selected slot is no longer available.")
        return staff

    for candidate in await repository.list_staff(session):
        if not await repository.find_conflicting_appointment(session, candidate.id, day, start, exclude_id):
            return await repository.get_staff(session, candidate.id, for_update=True)
    raise ConflictError("No stylist is available at the selected time.")


async def _allocate_ref_id(session: AsyncSession) -> str:
    for _ in range(get_settings().ref_id_max_attempts):
        ref_id = generate_ref_id()
        if not await repository.ref_id_in_use(session, ref_id):
            return ref_id
    raise ConflictError("Could not allocate a booking reference, please try again.")


def _integrity_conflict(error: IntegrityError) -> ConflictError:
    # Postgres names the index, SQLite names the column
    detail = str(error.orig)
    if "uq_appointment_active_ref" in detail or "appointments.ref_id" in detail:
        return ConflictError("Booking reference is already in use, please try again.")
    return ConflictError("Selected slot is no longer available.")


async def _flush_or_conflict(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        raise _integrity_conflict(e)


# ============================================================================
# AVAILABILITY / PREVIEW
# ============================================================================

async def get_availability(
    session: AsyncSession,
    staff_id: Optional[int],
    day: date,
    today: date,
) -> dict:
    staff = ANY_STAFF if staff_id is None else staff_id
    appointments: Sequence[Appointment] = []
    if staff_id is not None:
        appointments = await repository.find_appointments_by_staff(session, staff_id, day)
    slots: list[TimeSlot] = list_time_slots(staff, day, appointments)
    return {
        "date": day.isoformat(),
        "bookable": is_date_bookable(day, today),
        "earliest_bookable_date": earliest_bookable_date(today).isoformat(),
        "slots": [s.to_dict() for s in slots],
    }


async def preview_checkout(
    session: AsyncSession,
    customer_id: int,
    request: CheckoutRequest,
    today: date,
) -> Outcome[CheckoutPreview]:
    """Price a selection without writing anything."""

    async def work() -> CheckoutPreview:
        service = await _load_service(session, request.service_id)
        rank = None
        if request.staff_id is not None:
            staff = await repository.get_staff(session, request.staff_id)
            if staff is None:
                raise NotFoundError("Stylist not found.")
            rank = staff.rank
        voucher = await _load_voucher(session, request.voucher_id, customer_id, today)
        price, promotion = await _price(session, service, rank, voucher, today)
        vouchers = await repository.list_vouchers(session, customer_id)
        return CheckoutPreview(
            price=price,
            promotion=promotion,
            voucher=voucher if price.discount_source == DiscountSource.VOUCHER else None,
            applicable_vouchers=filter_applicable_vouchers(vouchers, price.gross_cents, today),
        )

    return await run_operation(session, "preview_checkout", work)


# ============================================================================
# LIFECYCLE OPERATIONS
# ============================================================================

async def create_appointment(
    session: AsyncSession,
    customer_id: int,
    request: CreateAppointmentRequest,
    now: datetime,
) -> Outcome[BookingConfirmation]:
    """
    Book a service once the gateway has confirmed payment.

    The slot is re-checked under the stylist row lock; the partial unique
    index on (staff, date, start) catches anything that slips past it.
    """
    today = local_today(now)

    async def work() -> BookingConfirmation:
        start = parse_start_time(request.start_time)
        validate_slot(request.appointment_date, start, today)
        service = await _load_service(session, request.service_id)

        customer = await repository.get_customer(session, customer_id, for_update=True)
        if customer is None:
            raise NotFoundError("Customer profile not found.")
        validate_payment(request, customer, today)

        staff = await _pick_staff(session, request.staff_id, request.appointment_date, start)
        rank = staff.rank if request.staff_id is not None else None
        voucher = await _load_voucher(session, request.voucher_id, customer.id, today, for_update=True)
        price, promotion = await _price(session, service, rank, voucher, today)

        if price.final_total_cents != request.expected_total_cents:
            raise ConflictError(
                "Price has changed, please review your booking.",
                {"expected": request.expected_total_cents, "actual": price.final_total_cents},
            )

        appointment = Appointment(
            ref_id=await _allocate_ref_id(session),
            customer_id=customer.id,
            staff_id=staff.id,
            service_id=service.id,
            appointment_date=request.appointment_date,
            start_time=start,
            end_time=calculate_end_time(start, service.duration_minutes),
            status=AppointmentStatus.CONFIRMED,
            reschedule_count=0,
            price_paid_cents=price.final_total_cents,
        )
        try:
            await repository.insert_appointment(session, appointment)
        except IntegrityError as e:
            raise _integrity_conflict(e)

        order = await repository.insert_order(
            session,
            Order(
                appointment_id=appointment.id,
                base_price_cents=price.base_price_cents,
                surcharge_cents=price.surcharge_cents,
                discount_cents=price.discount_cents,
                tax_cents=price.tax_cents,
                rounding_cents=price.rounding_cents,
                total_payable_cents=price.final_total_cents,
                payment_method=request.payment_method,
                transaction_ref=request.transaction_ref or generate_transaction_ref(),
                status=OrderStatus.PAID,
                refund_cents=0,
            ),
        )

        if price.discount_source == DiscountSource.PROMOTION:
            await repository.insert_order_discount(
                session,
                OrderDiscount(
                    order_id=order.id,
                    source=DiscountSource.PROMOTION,
                    discount_kind=promotion.discount_kind,
                    discount_value=promotion.discount_value,
                    discount_cents=price.discount_cents,
                    promotion_id=promotion.id,
                ),
            )
        elif price.discount_source == DiscountSource.VOUCHER:
            await repository.insert_order_discount(
                session,
                OrderDiscount(
                    order_id=order.id,
                    source=DiscountSource.VOUCHER,
                    discount_kind=voucher.discount_kind,
                    discount_value=voucher.discount_value,
                    discount_cents=price.discount_cents,
                    voucher_id=voucher.id,
                ),
            )
            if not await repository.mark_voucher_used(session, voucher, now):
                raise ConflictError("Voucher has already been used.")

        points = await award_booking_points(session, customer, price.final_total_cents, appointment.id)

        receipt = build_receipt(order, appointment, service.name, staff.name, customer.name)
        await notify_customer(
            session,
            customer.id,
            NotificationType.RECEIPT,
            "Booking Confirmed",
            "Your appointment has been successfully booked.",
            data=receipt.model_dump(),
            appointment_id=appointment.id,
        )
        await notify_staff(
            session,
            NotificationType.BOOKING,
            "New Booking",
            new_booking_message(
                customer.name,
                appointment.appointment_date.isoformat(),
                format_slot(appointment.start_time),
            ),
            appointment_id=appointment.id,
        )

        logger.info(
            f"Booked {appointment.ref_id} for customer {customer.id} with stylist {staff.id} "
            f"on {appointment.appointment_date} {format_slot(start)}, paid {price.final_total_cents}"
        )
        return BookingConfirmation(appointment=appointment, order=order, receipt=receipt, points_earned=points)

    return await run_operation(session, "create_appointment", work, "Booking confirmed.")


async def reschedule_appointment(
    session: AsyncSession,
    customer_id: int,
    appointment_id: uuid.UUID,
    new_date: date,
    new_start_time: str,
    now: datetime,
    new_staff_id: Optional[int] = None,
) -> Outcome[Appointment]:
    today = local_today(now)

    async def work() -> Appointment:
        appointment = await repository.get_appointment(session, appointment_id, for_update=True)
        if appointment is None:
            raise NotFoundError("Appointment not found.")
        if appointment.customer_id != customer_id:
            raise OwnershipError("Appointment belongs to another customer.")
        ensure_can_reschedule(appointment)

        start = parse_start_time(new_start_time)
        validate_slot(new_date, start, today)
        staff = await _pick_staff(
            session,
            new_staff_id if new_staff_id is not None else appointment.staff_id,
            new_date,
            start,
            exclude_id=appointment.id,
        )
        service = await _load_service(session, appointment.service_id)

        old_slot = f"{appointment.appointment_date.isoformat()} {format_slot(appointment.start_time)}"
        appointment.staff_id = staff.id
        appointment.appointment_date = new_date
        appointment.start_time = start
        appointment.end_time = calculate_end_time(start, service.duration_minutes)
        appointment.reschedule_count += 1
        appointment.status = next_status(appointment.status, Transition.RESCHEDULE)
        await _flush_or_conflict(session)

        remaining = max(0, get_settings().max_reschedules - appointment.reschedule_count)
        await notify_customer(
            session,
            customer_id,
            NotificationType.INFO,
            "Appointment Rescheduled",
            reschedule_message(service.name, old_slot, f"{new_date.isoformat()} {format_slot(start)}", remaining),
            appointment_id=appointment.id,
        )
        logger.info(f"Rescheduled {appointment.ref_id} from {old_slot} ({remaining} left)")
        return appointment

    return await run_operation(session, "reschedule_appointment", work, "Appointment rescheduled.")


async def cancel_appointment(
    session: AsyncSession,
    customer_id: int,
    appointment_id: uuid.UUID,
    now: datetime,
) -> Outcome[CancellationResult]:
    """Cancel and record the refund; the status change and refund land together."""
    today = local_today(now)

    async def work() -> CancellationResult:
        appointment = await repository.get_appointment(session, appointment_id, for_update=True)
        if appointment is None:
            raise NotFoundError("Appointment not found.")
        if appointment.customer_id != customer_id:
            raise OwnershipError("Appointment belongs to another customer.")
        target = next_status(appointment.status, Transition.CANCEL)

        refund = compute_refund(appointment.price_paid_cents, appointment.appointment_date, today)
        order = await repository.find_order_for_appointment(session, appointment.id)
        if order is not None:
            order.refund_cents = refund
            if refund > 0:
                order.status = OrderStatus.REFUNDED
        await repository.update_appointment_status(session, appointment, target, now)

        service = await _load_service(session, appointment.service_id)
        refund_text = f"A refund of {format_rm(refund)} is on its way." if refund else "This cancellation is not eligible for a refund."
        await notify_customer(
            session,
            customer_id,
            NotificationType.INFO,
            "Appointment Cancelled",
            f"{service.name} on {appointment.appointment_date.isoformat()} "
            f"{format_slot(appointment.start_time)} was cancelled. {refund_text}",
            appointment_id=appointment.id,
        )
        logger.info(f"Cancelled {appointment.ref_id}, refund {refund}")
        return CancellationResult(appointment=appointment, refund_cents=refund)

    return await run_operation(session, "cancel_appointment", work, "Appointment cancelled.")


async def check_in_appointment(
    session: AsyncSession,
    staff_id: int,
    ref_id: str,
    now: datetime,
) -> Outcome[Appointment]:
    """Stylist scans a booking reference to mark the customer present."""
    captured: dict = {}

    async def work() -> Appointment:
        appointment = await repository.find_appointment_by_ref(session, ref_id)
        ensure_can_check_in(appointment, staff_id)
        await repository.update_appointment_status(
            session, appointment, next_status(appointment.status, Transition.CHECK_IN), now
        )
        customer = await repository.get_customer(session, appointment.customer_id)
        captured["name"] = customer.name if customer else "Customer"
        return appointment

    outcome = await run_operation(session, "check_in_appointment", work)
    if outcome.ok:
        outcome.message = f"{captured['name']} Checked-In Successfully."
    return outcome


async def complete_appointment(
    session: AsyncSession,
    staff_id: int,
    appointment_id: uuid.UUID,
    now: datetime,
) -> Outcome[Appointment]:
    async def work() -> Appointment:
        appointment = await repository.get_appointment(session, appointment_id, for_update=True)
        if appointment is None:
            raise NotFoundError("Appointment not found.")
        if appointment.staff_id != staff_id:
            raise OwnershipError("Appointment belongs to another stylist.")
        target = next_status(appointment.status, Transition.COMPLETE)
        await repository.update_appointment_status(session, appointment, target, now)
        return appointment

    return await run_operation(session, "complete_appointment", work, "Appointment completed.")


# ============================================================================
# LISTINGS
# ============================================================================

async def _views(session: AsyncSession, appointments: Sequence[Appointment]) -> dict:
    services = {s.id: s for s in await repository.list_services(session)}
    staff = {s.id: s for s in await repository.list_staff(session, active_only=False)}
    limit = get_settings().max_reschedules
    views = {}
    for appt in appointments:
        reviewed = await repository.find_review_for_appointment(session, appt.id) is not None
        service = services.get(appt.service_id)
        stylist = staff.get(appt.staff_id)
        views[appt.id] = AppointmentView(
            id=str(appt.id),
            ref_id=appt.ref_id,
            service_id=appt.service_id,
            service_name=service.name if service else "Service",
            staff_id=appt.staff_id,
            staff_name=stylist.name if stylist else "Stylist",
            appointment_date=appt.appointment_date.isoformat(),
            start_time=format_slot(appt.start_time),
            end_time=format_slot(appt.end_time),
            status=AppointmentStatus(appt.status).value,
            reschedule_count=appt.reschedule_count,
            reschedules_left=max(0, limit - appt.reschedule_count),
            price_paid_cents=appt.price_paid_cents,
            reviewed=reviewed,
        )
    return views


async def list_customer_appointments(
    session: AsyncSession,
    customer_id: int,
    now: datetime,
) -> AppointmentBuckets:
    appointments = await repository.find_appointments_by_customer(session, customer_id)
    upcoming, history = split_upcoming_history(appointments, now)
    views = await _views(session, appointments)
    return AppointmentBuckets(
        upcoming=[views[a.id] for a in upcoming],
        history=[views[a.id] for a in history],
    )


async def list_staff_schedule(
    session: AsyncSession,
    staff_id: int,
    on_date: Optional[date] = None,
) -> list[AppointmentView]:
    appointments = await repository.find_appointments_by_staff(session, staff_id, on_date)
    views = await _views(session, appointments)
    return [views[a.id] for a in sorted(appointments, key=appointment_start)]
