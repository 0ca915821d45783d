"""
Receipt view model.

Amounts stay in integer cents everywhere else; this is the one place they
are turned into "RM 113.40" strings for display.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import format_slot
from .models import Appointment, Order, Service, Staff
from .payments import payment_method_label


def format_rm(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    amount = Decimal(abs(cents)) / Decimal(100)
    return f"{sign}RM {amount:.2f}"


class ReceiptView(BaseModel):
    receipt_id: str
    appointment_ref: str
    transaction_ref: str
    status: str
    booking_date: str
    appointment_date: str
    payment_method: str
    service_name: str
    stylist_name: str
    customer_name: Optional[str] = None
    subtotal_cents: int
    surcharge_cents: int
    discount_cents: int
    tax_cents: int
    rounding_cents: int
    total_payable_cents: int
    refund_cents: int
    subtotal: str
    surcharge: str
    discount: str
    tax: str
    rounding: str
    total_payable: str
    refund: str


def build_receipt(
    order: Order,
    appointment: Appointment,
    service_name: str,
    stylist_name: str,
    customer_name: Optional[str] = None,
) -> ReceiptView:
    created = order.created_at or datetime.now()
    return ReceiptView(
        receipt_id=str(order.id),
        appointment_ref=appointment.ref_id,
        transaction_ref=order.transaction_ref,
        status=order.status.value,
        booking_date=created.date().isoformat(),
        appointment_date=f"{appointment.appointment_date.isoformat()} {format_slot(appointment.start_time)}",
        payment_method=payment_method_label(order.payment_method),
        service_name=service_name,
        stylist_name=stylist_name,
        customer_name=customer_name,
        subtotal_cents=order.base_price_cents,
        surcharge_cents=order.surcharge_cents,
        discount_cents=order.discount_cents,
        tax_cents=order.tax_cents,
        rounding_cents=order.rounding_cents,
        total_payable_cents=order.total_payable_cents,
        refund_cents=order.refund_cents,
        subtotal=format_rm(order.base_price_cents),
        surcharge=format_rm(order.surcharge_cents),
        discount=format_rm(order.discount_cents),
        tax=format_rm(order.tax_cents),
        rounding=format_rm(order.rounding_cents),
        total_payable=format_rm(order.total_payable_cents),
        refund=format_rm(order.refund_cents),
    )


async def list_customer_receipts(session: AsyncSession, customer_id: int) -> Sequence[ReceiptView]:
    result = await session.execute(
        select(Order, Appointment, Service.name, Staff.name)
        .join(Appointment, Order.appointment_id == Appointment.id)
        .join(Service, Appointment.service_id == Service.id)
        .join(Staff, Appointment.staff_id == Staff.id)
        .where(Appointment.customer_id == customer_id)
        .order_by(Order.created_at.desc())
    )
    return [
        build_receipt(order, appointment, service_name, stylist_name)
        for order, appointment, service_name, stylist_name in result.all()
    ]
