"""
Payment input checks for the simulated gateway.

No money moves here. The gateway confirms the payment; this module only
checks that what the customer typed is plausible before a booking is
written, and keeps the 6-digit transaction PIN.
"""

import hashlib
import hmac
import logging
import re
import secrets
import string
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .errors import NotFoundError, Outcome, ValidationError, run_operation
from .models import Customer, PaymentMethod

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS = {
    PaymentMethod.CARD: "Credit Card",
    PaymentMethod.TNG: "Touch 'n Go",
}

_PIN_RE = re.compile(r"^\d{6}$")
_EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})$")


def validate_pin(pin: Optional[str]) -> None:
    if not pin or not _PIN_RE.match(pin):
        raise ValidationError("PIN must be exactly 6 digits.")


def validate_card(
    number: str,
    expiry: str,
    cvc: str,
    holder_name: str,
    today: date,
) -> None:
    """
    Check card details in the order the checkout form reports them.

    Raises:
        ValidationError with the first problem found
    """
    digits = re.sub(r"\D", "", number or "")
    if not digits.startswith(("4", "5", "2")):
        raise ValidationError("Only Visa (4) and Mastercard (2,5) accepted.")
    if not 15 <= len(digits) <= 19:
        raise ValidationError("Invalid card number length.")

    match = _EXPIRY_RE.match(expiry or "")
    if not match:
        raise ValidationError("Invalid expiry.")
    month, year = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError("Invalid month.")
    current_year = today.year % 100
    if year < current_year or (year == current_year and month < today.month):
        raise ValidationError("Card has expired.")

    if not cvc or len(cvc) < 3 or not cvc.isdigit():
        raise ValidationError("Invalid CVC.")
    if not holder_name or not holder_name.strip():
        raise ValidationError("Cardholder name is required.")


def payment_method_label(method: PaymentMethod) -> str:
    return PAYMENT_METHOD_LABELS[PaymentMethod(method)]


def generate_transaction_ref() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "SIM-" + "".join(secrets.choice(alphabet) for _ in range(6))


def hash_pin(pin: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{pin}".encode("utf-8")).hexdigest()


def verify_pin(customer: Customer, pin: str) -> bool:
    if not customer.pin_hash:
        return False
    return hmac.compare_digest(customer.pin_hash, hash_pin(pin, customer.user_id))


async def set_transaction_pin(session: AsyncSession, customer_id: int, pin: str) -> Outcome[Customer]:
    async def work() -> Customer:
        validate_pin(pin)
        customer = await repository.get_customer(session, customer_id)
        if customer is None:
            raise NotFoundError("Customer profile not found.")
        customer.pin_hash = hash_pin(pin, customer.user_id)
        await session.flush()
        logger.info(f"Transaction PIN updated for customer {customer.id}")
        return customer

    return await run_operation(session, "set_transaction_pin", work)
