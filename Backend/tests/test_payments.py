"""
Tests for payment input checks and the transaction PIN.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from lumina.errors import OutcomeCode, ValidationError
from lumina.models import PaymentMethod
from lumina.payments import (
    generate_transaction_ref,
    hash_pin,
    payment_method_label,
    set_transaction_pin,
    validate_card,
    validate_pin,
    verify_pin,
)


TODAY = date(2026, 3, 2)


def _card(**overrides):
    card = {
        "number": "4111 1111 1111 1111",
        "expiry": "12/28",
        "cvc": "123",
        "holder_name": "Amy Tan",
    }
    card.update(overrides)
    return card


def _message(**overrides):
    with pytest.raises(ValidationError) as exc:
        validate_card(today=TODAY, **_card(**overrides))
    return exc.value.message


class TestValidateCard:

    def test_visa_accepted(self):
        validate_card(today=TODAY, **_card())

    def test_mastercard_accepted(self):
        validate_card(today=TODAY, **_card(number="5500 0000 0000 0004"))
        validate_card(today=TODAY, **_card(number="2221000000000009"))

    def test_amex_rejected(self):
        assert _message(number="378282246310005") == "Only Visa (4) and Mastercard (2,5) accepted."

    def test_short_number(self):
        assert _message(number="4111 1111") == "Invalid card number length."

    def test_bad_expiry_format(self):
        assert _message(expiry="1228") == "Invalid expiry."

    def test_bad_month(self):
        assert _message(expiry="13/28") == "Invalid month."

    def test_expired_last_month(self):
        assert _message(expiry="02/26") == "Card has expired."

    def test_current_month_still_valid(self):
        validate_card(today=TODAY, **_card(expiry="03/26"))

    def test_bad_cvc(self):
        assert _message(cvc="12") == "Invalid CVC."

    def test_missing_holder(self):
        assert _message(holder_name="  ") == "Cardholder name is required."

    def test_first_problem_wins(self):
        assert _message(expiry="13/28", cvc="") == "Invalid month."


class TestPin:

    @pytest.mark.parametrize("pin", ["12345", "1234567", "12a456", "", None])
    def test_invalid_pins(self, pin):
        with pytest.raises(ValidationError):
            validate_pin(pin)

    def test_valid_pin(self):
        validate_pin("000000")

    def test_hash_is_salted(self):
        assert hash_pin("123456", "user-a") != hash_pin("123456", "user-b")

    def test_verify(self):
        customer = SimpleNamespace(user_id="user-a", pin_hash=hash_pin("123456", "user-a"))
        assert verify_pin(customer, "123456") is True
        assert verify_pin(customer, "123457") is False

    def test_verify_without_pin(self):
        assert verify_pin(SimpleNamespace(user_id="user-a", pin_hash=None), "123456") is False

    @pytest.mark.asyncio
    async def test_set_transaction_pin(self, session, customer):
        outcome = await set_transaction_pin(session, customer.id, "246810")

        assert outcome.ok
        await session.refresh(customer)
        assert verify_pin(customer, "246810") is True

    @pytest.mark.asyncio
    async def test_set_invalid_pin(self, session, customer):
        outcome = await set_transaction_pin(session, customer.id, "12")

        assert outcome.code == OutcomeCode.VALIDATION_ERROR
        await session.refresh(customer)
        assert customer.pin_hash is None


class TestLabels:

    def test_labels(self):
        assert payment_method_label(PaymentMethod.CARD) == "Credit Card"
        assert payment_method_label("tng") == "Touch 'n Go"

    def test_transaction_ref_shape(self):
        ref = generate_transaction_ref()
        assert ref.startswith("SIM-")
        assert len(ref) == 10
