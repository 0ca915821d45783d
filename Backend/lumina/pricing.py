"""
Checkout Pricing Engine

Pure functions for computing what a customer pays for a service.
All amounts are integer cents (sen). Nothing here touches the database.

Pricing Formula:
    surcharge  = rank surcharge of the chosen stylist (0 for "any stylist")
    gross      = base + surcharge
    discount   = promotion (on base only) if present, else voucher (on gross)
    taxable    = max(0, gross - discount)
    tax        = round(taxable * 8%)
    pre_round  = taxable + tax
    final      = pre_round rounded to the nearest 5 sen
    rounding   = final - pre_round

Example:
    Wash & Cut 7500 with a Director Stylist (+3000), no discount
    gross 10500, tax 840, pre_round 11340, final 11340, rounding 0

Rounding is half-up everywhere so totals match what the payer's app shows.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, TypeVar, Union

from .models import DiscountKind, DiscountSource, StaffRank


RANK_SURCHARGE_CENTS = {
    StaffRank.SENIOR_DIRECTOR: 5000,
    StaffRank.DIRECTOR: 3000,
    StaffRank.SENIOR: 0,
}

DEFAULT_TAX_PERCENT = 8
ROUNDING_STEP_CENTS = 5


class InapplicableDiscountError(ValueError):
    """Raised when a voucher cannot be used against the given total."""


@dataclass(frozen=True)
class PercentageDiscount:
    percent: int

    @property
    def kind(self) -> DiscountKind:
        return DiscountKind.PERCENTAGE

    @property
    def value(self) -> int:
        return self.percent


@dataclass(frozen=True)
class FixedDiscount:
    cents: int

    @property
    def kind(self) -> DiscountKind:
        return DiscountKind.FIXED

    @property
    def value(self) -> int:
        return self.cents


Discount = Union[PercentageDiscount, FixedDiscount]


@dataclass
class PriceBreakdown:
    """Result of a checkout price calculation with every intermediate step."""

    base_price_cents: int
    surcharge_cents: int
    gross_cents: int
    discount_cents: int
    discount_source: Optional[DiscountSource]
    taxable_cents: int
    tax_cents: int
    pre_round_total_cents: int
    final_total_cents: int
    rounding_cents: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "base_price_cents": self.base_price_cents,
            "surcharge_cents": self.surcharge_cents,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "discount_source": self.discount_source.value if self.discount_source else None,
            "taxable_cents": self.taxable_cents,
            "tax_cents": self.tax_cents,
            "pre_round_total_cents": self.pre_round_total_cents,
            "final_total_cents": self.final_total_cents,
            "rounding_cents": self.rounding_cents,
        }


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_to_step(value_cents: int, step_cents: int = ROUNDING_STEP_CENTS) -> int:
    """
    Round an amount to the nearest multiple of step.

    Examples:
        round_to_step(11342) = 11340
        round_to_step(11343) = 11345
        round_to_step(11340) = 11340
    """
    if step_cents <= 0:
        return value_cents
    return round_half_up(Decimal(value_cents) / Decimal(step_cents)) * step_cents


def rank_surcharge(rank: Union[StaffRank, str, None]) -> int:
    if rank is None:
        return 0
    try:
        return RANK_SURCHARGE_CENTS[StaffRank(rank)]
    except ValueError:
        return 0


def percent_of(amount_cents: int, percent: int) -> int:
    return round_half_up(Decimal(amount_cents) * Decimal(percent) / Decimal(100))


def discount_from_record(kind: Union[DiscountKind, str], value: int) -> Discount:
    if DiscountKind(kind) == DiscountKind.PERCENTAGE:
        return PercentageDiscount(percent=value)
    return FixedDiscount(cents=value)


_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_RM_RE = re.compile(r"rm\s*(\d+(?:\.\d+)?)", re.IGNORECASE)


def parse_discount_label(label: str) -> Discount:
    """
    Turn a display label into a structured discount.

    Only used when promotions are created or seeded; the engine never
    looks at label text.

    Examples:
        "20% OFF"     -> PercentageDiscount(20)
        "RM50 Credit" -> FixedDiscount(5000)
    """
    percent_match = _PERCENT_RE.search(label)
    if percent_match:
        return PercentageDiscount(percent=int(Decimal(percent_match.group(1))))
    rm_match = _RM_RE.search(label)
    if rm_match:
        return FixedDiscount(cents=round_half_up(Decimal(rm_match.group(1)) * 100))
    raise ValueError(f"Unrecognised discount label: {label!r}")


def promotion_discount_cents(discount: Discount, base_price_cents: int) -> int:
    # Promotion percentages apply to the service price only, not the surcharge
    if isinstance(discount, PercentageDiscount):
        return percent_of(base_price_cents, discount.percent)
    return discount.cents


def voucher_discount_cents(discount: Discount, gross_cents: int) -> int:
    if isinstance(discount, PercentageDiscount):
        return percent_of(gross_cents, discount.percent)
    if discount.cents >= gross_cents:
        raise InapplicableDiscountError("Voucher value exceeds the order total")
    return discount.cents


def is_voucher_applicable(discount: Discount, gross_cents: int) -> bool:
    if isinstance(discount, FixedDiscount):
        return discount.cents < gross_cents
    return True


def calculate_checkout_price(
    base_price_cents: int,
    rank: Union[StaffRank, str, None] = None,
    voucher: Optional[Discount] = None,
    promotion: Optional[Discount] = None,
    tax_percent: int = DEFAULT_TAX_PERCENT,
) -> PriceBreakdown:
    """
    Calculate the checkout total for one service.

    Args:
        base_price_cents: Service price in cents
        rank: Stylist rank, or None when the customer lets the salon pick
        voucher: Customer voucher discount, ignored when a promotion is given
        promotion: Auto-applied promotion discount
        tax_percent: Sales and service tax rate

    Returns:
        PriceBreakdown with every intermediate amount

    Raises:
        ValueError: negative base price
        InapplicableDiscountError: fixed voucher worth at least the gross total
    """
    if base_price_cents < 0:
        raise ValueError("base_price_cents must be non-negative")

    surcharge = rank_surcharge(rank)
    gross = base_price_cents + surcharge

    discount = 0
    source = None
    if promotion is not None:
        discount = promotion_discount_cents(promotion, base_price_cents)
        source = DiscountSource.PROMOTION
    elif voucher is not None:
        discount = voucher_discount_cents(voucher, gross)
        source = DiscountSource.VOUCHER

    taxable = max(0, gross - discount)
    tax = percent_of(taxable, tax_percent)
    pre_round = taxable + tax
    final = round_to_step(pre_round)

    return PriceBreakdown(
        base_price_cents=base_price_cents,
        surcharge_cents=surcharge,
        gross_cents=gross,
        discount_cents=discount,
        discount_source=source,
        taxable_cents=taxable,
        tax_cents=tax,
        pre_round_total_cents=pre_round,
        final_total_cents=final,
        rounding_cents=final - pre_round,
    )


V = TypeVar("V")


def filter_applicable_vouchers(vouchers: Iterable[V], gross_cents: int, today: date) -> list[V]:
    """Unused, unexpired vouchers that can be applied to the given gross total."""
    applicable = []
    for voucher in vouchers:
        if voucher.used or voucher.expires_on < today:
            continue
        discount = discount_from_record(voucher.discount_kind, voucher.discount_value)
        if is_voucher_applicable(discount, gross_cents):
            applicable.append(voucher)
    return applicable


P = TypeVar("P")


def select_auto_promotion(promotions: Sequence[P], service_id: int, today: date) -> Optional[P]:
    """First active promotion running today that covers the service."""
    for promo in promotions:
        if not promo.active:
            continue
        # end_date is inclusive through the end of that day
        if not (promo.start_date <= today <= promo.end_date):
            continue
        if promo.applicable_service_ids and service_id not in promo.applicable_service_ids:
            continue
        return promo
    return None
