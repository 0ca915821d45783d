"""
Rewards and tier ledger.

Customers earn one point per RM1 paid. `points` is the spendable balance,
`lifetime_points` only ever grows and decides the tier. Every change to
either balance is paired with an append-only PointHistory row, so the
cached balances can always be rebuilt from the ledger.
"""

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .core.config import get_settings
from .errors import (
    ConflictError,
    NotFoundError,
    Outcome,
    OwnershipError,
    StateError,
    ValidationError,
    run_operation,
)
from .models import (
    AppointmentStatus,
    Customer,
    NotificationType,
    PointEntryType,
    PointHistory,
    Review,
    Voucher,
    VoucherSource,
    utcnow,
)
from .notifications import notify_customer, notify_staff
from .pricing import Discount, FixedDiscount, PercentageDiscount

logger = logging.getLogger(__name__)


# ============================================================================
# TIERS
# ============================================================================

@dataclass(frozen=True)
class TierInfo:
    current: str
    next: Optional[str]
    min_points: int
    next_threshold: Optional[int]
    progress: float

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "next": self.next,
            "min_points": self.min_points,
            "next_threshold": self.next_threshold,
            "progress": self.progress,
        }


# (name, lower bound), ascending
TIERS = (
    ("Silver", 0),
    ("Gold", 1000),
    ("Platinum", 5000),
    ("Centurion", 20000),
)


def get_tier_info(lifetime_points: int) -> TierInfo:
    """
    Tier for a lifetime points total.

    Examples:
        0     -> Silver, next Gold at 1000, progress 0
        3000  -> Gold, next Platinum at 5000, progress 50
        20000 -> Centurion, no next tier, progress 100
    """
    points = max(0, lifetime_points)
    for idx in range(len(TIERS) - 1, -1, -1):
        name, floor = TIERS[idx]
        if points >= floor:
            break
    if idx == len(TIERS) - 1:
        return TierInfo(current=name, next=None, min_points=floor, next_threshold=None, progress=100.0)

    next_name, next_floor = TIERS[idx + 1]
    progress = (points - floor) / (next_floor - floor) * 100
    return TierInfo(
        current=name,
        next=next_name,
        min_points=floor,
        next_threshold=next_floor,
        progress=round(progress, 2),
    )


def points_for_payment(paid_cents: int) -> int:
    return max(0, paid_cents) // 100


def replay_balance(entries: Iterable[PointHistory]) -> tuple[int, int]:
    """Rebuild (points, lifetime_points) from ledger rows."""
    points = 0
    lifetime = 0
    for entry in entries:
        if entry.entry_type == PointEntryType.EARN:
            points += entry.points
            lifetime += entry.points
        else:
            points -= entry.points
    return points, lifetime


async def verify_ledger(session: AsyncSession, customer: Customer) -> bool:
    entries = await repository.list_point_history(session, customer.id)
    return replay_balance(entries) == (customer.points, customer.lifetime_points)


async def award_booking_points(
    session: AsyncSession,
    customer: Customer,
    paid_cents: int,
    appointment_id: Optional[uuid.UUID] = None,
) -> int:
    points = points_for_payment(paid_cents)
    await repository.adjust_customer_points(session, customer, points, lifetime_delta=points)
    await repository.append_point_history(
        session, customer.id, "Service Earned", points, PointEntryType.EARN, appointment_id
    )
    return points


# ============================================================================
# VOUCHERS
# ============================================================================

@dataclass(frozen=True)
class RewardItem:
    id: str
    title: str
    description: str
    cost: int
    discount: Discount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "cost": self.cost,
            "discount_kind": self.discount.kind.value,
            "discount_value": self.discount.value,
        }


REWARD_CATALOG = (
    RewardItem("r1", "RM10 Voucher", "RM10 off your next service.", 500, FixedDiscount(1000)),
    RewardItem("r2", "RM20 Voucher", "RM20 off your next service.", 1000, FixedDiscount(2000)),
    RewardItem("r3", "RM50 Voucher", "RM50 off your next service.", 2500, FixedDiscount(5000)),
    RewardItem("r4", "5% Off", "5% discount on total bill.", 800, PercentageDiscount(5)),
    RewardItem("r5", "10% Off", "10% discount on total bill.", 1500, PercentageDiscount(10)),
    RewardItem("r6", "20% Off", "20% discount on total bill.", 3000, PercentageDiscount(20)),
)

REWARDS_BY_ID = {item.id: item for item in REWARD_CATALOG}

COMPENSATION_OPTIONS = {
    "RM100": ("RM100 Voucher", "Customer Care Compensation", FixedDiscount(10000)),
    "50%": ("50% OFF", "50% Off your next visit", PercentageDiscount(50)),
    "75%": ("75% OFF", "75% Off your next visit", PercentageDiscount(75)),
}

REVIEW_REWARD = ("RM5 Voucher", "Review Reward", FixedDiscount(500))
WELCOME_GIFT = ("40% OFF Welcome Gift", "Enjoy 40% off your first service!", PercentageDiscount(40))

_SERIAL_ALPHABET = string.ascii_uppercase + string.digits


def make_serial(prefix: str, length: int = 4) -> str:
    return f"{prefix}-" + "".join(secrets.choice(_SERIAL_ALPHABET) for _ in range(length))


async def issue_voucher(
    session: AsyncSession,
    customer_id: int,
    title: str,
    description: str,
    discount: Discount,
    source: VoucherSource,
    serial_prefix: str,
    expires_on: date,
) -> Voucher:
    serial = make_serial(serial_prefix)
    while await repository.serial_number_exists(session, serial):
        serial = make_serial(serial_prefix)
    voucher = Voucher(
        customer_id=customer_id,
        title=title,
        description=description,
        discount_kind=discount.kind,
        discount_value=discount.value,
        serial_number=serial,
        source=source,
        expires_on=expires_on,
        used=False,
    )
    return await repository.insert_voucher(session, voucher)


async def redeem_reward(
    session: AsyncSession,
    customer_id: int,
    reward_id: str,
    today: date,
) -> Outcome[Voucher]:
    """Spend points on a catalog voucher. Nothing changes if the balance is short."""

    async def work() -> Voucher:
        reward = REWARDS_BY_ID.get(reward_id)
        if reward is None:
            raise NotFoundError("Reward not found.")
        customer = await repository.get_customer(session, customer_id, for_update=True)
        if customer is None:
            raise NotFoundError("Customer profile not found.")
        if customer.points < reward.cost:
            raise ValidationError(
                "Not enough points.",
                {"balance": customer.points, "cost": reward.cost},
            )

        voucher = await issue_voucher(
            session,
            customer.id,
            reward.title,
            reward.description,
            reward.discount,
            VoucherSource.REDEMPTION,
            "RWD",
            today + timedelta(days=get_settings().voucher_validity_days),
        )
        await repository.adjust_customer_points(session, customer, -reward.cost)
        await repository.append_point_history(
            session, customer.id, f"Redeemed {reward.title}", reward.cost, PointEntryType.SPEND
        )
        logger.info(f"Customer {customer.id} redeemed {reward.id} for {reward.cost} points")
        return voucher

    return await run_operation(session, "redeem_reward", work)


# ============================================================================
# PROFILE
# ============================================================================

async def grant_welcome_gift(session: AsyncSession, customer: Customer, today: date) -> Optional[Voucher]:
    existing = await repository.list_vouchers(session, customer.id)
    if any(v.source == VoucherSource.WELCOME for v in existing):
        return None
    title, description, discount = WELCOME_GIFT
    voucher = await issue_voucher(
        session,
        customer.id,
        title,
        description,
        discount,
        VoucherSource.WELCOME,
        "WELCOME",
        today + timedelta(days=get_settings().welcome_voucher_validity_days),
    )
    await notify_customer(
        session,
        customer.id,
        NotificationType.PROMO,
        "Welcome to Lumina!",
        "We are delighted to have you. Enjoy a 40% discount voucher on your first visit!",
    )
    return voucher


async def get_or_create_profile(
    session: AsyncSession,
    user_id: str,
    email: str,
    today: date,
    name: Optional[str] = None,
    phone: Optional[str] = None,
) -> Outcome[Customer]:
    """Customer profile for an auth identity, created with a welcome gift on first sign-in."""

    async def work() -> Customer:
        customer = await repository.find_customer_profile(session, user_id)
        if customer is not None:
            return customer
        customer = await repository.create_customer_profile(
            session, user_id=user_id, email=email, name=name or "Valued Client", phone=phone
        )
        await grant_welcome_gift(session, customer, today)
        logger.info(f"Created customer profile {customer.id} for {email}")
        return customer

    return await run_operation(session, "get_or_create_profile", work)


async def update_theme_preference(session: AsyncSession, customer_id: int, theme: str) -> Outcome[Customer]:
    async def work() -> Customer:
        if theme not in ("light", "dark"):
            raise ValidationError("Theme must be light or dark.")
        customer = await repository.get_customer(session, customer_id)
        if customer is None:
            raise NotFoundError("Customer profile not found.")
        customer.theme_preference = theme
        await session.flush()
        return customer

    return await run_operation(session, "update_theme_preference", work)


# ============================================================================
# REVIEWS
# ============================================================================

async def submit_review(
    session: AsyncSession,
    customer_id: int,
    appointment_id: uuid.UUID,
    rating: int,
    comment: Optional[str],
    today: date,
) -> Outcome[Review]:
    """Review a completed appointment; the customer gets an RM5 voucher, points are untouched."""

    async def work() -> Review:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5.")
        appointment = await repository.get_appointment(session, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found.")
        if appointment.customer_id != customer_id:
            raise OwnershipError("Appointment belongs to another customer.")
        if appointment.status != AppointmentStatus.COMPLETED:
            raise StateError("Only completed appointments can be reviewed.")
        if await repository.find_review_for_appointment(session, appointment_id) is not None:
            raise ConflictError("Appointment already reviewed.")

        review = Review(
            appointment_id=appointment.id,
            customer_id=customer_id,
            staff_id=appointment.staff_id,
            rating=rating,
            comment=comment,
        )
        session.add(review)
        await session.flush()

        title, description, discount = REVIEW_REWARD
        await issue_voucher(
            session,
            customer_id,
            title,
            description,
            discount,
            VoucherSource.REVIEW,
            "REV",
            today + timedelta(days=get_settings().voucher_validity_days),
        )
        await notify_staff(
            session,
            NotificationType.REVIEW,
            "New Review Submitted",
            f"A client left a {rating}-star review.",
            appointment_id=appointment.id,
        )
        return review

    return await run_operation(session, "submit_review", work)


async def reply_to_review(session: AsyncSession, review_id: uuid.UUID, reply: str) -> Outcome[Review]:
    async def work() -> Review:
        if not reply or not reply.strip():
            raise ValidationError("Reply cannot be empty.")
        review = await repository.get_review(session, review_id)
        if review is None:
            raise NotFoundError("Review not found.")
        review.reply = reply.strip()
        review.replied_at = utcnow()
        await session.flush()
        await notify_customer(
            session,
            review.customer_id,
            NotificationType.REVIEW,
            "Admin Replied to Review",
            f'The salon management replied: "{review.reply}"',
            data={"original_comment": review.comment},
            appointment_id=review.appointment_id,
        )
        return review

    return await run_operation(session, "reply_to_review", work)


async def send_compensation_voucher(
    session: AsyncSession,
    customer_id: int,
    option: str,
    today: date,
    review_id: Optional[uuid.UUID] = None,
) -> Outcome[Voucher]:
    async def work() -> Voucher:
        if option not in COMPENSATION_OPTIONS:
            raise ValidationError(f"Unknown compensation option: {option}")
        customer = await repository.get_customer(session, customer_id)
        if customer is None:
            raise NotFoundError("Customer profile not found.")
        review = None
        if review_id is not None:
            review = await repository.get_review(session, review_id)
            if review is None:
                raise NotFoundError("Review not found.")
            if review.customer_id != customer.id:
                raise OwnershipError("Review belongs to another customer.")
        title, description, discount = COMPENSATION_OPTIONS[option]
        voucher = await issue_voucher(
            session,
            customer.id,
            title,
            description,
            discount,
            VoucherSource.COMPENSATION,
            "COMP",
            today + timedelta(days=get_settings().compensation_voucher_validity_days),
        )
        await notify_customer(
            session,
            customer.id,
            NotificationType.PROMO,
            "Compensation Voucher Received",
            f"We apologize for any inconvenience. A {title} has been added to your account.",
        )
        if review is not None:
            review.compensation = title
            await session.flush()
        return voucher

    return await run_operation(session, "send_compensation_voucher", work)
