import logging
import uuid
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from . import repository
from .availability import get_local_now, local_today
from .booking import (
    CheckoutRequest,
    CreateAppointmentRequest,
    cancel_appointment,
    check_in_appointment,
    complete_appointment,
    create_appointment,
    get_availability,
    list_customer_appointments,
    list_staff_schedule,
    preview_checkout,
    reschedule_appointment,
)
from .core.config import get_settings
from .core.db import AsyncSessionLocal, Base, engine, get_session
from .core.responses import http_status_for, outcome_response, success_response
from .core.session_context import Role, SessionContext, get_session_context, require_staff
from .models import Appointment, Customer, Promotion, Staff, Voucher
from .notifications import customer_feed, staff_feed
from .payments import set_transaction_pin
from .pricing import parse_discount_label
from .receipts import list_customer_receipts
from .reconciler import run_reconciliation
from .rewards import (
    REWARD_CATALOG,
    get_or_create_profile,
    get_tier_info,
    redeem_reward,
    reply_to_review,
    send_compensation_voucher,
    submit_review,
    update_theme_preference,
)
from .seed import seed_initial_data


settings = get_settings()
app = FastAPI(title="Lumina Salon Backend")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_now() -> datetime:
    """Current salon-local time. Overridden in tests."""
    return get_local_now()


# ============================================================================
# REQUEST MODELS
# ============================================================================

class RescheduleRequest(BaseModel):
    appointment_date: date
    start_time: str
    staff_id: Optional[int] = None


class CheckInRequest(BaseModel):
    ref_id: str = Field(..., min_length=1)


class ThemeRequest(BaseModel):
    theme: str


class PinRequest(BaseModel):
    pin: str


class RedeemRequest(BaseModel):
    reward_id: str


class ReviewRequest(BaseModel):
    rating: int
    comment: Optional[str] = None


class ReplyRequest(BaseModel):
    reply: str


class CompensationRequest(BaseModel):
    option: str = Field(..., description="RM100, 50% or 75%")


class PromotionCreate(BaseModel):
    title: str
    description: Optional[str] = None
    discount_label: str
    start_date: date
    end_date: date
    applicable_service_ids: List[int] = Field(default_factory=list)
    image_url: Optional[str] = None


# ============================================================================
# SERIALIZERS
# ============================================================================

def serialize_service(service) -> dict:
    return {
        "id": service.id,
        "name": service.name,
        "category": service.category,
        "description": service.description,
        "duration_minutes": service.duration_minutes,
        "price_cents": service.price_cents,
        "image_url": service.image_url,
    }


def serialize_staff(staff: Staff) -> dict:
    return {
        "id": staff.id,
        "name": staff.name,
        "rank": staff.rank.value,
        "rating": staff.rating,
        "specialties": staff.specialties or [],
        "image_url": staff.image_url,
    }


def serialize_customer(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "points": customer.points,
        "lifetime_points": customer.lifetime_points,
        "theme": customer.theme_preference,
        "has_pin": bool(customer.pin_hash),
        "tier": get_tier_info(customer.lifetime_points).to_dict(),
    }


def serialize_voucher(voucher: Voucher) -> dict:
    return {
        "id": str(voucher.id),
        "title": voucher.title,
        "description": voucher.description,
        "discount_kind": voucher.discount_kind.value,
        "discount_value": voucher.discount_value,
        "serial_number": voucher.serial_number,
        "expires_on": voucher.expires_on.isoformat(),
        "used": voucher.used,
        "source": voucher.source.value,
    }


def serialize_appointment(appt: Appointment) -> dict:
    return {
        "id": str(appt.id),
        "ref_id": appt.ref_id,
        "staff_id": appt.staff_id,
        "service_id": appt.service_id,
        "appointment_date": appt.appointment_date.isoformat(),
        "start_time": appt.start_time.strftime("%H:%M"),
        "end_time": appt.end_time.strftime("%H:%M"),
        "status": appt.status.value,
        "reschedule_count": appt.reschedule_count,
        "price_paid_cents": appt.price_paid_cents,
    }


def serialize_promotion(promo: Promotion) -> dict:
    return {
        "id": promo.id,
        "title": promo.title,
        "description": promo.description,
        "discount_label": promo.discount_label,
        "discount_kind": promo.discount_kind.value,
        "discount_value": promo.discount_value,
        "start_date": promo.start_date.isoformat(),
        "end_date": promo.end_date.isoformat(),
        "active": promo.active,
        "applicable_service_ids": promo.applicable_service_ids or [],
    }


# ============================================================================
# DEPENDENCIES
# ============================================================================

async def get_current_customer(
    ctx: SessionContext = Depends(get_session_context),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
) -> Customer:
    if ctx.role != Role.CUSTOMER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Customer access only")
    outcome = await get_or_create_profile(session, ctx.user_id, ctx.email, local_today(now))
    if not outcome.ok:
        raise HTTPException(status_code=http_status_for(outcome.code), detail=outcome.message)
    return outcome.data


async def get_current_staff(
    ctx: SessionContext = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
) -> Staff:
    staff = await repository.find_staff_by_email(session, ctx.email)
    if staff is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No stylist profile for this account")
    return staff


# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.seed_on_startup:
        async with AsyncSessionLocal() as session:
            await seed_initial_data(session, local_today())
    logger.info("Lumina backend started")


@app.get("/health")
async def healthcheck():
    return {"status": "ok"}


# ============================================================================
# CATALOG
# ============================================================================

@app.get("/services")
async def list_services(session: AsyncSession = Depends(get_session)):
    return success_response([serialize_service(s) for s in await repository.list_services(session)])


@app.get("/staff")
async def list_staff(session: AsyncSession = Depends(get_session)):
    return success_response([serialize_staff(s) for s in await repository.list_staff(session)])


@app.get("/promotions")
async def list_promotions(session: AsyncSession = Depends(get_session)):
    return success_response([serialize_promotion(p) for p in await repository.list_promotions(session)])


@app.post("/promotions", status_code=status.HTTP_201_CREATED)
async def create_promotion(
    request: PromotionCreate,
    _: SessionContext = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    if request.end_date < request.start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_date is before start_date")
    try:
        discount = parse_discount_label(request.discount_label)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    promo = Promotion(
        title=request.title,
        description=request.description,
        discount_label=request.discount_label,
        discount_kind=discount.kind,
        discount_value=discount.value,
        start_date=request.start_date,
        end_date=request.end_date,
        active=True,
        applicable_service_ids=request.applicable_service_ids,
        image_url=request.image_url,
    )
    session.add(promo)
    await session.commit()
    return success_response(serialize_promotion(promo))


@app.get("/availability")
async def availability(
    day: date = Query(..., alias="date"),
    staff_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return success_response(await get_availability(session, staff_id, day, local_today(now)))


# ============================================================================
# CUSTOMER
# ============================================================================

@app.get("/me")
async def me(customer: Customer = Depends(get_current_customer)):
    return success_response(serialize_customer(customer))


@app.put("/me/theme")
async def set_theme(
    request: ThemeRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    return outcome_response(await update_theme_preference(session, customer.id, request.theme), serialize_customer)


@app.put("/me/pin")
async def set_pin(
    request: PinRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    return outcome_response(await set_transaction_pin(session, customer.id, request.pin), serialize_customer)


@app.post("/checkout/preview")
async def checkout_preview(
    request: CheckoutRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await preview_checkout(session, customer.id, request, local_today(now))
    return outcome_response(outcome, lambda preview: preview.to_dict())


@app.post("/appointments", status_code=status.HTTP_201_CREATED)
async def book_appointment(
    request: CreateAppointmentRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await create_appointment(session, customer.id, request, now)
    return outcome_response(
        outcome,
        lambda booking: {
            "appointment": serialize_appointment(booking.appointment),
            "receipt": booking.receipt.model_dump(),
            "points_earned": booking.points_earned,
        },
    )


@app.get("/appointments")
async def my_appointments(
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    customer_id = customer.id
    await run_reconciliation(session, now)
    buckets = await list_customer_appointments(session, customer_id, now)
    return success_response(buckets.to_dict())


@app.post("/appointments/{appointment_id}/reschedule")
async def reschedule(
    appointment_id: uuid.UUID,
    request: RescheduleRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await reschedule_appointment(
        session,
        customer.id,
        appointment_id,
        request.appointment_date,
        request.start_time,
        now,
        new_staff_id=request.staff_id,
    )
    return outcome_response(outcome, serialize_appointment)


@app.post("/appointments/{appointment_id}/cancel")
async def cancel(
    appointment_id: uuid.UUID,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await cancel_appointment(session, customer.id, appointment_id, now)
    return outcome_response(
        outcome,
        lambda result: {
            "appointment": serialize_appointment(result.appointment),
            "refund_cents": result.refund_cents,
        },
    )


@app.post("/appointments/{appointment_id}/review", status_code=status.HTTP_201_CREATED)
async def review(
    appointment_id: uuid.UUID,
    request: ReviewRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await submit_review(
        session, customer.id, appointment_id, request.rating, request.comment, local_today(now)
    )
    return outcome_response(outcome, lambda r: {"id": str(r.id), "rating": r.rating, "comment": r.comment})


@app.get("/rewards")
async def rewards(customer: Customer = Depends(get_current_customer)):
    return success_response(
        {
            "points": customer.points,
            "tier": get_tier_info(customer.lifetime_points).to_dict(),
            "catalog": [item.to_dict() for item in REWARD_CATALOG],
        }
    )


@app.post("/rewards/redeem")
async def redeem(
    request: RedeemRequest,
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await redeem_reward(session, customer.id, request.reward_id, local_today(now))
    return outcome_response(outcome, serialize_voucher)


@app.get("/vouchers")
async def vouchers(
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    items = await repository.list_vouchers(session, customer.id)
    return success_response([serialize_voucher(v) for v in items if not v.used])


@app.get("/points/history")
async def points_history(
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    entries = await repository.list_point_history(session, customer.id)
    return success_response(
        [
            {
                "title": e.title,
                "points": e.points,
                "type": e.entry_type.value,
                "date": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ]
    )


@app.get("/receipts")
async def receipts(
    customer: Customer = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    return success_response([r.model_dump() for r in await list_customer_receipts(session, customer.id)])


@app.get("/notifications")
async def notifications(
    ctx: SessionContext = Depends(get_session_context),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    if ctx.is_staff:
        items = await staff_feed(session, local_today(now))
    else:
        customer = await repository.find_customer_profile(session, ctx.user_id)
        items = await customer_feed(session, customer.id) if customer else []
    return success_response([item.to_dict() for item in items])


@app.post("/notifications/read-all")
async def read_all_notifications(
    ctx: SessionContext = Depends(get_session_context),
    session: AsyncSession = Depends(get_session),
):
    customer_id = None
    if not ctx.is_staff:
        customer = await repository.find_customer_profile(session, ctx.user_id)
        if customer is None:
            return success_response({"updated": 0})
        customer_id = customer.id
    updated = await repository.mark_notifications_read(session, customer_id)
    await session.commit()
    return success_response({"updated": updated})


# ============================================================================
# STAFF
# ============================================================================

@app.get("/staff/appointments")
async def staff_appointments(
    day: Optional[date] = Query(default=None, alias="date"),
    staff: Staff = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    staff_id = staff.id
    await run_reconciliation(session, now)
    views = await list_staff_schedule(session, staff_id, day)
    return success_response([v.to_dict() for v in views])


@app.post("/staff/check-in")
async def staff_check_in(
    request: CheckInRequest,
    staff: Staff = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await check_in_appointment(session, staff.id, request.ref_id, now)
    return outcome_response(outcome, serialize_appointment)


@app.post("/appointments/{appointment_id}/complete")
async def staff_complete(
    appointment_id: uuid.UUID,
    staff: Staff = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    outcome = await complete_appointment(session, staff.id, appointment_id, now)
    return outcome_response(outcome, serialize_appointment)


@app.post("/reviews/{review_id}/reply")
async def staff_reply(
    review_id: uuid.UUID,
    request: ReplyRequest,
    _: SessionContext = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
):
    outcome = await reply_to_review(session, review_id, request.reply)
    return outcome_response(outcome, lambda r: {"id": str(r.id), "reply": r.reply})


@app.post("/reviews/{review_id}/compensation")
async def staff_compensation(
    review_id: uuid.UUID,
    request: CompensationRequest,
    _: SessionContext = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    found = await repository.get_review(session, review_id)
    if found is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    outcome = await send_compensation_voucher(
        session, found.customer_id, request.option, local_today(now), review_id=found.id
    )
    return outcome_response(outcome, serialize_voucher)


@app.post("/maintenance/reconcile")
async def reconcile(
    _: SessionContext = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_now),
):
    report = await run_reconciliation(session, now)
    return success_response(report.to_dict())
