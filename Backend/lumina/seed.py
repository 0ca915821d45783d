from datetime import date, timedelta

from sqlalchemy import select

from .models import Promotion, Service, Staff, StaffRank
from .pricing import parse_discount_label


SERVICES = [
    ("Wash & Blowdry", "Styling", 45, 4500, "Relaxing wash followed by a salon blowdry."),
    ("Wash & Cut", "Cut", 60, 7500, "Consultation, wash, precision cut and finish."),
    ("Colour / Semi-colour", "Colour", 120, 18000, "Full head permanent or semi-permanent colour."),
    ("Colour Regrowth", "Colour", 90, 14000, "Root touch-up to blend regrowth."),
    ("Cut & Highlights", "Colour", 180, 28000, "Foil highlights with a restyle cut."),
    ("Treatments", "Care", 30, 12000, "Intensive conditioning and scalp treatment."),
]

STAFF = [
    ("Sarah Jenkins", "sarah@lumina.com", StaffRank.SENIOR_DIRECTOR, 5.0, ["Colour", "Bridal"]),
    ("Michael Chen", "michael@lumina.com", StaffRank.DIRECTOR, 4.8, ["Precision Cut", "Men's Styling"]),
    ("Jessica Alva", "jessica@lumina.com", StaffRank.SENIOR, 4.6, ["Treatments", "Blowdry"]),
]

PROMOTIONS = [
    ("Summer Glow Package", "Brighten up with 20% off colour services.", "20% OFF", 30),
    ("Bring a Friend", "Book with a friend and get RM50 credit.", "RM50 Credit", 60),
]


async def seed_initial_data(session, today: date | None = None, commit: bool = True) -> dict:
    """Insert the salon menu, stylists and launch promotions into empty tables."""
    today = today or date.today()
    inserted = {"services": 0, "staff": 0, "promotions": 0}

    result = await session.execute(select(Service))
    if not result.scalars().first():
        session.add_all(
            [
                Service(
                    name=name,
                    category=category,
                    duration_minutes=duration,
                    price_cents=price,
                    description=description,
                )
                for name, category, duration, price, description in SERVICES
            ]
        )
        inserted["services"] = len(SERVICES)

    result = await session.execute(select(Staff))
    if not result.scalars().first():
        session.add_all(
            [
                Staff(name=name, email=email, rank=rank, rating=rating, specialties=specialties)
                for name, email, rank, rating, specialties in STAFF
            ]
        )
        inserted["staff"] = len(STAFF)

    result = await session.execute(select(Promotion))
    if not result.scalars().first():
        for title, description, label, days in PROMOTIONS:
            discount = parse_discount_label(label)
            session.add(
                Promotion(
                    title=title,
                    description=description,
                    discount_label=label,
                    discount_kind=discount.kind,
                    discount_value=discount.value,
                    start_date=today,
                    end_date=today + timedelta(days=days),
                    active=True,
                    applicable_service_ids=[],
                )
            )
        inserted["promotions"] = len(PROMOTIONS)

    if commit:
        await session.commit()
    else:
        await session.rollback()
    return inserted
