"""
Tests for reference data seeding.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from lumina.models import DiscountKind, Promotion, Service, Staff
from lumina.seed import PROMOTIONS, SERVICES, STAFF, seed_initial_data

from conftest import TODAY


async def count(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_seeds_empty_tables(session):
    inserted = await seed_initial_data(session, TODAY)

    assert inserted == {"services": len(SERVICES), "staff": len(STAFF), "promotions": len(PROMOTIONS)}
    assert await count(session, Service) == len(SERVICES)
    assert await count(session, Staff) == len(STAFF)


@pytest.mark.asyncio
async def test_promotions_parsed_from_labels(session):
    await seed_initial_data(session, TODAY)

    promos = {p.title: p for p in (await session.execute(select(Promotion))).scalars().all()}
    summer = promos["Summer Glow Package"]
    friend = promos["Bring a Friend"]
    assert (summer.discount_kind, summer.discount_value) == (DiscountKind.PERCENTAGE, 20)
    assert (friend.discount_kind, friend.discount_value) == (DiscountKind.FIXED, 5000)
    assert summer.end_date == TODAY + timedelta(days=30)


@pytest.mark.asyncio
async def test_second_run_inserts_nothing(session):
    await seed_initial_data(session, TODAY)

    inserted = await seed_initial_data(session, TODAY)

    assert inserted == {"services": 0, "staff": 0, "promotions": 0}
    assert await count(session, Service) == len(SERVICES)


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(session):
    inserted = await seed_initial_data(session, TODAY, commit=False)

    assert inserted["services"] == len(SERVICES)
    assert await count(session, Service) == 0
    assert await count(session, Promotion) == 0
