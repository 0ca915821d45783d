"""
Tests for notification audiences and the customer/staff feeds.
"""

from datetime import time, timedelta

import pytest

from lumina.models import AppointmentStatus, DiscountKind, NotificationType, Promotion
from lumina.notifications import (
    AUDIENCES,
    STAFF_FEED_TYPES,
    Audience,
    customer_feed,
    notify_customer,
    notify_staff,
    reschedule_message,
    staff_feed,
)

from conftest import TODAY


class TestAudiences:

    def test_every_type_has_an_audience(self):
        assert set(AUDIENCES) == set(NotificationType)

    def test_staff_feed_types(self):
        assert set(STAFF_FEED_TYPES) == {
            NotificationType.REVIEW,
            NotificationType.SYSTEM,
            NotificationType.BOOKING,
        }

    def test_review_goes_both_ways(self):
        assert AUDIENCES[NotificationType.REVIEW] == {Audience.CUSTOMER, Audience.STAFF}

    @pytest.mark.asyncio
    async def test_booking_alert_cannot_go_to_customer(self, session, customer):
        with pytest.raises(ValueError):
            await notify_customer(session, customer.id, NotificationType.BOOKING, "New Booking", "x")

    @pytest.mark.asyncio
    async def test_receipt_cannot_go_to_staff(self, session):
        with pytest.raises(ValueError):
            await notify_staff(session, NotificationType.RECEIPT, "Receipt", "x")


class TestMessages:

    def test_reschedule_message(self):
        assert reschedule_message("Wash & Cut", "2026-03-12 10:00", "2026-03-13 11:00", 1) == (
            "Wash & Cut rescheduled from 2026-03-12 10:00 to 2026-03-13 11:00. 1 reschedule(s) left."
        )


class TestFeeds:

    @pytest.mark.asyncio
    async def test_customer_feed_newest_first(self, session, customer, other_customer):
        await notify_customer(session, customer.id, NotificationType.INFO, "First", "one")
        await notify_customer(session, customer.id, NotificationType.PROMO, "Second", "two")
        await notify_customer(session, other_customer.id, NotificationType.INFO, "Not mine", "x")
        await session.commit()

        feed = await customer_feed(session, customer.id)

        assert [item.title for item in feed] == ["Second", "First"]
        assert feed[0].to_dict()["type"] == "promo"
        assert feed[0].read is False

    @pytest.mark.asyncio
    async def test_staff_feed_summary_and_expiring_promotions(self, session, catalog, customer, make_appointment):
        await make_appointment(customer, catalog.staff["sarah"], catalog.services["cut"], TODAY, time(15, 0))
        await make_appointment(customer, catalog.staff["michael"], catalog.services["cut"], TODAY, time(16, 0))
        await make_appointment(
            customer, catalog.staff["jessica"], catalog.services["cut"], TODAY, time(9, 0),
            status=AppointmentStatus.CANCELLED,
        )
        for title, end in (("Ends Soon", TODAY + timedelta(days=2)), ("Ends Later", TODAY + timedelta(days=20))):
            session.add(
                Promotion(
                    title=title,
                    discount_label="10% OFF",
                    discount_kind=DiscountKind.PERCENTAGE,
                    discount_value=10,
                    start_date=TODAY - timedelta(days=5),
                    end_date=end,
                    active=True,
                    applicable_service_ids=[],
                )
            )
        await notify_staff(session, NotificationType.BOOKING, "New Booking", "Amy booked a service.")
        await session.commit()

        feed = await staff_feed(session, TODAY)

        assert [item.title for item in feed] == ["Promotion Expiring Soon", "Daily Summary", "New Booking"]
        assert feed[0].message == f'"Ends Soon" ends on {(TODAY + timedelta(days=2)).isoformat()}.'
        assert feed[1].message == "You have 2 confirmed appointments today."

    @pytest.mark.asyncio
    async def test_staff_feed_quiet_day(self, session):
        assert await staff_feed(session, TODAY) == []
