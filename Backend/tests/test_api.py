"""
HTTP surface tests: envelope shape, auth, and outcome-code status mapping.
"""

from datetime import time, timedelta

import pytest

from conftest import BOOKING_DAY, TODAY, auth_headers


AMY = auth_headers("user-amy", "amy@example.com")
MICHAEL = auth_headers("user-michael", "michael@lumina.com")

VISA = {"number": "4111111111111111", "expiry": "12/29", "cvc": "123", "holder_name": "Amy Tan"}


def booking_body(catalog, start="10:00", expected=11340):
    return {
        "service_id": catalog.services["cut"].id,
        "staff_id": catalog.staff["michael"].id,
        "appointment_date": BOOKING_DAY.isoformat(),
        "start_time": start,
        "payment_method": "card",
        "expected_total_cents": expected,
        "card": VISA,
    }


class TestPublic:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_services(self, client, catalog):
        response = await client.get("/services")
        body = response.json()
        assert body["status"] == "success"
        assert [s["name"] for s in body["data"]] == ["Wash & Blowdry", "Wash & Cut", "Colour / Semi-colour"]

    @pytest.mark.asyncio
    async def test_availability(self, client, catalog, customer, make_appointment):
        michael = catalog.staff["michael"]
        await make_appointment(customer, michael, catalog.services["cut"], BOOKING_DAY, time(9, 0))

        response = await client.get(
            "/availability", params={"date": BOOKING_DAY.isoformat(), "staff_id": michael.id}
        )

        data = response.json()["data"]
        assert data["bookable"] is True
        taken = [s["time"] for s in data["slots"] if not s["available"]]
        assert taken == ["09:00", "13:00"]


class TestAuth:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get("/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_sign_in_creates_profile_with_welcome_voucher(self, client):
        headers = auth_headers("user-new", "new@example.com")

        me = await client.get("/me", headers=headers)
        vouchers = await client.get("/vouchers", headers=headers)

        assert me.status_code == 200
        assert me.json()["data"]["tier"]["current"] == "Silver"
        assert [v["discount_value"] for v in vouchers.json()["data"]] == [40]

    @pytest.mark.asyncio
    async def test_customer_cannot_use_staff_routes(self, client, catalog, customer):
        response = await client.post("/staff/check-in", json={"ref_id": "A0001"}, headers=AMY)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_staff_cannot_book(self, client, catalog):
        response = await client.post("/appointments", json=booking_body(catalog), headers=MICHAEL)
        assert response.status_code == 403


class TestBookingFlow:

    @pytest.mark.asyncio
    async def test_preview_then_book(self, client, catalog, customer):
        preview = await client.post(
            "/checkout/preview",
            json={
                "service_id": catalog.services["cut"].id,
                "staff_id": catalog.staff["michael"].id,
                "appointment_date": BOOKING_DAY.isoformat(),
                "start_time": "10:00",
            },
            headers=AMY,
        )
        assert preview.status_code == 200
        total = preview.json()["data"]["price"]["final_total_cents"]
        assert total == 11340

        response = await client.post("/appointments", json=booking_body(catalog, expected=total), headers=AMY)

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Booking confirmed."
        assert body["data"]["appointment"]["status"] == "confirmed"
        assert body["data"]["receipt"]["total_payable"] == "RM 113.40"
        assert body["data"]["points_earned"] == 113

    @pytest.mark.asyncio
    async def test_receipts_and_points_history(self, client, catalog, customer):
        assert (await client.post("/appointments", json=booking_body(catalog), headers=AMY)).status_code == 201

        receipts = (await client.get("/receipts", headers=AMY)).json()["data"]
        history = (await client.get("/points/history", headers=AMY)).json()["data"]

        assert [(r["service_name"], r["stylist_name"], r["total_payable"]) for r in receipts] == [
            ("Wash & Cut", "Michael Chen", "RM 113.40")
        ]
        assert [(h["title"], h["points"], h["type"]) for h in history] == [("Service Earned", 113, "earn")]

    @pytest.mark.asyncio
    async def test_conflict_maps_to_409(self, client, catalog, customer):
        first = await client.post("/appointments", json=booking_body(catalog), headers=AMY)
        assert first.status_code == 201

        again = await client.post("/appointments", json=booking_body(catalog), headers=AMY)

        assert again.status_code == 409
        assert again.json()["status"] == "error"
        assert again.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_lunch_maps_to_400(self, client, catalog, customer):
        response = await client.post("/appointments", json=booking_body(catalog, start="13:00"), headers=AMY)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_list_buckets(self, client, catalog, customer, make_appointment):
        await make_appointment(customer, catalog.staff["michael"], catalog.services["cut"], BOOKING_DAY, time(11, 0))

        response = await client.get("/appointments", headers=AMY)

        data = response.json()["data"]
        assert [a["start_time"] for a in data["upcoming"]] == ["11:00"]
        assert data["history"] == []

    @pytest.mark.asyncio
    async def test_cancel_twice_maps_to_409(self, client, catalog, customer):
        booked = await client.post("/appointments", json=booking_body(catalog), headers=AMY)
        appt_id = booked.json()["data"]["appointment"]["id"]

        first = await client.post(f"/appointments/{appt_id}/cancel", headers=AMY)
        second = await client.post(f"/appointments/{appt_id}/cancel", headers=AMY)

        assert first.json()["data"]["refund_cents"] == 9072
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "STATE_ERROR"


class TestStaff:

    @pytest.mark.asyncio
    async def test_check_in_and_complete(self, client, catalog, customer, make_appointment):
        appt = await make_appointment(
            customer, catalog.staff["michael"], catalog.services["cut"], TODAY, time(11, 0), ref_id="A4321"
        )

        checked = await client.post("/staff/check-in", json={"ref_id": "a4321"}, headers=MICHAEL)
        done = await client.post(f"/appointments/{appt.id}/complete", headers=MICHAEL)

        assert checked.status_code == 200
        assert checked.json()["message"] == "Amy Tan Checked-In Successfully."
        assert done.json()["data"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_other_stylist_gets_403(self, client, catalog, customer, make_appointment):
        await make_appointment(
            customer, catalog.staff["michael"], catalog.services["cut"], TODAY, time(11, 0), ref_id="A4321"
        )
        sarah = auth_headers("user-sarah", "sarah@lumina.com")

        response = await client.post("/staff/check-in", json={"ref_id": "A4321"}, headers=sarah)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "OWNERSHIP"

    @pytest.mark.asyncio
    async def test_schedule_runs_reconciliation(self, client, catalog, customer, make_appointment):
        await make_appointment(
            customer, catalog.staff["michael"], catalog.services["cut"], TODAY - timedelta(days=1), time(9, 0)
        )

        response = await client.get("/staff/appointments", headers=MICHAEL)

        assert [a["status"] for a in response.json()["data"]] == ["absence"]

    @pytest.mark.asyncio
    async def test_staff_feed(self, client, catalog, customer, make_appointment):
        await make_appointment(customer, catalog.staff["michael"], catalog.services["cut"], TODAY, time(15, 0))

        response = await client.get("/notifications", headers=MICHAEL)

        titles = [item["title"] for item in response.json()["data"]]
        assert titles == ["Daily Summary"]
