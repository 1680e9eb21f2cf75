"""Tests for /api/bookings endpoints."""

from datetime import timedelta

from pitchbook.dependencies import create_jwt
from tests.mocks.models import (
    MOCK_ACCOUNT,
    MOCK_ACCOUNT_2,
    MOCK_GUEST,
    MOCK_PITCH,
    PAYMENT_CALLBACK_SECRET,
    TODAY,
    TOMORROW,
    VENUE_KEY,
)

_GUEST = {"kind": "guest", "name": MOCK_GUEST.name, "email": MOCK_GUEST.email, "phone": MOCK_GUEST.phone}
_ACCOUNT = {"kind": "account", "account_id": MOCK_ACCOUNT.account_id}
_VENUE = {"Authorization": f"Bearer {VENUE_KEY}"}
_PROVIDER = {"Authorization": f"Bearer {PAYMENT_CALLBACK_SECRET}"}


def _payload(start="10:00", duration=2, on=TOMORROW, holder=_ACCOUNT, method="cash", pitch=MOCK_PITCH.id):
    body = {
        "resource_id": pitch,
        "booking_date": on.isoformat(),
        "start_time": start,
        "duration_hours": duration,
        "payment_method": method,
    }
    if holder is not None:
        body["holder"] = holder
    return body


def _create(client, **kwargs):
    resp = client.post("/api/bookings", json=_payload(**kwargs))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreateBooking:
    def test_create(self, client):
        resp = client.post("/api/bookings", json=_payload())
        assert resp.status_code == 201

        data = resp.json()
        assert data["status"] == "confirmed"
        assert data["payment_state"] == "unpaid"
        assert data["start_time"] == "10:00"
        assert float(data["total_price"]) == 7000
        assert data["holder"] == _ACCOUNT

    def test_guest_booking(self, client):
        data = _create(client, holder=_GUEST)
        assert data["holder"]["email"] == MOCK_GUEST.email

    def test_session_account_is_default_holder(self, authed_client):
        data = _create(authed_client, holder=None)
        assert data["holder"] == _ACCOUNT

    def test_holder_required_without_session(self, client):
        resp = client.post("/api/bookings", json=_payload(holder=None))
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "holder_required"

    def test_invalid_guest_email(self, client):
        resp = client.post("/api/bookings", json=_payload(holder={**_GUEST, "email": "nope"}))
        assert resp.status_code == 422

    def test_slot_taken(self, client):
        _create(client)
        resp = client.post("/api/bookings", json=_payload(start="11:00", duration=1))
        assert resp.status_code == 409

        detail = resp.json()["detail"]
        assert detail["error"] == "slot_taken"
        assert len(detail["details"]["conflicting"]) == 1

    def test_too_soon(self, client):
        resp = client.post("/api/bookings", json=_payload(on=TODAY, start="18:00"))
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "too_soon"

    def test_too_far_ahead(self, client):
        resp = client.post("/api/bookings", json=_payload(on=TODAY + timedelta(days=45)))
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "too_far_ahead"

    def test_outside_hours(self, client):
        resp = client.post("/api/bookings", json=_payload(start="21:00", duration=2))
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "invalid_interval"

    def test_unknown_pitch(self, client):
        resp = client.post("/api/bookings", json=_payload(pitch="nope"))
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "unknown_resource"


class TestGetBooking:
    def test_get(self, client):
        created = _create(client)
        resp = client.get(f"/api/bookings/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    def test_not_found(self, client):
        resp = client.get("/api/bookings/missing")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "not_found"


class TestCancelBooking:
    def test_cancel_then_cancel_again(self, authed_client):
        created = _create(authed_client)

        resp = authed_client.post(f"/api/bookings/{created['id']}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["cancelled_by"] == "holder"

        resp = authed_client.post(f"/api/bookings/{created['id']}/cancel")
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "already_cancelled"

    def test_anonymous_cancel_is_refused(self, client):
        created = _create(client)
        resp = client.post(f"/api/bookings/{created['id']}/cancel")
        assert resp.status_code == 401
        assert client.get(f"/api/bookings/{created['id']}").json()["status"] == "confirmed"

    def test_other_account_cannot_cancel(self, client):
        created = _create(client)
        client.cookies.set("session", create_jwt(MOCK_ACCOUNT_2.account_id))
        resp = client.post(f"/api/bookings/{created['id']}/cancel")
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "forbidden"

    def test_guest_booking_is_cancelled_by_the_venue(self, authed_client):
        created = _create(authed_client, holder=_GUEST)
        assert authed_client.post(f"/api/bookings/{created['id']}/cancel").status_code == 403

        resp = authed_client.post(f"/api/bookings/{created['id']}/cancel", headers=_VENUE)
        assert resp.status_code == 200
        assert resp.json()["cancelled_by"] == "venue"

    def test_venue_cancel(self, client):
        created = _create(client)
        resp = client.post(f"/api/bookings/{created['id']}/cancel", headers=_VENUE)
        assert resp.json()["cancelled_by"] == "venue"

    def test_wrong_venue_key(self, client):
        created = _create(client)
        resp = client.post(
            f"/api/bookings/{created['id']}/cancel",
            headers={"Authorization": "Bearer not-the-key"},
        )
        assert resp.status_code == 401

    def test_late_holder_cancel_cannot_claim_venue_refund(self, authed_client, _test_env):
        created = _create(authed_client, method="online")
        paid = authed_client.post(
            f"/api/bookings/{created['id']}/payment",
            json={"succeeded": True, "reference": "ch_1"},
            headers=_PROVIDER,
        )
        assert paid.json()["payment_state"] == "paid"

        # Midnight before a 10:00 kick-off: inside the no-refund window.
        _test_env.advance(hours=16)
        resp = authed_client.post(
            f"/api/bookings/{created['id']}/cancel", json={"actor": "venue"}
        )
        assert resp.status_code == 200
        assert resp.json()["cancelled_by"] == "holder"
        assert float(resp.json()["refund_amount"]) == 0

    def test_cancel_unknown(self, authed_client):
        resp = authed_client.post("/api/bookings/missing/cancel")
        assert resp.status_code == 404


class TestRescheduleBooking:
    def test_reschedule(self, authed_client):
        created = _create(authed_client)
        resp = authed_client.post(
            f"/api/bookings/{created['id']}/reschedule",
            json={"booking_date": TOMORROW.isoformat(), "start_time": "14:00"},
        )
        assert resp.status_code == 200

        moved = resp.json()
        assert moved["start_time"] == "14:00"
        assert moved["rescheduled_from"] == created["id"]
        assert authed_client.get(f"/api/bookings/{created['id']}").json()["status"] == "cancelled"

    def test_reschedule_conflict(self, authed_client):
        created = _create(authed_client)
        _create(authed_client, start="15:00", duration=1)
        resp = authed_client.post(
            f"/api/bookings/{created['id']}/reschedule",
            json={"booking_date": TOMORROW.isoformat(), "start_time": "14:00"},
        )
        assert resp.status_code == 409
        assert authed_client.get(f"/api/bookings/{created['id']}").json()["status"] == "confirmed"

    def test_anonymous_reschedule_is_refused(self, client):
        created = _create(client)
        resp = client.post(
            f"/api/bookings/{created['id']}/reschedule",
            json={"booking_date": TOMORROW.isoformat(), "start_time": "14:00"},
        )
        assert resp.status_code == 401

    def test_pending_booking_cannot_move(self, authed_client):
        created = _create(authed_client, method="online")
        resp = authed_client.post(
            f"/api/bookings/{created['id']}/reschedule",
            json={"booking_date": TOMORROW.isoformat(), "start_time": "14:00"},
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "invalid_transition"


class TestPayments:
    def test_payment_callback_confirms(self, client):
        created = _create(client, method="online")
        assert created["status"] == "pending"

        resp = client.post(
            f"/api/bookings/{created['id']}/payment",
            json={"succeeded": True, "reference": "ch_1"},
            headers=_PROVIDER,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "confirmed"
        assert resp.json()["payment_state"] == "paid"

    def test_unsigned_callback_is_rejected(self, client):
        created = _create(client, method="online")

        for headers in ({}, {"Authorization": "Bearer forged"}, _VENUE):
            resp = client.post(
                f"/api/bookings/{created['id']}/payment",
                json={"succeeded": True, "reference": "forged"},
                headers=headers,
            )
            assert resp.status_code == 401
            assert resp.json()["detail"]["error"] == "unauthorized"

        assert client.get(f"/api/bookings/{created['id']}").json()["status"] == "pending"

    def test_callbacks_refused_without_configured_secret(self, client, monkeypatch):
        monkeypatch.setattr("pitchbook.dependencies.PAYMENT_CALLBACK_SECRET", "")
        created = _create(client, method="online")
        resp = client.post(
            f"/api/bookings/{created['id']}/payment",
            json={"succeeded": True},
            headers={"Authorization": "Bearer anything"},
        )
        assert resp.status_code == 401

    def test_failed_payment_cancels(self, client):
        created = _create(client, method="online")
        resp = client.post(
            f"/api/bookings/{created['id']}/payment",
            json={"succeeded": False},
            headers=_PROVIDER,
        )
        assert resp.json()["status"] == "cancelled"

    def test_payment_for_confirmed_booking(self, client):
        created = _create(client)
        resp = client.post(
            f"/api/bookings/{created['id']}/payment",
            json={"succeeded": True},
            headers=_PROVIDER,
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "invalid_transition"

    def test_settle_without_provider_is_unavailable(self, authed_client):
        created = _create(authed_client, method="online")
        resp = authed_client.post(f"/api/bookings/{created['id']}/settle")
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"

    def test_settle_requires_holder(self, client):
        created = _create(client, method="online")
        assert client.post(f"/api/bookings/{created['id']}/settle").status_code == 401


class TestMyBookings:
    def test_requires_session(self, client):
        resp = client.get("/api/bookings/mine")
        assert resp.status_code == 401

    def test_invalid_session(self, client):
        client.cookies.set("session", "garbage")
        resp = client.get("/api/bookings/mine")
        assert resp.status_code == 401

    def test_upcoming_and_all(self, authed_client, _test_env):
        _create(authed_client, holder=None, start="10:00", duration=1)
        _create(authed_client, holder=_GUEST, start="15:00", duration=1)

        upcoming = authed_client.get("/api/bookings/mine").json()
        assert upcoming["meta"]["total_items"] == 1

        # Jump to 12:00 on the day of play: the booking is now in the past.
        _test_env.advance(hours=28)
        assert authed_client.get("/api/bookings/mine").json()["meta"]["total_items"] == 0
        past = authed_client.get("/api/bookings/mine", params={"when": "past"}).json()
        assert past["meta"]["total_items"] == 1
        everything = authed_client.get("/api/bookings/mine", params={"when": "all"}).json()
        assert everything["meta"]["total_items"] == 1
