"""Integration tests for the bookings API endpoints."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from bookings.models import Booking
from bookings.pricing import compute_pricing
from notifications import tasks as notification_tasks

pytestmark = pytest.mark.django_db


def future(days: int):
    base = timezone.now().replace(minute=0, second=0, microsecond=0)
    return base + timedelta(days=days)


def booking_payload(car, start, end, **overrides):
    pricing = compute_pricing(daily_rate=Decimal("250000.00"), start=start, end=end)
    payload = {
        "car": car.id,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "daily_rate": str(pricing.daily_rate),
        "total_days": pricing.total_days,
        "subtotal": str(pricing.subtotal),
        "total_amount": str(pricing.total_amount),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def live_booking(booking_factory):
    """Booking factory relative to the wall clock, since the API runs on the system clock."""

    def factory(**overrides):
        start = overrides.pop("start_date", future(10))
        return booking_factory(start_date=start, end_date=overrides.pop("end_date", start + timedelta(days=3)), **overrides)

    return factory


def test_create_booking_success(auth_client, renter_user, car):
    client = auth_client(renter_user)

    resp = client.post("/api/bookings/", booking_payload(car, future(3), future(6)), format="json")

    assert resp.status_code == 201, resp.data
    assert resp.data["status"] == Booking.Status.PENDING
    assert resp.data["host"] == car.host_id
    assert resp.data["renter"] == renter_user.id
    assert resp.data["total_days"] == 3
    assert resp.data["car_title"] == "2021 Toyota Avanza"


def test_create_booking_queues_host_notification(
    auth_client, renter_user, car, monkeypatch, django_capture_on_commit_callbacks
):
    captured = []
    monkeypatch.setattr(
        notification_tasks.send_booking_request_email, "delay", lambda booking_id: captured.append(booking_id)
    )
    client = auth_client(renter_user)

    with django_capture_on_commit_callbacks(execute=True):
        resp = client.post("/api/bookings/", booking_payload(car, future(3), future(5)), format="json")

    assert resp.status_code == 201
    assert captured == [resp.data["id"]]


def test_create_booking_rejects_wrong_totals(auth_client, renter_user, car):
    client = auth_client(renter_user)
    payload = booking_payload(car, future(3), future(6), total_amount="1.00")

    resp = client.post("/api/bookings/", payload, format="json")

    assert resp.status_code == 400
    assert resp.data["code"] == "invalid_input"
    assert "total_amount" in resp.data["detail"]


def test_create_booking_conflict_returns_409(auth_client, renter_user, car, live_booking):
    existing = live_booking(start_date=future(3), end_date=future(7))
    client = auth_client(renter_user)

    resp = client.post("/api/bookings/", booking_payload(car, future(6), future(9)), format="json")

    assert resp.status_code == 409
    assert resp.data["code"] == "conflict"
    assert resp.data["details"]["conflicts"][0]["booking_id"] == existing.id


def test_requires_authentication(api_client, car):
    resp = api_client.get("/api/bookings/")
    assert resp.status_code == 401


def test_list_is_scoped_to_participants(auth_client, renter_user, host_user, other_user, live_booking):
    booking = live_booking()

    assert [b["id"] for b in auth_client(renter_user).get("/api/bookings/").data] == [booking.id]
    assert [b["id"] for b in auth_client(host_user).get("/api/bookings/?role=host").data] == [booking.id]
    assert auth_client(host_user).get("/api/bookings/?role=renter").data == []
    assert auth_client(other_user).get("/api/bookings/").data == []
    assert auth_client(other_user).get(f"/api/bookings/{booking.id}/").status_code == 404


def test_confirm_flow(auth_client, host_user, renter_user, live_booking):
    booking = live_booking(status=Booking.Status.PENDING)

    denied = auth_client(renter_user).post(f"/api/bookings/{booking.id}/confirm/")
    resp = auth_client(host_user).post(f"/api/bookings/{booking.id}/confirm/")
    again = auth_client(host_user).post(f"/api/bookings/{booking.id}/confirm/")

    assert denied.status_code == 403
    assert resp.status_code == 200, resp.data
    assert resp.data["status"] == Booking.Status.CONFIRMED
    assert resp.data["approved_at"] is not None
    assert again.status_code == 409
    assert again.data["code"] == "illegal_transition"


def test_start_and_complete(auth_client, host_user, live_booking):
    booking = live_booking(status=Booking.Status.CONFIRMED)
    client = auth_client(host_user)

    assert client.post(f"/api/bookings/{booking.id}/start/").data["status"] == Booking.Status.IN_PROGRESS
    assert client.post(f"/api/bookings/{booking.id}/complete/").data["status"] == Booking.Status.COMPLETED


def test_reject_refunds_in_full(auth_client, host_user, live_booking):
    booking = live_booking(status=Booking.Status.PENDING)

    resp = auth_client(host_user).post(
        f"/api/bookings/{booking.id}/reject/", {"reason": "Car in service"}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["status"] == Booking.Status.CANCELLED
    assert resp.data["cancellation_track"] == Booking.CancellationTrack.HOST_REJECT
    assert Decimal(resp.data["refund_amount"]) == booking.total_amount


def test_renter_cancel_uses_standard_track(auth_client, renter_user, live_booking):
    booking = live_booking(start_date=future(20))

    resp = auth_client(renter_user).post(
        f"/api/bookings/{booking.id}/cancel/", {"reason": "Trip postponed"}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["track"] == "standard"
    assert Decimal(resp.data["refund"]) == booking.total_amount
    assert resp.data["fee"] == "0.00"
    assert resp.data["booking"]["cancelled_by_type"] == "renter"


def test_renter_cancel_after_deadline(auth_client, renter_user, live_booking):
    booking = live_booking(start_date=future(1))

    info = auth_client(renter_user).get(f"/api/bookings/{booking.id}/cancellation-info/")
    resp = auth_client(renter_user).post(f"/api/bookings/{booking.id}/cancel/", {}, format="json")

    assert info.status_code == 200
    assert info.data["can_cancel"] is False
    assert info.data["cancellation_message"]
    assert resp.status_code == 400
    assert resp.data["code"] == "deadline_passed"


def test_cancellation_info_is_renter_only(auth_client, host_user, renter_user, live_booking):
    booking = live_booking(start_date=future(20))

    ok = auth_client(renter_user).get(f"/api/bookings/{booking.id}/cancellation-info/")
    denied = auth_client(host_user).get(f"/api/bookings/{booking.id}/cancellation-info/")

    assert ok.status_code == 200
    assert ok.data["can_cancel"] is True
    assert Decimal(ok.data["potential_refund"]) == booking.total_amount
    assert denied.status_code == 403


def test_host_emergency_cancel(auth_client, host_user, live_booking):
    booking = live_booking(start_date=future(5), end_date=future(9))
    client = auth_client(host_user)

    quote = client.get(f"/api/bookings/{booking.id}/emergency-quote/?reason_code=other")
    missing = client.post(f"/api/bookings/{booking.id}/cancel/", {"reason": "Accident"}, format="json")
    resp = client.post(
        f"/api/bookings/{booking.id}/cancel/",
        {"reason": "Accident on the way", "reason_code": "other"},
        format="json",
    )

    assert quote.status_code == 200
    assert missing.status_code == 400
    assert resp.status_code == 200, resp.data
    assert resp.data["track"] == "emergency"
    assert resp.data["fee"] == quote.data["fee"]
    assert resp.data["refund"] == quote.data["refund"]
    assert resp.data["booking"]["cancellation_details"]["reason_code"] == "other"


def test_dispute(auth_client, renter_user, live_booking):
    booking = live_booking(status=Booking.Status.IN_PROGRESS)
    client = auth_client(renter_user)

    empty = client.post(f"/api/bookings/{booking.id}/dispute/", {}, format="json")
    resp = client.post(f"/api/bookings/{booking.id}/dispute/", {"reason": "Fuel level wrong"}, format="json")

    assert empty.status_code == 400
    assert resp.status_code == 200
    assert resp.data["status"] == Booking.Status.DISPUTED
    assert resp.data["dispute_reason"] == "Fuel level wrong"


def test_reschedule(auth_client, renter_user, live_booking):
    booking = live_booking(status=Booking.Status.PENDING, start_date=future(10))
    new_start, new_end = future(12), future(16)

    resp = auth_client(renter_user).post(
        f"/api/bookings/{booking.id}/reschedule/",
        {"start_date": new_start.isoformat(), "end_date": new_end.isoformat()},
        format="json",
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["total_days"] == 4
    assert Decimal(resp.data["total_amount"]) == Decimal("1000000.00")


def test_conflicts_endpoint(auth_client, renter_user, car, live_booking):
    existing = live_booking(start_date=future(3), end_date=future(7))
    client = auth_client(renter_user)

    clash = client.get(
        "/api/bookings/conflicts/",
        {"car": car.id, "start": future(6).isoformat(), "end": future(9).isoformat()},
    )
    adjacent = client.get(
        "/api/bookings/conflicts/",
        {"car": car.id, "start": future(7).isoformat(), "end": future(9).isoformat()},
    )
    bad = client.get("/api/bookings/conflicts/", {"car": car.id, "start": "soon"})

    assert clash.data["has_conflict"] is True
    assert clash.data["conflicts"][0]["booking_id"] == existing.id
    assert adjacent.data == {"has_conflict": False, "conflicts": [], "blocks": []}
    assert bad.status_code == 400


def test_availability_is_public(api_client, car, live_booking):
    live_booking(start_date=future(3), end_date=future(7))
    live_booking(start_date=future(20), end_date=future(22), status=Booking.Status.CANCELLED)

    resp = api_client.get("/api/bookings/availability/", {"car": car.id})
    missing = api_client.get("/api/bookings/availability/", {"car": 999999})

    assert resp.status_code == 200
    assert len(resp.data) == 1
    assert missing.status_code == 404


def test_manual_booking(auth_client, host_user, renter_user, car):
    payload = booking_payload(
        car,
        future(2),
        future(4),
        customer={"customer_name": "Walk-in Customer", "customer_phone": "+62811000111"},
    )

    resp = auth_client(host_user).post("/api/bookings/manual/", payload, format="json")
    denied = auth_client(renter_user).post(
        "/api/bookings/manual/", booking_payload(car, future(8), future(9), customer={"customer_name": "X"}), format="json"
    )

    assert resp.status_code == 201, resp.data
    assert resp.data["booking_type"] == Booking.BookingType.OFFLINE
    assert resp.data["manual_details"]["customer_name"] == "Walk-in Customer"
    assert denied.status_code == 403


def test_host_manages_blocks(auth_client, host_user, renter_user, car):
    client = auth_client(host_user)

    created = client.post(
        "/api/bookings/blocks/",
        {
            "car": car.id,
            "start_date": future(5).isoformat(),
            "end_date": future(8).isoformat(),
            "block_type": "maintenance",
            "reason": "Annual service",
        },
        format="json",
    )
    listed = client.get("/api/bookings/blocks/", {"car": car.id})
    booking = auth_client(renter_user).post(
        "/api/bookings/", booking_payload(car, future(6), future(9)), format="json"
    )
    conflicts = auth_client(renter_user).get(
        "/api/bookings/conflicts/",
        {"car": car.id, "start": future(6).isoformat(), "end": future(9).isoformat()},
    )

    assert created.status_code == 201, created.data
    assert created.data["block_type"] == "maintenance"
    assert [b["id"] for b in listed.data] == [created.data["id"]]
    assert booking.status_code == 409
    assert booking.data["details"]["conflict_type"] == "manual_block"
    assert conflicts.data["has_conflict"] is True
    assert conflicts.data["conflicts"] == []
    assert conflicts.data["blocks"][0]["block_id"] == created.data["id"]

    assert auth_client(renter_user).delete(f"/api/bookings/blocks/{created.data['id']}/").status_code == 403
    assert client.delete(f"/api/bookings/blocks/{created.data['id']}/").status_code == 204
    assert client.get("/api/bookings/blocks/").data == []


def test_renter_cannot_block_someone_elses_car(auth_client, renter_user, car):
    resp = auth_client(renter_user).post(
        "/api/bookings/blocks/",
        {"car": car.id, "start_date": future(5).isoformat(), "end_date": future(8).isoformat()},
        format="json",
    )

    assert resp.status_code == 403
    assert resp.data["code"] == "forbidden"


def test_availability_shows_blocks(api_client, car, host_user, auth_client):
    auth_client(host_user).post(
        "/api/bookings/blocks/",
        {"car": car.id, "start_date": future(2).isoformat(), "end_date": future(4).isoformat(), "block_type": "personal"},
        format="json",
    )

    resp = api_client.get("/api/bookings/availability/", {"car": car.id})

    assert resp.status_code == 200
    assert resp.data[0]["kind"] == "block"
    assert resp.data[0]["block_type"] == "personal"


def test_host_cancels_offline_booking_without_fee(auth_client, host_user, live_booking):
    booking = live_booking(
        booking_type=Booking.BookingType.OFFLINE,
        renter=host_user,
        status=Booking.Status.AUTO_APPROVED,
    )

    resp = auth_client(host_user).post(
        f"/api/bookings/{booking.id}/cancel/", {"reason": "Customer no-show"}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["track"] == "host_reject"
    assert resp.data["fee"] == "0.00"
    assert resp.data["booking"]["cancelled_by_type"] == "host"
