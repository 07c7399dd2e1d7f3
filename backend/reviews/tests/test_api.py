import pytest

from bookings.models import Booking
from reviews.models import Review

pytestmark = pytest.mark.django_db


def test_submit_and_recheck(auth_client, booking_factory, host_user, renter_user):
    booking = booking_factory(status=Booking.Status.COMPLETED)
    client = auth_client(renter_user)

    before = client.get("/api/reviews/eligibility/", {"booking": booking.id})
    created = client.post(
        "/api/reviews/",
        {"booking": booking.id, "reviewed": host_user.id, "rating": 5, "comment": "Great host"},
        format="json",
    )
    after = client.get("/api/reviews/eligibility/", {"booking": booking.id})
    duplicate = client.post(
        "/api/reviews/",
        {"booking": booking.id, "reviewed": host_user.id, "rating": 4},
        format="json",
    )

    assert before.data["can_review"] is True
    assert before.data["reviewed_id"] == host_user.id
    assert created.status_code == 201, created.data
    assert created.data["role"] == Review.Role.RENTER_TO_HOST
    assert created.data["reviewer_name"] == renter_user.username
    assert after.data["can_review"] is False
    assert after.data["reason"] == "You have already reviewed this booking."
    assert duplicate.status_code == 409
    assert duplicate.data["code"] == "already_reviewed"


def test_review_before_completion(auth_client, booking_factory, host_user, renter_user):
    booking = booking_factory(status=Booking.Status.IN_PROGRESS)

    resp = auth_client(renter_user).post(
        "/api/reviews/",
        {"booking": booking.id, "reviewed": host_user.id, "rating": 5},
        format="json",
    )

    assert resp.status_code == 409
    assert resp.data["code"] == "illegal_transition"


def test_rating_out_of_range(auth_client, booking_factory, host_user, renter_user):
    booking = booking_factory(status=Booking.Status.COMPLETED)

    resp = auth_client(renter_user).post(
        "/api/reviews/",
        {"booking": booking.id, "reviewed": host_user.id, "rating": 9},
        format="json",
    )

    assert resp.status_code == 400
    assert resp.data["detail"] == "Rating must be between 1 and 5."


def test_private_reviews_visible_only_to_participants(auth_client, booking_factory, host_user, renter_user, other_user):
    booking = booking_factory(status=Booking.Status.COMPLETED)
    Review.objects.create(
        booking=booking,
        car=booking.car,
        reviewer=renter_user,
        reviewed=host_user,
        role=Review.Role.RENTER_TO_HOST,
        rating=3,
        is_public=False,
    )

    assert len(auth_client(host_user).get("/api/reviews/").data) == 1
    assert auth_client(other_user).get("/api/reviews/").data == []


def test_eligibility_requires_booking_param(auth_client, renter_user):
    resp = auth_client(renter_user).get("/api/reviews/eligibility/")
    assert resp.status_code == 400
