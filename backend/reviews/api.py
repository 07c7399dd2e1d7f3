from __future__ import annotations

from django.db import models
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.api import error_response, result_response
from bookings.errors import InvalidInput
from bookings.services import BookingLifecycle

from .filters import ReviewFilter
from .models import Review
from .serializers import ReviewCreateSerializer, ReviewEligibilitySerializer, ReviewSerializer


class ReviewViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Reviews between booking participants.

    Reviews are immutable once written, so there is no update or delete.
    Public reviews are visible to every signed-in user; private ones only to
    the two people involved.
    """

    serializer_class = ReviewSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_class = ReviewFilter
    ordering_fields = ("created_at", "rating")

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return Review.objects.none()
        return Review.objects.select_related("reviewer").filter(
            models.Q(is_public=True) | models.Q(reviewer=user) | models.Q(reviewed=user)
        )

    def create(self, request, *args, **kwargs):
        serializer = ReviewCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = BookingLifecycle().submit_review(
            data["booking"],
            request.user.id,
            data["reviewed"],
            data["rating"],
            data["comment"],
            data["is_public"],
        )
        return result_response(
            result,
            lambda review: ReviewSerializer(review).data,
            success_status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"], url_path="eligibility")
    def eligibility(self, request, *args, **kwargs):
        """Whether the caller may review the other party of ?booking=."""
        try:
            booking_id = int(request.query_params.get("booking", ""))
        except (TypeError, ValueError):
            return error_response(InvalidInput("booking must be a valid integer."))
        verdict = BookingLifecycle().check_review_eligibility(booking_id, request.user.id)
        return Response(ReviewEligibilitySerializer(verdict).data)
