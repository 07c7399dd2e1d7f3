from __future__ import annotations

from rest_framework import serializers

from .models import Review


class ReviewSerializer(serializers.ModelSerializer):
    reviewer_name = serializers.SerializerMethodField()

    class Meta:
        model = Review
        fields = (
            "id",
            "booking",
            "car",
            "reviewer",
            "reviewer_name",
            "reviewed",
            "role",
            "rating",
            "comment",
            "is_public",
            "created_at",
        )
        read_only_fields = fields

    def get_reviewer_name(self, obj: Review) -> str:
        user = obj.reviewer
        full_name = (user.get_full_name() or "").strip()
        return full_name or user.username


class ReviewCreateSerializer(serializers.Serializer):
    """Input for a new review; eligibility is decided by the booking lifecycle."""

    booking = serializers.IntegerField()
    reviewed = serializers.IntegerField()
    rating = serializers.IntegerField()
    comment = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    is_public = serializers.BooleanField(required=False, default=True)


class ReviewEligibilitySerializer(serializers.Serializer):
    can_review = serializers.BooleanField()
    reason = serializers.CharField(allow_blank=True)
    reviewed_id = serializers.IntegerField(allow_null=True)
    role = serializers.CharField(allow_blank=True)
