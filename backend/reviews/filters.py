import django_filters as filters

from .models import Review


class ReviewFilter(filters.FilterSet):
    booking = filters.NumberFilter(field_name="booking_id")
    reviewed = filters.NumberFilter(field_name="reviewed_id")
    car = filters.NumberFilter(field_name="car_id")
    role = filters.ChoiceFilter(choices=Review.Role.choices)

    class Meta:
        model = Review
        fields = ["booking", "reviewed", "car", "role"]
