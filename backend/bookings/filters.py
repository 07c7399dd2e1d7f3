import django_filters as filters

from .models import Booking


class BookingFilter(filters.FilterSet):
    status = filters.CharFilter(field_name="status", lookup_expr="iexact")
    booking_type = filters.CharFilter(field_name="booking_type", lookup_expr="iexact")
    car = filters.NumberFilter(field_name="car_id")
    role = filters.ChoiceFilter(choices=Booking.PartyType.choices, method="filter_role")
    starts_after = filters.IsoDateTimeFilter(field_name="start_date", lookup_expr="gte")
    ends_before = filters.IsoDateTimeFilter(field_name="end_date", lookup_expr="lte")

    class Meta:
        model = Booking
        fields = ["status", "booking_type", "car", "role"]

    def filter_role(self, queryset, name, value):
        user = getattr(self.request, "user", None)
        if not value or user is None:
            return queryset
        if value == Booking.PartyType.HOST:
            return queryset.filter(host=user)
        return queryset.filter(renter=user).exclude(booking_type=Booking.BookingType.OFFLINE)
