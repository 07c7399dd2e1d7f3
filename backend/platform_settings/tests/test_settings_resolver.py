from datetime import timedelta

import pytest
from django.utils import timezone

from core.settings_resolver import get_bool, get_int, get_json, get_setting
from platform_settings.models import DbSetting

pytestmark = pytest.mark.django_db


def test_get_setting_ignores_future_effective_at(db_setting_factory):
    db_setting_factory(
        key="BOOKING_CANCELLATION_DEADLINE_HOURS",
        value_json=48,
        effective_at=timezone.now() + timedelta(hours=1),
    )
    assert get_setting("BOOKING_CANCELLATION_DEADLINE_HOURS", "default") == "default"
    assert get_int("BOOKING_CANCELLATION_DEADLINE_HOURS", 72) == 72


def test_get_setting_picks_latest_effective_row(db_setting_factory):
    now = timezone.now()
    db_setting_factory(key="EFFECTIVE_KEY", value_json=1, effective_at=now - timedelta(days=2))
    db_setting_factory(key="EFFECTIVE_KEY", value_json=2, effective_at=now - timedelta(hours=1))
    assert get_int("EFFECTIVE_KEY", 0) == 2


def test_latest_updated_row_wins_without_effective_at(db_setting_factory):
    older = db_setting_factory(key="NULL_EFF", value_json=1)
    DbSetting.objects.filter(pk=older.pk).update(updated_at=timezone.now() - timedelta(hours=1))
    db_setting_factory(key="NULL_EFF", value_json=2)

    assert get_int("NULL_EFF", 0) == 2


def test_typed_helpers_fall_back_on_wrong_types(db_setting_factory):
    db_setting_factory(key="INT_KEY", value_json="not-an-int")
    db_setting_factory(key="BOOL_KEY", value_json="true", value_type="bool")
    db_setting_factory(key="JSON_KEY_BAD", value_json="nope", value_type="json")

    assert get_int("INT_KEY", 9) == 9
    assert get_bool("BOOL_KEY", default=False) is False
    assert get_json("JSON_KEY_BAD", default=[]) == []


def test_json_values_are_copied_out_of_the_cache(db_setting_factory):
    db_setting_factory(key="TIERS", value_json=[{"min_days": 1}], value_type="json")

    first = get_json("TIERS", [])
    first.append({"min_days": 99})

    assert get_json("TIERS", []) == [{"min_days": 1}]


def test_cache_avoids_duplicate_queries(db_setting_factory, django_assert_num_queries):
    db_setting_factory(key="CACHE_KEY", value_json=1)

    with django_assert_num_queries(1):
        assert get_int("CACHE_KEY", 0) == 1
        assert get_int("CACHE_KEY", 0) == 1


def test_saving_a_changed_row_inserts_a_new_version(db_setting_factory):
    row = db_setting_factory(key="VERSIONED", value_json=1)
    original_pk = row.pk

    row.value_json = 2
    row.save()

    assert row.pk != original_pk
    assert DbSetting.objects.filter(key="VERSIONED").count() == 2

    row.save()
    assert DbSetting.objects.filter(key="VERSIONED").count() == 2
