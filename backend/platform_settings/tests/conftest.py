import pytest


@pytest.fixture
def db_setting_factory():
    from platform_settings.models import DbSetting

    def _create(*, key="TEST_KEY", value_json=1, value_type="int", **kwargs):
        return DbSetting.objects.create(
            key=key,
            value_json=value_json,
            value_type=value_type,
            **kwargs,
        )

    return _create
