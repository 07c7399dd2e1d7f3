"""
Runtime setting lookup backed by platform_settings.DbSetting.

Each helper falls back to the caller's default when no effective row exists,
when the stored value has the wrong shape, or when the settings table is not
reachable yet (fresh database, app not installed).
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any

from django.db import DatabaseError

logger = logging.getLogger(__name__)

_CACHE_TTL_SECONDS = 5.0
_MISSING = object()


@dataclass(frozen=True)
class _CacheEntry:
    expires_at: float
    value: object


_cache: dict[str, _CacheEntry] = {}
_cache_lock = Lock()


def clear_settings_cache() -> None:
    with _cache_lock:
        _cache.clear()


def _cached(key: str, now: float) -> object | None:
    with _cache_lock:
        entry = _cache.get(key)
        if entry is None:
            return None
        if now >= entry.expires_at:
            _cache.pop(key, None)
            return None
        return entry.value


def _remember(key: str, now: float, value: object) -> None:
    with _cache_lock:
        _cache[key] = _CacheEntry(expires_at=now + _CACHE_TTL_SECONDS, value=value)


def _copy_mutable(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


def _load_from_db(key: str) -> object:
    from django.apps import apps as django_apps

    if not django_apps.ready or not django_apps.is_installed("platform_settings"):
        return _MISSING

    from django.db.models import F, Q
    from django.utils import timezone

    DbSetting = django_apps.get_model("platform_settings", "DbSetting")
    row = (
        DbSetting.objects.filter(key=key)
        .filter(Q(effective_at__isnull=True) | Q(effective_at__lte=timezone.now()))
        .order_by(F("effective_at").desc(nulls_last=True), "-updated_at")
        .values_list("value_json", flat=True)
        .first()
    )
    return _MISSING if row is None else row


def get_setting(key: str, default: Any) -> Any:
    """
    Return the effective DbSetting value for key, or default.

    Rows with effective_at in the future are ignored; among the rest the latest
    effective_at wins, then the most recently updated row. Lookups (misses
    included) are cached in-process for a few seconds.
    """
    now_mono = time.monotonic()
    cached = _cached(key, now_mono)
    if cached is not None:
        return default if cached is _MISSING else _copy_mutable(cached)

    try:
        value = _load_from_db(key)
    except DatabaseError:
        logger.warning("settings_resolver: lookup failed for %s, using default", key, exc_info=True)
        value = _MISSING

    _remember(key, now_mono, value)
    return default if value is _MISSING else _copy_mutable(value)


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key, default)
    return value if type(value) is bool else default


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    return value if type(value) is int else default


def get_json(key: str, default: Any | None = None) -> Any:
    if default is None:
        default = {}
    value = get_setting(key, default)
    return value if isinstance(value, (dict, list)) else default
