"""Short-lived cache for dashboard aggregates."""
from __future__ import annotations

from typing import Any, Callable

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

BED_SUMMARY_KEY = 'flow:beds:summary'
WARDS_KEY = 'flow:wards'
DEPARTMENTS_KEY = 'flow:departments'

AGGREGATE_KEYS = (BED_SUMMARY_KEY, WARDS_KEY, DEPARTMENTS_KEY)


def cached_aggregate(key: str, build: Callable[[], Any]) -> Any:
    ttl = settings.FLOW_AGGREGATE_CACHE_SECONDS
    if ttl <= 0:
        return build()
    data = cache.get(key)
    if data is None:
        data = build()
        cache.set(key, data, ttl)
    return data


def invalidate_aggregates() -> None:
    """Drop cached aggregates once the surrounding transaction commits."""
    transaction.on_commit(lambda: cache.delete_many(AGGREGATE_KEYS))
