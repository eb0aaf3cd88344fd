from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from typing import Any

from curator.repositories.youtube_cache_repository import YouTubeCacheRepository
from curator.services.quota_ledger import QuotaLedger

LOGGER = logging.getLogger("playlist_curator.cache")


def build_cache_key(endpoint: str, params: Mapping[str, object]) -> str:
    """Deterministic key for a logical upstream request.

    Parameters are sorted by name and ``None`` values dropped, so the same
    logical request maps to the same key regardless of argument order.
    """
    parts = [
        f"{name}={_render_param(value)}"
        for name, value in sorted(params.items())
        if value is not None
    ]
    return f"{endpoint}:{'&'.join(parts)}"


def _render_param(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


class CachedFetcher:
    """Cache check, quota reservation, upstream call, cache write.

    Every upstream call site goes through :meth:`fetch`. A failed quota
    reservation raises before the network call and never falls back to stale
    data; a failed upstream call is not cached; cache read/write problems are
    logged and never fail the caller.
    """

    def __init__(
        self,
        *,
        cache_repository: YouTubeCacheRepository,
        quota_ledger: QuotaLedger,
        api_name: str,
    ) -> None:
        self._cache_repository = cache_repository
        self._quota_ledger = quota_ledger
        self._api_name = api_name

    def fetch(
        self,
        cache_key: str,
        cache_type: str,
        ttl_seconds: int,
        fetch_fn: Callable[[], Any],
        *,
        quota_cost: int = 1,
    ) -> Any:
        cached = self._read_cache(cache_key)
        if cached is not None:
            LOGGER.debug("upstream cache_hit key=%s type=%s", cache_key, cache_type)
            return cached

        self._quota_ledger.reserve(self._api_name, quota_cost)
        payload = fetch_fn()

        try:
            self._cache_repository.put(
                cache_key=cache_key,
                cache_type=cache_type,
                payload=payload,
                ttl_seconds=ttl_seconds,
            )
        except (sqlite3.Error, TypeError, ValueError):
            LOGGER.warning(
                "upstream cache_store_failed key=%s type=%s",
                cache_key,
                cache_type,
                exc_info=True,
            )
        else:
            LOGGER.debug(
                "upstream cache_store key=%s type=%s ttl=%s", cache_key, cache_type, ttl_seconds
            )
        return payload

    def sweep(self) -> int:
        removed = self._cache_repository.sweep()
        LOGGER.info("upstream cache_sweep removed=%s", removed)
        return removed

    def _read_cache(self, cache_key: str) -> Any | None:
        try:
            cached = self._cache_repository.get(cache_key)
        except sqlite3.Error:
            LOGGER.warning("upstream cache_read_failed key=%s", cache_key, exc_info=True)
            return None
        if cached is None:
            return None
        return cached.payload
