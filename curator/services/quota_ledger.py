from __future__ import annotations

import logging
from dataclasses import replace

from curator.errors import QuotaExceededError
from curator.repositories.youtube_quota_repository import (
    QuotaReservation,
    QuotaUsage,
    YouTubeQuotaRepository,
)

LOGGER = logging.getLogger("playlist_curator.quota")

YOUTUBE_API_NAME = "youtube_data_v3"

# Units charged by the YouTube Data API per call type.
YOUTUBE_QUOTA_COSTS: dict[str, int] = {
    "playlists": 1,
    "playlistItems": 1,
    "videos": 1,
    "channels": 1,
    "search": 100,
}


class QuotaLedger:
    def __init__(self, repository: YouTubeQuotaRepository, *, daily_limit: int) -> None:
        self._repository = repository
        self._daily_limit = max(0, daily_limit)

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def reserve(self, api_name: str, unit_cost: int) -> QuotaReservation:
        reservation = self._repository.try_reserve(
            api_name=api_name,
            unit_cost=unit_cost,
            daily_limit=self._daily_limit,
        )
        if not reservation.allowed:
            LOGGER.warning(
                "quota reservation_rejected api=%s cost=%s used=%s limit=%s",
                api_name,
                reservation.unit_cost,
                reservation.units_used_today,
                self._daily_limit,
            )
            raise QuotaExceededError(
                f"Daily {api_name} quota exceeded "
                f"({reservation.units_used_today}/{self._daily_limit} units used); "
                "retry on the next UTC day.",
                api_name=api_name,
                units_used=reservation.units_used_today,
                daily_limit=self._daily_limit,
            )
        return reservation

    def usage(self, api_name: str) -> QuotaUsage:
        return self._repository.usage(api_name=api_name, daily_limit=self._daily_limit)

    def history(self, api_name: str, days: int = 7) -> list[QuotaUsage]:
        return [
            replace(day, daily_limit=self._daily_limit)
            for day in self._repository.history(api_name=api_name, days=days)
        ]
