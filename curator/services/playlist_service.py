from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from curator.errors import ForbiddenError, NotFoundError
from curator.repositories.analytics_repository import ActivityCount, AnalyticsEvent, AnalyticsRepository
from curator.repositories.common import Clock, utc_now
from curator.repositories.playlist_repository import (
    PlaylistRecord,
    PlaylistRepository,
    PlaylistStats,
    PlaylistVideoRecord,
)
from curator.repositories.user_repository import UserRepository
from curator.services.ai_client import VideoContext
from curator.services.content_analysis import ComprehensiveAnalysis, ContentAnalysisEngine
from curator.services.youtube_service import (
    YouTubeService,
    extract_video_id,
    sanitize_video_data,
    video_entry_from_details,
)

LOGGER = logging.getLogger("playlist_curator.playlists")

RECENT_ACTIVITY_DAYS = 7


@dataclass(frozen=True)
class PlaylistAnalytics:
    playlist_id: str
    days: int
    activity: list[ActivityCount] = field(default_factory=list)
    recent_events: list[AnalyticsEvent] = field(default_factory=list)


@dataclass(frozen=True)
class UserStats:
    total_playlists: int
    enhanced_count: int
    total_videos: int
    recent_activity: list[ActivityCount] = field(default_factory=list)


class PlaylistService:
    """Owner-scoped playlist reads and edits.

    Every operation resolves the playlist first: a missing playlist is
    ``not_found`` and a playlist owned by someone else is ``forbidden``.
    Edits that change the video set drop the cached content analysis.
    """

    def __init__(
        self,
        *,
        playlist_repository: PlaylistRepository,
        analytics_repository: AnalyticsRepository,
        user_repository: UserRepository,
        youtube_service: YouTubeService,
        analysis_engine: ContentAnalysisEngine,
        playlist_limit_for_tier: Callable[[str], int],
        clock: Clock = utc_now,
    ) -> None:
        self._playlist_repository = playlist_repository
        self._analytics_repository = analytics_repository
        self._user_repository = user_repository
        self._youtube_service = youtube_service
        self._analysis_engine = analysis_engine
        self._playlist_limit_for_tier = playlist_limit_for_tier
        self._clock = clock

    def list_playlists(self, user_id: str) -> list[PlaylistRecord]:
        return self._playlist_repository.list_playlists(user_id)

    def get_playlist(self, playlist_id: str, user_id: str) -> tuple[PlaylistRecord, list[PlaylistVideoRecord]]:
        playlist = self._owned_playlist(playlist_id, user_id)
        return playlist, self._playlist_repository.list_videos(playlist_id)

    def create_playlist(self, user_id: str, title: str, description: str | None = None) -> PlaylistRecord:
        tier = self._user_repository.subscription_tier(user_id)
        limit = self._playlist_limit_for_tier(tier)
        if self._playlist_repository.count_playlists(user_id) >= limit:
            raise ForbiddenError(f"Playlist limit reached for the {tier} tier ({limit}).")

        playlist = self._playlist_repository.create_playlist(
            user_id=user_id,
            title=title,
            original_description=description or None,
        )
        self._record_event(user_id, playlist.id, "playlist_created", {"source": "manual"})
        return playlist

    def update_playlist(
        self,
        playlist_id: str,
        user_id: str,
        changes: dict[str, str | None],
    ) -> PlaylistRecord:
        """Apply ``title`` and/or ``description`` changes; a ``None`` description clears it."""
        self._owned_playlist(playlist_id, user_id)
        unknown = set(changes) - {"title", "description"}
        if unknown:
            raise ValueError(f"unknown playlist fields: {', '.join(sorted(unknown))}")
        if "title" in changes and not changes["title"]:
            raise ValueError("title cannot be empty")

        updated = self._playlist_repository.update_playlist(
            playlist_id,
            title=changes.get("title"),
            original_description=changes.get("description"),
            clear_description="description" in changes and not changes["description"],
        )
        if updated is None:
            raise NotFoundError(f"Playlist {playlist_id} not found.")
        self._record_event(user_id, playlist_id, "playlist_updated", {"fields": sorted(changes)})
        return updated

    def delete_playlist(self, playlist_id: str, user_id: str) -> None:
        playlist = self._owned_playlist(playlist_id, user_id)
        if not self._playlist_repository.delete_playlist(playlist_id):
            raise NotFoundError(f"Playlist {playlist_id} not found.")
        LOGGER.info("playlist deleted playlist_id=%s videos=%s", playlist_id, playlist.video_count)
        self._record_event(
            user_id,
            playlist_id,
            "playlist_deleted",
            {"video_count": playlist.video_count},
        )

    def add_video(
        self,
        playlist_id: str,
        user_id: str,
        source: str,
        position: int | None = None,
    ) -> PlaylistVideoRecord:
        self._owned_playlist(playlist_id, user_id)
        video_id = extract_video_id(source)
        details = self._youtube_service.get_video_details([video_id])
        if not details:
            raise NotFoundError(f"Video {video_id} not found.")

        entry = video_entry_from_details(details[0])
        try:
            added = self._playlist_repository.add_video(
                playlist_id,
                sanitize_video_data(entry),
                position=position,
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"video {video_id} is already in the playlist") from exc

        self._analysis_engine.invalidate(playlist_id)
        self._record_event(
            user_id,
            playlist_id,
            "video_added",
            {"video_id": video_id, "position": added.position},
        )
        return added

    def remove_video(self, playlist_id: str, user_id: str, video_id: str) -> None:
        self._owned_playlist(playlist_id, user_id)
        if not self._playlist_repository.remove_video(playlist_id, video_id):
            raise NotFoundError(f"Video {video_id} not found in playlist.")
        self._analysis_engine.invalidate(playlist_id)
        self._record_event(user_id, playlist_id, "video_removed", {"video_id": video_id})

    def move_video(self, playlist_id: str, user_id: str, video_id: str, new_position: int) -> None:
        self._owned_playlist(playlist_id, user_id)
        if not self._playlist_repository.move_video(playlist_id, video_id, new_position):
            raise NotFoundError(f"Video {video_id} not found in playlist.")
        self._record_event(
            user_id,
            playlist_id,
            "video_position_updated",
            {"video_id": video_id, "new_position": new_position},
        )

    def reorder_videos(self, playlist_id: str, user_id: str, ordered_video_ids: list[str]) -> None:
        self._owned_playlist(playlist_id, user_id)
        self._playlist_repository.reorder_videos(playlist_id, ordered_video_ids)
        self._record_event(
            user_id,
            playlist_id,
            "videos_reordered",
            {"video_count": len(ordered_video_ids)},
        )

    def analyze(self, playlist_id: str, user_id: str) -> ComprehensiveAnalysis:
        self._owned_playlist(playlist_id, user_id)
        videos = self._playlist_repository.list_videos(playlist_id)
        return self._analysis_engine.comprehensive(playlist_id, [_video_context(video) for video in videos])

    def playlist_analytics(self, playlist_id: str, user_id: str, days: int = 30) -> PlaylistAnalytics:
        self._owned_playlist(playlist_id, user_id)
        window = max(1, min(365, days))
        since = self._clock() - timedelta(days=window)
        return PlaylistAnalytics(
            playlist_id=playlist_id,
            days=window,
            activity=self._analytics_repository.activity_counts(since=since, playlist_id=playlist_id),
            recent_events=self._analytics_repository.list_events(playlist_id, limit=20),
        )

    def user_stats(self, user_id: str) -> UserStats:
        stats: PlaylistStats = self._playlist_repository.stats_for_user(user_id)
        since = self._clock() - timedelta(days=RECENT_ACTIVITY_DAYS)
        return UserStats(
            total_playlists=stats.total_playlists,
            enhanced_count=stats.enhanced_count,
            total_videos=stats.total_videos,
            recent_activity=self._analytics_repository.activity_counts(since=since, user_id=user_id),
        )

    def _owned_playlist(self, playlist_id: str, user_id: str) -> PlaylistRecord:
        playlist = self._playlist_repository.get_playlist(playlist_id)
        if playlist is None:
            raise NotFoundError(f"Playlist {playlist_id} not found.")
        if playlist.user_id != user_id:
            raise ForbiddenError("Playlist belongs to another user.")
        return playlist

    def _record_event(
        self,
        user_id: str,
        playlist_id: str,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        try:
            self._analytics_repository.record_event(
                user_id=user_id,
                playlist_id=playlist_id,
                event_type=event_type,
                metadata=metadata,
            )
        except sqlite3.Error:
            LOGGER.warning(
                "playlist analytics_failed playlist_id=%s event=%s",
                playlist_id,
                event_type,
                exc_info=True,
            )


def _video_context(video: PlaylistVideoRecord) -> VideoContext:
    return VideoContext(
        title=video.title,
        description=video.description,
        duration=video.duration,
        channel_name=video.channel_name,
    )
