from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any

from curator.errors import (
    CuratorError,
    ForbiddenError,
    NotFoundError,
    PersistenceFailureError,
    TooManyRequestsError,
    UpstreamFailureError,
)
from curator.repositories.analytics_repository import AnalyticsRepository
from curator.repositories.common import Clock, utc_now
from curator.repositories.enhancement_repository import (
    ENHANCEMENT_STATUS_COMPLETED,
    EnhancementOutcome,
    EnhancementRecord,
    EnhancementRepository,
)
from curator.repositories.playlist_repository import PlaylistRecord, PlaylistRepository
from curator.repositories.preferences_repository import AIPreferences, PreferencesRepository
from curator.services.ai_client import (
    ChatCompletion,
    DescriptionOptions,
    OpenAIClient,
    PlaylistContext,
    VideoContext,
    build_description_prompt,
    sanitize_enhanced_content,
)
from curator.telemetry import TelemetryClient

LOGGER = logging.getLogger("playlist_curator.enhancement")

DESCRIPTION_ENHANCEMENT = "description"


@dataclass(frozen=True)
class EnhancementResult:
    enhancement: EnhancementRecord
    playlist: PlaylistRecord


@dataclass(frozen=True)
class ModelUsage:
    model_name: str
    requests_count: int
    tokens_used: int
    cost_usd: float


@dataclass(frozen=True)
class UsageSummary:
    days: int
    requests_count: int
    tokens_used: int
    cost_usd: float
    success_count: int
    error_count: int
    by_model: list[ModelUsage] = field(default_factory=list)


class EnhancementService:
    def __init__(
        self,
        *,
        playlist_repository: PlaylistRepository,
        enhancement_repository: EnhancementRepository,
        preferences_repository: PreferencesRepository,
        analytics_repository: AnalyticsRepository,
        ai_client: OpenAIClient | None,
        cooldown_seconds: int = 3_600,
        min_length: int = 10,
        max_length: int = 2_000,
        context_video_limit: int = 20,
        telemetry: TelemetryClient | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._playlist_repository = playlist_repository
        self._enhancement_repository = enhancement_repository
        self._preferences_repository = preferences_repository
        self._analytics_repository = analytics_repository
        self._ai_client = ai_client
        self._cooldown_seconds = max(0, cooldown_seconds)
        self._min_length = max(1, min_length)
        self._max_length = max(self._min_length, max_length)
        self._context_video_limit = max(0, context_video_limit)
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._clock = clock

    def enhance_description(self, playlist_id: str, user_id: str) -> EnhancementResult:
        """Generate and store an AI description for one playlist.

        Checks ownership, then the cooldown. The history record is written in
        ``processing`` before the model is called; it ends ``completed`` (and
        the playlist is updated) or ``failed`` (and the playlist is untouched).
        """
        playlist = self._owned_playlist(playlist_id, user_id)
        self._enforce_cooldown(playlist_id, DESCRIPTION_ENHANCEMENT)
        ai_client = self._require_ai_client()

        videos = self._playlist_repository.list_videos(playlist_id, limit=self._context_video_limit)
        preferences = self._preferences_repository.get_or_create(user_id)
        model = preferences.preferred_ai_model or ai_client.default_model
        context = PlaylistContext(
            title=playlist.title,
            original_description=playlist.original_description,
            video_count=playlist.video_count,
            videos=[
                VideoContext(
                    title=video.title,
                    description=video.description,
                    duration=video.duration,
                    channel_name=video.channel_name,
                )
                for video in videos
            ],
        )
        options = _description_options(preferences)
        prompt = build_description_prompt(context, options)

        record = self._enhancement_repository.create_processing(
            playlist_id=playlist_id,
            user_id=user_id,
            enhancement_type=DESCRIPTION_ENHANCEMENT,
            original_content=playlist.original_description,
            prompt_used=prompt,
            ai_model=model,
        )
        LOGGER.info(
            "enhancement started id=%s playlist_id=%s model=%s", record.id, playlist_id, model
        )

        started = time.monotonic()
        completion: ChatCompletion | None = None
        try:
            completion = ai_client.enhance_playlist_description(
                prompt,
                target_length=options.max_length,
                model=model,
            )
            content = sanitize_enhanced_content(
                completion.content,
                max_length=self._max_length,
                min_length=self._min_length,
            )
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            message = exc.message if isinstance(exc, CuratorError) else str(exc)
            self._enhancement_repository.mark_failed(
                record,
                error_message=message,
                processing_time_ms=elapsed_ms,
                input_tokens=completion.input_tokens if completion else 0,
                output_tokens=completion.output_tokens if completion else 0,
                tokens_used=completion.total_tokens if completion else 0,
                cost_usd=completion.cost_usd if completion else 0.0,
            )
            LOGGER.warning("enhancement failed id=%s error=%s", record.id, message)
            self._telemetry.emit(
                "enhancement.failed",
                enhancement_id=record.id,
                error_kind=getattr(exc, "kind", type(exc).__name__),
            )
            raise

        outcome = EnhancementOutcome(
            enhanced_content=content,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            tokens_used=completion.total_tokens,
            cost_usd=completion.cost_usd,
            processing_time_ms=completion.processing_time_ms,
        )
        try:
            completed = self._enhancement_repository.mark_completed(record, outcome)
        except sqlite3.Error as exc:
            raise PersistenceFailureError("Failed to store the enhancement result.") from exc

        LOGGER.info(
            "enhancement completed id=%s playlist_id=%s tokens=%s cost_usd=%.6f",
            record.id,
            playlist_id,
            outcome.tokens_used,
            outcome.cost_usd,
        )
        self._telemetry.emit(
            "enhancement.completed",
            enhancement_id=record.id,
            model=model,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            processing_time_ms=outcome.processing_time_ms,
        )
        self._record_event(
            user_id,
            playlist_id,
            "playlist_enhanced",
            {"enhancement_id": record.id, "model": model, "tokens_used": outcome.tokens_used},
        )

        updated_playlist = self._playlist_repository.get_playlist(playlist_id) or playlist
        return EnhancementResult(enhancement=completed, playlist=updated_playlist)

    def list_history(self, playlist_id: str, user_id: str, limit: int = 20) -> list[EnhancementRecord]:
        self._owned_playlist(playlist_id, user_id)
        return self._enhancement_repository.list_for_playlist(playlist_id, limit=max(1, min(100, limit)))

    def revert(self, enhancement_id: str, user_id: str) -> PlaylistRecord:
        record = self._owned_enhancement(enhancement_id, user_id)
        if record.status != ENHANCEMENT_STATUS_COMPLETED:
            raise ValueError(f"only completed enhancements can be reverted (status: {record.status})")
        if not self._enhancement_repository.mark_reverted(record):
            raise ValueError("enhancement was already reverted")
        self._record_event(
            user_id, record.playlist_id, "enhancement_reverted", {"enhancement_id": record.id}
        )
        playlist = self._playlist_repository.get_playlist(record.playlist_id)
        if playlist is None:
            raise NotFoundError(f"Playlist {record.playlist_id} not found.")
        return playlist

    def rate(self, enhancement_id: str, user_id: str, rating: int) -> EnhancementRecord:
        if rating < 1 or rating > 5:
            raise ValueError("rating must be between 1 and 5")
        record = self._owned_enhancement(enhancement_id, user_id)
        self._enhancement_repository.set_rating(record.id, rating)
        return self._enhancement_repository.get(record.id) or record

    def usage_summary(self, user_id: str, days: int = 30) -> UsageSummary:
        window = max(1, min(365, days))
        rows = self._enhancement_repository.usage_for_user(user_id, days=window)
        by_model: dict[str, ModelUsage] = {}
        for row in rows:
            previous = by_model.get(row.model_name)
            by_model[row.model_name] = ModelUsage(
                model_name=row.model_name,
                requests_count=row.requests_count + (previous.requests_count if previous else 0),
                tokens_used=row.tokens_used + (previous.tokens_used if previous else 0),
                cost_usd=row.cost_usd + (previous.cost_usd if previous else 0.0),
            )
        return UsageSummary(
            days=window,
            requests_count=sum(row.requests_count for row in rows),
            tokens_used=sum(row.tokens_used for row in rows),
            cost_usd=sum(row.cost_usd for row in rows),
            success_count=sum(row.success_count for row in rows),
            error_count=sum(row.error_count for row in rows),
            by_model=sorted(by_model.values(), key=lambda usage: usage.model_name),
        )

    def get_preferences(self, user_id: str) -> AIPreferences:
        return self._preferences_repository.get_or_create(user_id)

    def update_preferences(self, user_id: str, changes: dict[str, Any]) -> AIPreferences:
        return self._preferences_repository.update(user_id, changes)

    def _owned_playlist(self, playlist_id: str, user_id: str) -> PlaylistRecord:
        playlist = self._playlist_repository.get_playlist(playlist_id)
        if playlist is None:
            raise NotFoundError(f"Playlist {playlist_id} not found.")
        if playlist.user_id != user_id:
            raise ForbiddenError("Playlist belongs to another user.")
        return playlist

    def _owned_enhancement(self, enhancement_id: str, user_id: str) -> EnhancementRecord:
        record = self._enhancement_repository.get(enhancement_id)
        if record is None:
            raise NotFoundError(f"Enhancement {enhancement_id} not found.")
        if record.user_id != user_id:
            raise ForbiddenError("Enhancement belongs to another user.")
        return record

    def _enforce_cooldown(self, playlist_id: str, enhancement_type: str) -> None:
        last_completed = self._enhancement_repository.last_completed_at(playlist_id, enhancement_type)
        if last_completed is None:
            return
        elapsed = (self._clock() - last_completed).total_seconds()
        if elapsed >= self._cooldown_seconds:
            return
        remaining = int(self._cooldown_seconds - elapsed)
        raise TooManyRequestsError(
            f"Playlist was enhanced recently; try again in {max(1, remaining // 60)} minute(s).",
            retry_after_seconds=remaining,
        )

    def _require_ai_client(self) -> OpenAIClient:
        if self._ai_client is None:
            raise UpstreamFailureError(
                "AI enhancement is not configured (set PLAYLIST_CURATOR_OPENAI_API_KEY)."
            )
        return self._ai_client

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
                "enhancement analytics_failed playlist_id=%s event=%s",
                playlist_id,
                event_type,
                exc_info=True,
            )


def _description_options(preferences: AIPreferences) -> DescriptionOptions:
    return DescriptionOptions(
        style=preferences.enhancement_style,
        include_keywords=preferences.include_keywords,
        include_learning_objectives=preferences.include_learning_objectives,
        include_target_audience=preferences.include_target_audience,
        include_difficulty_assessment=preferences.include_difficulty_assessment,
        content_level=preferences.content_level,
        language=preferences.language_preference,
        max_length=preferences.max_description_length,
        custom_prompt_additions=preferences.custom_prompt_additions,
    )
