from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

from curator.errors import (
    CuratorError,
    ForbiddenError,
    NotFoundError,
    PersistenceFailureError,
    TooManyRequestsError,
)
from curator.repositories.analytics_repository import AnalyticsRepository
from curator.repositories.common import Clock, utc_now
from curator.repositories.import_repository import ImportJob, ImportRepository
from curator.repositories.playlist_repository import PlaylistRecord, PlaylistRepository
from curator.repositories.user_repository import UserRepository
from curator.services.youtube_service import (
    PlaylistImport,
    PlaylistVideoEntry,
    YouTubeService,
    extract_playlist_id,
    sanitize_playlist_data,
    sanitize_video_data,
)
from curator.telemetry import TelemetryClient

LOGGER = logging.getLogger("playlist_curator.imports")

PROGRESS_EVERY = 10


@dataclass(frozen=True)
class ImportFailure:
    video_id: str
    error: str


@dataclass(frozen=True)
class ImportOutcome:
    job: ImportJob
    playlist: PlaylistRecord
    videos_imported: int
    total_videos: int
    failures: list[ImportFailure]


@dataclass
class _PersistFold:
    imported: int = 0
    failures: list[ImportFailure] = field(default_factory=list)


class ImportPipeline:
    """Runs one playlist import end to end.

    The job row exists (``pending``) before any network call. Any error after
    that finalizes it as ``failed`` and re-raises; once videos are fetched,
    each insert is independent and a bad video is recorded and skipped.
    """

    def __init__(
        self,
        *,
        youtube_service: YouTubeService,
        import_repository: ImportRepository,
        playlist_repository: PlaylistRepository,
        user_repository: UserRepository,
        analytics_repository: AnalyticsRepository,
        daily_limit_for_tier: Callable[[str], int],
        default_max_videos: int = 50,
        max_videos_limit: int = 500,
        telemetry: TelemetryClient | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._youtube_service = youtube_service
        self._import_repository = import_repository
        self._playlist_repository = playlist_repository
        self._user_repository = user_repository
        self._analytics_repository = analytics_repository
        self._daily_limit_for_tier = daily_limit_for_tier
        self._default_max_videos = max(1, default_max_videos)
        self._max_videos_limit = max(1, max_videos_limit)
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._clock = clock

    def run(
        self,
        *,
        user_id: str,
        source: str,
        max_videos: int | None = None,
        custom_title: str | None = None,
        custom_description: str | None = None,
    ) -> ImportOutcome:
        youtube_playlist_id = extract_playlist_id(source)
        self._enforce_daily_limit(user_id)
        limit = self._resolve_max_videos(max_videos)

        job = self._import_repository.create_job(
            user_id=user_id,
            youtube_playlist_id=youtube_playlist_id,
            source_url=source.strip(),
        )
        LOGGER.info(
            "import started job_id=%s user_id=%s playlist_id=%s max_videos=%s",
            job.id,
            user_id,
            youtube_playlist_id,
            limit,
        )

        playlist: PlaylistRecord | None = None
        try:
            fetched = self._youtube_service.import_playlist(youtube_playlist_id, limit)
            try:
                playlist = self._create_playlist(user_id, fetched, custom_title, custom_description)
            except sqlite3.Error as exc:
                raise PersistenceFailureError("Failed to store imported playlist.") from exc

            fold = self._persist_videos(job.id, playlist.id, fetched.videos, fetched.total_found)
            self._import_repository.mark_completed(
                job.id,
                playlist_id=playlist.id,
                videos_imported=fold.imported,
                total_videos=fetched.total_found,
            )
        except Exception as exc:
            self._fail_job(job.id, exc, playlist.id if playlist is not None else None)
            raise

        LOGGER.info(
            "import completed job_id=%s playlist_id=%s imported=%s total=%s failed=%s",
            job.id,
            playlist.id,
            fold.imported,
            fetched.total_found,
            len(fold.failures),
        )
        self._telemetry.emit(
            "import.completed",
            job_id=job.id,
            videos_imported_count=fold.imported,
            videos_failed_count=len(fold.failures),
        )
        self._record_event(user_id, playlist.id, job.id, fold, fetched.total_found)

        final_job = self._import_repository.get_job(job.id) or job
        stored_playlist = self._playlist_repository.get_playlist(playlist.id) or playlist
        return ImportOutcome(
            job=final_job,
            playlist=stored_playlist,
            videos_imported=fold.imported,
            total_videos=fetched.total_found,
            failures=fold.failures,
        )

    def get_job(self, import_id: str, user_id: str) -> ImportJob:
        job = self._import_repository.get_job(import_id)
        if job is None:
            raise NotFoundError(f"Import {import_id} not found.")
        if job.user_id != user_id:
            raise ForbiddenError("Import belongs to another user.")
        return job

    def list_jobs(self, user_id: str, limit: int = 20) -> list[ImportJob]:
        return self._import_repository.list_jobs(user_id, limit=max(1, min(100, limit)))

    def _enforce_daily_limit(self, user_id: str) -> None:
        tier = self._user_repository.subscription_tier(user_id)
        daily_limit = self._daily_limit_for_tier(tier)
        now = self._clock()
        day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        started_today = self._import_repository.count_started_since(user_id, day_start)
        if started_today < daily_limit:
            return
        retry_after = int((day_start + timedelta(days=1) - now).total_seconds())
        raise TooManyRequestsError(
            f"Daily import limit reached ({started_today}/{daily_limit} for the {tier} tier).",
            retry_after_seconds=retry_after,
        )

    def _resolve_max_videos(self, max_videos: int | None) -> int:
        if max_videos is None:
            return min(self._default_max_videos, self._max_videos_limit)
        return max(1, min(max_videos, self._max_videos_limit))

    def _create_playlist(
        self,
        user_id: str,
        fetched: PlaylistImport,
        custom_title: str | None,
        custom_description: str | None,
    ) -> PlaylistRecord:
        sanitized = sanitize_playlist_data(fetched.playlist)
        title = (custom_title or "").strip() or sanitized.title or fetched.playlist.playlist_id
        description = (custom_description or "").strip() or sanitized.description
        return self._playlist_repository.create_playlist(
            user_id=user_id,
            youtube_id=fetched.playlist.playlist_id,
            title=title,
            original_description=description or None,
            channel_title=sanitized.channel_title or None,
            thumbnail_url=sanitized.thumbnail_url,
        )

    def _persist_videos(
        self,
        job_id: str,
        playlist_id: str,
        videos: list[PlaylistVideoEntry],
        total_videos: int,
    ) -> _PersistFold:
        fold = _PersistFold()
        ordered = sorted(videos, key=lambda video: video.position)
        for index, video in enumerate(ordered, start=1):
            try:
                self._playlist_repository.add_video(playlist_id, sanitize_video_data(video))
            except Exception as exc:
                fold.failures.append(ImportFailure(video_id=video.video_id, error=str(exc)))
                LOGGER.warning(
                    "import video_skipped job_id=%s video_id=%s error=%s",
                    job_id,
                    video.video_id,
                    exc,
                )
            else:
                fold.imported += 1

            if index % PROGRESS_EVERY == 0:
                try:
                    self._import_repository.update_progress(
                        job_id,
                        videos_imported=fold.imported,
                        total_videos=total_videos,
                    )
                except sqlite3.Error:
                    LOGGER.warning("import progress_failed job_id=%s", job_id, exc_info=True)
        return fold

    def _fail_job(self, job_id: str, exc: Exception, playlist_id: str | None) -> None:
        message = exc.message if isinstance(exc, CuratorError) else str(exc)
        try:
            self._import_repository.mark_failed(job_id, error_message=message, playlist_id=playlist_id)
        except sqlite3.Error:
            LOGGER.error("import finalize_failed job_id=%s", job_id, exc_info=True)
        LOGGER.warning("import failed job_id=%s error=%s", job_id, message)
        self._telemetry.emit(
            "import.failed",
            job_id=job_id,
            error_kind=getattr(exc, "kind", type(exc).__name__),
        )

    def _record_event(
        self,
        user_id: str,
        playlist_id: str,
        job_id: str,
        fold: _PersistFold,
        total_videos: int,
    ) -> None:
        try:
            self._analytics_repository.record_event(
                user_id=user_id,
                playlist_id=playlist_id,
                event_type="playlist_imported",
                metadata={
                    "import_id": job_id,
                    "videos_imported": fold.imported,
                    "total_videos": total_videos,
                    "failed_videos": [failure.video_id for failure in fold.failures],
                },
            )
        except sqlite3.Error:
            LOGGER.warning("import analytics_failed job_id=%s", job_id, exc_info=True)
