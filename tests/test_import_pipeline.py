from __future__ import annotations

import sqlite3

import pytest
from conftest import OTHER_PLAYLIST_ID, PLAYLIST_ID, CuratorStack, video_id_for

from curator.errors import (
    ForbiddenError,
    InvalidIdentifierError,
    NoPublicVideosError,
    NotFoundError,
    TooManyRequestsError,
)
from curator.repositories.import_repository import ImportRepository
from curator.repositories.playlist_repository import NewPlaylistVideo, PlaylistRepository


def test_import_creates_playlist_videos_and_completed_job(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=10)

    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert outcome.videos_imported == 10
    assert outcome.total_videos == 10
    assert outcome.failures == []
    assert outcome.job.status == "completed"
    assert outcome.job.progress_percentage == 100
    assert outcome.job.playlist_id == outcome.playlist.id
    assert outcome.playlist.title == "Python Tutorial Series"
    assert outcome.playlist.video_count == 10
    assert outcome.playlist.youtube_id == PLAYLIST_ID

    videos = stack.playlist_repository.list_videos(outcome.playlist.id)
    assert [video.position for video in videos] == list(range(10))
    assert [video.youtube_video_id for video in videos] == [video_id_for(i) for i in range(10)]

    events = stack.analytics_repository.list_events(outcome.playlist.id)
    assert [event.event_type for event in events] == ["playlist_imported"]
    assert events[0].metadata["videos_imported"] == 10
    assert "import.completed" in stack.telemetry_sink.names()


def test_import_uses_custom_title_and_description(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=2)

    outcome = stack.import_pipeline.run(
        user_id="user-1",
        source=f"https://www.youtube.com/playlist?list={PLAYLIST_ID}",
        custom_title="  My course  ",
        custom_description="Weekend study plan",
    )

    assert outcome.playlist.title == "My course"
    assert outcome.playlist.original_description == "Weekend study plan"
    assert outcome.job.youtube_playlist_url == f"https://www.youtube.com/playlist?list={PLAYLIST_ID}"


def test_import_respects_max_videos(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=30)

    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID, max_videos=5)

    assert outcome.videos_imported == 5
    assert outcome.playlist.video_count == 5


def test_failed_video_insert_is_recorded_and_skipped(
    stack: CuratorStack,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=10)
    original_add_video = PlaylistRepository.add_video

    def flaky_add_video(
        self: PlaylistRepository,
        playlist_id: str,
        video: NewPlaylistVideo,
        **kwargs: object,
    ) -> object:
        if video.youtube_video_id == video_id_for(4):
            raise sqlite3.IntegrityError("CHECK constraint failed")
        return original_add_video(self, playlist_id, video, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(PlaylistRepository, "add_video", flaky_add_video)

    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert outcome.videos_imported == 9
    assert outcome.total_videos == 10
    assert [failure.video_id for failure in outcome.failures] == [video_id_for(4)]
    assert outcome.job.status == "completed"
    assert outcome.job.videos_imported == 9
    assert outcome.job.total_videos == 10
    positions = [video.position for video in stack.playlist_repository.list_videos(outcome.playlist.id)]
    assert positions == list(range(9))


def test_fetch_failure_marks_job_failed(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=2, private_indexes=(0, 1))

    with pytest.raises(NoPublicVideosError):
        stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    jobs = stack.import_pipeline.list_jobs("user-1")
    assert len(jobs) == 1
    assert jobs[0].status == "failed"
    assert jobs[0].error_message
    assert jobs[0].completed_at is not None
    assert stack.playlist_repository.list_playlists("user-1") == []
    failed = [attributes for name, attributes in stack.telemetry_sink.events if name == "import.failed"]
    assert failed[0]["error_kind"] == "no_public_videos"


def test_invalid_source_creates_no_job(stack: CuratorStack) -> None:
    with pytest.raises(InvalidIdentifierError):
        stack.import_pipeline.run(user_id="user-1", source="https://example.com/not-a-playlist")

    assert stack.import_pipeline.list_jobs("user-1") == []
    assert stack.youtube_client.calls == []


def test_daily_import_limit_follows_subscription_tier(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=1)
    stack.youtube_client.add_playlist(OTHER_PLAYLIST_ID, video_count=1)

    stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)
    stack.import_pipeline.run(user_id="user-1", source=OTHER_PLAYLIST_ID)

    with pytest.raises(TooManyRequestsError) as exc_info:
        stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)
    # Clock sits at noon UTC, so the budget frees up in twelve hours.
    assert exc_info.value.retry_after_seconds == 12 * 3_600
    assert len(stack.import_pipeline.list_jobs("user-1")) == 2

    stack.user_repository.upsert_user("user-1", subscription_tier="pro")
    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)
    assert outcome.job.status == "completed"


def test_daily_import_limit_resets_at_utc_midnight(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=1)
    stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)
    stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    stack.clock.advance(hours=12)

    assert stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID).videos_imported == 1


def test_get_job_checks_ownership(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=1)
    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert stack.import_pipeline.get_job(outcome.job.id, "user-1").id == outcome.job.id
    with pytest.raises(ForbiddenError):
        stack.import_pipeline.get_job(outcome.job.id, "user-2")
    with pytest.raises(NotFoundError):
        stack.import_pipeline.get_job("missing", "user-1")


def test_finalized_job_is_never_finalized_again(stack: CuratorStack) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=1)
    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert stack.import_repository.mark_failed(outcome.job.id, error_message="late failure") is False
    job = stack.import_repository.get_job(outcome.job.id)
    assert job is not None
    assert job.status == "completed"
    assert job.error_message is None


def test_unexpected_video_error_is_folded_into_failures(
    stack: CuratorStack,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=3)
    original_add_video = PlaylistRepository.add_video

    def broken_add_video(
        self: PlaylistRepository,
        playlist_id: str,
        video: NewPlaylistVideo,
        **kwargs: object,
    ) -> object:
        if video.youtube_video_id == video_id_for(1):
            raise RuntimeError("thumbnail url rejected")
        return original_add_video(self, playlist_id, video, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(PlaylistRepository, "add_video", broken_add_video)

    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert outcome.videos_imported == 2
    assert outcome.failures[0].error == "thumbnail url rejected"
    assert outcome.job.status == "completed"


def test_progress_write_failure_does_not_strand_the_job(
    stack: CuratorStack,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=12)

    def locked_update_progress(self: ImportRepository, job_id: str, **kwargs: object) -> None:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(ImportRepository, "update_progress", locked_update_progress)

    outcome = stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    assert outcome.videos_imported == 12
    assert [job.status for job in stack.import_pipeline.list_jobs("user-1")] == ["completed"]


def test_error_after_playlist_creation_marks_job_failed(
    stack: CuratorStack,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stack.youtube_client.add_playlist(PLAYLIST_ID, video_count=3)

    def locked_mark_completed(self: ImportRepository, job_id: str, **kwargs: object) -> bool:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(ImportRepository, "mark_completed", locked_mark_completed)

    with pytest.raises(sqlite3.OperationalError):
        stack.import_pipeline.run(user_id="user-1", source=PLAYLIST_ID)

    jobs = stack.import_pipeline.list_jobs("user-1")
    assert [job.status for job in jobs] == ["failed"]
    assert jobs[0].error_message == "database is locked"
    assert jobs[0].playlist_id is not None
    assert stack.playlist_repository.get_playlist(jobs[0].playlist_id) is not None
    assert "import.failed" in stack.telemetry_sink.names()
