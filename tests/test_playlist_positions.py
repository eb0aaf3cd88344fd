from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import CuratorStack, make_video_item, video_id_for

from curator.errors import ForbiddenError, InvalidIdentifierError, NotFoundError
from curator.repositories.playlist_repository import NewPlaylistVideo, PlaylistRecord
from curator.services.ai_client import VideoContext


def _new_video(video_id: str, title: str | None = None) -> NewPlaylistVideo:
    return NewPlaylistVideo(
        youtube_video_id=video_id,
        title=title or f"Video {video_id}",
        description="",
        channel_name="Channel",
        channel_id="UC1",
        duration="3:00",
        thumbnail_url=None,
        published_at=None,
        view_count=0,
        like_count=0,
    )


def _seed(stack: CuratorStack, count: int, *, user_id: str = "user-1") -> PlaylistRecord:
    playlist = stack.playlist_repository.create_playlist(user_id=user_id, title="Seeded")
    for index in range(count):
        stack.playlist_repository.add_video(playlist.id, _new_video(video_id_for(index)))
    return playlist


def _order(stack: CuratorStack, playlist_id: str) -> list[str]:
    videos = stack.playlist_repository.list_videos(playlist_id)
    assert [video.position for video in videos] == list(range(len(videos)))
    return [video.youtube_video_id for video in videos]


def test_added_videos_are_appended_with_dense_positions(stack: CuratorStack) -> None:
    playlist = _seed(stack, 3)

    assert _order(stack, playlist.id) == [video_id_for(0), video_id_for(1), video_id_for(2)]
    stored = stack.playlist_repository.get_playlist(playlist.id)
    assert stored is not None and stored.video_count == 3


def test_insert_at_position_shifts_later_videos(stack: CuratorStack) -> None:
    playlist = _seed(stack, 3)

    added = stack.playlist_repository.add_video(playlist.id, _new_video("inserted000"), position=1)

    assert added.position == 1
    assert _order(stack, playlist.id) == [video_id_for(0), "inserted000", video_id_for(1), video_id_for(2)]


def test_duplicate_video_is_rejected(stack: CuratorStack) -> None:
    playlist = _seed(stack, 1)

    with pytest.raises(sqlite3.IntegrityError):
        stack.playlist_repository.add_video(playlist.id, _new_video(video_id_for(0)))
    assert _order(stack, playlist.id) == [video_id_for(0)]


def test_remove_closes_the_gap(stack: CuratorStack) -> None:
    playlist = _seed(stack, 4)

    assert stack.playlist_repository.remove_video(playlist.id, video_id_for(1)) is True
    assert stack.playlist_repository.remove_video(playlist.id, "missing0000") is False

    assert _order(stack, playlist.id) == [video_id_for(0), video_id_for(2), video_id_for(3)]
    stored = stack.playlist_repository.get_playlist(playlist.id)
    assert stored is not None and stored.video_count == 3


@pytest.mark.parametrize(
    ("video_index", "new_position", "expected"),
    [
        (0, 3, [1, 2, 3, 0, 4]),
        (4, 1, [0, 4, 1, 2, 3]),
        (2, 2, [0, 1, 2, 3, 4]),
    ],
)
def test_move_shifts_only_the_videos_in_between(
    stack: CuratorStack,
    video_index: int,
    new_position: int,
    expected: list[int],
) -> None:
    playlist = _seed(stack, 5)

    assert stack.playlist_repository.move_video(playlist.id, video_id_for(video_index), new_position)

    assert _order(stack, playlist.id) == [video_id_for(index) for index in expected]


def test_move_out_of_range_is_rejected(stack: CuratorStack) -> None:
    playlist = _seed(stack, 3)

    with pytest.raises(ValueError):
        stack.playlist_repository.move_video(playlist.id, video_id_for(0), 3)
    with pytest.raises(ValueError):
        stack.playlist_repository.move_video(playlist.id, video_id_for(0), -1)
    assert stack.playlist_repository.move_video(playlist.id, "missing0000", 0) is False


def test_reorder_writes_the_given_permutation(stack: CuratorStack) -> None:
    playlist = _seed(stack, 3)
    wanted = [video_id_for(2), video_id_for(0), video_id_for(1)]

    stack.playlist_repository.reorder_videos(playlist.id, wanted)

    assert _order(stack, playlist.id) == wanted


@pytest.mark.parametrize(
    "ordered",
    [
        [video_id_for(0), video_id_for(1)],
        [video_id_for(0), video_id_for(1), video_id_for(1)],
        [video_id_for(0), video_id_for(1), "stranger000"],
    ],
)
def test_reorder_rejects_anything_but_a_permutation(stack: CuratorStack, ordered: list[str]) -> None:
    playlist = _seed(stack, 3)

    with pytest.raises(ValueError):
        stack.playlist_repository.reorder_videos(playlist.id, ordered)

    assert _order(stack, playlist.id) == [video_id_for(0), video_id_for(1), video_id_for(2)]


def test_concurrent_moves_keep_positions_dense(stack: CuratorStack) -> None:
    playlist = _seed(stack, 8)

    def shuffle(step: int) -> None:
        stack.playlist_repository.move_video(playlist.id, video_id_for(step % 8), (step * 3) % 8)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(shuffle, range(24)))

    assert sorted(_order(stack, playlist.id)) == [video_id_for(index) for index in range(8)]


def test_service_checks_ownership_before_anything_else(stack: CuratorStack) -> None:
    playlist = _seed(stack, 2)

    with pytest.raises(NotFoundError):
        stack.playlist_service.get_playlist("missing", "user-1")
    with pytest.raises(ForbiddenError):
        stack.playlist_service.get_playlist(playlist.id, "user-2")
    with pytest.raises(ForbiddenError):
        stack.playlist_service.remove_video(playlist.id, "user-2", video_id_for(0))
    with pytest.raises(ForbiddenError):
        stack.playlist_service.reorder_videos(playlist.id, "user-2", [video_id_for(1), video_id_for(0)])
    assert _order(stack, playlist.id) == [video_id_for(0), video_id_for(1)]


def test_service_add_video_fetches_details(stack: CuratorStack) -> None:
    playlist = _seed(stack, 2)
    stack.youtube_client.videos_by_id["dQw4w9WgXcQ"] = make_video_item("dQw4w9WgXcQ")

    added = stack.playlist_service.add_video(
        playlist.id, "user-1", "https://youtu.be/dQw4w9WgXcQ", position=0
    )

    assert added.position == 0
    assert added.title == "Advanced Python performance deep dive"
    assert added.duration == "10:05"
    assert _order(stack, playlist.id)[0] == "dQw4w9WgXcQ"
    events = stack.analytics_repository.list_events(playlist.id)
    assert events[0].event_type == "video_added"

    with pytest.raises(ValueError):
        stack.playlist_service.add_video(playlist.id, "user-1", "dQw4w9WgXcQ")


def test_service_add_video_rejects_unknown_or_malformed_ids(stack: CuratorStack) -> None:
    playlist = _seed(stack, 0)

    with pytest.raises(NotFoundError):
        stack.playlist_service.add_video(playlist.id, "user-1", "dQw4w9WgXcQ")
    with pytest.raises(InvalidIdentifierError):
        stack.playlist_service.add_video(playlist.id, "user-1", "not a video")


def test_service_remove_and_move_record_events(stack: CuratorStack) -> None:
    playlist = _seed(stack, 3)

    stack.playlist_service.move_video(playlist.id, "user-1", video_id_for(0), 2)
    stack.playlist_service.remove_video(playlist.id, "user-1", video_id_for(1))

    with pytest.raises(NotFoundError):
        stack.playlist_service.remove_video(playlist.id, "user-1", video_id_for(1))
    with pytest.raises(NotFoundError):
        stack.playlist_service.move_video(playlist.id, "user-1", video_id_for(1), 0)

    assert _order(stack, playlist.id) == [video_id_for(2), video_id_for(0)]
    event_types = {event.event_type for event in stack.analytics_repository.list_events(playlist.id)}
    assert event_types == {"video_position_updated", "video_removed"}


def test_changing_the_video_set_drops_cached_analysis(stack: CuratorStack) -> None:
    playlist = _seed(stack, 2)
    videos = [VideoContext(title="Python basics")]
    stack.analysis_engine.analyze(playlist.id, "topics", videos)
    assert stack.analysis_repository.get_live(playlist.id, "topics") is not None

    stack.playlist_service.remove_video(playlist.id, "user-1", video_id_for(0))

    assert stack.analysis_repository.get_live(playlist.id, "topics") is None
