from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from curator.repositories.common import Clock, to_optional_str, utc_now
from curator.repositories.database import Database

_PLAYLIST_COLUMNS = """
    id, user_id, youtube_id, title, original_description, ai_description, channel_title,
    thumbnail_url, video_count, enhanced, enhancement_status, enhancement_version,
    last_enhanced_at, created_at, updated_at
"""
_VIDEO_COLUMNS = """
    id, playlist_id, youtube_video_id, title, description, channel_name, channel_id,
    duration, thumbnail_url, published_at, view_count, like_count, position, added_at
"""


@dataclass(frozen=True)
class PlaylistRecord:
    id: str
    user_id: str
    youtube_id: str | None
    title: str
    original_description: str | None
    ai_description: str | None
    channel_title: str | None
    thumbnail_url: str | None
    video_count: int
    enhanced: bool
    enhancement_status: str
    enhancement_version: int
    last_enhanced_at: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class PlaylistStats:
    total_playlists: int
    enhanced_count: int
    total_videos: int


@dataclass(frozen=True)
class NewPlaylistVideo:
    youtube_video_id: str
    title: str
    description: str
    channel_name: str
    channel_id: str
    duration: str
    thumbnail_url: str | None
    published_at: str | None
    view_count: int
    like_count: int


@dataclass(frozen=True)
class PlaylistVideoRecord:
    id: str
    playlist_id: str
    youtube_video_id: str
    title: str
    description: str | None
    channel_name: str | None
    channel_id: str | None
    duration: str
    thumbnail_url: str | None
    published_at: str | None
    view_count: int
    like_count: int
    position: int
    added_at: str


class PlaylistRepository:
    """Playlists and their videos.

    Video positions are dense and 0-based. Every structural mutation runs in a
    ``BEGIN IMMEDIATE`` transaction, so removals, moves and reorders on the same
    database serialize instead of interleaving their renumbering writes.
    ``video_count`` is recounted by triggers on insert and delete.
    """

    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def create_playlist(
        self,
        *,
        user_id: str,
        title: str,
        youtube_id: str | None = None,
        original_description: str | None = None,
        channel_title: str | None = None,
        thumbnail_url: str | None = None,
    ) -> PlaylistRecord:
        playlist_id = uuid.uuid4().hex
        now = self._clock().isoformat()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO playlists (
                    id, user_id, youtube_id, title, original_description, channel_title,
                    thumbnail_url, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    playlist_id,
                    user_id,
                    youtube_id,
                    title,
                    original_description,
                    channel_title,
                    thumbnail_url,
                    now,
                    now,
                ),
            )
            row = _select_playlist(conn, playlist_id)
        assert row is not None
        return _row_to_playlist(row)

    def get_playlist(self, playlist_id: str) -> PlaylistRecord | None:
        with self._db.connection() as conn:
            row = _select_playlist(conn, playlist_id)
        if row is None:
            return None
        return _row_to_playlist(row)

    def list_playlists(self, user_id: str) -> list[PlaylistRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_PLAYLIST_COLUMNS} FROM playlists WHERE user_id = ? "
                "ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_playlist(row) for row in rows]

    def update_playlist(
        self,
        playlist_id: str,
        *,
        title: str | None = None,
        original_description: str | None = None,
        clear_description: bool = False,
    ) -> PlaylistRecord | None:
        assignments: list[str] = []
        values: list[Any] = []
        if title is not None:
            assignments.append("title = ?")
            values.append(title)
        if clear_description:
            assignments.append("original_description = NULL")
        elif original_description is not None:
            assignments.append("original_description = ?")
            values.append(original_description)

        with self._db.connection() as conn:
            if assignments:
                assignments.append("updated_at = ?")
                values.extend([self._clock().isoformat(), playlist_id])
                conn.execute(
                    f"UPDATE playlists SET {', '.join(assignments)} WHERE id = ?",
                    values,
                )
            row = _select_playlist(conn, playlist_id)
        if row is None:
            return None
        return _row_to_playlist(row)

    def delete_playlist(self, playlist_id: str) -> bool:
        # Videos, enhancement history and cached analysis go with it (ON DELETE CASCADE).
        with self._db.connection(immediate=True) as conn:
            cursor = conn.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
            return cursor.rowcount == 1

    def count_playlists(self, user_id: str) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM playlists WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def stats_for_user(self, user_id: str) -> PlaylistStats:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_playlists,
                    COALESCE(SUM(CASE WHEN enhanced = 1 THEN 1 ELSE 0 END), 0) AS enhanced_count,
                    COALESCE(SUM(video_count), 0) AS total_videos
                FROM playlists
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        return PlaylistStats(
            total_playlists=int(row["total_playlists"]),
            enhanced_count=int(row["enhanced_count"]),
            total_videos=int(row["total_videos"]),
        )

    def list_videos(self, playlist_id: str, *, limit: int | None = None) -> list[PlaylistVideoRecord]:
        query = (
            f"SELECT {_VIDEO_COLUMNS} FROM playlist_videos WHERE playlist_id = ? "
            "ORDER BY position ASC"
        )
        params: tuple[Any, ...] = (playlist_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (playlist_id, max(0, limit))
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_video(row) for row in rows]

    def add_video(
        self,
        playlist_id: str,
        video: NewPlaylistVideo,
        *,
        position: int | None = None,
    ) -> PlaylistVideoRecord:
        """Insert a video at ``position`` (appended when omitted or past the end).

        Raises ``sqlite3.IntegrityError`` when the video is already in the playlist.
        """
        video_row_id = uuid.uuid4().hex
        now = self._clock().isoformat()
        with self._db.connection(immediate=True) as conn:
            count = _count_videos(conn, playlist_id)
            target = count if position is None else max(0, min(position, count))
            if target < count:
                conn.execute(
                    """
                    UPDATE playlist_videos
                    SET position = position + 1, updated_at = ?
                    WHERE playlist_id = ? AND position >= ?
                    """,
                    (now, playlist_id, target),
                )
            conn.execute(
                """
                INSERT INTO playlist_videos (
                    id, playlist_id, youtube_video_id, title, description, channel_name,
                    channel_id, duration, thumbnail_url, published_at, view_count, like_count,
                    position, added_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    video_row_id,
                    playlist_id,
                    video.youtube_video_id,
                    video.title,
                    video.description,
                    video.channel_name,
                    video.channel_id,
                    video.duration,
                    video.thumbnail_url,
                    video.published_at,
                    video.view_count,
                    video.like_count,
                    target,
                    now,
                    now,
                ),
            )
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM playlist_videos WHERE id = ?",
                (video_row_id,),
            ).fetchone()
        assert row is not None
        return _row_to_video(row)

    def remove_video(self, playlist_id: str, youtube_video_id: str) -> bool:
        now = self._clock().isoformat()
        with self._db.connection(immediate=True) as conn:
            removed_position = _video_position(conn, playlist_id, youtube_video_id)
            if removed_position is None:
                return False
            conn.execute(
                "DELETE FROM playlist_videos WHERE playlist_id = ? AND youtube_video_id = ?",
                (playlist_id, youtube_video_id),
            )
            conn.execute(
                """
                UPDATE playlist_videos
                SET position = position - 1, updated_at = ?
                WHERE playlist_id = ? AND position > ?
                """,
                (now, playlist_id, removed_position),
            )
            _touch_playlist(conn, playlist_id, now)
        return True

    def move_video(self, playlist_id: str, youtube_video_id: str, new_position: int) -> bool:
        """Move one video, shifting only the videos between its old and new slot.

        Raises ``ValueError`` when ``new_position`` is outside ``[0, video_count)``.
        """
        now = self._clock().isoformat()
        with self._db.connection(immediate=True) as conn:
            old_position = _video_position(conn, playlist_id, youtube_video_id)
            if old_position is None:
                return False
            count = _count_videos(conn, playlist_id)
            if new_position < 0 or new_position >= count:
                raise ValueError(f"position must be between 0 and {count - 1}")
            if new_position == old_position:
                return True

            if new_position > old_position:
                conn.execute(
                    """
                    UPDATE playlist_videos
                    SET position = position - 1, updated_at = ?
                    WHERE playlist_id = ? AND position > ? AND position <= ?
                    """,
                    (now, playlist_id, old_position, new_position),
                )
            else:
                conn.execute(
                    """
                    UPDATE playlist_videos
                    SET position = position + 1, updated_at = ?
                    WHERE playlist_id = ? AND position >= ? AND position < ?
                    """,
                    (now, playlist_id, new_position, old_position),
                )
            conn.execute(
                """
                UPDATE playlist_videos
                SET position = ?, updated_at = ?
                WHERE playlist_id = ? AND youtube_video_id = ?
                """,
                (new_position, now, playlist_id, youtube_video_id),
            )
            _touch_playlist(conn, playlist_id, now)
        return True

    def reorder_videos(self, playlist_id: str, ordered_video_ids: list[str]) -> None:
        """Write positions ``0..n-1`` in the given order.

        ``ordered_video_ids`` must be a permutation of the playlist's current
        YouTube video ids; anything else raises ``ValueError`` and writes nothing.
        """
        now = self._clock().isoformat()
        with self._db.connection(immediate=True) as conn:
            rows = conn.execute(
                "SELECT youtube_video_id FROM playlist_videos WHERE playlist_id = ?",
                (playlist_id,),
            ).fetchall()
            current_ids = {str(row["youtube_video_id"]) for row in rows}
            if len(ordered_video_ids) != len(current_ids) or set(ordered_video_ids) != current_ids:
                raise ValueError("video order must list every video in the playlist exactly once")

            conn.executemany(
                """
                UPDATE playlist_videos
                SET position = ?, updated_at = ?
                WHERE playlist_id = ? AND youtube_video_id = ?
                """,
                [
                    (index, now, playlist_id, video_id)
                    for index, video_id in enumerate(ordered_video_ids)
                ],
            )
            _touch_playlist(conn, playlist_id, now)


def _select_playlist(conn: sqlite3.Connection, playlist_id: str) -> sqlite3.Row | None:
    row: sqlite3.Row | None = conn.execute(
        f"SELECT {_PLAYLIST_COLUMNS} FROM playlists WHERE id = ?",
        (playlist_id,),
    ).fetchone()
    return row


def _count_videos(conn: sqlite3.Connection, playlist_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS total FROM playlist_videos WHERE playlist_id = ?",
        (playlist_id,),
    ).fetchone()
    return int(row["total"]) if row is not None else 0


def _video_position(conn: sqlite3.Connection, playlist_id: str, youtube_video_id: str) -> int | None:
    row = conn.execute(
        """
        SELECT position FROM playlist_videos
        WHERE playlist_id = ? AND youtube_video_id = ?
        """,
        (playlist_id, youtube_video_id),
    ).fetchone()
    if row is None:
        return None
    return int(row["position"])


def _touch_playlist(conn: sqlite3.Connection, playlist_id: str, now: str) -> None:
    conn.execute("UPDATE playlists SET updated_at = ? WHERE id = ?", (now, playlist_id))


def _row_to_playlist(row: sqlite3.Row) -> PlaylistRecord:
    return PlaylistRecord(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        youtube_id=to_optional_str(row["youtube_id"]),
        title=str(row["title"]),
        original_description=to_optional_str(row["original_description"]),
        ai_description=to_optional_str(row["ai_description"]),
        channel_title=to_optional_str(row["channel_title"]),
        thumbnail_url=to_optional_str(row["thumbnail_url"]),
        video_count=int(row["video_count"]),
        enhanced=bool(row["enhanced"]),
        enhancement_status=str(row["enhancement_status"]),
        enhancement_version=int(row["enhancement_version"]),
        last_enhanced_at=to_optional_str(row["last_enhanced_at"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _row_to_video(row: sqlite3.Row) -> PlaylistVideoRecord:
    return PlaylistVideoRecord(
        id=str(row["id"]),
        playlist_id=str(row["playlist_id"]),
        youtube_video_id=str(row["youtube_video_id"]),
        title=str(row["title"]),
        description=to_optional_str(row["description"]),
        channel_name=to_optional_str(row["channel_name"]),
        channel_id=to_optional_str(row["channel_id"]),
        duration=str(row["duration"]),
        thumbnail_url=to_optional_str(row["thumbnail_url"]),
        published_at=to_optional_str(row["published_at"]),
        view_count=int(row["view_count"]),
        like_count=int(row["like_count"]),
        position=int(row["position"]),
        added_at=str(row["added_at"]),
    )
