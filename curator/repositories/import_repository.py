from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime

from curator.repositories.common import Clock, to_optional_str, utc_now
from curator.repositories.database import Database

_JOB_COLUMNS = """
    id, user_id, playlist_id, youtube_playlist_id, youtube_playlist_url, status,
    videos_imported, total_videos, progress_percentage, error_message, started_at, completed_at
"""

IMPORT_STATUS_PENDING = "pending"
IMPORT_STATUS_COMPLETED = "completed"
IMPORT_STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ImportJob:
    id: str
    user_id: str
    playlist_id: str | None
    youtube_playlist_id: str
    youtube_playlist_url: str
    status: str
    videos_imported: int
    total_videos: int
    progress_percentage: int | None
    error_message: str | None
    started_at: str
    completed_at: str | None


class ImportRepository:
    """Import job ledger.

    Status only ever leaves ``pending``: every finalizing statement is guarded by
    ``WHERE status = 'pending'``, so a job is finalized at most once.
    """

    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def create_job(self, *, user_id: str, youtube_playlist_id: str, source_url: str) -> ImportJob:
        job_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO youtube_imports (
                    id, user_id, youtube_playlist_id, youtube_playlist_url, status, started_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    user_id,
                    youtube_playlist_id,
                    source_url,
                    IMPORT_STATUS_PENDING,
                    self._clock().isoformat(),
                ),
            )
            row = _select_job(conn, job_id)
        assert row is not None
        return _row_to_job(row)

    def count_started_since(self, user_id: str, since: datetime) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total FROM youtube_imports
                WHERE user_id = ? AND started_at >= ?
                """,
                (user_id, since.isoformat()),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def update_progress(self, job_id: str, *, videos_imported: int, total_videos: int) -> None:
        total = max(0, total_videos)
        imported = max(0, min(videos_imported, total))
        percentage = round(imported * 100 / total) if total else 0
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE youtube_imports
                SET videos_imported = ?, total_videos = ?, progress_percentage = ?
                WHERE id = ? AND status = ?
                """,
                (imported, total, percentage, job_id, IMPORT_STATUS_PENDING),
            )

    def mark_completed(
        self,
        job_id: str,
        *,
        playlist_id: str,
        videos_imported: int,
        total_videos: int,
    ) -> bool:
        total = max(0, total_videos)
        imported = max(0, min(videos_imported, total))
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE youtube_imports
                SET status = ?, playlist_id = ?, videos_imported = ?, total_videos = ?,
                    progress_percentage = 100, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    IMPORT_STATUS_COMPLETED,
                    playlist_id,
                    imported,
                    total,
                    self._clock().isoformat(),
                    job_id,
                    IMPORT_STATUS_PENDING,
                ),
            )
            return cursor.rowcount == 1

    def mark_failed(self, job_id: str, *, error_message: str, playlist_id: str | None = None) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE youtube_imports
                SET status = ?, error_message = ?, playlist_id = COALESCE(?, playlist_id),
                    completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    IMPORT_STATUS_FAILED,
                    error_message[:1_000],
                    playlist_id,
                    self._clock().isoformat(),
                    job_id,
                    IMPORT_STATUS_PENDING,
                ),
            )
            return cursor.rowcount == 1

    def get_job(self, job_id: str) -> ImportJob | None:
        with self._db.connection() as conn:
            row = _select_job(conn, job_id)
        if row is None:
            return None
        return _row_to_job(row)

    def list_jobs(self, user_id: str, *, limit: int = 20) -> list[ImportJob]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM youtube_imports
                WHERE user_id = ?
                ORDER BY started_at DESC
                LIMIT ?
                """,
                (user_id, max(1, limit)),
            ).fetchall()
        return [_row_to_job(row) for row in rows]


def _select_job(conn: sqlite3.Connection, job_id: str) -> sqlite3.Row | None:
    row: sqlite3.Row | None = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM youtube_imports WHERE id = ?",
        (job_id,),
    ).fetchone()
    return row


def _row_to_job(row: sqlite3.Row) -> ImportJob:
    progress = row["progress_percentage"]
    return ImportJob(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        playlist_id=to_optional_str(row["playlist_id"]),
        youtube_playlist_id=str(row["youtube_playlist_id"]),
        youtube_playlist_url=str(row["youtube_playlist_url"]),
        status=str(row["status"]),
        videos_imported=int(row["videos_imported"]),
        total_videos=int(row["total_videos"]),
        progress_percentage=int(progress) if progress is not None else None,
        error_message=to_optional_str(row["error_message"]),
        started_at=str(row["started_at"]),
        completed_at=to_optional_str(row["completed_at"]),
    )

