from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from curator.repositories.common import Clock, load_json_dict, utc_now
from curator.repositories.database import Database


@dataclass(frozen=True)
class StoredAnalysis:
    playlist_id: str
    analysis_type: str
    payload: dict[str, Any]
    confidence_score: float
    video_count: int
    expires_at: float
    created_at: str


class ContentAnalysisRepository:
    """One live row per (playlist, analysis type); rows past ``expires_at`` read as absent."""

    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def get_live(self, playlist_id: str, analysis_type: str) -> StoredAnalysis | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT playlist_id, analysis_type, analysis_json, confidence_score,
                       video_count, expires_at, created_at
                FROM content_analysis
                WHERE playlist_id = ? AND analysis_type = ? AND expires_at > ?
                """,
                (playlist_id, analysis_type, self._clock().timestamp()),
            ).fetchone()
        if row is None:
            return None
        return StoredAnalysis(
            playlist_id=str(row["playlist_id"]),
            analysis_type=str(row["analysis_type"]),
            payload=load_json_dict(row["analysis_json"]),
            confidence_score=float(row["confidence_score"]),
            video_count=int(row["video_count"]),
            expires_at=float(row["expires_at"]),
            created_at=str(row["created_at"]),
        )

    def upsert(
        self,
        *,
        playlist_id: str,
        analysis_type: str,
        payload: dict[str, Any],
        confidence_score: float,
        video_count: int,
        ttl_seconds: int,
    ) -> None:
        now = self._clock()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO content_analysis (
                    playlist_id, analysis_type, analysis_json, confidence_score,
                    video_count, expires_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(playlist_id, analysis_type) DO UPDATE SET
                    analysis_json = excluded.analysis_json,
                    confidence_score = excluded.confidence_score,
                    video_count = excluded.video_count,
                    expires_at = excluded.expires_at,
                    created_at = excluded.created_at
                """,
                (
                    playlist_id,
                    analysis_type,
                    json.dumps(payload, sort_keys=True),
                    max(0.0, min(1.0, confidence_score)),
                    max(0, video_count),
                    now.timestamp() + max(0, ttl_seconds),
                    now.isoformat(),
                ),
            )

    def invalidate(self, playlist_id: str, analysis_type: str | None = None) -> int:
        with self._db.connection() as conn:
            if analysis_type is None:
                cursor = conn.execute(
                    "DELETE FROM content_analysis WHERE playlist_id = ?",
                    (playlist_id,),
                )
            else:
                cursor = conn.execute(
                    "DELETE FROM content_analysis WHERE playlist_id = ? AND analysis_type = ?",
                    (playlist_id, analysis_type),
                )
            return max(0, cursor.rowcount)

    def sweep(self) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM content_analysis WHERE expires_at <= ?",
                (self._clock().timestamp(),),
            )
            return max(0, cursor.rowcount)
