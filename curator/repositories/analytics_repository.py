from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from curator.repositories.common import Clock, load_json_dict, to_optional_str, utc_now
from curator.repositories.database import Database


@dataclass(frozen=True)
class AnalyticsEvent:
    id: str
    user_id: str
    playlist_id: str | None
    event_type: str
    metadata: dict[str, Any]
    created_at: str


@dataclass(frozen=True)
class ActivityCount:
    event_type: str
    date_utc: str
    count: int


class AnalyticsRepository:
    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def record_event(
        self,
        *,
        user_id: str,
        event_type: str,
        playlist_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        event_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO playlist_analytics (
                    id, user_id, playlist_id, event_type, metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    user_id,
                    playlist_id,
                    event_type,
                    json.dumps(metadata or {}, sort_keys=True),
                    self._clock().isoformat(),
                ),
            )
        return event_id

    def list_events(self, playlist_id: str, *, limit: int = 50) -> list[AnalyticsEvent]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, playlist_id, event_type, metadata_json, created_at
                FROM playlist_analytics
                WHERE playlist_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (playlist_id, max(1, limit)),
            ).fetchall()
        return [
            AnalyticsEvent(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                playlist_id=to_optional_str(row["playlist_id"]),
                event_type=str(row["event_type"]),
                metadata=load_json_dict(row["metadata_json"]),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]

    def activity_counts(
        self,
        *,
        since: datetime,
        playlist_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[ActivityCount]:
        """Event counts grouped by type and UTC day, newest day first."""
        if (playlist_id is None) == (user_id is None):
            raise ValueError("exactly one of playlist_id or user_id is required")
        column = "playlist_id" if playlist_id is not None else "user_id"
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT event_type, substr(created_at, 1, 10) AS date_utc, COUNT(*) AS event_count
                FROM playlist_analytics
                WHERE {column} = ? AND created_at >= ?
                GROUP BY event_type, date_utc
                ORDER BY date_utc DESC, event_type ASC
                LIMIT ?
                """,
                (playlist_id or user_id, since.isoformat(), max(1, limit)),
            ).fetchall()
        return [
            ActivityCount(
                event_type=str(row["event_type"]),
                date_utc=str(row["date_utc"]),
                count=int(row["event_count"]),
            )
            for row in rows
        ]
