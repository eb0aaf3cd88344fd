from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from curator.repositories.common import Clock, utc_now
from curator.repositories.database import Database

LOGGER = logging.getLogger("playlist_curator.cache")


@dataclass(frozen=True)
class CachedResponse:
    cache_key: str
    cache_type: str
    payload: Any
    expires_at: float
    accessed_count: int


@dataclass(frozen=True)
class CacheTypeStats:
    cache_type: str
    live_entries: int
    expired_entries: int
    total_accesses: int


class YouTubeCacheRepository:
    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def get(self, cache_key: str) -> CachedResponse | None:
        now = self._clock()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT cache_key, cache_type, data_json, expires_at, accessed_count
                FROM youtube_cache
                WHERE cache_key = ? AND expires_at > ?
                """,
                (cache_key, now.timestamp()),
            ).fetchone()

        if row is None:
            return None
        try:
            payload = json.loads(str(row["data_json"]))
        except json.JSONDecodeError:
            return None

        try:
            self.touch(cache_key)
        except sqlite3.Error:
            LOGGER.warning("youtube cache access_record_failed key=%s", cache_key, exc_info=True)

        return CachedResponse(
            cache_key=str(row["cache_key"]),
            cache_type=str(row["cache_type"]),
            payload=payload,
            expires_at=float(row["expires_at"]),
            accessed_count=int(row["accessed_count"]),
        )

    def touch(self, cache_key: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE youtube_cache
                SET accessed_count = accessed_count + 1, last_accessed = ?
                WHERE cache_key = ?
                """,
                (self._clock().isoformat(), cache_key),
            )

    def put(self, *, cache_key: str, cache_type: str, payload: Any, ttl_seconds: int) -> None:
        now = self._clock()
        expires_at = now.timestamp() + max(0, ttl_seconds)
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO youtube_cache
                (cache_key, cache_type, data_json, expires_at, created_at, accessed_count)
                VALUES (?, ?, ?, ?, ?, 0)
                ON CONFLICT(cache_key) DO UPDATE SET
                    cache_type = excluded.cache_type,
                    data_json = excluded.data_json,
                    expires_at = excluded.expires_at,
                    created_at = excluded.created_at,
                    accessed_count = 0,
                    last_accessed = NULL
                """,
                (cache_key, cache_type, json.dumps(payload), expires_at, now.isoformat()),
            )

    def sweep(self) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM youtube_cache WHERE expires_at <= ?",
                (self._clock().timestamp(),),
            )
            return max(0, cursor.rowcount)

    def stats(self) -> list[CacheTypeStats]:
        now_epoch = self._clock().timestamp()
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    cache_type,
                    SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END) AS live_entries,
                    SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END) AS expired_entries,
                    SUM(accessed_count) AS total_accesses
                FROM youtube_cache
                GROUP BY cache_type
                ORDER BY cache_type
                """,
                (now_epoch, now_epoch),
            ).fetchall()

        return [
            CacheTypeStats(
                cache_type=str(row["cache_type"]),
                live_entries=int(row["live_entries"] or 0),
                expired_entries=int(row["expired_entries"] or 0),
                total_accesses=int(row["total_accesses"] or 0),
            )
            for row in rows
        ]
