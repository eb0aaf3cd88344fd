from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from curator.repositories.common import Clock, parse_iso_utc, to_optional_str, utc_day_key, utc_now
from curator.repositories.database import Database

ENHANCEMENT_STATUS_PROCESSING = "processing"
ENHANCEMENT_STATUS_COMPLETED = "completed"
ENHANCEMENT_STATUS_FAILED = "failed"
ENHANCEMENT_STATUS_REVERTED = "reverted"

_RECORD_COLUMNS = """
    id, playlist_id, user_id, enhancement_type, original_content, enhanced_content, ai_model,
    tokens_used, input_tokens, output_tokens, cost_usd, quality_score, user_rating, status,
    error_message, processing_time_ms, started_at, completed_at
"""


@dataclass(frozen=True)
class EnhancementRecord:
    id: str
    playlist_id: str
    user_id: str
    enhancement_type: str
    original_content: str | None
    enhanced_content: str | None
    ai_model: str
    tokens_used: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    quality_score: float | None
    user_rating: int | None
    status: str
    error_message: str | None
    processing_time_ms: int | None
    started_at: str
    completed_at: str | None


@dataclass(frozen=True)
class EnhancementOutcome:
    enhanced_content: str
    input_tokens: int
    output_tokens: int
    tokens_used: int
    cost_usd: float
    processing_time_ms: int
    quality_score: float | None = None


@dataclass(frozen=True)
class AIUsageRecord:
    user_id: str
    date_utc: str
    model_name: str
    requests_count: int
    tokens_used: int
    cost_usd: float
    success_count: int
    error_count: int


class EnhancementRepository:
    """Enhancement history, the per-(user, day, model) AI usage ledger and the
    denormalized enhancement fields on playlists.

    Finalizing a record, bumping the usage counters and (on success) writing the
    playlist happen in one transaction. Usage counters are incremented by an
    upsert, never by read-modify-write.
    """

    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def create_processing(
        self,
        *,
        playlist_id: str,
        user_id: str,
        enhancement_type: str,
        original_content: str | None,
        prompt_used: str,
        ai_model: str,
    ) -> EnhancementRecord:
        record_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO enhancement_history (
                    id, playlist_id, user_id, enhancement_type, original_content,
                    prompt_used, ai_model, status, started_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    playlist_id,
                    user_id,
                    enhancement_type,
                    original_content,
                    prompt_used,
                    ai_model,
                    ENHANCEMENT_STATUS_PROCESSING,
                    self._clock().isoformat(),
                ),
            )
            row = _select_record(conn, record_id)
        assert row is not None
        return _row_to_record(row)

    def last_completed_at(self, playlist_id: str, enhancement_type: str) -> datetime | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT completed_at FROM enhancement_history
                WHERE playlist_id = ? AND enhancement_type = ? AND status = ?
                ORDER BY completed_at DESC
                LIMIT 1
                """,
                (playlist_id, enhancement_type, ENHANCEMENT_STATUS_COMPLETED),
            ).fetchone()
        if row is None:
            return None
        return parse_iso_utc(row["completed_at"])

    def mark_completed(self, record: EnhancementRecord, outcome: EnhancementOutcome) -> EnhancementRecord:
        now = self._clock()
        now_iso = now.isoformat()
        with self._db.connection(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE enhancement_history
                SET status = ?, enhanced_content = ?, tokens_used = ?, input_tokens = ?,
                    output_tokens = ?, cost_usd = ?, quality_score = ?,
                    processing_time_ms = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    ENHANCEMENT_STATUS_COMPLETED,
                    outcome.enhanced_content,
                    outcome.tokens_used,
                    outcome.input_tokens,
                    outcome.output_tokens,
                    outcome.cost_usd,
                    outcome.quality_score,
                    outcome.processing_time_ms,
                    now_iso,
                    record.id,
                    ENHANCEMENT_STATUS_PROCESSING,
                ),
            )
            if cursor.rowcount != 1:
                raise ValueError(f"enhancement {record.id} is not processing")

            _increment_usage(
                conn,
                user_id=record.user_id,
                date_utc=utc_day_key(now),
                model_name=record.ai_model,
                tokens_used=outcome.tokens_used,
                cost_usd=outcome.cost_usd,
                succeeded=True,
                now_iso=now_iso,
            )
            if record.enhancement_type == "description":
                conn.execute(
                    """
                    UPDATE playlists
                    SET ai_description = ?, enhanced = 1, enhancement_status = ?,
                        enhancement_version = enhancement_version + 1,
                        last_enhanced_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        outcome.enhanced_content,
                        ENHANCEMENT_STATUS_COMPLETED,
                        now_iso,
                        now_iso,
                        record.playlist_id,
                    ),
                )
            row = _select_record(conn, record.id)
        assert row is not None
        return _row_to_record(row)

    def mark_failed(
        self,
        record: EnhancementRecord,
        *,
        error_message: str,
        processing_time_ms: int,
        input_tokens: int = 0,
        output_tokens: int = 0,
        tokens_used: int = 0,
        cost_usd: float = 0.0,
    ) -> None:
        """Mark a processing record failed; tokens already billed are still counted."""
        now = self._clock()
        now_iso = now.isoformat()
        with self._db.connection(immediate=True) as conn:
            cursor = conn.execute(
                """
                UPDATE enhancement_history
                SET status = ?, error_message = ?, processing_time_ms = ?, completed_at = ?,
                    tokens_used = ?, input_tokens = ?, output_tokens = ?, cost_usd = ?
                WHERE id = ? AND status = ?
                """,
                (
                    ENHANCEMENT_STATUS_FAILED,
                    error_message[:1_000],
                    processing_time_ms,
                    now_iso,
                    max(0, tokens_used),
                    max(0, input_tokens),
                    max(0, output_tokens),
                    max(0.0, cost_usd),
                    record.id,
                    ENHANCEMENT_STATUS_PROCESSING,
                ),
            )
            if cursor.rowcount != 1:
                return
            _increment_usage(
                conn,
                user_id=record.user_id,
                date_utc=utc_day_key(now),
                model_name=record.ai_model,
                tokens_used=tokens_used,
                cost_usd=cost_usd,
                succeeded=False,
                now_iso=now_iso,
            )

    def mark_reverted(self, record: EnhancementRecord) -> bool:
        """Mark a completed record reverted.

        The playlist only changes when the reverted record is the live one (the
        newest completed record of its type): it falls back to the previous
        completed record's content, or is cleared when there is none.
        """
        now_iso = self._clock().isoformat()
        with self._db.connection(immediate=True) as conn:
            cursor = conn.execute(
                "UPDATE enhancement_history SET status = ? WHERE id = ? AND status = ?",
                (ENHANCEMENT_STATUS_REVERTED, record.id, ENHANCEMENT_STATUS_COMPLETED),
            )
            if cursor.rowcount != 1:
                return False
            if record.enhancement_type != "description":
                return True

            newer = conn.execute(
                """
                SELECT 1 FROM enhancement_history
                WHERE playlist_id = ? AND enhancement_type = ? AND status = ?
                  AND completed_at > ?
                LIMIT 1
                """,
                (
                    record.playlist_id,
                    record.enhancement_type,
                    ENHANCEMENT_STATUS_COMPLETED,
                    record.completed_at or "",
                ),
            ).fetchone()
            if newer is not None:
                return True

            previous = conn.execute(
                """
                SELECT enhanced_content FROM enhancement_history
                WHERE playlist_id = ? AND enhancement_type = ? AND status = ?
                ORDER BY completed_at DESC
                LIMIT 1
                """,
                (record.playlist_id, record.enhancement_type, ENHANCEMENT_STATUS_COMPLETED),
            ).fetchone()
            if previous is None:
                conn.execute(
                    """
                    UPDATE playlists
                    SET ai_description = NULL, enhanced = 0, enhancement_status = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (ENHANCEMENT_STATUS_REVERTED, now_iso, record.playlist_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE playlists
                    SET ai_description = ?, enhanced = 1, enhancement_status = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        previous["enhanced_content"],
                        ENHANCEMENT_STATUS_COMPLETED,
                        now_iso,
                        record.playlist_id,
                    ),
                )
        return True

    def set_rating(self, record_id: str, rating: int) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE enhancement_history SET user_rating = ? WHERE id = ?",
                (rating, record_id),
            )

    def get(self, record_id: str) -> EnhancementRecord | None:
        with self._db.connection() as conn:
            row = _select_record(conn, record_id)
        if row is None:
            return None
        return _row_to_record(row)

    def list_for_playlist(self, playlist_id: str, *, limit: int = 20) -> list[EnhancementRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_RECORD_COLUMNS} FROM enhancement_history
                WHERE playlist_id = ?
                ORDER BY started_at DESC
                LIMIT ?
                """,
                (playlist_id, max(1, limit)),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def usage_for_user(self, user_id: str, *, days: int) -> list[AIUsageRecord]:
        since = utc_day_key(self._clock() - timedelta(days=max(1, days) - 1))
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT user_id, date_utc, model_name, requests_count, tokens_used, cost_usd,
                       success_count, error_count
                FROM ai_usage_tracking
                WHERE user_id = ? AND date_utc >= ?
                ORDER BY date_utc DESC, model_name ASC
                """,
                (user_id, since),
            ).fetchall()
        return [
            AIUsageRecord(
                user_id=str(row["user_id"]),
                date_utc=str(row["date_utc"]),
                model_name=str(row["model_name"]),
                requests_count=int(row["requests_count"]),
                tokens_used=int(row["tokens_used"]),
                cost_usd=float(row["cost_usd"]),
                success_count=int(row["success_count"]),
                error_count=int(row["error_count"]),
            )
            for row in rows
        ]


def _increment_usage(
    conn: sqlite3.Connection,
    *,
    user_id: str,
    date_utc: str,
    model_name: str,
    tokens_used: int,
    cost_usd: float,
    succeeded: bool,
    now_iso: str,
) -> None:
    success = 1 if succeeded else 0
    conn.execute(
        """
        INSERT INTO ai_usage_tracking (
            user_id, date_utc, model_name, requests_count, tokens_used, cost_usd,
            success_count, error_count, created_at, updated_at
        ) VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id, date_utc, model_name) DO UPDATE SET
            requests_count = requests_count + 1,
            tokens_used = tokens_used + excluded.tokens_used,
            cost_usd = cost_usd + excluded.cost_usd,
            success_count = success_count + excluded.success_count,
            error_count = error_count + excluded.error_count,
            updated_at = excluded.updated_at
        """,
        (
            user_id,
            date_utc,
            model_name,
            max(0, tokens_used),
            max(0.0, cost_usd),
            success,
            1 - success,
            now_iso,
            now_iso,
        ),
    )


def _select_record(conn: sqlite3.Connection, record_id: str) -> sqlite3.Row | None:
    row: sqlite3.Row | None = conn.execute(
        f"SELECT {_RECORD_COLUMNS} FROM enhancement_history WHERE id = ?",
        (record_id,),
    ).fetchone()
    return row


def _row_to_record(row: sqlite3.Row) -> EnhancementRecord:
    quality = row["quality_score"]
    rating = row["user_rating"]
    processing = row["processing_time_ms"]
    return EnhancementRecord(
        id=str(row["id"]),
        playlist_id=str(row["playlist_id"]),
        user_id=str(row["user_id"]),
        enhancement_type=str(row["enhancement_type"]),
        original_content=to_optional_str(row["original_content"]),
        enhanced_content=to_optional_str(row["enhanced_content"]),
        ai_model=str(row["ai_model"]),
        tokens_used=int(row["tokens_used"]),
        input_tokens=int(row["input_tokens"]),
        output_tokens=int(row["output_tokens"]),
        cost_usd=float(row["cost_usd"]),
        quality_score=float(quality) if quality is not None else None,
        user_rating=int(rating) if rating is not None else None,
        status=str(row["status"]),
        error_message=to_optional_str(row["error_message"]),
        processing_time_ms=int(processing) if processing is not None else None,
        started_at=str(row["started_at"]),
        completed_at=to_optional_str(row["completed_at"]),
    )
