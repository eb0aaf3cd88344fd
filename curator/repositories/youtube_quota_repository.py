from __future__ import annotations

from dataclasses import dataclass

from curator.repositories.common import Clock, utc_day_key, utc_now
from curator.repositories.database import Database


@dataclass(frozen=True)
class QuotaReservation:
    api_name: str
    date_utc: str
    unit_cost: int
    allowed: bool
    units_used_today: int
    requests_today: int
    daily_limit: int

    @property
    def units_remaining(self) -> int:
        return max(0, self.daily_limit - self.units_used_today)


@dataclass(frozen=True)
class QuotaUsage:
    api_name: str
    date_utc: str
    units_used: int
    requests_count: int
    daily_limit: int

    @property
    def units_remaining(self) -> int:
        return max(0, self.daily_limit - self.units_used)


class YouTubeQuotaRepository:
    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def try_reserve(self, *, api_name: str, unit_cost: int, daily_limit: int) -> QuotaReservation:
        now = self._clock()
        date_utc = utc_day_key(now)
        now_iso = now.isoformat()
        cost = max(0, unit_cost)
        limit = max(0, daily_limit)

        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO youtube_quota_usage
                (api_name, date_utc, units_used, requests_count, created_at, updated_at)
                VALUES (?, ?, 0, 0, ?, ?)
                ON CONFLICT(api_name, date_utc) DO NOTHING
                """,
                (api_name, date_utc, now_iso, now_iso),
            )
            # Check and increment in one statement so concurrent reservations cannot
            # both pass against a stale total.
            cursor = conn.execute(
                """
                UPDATE youtube_quota_usage
                SET units_used = units_used + ?,
                    requests_count = requests_count + 1,
                    updated_at = ?
                WHERE api_name = ? AND date_utc = ? AND units_used + ? <= ?
                """,
                (cost, now_iso, api_name, date_utc, cost, limit),
            )
            allowed = cursor.rowcount == 1
            row = conn.execute(
                """
                SELECT units_used, requests_count
                FROM youtube_quota_usage
                WHERE api_name = ? AND date_utc = ?
                """,
                (api_name, date_utc),
            ).fetchone()

        return QuotaReservation(
            api_name=api_name,
            date_utc=date_utc,
            unit_cost=cost,
            allowed=allowed,
            units_used_today=int(row["units_used"]) if row is not None else 0,
            requests_today=int(row["requests_count"]) if row is not None else 0,
            daily_limit=limit,
        )

    def usage(self, *, api_name: str, daily_limit: int) -> QuotaUsage:
        date_utc = utc_day_key(self._clock())
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT units_used, requests_count
                FROM youtube_quota_usage
                WHERE api_name = ? AND date_utc = ?
                """,
                (api_name, date_utc),
            ).fetchone()

        return QuotaUsage(
            api_name=api_name,
            date_utc=date_utc,
            units_used=int(row["units_used"]) if row is not None else 0,
            requests_count=int(row["requests_count"]) if row is not None else 0,
            daily_limit=max(0, daily_limit),
        )

    def history(self, *, api_name: str, days: int) -> list[QuotaUsage]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT date_utc, units_used, requests_count
                FROM youtube_quota_usage
                WHERE api_name = ?
                ORDER BY date_utc DESC
                LIMIT ?
                """,
                (api_name, max(1, days)),
            ).fetchall()

        return [
            QuotaUsage(
                api_name=api_name,
                date_utc=str(row["date_utc"]),
                units_used=int(row["units_used"]),
                requests_count=int(row["requests_count"]),
                daily_limit=0,
            )
            for row in rows
        ]
