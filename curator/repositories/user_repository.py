from __future__ import annotations

from curator.repositories.common import Clock, utc_now
from curator.repositories.database import Database

DEFAULT_SUBSCRIPTION_TIER = "free"


class UserRepository:
    """Minimal user directory; identity itself is established upstream of this service."""

    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def upsert_user(
        self,
        user_id: str,
        *,
        email: str | None = None,
        subscription_tier: str = DEFAULT_SUBSCRIPTION_TIER,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, subscription_tier, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = COALESCE(excluded.email, users.email),
                    subscription_tier = excluded.subscription_tier
                """,
                (user_id, email, subscription_tier, self._clock().isoformat()),
            )

    def subscription_tier(self, user_id: str) -> str:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT subscription_tier FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return DEFAULT_SUBSCRIPTION_TIER
        return str(row["subscription_tier"])
