from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from curator.repositories.common import Clock, to_optional_str, utc_now
from curator.repositories.database import Database

ENHANCEMENT_STYLES: frozenset[str] = frozenset(
    {"educational", "professional", "casual", "creative", "technical"}
)
CONTENT_LEVELS: frozenset[str] = frozenset({"beginner", "intermediate", "advanced"})

_BOOLEAN_FIELDS: frozenset[str] = frozenset(
    {
        "include_keywords",
        "include_learning_objectives",
        "include_target_audience",
        "include_difficulty_assessment",
    }
)
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "enhancement_style",
        "preferred_ai_model",
        "language_preference",
        "content_level",
        "max_description_length",
        "custom_prompt_additions",
        *_BOOLEAN_FIELDS,
    }
)


@dataclass(frozen=True)
class AIPreferences:
    user_id: str
    enhancement_style: str
    preferred_ai_model: str | None
    language_preference: str
    content_level: str
    include_keywords: bool
    include_learning_objectives: bool
    include_target_audience: bool
    include_difficulty_assessment: bool
    max_description_length: int
    custom_prompt_additions: str | None


class PreferencesRepository:
    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def get_or_create(self, user_id: str) -> AIPreferences:
        now = self._clock().isoformat()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO user_ai_preferences (user_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, now, now),
            )
            row = _select_preferences(conn, user_id)
        assert row is not None
        return _row_to_preferences(row)

    def update(self, user_id: str, changes: dict[str, Any]) -> AIPreferences:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown preference fields: {', '.join(sorted(unknown))}")
        style = changes.get("enhancement_style")
        if style is not None and style not in ENHANCEMENT_STYLES:
            raise ValueError(f"enhancement_style must be one of: {', '.join(sorted(ENHANCEMENT_STYLES))}")
        level = changes.get("content_level")
        if level is not None and level not in CONTENT_LEVELS:
            raise ValueError(f"content_level must be one of: {', '.join(sorted(CONTENT_LEVELS))}")

        self.get_or_create(user_id)
        if not changes:
            return self.get_or_create(user_id)

        assignments: list[str] = []
        values: list[Any] = []
        for field_name in sorted(changes):
            value = changes[field_name]
            if field_name in _BOOLEAN_FIELDS:
                value = 1 if value else 0
            assignments.append(f"{field_name} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.append(self._clock().isoformat())

        with self._db.connection() as conn:
            conn.execute(
                f"UPDATE user_ai_preferences SET {', '.join(assignments)} WHERE user_id = ?",
                (*values, user_id),
            )
            row = _select_preferences(conn, user_id)
        assert row is not None
        return _row_to_preferences(row)


def _select_preferences(conn: sqlite3.Connection, user_id: str) -> sqlite3.Row | None:
    row: sqlite3.Row | None = conn.execute(
        """
        SELECT user_id, enhancement_style, preferred_ai_model, language_preference,
               content_level, include_keywords, include_learning_objectives,
               include_target_audience, include_difficulty_assessment,
               max_description_length, custom_prompt_additions
        FROM user_ai_preferences
        WHERE user_id = ?
        """,
        (user_id,),
    ).fetchone()
    return row


def _row_to_preferences(row: sqlite3.Row) -> AIPreferences:
    return AIPreferences(
        user_id=str(row["user_id"]),
        enhancement_style=str(row["enhancement_style"]),
        preferred_ai_model=to_optional_str(row["preferred_ai_model"]),
        language_preference=str(row["language_preference"]),
        content_level=str(row["content_level"]),
        include_keywords=bool(row["include_keywords"]),
        include_learning_objectives=bool(row["include_learning_objectives"]),
        include_target_audience=bool(row["include_target_audience"]),
        include_difficulty_assessment=bool(row["include_difficulty_assessment"]),
        max_description_length=int(row["max_description_length"]),
        custom_prompt_additions=to_optional_str(row["custom_prompt_additions"]),
    )
