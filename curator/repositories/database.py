from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NULL,
    subscription_tier TEXT NOT NULL DEFAULT 'free',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS playlists (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    youtube_id TEXT NULL,
    title TEXT NOT NULL,
    original_description TEXT NULL,
    ai_description TEXT NULL,
    channel_title TEXT NULL,
    thumbnail_url TEXT NULL,
    video_count INTEGER NOT NULL DEFAULT 0,
    enhanced INTEGER NOT NULL DEFAULT 0,
    enhancement_status TEXT NOT NULL DEFAULT 'none',
    enhancement_version INTEGER NOT NULL DEFAULT 0,
    last_enhanced_at TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_playlists_user_id
ON playlists(user_id);

CREATE TABLE IF NOT EXISTS playlist_videos (
    id TEXT PRIMARY KEY,
    playlist_id TEXT NOT NULL,
    youtube_video_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NULL,
    channel_name TEXT NULL,
    channel_id TEXT NULL,
    duration TEXT NOT NULL DEFAULT '0:00',
    thumbnail_url TEXT NULL,
    published_at TEXT NULL,
    view_count INTEGER NOT NULL DEFAULT 0,
    like_count INTEGER NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    added_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
    UNIQUE(playlist_id, youtube_video_id)
);

CREATE INDEX IF NOT EXISTS idx_playlist_videos_position
ON playlist_videos(playlist_id, position);

CREATE TRIGGER IF NOT EXISTS playlist_video_count_after_insert
AFTER INSERT ON playlist_videos
BEGIN
    UPDATE playlists
    SET video_count = (
        SELECT COUNT(*) FROM playlist_videos WHERE playlist_id = NEW.playlist_id
    )
    WHERE id = NEW.playlist_id;
END;

CREATE TRIGGER IF NOT EXISTS playlist_video_count_after_delete
AFTER DELETE ON playlist_videos
BEGIN
    UPDATE playlists
    SET video_count = (
        SELECT COUNT(*) FROM playlist_videos WHERE playlist_id = OLD.playlist_id
    )
    WHERE id = OLD.playlist_id;
END;

CREATE TABLE IF NOT EXISTS youtube_cache (
    cache_key TEXT PRIMARY KEY,
    cache_type TEXT NOT NULL,
    data_json TEXT NOT NULL,
    expires_at REAL NOT NULL,
    created_at TEXT NOT NULL,
    accessed_count INTEGER NOT NULL DEFAULT 0,
    last_accessed TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_youtube_cache_expires
ON youtube_cache(expires_at);

CREATE TABLE IF NOT EXISTS youtube_quota_usage (
    api_name TEXT NOT NULL,
    date_utc TEXT NOT NULL,
    units_used INTEGER NOT NULL DEFAULT 0,
    requests_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (api_name, date_utc)
);

CREATE TABLE IF NOT EXISTS youtube_imports (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    playlist_id TEXT NULL,
    youtube_playlist_id TEXT NOT NULL,
    youtube_playlist_url TEXT NOT NULL,
    status TEXT NOT NULL,
    videos_imported INTEGER NOT NULL DEFAULT 0,
    total_videos INTEGER NOT NULL DEFAULT 0,
    progress_percentage INTEGER NULL,
    error_message TEXT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT NULL,
    FOREIGN KEY(playlist_id) REFERENCES playlists(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_youtube_imports_user_started
ON youtube_imports(user_id, started_at DESC);

CREATE TABLE IF NOT EXISTS enhancement_history (
    id TEXT PRIMARY KEY,
    playlist_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    enhancement_type TEXT NOT NULL,
    original_content TEXT NULL,
    enhanced_content TEXT NULL,
    prompt_used TEXT NULL,
    ai_model TEXT NOT NULL,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    cost_usd REAL NOT NULL DEFAULT 0.0,
    quality_score REAL NULL,
    user_rating INTEGER NULL,
    status TEXT NOT NULL,
    error_message TEXT NULL,
    processing_time_ms INTEGER NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT NULL,
    FOREIGN KEY(playlist_id) REFERENCES playlists(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_enhancement_history_cooldown
ON enhancement_history(playlist_id, enhancement_type, status, completed_at);

CREATE TABLE IF NOT EXISTS content_analysis (
    playlist_id TEXT NOT NULL,
    analysis_type TEXT NOT NULL,
    analysis_json TEXT NOT NULL,
    confidence_score REAL NOT NULL DEFAULT 0.0,
    video_count INTEGER NOT NULL DEFAULT 0,
    expires_at REAL NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (playlist_id, analysis_type),
    FOREIGN KEY(playlist_id) REFERENCES playlists(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS ai_usage_tracking (
    user_id TEXT NOT NULL,
    date_utc TEXT NOT NULL,
    model_name TEXT NOT NULL,
    requests_count INTEGER NOT NULL DEFAULT 0,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    cost_usd REAL NOT NULL DEFAULT 0.0,
    success_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, date_utc, model_name)
);

CREATE TABLE IF NOT EXISTS user_ai_preferences (
    user_id TEXT PRIMARY KEY,
    enhancement_style TEXT NOT NULL DEFAULT 'educational',
    preferred_ai_model TEXT NULL,
    language_preference TEXT NOT NULL DEFAULT 'en',
    content_level TEXT NOT NULL DEFAULT 'intermediate',
    include_keywords INTEGER NOT NULL DEFAULT 1,
    include_learning_objectives INTEGER NOT NULL DEFAULT 1,
    include_target_audience INTEGER NOT NULL DEFAULT 1,
    include_difficulty_assessment INTEGER NOT NULL DEFAULT 0,
    max_description_length INTEGER NOT NULL DEFAULT 500,
    custom_prompt_additions TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS playlist_analytics (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    playlist_id TEXT NULL,
    event_type TEXT NOT NULL,
    metadata_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_playlist_analytics_playlist
ON playlist_analytics(playlist_id, created_at DESC);

CREATE INDEX IF NOT EXISTS idx_playlist_analytics_user
ON playlist_analytics(user_id, created_at DESC);
"""

# Columns added after the first schema revision; older databases get them via ALTER TABLE.
_ADDITIVE_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("playlists", "enhancement_status", "TEXT NOT NULL DEFAULT 'none'"),
    ("playlists", "enhancement_version", "INTEGER NOT NULL DEFAULT 0"),
    ("playlists", "last_enhanced_at", "TEXT NULL"),
    ("youtube_imports", "progress_percentage", "INTEGER NULL"),
)


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _add_missing_columns(conn)


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    for table_name, column_name, column_sql in _ADDITIVE_COLUMNS:
        columns = _table_columns(conn, table_name)
        if not columns or column_name in columns:
            continue
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_sql}")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
