from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".playlist-curator"
SUBSCRIPTION_TIERS: frozenset[str] = frozenset({"free", "pro", "enterprise"})
_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("curator.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "telemetry_enabled",
    "content_analysis_ai_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{PLAYLIST_CURATOR_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option the backend reads lives here:
    - what it controls,
    - where it comes from (`PLAYLIST_CURATOR_*`),
    - and what its default is.
    """

    model_config = SettingsConfigDict(
        env_prefix="PLAYLIST_CURATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the SQLite store and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("curator.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('curator.db'))}",
    )

    # YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        description="API key for the YouTube Data API v3.",
    )
    youtube_daily_quota_limit: int = Field(
        default=10_000,
        ge=0,
        description="Daily YouTube Data API unit budget; reservations beyond it are rejected.",
    )
    youtube_request_delay_seconds: float = Field(
        default=0.1,
        ge=0.0,
        description="Fixed courtesy delay between successive listing pages and detail batches.",
    )
    youtube_max_pages: int = Field(
        default=10,
        ge=1,
        description="Hard ceiling on listing pages fetched per playlist.",
    )
    youtube_page_size: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Items requested per listing page or detail batch (YouTube caps this at 50).",
    )
    youtube_playlist_cache_ttl_seconds: int = Field(
        default=1_800,
        description="TTL for cached playlist metadata, listing pages and search results.",
    )
    youtube_video_cache_ttl_seconds: int = Field(
        default=3_600,
        description="TTL for cached video-detail batches.",
    )

    # Imports.
    import_default_max_videos: int = Field(
        default=50,
        ge=1,
        description="Videos imported when the caller does not ask for a specific number.",
    )
    import_max_videos: int = Field(
        default=500,
        ge=1,
        description="Upper bound on videos imported from a single playlist.",
    )
    import_daily_limit_free: int = Field(
        default=2,
        ge=0,
        description="Imports per UTC day allowed for free-tier users.",
    )
    import_daily_limit_pro: int = Field(
        default=20,
        ge=0,
        description="Imports per UTC day allowed for pro-tier users.",
    )
    import_daily_limit_enterprise: int = Field(
        default=100,
        ge=0,
        description="Imports per UTC day allowed for enterprise-tier users.",
    )
    playlist_limit_free: int = Field(
        default=5,
        ge=0,
        description="Manually created playlists a free-tier user may own.",
    )
    playlist_limit_pro: int = Field(
        default=50,
        ge=0,
        description="Manually created playlists a pro-tier user may own.",
    )
    playlist_limit_enterprise: int = Field(
        default=1_000,
        ge=0,
        description="Manually created playlists an enterprise-tier user may own.",
    )

    # AI text generation.
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI chat completions endpoint.",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API.",
    )
    openai_default_model: str = Field(
        default="gpt-4o-mini",
        description="Model used when the user has no preferred model.",
    )
    openai_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="HTTP timeout for a single chat completion call.",
    )
    enhancement_cooldown_seconds: int = Field(
        default=3_600,
        ge=0,
        description="Minimum time between completed enhancements of one playlist and type.",
    )
    enhancement_min_length: int = Field(
        default=10,
        ge=1,
        description="Sanitized AI output shorter than this is rejected.",
    )
    enhancement_max_length: int = Field(
        default=2_000,
        ge=10,
        description="Sanitized AI output longer than this is truncated with an ellipsis.",
    )
    enhancement_context_video_limit: int = Field(
        default=20,
        ge=0,
        description="Videos (by position) included as context in enhancement prompts.",
    )

    # Content analysis.
    content_analysis_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3_600,
        description="TTL for cached content-analysis results.",
    )
    content_analysis_ai_enabled: bool = Field(
        default=True,
        description="Attempt an AI analysis pass during comprehensive analysis when a key is set.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PLAYLIST_CURATOR_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("PLAYLIST_CURATOR_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        normalized = str(value).strip().upper()
        if normalized in _LOG_LEVELS:
            return normalized
        raise ValueError(f"PLAYLIST_CURATOR_LOG_LEVEL must be one of: {', '.join(_LOG_LEVELS)}.")

    @field_validator("openai_base_url", mode="before")
    @classmethod
    def _normalize_openai_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PLAYLIST_CURATOR_OPENAI_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("PLAYLIST_CURATOR_OPENAI_BASE_URL must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("youtube_api_key", "openai_api_key", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    def import_daily_limit(self, tier: str) -> int:
        normalized = tier.strip().lower() if isinstance(tier, str) else "free"
        if normalized == "enterprise":
            return self.import_daily_limit_enterprise
        if normalized == "pro":
            return self.import_daily_limit_pro
        return self.import_daily_limit_free

    def playlist_limit(self, tier: str) -> int:
        normalized = tier.strip().lower() if isinstance(tier, str) else "free"
        if normalized == "enterprise":
            return self.playlist_limit_enterprise
        if normalized == "pro":
            return self.playlist_limit_pro
        return self.playlist_limit_free


def _validate_secrets(*, youtube_api_key: str | None) -> None:
    # The OpenAI key is optional: without it enhancements fail upstream and
    # comprehensive analysis skips the AI pass.
    errors: list[str] = []

    if youtube_api_key is None:
        errors.append("PLAYLIST_CURATOR_YOUTUBE_API_KEY is required for playlist imports.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid production configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_secrets:
        _validate_secrets(youtube_api_key=settings.youtube_api_key)

    return settings
