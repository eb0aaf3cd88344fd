from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EnhancementStyle = Literal["educational", "professional", "casual", "creative", "technical"]
ContentLevel = Literal["beginner", "intermediate", "advanced"]


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class ErrorBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: str
    message: str
    retryable: bool


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


class ImportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1, max_length=2048, description="Playlist URL or bare id.")
    max_videos: int | None = Field(default=None, ge=1, le=500)
    custom_title: str | None = Field(default=None, max_length=200)
    custom_description: str | None = Field(default=None, max_length=2000)

    @field_validator("source")
    @classmethod
    def _validate_source(cls, value: str) -> str:
        normalized = value.strip()
        if any(ord(character) < 32 for character in normalized):
            raise ValueError("source contains control characters")
        return normalized

    @field_validator("custom_title", "custom_description", mode="before")
    @classmethod
    def _normalize_optional_fields(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class ImportJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    playlist_id: str | None
    youtube_playlist_id: str
    youtube_playlist_url: str
    status: Literal["pending", "completed", "failed"]
    videos_imported: int
    total_videos: int
    progress_percentage: int | None
    error_message: str | None
    started_at: str
    completed_at: str | None


class ImportFailureResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    video_id: str
    error: str


class PlaylistResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    youtube_id: str | None
    title: str
    original_description: str | None
    ai_description: str | None
    channel_title: str | None
    thumbnail_url: str | None
    video_count: int
    enhanced: bool
    enhancement_status: str
    enhancement_version: int
    last_enhanced_at: str | None
    created_at: str
    updated_at: str


class PlaylistVideoResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    youtube_video_id: str
    title: str
    description: str | None
    channel_name: str | None
    channel_id: str | None
    duration: str
    thumbnail_url: str | None
    published_at: str | None
    view_count: int
    like_count: int
    position: int
    added_at: str


class ImportResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job: ImportJobResponse
    playlist: PlaylistResponse
    videos_imported: int
    total_videos: int
    failures: list[ImportFailureResponse]


class PlaylistDetailResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    playlist: PlaylistResponse
    videos: list[PlaylistVideoResponse]


class PlaylistCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("title cannot be blank")
        return normalized

    @field_validator("description", mode="before")
    @classmethod
    def _normalize_description(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class PlaylistUpdateRequest(BaseModel):
    """Only the fields that are sent change; an explicit ``null`` description clears it."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError("title cannot be null")
        normalized = value.strip()
        if not normalized:
            raise ValueError("title cannot be blank")
        return normalized

    @field_validator("description", mode="before")
    @classmethod
    def _normalize_description(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class ActivityCountResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    event_type: str
    date_utc: str
    count: int


class AnalyticsEventResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    event_type: str
    metadata: dict[str, Any]
    created_at: str


class PlaylistAnalyticsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    playlist_id: str
    days: int
    activity: list[ActivityCountResponse]
    recent_events: list[AnalyticsEventResponse]


class UserStatsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    total_playlists: int
    enhanced_count: int
    total_videos: int
    recent_activity: list[ActivityCountResponse]


class AddVideoRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1, max_length=2048, description="Video URL or bare id.")
    position: int | None = Field(default=None, ge=0)


class MoveVideoRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    position: int = Field(ge=0)


class ReorderVideosRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_ids: list[str] = Field(min_length=1)


class QuotaUsageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    api_name: str
    date_utc: str
    units_used: int
    requests_count: int
    daily_limit: int


class CacheSweepResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deleted_response_rows: int
    deleted_analysis_rows: int


class VideoSearchResultResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    video_id: str
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnail_url: str | None
    published_at: str | None


class EnhancementResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    playlist_id: str
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


class EnhanceResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enhancement: EnhancementResponse
    playlist: PlaylistResponse


class RatingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: int = Field(ge=1, le=5)


class AnalysisResultResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    kind: str
    data: dict[str, Any]
    confidence: float
    cached: bool
    error: str | None = None


class ComprehensiveAnalysisResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    playlist_id: str
    topics: AnalysisResultResponse
    themes: AnalysisResultResponse
    difficulty: AnalysisResultResponse
    keywords: AnalysisResultResponse
    ai_analysis: dict[str, Any] | None
    ai_confidence: float
    video_count: int


class ModelUsageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True, protected_namespaces=())

    model_name: str
    requests_count: int
    tokens_used: int
    cost_usd: float


class UsageSummaryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    days: int
    requests_count: int
    tokens_used: int
    cost_usd: float
    success_count: int
    error_count: int
    by_model: list[ModelUsageResponse]


class PreferencesResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

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


class PreferencesUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enhancement_style: EnhancementStyle | None = None
    preferred_ai_model: str | None = Field(default=None, max_length=100)
    language_preference: str | None = Field(default=None, min_length=2, max_length=10)
    content_level: ContentLevel | None = None
    include_keywords: bool | None = None
    include_learning_objectives: bool | None = None
    include_target_audience: bool | None = None
    include_difficulty_assessment: bool | None = None
    max_description_length: int | None = Field(default=None, ge=100, le=2000)
    custom_prompt_additions: str | None = Field(default=None, max_length=1000)


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["ok"]
