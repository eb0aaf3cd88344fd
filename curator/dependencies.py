from __future__ import annotations

from functools import lru_cache

from curator.config import AppSettings, load_settings
from curator.repositories.analytics_repository import AnalyticsRepository
from curator.repositories.content_analysis_repository import ContentAnalysisRepository
from curator.repositories.database import Database
from curator.repositories.enhancement_repository import EnhancementRepository
from curator.repositories.import_repository import ImportRepository
from curator.repositories.playlist_repository import PlaylistRepository
from curator.repositories.preferences_repository import PreferencesRepository
from curator.repositories.user_repository import UserRepository
from curator.repositories.youtube_cache_repository import YouTubeCacheRepository
from curator.repositories.youtube_quota_repository import YouTubeQuotaRepository
from curator.services.ai_client import OpenAIClient
from curator.services.cached_fetch import CachedFetcher
from curator.services.content_analysis import ContentAnalysisEngine
from curator.services.enhancement_service import EnhancementService
from curator.services.import_pipeline import ImportPipeline
from curator.services.playlist_service import PlaylistService
from curator.services.quota_ledger import YOUTUBE_API_NAME, QuotaLedger
from curator.services.youtube_service import YouTubeService
from curator.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_ai_client() -> OpenAIClient | None:
    settings = get_settings()
    if settings.openai_api_key is None:
        return None
    return OpenAIClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        default_model=settings.openai_default_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_youtube_service() -> YouTubeService:
    settings = get_settings()
    database = get_database()
    quota_ledger = QuotaLedger(
        YouTubeQuotaRepository(database),
        daily_limit=settings.youtube_daily_quota_limit,
    )
    return YouTubeService(
        fetcher=CachedFetcher(
            cache_repository=YouTubeCacheRepository(database),
            quota_ledger=quota_ledger,
            api_name=YOUTUBE_API_NAME,
        ),
        quota_ledger=quota_ledger,
        api_key=settings.youtube_api_key,
        playlist_cache_ttl_seconds=settings.youtube_playlist_cache_ttl_seconds,
        video_cache_ttl_seconds=settings.youtube_video_cache_ttl_seconds,
        page_size=settings.youtube_page_size,
        max_pages=settings.youtube_max_pages,
        request_delay_seconds=settings.youtube_request_delay_seconds,
    )


@lru_cache(maxsize=1)
def get_import_pipeline() -> ImportPipeline:
    settings = get_settings()
    database = get_database()
    return ImportPipeline(
        youtube_service=get_youtube_service(),
        import_repository=ImportRepository(database),
        playlist_repository=PlaylistRepository(database),
        user_repository=UserRepository(database),
        analytics_repository=AnalyticsRepository(database),
        daily_limit_for_tier=settings.import_daily_limit,
        default_max_videos=settings.import_default_max_videos,
        max_videos_limit=settings.import_max_videos,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_analysis_engine() -> ContentAnalysisEngine:
    settings = get_settings()
    database = get_database()
    return ContentAnalysisEngine(
        repository=ContentAnalysisRepository(database),
        playlist_repository=PlaylistRepository(database),
        ai_client=get_ai_client() if settings.content_analysis_ai_enabled else None,
        cache_ttl_seconds=settings.content_analysis_cache_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_playlist_service() -> PlaylistService:
    settings = get_settings()
    database = get_database()
    return PlaylistService(
        playlist_repository=PlaylistRepository(database),
        analytics_repository=AnalyticsRepository(database),
        user_repository=UserRepository(database),
        youtube_service=get_youtube_service(),
        analysis_engine=get_analysis_engine(),
        playlist_limit_for_tier=settings.playlist_limit,
    )


@lru_cache(maxsize=1)
def get_enhancement_service() -> EnhancementService:
    settings = get_settings()
    database = get_database()
    return EnhancementService(
        playlist_repository=PlaylistRepository(database),
        enhancement_repository=EnhancementRepository(database),
        preferences_repository=PreferencesRepository(database),
        analytics_repository=AnalyticsRepository(database),
        ai_client=get_ai_client(),
        cooldown_seconds=settings.enhancement_cooldown_seconds,
        min_length=settings.enhancement_min_length,
        max_length=settings.enhancement_max_length,
        context_video_limit=settings.enhancement_context_video_limit,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_enhancement_service.cache_clear()
    get_playlist_service.cache_clear()
    get_analysis_engine.cache_clear()
    get_import_pipeline.cache_clear()
    get_youtube_service.cache_clear()
    get_ai_client.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
