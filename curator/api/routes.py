from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Response

from curator.dependencies import (
    get_analysis_engine,
    get_enhancement_service,
    get_import_pipeline,
    get_playlist_service,
    get_youtube_service,
)
from curator.models.contracts import (
    AddVideoRequest,
    CacheSweepResponse,
    ComprehensiveAnalysisResponse,
    EnhanceResponse,
    EnhancementResponse,
    ImportFailureResponse,
    ImportJobResponse,
    ImportRequest,
    ImportResponse,
    MoveVideoRequest,
    PlaylistAnalyticsResponse,
    PlaylistCreateRequest,
    PlaylistDetailResponse,
    PlaylistResponse,
    PlaylistUpdateRequest,
    PlaylistVideoResponse,
    PreferencesResponse,
    PreferencesUpdateRequest,
    QuotaUsageResponse,
    RatingRequest,
    ReorderVideosRequest,
    UsageSummaryResponse,
    UserStatsResponse,
    VideoSearchResultResponse,
)
from curator.services.content_analysis import ContentAnalysisEngine
from curator.services.enhancement_service import EnhancementService
from curator.services.import_pipeline import ImportPipeline
from curator.services.playlist_service import PlaylistService
from curator.services.youtube_service import YouTubeService

router = APIRouter()

_NULLABLE_PREFERENCES: frozenset[str] = frozenset({"preferred_ai_model", "custom_prompt_additions"})

UserId = Annotated[
    str,
    Header(alias="X-User-Id", min_length=1, max_length=120, description="Authenticated caller id."),
]


def _playlist_detail(service: PlaylistService, playlist_id: str, user_id: str) -> PlaylistDetailResponse:
    playlist, videos = service.get_playlist(playlist_id, user_id)
    return PlaylistDetailResponse(
        playlist=PlaylistResponse.model_validate(playlist),
        videos=[PlaylistVideoResponse.model_validate(video) for video in videos],
    )


@router.post(
    "/imports",
    response_model=ImportResponse,
    status_code=201,
    tags=["imports"],
    operation_id="import_playlist",
)
def import_playlist(
    request: ImportRequest,
    user_id: UserId,
    pipeline: Annotated[ImportPipeline, Depends(get_import_pipeline)],
) -> ImportResponse:
    outcome = pipeline.run(
        user_id=user_id,
        source=request.source,
        max_videos=request.max_videos,
        custom_title=request.custom_title,
        custom_description=request.custom_description,
    )
    return ImportResponse(
        job=ImportJobResponse.model_validate(outcome.job),
        playlist=PlaylistResponse.model_validate(outcome.playlist),
        videos_imported=outcome.videos_imported,
        total_videos=outcome.total_videos,
        failures=[ImportFailureResponse.model_validate(failure) for failure in outcome.failures],
    )


@router.get(
    "/imports",
    response_model=list[ImportJobResponse],
    tags=["imports"],
    operation_id="list_imports",
)
def list_imports(
    user_id: UserId,
    pipeline: Annotated[ImportPipeline, Depends(get_import_pipeline)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[ImportJobResponse]:
    return [ImportJobResponse.model_validate(job) for job in pipeline.list_jobs(user_id, limit)]


@router.get(
    "/imports/{import_id}",
    response_model=ImportJobResponse,
    tags=["imports"],
    operation_id="get_import",
)
def get_import(
    import_id: str,
    user_id: UserId,
    pipeline: Annotated[ImportPipeline, Depends(get_import_pipeline)],
) -> ImportJobResponse:
    return ImportJobResponse.model_validate(pipeline.get_job(import_id, user_id))


@router.get(
    "/youtube/quota",
    response_model=QuotaUsageResponse,
    tags=["youtube"],
    operation_id="youtube_quota_usage",
)
def youtube_quota_usage(
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
) -> QuotaUsageResponse:
    return QuotaUsageResponse.model_validate(youtube_service.quota_usage())


@router.get(
    "/youtube/quota/history",
    response_model=list[QuotaUsageResponse],
    tags=["youtube"],
    operation_id="youtube_quota_history",
)
def youtube_quota_history(
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
    days: Annotated[int, Query(ge=1, le=90)] = 7,
) -> list[QuotaUsageResponse]:
    return [QuotaUsageResponse.model_validate(day) for day in youtube_service.quota_history(days)]


@router.post(
    "/youtube/cache/sweep",
    response_model=CacheSweepResponse,
    tags=["youtube"],
    operation_id="youtube_cache_sweep",
)
def youtube_cache_sweep(
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
    analysis_engine: Annotated[ContentAnalysisEngine, Depends(get_analysis_engine)],
) -> CacheSweepResponse:
    return CacheSweepResponse(
        deleted_response_rows=youtube_service.sweep_cache(),
        deleted_analysis_rows=analysis_engine.sweep(),
    )


@router.get(
    "/youtube/search",
    response_model=list[VideoSearchResultResponse],
    tags=["youtube"],
    operation_id="youtube_search",
)
def youtube_search(
    youtube_service: Annotated[YouTubeService, Depends(get_youtube_service)],
    q: Annotated[str, Query(min_length=1, max_length=200)],
    max_results: Annotated[int, Query(ge=1, le=50)] = 10,
) -> list[VideoSearchResultResponse]:
    return [
        VideoSearchResultResponse.model_validate(result)
        for result in youtube_service.search_videos(q, max_results)
    ]


@router.get(
    "/playlists",
    response_model=list[PlaylistResponse],
    tags=["playlists"],
    operation_id="list_playlists",
)
def list_playlists(
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> list[PlaylistResponse]:
    return [PlaylistResponse.model_validate(playlist) for playlist in service.list_playlists(user_id)]


@router.post(
    "/playlists",
    response_model=PlaylistResponse,
    status_code=201,
    tags=["playlists"],
    operation_id="create_playlist",
)
def create_playlist(
    request: PlaylistCreateRequest,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistResponse:
    created = service.create_playlist(user_id, request.title, request.description)
    return PlaylistResponse.model_validate(created)


@router.put(
    "/playlists/{playlist_id}",
    response_model=PlaylistResponse,
    tags=["playlists"],
    operation_id="update_playlist",
)
def update_playlist(
    playlist_id: str,
    request: PlaylistUpdateRequest,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistResponse:
    changes = {name: getattr(request, name) for name in request.model_fields_set}
    return PlaylistResponse.model_validate(service.update_playlist(playlist_id, user_id, changes))


@router.delete(
    "/playlists/{playlist_id}",
    status_code=204,
    tags=["playlists"],
    operation_id="delete_playlist",
)
def delete_playlist(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> Response:
    service.delete_playlist(playlist_id, user_id)
    return Response(status_code=204)


@router.get(
    "/playlists/{playlist_id}/analytics",
    response_model=PlaylistAnalyticsResponse,
    tags=["playlists"],
    operation_id="playlist_analytics",
)
def playlist_analytics(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> PlaylistAnalyticsResponse:
    return PlaylistAnalyticsResponse.model_validate(service.playlist_analytics(playlist_id, user_id, days))


@router.get(
    "/stats",
    response_model=UserStatsResponse,
    tags=["playlists"],
    operation_id="user_stats",
)
def user_stats(
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> UserStatsResponse:
    return UserStatsResponse.model_validate(service.user_stats(user_id))


@router.get(
    "/playlists/{playlist_id}",
    response_model=PlaylistDetailResponse,
    tags=["playlists"],
    operation_id="get_playlist",
)
def get_playlist(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistDetailResponse:
    return _playlist_detail(service, playlist_id, user_id)


@router.get(
    "/playlists/{playlist_id}/videos",
    response_model=list[PlaylistVideoResponse],
    tags=["playlists"],
    operation_id="list_playlist_videos",
)
def list_playlist_videos(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> list[PlaylistVideoResponse]:
    _, videos = service.get_playlist(playlist_id, user_id)
    return [PlaylistVideoResponse.model_validate(video) for video in videos]


@router.post(
    "/playlists/{playlist_id}/videos",
    response_model=PlaylistVideoResponse,
    status_code=201,
    tags=["playlists"],
    operation_id="add_playlist_video",
)
def add_playlist_video(
    playlist_id: str,
    request: AddVideoRequest,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistVideoResponse:
    added = service.add_video(playlist_id, user_id, request.source, request.position)
    return PlaylistVideoResponse.model_validate(added)


@router.delete(
    "/playlists/{playlist_id}/videos/{video_id}",
    status_code=204,
    tags=["playlists"],
    operation_id="remove_playlist_video",
)
def remove_playlist_video(
    playlist_id: str,
    video_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> Response:
    service.remove_video(playlist_id, user_id, video_id)
    return Response(status_code=204)


@router.put(
    "/playlists/{playlist_id}/videos/reorder",
    response_model=PlaylistDetailResponse,
    tags=["playlists"],
    operation_id="reorder_playlist_videos",
)
def reorder_playlist_videos(
    playlist_id: str,
    request: ReorderVideosRequest,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistDetailResponse:
    service.reorder_videos(playlist_id, user_id, request.video_ids)
    return _playlist_detail(service, playlist_id, user_id)


@router.put(
    "/playlists/{playlist_id}/videos/{video_id}/position",
    response_model=PlaylistDetailResponse,
    tags=["playlists"],
    operation_id="move_playlist_video",
)
def move_playlist_video(
    playlist_id: str,
    video_id: str,
    request: MoveVideoRequest,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> PlaylistDetailResponse:
    service.move_video(playlist_id, user_id, video_id, request.position)
    return _playlist_detail(service, playlist_id, user_id)


@router.get(
    "/playlists/{playlist_id}/analysis",
    response_model=ComprehensiveAnalysisResponse,
    tags=["analysis"],
    operation_id="analyze_playlist",
)
def analyze_playlist(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[PlaylistService, Depends(get_playlist_service)],
) -> ComprehensiveAnalysisResponse:
    return ComprehensiveAnalysisResponse.model_validate(service.analyze(playlist_id, user_id))


@router.post(
    "/playlists/{playlist_id}/enhance",
    response_model=EnhanceResponse,
    tags=["enhancements"],
    operation_id="enhance_playlist",
)
def enhance_playlist(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
) -> EnhanceResponse:
    result = service.enhance_description(playlist_id, user_id)
    return EnhanceResponse(
        enhancement=EnhancementResponse.model_validate(result.enhancement),
        playlist=PlaylistResponse.model_validate(result.playlist),
    )


@router.get(
    "/playlists/{playlist_id}/enhancements",
    response_model=list[EnhancementResponse],
    tags=["enhancements"],
    operation_id="list_playlist_enhancements",
)
def list_playlist_enhancements(
    playlist_id: str,
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[EnhancementResponse]:
    return [
        EnhancementResponse.model_validate(record)
        for record in service.list_history(playlist_id, user_id, limit)
    ]


@router.post(
    "/enhancements/{enhancement_id}/revert",
    response_model=PlaylistResponse,
    tags=["enhancements"],
    operation_id="revert_enhancement",
)
def revert_enhancement(
    enhancement_id: str,
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
) -> PlaylistResponse:
    return PlaylistResponse.model_validate(service.revert(enhancement_id, user_id))


@router.post(
    "/enhancements/{enhancement_id}/rating",
    response_model=EnhancementResponse,
    tags=["enhancements"],
    operation_id="rate_enhancement",
)
def rate_enhancement(
    enhancement_id: str,
    request: RatingRequest,
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
) -> EnhancementResponse:
    return EnhancementResponse.model_validate(service.rate(enhancement_id, user_id, request.rating))


@router.get(
    "/ai/usage",
    response_model=UsageSummaryResponse,
    tags=["ai"],
    operation_id="ai_usage_summary",
)
def ai_usage_summary(
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> UsageSummaryResponse:
    return UsageSummaryResponse.model_validate(service.usage_summary(user_id, days))


@router.get(
    "/ai/preferences",
    response_model=PreferencesResponse,
    tags=["ai"],
    operation_id="get_ai_preferences",
)
def get_ai_preferences(
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
) -> PreferencesResponse:
    return PreferencesResponse.model_validate(service.get_preferences(user_id))


@router.put(
    "/ai/preferences",
    response_model=PreferencesResponse,
    tags=["ai"],
    operation_id="update_ai_preferences",
)
def update_ai_preferences(
    request: PreferencesUpdateRequest,
    user_id: UserId,
    service: Annotated[EnhancementService, Depends(get_enhancement_service)],
) -> PreferencesResponse:
    changes = {
        field_name: value
        for field_name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or field_name in _NULLABLE_PREFERENCES
    }
    return PreferencesResponse.model_validate(service.update_preferences(user_id, changes))
