from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from curator.dependencies import reset_cached_dependencies
from curator.main import create_app
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
from curator.telemetry import RecordingTelemetrySink, TelemetryClient

PLAYLIST_ID = "PLabcdefghijklmnopqrstuvwxyz012345"
OTHER_PLAYLIST_ID = "PLzyxwvutsrqponmlkjihgfedcba543210"
DAILY_IMPORT_LIMITS = {"free": 2, "pro": 20, "enterprise": 100}
PLAYLIST_LIMITS = {"free": 5, "pro": 50, "enterprise": 1_000}


def video_id_for(index: int) -> str:
    return f"vid{index:08d}"


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class _FakeRequest:
    def __init__(self, handler: Callable[..., dict[str, Any]], kwargs: dict[str, Any]) -> None:
        self._handler = handler
        self._kwargs = kwargs

    def execute(self) -> dict[str, Any]:
        return self._handler(**self._kwargs)


class _FakeResource:
    def __init__(self, handler: Callable[..., dict[str, Any]]) -> None:
        self._handler = handler

    def list(self, **kwargs: Any) -> _FakeRequest:
        return _FakeRequest(self._handler, kwargs)


class FakeYouTubeClient:
    """In-memory stand-in for the googleapiclient ``youtube`` v3 resource."""

    def __init__(self) -> None:
        self.playlists_by_id: dict[str, dict[str, Any]] = {}
        self.items_by_playlist: dict[str, list[dict[str, Any]]] = {}
        self.videos_by_id: dict[str, dict[str, Any]] = {}
        self.search_items: list[dict[str, Any]] = []
        self.failing_video_ids: set[str] = set()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def add_playlist(
        self,
        playlist_id: str,
        *,
        title: str = "Python Tutorial Series",
        description: str = "Learn Python step by step.",
        video_count: int = 3,
        private_indexes: tuple[int, ...] = (),
    ) -> list[str]:
        self.playlists_by_id[playlist_id] = {
            "id": playlist_id,
            "snippet": {
                "title": title,
                "description": description,
                "channelTitle": "Teaching Channel",
                "channelId": "UC_teaching",
                "publishedAt": "2025-01-01T00:00:00Z",
                "thumbnails": {
                    "default": {"url": "https://i.ytimg.com/default.jpg"},
                    "high": {"url": "https://i.ytimg.com/high.jpg"},
                },
            },
            "contentDetails": {"itemCount": video_count},
            "status": {"privacyStatus": "public"},
        }
        video_ids: list[str] = []
        items: list[dict[str, Any]] = []
        for index in range(video_count):
            video_id = video_id_for(index)
            privacy = "private" if index in private_indexes else "public"
            video_ids.append(video_id)
            items.append(
                {
                    "snippet": {
                        "title": f"Python tutorial part {index + 1}",
                        "description": f"Lesson {index + 1} of the series.",
                        "channelTitle": "Teaching Channel",
                        "videoOwnerChannelTitle": "Teaching Channel",
                        "videoOwnerChannelId": "UC_teaching",
                        "position": index,
                        "publishedAt": "2025-01-02T00:00:00Z",
                        "resourceId": {"kind": "youtube#video", "videoId": video_id},
                        "thumbnails": {"medium": {"url": f"https://i.ytimg.com/{video_id}.jpg"}},
                    },
                    "status": {"privacyStatus": privacy},
                }
            )
            self.videos_by_id[video_id] = make_video_item(video_id, title=f"Python tutorial part {index + 1}")
        self.items_by_playlist[playlist_id] = items
        return video_ids

    def playlists(self) -> _FakeResource:
        return _FakeResource(self._list_playlists)

    def playlistItems(self) -> _FakeResource:  # noqa: N802
        return _FakeResource(self._list_playlist_items)

    def videos(self) -> _FakeResource:
        return _FakeResource(self._list_videos)

    def search(self) -> _FakeResource:
        return _FakeResource(self._search)

    def endpoint_calls(self, endpoint: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == endpoint]

    def _list_playlists(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("playlists", kwargs))
        playlist = self.playlists_by_id.get(str(kwargs["id"]))
        return {"items": [playlist] if playlist is not None else []}

    def _list_playlist_items(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("playlistItems", kwargs))
        items = self.items_by_playlist.get(str(kwargs["playlistId"]), [])
        start = int(kwargs.get("pageToken") or 0)
        page_size = int(kwargs["maxResults"])
        response: dict[str, Any] = {"items": items[start : start + page_size]}
        if start + page_size < len(items):
            response["nextPageToken"] = str(start + page_size)
        return response

    def _list_videos(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("videos", kwargs))
        requested = str(kwargs["id"]).split(",")
        if any(video_id in self.failing_video_ids for video_id in requested):
            raise OSError("connection reset by peer")
        return {
            "items": [
                self.videos_by_id[video_id] for video_id in requested if video_id in self.videos_by_id
            ]
        }

    def _search(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("search", kwargs))
        return {"items": self.search_items[: int(kwargs["maxResults"])]}


def make_video_item(
    video_id: str,
    *,
    title: str = "Advanced Python performance deep dive",
    duration: str = "PT10M5S",
    privacy: str = "public",
) -> dict[str, Any]:
    return {
        "id": video_id,
        "snippet": {
            "title": title,
            "description": f"Details for {title}.",
            "channelTitle": "Teaching Channel",
            "channelId": "UC_teaching",
            "publishedAt": "2025-01-02T00:00:00Z",
            "thumbnails": {"maxres": {"url": f"https://i.ytimg.com/{video_id}/maxres.jpg"}},
        },
        "contentDetails": {"duration": duration},
        "statistics": {"viewCount": "1500", "likeCount": "120", "commentCount": "7"},
        "status": {"privacyStatus": privacy},
    }


def chat_response(
    content: str,
    *,
    prompt_tokens: int = 120,
    completion_tokens: int = 80,
) -> dict[str, Any]:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@dataclass
class FakeOpenAITransport:
    """Replaces ``ai_client._post_json``; replies are consumed in order."""

    replies: list[tuple[int, dict[str, Any]]] = field(default_factory=list)
    requests: list[dict[str, Any]] = field(default_factory=list)

    def queue(self, content: str, *, status: int = 200, **usage: int) -> None:
        self.replies.append((status, chat_response(content, **usage)))

    def __call__(
        self,
        *,
        url: str,
        api_key: str,
        body: dict[str, Any],
        timeout_seconds: float,
    ) -> tuple[int, dict[str, Any]]:
        self.requests.append({"url": url, "api_key": api_key, "body": body, "timeout": timeout_seconds})
        if not self.replies:
            return 500, {"error": {"message": "no reply queued"}}
        return self.replies.pop(0)


@dataclass
class CuratorStack:
    db: Database
    clock: FakeClock
    youtube_client: FakeYouTubeClient
    telemetry_sink: RecordingTelemetrySink
    sleeps: list[float]
    quota_ledger: QuotaLedger
    cache_repository: YouTubeCacheRepository
    youtube_service: YouTubeService
    playlist_repository: PlaylistRepository
    import_repository: ImportRepository
    enhancement_repository: EnhancementRepository
    preferences_repository: PreferencesRepository
    analytics_repository: AnalyticsRepository
    analysis_repository: ContentAnalysisRepository
    user_repository: UserRepository
    import_pipeline: ImportPipeline
    analysis_engine: ContentAnalysisEngine
    playlist_service: PlaylistService
    enhancement_service: EnhancementService


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "curator.db")
    db.initialize()
    return db


@pytest.fixture
def youtube_client() -> FakeYouTubeClient:
    return FakeYouTubeClient()


@pytest.fixture
def openai_transport(monkeypatch: pytest.MonkeyPatch) -> FakeOpenAITransport:
    transport = FakeOpenAITransport()
    monkeypatch.setattr("curator.services.ai_client._post_json", transport)
    return transport


@pytest.fixture
def build_stack(
    database: Database,
    clock: FakeClock,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> Callable[..., CuratorStack]:
    def _build(*, daily_quota_limit: int = 10_000, with_ai: bool = True) -> CuratorStack:
        sink = RecordingTelemetrySink()
        telemetry = TelemetryClient(enabled=True, sink=sink)
        sleeps: list[float] = []
        quota_ledger = QuotaLedger(
            YouTubeQuotaRepository(database, clock=clock),
            daily_limit=daily_quota_limit,
        )
        cache_repository = YouTubeCacheRepository(database, clock=clock)
        youtube_service = YouTubeService(
            fetcher=CachedFetcher(
                cache_repository=cache_repository,
                quota_ledger=quota_ledger,
                api_name=YOUTUBE_API_NAME,
            ),
            quota_ledger=quota_ledger,
            client_factory=lambda: youtube_client,
            sleep=sleeps.append,
        )
        playlist_repository = PlaylistRepository(database, clock=clock)
        import_repository = ImportRepository(database, clock=clock)
        enhancement_repository = EnhancementRepository(database, clock=clock)
        preferences_repository = PreferencesRepository(database, clock=clock)
        analytics_repository = AnalyticsRepository(database, clock=clock)
        analysis_repository = ContentAnalysisRepository(database, clock=clock)
        user_repository = UserRepository(database, clock=clock)
        ai_client = OpenAIClient(api_key="sk-test") if with_ai else None
        analysis_engine = ContentAnalysisEngine(
            repository=analysis_repository,
            playlist_repository=playlist_repository,
            ai_client=ai_client,
            clock=clock,
        )
        return CuratorStack(
            db=database,
            clock=clock,
            youtube_client=youtube_client,
            telemetry_sink=sink,
            sleeps=sleeps,
            quota_ledger=quota_ledger,
            cache_repository=cache_repository,
            youtube_service=youtube_service,
            playlist_repository=playlist_repository,
            import_repository=import_repository,
            enhancement_repository=enhancement_repository,
            preferences_repository=preferences_repository,
            analytics_repository=analytics_repository,
            analysis_repository=analysis_repository,
            user_repository=user_repository,
            import_pipeline=ImportPipeline(
                youtube_service=youtube_service,
                import_repository=import_repository,
                playlist_repository=playlist_repository,
                user_repository=user_repository,
                analytics_repository=analytics_repository,
                daily_limit_for_tier=lambda tier: DAILY_IMPORT_LIMITS.get(tier, 2),
                telemetry=telemetry,
                clock=clock,
            ),
            analysis_engine=analysis_engine,
            playlist_service=PlaylistService(
                playlist_repository=playlist_repository,
                analytics_repository=analytics_repository,
                user_repository=user_repository,
                youtube_service=youtube_service,
                analysis_engine=analysis_engine,
                playlist_limit_for_tier=lambda tier: PLAYLIST_LIMITS.get(tier, 5),
                clock=clock,
            ),
            enhancement_service=EnhancementService(
                playlist_repository=playlist_repository,
                enhancement_repository=enhancement_repository,
                preferences_repository=preferences_repository,
                analytics_repository=analytics_repository,
                ai_client=ai_client,
                telemetry=telemetry,
                clock=clock,
            ),
        )

    return _build


@pytest.fixture
def stack(build_stack: Callable[..., CuratorStack]) -> CuratorStack:
    return build_stack()


def _serve_app(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    youtube_client: FakeYouTubeClient,
    *,
    openai_api_key: str | None,
) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("PLAYLIST_CURATOR_DATA_DIR", str(data_dir))
    monkeypatch.setenv("PLAYLIST_CURATOR_YOUTUBE_API_KEY", "test-youtube-key")
    if openai_api_key is None:
        monkeypatch.delenv("PLAYLIST_CURATOR_OPENAI_API_KEY", raising=False)
    else:
        monkeypatch.setenv("PLAYLIST_CURATOR_OPENAI_API_KEY", openai_api_key)
    monkeypatch.setenv("PLAYLIST_CURATOR_YOUTUBE_REQUEST_DELAY_SECONDS", "0")
    monkeypatch.setenv("PLAYLIST_CURATOR_TELEMETRY_SINK", "none")
    monkeypatch.setattr(
        "curator.services.youtube_service._build_youtube_client",
        lambda api_key: youtube_client,
    )
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> Iterator[TestClient]:
    yield from _serve_app(tmp_path, monkeypatch, youtube_client, openai_api_key="sk-test")


@pytest.fixture
def client_without_ai(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> Iterator[TestClient]:
    yield from _serve_app(tmp_path, monkeypatch, youtube_client, openai_api_key=None)
