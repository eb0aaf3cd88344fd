from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, cast

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from curator.errors import InvalidIdentifierError, NoPublicVideosError, NotFoundError, UpstreamFailureError
from curator.repositories.playlist_repository import NewPlaylistVideo
from curator.repositories.youtube_quota_repository import QuotaUsage
from curator.services.cached_fetch import CachedFetcher, build_cache_key
from curator.services.quota_ledger import YOUTUBE_API_NAME, YOUTUBE_QUOTA_COSTS, QuotaLedger

LOGGER = logging.getLogger("playlist_curator.youtube")

MAX_PAGE_SIZE = 50
PLAYLIST_ID_LENGTH = 34
VIDEO_ID_LENGTH = 11
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2_000
CHANNEL_MAX_LENGTH = 100
THUMBNAIL_QUALITIES: tuple[str, ...] = ("maxres", "standard", "high", "medium", "default")

# Tried in order; the first structural match wins.
_PLAYLIST_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[?&]list=([a-zA-Z0-9_-]+)"),
    re.compile(r"youtube\.com/playlist\?list=([a-zA-Z0-9_-]+)"),
    re.compile(r"youtu\.be/playlist\?list=([a-zA-Z0-9_-]+)"),
    re.compile(r"^([a-zA-Z0-9_-]{34})$"),
)
_VIDEO_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"),
    re.compile(r"^([a-zA-Z0-9_-]{11})$"),
)
_ID_CHARSET = re.compile(r"^[a-zA-Z0-9_-]+$")
_DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


@dataclass(frozen=True)
class PlaylistMetadata:
    playlist_id: str
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnails: dict[str, Any]
    published_at: str | None
    item_count: int
    privacy: str


@dataclass(frozen=True)
class PlaylistVideoEntry:
    """One video of a playlist; listing fields, enriched in place by detail batches."""

    video_id: str
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnails: dict[str, Any]
    published_at: str | None
    position: int
    privacy: str
    duration: str = "0:00"
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0


@dataclass(frozen=True)
class VideoDetails:
    video_id: str
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnails: dict[str, Any]
    published_at: str | None
    duration: str
    view_count: int
    like_count: int
    comment_count: int
    privacy: str


@dataclass(frozen=True)
class PlaylistImport:
    playlist: PlaylistMetadata
    videos: list[PlaylistVideoEntry]
    imported_count: int
    total_found: int


@dataclass(frozen=True)
class VideoSearchResult:
    video_id: str
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnail_url: str | None
    published_at: str | None


@dataclass(frozen=True)
class SanitizedPlaylist:
    title: str
    description: str
    channel_title: str
    channel_id: str
    thumbnail_url: str | None
    published_at: str | None


@dataclass
class _DetailFetch:
    details: dict[str, VideoDetails] = field(default_factory=dict)
    failed_batches: int = 0


def extract_playlist_id(value: str) -> str:
    candidate = value.strip() if isinstance(value, str) else ""
    if not candidate:
        raise InvalidIdentifierError("A playlist URL or id is required.")

    for pattern in _PLAYLIST_ID_PATTERNS:
        match = pattern.search(candidate)
        if match is None:
            continue
        playlist_id = match.group(1)
        if len(playlist_id) != PLAYLIST_ID_LENGTH or not _ID_CHARSET.match(playlist_id):
            raise InvalidIdentifierError(f"Invalid YouTube playlist id: {playlist_id}")
        return playlist_id

    raise InvalidIdentifierError(f"Could not find a YouTube playlist id in: {candidate}")


def extract_video_id(value: str) -> str:
    candidate = value.strip() if isinstance(value, str) else ""
    if not candidate:
        raise InvalidIdentifierError("A video URL or id is required.")

    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(candidate)
        if match is None:
            continue
        video_id = match.group(1)
        if len(video_id) != VIDEO_ID_LENGTH or not _ID_CHARSET.match(video_id):
            raise InvalidIdentifierError(f"Invalid YouTube video id: {video_id}")
        return video_id

    raise InvalidIdentifierError(f"Could not find a YouTube video id in: {candidate}")


def parse_duration(token: object) -> str:
    """Render ``PT#H#M#S`` as ``H:MM:SS`` (hours present) or ``M:SS``; ``0:00`` otherwise."""
    if not isinstance(token, str) or not token:
        return "0:00"
    match = _DURATION_PATTERN.search(token)
    if match is None:
        return "0:00"

    hours, minutes, seconds = (int(group) if group else 0 for group in match.groups())
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def duration_to_seconds(display: str) -> int:
    """Inverse of :func:`parse_duration` for ``H:MM:SS`` / ``M:SS`` strings."""
    total = 0
    for part in display.split(":"):
        if not part.isdigit():
            return 0
        total = total * 60 + int(part)
    return total


def best_thumbnail_url(thumbnails: object) -> str | None:
    thumbnails_dict = _as_dict(thumbnails)
    for quality in THUMBNAIL_QUALITIES:
        url = _as_dict(thumbnails_dict.get(quality)).get("url")
        if isinstance(url, str) and url:
            return url
    return None


def sanitize_playlist_data(playlist: PlaylistMetadata) -> SanitizedPlaylist:
    return SanitizedPlaylist(
        title=playlist.title[:TITLE_MAX_LENGTH].strip(),
        description=playlist.description[:DESCRIPTION_MAX_LENGTH].strip(),
        channel_title=playlist.channel_title[:CHANNEL_MAX_LENGTH].strip(),
        channel_id=playlist.channel_id.strip(),
        thumbnail_url=best_thumbnail_url(playlist.thumbnails),
        published_at=playlist.published_at,
    )


def sanitize_video_data(video: PlaylistVideoEntry) -> NewPlaylistVideo:
    return NewPlaylistVideo(
        youtube_video_id=video.video_id,
        title=video.title[:TITLE_MAX_LENGTH].strip(),
        description=video.description[:DESCRIPTION_MAX_LENGTH].strip(),
        channel_name=video.channel_title[:CHANNEL_MAX_LENGTH].strip(),
        channel_id=video.channel_id.strip(),
        duration=video.duration or "0:00",
        thumbnail_url=best_thumbnail_url(video.thumbnails),
        published_at=video.published_at,
        view_count=max(0, video.view_count),
        like_count=max(0, video.like_count),
    )


def video_entry_from_details(details: VideoDetails, *, position: int = 0) -> PlaylistVideoEntry:
    return PlaylistVideoEntry(
        video_id=details.video_id,
        title=details.title,
        description=details.description,
        channel_title=details.channel_title,
        channel_id=details.channel_id,
        thumbnails=details.thumbnails,
        published_at=details.published_at,
        position=position,
        privacy=details.privacy,
        duration=details.duration,
        view_count=details.view_count,
        like_count=details.like_count,
        comment_count=details.comment_count,
    )


class YouTubeService:
    """YouTube Data API v3 access behind the response cache and the quota ledger.

    Every network call goes through ``CachedFetcher.fetch``: a cache hit costs no
    quota, a miss reserves the call's units before the request is sent.
    """

    def __init__(
        self,
        *,
        fetcher: CachedFetcher,
        quota_ledger: QuotaLedger,
        api_key: str | None = None,
        client_factory: Callable[[], Any] | None = None,
        playlist_cache_ttl_seconds: int = 1_800,
        video_cache_ttl_seconds: int = 3_600,
        page_size: int = MAX_PAGE_SIZE,
        max_pages: int = 10,
        request_delay_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._quota_ledger = quota_ledger
        self._api_key = api_key
        self._client_factory = client_factory
        self._playlist_cache_ttl_seconds = max(0, playlist_cache_ttl_seconds)
        self._video_cache_ttl_seconds = max(0, video_cache_ttl_seconds)
        self._page_size = max(1, min(MAX_PAGE_SIZE, page_size))
        self._max_pages = max(1, max_pages)
        self._request_delay_seconds = max(0.0, request_delay_seconds)
        self._sleep = sleep
        # googleapiclient clients are not thread-safe; keep one per worker thread.
        self._local = threading.local()

    def get_playlist(self, playlist_id: str) -> PlaylistMetadata:
        cache_key = build_cache_key("playlist", {"id": playlist_id})

        def fetch() -> dict[str, Any]:
            return self._execute(
                "playlists",
                lambda client: client.playlists().list(
                    part="snippet,status,contentDetails",
                    id=playlist_id,
                ),
            )

        response = self._fetcher.fetch(
            cache_key,
            "playlist",
            self._playlist_cache_ttl_seconds,
            fetch,
            quota_cost=YOUTUBE_QUOTA_COSTS["playlists"],
        )
        items = _as_list(_as_dict(response).get("items"))
        if not items:
            raise NotFoundError("Playlist not found or is private.")
        return _parse_playlist(_as_dict(items[0]), fallback_id=playlist_id)

    def get_playlist_videos(self, playlist_id: str, max_results: int = 50) -> list[PlaylistVideoEntry]:
        """Public listing entries, following page cursors.

        Stops when the cursor runs out, ``max_results`` is reached, or the page
        ceiling is hit.
        """
        wanted = max(1, max_results)
        page_size = min(self._page_size, wanted)
        videos: list[PlaylistVideoEntry] = []
        page_token: str | None = None

        for page_number in range(1, self._max_pages + 1):
            response = self._fetch_listing_page(playlist_id, page_token, page_size)
            for item in _as_list(response.get("items")):
                entry = _parse_listing_item(_as_dict(item))
                if entry is not None and entry.privacy == "public":
                    videos.append(entry)

            page_token = _as_optional_text(response.get("nextPageToken"))
            if page_token is None or len(videos) >= wanted:
                break
            if page_number == self._max_pages:
                LOGGER.warning(
                    "youtube listing page_ceiling_reached playlist_id=%s pages=%s",
                    playlist_id,
                    self._max_pages,
                )
                break
            self._pause()

        return videos[:wanted]

    def get_video_details(self, video_ids: list[str]) -> list[VideoDetails]:
        fetched = self._fetch_video_details(video_ids)
        return list(fetched.details.values())

    def import_playlist(self, source: str, max_videos: int = 100) -> PlaylistImport:
        playlist_id = extract_playlist_id(source)
        playlist = self.get_playlist(playlist_id)
        listing = self.get_playlist_videos(playlist_id, max_videos)
        if not listing:
            raise NoPublicVideosError("No public videos found in playlist.")

        fetched = self._fetch_video_details([entry.video_id for entry in listing])
        # Entries without a detail record (deleted, or their batch failed) are dropped.
        merged = [
            _merge_details(entry, fetched.details[entry.video_id])
            for entry in listing
            if entry.video_id in fetched.details
        ]

        public_videos = [video for video in merged if video.privacy == "public"]
        if not public_videos:
            raise NoPublicVideosError("No public videos found in playlist.")

        LOGGER.info(
            "youtube import_fetched playlist_id=%s listed=%s public=%s failed_batches=%s",
            playlist_id,
            len(listing),
            len(public_videos),
            fetched.failed_batches,
        )
        return PlaylistImport(
            playlist=playlist,
            videos=public_videos,
            imported_count=len(public_videos),
            total_found=len(listing),
        )

    def search_videos(self, query: str, max_results: int = 10) -> list[VideoSearchResult]:
        normalized_query = " ".join(query.split())
        if not normalized_query:
            raise InvalidIdentifierError("A search query is required.")
        limit = max(1, min(MAX_PAGE_SIZE, max_results))
        cache_key = build_cache_key("search", {"q": normalized_query, "maxResults": limit})

        def fetch() -> dict[str, Any]:
            return self._execute(
                "search",
                lambda client: client.search().list(
                    part="snippet",
                    q=normalized_query,
                    type="video",
                    maxResults=limit,
                ),
            )

        response = self._fetcher.fetch(
            cache_key,
            "search",
            self._playlist_cache_ttl_seconds,
            fetch,
            quota_cost=YOUTUBE_QUOTA_COSTS["search"],
        )
        results: list[VideoSearchResult] = []
        for item in _as_list(_as_dict(response).get("items")):
            parsed = _parse_search_item(_as_dict(item))
            if parsed is not None:
                results.append(parsed)
        return results

    def quota_usage(self) -> QuotaUsage:
        return self._quota_ledger.usage(YOUTUBE_API_NAME)

    def quota_history(self, days: int = 7) -> list[QuotaUsage]:
        return self._quota_ledger.history(YOUTUBE_API_NAME, days)

    def sweep_cache(self) -> int:
        return self._fetcher.sweep()

    def _fetch_listing_page(
        self,
        playlist_id: str,
        page_token: str | None,
        page_size: int,
    ) -> dict[str, Any]:
        cache_key = build_cache_key(
            "playlist_items",
            {"playlistId": playlist_id, "pageToken": page_token or "first", "maxResults": page_size},
        )

        def fetch() -> dict[str, Any]:
            query: dict[str, object] = {
                "part": "snippet,status",
                "playlistId": playlist_id,
                "maxResults": page_size,
            }
            if page_token is not None:
                query["pageToken"] = page_token
            return self._execute(
                "playlistItems",
                lambda client: client.playlistItems().list(**query),
            )

        response = self._fetcher.fetch(
            cache_key,
            "playlist_items",
            self._playlist_cache_ttl_seconds,
            fetch,
            quota_cost=YOUTUBE_QUOTA_COSTS["playlistItems"],
        )
        return _as_dict(response)

    def _fetch_video_details(self, video_ids: list[str]) -> _DetailFetch:
        unique_ids = list(dict.fromkeys(video_id for video_id in video_ids if video_id))
        result = _DetailFetch()

        for start in range(0, len(unique_ids), MAX_PAGE_SIZE):
            if start > 0:
                self._pause()
            batch = unique_ids[start : start + MAX_PAGE_SIZE]
            try:
                response = self._fetch_detail_batch(batch)
            except UpstreamFailureError:
                result.failed_batches += 1
                LOGGER.warning(
                    "youtube detail_batch_failed size=%s first_id=%s",
                    len(batch),
                    batch[0],
                    exc_info=True,
                )
                continue

            for item in _as_list(response.get("items")):
                details = _parse_video_details(_as_dict(item))
                if details is not None:
                    result.details[details.video_id] = details

        return result

    def _fetch_detail_batch(self, batch: list[str]) -> dict[str, Any]:
        cache_key = build_cache_key("videos", {"id": sorted(batch)})

        def fetch() -> dict[str, Any]:
            return self._execute(
                "videos",
                lambda client: client.videos().list(
                    part="snippet,contentDetails,statistics,status",
                    id=",".join(batch),
                    maxResults=len(batch),
                ),
            )

        response = self._fetcher.fetch(
            cache_key,
            "videos",
            self._video_cache_ttl_seconds,
            fetch,
            quota_cost=YOUTUBE_QUOTA_COSTS["videos"],
        )
        return _as_dict(response)

    def _execute(self, endpoint: str, build_request: Callable[[Any], Any]) -> dict[str, Any]:
        try:
            response = build_request(self._client()).execute()
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            LOGGER.warning("youtube request_failed endpoint=%s status=%s", endpoint, status)
            raise UpstreamFailureError(
                f"YouTube {endpoint} request failed with HTTP {status}: {exc}"
            ) from exc
        except (OSError, TimeoutError) as exc:
            LOGGER.warning("youtube request_failed endpoint=%s error=%s", endpoint, exc)
            raise UpstreamFailureError(f"YouTube {endpoint} request failed: {exc}") from exc
        return _as_dict(response)

    def _client(self) -> Any:
        client = getattr(self._local, "client", None)
        if client is None:
            if self._client_factory is not None:
                client = self._client_factory()
            else:
                client = _build_youtube_client(self._api_key)
            self._local.client = client
        return client

    def _pause(self) -> None:
        if self._request_delay_seconds > 0:
            self._sleep(self._request_delay_seconds)


def _build_youtube_client(api_key: str | None) -> Any:
    if api_key is None:
        raise UpstreamFailureError(
            "YouTube API key is not configured (set PLAYLIST_CURATOR_YOUTUBE_API_KEY)."
        )
    return build("youtube", "v3", developerKey=api_key, cache_discovery=False)


def _merge_details(entry: PlaylistVideoEntry, details: VideoDetails) -> PlaylistVideoEntry:
    # Position stays the listing's; the detail call knows nothing about playlist order.
    return replace(
        entry,
        title=details.title or entry.title,
        description=details.description or entry.description,
        channel_title=details.channel_title or entry.channel_title,
        channel_id=details.channel_id or entry.channel_id,
        thumbnails=details.thumbnails or entry.thumbnails,
        published_at=details.published_at or entry.published_at,
        duration=details.duration,
        view_count=details.view_count,
        like_count=details.like_count,
        comment_count=details.comment_count,
        privacy=details.privacy,
    )


def _parse_playlist(item: dict[str, Any], *, fallback_id: str) -> PlaylistMetadata:
    snippet = _as_dict(item.get("snippet"))
    content_details = _as_dict(item.get("contentDetails"))
    status = _as_dict(item.get("status"))
    return PlaylistMetadata(
        playlist_id=_as_text(item.get("id")) or fallback_id,
        title=_as_text(snippet.get("title")),
        description=_as_text(snippet.get("description")),
        channel_title=_as_text(snippet.get("channelTitle")),
        channel_id=_as_text(snippet.get("channelId")),
        thumbnails=_as_dict(snippet.get("thumbnails")),
        published_at=_as_optional_text(snippet.get("publishedAt")),
        item_count=_as_count(content_details.get("itemCount")),
        privacy=_as_text(status.get("privacyStatus")) or "public",
    )


def _parse_listing_item(item: dict[str, Any]) -> PlaylistVideoEntry | None:
    snippet = _as_dict(item.get("snippet"))
    status = _as_dict(item.get("status"))
    video_id = _as_optional_text(_as_dict(snippet.get("resourceId")).get("videoId"))
    if video_id is None:
        return None
    return PlaylistVideoEntry(
        video_id=video_id,
        title=_as_text(snippet.get("title")),
        description=_as_text(snippet.get("description")),
        channel_title=_as_text(snippet.get("videoOwnerChannelTitle"))
        or _as_text(snippet.get("channelTitle")),
        channel_id=_as_text(snippet.get("videoOwnerChannelId")) or _as_text(snippet.get("channelId")),
        thumbnails=_as_dict(snippet.get("thumbnails")),
        published_at=_as_optional_text(snippet.get("publishedAt")),
        position=_as_count(snippet.get("position")),
        privacy=_as_text(status.get("privacyStatus")),
    )


def _parse_video_details(item: dict[str, Any]) -> VideoDetails | None:
    video_id = _as_optional_text(item.get("id"))
    if video_id is None:
        return None
    snippet = _as_dict(item.get("snippet"))
    content_details = _as_dict(item.get("contentDetails"))
    statistics = _as_dict(item.get("statistics"))
    status = _as_dict(item.get("status"))
    return VideoDetails(
        video_id=video_id,
        title=_as_text(snippet.get("title")),
        description=_as_text(snippet.get("description")),
        channel_title=_as_text(snippet.get("channelTitle")),
        channel_id=_as_text(snippet.get("channelId")),
        thumbnails=_as_dict(snippet.get("thumbnails")),
        published_at=_as_optional_text(snippet.get("publishedAt")),
        duration=parse_duration(content_details.get("duration")),
        view_count=_as_count(statistics.get("viewCount")),
        like_count=_as_count(statistics.get("likeCount")),
        comment_count=_as_count(statistics.get("commentCount")),
        privacy=_as_text(status.get("privacyStatus")),
    )


def _parse_search_item(item: dict[str, Any]) -> VideoSearchResult | None:
    video_id = _as_optional_text(_as_dict(item.get("id")).get("videoId"))
    if video_id is None:
        return None
    snippet = _as_dict(item.get("snippet"))
    return VideoSearchResult(
        video_id=video_id,
        title=_as_text(snippet.get("title")),
        description=_as_text(snippet.get("description")),
        channel_title=_as_text(snippet.get("channelTitle")),
        channel_id=_as_text(snippet.get("channelId")),
        thumbnail_url=best_thumbnail_url(snippet.get("thumbnails")),
        published_at=_as_optional_text(snippet.get("publishedAt")),
    )


def _as_dict(value: object) -> dict[str, Any]:
    if isinstance(value, dict):
        return cast(dict[str, Any], value)
    return {}


def _as_list(value: object) -> list[Any]:
    if isinstance(value, list):
        return cast(list[Any], value)
    return []


def _as_text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _as_optional_text(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str):
        try:
            return max(0, int(value))
        except ValueError:
            return 0
    return 0
