from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from curator.errors import CuratorError
from curator.repositories.common import Clock, utc_now
from curator.repositories.content_analysis_repository import ContentAnalysisRepository
from curator.repositories.playlist_repository import PlaylistRepository
from curator.services.ai_client import OpenAIClient, PlaylistContext, VideoContext
from curator.services.youtube_service import duration_to_seconds

LOGGER = logging.getLogger("playlist_curator.analysis")

ANALYSIS_KINDS: tuple[str, ...] = ("topics", "themes", "difficulty", "keywords")
AI_ANALYSIS_KIND = "ai-analysis"
AI_ANALYSIS_CONFIDENCE = 0.9
AI_CONTEXT_VIDEO_LIMIT = 20

TOPIC_PATTERNS: dict[str, tuple[str, ...]] = {
    "technology": (
        "javascript", "python", "react", "node", "css", "html", "typescript",
        "programming", "coding", "development", "software", "web", "mobile",
        "ai", "machine learning", "data science", "cloud", "aws", "docker",
    ),
    "science": (
        "physics", "chemistry", "biology", "mathematics", "calculus", "algebra",
        "statistics", "research", "experiment", "theory", "analysis",
    ),
    "business": (
        "marketing", "sales", "finance", "management", "strategy", "entrepreneurship",
        "leadership", "productivity", "economics", "accounting",
    ),
    "creative": (
        "design", "art", "photography", "video", "music", "creative", "drawing",
        "illustration", "animation", "storytelling",
    ),
}

DIFFICULTY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "beginner": (
        "intro", "introduction", "basics", "fundamentals", "getting started",
        "beginner", "basic", "simple", "easy", "tutorial", "how to",
        "step by step", "guide", "overview", "primer",
    ),
    "intermediate": (
        "intermediate", "practical", "application", "implementing",
        "building", "creating", "developing", "examples", "case study",
        "workshop", "hands-on", "project",
    ),
    "advanced": (
        "advanced", "expert", "deep dive", "optimization", "performance",
        "architecture", "scaling", "complex", "sophisticated", "mastery",
        "professional", "enterprise", "production",
    ),
}

EDUCATIONAL_TITLE_PATTERNS: dict[str, re.Pattern[str]] = {
    "tutorial": re.compile(r"tutorial|how to|guide", re.IGNORECASE),
    "lecture": re.compile(r"lecture|lesson|class", re.IGNORECASE),
    "demo": re.compile(r"demo|demonstration|example", re.IGNORECASE),
    "review": re.compile(r"review|overview|summary", re.IGNORECASE),
}
INSTRUCTIONAL_FORMATS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("live-session", re.compile(r"live|stream", re.IGNORECASE)),
    ("qa-session", re.compile(r"q&a|questions", re.IGNORECASE)),
    ("hands-on", re.compile(r"hands.?on|practical", re.IGNORECASE)),
)
PROGRESSION_INDICATORS: tuple[str, ...] = (
    "part 1", "part 2", "episode", "lesson", "chapter",
    "intro", "advanced", "final", "conclusion",
)

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "should", "may", "might",
        "a", "an", "as", "if", "then", "than", "this", "that", "these", "those",
    }
)
TECHNICAL_KEYWORDS: tuple[str, ...] = (
    "programming", "coding", "development", "api", "database", "algorithm",
)
EDUCATIONAL_KEYWORDS: tuple[str, ...] = (
    "tutorial", "guide", "lesson", "course", "training", "learning",
)
_NON_WORD = re.compile(r"[^\w\s]")

HeuristicResult = tuple[dict[str, Any], float]


@dataclass(frozen=True)
class AnalysisResult:
    kind: str
    data: dict[str, Any]
    confidence: float
    cached: bool
    error: str | None = None


@dataclass(frozen=True)
class ComprehensiveAnalysis:
    playlist_id: str
    topics: AnalysisResult
    themes: AnalysisResult
    difficulty: AnalysisResult
    keywords: AnalysisResult
    ai_analysis: dict[str, Any] | None
    ai_confidence: float
    video_count: int


def default_analysis(kind: str) -> dict[str, Any]:
    defaults: dict[str, dict[str, Any]] = {
        "topics": {"topics": [], "allTopics": []},
        "themes": {"themes": [], "progression": {"hasProgression": False}},
        "difficulty": {"difficulty": "intermediate", "indicators": {}},
        "keywords": {"keywords": [], "allKeywords": []},
    }
    return dict(defaults.get(kind, {}))


def analyze_topics(playlist_title: str | None, videos: Sequence[VideoContext]) -> HeuristicResult:
    found: dict[str, None] = {}
    if playlist_title:
        _collect_topics(playlist_title, found)
    for video in videos:
        _collect_topics(video.title, found)
        if video.description:
            _collect_topics(video.description, found)

    ranked = _rank_by_video_hits(list(found), videos)
    data = {
        "topics": ranked[:10],
        "allTopics": ranked,
        "extractionMethod": "pattern-matching",
        "videoCount": len(videos),
    }
    return data, 0.7 if ranked else 0.3


def analyze_themes(videos: Sequence[VideoContext]) -> HeuristicResult:
    structure = {
        name: sum(1 for video in videos if pattern.search(video.title))
        for name, pattern in EDUCATIONAL_TITLE_PATTERNS.items()
    }
    themes = [name for name, count in structure.items() if count > 0]

    has_progression = any(
        indicator in video.title.lower()
        for video in videos
        for indicator in PROGRESSION_INDICATORS
    )
    if has_progression:
        themes.append("progressive-learning")

    formats = [
        name for name, pattern in INSTRUCTIONAL_FORMATS if any(pattern.search(video.title) for video in videos)
    ]
    themes.extend(formats)

    data = {
        "themes": list(dict.fromkeys(themes)),
        "progression": {"hasProgression": has_progression},
        "formats": formats,
        "educationalStructure": structure,
    }
    return data, 0.8 if themes else 0.4


def analyze_difficulty(videos: Sequence[VideoContext]) -> HeuristicResult:
    """Majority vote over keyword hits; ``intermediate`` at 0.5 when nothing hits."""
    indicators = dict.fromkeys(DIFFICULTY_KEYWORDS, 0)
    for video in videos:
        text = f"{video.title} {video.description or ''}".lower()
        for level, keywords in DIFFICULTY_KEYWORDS.items():
            indicators[level] += sum(1 for keyword in keywords if keyword in text)

    total = sum(indicators.values())
    difficulty = "intermediate"
    confidence = 0.5
    if total > 0:
        shares = {level: count / total for level, count in indicators.items()}
        difficulty = max(shares, key=lambda level: shares[level])
        confidence = shares[difficulty]

    data = {
        "difficulty": difficulty,
        "indicators": indicators,
        "breakdown": dict(indicators),
        "confidence": confidence,
    }
    return data, confidence


def generate_keywords(playlist_title: str | None, videos: Sequence[VideoContext]) -> HeuristicResult:
    found: dict[str, None] = {}
    if playlist_title:
        _collect_words(playlist_title, found)
    for video in videos:
        _collect_words(video.title, found)
        if video.channel_name:
            _collect_words(video.channel_name, found)
    for keyword in _educational_keywords(videos):
        found[keyword] = None

    filtered = [keyword for keyword in found if 2 < len(keyword) < 30 and not keyword.isdigit()]
    ranked = _rank_by_video_hits(filtered, videos)
    technical = [keyword for keyword in ranked if _contains_any(keyword, TECHNICAL_KEYWORDS)]
    educational = [keyword for keyword in ranked if _contains_any(keyword, EDUCATIONAL_KEYWORDS)]
    data = {
        "keywords": ranked[:20],
        "allKeywords": ranked,
        "categories": {
            "technical": technical,
            "educational": educational,
            "topical": [
                keyword for keyword in ranked if keyword not in technical and keyword not in educational
            ],
        },
    }
    return data, 0.8 if ranked else 0.4


class ContentAnalysisEngine:
    """Heuristic playlist analysis cached per (playlist, kind).

    A live cached row is returned as-is with ``cached=True``. A heuristic that
    raises yields the kind's default payload at confidence 0.0 and is not
    stored. Store errors are logged and never surface to the caller.
    """

    def __init__(
        self,
        *,
        repository: ContentAnalysisRepository,
        playlist_repository: PlaylistRepository,
        ai_client: OpenAIClient | None = None,
        cache_ttl_seconds: int = 7 * 24 * 3_600,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._playlist_repository = playlist_repository
        self._ai_client = ai_client
        self._cache_ttl_seconds = max(0, cache_ttl_seconds)
        self._clock = clock

    def analyze(self, playlist_id: str, kind: str, videos: Sequence[VideoContext]) -> AnalysisResult:
        heuristic = self._heuristic(kind)

        cached = self._read_cached(playlist_id, kind)
        if cached is not None:
            return cached

        try:
            data, confidence = heuristic(playlist_id, videos)
        except Exception as exc:
            LOGGER.warning(
                "analysis heuristic_failed playlist_id=%s kind=%s", playlist_id, kind, exc_info=True
            )
            return AnalysisResult(
                kind=kind,
                data=default_analysis(kind),
                confidence=0.0,
                cached=False,
                error=str(exc),
            )

        self._store(playlist_id, kind, data, confidence, len(videos))
        return AnalysisResult(kind=kind, data=data, confidence=confidence, cached=False)

    def comprehensive(self, playlist_id: str, videos: Sequence[VideoContext]) -> ComprehensiveAnalysis:
        with ThreadPoolExecutor(max_workers=len(ANALYSIS_KINDS), thread_name_prefix="analysis") as pool:
            futures = {
                kind: pool.submit(self.analyze, playlist_id, kind, videos) for kind in ANALYSIS_KINDS
            }
            results = {kind: future.result() for kind, future in futures.items()}

        ai_analysis: dict[str, Any] | None = None
        ai_confidence = 0.0
        if self._ai_client is not None:
            try:
                ai_analysis = self._ai_pass(playlist_id, videos, self._ai_client)
                ai_confidence = AI_ANALYSIS_CONFIDENCE
            except CuratorError as exc:
                LOGGER.warning(
                    "analysis ai_pass_failed playlist_id=%s kind=%s error=%s",
                    playlist_id,
                    exc.kind,
                    exc.message,
                )
            except sqlite3.Error:
                LOGGER.warning(
                    "analysis ai_pass_failed playlist_id=%s kind=persistence",
                    playlist_id,
                    exc_info=True,
                )

        return ComprehensiveAnalysis(
            playlist_id=playlist_id,
            topics=results["topics"],
            themes=results["themes"],
            difficulty=results["difficulty"],
            keywords=results["keywords"],
            ai_analysis=ai_analysis,
            ai_confidence=ai_confidence,
            video_count=len(videos),
        )

    def invalidate(self, playlist_id: str, kind: str | None = None) -> int:
        removed = self._repository.invalidate(playlist_id, kind)
        LOGGER.info("analysis invalidated playlist_id=%s kind=%s removed=%s", playlist_id, kind, removed)
        return removed

    def sweep(self) -> int:
        return self._repository.sweep()

    def _heuristic(self, kind: str) -> Callable[[str, Sequence[VideoContext]], HeuristicResult]:
        if kind == "topics":
            return lambda playlist_id, videos: analyze_topics(self._playlist_title(playlist_id), videos)
        if kind == "themes":
            return lambda _playlist_id, videos: analyze_themes(videos)
        if kind == "difficulty":
            return lambda _playlist_id, videos: analyze_difficulty(videos)
        if kind == "keywords":
            return lambda playlist_id, videos: generate_keywords(self._playlist_title(playlist_id), videos)
        raise ValueError(f"unknown analysis kind: {kind}")

    def _ai_pass(
        self,
        playlist_id: str,
        videos: Sequence[VideoContext],
        ai_client: OpenAIClient,
    ) -> dict[str, Any]:
        cached = self._read_cached(playlist_id, AI_ANALYSIS_KIND)
        if cached is not None:
            return cached.data

        playlist = self._playlist_repository.get_playlist(playlist_id)
        context = PlaylistContext(
            title=playlist.title if playlist is not None else "",
            original_description=playlist.original_description if playlist is not None else None,
            video_count=len(videos),
            videos=list(videos[:AI_CONTEXT_VIDEO_LIMIT]),
        )
        result = ai_client.analyze_playlist_content(context)
        if result.parsed:
            self._store(playlist_id, AI_ANALYSIS_KIND, result.analysis, AI_ANALYSIS_CONFIDENCE, len(videos))
        return result.analysis

    def _playlist_title(self, playlist_id: str) -> str | None:
        playlist = self._playlist_repository.get_playlist(playlist_id)
        return playlist.title if playlist is not None else None

    def _read_cached(self, playlist_id: str, kind: str) -> AnalysisResult | None:
        try:
            stored = self._repository.get_live(playlist_id, kind)
        except sqlite3.Error:
            LOGGER.warning("analysis cache_read_failed playlist_id=%s kind=%s", playlist_id, kind, exc_info=True)
            return None
        if stored is None:
            return None
        return AnalysisResult(kind=kind, data=stored.payload, confidence=stored.confidence_score, cached=True)

    def _store(
        self,
        playlist_id: str,
        kind: str,
        data: dict[str, Any],
        confidence: float,
        video_count: int,
    ) -> None:
        try:
            self._repository.upsert(
                playlist_id=playlist_id,
                analysis_type=kind,
                payload=data,
                confidence_score=confidence,
                video_count=video_count,
                ttl_seconds=self._cache_ttl_seconds,
            )
        except sqlite3.Error:
            LOGGER.warning("analysis cache_store_failed playlist_id=%s kind=%s", playlist_id, kind, exc_info=True)


def _collect_topics(text: str, found: dict[str, None]) -> None:
    lowered = text.lower()
    for keywords in TOPIC_PATTERNS.values():
        for keyword in keywords:
            if keyword in lowered:
                found[keyword] = None


def _collect_words(text: str, found: dict[str, None]) -> None:
    for word in _NON_WORD.sub(" ", text.lower()).split():
        if len(word) > 2 and word not in STOP_WORDS:
            found[word] = None


def _educational_keywords(videos: Sequence[VideoContext]) -> list[str]:
    keywords: list[str] = []
    if len(videos) > 10:
        keywords.append("comprehensive")
    if len(videos) > 20:
        keywords.append("complete-course")
    total_seconds = sum(duration_to_seconds(video.duration or "") for video in videos)
    if total_seconds > 600:
        keywords.append("in-depth")
    if total_seconds > 3_600:
        keywords.append("extensive")
    return keywords


def _rank_by_video_hits(candidates: list[str], videos: Sequence[VideoContext]) -> list[str]:
    """Order by how many videos mention each candidate; ties keep discovery order."""

    def hits(candidate: str) -> int:
        return sum(
            1
            for video in videos
            if candidate in video.title.lower()
            or (video.description is not None and candidate in video.description.lower())
        )

    counts = {candidate: hits(candidate) for candidate in candidates}
    return sorted(candidates, key=lambda candidate: counts[candidate], reverse=True)


def _contains_any(keyword: str, needles: tuple[str, ...]) -> bool:
    return any(needle in keyword for needle in needles)
