from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from curator.errors import ContentTooShortError, UpstreamFailureError

LOGGER = logging.getLogger("playlist_curator.ai")

FALLBACK_PRICING_MODEL = "gpt-4o-mini"
# USD per 1K tokens.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0015, 0.002),
}

DESCRIPTION_SYSTEM_PROMPT = (
    "You are an expert educational content curator who writes compelling, informative "
    "playlist descriptions. Focus on learning outcomes, use clear accessible language, "
    "highlight key concepts, and keep the text concise but comprehensive."
)
ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert content analyst who identifies themes, topics, educational patterns "
    "and learning objectives from playlist data. Answer with a single JSON object."
)
_STYLE_GUIDANCE: dict[str, tuple[str, ...]] = {
    "educational": (
        "Uses an academic but accessible tone",
        "Emphasizes learning outcomes and skill development",
    ),
    "professional": (
        "Uses a polished, businesslike tone",
        "Emphasizes practical applications",
    ),
    "casual": (
        "Uses a friendly, conversational tone",
        "Keeps the language simple",
    ),
    "creative": (
        "Uses engaging, creative language",
        "Makes learning sound exciting and accessible",
    ),
    "technical": (
        "Uses precise technical vocabulary",
        "Includes a breakdown of the topics covered",
    ),
}
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_BOLD = re.compile(r"\*\*(.*?)\*\*")
_ITALIC = re.compile(r"\*(.*?)\*")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class ChatCompletion:
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_usd: float
    processing_time_ms: int
    finish_reason: str


@dataclass(frozen=True)
class VideoContext:
    title: str
    description: str | None = None
    duration: str | None = None
    channel_name: str | None = None


@dataclass(frozen=True)
class PlaylistContext:
    title: str
    original_description: str | None
    video_count: int
    videos: list[VideoContext] = field(default_factory=list)
    analysis: dict[str, Any] | None = None


@dataclass(frozen=True)
class DescriptionOptions:
    style: str = "educational"
    include_keywords: bool = True
    include_learning_objectives: bool = True
    include_target_audience: bool = True
    include_difficulty_assessment: bool = False
    content_level: str = "intermediate"
    language: str = "en"
    max_length: int = 500
    custom_prompt_additions: str | None = None


@dataclass(frozen=True)
class AIAnalysis:
    completion: ChatCompletion
    analysis: dict[str, Any]
    parsed: bool


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        LOGGER.debug("ai pricing_fallback model=%s", model)
        pricing = MODEL_PRICING[FALLBACK_PRICING_MODEL]
    input_price, output_price = pricing
    return (max(0, input_tokens) / 1000) * input_price + (max(0, output_tokens) / 1000) * output_price


def sanitize_enhanced_content(content: object, *, max_length: int = 2_000, min_length: int = 10) -> str:
    """Strip markdown artifacts, truncate with ``...`` and reject near-empty text."""
    if not isinstance(content, str):
        raise ContentTooShortError("AI response contained no text.")

    sanitized = _CODE_BLOCK.sub("", content)
    sanitized = _INLINE_CODE.sub(r"\1", sanitized)
    sanitized = _BOLD.sub(r"\1", sanitized)
    sanitized = _ITALIC.sub(r"\1", sanitized).strip()

    if len(sanitized) > max_length:
        sanitized = sanitized[: max(0, max_length - 3)] + "..."
    if len(sanitized) < min_length:
        raise ContentTooShortError(
            f"Enhanced content is too short ({len(sanitized)} < {min_length} characters)."
        )
    return sanitized


def neutral_analysis() -> dict[str, Any]:
    return {
        "topics": [],
        "themes": [],
        "difficulty": "unknown",
        "keywords": [],
        "targetAudience": "general",
        "estimatedDuration": "unknown",
    }


class OpenAIClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        default_model: str = "gpt-4o-mini",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._timeout_seconds = max(1.0, timeout_seconds)

    @property
    def default_model(self) -> str:
        return self._default_model

    def create_chat_completion(
        self,
        *,
        system_prompt: str | None,
        user_prompt: str,
        model: str | None = None,
        max_tokens: int = 1_000,
        temperature: float = 0.7,
    ) -> ChatCompletion:
        resolved_model = model or self._default_model
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        started = time.monotonic()
        status_code, payload = _post_json(
            url=f"{self._base_url}/chat/completions",
            api_key=self._api_key,
            body={
                "model": resolved_model,
                "messages": messages,
                "max_tokens": max(1, max_tokens),
                "temperature": temperature,
                "stream": False,
            },
            timeout_seconds=self._timeout_seconds,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if status_code < 200 or status_code >= 300:
            message = _extract_error_message(payload) or f"HTTP {status_code}"
            LOGGER.warning("ai request_failed model=%s status=%s", resolved_model, status_code)
            raise UpstreamFailureError(f"OpenAI API error: {message}")

        usage = _as_dict(payload.get("usage"))
        input_tokens = _as_int(usage.get("prompt_tokens"))
        output_tokens = _as_int(usage.get("completion_tokens"))
        total_tokens = _as_int(usage.get("total_tokens")) or input_tokens + output_tokens
        choices = payload.get("choices")
        first_choice = _as_dict(choices[0]) if isinstance(choices, list) and choices else {}
        content = _as_dict(first_choice.get("message")).get("content")
        finish_reason = first_choice.get("finish_reason")

        completion = ChatCompletion(
            content=content if isinstance(content, str) else "",
            model=resolved_model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            cost_usd=calculate_cost(resolved_model, input_tokens, output_tokens),
            processing_time_ms=elapsed_ms,
            finish_reason=finish_reason if isinstance(finish_reason, str) else "unknown",
        )
        LOGGER.info(
            "ai completion model=%s tokens=%s cost_usd=%.6f elapsed_ms=%s finish=%s",
            resolved_model,
            completion.total_tokens,
            completion.cost_usd,
            elapsed_ms,
            completion.finish_reason,
        )
        return completion

    def enhance_playlist_description(
        self,
        prompt: str,
        *,
        target_length: int,
        model: str | None = None,
    ) -> ChatCompletion:
        """Run a prompt from :func:`build_description_prompt`; output tokens scale with length."""
        return self.create_chat_completion(
            system_prompt=DESCRIPTION_SYSTEM_PROMPT,
            user_prompt=prompt,
            model=model,
            max_tokens=min(max(1, target_length) * 2, 1_000),
            temperature=0.7,
        )

    def analyze_playlist_content(self, context: PlaylistContext, *, model: str | None = None) -> AIAnalysis:
        completion = self.create_chat_completion(
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
            user_prompt=build_analysis_prompt(context),
            model=model,
            max_tokens=800,
            temperature=0.3,
        )
        match = _JSON_OBJECT.search(completion.content)
        if match is not None:
            try:
                parsed = json.loads(match.group(0))
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                return AIAnalysis(completion=completion, analysis=cast(dict[str, Any], parsed), parsed=True)

        LOGGER.warning("ai analysis_unparseable model=%s", completion.model)
        return AIAnalysis(completion=completion, analysis=neutral_analysis(), parsed=False)


def build_description_prompt(context: PlaylistContext, options: DescriptionOptions) -> str:
    lines = [
        "Please create an enhanced description for this playlist:",
        "",
        f'Title: "{context.title}"',
        f'Original Description: "{context.original_description or "No description provided"}"',
        f"Number of Videos: {context.video_count}",
    ]
    if context.videos:
        lines.extend(["", "Video Titles:"])
        lines.extend(f"{index}. {video.title}" for index, video in enumerate(context.videos[:10], start=1))
        if len(context.videos) > 10:
            lines.append(f"... and {len(context.videos) - 10} more videos")

    analysis = context.analysis or {}
    if analysis:
        lines.extend(["", "Content Analysis:"])
        for label, key in (("Topics", "topics"), ("Themes", "themes")):
            values = analysis.get(key)
            if isinstance(values, list) and values:
                lines.append(f"{label}: {', '.join(str(value) for value in values)}")
        if isinstance(analysis.get("difficulty"), str):
            lines.append(f"Difficulty Level: {analysis['difficulty']}")

    lines.extend(["", f"Please create a {options.style} description that:"])
    if options.include_learning_objectives:
        lines.append("- Clearly outlines what learners will achieve")
    if options.include_keywords:
        lines.append("- Includes relevant keywords for discoverability")
    if options.include_target_audience:
        lines.append("- Identifies the target audience")
    if options.include_difficulty_assessment:
        lines.append(f"- States the difficulty level (the audience is mostly {options.content_level})")
    lines.append("- Highlights the educational value and key concepts")
    lines.append("- Is engaging and encourages learning")
    lines.append(f"- Is approximately {options.max_length} characters long")
    lines.extend(f"- {guidance}" for guidance in _STYLE_GUIDANCE.get(options.style, ()))
    if options.language and options.language != "en":
        lines.append(f"- Is written in the language with code '{options.language}'")
    if options.custom_prompt_additions:
        lines.extend(["", options.custom_prompt_additions.strip()])
    lines.extend(
        ["", "Return only the enhanced description text, without quotes or additional commentary."]
    )
    return "\n".join(lines)


def build_analysis_prompt(context: PlaylistContext) -> str:
    lines = [
        "Analyze this playlist for educational content structure:",
        "",
        f'Title: "{context.title}"',
        f'Description: "{context.original_description or "No description"}"',
        f"Video Count: {context.video_count}",
        "",
    ]
    if context.videos:
        lines.append("Video Titles:")
        for index, video in enumerate(context.videos, start=1):
            lines.append(f'{index}. "{video.title}"')
            if video.description:
                lines.append(f"   Description: {video.description[:200]}...")
            if video.duration:
                lines.append(f"   Duration: {video.duration}")
    lines.append(
        "\nReturn a JSON object with the keys topics, themes, difficulty "
        "(beginner|intermediate|advanced), keywords, targetAudience, learningObjectives, "
        "estimatedDuration, contentType (tutorial|lecture|demonstration|mixed), prerequisites "
        "and relatedFields. Return only the JSON object, no additional text."
    )
    return "\n".join(lines)


def _post_json(
    *,
    url: str,
    api_key: str,
    body: dict[str, Any],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any]]:
    request = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={
            "authorization": f"Bearer {api_key}",
            "content-type": "application/json",
            "accept": "application/json",
            "user-agent": "playlist-curator/1.0",
        },
        method="POST",
    )

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw_body = exc.read().decode("utf-8", errors="replace")
    except (URLError, TimeoutError, OSError) as exc:
        raise UpstreamFailureError(f"OpenAI request failed: {exc}") from exc

    return status_code, _parse_json_dict(raw_body)


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return _as_dict(parsed)


def _extract_error_message(payload: dict[str, Any]) -> str | None:
    message = _as_dict(payload.get("error")).get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


def _as_dict(value: object) -> dict[str, Any]:
    if isinstance(value, dict):
        return cast(dict[str, Any], value)
    return {}


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    return 0
