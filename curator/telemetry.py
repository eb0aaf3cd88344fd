from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

# Attribute names containing any of these are never forwarded to a sink.
_REDACTED_TOKENS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "content",
        "description",
        "prompt",
        "secret",
        "token",
    }
)
_COUNTER_SUFFIXES: tuple[str, ...] = ("_count", "_tokens", "_ms", "_usd")
_MAX_STRING_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger("playlist_curator.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


class RecordingTelemetrySink:
    """Keeps emitted events in memory; used by tests and local debugging."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, TelemetryValue]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self.events.append((event_name, dict(attributes)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=redact_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("playlist_curator.telemetry").warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def redact_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    redacted: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if _is_sensitive(key):
            redacted[key] = "[redacted]"
        else:
            redacted[key] = _scalar(raw_value)
    return redacted


def _is_sensitive(key: str) -> bool:
    # Usage counters such as ``input_tokens`` are numbers, not secrets.
    if key.endswith(_COUNTER_SUFFIXES):
        return False
    return any(token in key for token in _REDACTED_TOKENS)


def _scalar(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return type(value).__name__
