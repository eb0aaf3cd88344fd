from __future__ import annotations


class CuratorError(Exception):
    """Base error carrying a stable kind for callers and HTTP mapping."""

    kind = "curator_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidIdentifierError(CuratorError):
    kind = "invalid_identifier"


class NotFoundError(CuratorError):
    # Covers both "does not exist" and "private"; the upstream does not tell them apart.
    kind = "not_found"


class NoPublicVideosError(NotFoundError):
    kind = "no_public_videos"


class ForbiddenError(CuratorError):
    kind = "forbidden"


class QuotaExceededError(CuratorError):
    kind = "quota_exceeded"
    retryable = True

    def __init__(self, message: str, *, api_name: str, units_used: int, daily_limit: int) -> None:
        super().__init__(message)
        self.api_name = api_name
        self.units_used = units_used
        self.daily_limit = daily_limit


class TooManyRequestsError(CuratorError):
    kind = "too_many_requests"
    retryable = True

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = (
            max(1, retry_after_seconds) if retry_after_seconds is not None else None
        )


class UpstreamFailureError(CuratorError):
    kind = "upstream_failure"
    retryable = True


class ContentTooShortError(CuratorError):
    kind = "content_too_short"


class PersistenceFailureError(CuratorError):
    kind = "persistence_failure"
