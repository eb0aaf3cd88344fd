from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
from conftest import PLAYLIST_ID, FakeClock
from pydantic import ValidationError

from curator.errors import (
    ContentTooShortError,
    CuratorError,
    ForbiddenError,
    NoPublicVideosError,
    QuotaExceededError,
    TooManyRequestsError,
    UpstreamFailureError,
)
from curator.main import error_status
from curator.models.contracts import ImportRequest, PreferencesUpdateRequest
from curator.repositories.database import Database
from curator.repositories.youtube_cache_repository import YouTubeCacheRepository
from curator.scripts import sweep_caches


def test_import_request_normalizes_optional_text() -> None:
    request = ImportRequest(source=f"  {PLAYLIST_ID} ", custom_title="   ", custom_description=" Notes ")

    assert request.source == PLAYLIST_ID
    assert request.custom_title is None
    assert request.custom_description == "Notes"
    assert request.max_videos is None


def test_import_request_rejects_control_characters() -> None:
    with pytest.raises(ValidationError):
        ImportRequest(source=f"{PLAYLIST_ID}\x00")


def test_preferences_update_bounds_description_length() -> None:
    with pytest.raises(ValidationError):
        PreferencesUpdateRequest(max_description_length=50)
    assert PreferencesUpdateRequest(max_description_length=800).max_description_length == 800


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (NoPublicVideosError("empty"), 404),
        (ForbiddenError("nope"), 403),
        (QuotaExceededError("spent", api_name="youtube_data_v3", units_used=10, daily_limit=10), 429),
        (TooManyRequestsError("slow down", retry_after_seconds=0), 429),
        (UpstreamFailureError("boom"), 502),
        (ContentTooShortError("tiny"), 422),
        (CuratorError("generic"), 500),
    ],
)
def test_error_status_mapping(error: CuratorError, status_code: int) -> None:
    assert error_status(error) == status_code


def test_too_many_requests_retry_after_is_at_least_one_second() -> None:
    assert TooManyRequestsError("slow down", retry_after_seconds=0).retry_after_seconds == 1


def test_sweep_caches_script_deletes_expired_rows(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    data_dir = tmp_path / "runtime"
    monkeypatch.setenv("PLAYLIST_CURATOR_DATA_DIR", str(data_dir))
    database = Database(data_dir / "curator.db")
    database.initialize()
    stale = YouTubeCacheRepository(database, clock=FakeClock(datetime(2020, 1, 1, tzinfo=UTC)))
    stale.put(cache_key="old", cache_type="playlist", payload={}, ttl_seconds=60)
    YouTubeCacheRepository(database).put(cache_key="fresh", cache_type="videos", payload={}, ttl_seconds=3_600)

    sweep_caches.main(["--stats"])

    output = capsys.readouterr().out
    assert "Deleted expired response-cache rows: 1" in output
    assert "Deleted expired content-analysis rows: 0" in output
    assert "videos\t1\t0\t0" in output


def test_sweep_caches_script_reports_empty_cache(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("PLAYLIST_CURATOR_DATA_DIR", str(tmp_path / "runtime"))

    sweep_caches.main(["--stats"])

    assert "Response cache is empty." in capsys.readouterr().out
