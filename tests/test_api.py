from __future__ import annotations

from typing import Any

from conftest import OTHER_PLAYLIST_ID, PLAYLIST_ID, FakeOpenAITransport, FakeYouTubeClient, make_video_item
from fastapi.testclient import TestClient

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}
ENHANCED_TEXT = "A practical Python course covering loops, functions and small projects for new programmers."


def _import(client: TestClient, youtube_client: FakeYouTubeClient, *, video_count: int = 3) -> dict[str, Any]:
    youtube_client.add_playlist(PLAYLIST_ID, video_count=video_count)
    response = client.post(
        "/imports",
        json={"source": f"https://www.youtube.com/playlist?list={PLAYLIST_ID}"},
        headers=USER,
    )
    assert response.status_code == 201, response.text
    body: dict[str, Any] = response.json()
    return body


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"


def test_import_flow(client: TestClient, youtube_client: FakeYouTubeClient) -> None:
    body = _import(client, youtube_client)

    assert body["videos_imported"] == 3
    assert body["total_videos"] == 3
    assert body["failures"] == []
    assert body["job"]["status"] == "completed"
    assert body["playlist"]["video_count"] == 3

    job_id = body["job"]["id"]
    job = client.get(f"/imports/{job_id}", headers=USER)
    assert job.status_code == 200
    assert job.json()["playlist_id"] == body["playlist"]["id"]

    jobs = client.get("/imports", headers=USER)
    assert [item["id"] for item in jobs.json()] == [job_id]

    playlists = client.get("/playlists", headers=USER)
    assert [item["id"] for item in playlists.json()] == [body["playlist"]["id"]]


def test_user_header_is_required(client: TestClient) -> None:
    response = client.get("/playlists")

    assert response.status_code == 422


def test_import_rejects_invalid_source(client: TestClient) -> None:
    response = client.post("/imports", json={"source": "https://example.com/nope"}, headers=USER)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["kind"] == "invalid_identifier"
    assert error["retryable"] is False
    assert "playlist" in error["message"].lower()


def test_import_request_validation(client: TestClient) -> None:
    too_many = client.post("/imports", json={"source": PLAYLIST_ID, "max_videos": 501}, headers=USER)
    unknown_field = client.post("/imports", json={"source": PLAYLIST_ID, "mode": "fast"}, headers=USER)

    assert too_many.status_code == 422
    assert unknown_field.status_code == 422


def test_missing_playlist_maps_to_not_found(client: TestClient) -> None:
    response = client.post("/imports", json={"source": PLAYLIST_ID}, headers=USER)

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "not_found"
    failed = client.get("/imports", headers=USER).json()
    assert failed[0]["status"] == "failed"


def test_daily_import_limit_returns_retry_after(
    client: TestClient,
    youtube_client: FakeYouTubeClient,
) -> None:
    youtube_client.add_playlist(PLAYLIST_ID, video_count=1)
    youtube_client.add_playlist(OTHER_PLAYLIST_ID, video_count=1)
    for source in (PLAYLIST_ID, OTHER_PLAYLIST_ID):
        assert client.post("/imports", json={"source": source}, headers=USER).status_code == 201

    response = client.post("/imports", json={"source": PLAYLIST_ID}, headers=USER)

    assert response.status_code == 429
    assert response.json()["error"]["kind"] == "too_many_requests"
    assert response.json()["error"]["retryable"] is True
    assert int(response.headers["Retry-After"]) >= 1


def test_playlists_are_owner_scoped(client: TestClient, youtube_client: FakeYouTubeClient) -> None:
    playlist_id = _import(client, youtube_client)["playlist"]["id"]

    assert client.get(f"/playlists/{playlist_id}", headers=OTHER_USER).status_code == 403
    assert client.get("/playlists/does-not-exist", headers=USER).status_code == 404
    assert client.get("/playlists", headers=OTHER_USER).json() == []


def test_video_editing_endpoints(client: TestClient, youtube_client: FakeYouTubeClient) -> None:
    body = _import(client, youtube_client)
    playlist_id = body["playlist"]["id"]
    youtube_client.videos_by_id["dQw4w9WgXcQ"] = make_video_item("dQw4w9WgXcQ")

    added = client.post(
        f"/playlists/{playlist_id}/videos",
        json={"source": "https://youtu.be/dQw4w9WgXcQ", "position": 1},
        headers=USER,
    )
    assert added.status_code == 201
    assert added.json()["position"] == 1

    duplicate = client.post(
        f"/playlists/{playlist_id}/videos", json={"source": "dQw4w9WgXcQ"}, headers=USER
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"]["kind"] == "invalid_request"

    moved = client.put(
        f"/playlists/{playlist_id}/videos/dQw4w9WgXcQ/position", json={"position": 3}, headers=USER
    )
    assert moved.status_code == 200
    order = [video["youtube_video_id"] for video in moved.json()["videos"]]
    assert order[-1] == "dQw4w9WgXcQ"

    reordered = client.put(
        f"/playlists/{playlist_id}/videos/reorder",
        json={"video_ids": list(reversed(order))},
        headers=USER,
    )
    assert reordered.status_code == 200
    assert [video["position"] for video in reordered.json()["videos"]] == [0, 1, 2, 3]
    assert reordered.json()["videos"][0]["youtube_video_id"] == "dQw4w9WgXcQ"

    bad_order = client.put(
        f"/playlists/{playlist_id}/videos/reorder", json={"video_ids": order[:2]}, headers=USER
    )
    assert bad_order.status_code == 400

    removed = client.delete(f"/playlists/{playlist_id}/videos/dQw4w9WgXcQ", headers=USER)
    assert removed.status_code == 204
    videos = client.get(f"/playlists/{playlist_id}/videos", headers=USER).json()
    assert [video["position"] for video in videos] == [0, 1, 2]
    assert client.delete(f"/playlists/{playlist_id}/videos/dQw4w9WgXcQ", headers=USER).status_code == 404


def test_quota_search_and_sweep(client: TestClient, youtube_client: FakeYouTubeClient) -> None:
    _import(client, youtube_client)

    quota = client.get("/youtube/quota").json()
    assert quota["api_name"] == "youtube_data_v3"
    assert quota["units_used"] == 3
    assert quota["daily_limit"] == 10_000

    search = client.get("/youtube/search", params={"q": "python"})
    assert search.status_code == 200
    assert search.json() == []
    assert client.get("/youtube/quota").json()["units_used"] == 103

    sweep = client.post("/youtube/cache/sweep")
    assert sweep.status_code == 200
    assert sweep.json() == {"deleted_response_rows": 0, "deleted_analysis_rows": 0}


def test_analysis_endpoint(
    client: TestClient,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> None:
    playlist_id = _import(client, youtube_client)["playlist"]["id"]
    openai_transport.queue('{"topics": ["python"], "difficulty": "beginner"}')

    response = client.get(f"/playlists/{playlist_id}/analysis", headers=USER)

    assert response.status_code == 200
    body = response.json()
    assert body["video_count"] == 3
    assert "python" in body["topics"]["data"]["topics"]
    assert body["ai_analysis"] == {"topics": ["python"], "difficulty": "beginner"}
    assert body["ai_confidence"] == 0.9


def test_enhancement_endpoints(
    client: TestClient,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> None:
    playlist_id = _import(client, youtube_client)["playlist"]["id"]
    openai_transport.queue(ENHANCED_TEXT)

    enhanced = client.post(f"/playlists/{playlist_id}/enhance", headers=USER)
    assert enhanced.status_code == 200
    enhancement_id = enhanced.json()["enhancement"]["id"]
    assert enhanced.json()["playlist"]["ai_description"] == ENHANCED_TEXT

    cooldown = client.post(f"/playlists/{playlist_id}/enhance", headers=USER)
    assert cooldown.status_code == 429
    assert int(cooldown.headers["Retry-After"]) > 3_500

    history = client.get(f"/playlists/{playlist_id}/enhancements", headers=USER).json()
    assert [record["status"] for record in history] == ["completed"]

    rated = client.post(f"/enhancements/{enhancement_id}/rating", json={"rating": 5}, headers=USER)
    assert rated.json()["user_rating"] == 5
    assert client.post(
        f"/enhancements/{enhancement_id}/rating", json={"rating": 0}, headers=USER
    ).status_code == 422

    reverted = client.post(f"/enhancements/{enhancement_id}/revert", headers=USER)
    assert reverted.status_code == 200
    assert reverted.json()["ai_description"] is None
    assert client.post(f"/enhancements/{enhancement_id}/revert", headers=USER).status_code == 400

    usage = client.get("/ai/usage", headers=USER).json()
    assert usage["requests_count"] == 1
    assert usage["tokens_used"] == 200
    assert usage["by_model"][0]["model_name"] == "gpt-4o-mini"


def test_enhancement_upstream_failure_is_bad_gateway(
    client: TestClient,
    youtube_client: FakeYouTubeClient,
) -> None:
    playlist_id = _import(client, youtube_client)["playlist"]["id"]

    response = client.post(f"/playlists/{playlist_id}/enhance", headers=USER)

    assert response.status_code == 502
    assert response.json()["error"]["kind"] == "upstream_failure"
    assert response.json()["error"]["retryable"] is True


def test_preferences_endpoints(client: TestClient) -> None:
    defaults = client.get("/ai/preferences", headers=USER)
    assert defaults.json()["enhancement_style"] == "educational"

    updated = client.put(
        "/ai/preferences",
        json={"enhancement_style": "casual", "preferred_ai_model": "gpt-4o"},
        headers=USER,
    )
    assert updated.status_code == 200
    assert updated.json()["enhancement_style"] == "casual"
    assert updated.json()["include_keywords"] is True

    cleared = client.put("/ai/preferences", json={"preferred_ai_model": None}, headers=USER)
    assert cleared.json()["preferred_ai_model"] is None
    assert cleared.json()["enhancement_style"] == "casual"

    invalid = client.put("/ai/preferences", json={"enhancement_style": "poetic"}, headers=USER)
    assert invalid.status_code == 422


def test_app_runs_without_an_openai_key(
    client_without_ai: TestClient,
    youtube_client: FakeYouTubeClient,
    openai_transport: FakeOpenAITransport,
) -> None:
    playlist_id = _import(client_without_ai, youtube_client)["playlist"]["id"]

    analysis = client_without_ai.get(f"/playlists/{playlist_id}/analysis", headers=USER)
    assert analysis.status_code == 200
    assert analysis.json()["ai_analysis"] is None

    enhanced = client_without_ai.post(f"/playlists/{playlist_id}/enhance", headers=USER)
    assert enhanced.status_code == 502
    assert enhanced.json()["error"]["kind"] == "upstream_failure"
    assert openai_transport.requests == []


def test_playlist_crud_analytics_and_stats_endpoints(client: TestClient) -> None:
    created = client.post(
        "/playlists",
        json={"title": "  Weekend talks ", "description": "Conference recordings"},
        headers=USER,
    )
    assert created.status_code == 201, created.text
    playlist = created.json()
    assert playlist["title"] == "Weekend talks"
    playlist_id = playlist["id"]

    assert client.post("/playlists", json={"title": "   "}, headers=USER).status_code == 422

    renamed = client.put(f"/playlists/{playlist_id}", json={"title": "Weekday talks"}, headers=USER)
    assert renamed.status_code == 200
    assert renamed.json()["original_description"] == "Conference recordings"
    cleared = client.put(f"/playlists/{playlist_id}", json={"description": None}, headers=USER)
    assert cleared.json()["original_description"] is None
    assert client.put(f"/playlists/{playlist_id}", json={"title": None}, headers=USER).status_code == 422
    assert (
        client.put(f"/playlists/{playlist_id}", json={"title": "Stolen"}, headers=OTHER_USER).status_code
        == 403
    )

    analytics = client.get(f"/playlists/{playlist_id}/analytics", params={"days": 7}, headers=USER)
    assert analytics.status_code == 200
    body = analytics.json()
    assert body["days"] == 7
    assert {row["event_type"]: row["count"] for row in body["activity"]} == {
        "playlist_created": 1,
        "playlist_updated": 2,
    }
    assert len(body["recent_events"]) == 3

    stats = client.get("/stats", headers=USER).json()
    assert (stats["total_playlists"], stats["enhanced_count"], stats["total_videos"]) == (1, 0, 0)

    assert client.delete(f"/playlists/{playlist_id}", headers=OTHER_USER).status_code == 403
    assert client.delete(f"/playlists/{playlist_id}", headers=USER).status_code == 204
    assert client.get(f"/playlists/{playlist_id}", headers=USER).status_code == 404
    assert client.get("/stats", headers=USER).json()["total_playlists"] == 0


def test_quota_history_endpoint(client: TestClient, youtube_client: FakeYouTubeClient) -> None:
    _import(client, youtube_client)

    history = client.get("/youtube/quota/history", params={"days": 3})

    assert history.status_code == 200
    assert [(day["units_used"], day["daily_limit"]) for day in history.json()] == [(3, 10_000)]
    assert client.get("/youtube/quota/history", params={"days": 0}).status_code == 422
