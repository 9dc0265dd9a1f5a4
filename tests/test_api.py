import asyncio
import json
import time
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.settings import Settings
from realtime.bus import EventBus
from realtime.sse import updates
from store.state import PersistenceFailure, open_state


FIRST_FEED = "network,geoname\n14.1.64.0/24,123\n14.1.65.0/24,123\n"
SECOND_FEED = "network,geoname\n14.1.64.0/24,123\n14.1.66.0/24,123\n"


class Upstream:
    def __init__(self) -> None:
        self.status = 200
        self.body = FIRST_FEED

    def __call__(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(self.status, text=self.body)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


def _client(tmp_path, upstream: Upstream, **overrides) -> TestClient:
    settings = Settings(
        state_path=tmp_path / "state.json",
        source_url="https://feed.test/feed.csv",
        relays_path=tmp_path / "no-relays.yaml",
        min_update_gap_seconds=overrides.pop("min_update_gap_seconds", 0),
        **overrides,
    )
    return TestClient(create_app(settings, transport=httpx.MockTransport(upstream)))


def test_feed_is_404_until_first_refresh(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        assert client.get("/ipv4.txt").status_code == 404
        assert client.get("/api/last-updated").json() == {"lastUpdated": None}

        res = client.post("/api/trigger-update")
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["count"] == 2
        assert body["source"] == "direct"

        feed = client.get("/ipv4.txt")
        assert feed.status_code == 200
        assert feed.headers["content-type"].startswith("text/plain")
        assert feed.text == "14.1.64.0/24\n14.1.65.0/24"
        assert client.get("/api/last-updated").json()["lastUpdated"] == body[
            "lastUpdated"
        ]


def test_changelog_after_two_refreshes(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        client.post("/api/trigger-update")
        upstream.body = SECOND_FEED
        res = client.post("/api/trigger-update")
        assert res.json()["added"] == 1
        assert res.json()["removed"] == 1

        changelog = client.get("/api/changelog").json()["changelog"]
        assert len(changelog) == 1
        assert changelog[0]["added"] == ["14.1.66.0/24"]
        assert changelog[0]["removed"] == ["14.1.65.0/24"]
        assert changelog[0]["ipAddresses"] == ["14.1.64.0/24", "14.1.66.0/24"]


def test_trigger_failure_keeps_serving_last_good_list(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        client.post("/api/trigger-update")
        upstream.status = 503

        res = client.post("/api/trigger-update")
        assert res.status_code == 500
        assert res.json()["success"] is False
        assert "http_503" in res.json()["error"]

        assert client.get("/ipv4.txt").text == "14.1.64.0/24\n14.1.65.0/24"
        health = client.get("/api/health").json()
        assert health["status"] == "ok"
        assert health["fetch"]["consecutive_failures"] == 1


def test_back_to_back_trigger_is_rejected(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream, min_update_gap_seconds=5) as client:
        assert client.post("/api/trigger-update").status_code == 200
        res = client.post("/api/trigger-update")
        assert res.status_code == 409
        assert res.json()["success"] is False


def test_settings_round_trip(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        settings = client.get("/api/settings").json()
        assert settings["updateIntervalMinutes"] == 60
        assert settings["autoUpdateEnabled"] is True

        before = int(time.time() * 1000)
        res = client.post("/api/update-interval", json={"interval": 5})
        after = int(time.time() * 1000)
        assert res.json() == {"success": True}

        settings = client.get("/api/settings").json()
        assert settings["updateIntervalMinutes"] == 5
        assert before + 5 * 60_000 <= settings["nextUpdateAtEpochMs"]
        assert settings["nextUpdateAtEpochMs"] <= after + 5 * 60_000

        res = client.post("/api/update-interval", json={"autoUpdateEnabled": False})
        assert res.status_code == 200
        assert client.get("/api/settings").json()["autoUpdateEnabled"] is False

        document = client.get("/api/data").json()
        assert document["updateInterval"] == 5
        assert document["autoUpdateEnabled"] is False


def test_interval_below_one_is_ignored(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        before = client.get("/api/settings").json()
        res = client.post("/api/update-interval", json={"interval": 0})
        assert res.status_code == 200
        assert res.json() == {"success": True}
        assert client.get("/api/settings").json() == before


def test_wrongly_typed_interval_is_rejected(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        res = client.post("/api/update-interval", json={"interval": "soon"})
        assert res.status_code == 422
        assert client.get("/api/settings").json()["updateIntervalMinutes"] == 60


def test_persistence_failure_returns_500(tmp_path, upstream, monkeypatch) -> None:
    with _client(tmp_path, upstream) as client:
        store = client.app.state.store

        def failing_write() -> None:
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(store, "write", failing_write)
        res = client.post("/api/update-interval", json={"interval": 7})
        assert res.status_code == 500
        assert res.json() == {"success": False, "error": "disk full"}
        assert client.get("/api/settings").json()["updateIntervalMinutes"] == 7


def test_restart_resumes_persisted_countdown(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        client.post("/api/update-interval", json={"interval": 30})
        next_fire = client.get("/api/settings").json()["nextUpdateAtEpochMs"]

    with _client(tmp_path, upstream) as client:
        assert client.get("/api/settings").json()["nextUpdateAtEpochMs"] == next_fire


def test_cors_headers_on_api_responses(tmp_path, upstream) -> None:
    with _client(tmp_path, upstream) as client:
        res = client.get("/api/settings", headers={"Origin": "https://viewer.test"})
        assert res.headers["access-control-allow-origin"] == "*"

        preflight = client.options(
            "/api/update-interval",
            headers={
                "Origin": "https://viewer.test",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert preflight.status_code == 200
        assert "POST" in preflight.headers["access-control-allow-methods"]


def test_updates_route_opens_with_connected_frame(tmp_path) -> None:
    store = open_state(tmp_path / "state.json")
    store.state.update_interval = 15
    store.state.next_update_time = 1_800_000_000_000
    bus = EventBus()

    async def never_disconnected() -> bool:
        return False

    request = SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(bus=bus, store=store)),
        is_disconnected=never_disconnected,
    )

    async def scenario() -> str:
        response = await updates(request)
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert bus.subscriber_count == 1
        stream = response.body_iterator
        try:
            return await stream.__anext__()
        finally:
            await stream.aclose()

    frame = asyncio.run(scenario())
    assert frame.startswith("data: ")
    assert json.loads(frame[len("data: ") :]) == {
        "type": "connected",
        "currentSettings": {
            "updateIntervalMinutes": 15,
            "autoUpdateEnabled": True,
            "nextUpdateAtEpochMs": 1_800_000_000_000,
        },
    }
    assert bus.subscriber_count == 0
