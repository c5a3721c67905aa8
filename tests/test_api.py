"""Tests for the HTTP surface, Home Graph client and report-state listener."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from gateway_bridge.errors import UpstreamUnavailable
from gateway_bridge.homegraph import HomeGraphClient
from gateway_bridge.main import create_app
from gateway_bridge.realtime import StateChange, StateFeed
from gateway_bridge.state import handle_state_change, report_state_consumer, reportable_state


@pytest.fixture
def homegraph():
    hg = MagicMock()
    hg.request_sync = AsyncMock(return_value={})
    hg.report_state = AsyncMock(return_value={})
    return hg


@pytest.fixture
def client(settings, gateway, homegraph):
    app = create_app(settings, gateway=gateway, homegraph=homegraph)
    with TestClient(app) as c:
        yield c


class TestWebhook:
    """Tests for the /smarthome endpoint."""

    def test_sync_over_http(self, client, token):
        r = client.post("/smarthome", headers={"Authorization": token},
                        json={"requestId": "abc", "inputs": [{"intent": "action.devices.SYNC"}]})

        assert r.status_code == 200
        body = r.json()
        assert body["requestId"] == "abc"
        assert len(body["payload"]["devices"]) == 4

    def test_empty_inputs_rejected(self, client):
        r = client.post("/smarthome", json={"requestId": "abc", "inputs": []})

        assert r.status_code == 422

    def test_disconnect(self, client):
        r = client.post("/smarthome", json={"requestId": "d", "inputs": [{"intent": "action.devices.DISCONNECT"}]})

        assert r.json() == {}


class TestAuxiliaryEndpoints:
    """Tests for /requestsync, /updateState and /local."""

    def test_request_sync(self, client, homegraph):
        r = client.post("/requestsync")

        assert r.status_code == 200
        homegraph.request_sync.assert_awaited_once()

    def test_request_sync_failure_is_500(self, client, homegraph):
        homegraph.request_sync.side_effect = UpstreamUnavailable("POST devices:requestSync failed", "HTTP 403")

        r = client.post("/requestsync")

        assert r.status_code == 500
        assert r.text.startswith("Error requesting sync")

    def test_request_sync_missing_key_file_is_500(self, settings, gateway, tmp_path):
        hg = HomeGraphClient(settings.HOMEGRAPH_URL, settings.AGENT_USER_ID,
                             credentials_file=str(tmp_path / "missing.json"))
        with TestClient(create_app(settings, gateway=gateway, homegraph=hg)) as c:
            r = c.post("/requestsync")

        assert r.status_code == 500
        assert r.text.startswith("Error requesting sync")

    def test_update_state_stores_washer(self, client):
        r = client.post("/updateState", json={"on": True, "isRunning": True, "isPaused": False})

        assert r.status_code == 200
        assert client.app.state.store.get("washer") == {"on": True, "isRunning": True, "isPaused": False}

    def test_local_identify_error_is_400(self, client):
        r = client.post("/local", json={"requestId": "i", "inputs": [
            {"intent": "action.devices.IDENTIFY", "payload": {"device": {}}}]})

        assert r.status_code == 400
        assert r.json()["payload"]["errorCode"] == "invalid_request"

    def test_local_reachable_devices(self, client):
        r = client.post("/local", json={
            "requestId": "r",
            "inputs": [{"intent": "action.devices.REACHABLE_DEVICES", "payload": {"device": {"id": "hub"}}}],
            "devices": [{"id": "/things/zb-1"}, {"id": "/things/other"}],
        })

        assert r.json()["payload"]["devices"] == [{"verificationId": "/things/zb-1"}]


class TestHomeGraph:
    """Tests for the Home Graph client."""

    @pytest.mark.asyncio
    async def test_report_state_body(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, request.headers["Authorization"], json.loads(request.content)))
            return httpx.Response(200, json={"requestId": "x"})

        creds = MagicMock(valid=True, token="tok")
        hg = HomeGraphClient("https://homegraph.example.com/v1", "123", credentials=creds,
                             transport=httpx.MockTransport(handler))

        await hg.report_state("washer", {"on": True})

        path, auth, body = seen[0]
        assert path == "/v1/devices:reportStateAndNotification"
        assert auth == "Bearer tok"
        assert body["agentUserId"] == "123"
        assert body["payload"] == {"devices": {"states": {"washer": {"on": True}}}}

    @pytest.mark.asyncio
    async def test_request_sync_failure(self):
        creds = MagicMock(valid=True, token="tok")
        hg = HomeGraphClient("https://homegraph.example.com/v1", "123", credentials=creds,
                             transport=httpx.MockTransport(lambda request: httpx.Response(404, text="nope")))

        with pytest.raises(UpstreamUnavailable):
            await hg.request_sync()

    @pytest.mark.asyncio
    async def test_expired_credentials_are_refreshed(self):
        creds = MagicMock(valid=False, token="fresh")
        hg = HomeGraphClient("https://homegraph.example.com/v1", "123", credentials=creds,
                             transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))

        await hg.request_sync()

        creds.refresh.assert_called_once()

    @pytest.mark.asyncio
    async def test_non_json_reply_is_upstream_unavailable(self):
        creds = MagicMock(valid=True, token="tok")
        hg = HomeGraphClient("https://homegraph.example.com/v1", "123", credentials=creds,
                             transport=httpx.MockTransport(lambda request: httpx.Response(200, text="ok")))

        with pytest.raises(UpstreamUnavailable):
            await hg.report_state("washer", {"on": True})

    @pytest.mark.asyncio
    async def test_missing_key_file_is_upstream_unavailable(self, tmp_path):
        hg = HomeGraphClient("https://homegraph.example.com/v1", "123",
                             credentials_file=str(tmp_path / "missing.json"),
                             transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))

        with pytest.raises(UpstreamUnavailable):
            await hg.request_sync()


class TestReportStateListener:
    """Tests for the state-change listener."""

    def test_reportable_state_keeps_washer_keys(self):
        assert reportable_state({"on": True, "isRunning": False, "extra": 1}) == {"on": True, "isRunning": False}

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, homegraph):
        homegraph.report_state.side_effect = UpstreamUnavailable("down")

        assert await handle_state_change(homegraph, "washer", {"on": True}) is False

    @pytest.mark.asyncio
    async def test_store_write_reaches_homegraph(self, store, homegraph):
        task = asyncio.create_task(report_state_consumer(store.feed, homegraph))
        for _ in range(10):
            if store.feed.subscribers:
                break
            await asyncio.sleep(0)

        await store.put("washer", {"on": True, "isRunning": False, "isPaused": False})
        for _ in range(10):
            if homegraph.report_state.await_count:
                break
            await asyncio.sleep(0)
        task.cancel()

        homegraph.report_state.assert_awaited_once_with("washer", {"on": True, "isPaused": False, "isRunning": False})

    @pytest.mark.asyncio
    async def test_listener_survives_failed_push(self, store):
        replies = [httpx.Response(200, text="ok"), httpx.Response(200, json={})]
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["payload"]["devices"]["states"])
            return replies.pop(0)

        hg = HomeGraphClient("https://homegraph.example.com/v1", "123", credentials=MagicMock(valid=True, token="tok"),
                             transport=httpx.MockTransport(handler))
        task = asyncio.create_task(report_state_consumer(store.feed, hg))
        for _ in range(10):
            if store.feed.subscribers:
                break
            await asyncio.sleep(0)

        await store.put("washer", {"on": True, "isRunning": False, "isPaused": False})
        await store.put("washer", {"on": False, "isRunning": False, "isPaused": False})
        for _ in range(100):
            if len(seen) == 2:
                break
            await asyncio.sleep(0.01)

        assert not task.done()
        task.cancel()
        assert [s["washer"]["on"] for s in seen] == [True, False]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_not_raised(self, homegraph):
        homegraph.report_state.side_effect = RuntimeError("boom")

        assert await handle_state_change(homegraph, "washer", {"on": True}) is False


class TestStateFeed:
    """Tests for the state change feed."""

    @pytest.mark.asyncio
    async def test_slow_listener_keeps_newest_changes(self):
        feed = StateFeed(maxsize=2)
        changes = feed.changes()
        first = asyncio.ensure_future(changes.__anext__())
        await asyncio.sleep(0)

        assert feed.publish(StateChange("washer", {"on": True})) == 1
        assert (await first).state == {"on": True}
        for on in (False, True, False):
            feed.publish(StateChange("washer", {"on": on}))

        assert (await changes.__anext__()).state == {"on": True}
        assert (await changes.__anext__()).state == {"on": False}
        await changes.aclose()
        assert feed.subscribers == 0

    def test_publish_without_listeners(self):
        assert StateFeed().publish(StateChange("washer", {})) == 0
