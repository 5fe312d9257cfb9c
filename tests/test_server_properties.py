"""Tests for the HTTP surface: auth, queue routes, sync triggers, CORS and SSE."""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.delivery.streaming import CONNECTED_EVENT
from thymer_inbox.exceptions import UnknownSourceError
from thymer_inbox.server.app import create_app
from thymer_inbox.sync.scheduler import Scheduler

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def queue() -> DeliveryQueue:
    return DeliveryQueue()


@pytest.fixture
def scheduler() -> Mock:
    scheduler = Mock(spec=Scheduler)
    scheduler.sources = ["github"]
    return scheduler


@pytest.fixture
def client(queue, scheduler) -> TestClient:
    app = create_app(
        queue,
        scheduler,
        token=TOKEN,
        stream_poll_interval=0.01,
        stream_window=0.05,
    )
    return TestClient(app)


class TestAuth:
    def test_health_needs_no_token(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.parametrize("path", ["/pending", "/peek", "/stream"])
    def test_missing_token_is_rejected(self, client, path):
        response = client.get(path)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_token_is_rejected(self, client):
        response = client.get("/peek", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_query_token_is_accepted(self, client):
        assert client.get("/peek", params={"token": TOKEN}).status_code == 200

    def test_post_routes_need_a_token(self, client, scheduler):
        assert client.post("/queue", json={"content": "x"}).status_code == 401
        assert client.post("/sync/github").status_code == 401
        scheduler.trigger.assert_not_called()


class TestQueueRoutes:
    def test_submit_then_pending_then_empty(self, client):
        submitted = client.post(
            "/queue", headers=AUTH, json={"content": "# Note", "title": "Note"}
        ).json()

        assert submitted["success"] is True
        item = client.get("/pending", headers=AUTH).json()
        assert item["id"] == submitted["id"]
        assert item["content"] == "# Note"
        assert item["action"] == "append"
        assert item["title"] == "Note"
        assert "createdAt" in item
        assert client.get("/pending", headers=AUTH).status_code == 204

    def test_pending_pops_oldest_first(self, client, queue):
        first = queue.submit("first")
        queue.submit("second")

        assert client.get("/pending", headers=AUTH).json()["id"] == first.id
        assert len(queue) == 1

    def test_peek_lists_without_removing(self, client, queue):
        queue.submit("a")
        queue.submit("b")

        body = client.get("/peek", headers=AUTH).json()

        assert body["count"] == 2
        assert [item["content"] for item in body["items"]] == ["a", "b"]
        assert len(queue) == 2

    def test_invalid_json(self, client):
        response = client.post(
            "/queue",
            headers={**AUTH, "Content-Type": "application/json"},
            content=b"{not json",
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    @pytest.mark.parametrize("payload", [{}, {"content": ""}, {"title": "no content"}])
    def test_content_is_required(self, client, payload):
        response = client.post("/queue", headers=AUTH, json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "content required"}

    def test_non_object_body(self, client):
        response = client.post("/queue", headers=AUTH, json=["content"])

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    def test_invalid_field_is_reported(self, client, queue):
        response = client.post("/queue", headers=AUTH, json={"content": "x", "action": ""})

        assert response.status_code == 400
        assert response.json()["error"].startswith("action")
        assert len(queue) == 0


class TestSyncRoutes:
    def test_sync_started(self, client, scheduler):
        response = client.post("/sync/github", headers=AUTH)

        assert response.json() == {"status": "sync started"}
        scheduler.trigger.assert_called_once_with("github", resync=False)

    def test_resync_started(self, client, scheduler):
        response = client.post("/sync/github", headers=AUTH, params={"resync": "true"})

        assert response.json() == {"status": "resync started"}
        scheduler.trigger.assert_called_once_with("github", resync=True)

    def test_unknown_source(self, client, scheduler):
        response = client.post("/sync/jira", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"error": "Unknown source: jira"}
        scheduler.trigger.assert_not_called()

    def test_unconfigured_source(self, client, scheduler):
        scheduler.trigger.side_effect = UnknownSourceError("calendar sync not configured")

        response = client.post("/sync/calendar", headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "calendar sync not configured"}

    def test_readwise_alias(self, client, scheduler):
        response = client.post("/readwise-sync", headers=AUTH)

        assert response.json() == {"status": "sync started"}
        scheduler.trigger.assert_called_once_with("readwise", resync=False)

    def test_bad_query_value_is_a_400(self, client, scheduler):
        response = client.post("/sync/github", headers=AUTH, params={"resync": "maybe"})

        assert response.status_code == 400
        assert "error" in response.json()
        scheduler.trigger.assert_not_called()


class TestHeaders:
    def test_private_network_header_on_every_response(self, client):
        assert client.get("/health").headers["Access-Control-Allow-Private-Network"] == "true"
        assert client.get("/peek").headers["Access-Control-Allow-Private-Network"] == "true"

    def test_preflight_allows_private_network(self, client):
        response = client.options(
            "/queue",
            headers={
                "Origin": "https://app.thymer.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
                "Access-Control-Request-Private-Network": "true",
            },
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert response.headers["Access-Control-Allow-Private-Network"] == "true"

    def test_restricted_origins(self, queue, scheduler):
        app = create_app(queue, scheduler, token=TOKEN, allowed_origins=["https://app.thymer.com"])
        client = TestClient(app)

        allowed = client.get("/health", headers={"Origin": "https://app.thymer.com"})
        other = client.get("/health", headers={"Origin": "https://evil.example"})

        assert allowed.headers["Access-Control-Allow-Origin"] == "https://app.thymer.com"
        assert "Access-Control-Allow-Origin" not in other.headers


class TestStream:
    def test_stream_sends_connected_event_then_items(self, client, queue):
        item = queue.submit("streamed")

        response = client.get("/stream", headers=AUTH)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text.startswith(CONNECTED_EVENT)
        assert f'"id":{item.id}' in response.text
        assert len(queue) == 0


class TestLifespan:
    def test_scheduler_follows_application_lifetime(self, queue, scheduler):
        app = create_app(queue, scheduler, token=TOKEN)

        with TestClient(app):
            scheduler.start.assert_called_once()
            scheduler.stop.assert_not_called()

        scheduler.stop.assert_called_once()

    def test_unmanaged_scheduler_is_left_alone(self, queue, scheduler):
        app = create_app(queue, scheduler, token=TOKEN, manage_scheduler=False)

        with TestClient(app):
            pass

        scheduler.start.assert_not_called()
        scheduler.stop.assert_not_called()
