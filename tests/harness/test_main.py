"""Tests for the FastAPI service endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.harness import main


@pytest.fixture
def service_env(monkeypatch, tmp_path):
    monkeypatch.setenv("HARNESS_GITHUB_TOKEN", "ghp_testtoken")
    monkeypatch.setenv("HARNESS_REUSE_BACKEND", "false")
    monkeypatch.setenv("HARNESS_WORKSPACE_PATH", str(tmp_path))
    monkeypatch.setenv("HARNESS_LOG_JSON", "false")


def trigger_payload():
    return {
        "action": "created",
        "issue": {"number": 42, "title": "Broken build"},
        "comment": {
            "id": 1001,
            "body": "@fro-bot please fix",
            "user": {"login": "octocat"},
            "author_association": "OWNER",
        },
        "repository": {"name": "app", "owner": {"login": "acme"}},
    }


class TestProbes:
    def test_health(self, service_env):
        with TestClient(main.app) as client:
            assert client.get("/health").json() == {"status": "healthy"}

    def test_ready_without_shared_backend(self, service_env):
        with TestClient(main.app) as client:
            response = client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "dependencies": {"backend": "per_run"}}

    def test_ready_reports_down_backend(self, service_env, monkeypatch):
        with TestClient(main.app) as client:
            backend = MagicMock()
            backend.is_shut_down = True
            monkeypatch.setattr(main, "shared_backend", backend)
            response = client.get("/ready")
            monkeypatch.setattr(main, "shared_backend", None)

        assert response.status_code == 503
        assert response.json()["dependencies"]["backend"] == "down"

    def test_metrics(self, service_env):
        with TestClient(main.app) as client:
            response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")


class TestWebhookEndpoint:
    def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(main, "webhook_handler", None)
        client = TestClient(main.app)

        response = client.post("/webhooks/github", json={})

        assert response.status_code == 503

    def test_invalid_json(self, service_env):
        with TestClient(main.app) as client:
            response = client.post(
                "/webhooks/github",
                content=b"{not json",
                headers={"x-github-event": "issue_comment", "content-type": "application/json"},
            )

        assert response.status_code == 400

    def test_non_trigger_is_ignored(self, service_env):
        payload = trigger_payload()
        payload["comment"]["body"] = "thanks!"

        with TestClient(main.app) as client:
            response = client.post(
                "/webhooks/github", json=payload, headers={"x-github-event": "issue_comment"}
            )

        assert response.json()["status"] == "ignored"

    def test_trigger_is_accepted_and_dispatched(self, service_env, monkeypatch):
        fake_dispatcher = MagicMock()
        fake_dispatcher.dispatch = AsyncMock()

        with TestClient(main.app) as client:
            monkeypatch.setattr(main, "dispatcher", fake_dispatcher)
            response = client.post(
                "/webhooks/github",
                json=trigger_payload(),
                headers={"x-github-event": "issue_comment"},
            )

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "target_id": "acme/app#42"}
        fake_dispatcher.dispatch.assert_awaited_once()
        event = fake_dispatcher.dispatch.call_args.args[0]
        assert event.comment_id == 1001
        assert main.background_tasks == set()


class TestRedactSecret:
    def test_only_prefix_is_visible(self):
        assert main._redact_secret("ghp_abcdef") == "ghp_******"
        assert main._redact_secret("abc") == "***"
