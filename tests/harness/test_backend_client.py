"""Unit tests for the OpenCode HTTP client.

Uses httpx.MockTransport so every request shape and response decoding
path runs without a server.
"""

import asyncio
import json

import httpx
import pytest

from src.harness.agent.models import ModelSelection, PromptAccepted, PromptMode, PromptRejected
from src.harness.backend.client import (
    BackendError,
    BackendTransportError,
    OpenCodeClient,
    SessionCreationError,
    build_prompt_body,
)


def run_async(coro):
    return asyncio.run(coro)


def make_client(handler) -> OpenCodeClient:
    return OpenCodeClient("http://opencode.test", transport=httpx.MockTransport(handler))


class TestBuildPromptBody:
    def test_model_key_omitted_without_override(self):
        body = build_prompt_body("hello", "build")

        assert body == {"agent": "build", "parts": [{"type": "text", "text": "hello"}]}
        assert "model" not in body

    def test_model_override_included(self):
        body = build_prompt_body("hello", "build", ModelSelection("anthropic", "claude-sonnet-4"))
        assert body["model"] == {"providerID": "anthropic", "modelID": "claude-sonnet-4"}

    def test_file_parts_follow_text(self):
        file_part = {"type": "file", "mime": "image/png", "url": "file:///tmp/a.png"}
        body = build_prompt_body("look", "build", file_parts=[file_part])
        assert body["parts"] == [{"type": "text", "text": "look"}, file_part]


class TestCreateSession:
    def test_session_created_with_directory(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["directory"] = request.url.params.get("directory")
            return httpx.Response(200, json={"id": "ses_1", "title": "t", "version": "1.0"})

        async def scenario():
            async with make_client(handler) as client:
                return await client.create_session("/work")

        session = run_async(scenario())

        assert session.id == "ses_1"
        assert seen == {"path": "/session", "directory": "/work"}

    def test_missing_id_raises(self):
        def handler(request):
            return httpx.Response(200, json={})

        with pytest.raises(SessionCreationError, match="No data returned"):
            run_async(make_client(handler).create_session("/work"))

    def test_error_status_raises_with_server_message(self):
        def handler(request):
            return httpx.Response(500, json={"error": {"message": "disk full"}})

        with pytest.raises(SessionCreationError, match="disk full") as exc_info:
            run_async(make_client(handler).create_session("/work"))
        assert exc_info.value.status_code == 500

    def test_transport_failure_raises_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendTransportError, match="Network error during session creation"):
            run_async(make_client(handler).create_session("/work"))


class TestSendPrompt:
    def test_async_prompt_accepted_on_204(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        body = build_prompt_body("do it", "build")
        outcome = run_async(make_client(handler).send_prompt("ses_1", body, "/work"))

        assert outcome == PromptAccepted()
        assert seen["path"] == "/session/ses_1/prompt_async"
        assert seen["body"] == body

    def test_error_status_is_rejected_in_band(self):
        def handler(request):
            return httpx.Response(502, text="fetch failed")

        outcome = run_async(make_client(handler).send_prompt("ses_1", {}, "/work"))

        assert isinstance(outcome, PromptRejected)
        assert outcome.error == "fetch failed"
        assert outcome.status_code == 502

    def test_error_field_is_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"error": {"message": "Agent not found: x"}})

        outcome = run_async(make_client(handler).send_prompt("ses_1", {}, "/work"))
        assert outcome == PromptRejected(error="Agent not found: x")

    def test_sync_reply_carries_parts_and_info(self):
        def handler(request):
            assert request.url.path == "/session/ses_1/message"
            return httpx.Response(
                200,
                json={
                    "info": {"role": "assistant", "modelID": "m", "tokens": {"input": 1}},
                    "parts": [{"type": "text", "text": "done"}, "junk"],
                },
            )

        outcome = run_async(
            make_client(handler).send_prompt("ses_1", {}, "/work", PromptMode.SYNC)
        )

        assert isinstance(outcome, PromptAccepted)
        assert outcome.parts == ({"type": "text", "text": "done"},)
        assert outcome.info["modelID"] == "m"

    def test_sync_reply_with_info_error_is_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"info": {"error": {"message": "fetch failed"}}, "parts": []})

        outcome = run_async(
            make_client(handler).send_prompt("ses_1", {}, "/work", PromptMode.SYNC)
        )
        assert outcome == PromptRejected(error="fetch failed")

    def test_transport_failure_raises(self):
        def handler(request):
            raise httpx.ReadError("ECONNRESET", request=request)

        with pytest.raises(BackendTransportError, match="ECONNRESET"):
            run_async(make_client(handler).send_prompt("ses_1", {}, "/work"))


class TestStatusAndLog:
    def test_session_status_map(self):
        def handler(request):
            assert request.url.path == "/session/status"
            return httpx.Response(200, json={"ses_1": {"type": "busy"}})

        statuses = run_async(make_client(handler).session_status("/work"))
        assert statuses == {"ses_1": {"type": "busy"}}

    def test_session_status_error_raises(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(BackendError):
            run_async(make_client(handler).session_status("/work"))

    def test_abort_session(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["directory"] = request.url.params.get("directory")
            return httpx.Response(200, json=True)

        run_async(make_client(handler).abort_session("ses_1", "/work"))

        assert seen == {"method": "POST", "path": "/session/ses_1/abort", "directory": "/work"}

    def test_abort_session_rejected(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"message": "session not found"}})

        with pytest.raises(BackendError, match="Session abort failed: session not found"):
            run_async(make_client(handler).abort_session("ses_9", "/work"))

    def test_log_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"error": "bad level"})

        with pytest.raises(BackendError, match="bad level"):
            run_async(make_client(handler).log("hi"))


class TestEventSubscription:
    def test_events_are_decoded_from_sse(self):
        stream = (
            ": keep-alive\n\n"
            'data: {"type": "server.connected", "properties": {}}\n\n'
            "data: not json\n\n"
            'data: {"type": "session.idle",\n'
            'data:  "properties": {"sessionID": "ses_1"}}\n\n'
        )

        def handler(request):
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(
                200,
                content=stream.encode(),
                headers={"content-type": "text/event-stream"},
            )

        async def scenario():
            client = make_client(handler)
            subscription = await client.subscribe_events("/work")
            events = [event async for event in subscription.events()]
            await subscription.aclose()
            await subscription.aclose()
            await client.close()
            return events, subscription.closed

        events, closed = run_async(scenario())

        assert [event["type"] for event in events] == ["server.connected", "session.idle"]
        assert events[1]["properties"] == {"sessionID": "ses_1"}
        assert closed

    def test_refused_subscription_raises(self):
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(BackendError, match="Event subscription failed"):
            run_async(make_client(handler).subscribe_events("/work"))
