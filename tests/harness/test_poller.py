"""Unit tests for session completion polling."""

import asyncio

from src.harness.agent.poller import ActivityTracker, PollConfig, poll_for_session_completion
from src.harness.backend.client import BackendTransportError


def run_async(coro):
    return asyncio.run(coro)


async def no_sleep(delay):
    await asyncio.sleep(0)


class FakeClock:
    """Advances by a fixed step on every read."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


class ScriptedStatusClient:
    def __init__(self, responses, session_id="ses_1"):
        self.responses = list(responses)
        self.session_id = session_id
        self.calls = 0

    async def session_status(self, directory):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if response is None:
            return {}
        return {self.session_id: response}


def poll(client, cancel_event=None, config=PollConfig(max_seconds=0), **kwargs):
    async def scenario():
        return await poll_for_session_completion(
            client,
            "ses_1",
            "/work",
            cancel_event or asyncio.Event(),
            config,
            sleep=no_sleep,
            **kwargs,
        )

    return run_async(scenario())


class TestPollForSessionCompletion:
    def test_busy_then_idle_completes(self):
        client = ScriptedStatusClient([{"type": "busy"}, {"type": "busy"}, {"type": "idle"}])

        result = poll(client)

        assert result.completed
        assert result.error is None
        assert result.queries == 3

    def test_persistent_retry_fails_after_grace_cycles(self):
        client = ScriptedStatusClient([{"type": "retry", "attempt": 2, "message": "fetch failed"}])

        result = poll(client)

        assert not result.completed
        assert result.error == "Session error after 3 retry cycles: fetch failed"
        assert result.queries == 3

    def test_busy_resets_retry_cycles(self):
        retry = {"type": "retry", "message": "overloaded"}
        client = ScriptedStatusClient([retry, retry, {"type": "busy"}, retry, retry, {"type": "idle"}])

        result = poll(client)

        assert result.completed
        assert result.queries == 6

    def test_preset_abort_makes_no_queries(self):
        client = ScriptedStatusClient([{"type": "idle"}])
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = poll(client, cancel_event)

        assert result.error == "Aborted"
        assert result.queries == 0
        assert client.calls == 0

    def test_poll_timeout(self):
        client = ScriptedStatusClient([{"type": "busy"}])

        result = poll(client, config=PollConfig(max_seconds=10), clock=FakeClock(step=4.0))

        assert not result.completed
        assert result.error.startswith("Poll timeout after ")
        assert result.error.endswith("s")

    def test_query_failures_and_missing_session_are_tolerated(self):
        client = ScriptedStatusClient(
            [BackendTransportError("status", OSError("ECONNRESET")), None, {"type": "idle"}]
        )

        result = poll(client)

        assert result.completed
        assert result.queries == 3

    def test_unknown_status_keeps_polling(self):
        client = ScriptedStatusClient([{"type": "compacting"}, {"type": "idle"}])
        assert poll(client).completed

    def test_idle_from_event_stream_completes_without_query(self):
        tracker = ActivityTracker()
        tracker.session_idle = True
        client = ScriptedStatusClient([{"type": "busy"}])

        result = poll(client, tracker=tracker)

        assert result.completed
        assert client.calls == 0

    def test_no_initial_activity_fails(self):
        tracker = ActivityTracker()
        client = ScriptedStatusClient([{"type": "busy"}])

        result = poll(
            client,
            config=PollConfig(max_seconds=0, initial_activity_timeout_seconds=90),
            tracker=tracker,
            clock=FakeClock(step=50.0),
        )

        assert result.error == "No agent activity detected within 90s"

    def test_activity_disables_initial_timeout(self):
        tracker = ActivityTracker()
        tracker.first_meaningful_event = True
        client = ScriptedStatusClient([{"type": "busy"}, {"type": "busy"}, {"type": "idle"}])

        result = poll(
            client,
            config=PollConfig(max_seconds=0, initial_activity_timeout_seconds=90),
            tracker=tracker,
            clock=FakeClock(step=50.0),
        )

        assert result.completed

    def test_tracker_reset(self):
        tracker = ActivityTracker()
        tracker.first_meaningful_event = True
        tracker.session_idle = True

        tracker.reset()

        assert not tracker.first_meaningful_event
        assert not tracker.session_idle
