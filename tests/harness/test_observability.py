"""Unit tests for harness events, emitters and Prometheus metrics."""

import asyncio
import logging

from prometheus_client import CollectorRegistry

from src.harness.observability import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    EventType,
    HarnessEvent,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.harness.observability.metrics import (
    HarnessMetrics,
    MetricsEventEmitter,
    generate_metrics_output,
)


def run_async(coro):
    return asyncio.run(coro)


def make_event(event_type=EventType.COMPLETION, **details):
    return HarnessEvent(
        event_type=event_type,
        target_id="acme/app#1",
        repository="acme/app",
        details=details,
    )


class TestHarnessEvent:
    def test_log_dict_flattens_details(self):
        log_dict = make_event(EventType.RETRY, attempt=2, error="fetch failed").to_log_dict()

        assert log_dict["event_type"] == "retry"
        assert log_dict["target_id"] == "acme/app#1"
        assert log_dict["attempt"] == 2
        assert log_dict["timestamp"].endswith("+00:00")


class TestEmitters:
    def test_logging_emitter_levels(self, caplog):
        emitter = LoggingEventEmitter(logger_name="test.harness.events")

        with caplog.at_level(logging.INFO, logger="test.harness.events"):
            run_async(emitter.emit(make_event(EventType.ERROR, error="boom")))
            run_async(emitter.emit(make_event(EventType.COMPLETION)))

        assert [record.levelno for record in caplog.records] == [logging.ERROR, logging.INFO]
        assert caplog.records[0].getMessage() == "Harness event: error for acme/app#1"
        assert caplog.records[0].error == "boom"

    def test_composite_continues_after_failing_child(self):
        class FailingEmitter(EventEmitter):
            async def emit(self, event):
                raise RuntimeError("sink down")

        class RecordingEmitter(EventEmitter):
            def __init__(self):
                self.events = []

            async def emit(self, event):
                self.events.append(event)

        recorder = RecordingEmitter()
        composite = CompositeEventEmitter([FailingEmitter()])
        composite.add_emitter(recorder)

        run_async(composite.emit(make_event()))
        run_async(composite.close())

        assert len(recorder.events) == 1
        assert len(composite.emitters) == 2

    def test_factory(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)
        assert isinstance(create_event_emitter([EventSinkType.LOGGING]), LoggingEventEmitter)

        composite = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])
        assert isinstance(composite, CompositeEventEmitter)
        assert isinstance(composite.emitters[1], MetricsEventEmitter)

    def test_null_emitter(self):
        run_async(NullEventEmitter().emit(make_event()))


class TestMetrics:
    def test_invocation_results_are_counted(self):
        registry = CollectorRegistry()
        emitter = MetricsEventEmitter(registry=registry)

        run_async(emitter.emit(make_event(EventType.COMPLETION, duration_seconds=12.5)))
        run_async(emitter.emit(make_event(EventType.TIMEOUT, duration_seconds=1800)))
        run_async(emitter.emit(make_event(EventType.ERROR)))
        run_async(emitter.emit(make_event(EventType.RETRY, attempt=2)))
        run_async(emitter.emit(make_event(EventType.SESSION_CREATED)))

        assert registry.get_sample_value("harness_invocations_total", {"result": "success"}) == 1
        assert registry.get_sample_value("harness_invocations_total", {"result": "timeout"}) == 1
        assert registry.get_sample_value("harness_invocations_total", {"result": "failure"}) == 1
        assert registry.get_sample_value("harness_prompt_retries_total") == 1
        assert registry.get_sample_value("harness_invocation_duration_seconds_count") == 2

    def test_metrics_output(self):
        registry = CollectorRegistry()
        HarnessMetrics(registry=registry).record_invocation("success", 3.0)

        output = generate_metrics_output(registry).decode()

        assert 'harness_invocations_total{result="success"} 1.0' in output
