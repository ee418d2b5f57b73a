"""Prometheus metrics for the harness.

Metrics Defined:
- harness_invocations_total: Counter of agent invocations by result
- harness_prompt_retries_total: Counter of prompt resends after network errors
- harness_invocation_duration_seconds: Histogram of invocation wall-clock time

MetricsEventEmitter updates the metrics from harness events; the service
exposes them at ``/metrics``.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.harness.observability.emitter import EventEmitter
from src.harness.observability.models import EventType, HarnessEvent


logger = logging.getLogger(__name__)


# 1 second to 1 hour
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
)

INVOCATION_RESULTS = ("success", "failure", "timeout")


class HarnessMetrics:
    """Container for the harness Prometheus metrics.

    Attributes:
        registry: The Prometheus registry for these metrics.
        invocations_total: Counter of invocations, labelled by result.
        prompt_retries_total: Counter of prompt retries.
        invocation_duration_seconds: Histogram of invocation durations.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.invocations_total = Counter(
            "harness_invocations_total",
            "Total number of agent invocations",
            labelnames=["result"],
            registry=self.registry,
        )

        self.prompt_retries_total = Counter(
            "harness_prompt_retries_total",
            "Total number of prompts resent after an LLM network error",
            registry=self.registry,
        )

        self.invocation_duration_seconds = Histogram(
            "harness_invocation_duration_seconds",
            "Wall-clock time of agent invocations in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_invocation(self, result: str, duration_seconds: Optional[float] = None) -> None:
        """Record a finished invocation.

        Args:
            result: One of "success", "failure" or "timeout".
            duration_seconds: Wall-clock time, when known.
        """
        self.invocations_total.labels(result=result).inc()
        if duration_seconds is not None:
            self.invocation_duration_seconds.observe(duration_seconds)

    def record_retry(self) -> None:
        self.prompt_retries_total.inc()


_default_metrics: Optional[HarnessMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> HarnessMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return HarnessMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = HarnessMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render metrics in Prometheus text format for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - RETRY: increments harness_prompt_retries_total
    - COMPLETION / ERROR / TIMEOUT: increments harness_invocations_total
      and observes the duration from ``details["duration_seconds"]``
    """

    _RESULTS = {
        EventType.COMPLETION: "success",
        EventType.ERROR: "failure",
        EventType.TIMEOUT: "timeout",
    }

    def __init__(
        self,
        metrics: Optional[HarnessMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> HarnessMetrics:
        return self._metrics

    async def emit(self, event: HarnessEvent) -> None:
        try:
            if event.event_type == EventType.RETRY:
                self._metrics.record_retry()
                return

            result = self._RESULTS.get(event.event_type)
            if result is None:
                return

            duration = event.details.get("duration_seconds")
            self._metrics.record_invocation(
                result,
                float(duration) if duration is not None else None,
            )
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={"event_type": event.event_type.value, "target_id": event.target_id},
            )
