"""Harness observability: events, emitters and Prometheus metrics."""

from src.harness.observability.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.harness.observability.models import EventType, HarnessEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventSinkType",
    "EventType",
    "HarnessEvent",
    "LoggingEventEmitter",
    "NullEventEmitter",
    "create_event_emitter",
]
