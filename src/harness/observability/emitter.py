"""Event emitter implementations for harness observability.

Defines the EventEmitter interface and the sinks the harness ships with:

- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- NullEventEmitter: Discards events

The Prometheus sink lives in metrics.py. Emission is best-effort: a failing
sink is logged and never interrupts an agent invocation.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from src.harness.observability.models import EventType, HarnessEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Types of event sinks supported by the harness.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Emit events as Prometheus metrics.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Abstract base class for harness event emitters.

    Implementations should be fault-tolerant: emit() failures are logged
    and not propagated to the caller.
    """

    @abstractmethod
    async def emit(self, event: HarnessEvent) -> None:
        """Emit a harness event.

        Args:
            event: The event to emit.
        """

    async def close(self) -> None:
        """Close the emitter and release resources. Does nothing by default."""


class LoggingEventEmitter(EventEmitter):
    """Event emitter that writes events as structured log entries.

    Events are logged at a level based on their type: errors at ERROR,
    timeouts, retries and exhaustion at WARNING, everything else at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger
        self._log_level_map = {
            EventType.INVOCATION_STARTED: logging.INFO,
            EventType.SESSION_CREATED: logging.INFO,
            EventType.RETRY: logging.WARNING,
            EventType.RETRIES_EXHAUSTED: logging.WARNING,
            EventType.COMPLETION: logging.INFO,
            EventType.TIMEOUT: logging.WARNING,
            EventType.ERROR: logging.ERROR,
        }

    async def emit(self, event: HarnessEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)
        self._logger.log(
            log_level,
            "Harness event: %s for %s",
            event.event_type.value,
            event.target_id,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Event emitter that delegates to multiple child emitters.

    Each child is called independently; a failing child is logged and does
    not prevent emission to the others.
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        """Read-only copy of the child emitters."""
        return list(self._emitters)

    async def emit(self, event: HarnessEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(emitter).__name__,
                    str(e),
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "target_id": event.target_id,
                    },
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error("Failed to close emitter %s: %s", type(emitter).__name__, str(e))


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: HarnessEvent) -> None:
        pass


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Create an event emitter for the requested sinks.

    Args:
        sink_types: Sinks to enable. None or empty returns a
            LoggingEventEmitter.
        logger_name: Optional logger name for the LoggingEventEmitter.

    Returns:
        A single emitter, or a CompositeEventEmitter for several sinks.

    Example:
        >>> emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])
        >>> isinstance(emitter, CompositeEventEmitter)
        True
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    emitters: List[EventEmitter] = []
    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # metrics.py imports this module
            from src.harness.observability.metrics import MetricsEventEmitter

            emitters.append(MetricsEventEmitter())
        else:
            logger.warning("Unknown event sink type: %s, skipping", sink_type)

    if not emitters:
        return LoggingEventEmitter(logger_name=logger_name)
    if len(emitters) == 1:
        return emitters[0]
    return CompositeEventEmitter(emitters)
