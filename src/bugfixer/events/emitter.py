"""Event emitter implementations.

- EventEmitter: Abstract base class
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks, isolating failures
- NullEventEmitter: Discards events (for testing)
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from src.bugfixer.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


class EventEmitter(ABC):
    """Abstract base class for event emitters."""

    @abstractmethod
    async def emit(self, event: PipelineEvent) -> None:
        """Publish an event to the sink."""

    async def close(self) -> None:
        """Release resources held by the emitter."""


class LoggingEventEmitter(EventEmitter):
    """Event emitter that writes structured log entries.

    ERROR events log at ERROR level, NO_FIX at WARNING and everything
    else at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger
        self._log_level_map = {
            EventType.PROPOSAL_CREATED: logging.INFO,
            EventType.NO_FIX: logging.WARNING,
            EventType.STATE_TRANSITION: logging.INFO,
            EventType.COMPLETION: logging.INFO,
            EventType.ERROR: logging.ERROR,
        }

    async def emit(self, event: PipelineEvent) -> None:
        self._logger.log(
            self._log_level_map.get(event.event_type, logging.INFO),
            "Bug fixer event",
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Delegates to several emitters; one failing sink never blocks the others.

    Example:
        >>> composite = CompositeEventEmitter([LoggingEventEmitter(), MetricsEventEmitter()])
        >>> await composite.emit(event)
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    async def emit(self, event: PipelineEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event",
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "issue_id": event.issue_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error(
                    "Failed to close emitter",
                    extra={"emitter_type": type(emitter).__name__, "error": str(e)},
                )


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: PipelineEvent) -> None:
        pass
