"""Domain events and the in-process bus used to publish them.

Events are the read-only channel through which observability and alerting
collaborators learn about breaker transitions, node health and session
lifecycle. Nothing in the orchestrator depends on a subscriber being present.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from playback_orchestrator.domain.shared.datetime_utils import utcnow
from playback_orchestrator.domain.shared.types import (
    NonEmptyStr,
    NonNegativeInt,
    UtcDatetimeField,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="DomainEvent")
EventHandler = Callable[[T], Awaitable[None]]


class DomainEvent(BaseModel):
    """Base class for all domain events."""

    model_config = ConfigDict(frozen=True)

    event_id: NonEmptyStr = Field(default_factory=lambda: str(uuid4()))
    occurred_at: UtcDatetimeField = Field(default_factory=utcnow)


# === Session Events ===


class SessionCreated(DomainEvent):
    community_id: str = ""
    active_sessions: NonNegativeInt = 0


class SessionDestroyed(DomainEvent):
    community_id: str = ""
    reason: str = ""


class TrackStarted(DomainEvent):
    community_id: str = ""
    track_title: str = ""
    track_uri: str | None = None
    requester: str | None = None


class QueueExhausted(DomainEvent):
    community_id: str = ""
    last_track_title: str = ""


class ReconnectionFailed(DomainEvent):
    community_id: str = ""
    attempts: NonNegativeInt = 0
    error: str = ""


# === Remote Cluster Events ===


class CircuitStateChanged(DomainEvent):
    breaker: str = ""
    old_state: str = ""
    new_state: str = ""
    total_calls: NonNegativeInt = 0
    successful_calls: NonNegativeInt = 0
    failed_calls: NonNegativeInt = 0
    rejected_calls: NonNegativeInt = 0


class NodeUnhealthy(DomainEvent):
    node_name: str = ""
    issues: tuple[str, ...] = ()
    cpu_load_percent: float = 0.0
    active_players: NonNegativeInt = 0


class NodeRecovered(DomainEvent):
    node_name: str = ""


class MemoryPressureDetected(DomainEvent):
    level: str = ""
    rss_mb: float = 0.0
    evicted_entries: NonNegativeInt = 0
    destroyed_sessions: NonNegativeInt = 0


# === Event Bus ===


class EventBus:
    """In-memory pub/sub event bus for domain events.

    Handlers are called concurrently. Exceptions in handlers are logged
    but do not prevent other handlers from running.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[DomainEvent], list[EventHandler[Any]]] = defaultdict(list)

    def subscribe(self, event_type: type[T], handler: EventHandler[T]) -> None:
        self._handlers[event_type].append(handler)
        logger.debug("Subscribed handler to: %s", event_type.__name__)

    def unsubscribe(self, event_type: type[T], handler: EventHandler[T]) -> None:
        handlers = self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)
            logger.debug("Unsubscribed handler from %s", event_type.__name__)

    def handler_count(self, event_type: type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))

        if not handlers:
            logger.debug("No handlers for %s", event_type.__name__)
            return

        logger.debug("Publishing %s to %d handlers", event_type.__name__, len(handlers))

        async def safe_call(handler: EventHandler[Any]) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.exception("Error in handler for %s: %s", event_type.__name__, e)

        async with asyncio.TaskGroup() as tg:
            for handler in handlers:
                tg.create_task(safe_call(handler))

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get or create the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the process-wide event bus (for testing)."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
