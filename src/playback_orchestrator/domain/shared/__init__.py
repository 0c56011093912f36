"""
Shared Domain Kernel

Contains exceptions and events shared across all bounded contexts.
"""

from playback_orchestrator.domain.shared.events import DomainEvent, EventBus, get_event_bus
from playback_orchestrator.domain.shared.exceptions import (
    CapacityError,
    DomainError,
    EntityNotFoundError,
    InvalidOperationError,
    ServiceUnavailableError,
    ValidationError,
)

__all__ = [
    "DomainError",
    "ValidationError",
    "EntityNotFoundError",
    "InvalidOperationError",
    "CapacityError",
    "ServiceUnavailableError",
    "DomainEvent",
    "EventBus",
    "get_event_bus",
]
