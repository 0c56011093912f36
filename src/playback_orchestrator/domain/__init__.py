# ruff: noqa: N999
"""
Domain Layer

Contains pure logic organized by bounded contexts:
- shared/: Exceptions, typed aliases, messages and the event bus
- music/: Track, queue, filters and playback link events
- cluster/: Remote node health readings
"""

from playback_orchestrator.domain.shared.exceptions import DomainError

__all__ = [
    "DomainError",
]
