"""Dependency Injection Container

Manages the application's dependency graph with lazy initialization and
lifecycle management for the remote node adapters, the resilience services
and the playback orchestrator. Components are created on first access and
cached for reuse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from playback_orchestrator.domain.shared.messages import LogTemplates

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from playback_orchestrator.application.interfaces.playback_link import LinkFactory
    from playback_orchestrator.application.services.circuit_breaker import CircuitBreaker
    from playback_orchestrator.application.services.memory_monitor import MemoryPressureMonitor
    from playback_orchestrator.application.services.node_health import NodeHealthMonitor
    from playback_orchestrator.application.services.orchestrator import PlaybackOrchestrator
    from playback_orchestrator.application.services.result_cache import ResultCache
    from playback_orchestrator.config.settings import Settings
    from playback_orchestrator.domain.music.entities import SearchResult
    from playback_orchestrator.domain.shared.events import EventBus
    from playback_orchestrator.infrastructure.remote.rest_node import RestNodeRegistry


@dataclass
class Container:
    """Dependency injection container.

    Manages all application dependencies and their lifecycle. Components
    are lazily initialized when first accessed.
    """

    settings: Settings

    # Infrastructure adapters
    _node_registry: RestNodeRegistry | None = None
    _link_factory: LinkFactory | None = None

    # Shared services
    _event_bus: EventBus | None = None
    _circuit_breaker: CircuitBreaker | None = None
    _result_cache: ResultCache[SearchResult] | None = None
    _health_monitor: NodeHealthMonitor | None = None

    # Application services
    _orchestrator: PlaybackOrchestrator | None = None

    # Background jobs
    _memory_monitor: MemoryPressureMonitor | None = None

    # === Infrastructure Adapters ===

    @property
    def node_registry(self) -> RestNodeRegistry:
        """Get the registry of configured remote nodes."""
        if self._node_registry is None:
            from playback_orchestrator.infrastructure.remote.rest_node import RestNodeRegistry

            self._node_registry = RestNodeRegistry.from_settings(
                self.settings.cluster.nodes, timeout_s=self.settings.cluster.request_timeout_s
            )
        return self._node_registry

    @property
    def link_factory(self) -> LinkFactory:
        if self._link_factory is None:
            from playback_orchestrator.infrastructure.remote.rest_link import RestLinkFactory

            self._link_factory = RestLinkFactory()
        return self._link_factory

    # === Shared Services ===

    @property
    def event_bus(self) -> EventBus:
        if self._event_bus is None:
            from playback_orchestrator.domain.shared.events import get_event_bus

            self._event_bus = get_event_bus()
        return self._event_bus

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the breaker shared by every call into the remote cluster."""
        if self._circuit_breaker is None:
            from playback_orchestrator.application.services.circuit_breaker import (
                CircuitBreaker,
            )

            cfg = self.settings.circuit_breaker
            self._circuit_breaker = CircuitBreaker(
                "remote-cluster",
                failure_threshold=cfg.failure_threshold,
                success_threshold=cfg.success_threshold,
                open_timeout_s=cfg.open_timeout_s,
            )
        return self._circuit_breaker

    @property
    def result_cache(self) -> ResultCache[SearchResult]:
        if self._result_cache is None:
            from playback_orchestrator.application.services.result_cache import ResultCache

            self._result_cache = ResultCache(
                max_size=self.settings.cache.max_size, ttl_s=self.settings.cache.ttl_s
            )
        return self._result_cache

    @property
    def health_monitor(self) -> NodeHealthMonitor:
        if self._health_monitor is None:
            from playback_orchestrator.application.services.node_health import NodeHealthMonitor

            self._health_monitor = NodeHealthMonitor(
                registry=self.node_registry,
                settings=self.settings.health,
                stats_timeout_s=self.settings.cluster.stats_timeout_s,
                event_bus=self.event_bus,
            )
        return self._health_monitor

    # === Application Services ===

    @property
    def orchestrator(self) -> PlaybackOrchestrator:
        """Get the playback orchestrator."""
        if self._orchestrator is None:
            from playback_orchestrator.application.services.orchestrator import (
                PlaybackOrchestrator,
            )

            self._orchestrator = PlaybackOrchestrator(
                settings=self.settings,
                registry=self.node_registry,
                link_factory=self.link_factory,
                breaker=self.circuit_breaker,
                cache=self.result_cache,
                health_monitor=self.health_monitor,
                event_bus=self.event_bus,
            )
        return self._orchestrator

    # === Background Jobs ===

    @property
    def memory_monitor(self) -> MemoryPressureMonitor:
        """Get the memory pressure monitor wired to the orchestrator's trimming."""
        if self._memory_monitor is None:
            from playback_orchestrator.application.services.memory_monitor import (
                MemoryPressureMonitor,
            )

            self._memory_monitor = MemoryPressureMonitor(
                settings=self.settings.memory,
                on_pressure=self.orchestrator.trim_for_memory_pressure,
            )
        return self._memory_monitor

    # === Lifecycle ===

    async def initialize(self) -> None:
        """Start health polling and the memory monitor."""
        await self.orchestrator.start()
        self.memory_monitor.start()
        logger.info(LogTemplates.CONTAINER_INITIALIZED)

    async def shutdown(self) -> None:
        """Stop background jobs, then shut down the orchestrator and close HTTP clients."""
        if self._memory_monitor is not None:
            try:
                await self._memory_monitor.stop()
            except Exception as exc:
                logger.warning(LogTemplates.CONTAINER_SHUTDOWN_FAILED, "memory monitor", exc)

        if self._orchestrator is not None:
            try:
                await self._orchestrator.shutdown()
            except Exception as exc:
                logger.warning(LogTemplates.CONTAINER_SHUTDOWN_FAILED, "orchestrator", exc)

        if self._node_registry is not None:
            await self._node_registry.aclose()


def create_container(settings: Settings) -> Container:
    """Create a new dependency injection container."""
    return Container(settings)
