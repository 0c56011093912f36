"""
Unit Tests for Dependency Injection Container

Tests for:
- Container initialization with settings
- Lazy initialization (properties create instances on first access)
- Caching (subsequent property access returns same instance)
- Wiring of settings into the breaker, cache and registry
- Lifecycle methods (initialize, shutdown)

Uses mocking to isolate from actual implementations.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from playback_orchestrator.application.services.circuit_breaker import CircuitBreaker
from playback_orchestrator.application.services.memory_monitor import MemoryPressureMonitor
from playback_orchestrator.application.services.orchestrator import PlaybackOrchestrator
from playback_orchestrator.application.services.result_cache import ResultCache
from playback_orchestrator.config.container import Container, create_container
from playback_orchestrator.config.settings import Settings
from playback_orchestrator.domain.shared.events import reset_event_bus
from playback_orchestrator.infrastructure.remote.rest_link import RestLinkFactory
from playback_orchestrator.infrastructure.remote.rest_node import RestNodeRegistry


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="test",
        cluster={"nodes": [{"name": "main", "url": "http://localhost:2333"}]},
        circuit_breaker={"failure_threshold": 7, "open_timeout_s": 12},
        cache={"max_size": 10, "ttl_s": 5},
        memory={"enabled": False},
    )


@pytest.fixture
def container(settings):
    reset_event_bus()
    yield Container(settings=settings)
    reset_event_bus()


# =============================================================================
# Initialization Tests
# =============================================================================


class TestContainerInitialization:
    def test_create_container_with_settings(self, settings):
        container = Container(settings=settings)

        assert container.settings is settings
        assert container._orchestrator is None
        assert container._node_registry is None

    def test_create_container_factory(self, settings):
        container = create_container(settings)

        assert isinstance(container, Container)
        assert container.settings is settings


# =============================================================================
# Lazy Property Tests
# =============================================================================


class TestLazyProperties:
    def test_node_registry_built_from_settings(self, container):
        registry = container.node_registry

        assert isinstance(registry, RestNodeRegistry)
        assert [n.name for n in registry.nodes()] == ["main"]
        assert container.node_registry is registry

    def test_link_factory(self, container):
        assert isinstance(container.link_factory, RestLinkFactory)
        assert container.link_factory is container.link_factory

    def test_circuit_breaker_uses_settings(self, container):
        breaker = container.circuit_breaker

        assert isinstance(breaker, CircuitBreaker)
        assert breaker.name == "remote-cluster"
        assert breaker.failure_threshold == 7
        assert container.circuit_breaker is breaker

    def test_result_cache_uses_settings(self, container):
        cache = container.result_cache

        assert isinstance(cache, ResultCache)
        assert cache.max_size == 10
        assert container.result_cache is cache

    def test_event_bus_is_process_wide(self, container):
        from playback_orchestrator.domain.shared.events import get_event_bus

        assert container.event_bus is get_event_bus()

    def test_orchestrator_shares_components(self, container):
        orchestrator = container.orchestrator

        assert isinstance(orchestrator, PlaybackOrchestrator)
        assert orchestrator.breaker is container.circuit_breaker
        assert orchestrator.cache is container.result_cache
        assert orchestrator.health_monitor is container.health_monitor
        assert container.orchestrator is orchestrator

    def test_memory_monitor(self, container):
        monitor = container.memory_monitor

        assert isinstance(monitor, MemoryPressureMonitor)
        assert container.memory_monitor is monitor


# =============================================================================
# Lifecycle Tests
# =============================================================================


class TestContainerLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_starts_orchestrator_and_monitor(self, container):
        container._orchestrator = MagicMock()
        container._orchestrator.start = AsyncMock()
        container._memory_monitor = MagicMock()

        await container.initialize()

        container._orchestrator.start.assert_awaited_once()
        container._memory_monitor.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, container):
        container._memory_monitor = MagicMock()
        container._memory_monitor.stop = AsyncMock()
        container._orchestrator = MagicMock()
        container._orchestrator.shutdown = AsyncMock()
        container._node_registry = MagicMock()
        container._node_registry.aclose = AsyncMock()

        await container.shutdown()

        container._memory_monitor.stop.assert_awaited_once()
        container._orchestrator.shutdown.assert_awaited_once()
        container._node_registry.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_continues_after_errors(self, container):
        """A failing component does not keep the others from closing."""
        container._memory_monitor = MagicMock()
        container._memory_monitor.stop = AsyncMock(side_effect=RuntimeError("stuck"))
        container._orchestrator = MagicMock()
        container._orchestrator.shutdown = AsyncMock(side_effect=RuntimeError("stuck"))
        container._node_registry = MagicMock()
        container._node_registry.aclose = AsyncMock()

        await container.shutdown()

        container._node_registry.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_without_components_is_noop(self, container):
        await container.shutdown()

        assert container._orchestrator is None
