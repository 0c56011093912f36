import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio

from playback_orchestrator.application.interfaces.playback_link import LinkFactory, PlaybackLink
from playback_orchestrator.application.interfaces.remote_node import NodeRegistry, RemoteNode
from playback_orchestrator.domain.cluster.value_objects import NodeConnectionState, NodeStats
from playback_orchestrator.domain.music.entities import EmptyResult, Track

# ============================================================================
# Fake Cluster Ports
# ============================================================================


class FakeNode(RemoteNode):
    """In-memory node: canned stats, canned resolve results, optional gate."""

    def __init__(
        self,
        name: str = "node-a",
        *,
        state: NodeConnectionState = NodeConnectionState.CONNECTED,
        stats: NodeStats | None = None,
        connected_since: datetime | None = None,
    ) -> None:
        self._name = name
        self.state = state
        self.stats = stats or NodeStats()
        self.since = connected_since or datetime(2024, 1, 1, tzinfo=UTC)
        self.stats_error: Exception | None = None
        self.results: dict[str, Any] = {}
        self.resolve_errors: list[Exception] = []
        self.resolve_calls: list[str] = []
        self.gate: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection_state(self) -> NodeConnectionState:
        return self.state

    @property
    def connected_since(self) -> datetime | None:
        return self.since

    async def fetch_stats(self) -> NodeStats:
        if self.stats_error is not None:
            raise self.stats_error
        return self.stats

    async def resolve(self, identifier: str):
        self.resolve_calls.append(identifier)
        if self.gate is not None:
            await self.gate.wait()
        if self.resolve_errors:
            raise self.resolve_errors.pop(0)
        return self.results.get(identifier, EmptyResult())


class FakeRegistry(NodeRegistry):
    def __init__(self, *nodes: FakeNode) -> None:
        self._nodes = list(nodes)

    def nodes(self) -> list[FakeNode]:
        return list(self._nodes)

    def get(self, name: str) -> FakeNode | None:
        return next((n for n in self._nodes if n.name == name), None)


class FakeLink(PlaybackLink):
    """Records every control call; ``play`` waits on ``play_gate`` and raises queued errors."""

    def __init__(self, community_id: str, node_name: str) -> None:
        self._community_id = community_id
        self._node_name = node_name
        self.calls: list[tuple[Any, ...]] = []
        self.play_errors: list[Exception] = []
        self.closed = False
        self.play_gate: asyncio.Event | None = None

    @property
    def community_id(self) -> str:
        return self._community_id

    @property
    def node_name(self) -> str:
        return self._node_name

    @property
    def played(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "play"]

    async def play(self, track, *, start_ms=0, volume=None, paused=False) -> None:
        self.calls.append(("play", track.encoded, start_ms, volume, paused))
        if self.play_gate is not None:
            await self.play_gate.wait()
        if self.play_errors:
            raise self.play_errors.pop(0)

    async def stop(self) -> None:
        self.calls.append(("stop",))

    async def set_paused(self, paused: bool) -> None:
        self.calls.append(("paused", paused))

    async def seek(self, position_ms: int) -> None:
        self.calls.append(("seek", position_ms))

    async def set_volume(self, volume: int) -> None:
        self.calls.append(("volume", volume))

    async def set_filters(self, filters: dict[str, Any]) -> None:
        self.calls.append(("filters", filters))

    async def close(self) -> None:
        self.closed = True
        self.calls.append(("close",))


class FakeLinkFactory(LinkFactory):
    def __init__(self) -> None:
        self.links: list[FakeLink] = []
        self.open_errors: list[Exception] = []
        self.on_open: Callable[[FakeLink], None] | None = None

    @property
    def last(self) -> FakeLink:
        return self.links[-1]

    async def open_link(self, node, community_id, link_target) -> FakeLink:
        if self.open_errors:
            raise self.open_errors.pop(0)
        link = FakeLink(community_id, node.name)
        if self.on_open is not None:
            self.on_open(link)
        self.links.append(link)
        return link


class FakeSleep:
    """Records requested delays; delays at or above ``block_at`` never return."""

    def __init__(self, block_at: float | None = None) -> None:
        self.block_at = block_at
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if self.block_at is not None and delay >= self.block_at:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def drain(rounds: int = 5) -> None:
    """Let scheduled tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ============================================================================
# Domain Entity Fixtures
# ============================================================================


@pytest.fixture
def make_track():
    """Factory for distinct tracks keyed by a number."""

    def _make(n: int = 1, **overrides: Any) -> Track:
        fields: dict[str, Any] = {
            "encoded": f"enc-{n}",
            "title": f"Track {n}",
            "author": "Artist",
            "uri": f"https://example.com/watch?v={n}",
            "duration_ms": 180_000,
            "identifier": f"id-{n}",
            "source_name": "youtube",
        }
        fields.update(overrides)
        return Track(**fields)

    return _make


@pytest.fixture
def sample_track(make_track):
    return make_track(1)


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def event_bus():
    from playback_orchestrator.domain.shared.events import EventBus

    return EventBus()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep(block_at=60.0)


@pytest.fixture
def node():
    return FakeNode("node-a")


@pytest.fixture
def registry(node):
    return FakeRegistry(node)


@pytest.fixture
def link_factory():
    return FakeLinkFactory()


@pytest.fixture
def test_settings():
    """Settings for a single fake node with deterministic retry timing."""
    from playback_orchestrator.config.settings import Settings

    return Settings(
        _env_file=None,
        environment="test",
        sessions={"max_sessions": 3, "idle_timeout_s": 60.0},
        reconnect={"max_attempts": 3, "jitter": 0.0},
        search={"max_retries": 2, "retry_initial_delay_s": 0.5},
    )


@pytest.fixture
def breaker(fake_clock):
    from playback_orchestrator.application.services.circuit_breaker import CircuitBreaker

    return CircuitBreaker("test", failure_threshold=3, success_threshold=2, open_timeout_s=30.0,
                          clock=fake_clock)


@pytest_asyncio.fixture
async def session_factory(test_settings, registry, node, link_factory, event_bus, fake_sleep):
    """Build PlaybackSessions wired to the fake link factory; destroyed on teardown."""
    from playback_orchestrator.application.services.circuit_breaker import CircuitBreaker
    from playback_orchestrator.application.services.playback_session import PlaybackSession
    from playback_orchestrator.application.services.remote_guard import RemoteCallGuard

    created: list[PlaybackSession] = []

    def _make(community_id: str = "guild-1", *, settings=None, guard=None, **kwargs: Any):
        async def connector():
            return await link_factory.open_link(node, community_id, None)

        session = PlaybackSession(
            community_id,
            connector=connector,
            guard=guard or RemoteCallGuard(CircuitBreaker("test", failure_threshold=50)),
            settings=settings or test_settings.sessions,
            reconnect_settings=test_settings.reconnect,
            event_bus=event_bus,
            sleep=fake_sleep,
            **kwargs,
        )
        created.append(session)
        return session

    yield _make

    for session in created:
        await session.destroy()


@pytest_asyncio.fixture
async def orchestrator(test_settings, registry, link_factory, event_bus, fake_sleep):
    """Orchestrator over the fake cluster with one health poll already taken."""
    from playback_orchestrator.application.services.orchestrator import PlaybackOrchestrator

    orch = PlaybackOrchestrator(
        settings=test_settings,
        registry=registry,
        link_factory=link_factory,
        event_bus=event_bus,
        sleep=fake_sleep,
    )
    await orch.health_monitor.poll_once()
    yield orch
    await orch.shutdown()
