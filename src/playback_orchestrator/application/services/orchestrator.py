"""Top-level facade between the command layer and the remote audio cluster.

Owns every ``PlaybackSession`` (one per community), the shared result cache,
the circuit breaker and the node health monitor. The command layer only ever
goes through this class.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from playback_orchestrator.application.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerStats,
    CircuitBreakerStatus,
    CircuitState,
)
from playback_orchestrator.application.services.memory_monitor import PressureLevel
from playback_orchestrator.application.services.node_health import NodeHealthMonitor
from playback_orchestrator.application.services.playback_session import (
    PlaybackSession,
    SessionSnapshot,
)
from playback_orchestrator.application.services.remote_guard import RemoteCallGuard
from playback_orchestrator.application.services.resilience import (
    BackoffPolicy,
    Bulkhead,
    Sleeper,
    retry_with_backoff,
    with_timeout,
)
from playback_orchestrator.application.services.result_cache import CacheStats, ResultCache
from playback_orchestrator.domain.cluster.value_objects import (
    ClusterHealthReport,
    NodeConnectionState,
)
from playback_orchestrator.domain.music.entities import SearchResult
from playback_orchestrator.domain.music.events import PlaybackLinkEvent
from playback_orchestrator.domain.music.value_objects import SessionDestroyReason
from playback_orchestrator.domain.shared.events import (
    CircuitStateChanged,
    EventBus,
    MemoryPressureDetected,
    SessionCreated,
    SessionDestroyed,
    get_event_bus,
)
from playback_orchestrator.domain.shared.exceptions import (
    CapacityExceededError,
    NoAvailableNodeError,
    ValidationError,
)
from playback_orchestrator.domain.shared.messages import ErrorMessages, LogTemplates

if TYPE_CHECKING:
    from playback_orchestrator.application.interfaces.playback_link import (
        LinkFactory,
        PlaybackLink,
    )
    from playback_orchestrator.application.interfaces.remote_node import NodeRegistry
    from playback_orchestrator.config.settings import Settings

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT_S = 10.0
"""Fixed deadline for one resolve call."""

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def is_url(query: str) -> bool:
    return bool(_URL_PATTERN.match(query.strip()))


@dataclass(frozen=True, slots=True)
class SearchKey:
    """Cache key plus the identifier actually sent to the node."""

    cache_key: str
    identifier: str
    is_url: bool


def normalize_query(query: str, source: str) -> SearchKey:
    """URLs pass through unchanged; text becomes ``source:query`` with collapsed whitespace.

    Text keys are case-folded so "Daft Punk" and "daft  punk" share a cache
    entry, while the identifier keeps the caller's casing.
    """
    text = _WHITESPACE.sub(" ", query.strip())
    if not text:
        raise ValidationError(ErrorMessages.EMPTY_QUERY, field="query")
    if is_url(text):
        return SearchKey(cache_key=text, identifier=text, is_url=True)
    return SearchKey(
        cache_key=f"{source}:{text.casefold()}",
        identifier=f"{source}:{text}",
        is_url=False,
    )


@dataclass(slots=True)
class SearchCounters:
    searches: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    dedup_hits: int = 0
    errors: int = 0


class OrchestratorMetrics(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    searches: int
    cache_hits: int
    cache_misses: int
    dedup_hits: int
    errors: int
    pending_searches: int
    active_sessions: int
    playing_sessions: int
    cache: CacheStats
    breaker: CircuitBreakerStatus
    cluster: ClusterHealthReport

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.searches * 100 if self.searches else 0.0

    @property
    def dedup_rate(self) -> float:
        return self.dedup_hits / self.searches * 100 if self.searches else 0.0


class PlaybackOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: NodeRegistry,
        link_factory: LinkFactory,
        breaker: CircuitBreaker | None = None,
        cache: ResultCache[SearchResult] | None = None,
        health_monitor: NodeHealthMonitor | None = None,
        event_bus: EventBus | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._link_factory = link_factory
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self._sleep = sleep

        self._breaker = breaker if breaker is not None else CircuitBreaker(
            "remote-cluster",
            failure_threshold=settings.circuit_breaker.failure_threshold,
            success_threshold=settings.circuit_breaker.success_threshold,
            open_timeout_s=settings.circuit_breaker.open_timeout_s,
        )
        self._breaker.add_listener(self._on_breaker_state_change)
        self._guard = RemoteCallGuard(
            self._breaker, default_timeout_s=settings.cluster.link_operation_timeout_s
        )
        self._cache: ResultCache[SearchResult] = cache if cache is not None else ResultCache(
            max_size=settings.cache.max_size, ttl_s=settings.cache.ttl_s
        )
        self._health = health_monitor if health_monitor is not None else NodeHealthMonitor(
            registry=registry,
            settings=settings.health,
            stats_timeout_s=settings.cluster.stats_timeout_s,
            event_bus=self._event_bus,
        )
        self._search_policy = BackoffPolicy(
            initial_delay_s=settings.search.retry_initial_delay_s,
            max_delay_s=settings.search.retry_max_delay_s,
        )

        self._sessions: dict[str, PlaybackSession] = {}
        self._pending: dict[str, asyncio.Task[SearchResult]] = {}
        self._counters = SearchCounters()
        self._started = False
        self._shutting_down = False

    # ── accessors ────────────────────────────────────────────────────

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def cache(self) -> ResultCache[SearchResult]:
        return self._cache

    @property
    def health_monitor(self) -> NodeHealthMonitor:
        return self._health

    @property
    def guard(self) -> RemoteCallGuard:
        return self._guard

    @property
    def sessions(self) -> Mapping[str, PlaybackSession]:
        return MappingProxyType(self._sessions)

    @property
    def pending_searches(self) -> int:
        return len(self._pending)

    # ── lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Take a first health reading, then start periodic polling."""
        if self._started:
            return
        self._started = True
        try:
            await self._health.poll_once()
        except Exception:
            logger.exception(LogTemplates.HEALTH_POLL_FAILED)
        self._health.start()
        logger.info(LogTemplates.ORCHESTRATOR_STARTED, len(self._registry.nodes()))

    async def shutdown(self) -> None:
        """Stop polling, destroy every session concurrently, then release shared state."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info(LogTemplates.ORCHESTRATOR_SHUTTING_DOWN, len(self._sessions))

        await self._health.stop()

        sessions = list(self._sessions.values())
        results = await asyncio.gather(
            *(s.destroy(SessionDestroyReason.SHUTDOWN) for s in sessions),
            return_exceptions=True,
        )
        for session, outcome in zip(sessions, results, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(LogTemplates.SESSION_DESTROY_FAILED, session.community_id, outcome)
        self._sessions.clear()

        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        self._cache.clear()
        await self._breaker.drain_notifications()
        self._started = False
        logger.info(LogTemplates.ORCHESTRATOR_STOPPED)

    # ── sessions ─────────────────────────────────────────────────────

    def get_session(self, community_id: str) -> PlaybackSession | None:
        return self._sessions.get(community_id)

    async def create_session(
        self, community_id: str, link_target: str | None = None
    ) -> PlaybackSession:
        """Return the live session for ``community_id``, creating it if needed.

        Raises ``CapacityExceededError`` when a new session would exceed
        ``max_sessions``.
        """
        existing = self._sessions.get(community_id)
        if existing is not None and not existing.is_destroyed:
            return existing

        limit = self._settings.sessions.max_sessions
        if len(self._sessions) >= limit:
            logger.warning(LogTemplates.SESSION_CAPACITY_REACHED, limit, community_id)
            raise CapacityExceededError(limit)

        async def connector() -> PlaybackLink:
            return await self._open_link(community_id, link_target)

        session = PlaybackSession(
            community_id,
            connector=connector,
            guard=self._guard,
            settings=self._settings.sessions,
            reconnect_settings=self._settings.reconnect,
            link_timeout_s=self._settings.cluster.link_operation_timeout_s,
            event_bus=self._event_bus,
            on_destroyed=self._on_session_destroyed,
            sleep=self._sleep,
        )
        self._sessions[community_id] = session
        logger.info(LogTemplates.SESSION_CREATED, community_id, len(self._sessions))
        await self._event_bus.publish(
            SessionCreated(community_id=community_id, active_sessions=len(self._sessions))
        )
        return session

    async def get_or_create_session(
        self, community_id: str, link_target: str | None = None
    ) -> PlaybackSession:
        return await self.create_session(community_id, link_target)

    async def destroy_session(
        self, community_id: str, reason: SessionDestroyReason = SessionDestroyReason.REQUESTED
    ) -> bool:
        session = self._sessions.get(community_id)
        if session is None:
            return False
        destroyed = await session.destroy(reason)
        # A session destroyed earlier through another path may still be mapped.
        if self._sessions.get(community_id) is session:
            del self._sessions[community_id]
        return destroyed

    async def _on_session_destroyed(
        self, session: PlaybackSession, reason: SessionDestroyReason
    ) -> None:
        if self._sessions.get(session.community_id) is session:
            del self._sessions[session.community_id]
        await self._event_bus.publish(
            SessionDestroyed(community_id=session.community_id, reason=reason.value)
        )

    async def _open_link(self, community_id: str, link_target: str | None) -> PlaybackLink:
        node = self._health.best_remote_node()
        if node is None:
            raise NoAvailableNodeError()
        return await self._guard.call(
            lambda: self._link_factory.open_link(node, community_id, link_target),
            operation=f"open link on {node.name}",
        )

    async def dispatch_event(self, event: PlaybackLinkEvent) -> bool:
        """Route a link event to its session. Returns False if no session claims it."""
        session = self._sessions.get(event.community_id)
        if session is None:
            logger.debug(LogTemplates.EVENT_WITHOUT_SESSION, event.event_type, event.community_id)
            return False
        await session.handle_event(event)
        return True

    async def handle_node_disconnected(self, node_name: str, *, moved: bool) -> int:
        """React to a node going away: migrate its sessions when moved, else destroy them.

        Returns the number of sessions affected.
        """
        affected = [s for s in self._sessions.values() if s.node_name == node_name]
        if not affected:
            return 0

        logger.warning(LogTemplates.NODE_DISCONNECTED, node_name, len(affected), moved)
        if moved:
            calls = [s.reconnect() for s in affected]
        else:
            calls = [s.destroy(SessionDestroyReason.NODE_LOST) for s in affected]

        results = await asyncio.gather(*calls, return_exceptions=True)
        for session, outcome in zip(affected, results, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    LogTemplates.NODE_SESSION_RECOVERY_FAILED, session.community_id, outcome
                )
        return len(affected)

    # ── search ───────────────────────────────────────────────────────

    async def search(
        self, query: str, requester: str | None = None, *, source: str | None = None
    ) -> SearchResult:
        """Resolve ``query`` into tracks tagged with ``requester``.

        Served from the cache when possible; concurrent identical searches
        share one in-flight resolve call. An empty result means not-found.
        """
        key = normalize_query(query, source or self._settings.search.default_source)
        self._counters.searches += 1

        cached = self._cache.get(key.cache_key)
        if cached is not None:
            self._counters.cache_hits += 1
            logger.debug(LogTemplates.SEARCH_CACHE_HIT, key.cache_key)
            return cached.with_requester(requester)
        self._counters.cache_misses += 1

        task = self._pending.get(key.cache_key)
        if task is not None:
            self._counters.dedup_hits += 1
            logger.debug(LogTemplates.SEARCH_DEDUPLICATED, key.cache_key)
        else:
            task = asyncio.create_task(self._execute_search(key))
            self._pending[key.cache_key] = task
            task.add_done_callback(lambda t, k=key.cache_key: self._forget_pending(k, t))

        try:
            result = await asyncio.shield(task)
        except Exception:
            self._counters.errors += 1
            raise
        return result.with_requester(requester)

    def _forget_pending(self, cache_key: str, task: asyncio.Task[SearchResult]) -> None:
        if self._pending.get(cache_key) is task:
            del self._pending[cache_key]
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it.
            task.exception()

    async def _execute_search(self, key: SearchKey) -> SearchResult:
        async def attempt() -> SearchResult:
            node = self._health.best_remote_node()
            if node is None:
                raise NoAvailableNodeError()
            resolved = await self._breaker.execute(
                lambda: with_timeout(
                    node.resolve(key.identifier),
                    SEARCH_TIMEOUT_S,
                    operation=f"resolve on {node.name}",
                )
            )
            return SearchResult.from_resolved(resolved)

        try:
            result = await retry_with_backoff(
                attempt,
                max_retries=self._settings.search.max_retries,
                policy=self._search_policy,
                operation=f"search {key.cache_key}",
                sleep=self._sleep,
            )
        except Exception as e:
            logger.warning(LogTemplates.SEARCH_FAILED, key.cache_key, e)
            raise

        if not key.is_url and not result.is_empty:
            self._cache.set(key.cache_key, result.with_requester(None))
        logger.debug(
            LogTemplates.SEARCH_RESOLVED, key.cache_key, result.load_type, len(result.tracks)
        )
        return result

    async def warm_cache(self, queries: Iterable[str]) -> int:
        """Pre-resolve popular queries, a few at a time. Returns how many were loaded."""
        bulkhead = Bulkhead(self._settings.search.warm_concurrency)
        source = self._settings.search.default_source

        async def load(query: str) -> bool:
            key = normalize_query(query, source)
            if key.is_url or self._cache.has(key.cache_key):
                return False
            result = await bulkhead.execute(lambda: self.search(query))
            return not result.is_empty

        unique = list(dict.fromkeys(q for q in queries if q.strip()))
        outcomes = await asyncio.gather(*(load(q) for q in unique), return_exceptions=True)
        loaded = 0
        for query, outcome in zip(unique, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning(LogTemplates.CACHE_WARM_FAILED, query, outcome)
            elif outcome:
                loaded += 1
        logger.info(LogTemplates.CACHE_WARMED, loaded, len(unique))
        return loaded

    # ── availability ─────────────────────────────────────────────────

    def has_connected_node(self) -> bool:
        return any(
            node.connection_state is NodeConnectionState.CONNECTED
            for node in self._registry.nodes()
        )

    def is_available(self) -> bool:
        """Breaker lets calls through and at least one node is connected."""
        return self._breaker.is_available() and self.has_connected_node()

    async def wait_for_node(self, timeout_s: float = 30.0, poll_interval_s: float = 0.5) -> bool:
        """Wait until a node is connected, or give up after ``timeout_s``."""
        try:
            async with asyncio.timeout(timeout_s):
                while not self.has_connected_node():
                    await self._sleep(poll_interval_s)
        except TimeoutError:
            logger.warning(LogTemplates.NODE_WAIT_TIMEOUT, timeout_s)
            return False
        return True

    # ── memory pressure ──────────────────────────────────────────────

    async def trim_for_memory_pressure(self, level: PressureLevel, rss_mb: float = 0.0) -> int:
        """Evict a share of the cache; above the soft level also destroy idle sessions."""
        memory = self._settings.memory
        percent = {
            PressureLevel.SOFT: memory.soft_evict_percent,
            PressureLevel.NORMAL: memory.normal_evict_percent,
            PressureLevel.CRITICAL: memory.critical_evict_percent,
        }.get(level, 0.0)

        evicted = self._cache.evict_fraction(percent) if percent else 0
        self._cache.prune_expired()

        destroyed = 0
        if level in (PressureLevel.NORMAL, PressureLevel.CRITICAL):
            idle = [s for s in self._sessions.values() if s.is_idle and not s.queue]
            for session in idle:
                if await session.destroy_if_idle(SessionDestroyReason.MEMORY_PRESSURE):
                    destroyed += 1

        logger.warning(LogTemplates.MEMORY_TRIMMED, level, evicted, destroyed)
        await self._event_bus.publish(
            MemoryPressureDetected(
                level=str(level),
                rss_mb=rss_mb,
                evicted_entries=evicted,
                destroyed_sessions=destroyed,
            )
        )
        return evicted

    # ── observability ────────────────────────────────────────────────

    def session_snapshots(self) -> list[SessionSnapshot]:
        return [s.snapshot() for s in self._sessions.values()]

    def get_metrics(self) -> OrchestratorMetrics:
        c = self._counters
        return OrchestratorMetrics(
            searches=c.searches,
            cache_hits=c.cache_hits,
            cache_misses=c.cache_misses,
            dedup_hits=c.dedup_hits,
            errors=c.errors,
            pending_searches=len(self._pending),
            active_sessions=len(self._sessions),
            playing_sessions=sum(1 for s in self._sessions.values() if not s.is_idle),
            cache=self._cache.get_stats(),
            breaker=self._breaker.get_status(),
            cluster=self._health.report(),
        )

    async def _on_breaker_state_change(
        self, old: CircuitState, new: CircuitState, stats: CircuitBreakerStats
    ) -> None:
        if new is CircuitState.OPEN:
            logger.error(LogTemplates.BREAKER_OPENED, self._breaker.name, stats.failed_calls)
        await self._event_bus.publish(
            CircuitStateChanged(
                breaker=self._breaker.name,
                old_state=str(old),
                new_state=str(new),
                total_calls=stats.total_calls,
                successful_calls=stats.successful_calls,
                failed_calls=stats.failed_calls,
                rejected_calls=stats.rejected_calls,
            )
        )
