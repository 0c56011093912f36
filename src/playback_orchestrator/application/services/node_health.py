"""Periodic health polling of the remote nodes and best-node selection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from playback_orchestrator.application.services.resilience import with_timeout
from playback_orchestrator.domain.cluster.value_objects import (
    ClusterHealthReport,
    HealthIssue,
    NodeConnectionState,
    NodeHealthSnapshot,
    NodeStats,
)
from playback_orchestrator.domain.shared.events import (
    EventBus,
    NodeRecovered,
    NodeUnhealthy,
    get_event_bus,
)
from playback_orchestrator.domain.shared.messages import LogTemplates

if TYPE_CHECKING:
    from playback_orchestrator.config.settings import HealthSettings
    from playback_orchestrator.application.interfaces.remote_node import NodeRegistry, RemoteNode

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, NodeHealthSnapshot] = MappingProxyType({})


def _lowest_load(snapshots: list[NodeHealthSnapshot]) -> NodeHealthSnapshot:
    """Minimum load score; the earliest node in registry order wins ties."""
    best = snapshots[0]
    for snapshot in snapshots[1:]:
        if snapshot.load_score < best.load_score:
            best = snapshot
    return best


def _reconnect_order(snapshot: NodeHealthSnapshot) -> tuple[bool, float, str]:
    since = snapshot.connected_since
    return (since is None, -since.timestamp() if since else 0.0, snapshot.name)


class NodeHealthMonitor:
    """Keeps a wholesale-replaced snapshot map of every node.

    Readers always see one complete poll's worth of readings: a tick builds
    a new dict and swaps it in with a single assignment.
    """

    def __init__(
        self,
        *,
        registry: NodeRegistry,
        settings: HealthSettings,
        stats_timeout_s: float = 5.0,
        event_bus: EventBus | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._stats_timeout_s = stats_timeout_s
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self._snapshots: Mapping[str, NodeHealthSnapshot] = _EMPTY
        self._unhealthy: set[str] = set()
        self._running = False
        self._task: asyncio.Task | None = None

    # ── lifecycle ────────────────────────────────────────────────────

    def start(self, poll_interval_s: float | None = None) -> None:
        if self._running:
            logger.warning(LogTemplates.HEALTH_MONITOR_ALREADY_RUNNING)
            return

        interval = self._settings.poll_interval_s if poll_interval_s is None else poll_interval_s
        self._running = True
        self._task = asyncio.create_task(self._run_loop(interval))
        logger.info(LogTemplates.HEALTH_MONITOR_STARTED, interval)

    async def stop(self) -> None:
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(LogTemplates.HEALTH_MONITOR_STOPPED)

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self, interval_s: float) -> None:
        while self._running:
            try:
                await self.poll_once()
            except Exception:
                logger.exception(LogTemplates.HEALTH_POLL_FAILED)

            try:
                await asyncio.sleep(interval_s)
            except asyncio.CancelledError:
                break

    # ── polling ──────────────────────────────────────────────────────

    async def poll_once(self) -> Mapping[str, NodeHealthSnapshot]:
        """Sample every node concurrently and replace the snapshot map."""
        nodes = list(self._registry.nodes())
        sampled = await asyncio.gather(*(self._sample(node) for node in nodes))

        fresh = {snapshot.name: snapshot for snapshot in sampled}
        self._snapshots = MappingProxyType(fresh)

        await self._emit_transitions(sampled)
        return self._snapshots

    async def _sample(self, node: RemoteNode) -> NodeHealthSnapshot:
        state = node.connection_state
        stats = NodeStats()
        stats_error: str | None = None

        if state is NodeConnectionState.CONNECTED:
            try:
                stats = await with_timeout(
                    node.fetch_stats(), self._stats_timeout_s, operation=f"stats for {node.name}"
                )
            except Exception as e:
                stats_error = str(e) or type(e).__name__
                logger.warning(LogTemplates.HEALTH_STATS_FAILED, node.name, stats_error)

        return NodeHealthSnapshot(
            name=node.name,
            connection_state=state,
            stats=stats,
            connected_since=node.connected_since,
            issues=self._issues_for(state, stats, stats_error),
            stats_error=stats_error,
        )

    def _issues_for(
        self, state: NodeConnectionState, stats: NodeStats, stats_error: str | None
    ) -> tuple[HealthIssue, ...]:
        if state is not NodeConnectionState.CONNECTED:
            return (HealthIssue.DISCONNECTED,)
        if stats_error is not None:
            return (HealthIssue.STATS_UNAVAILABLE,)

        issues: list[HealthIssue] = []
        if stats.cpu_load_percent > self._settings.unhealthy_cpu_percent:
            issues.append(HealthIssue.HIGH_CPU)
        if stats.memory_percent > self._settings.unhealthy_memory_percent:
            issues.append(HealthIssue.HIGH_MEMORY)
        if stats.players > self._settings.player_limit:
            issues.append(HealthIssue.PLAYER_LIMIT)
        return tuple(issues)

    async def _emit_transitions(self, snapshots: list[NodeHealthSnapshot]) -> None:
        for snapshot in snapshots:
            if snapshot.is_healthy:
                if snapshot.name in self._unhealthy:
                    self._unhealthy.discard(snapshot.name)
                    logger.info(LogTemplates.NODE_RECOVERED, snapshot.name)
                    await self._event_bus.publish(NodeRecovered(node_name=snapshot.name))
                continue

            if snapshot.name not in self._unhealthy:
                self._unhealthy.add(snapshot.name)
                logger.warning(
                    LogTemplates.NODE_UNHEALTHY,
                    snapshot.name,
                    ", ".join(snapshot.issues),
                    snapshot.cpu_load_percent,
                    snapshot.active_players,
                )
                await self._event_bus.publish(
                    NodeUnhealthy(
                        node_name=snapshot.name,
                        issues=tuple(str(i) for i in snapshot.issues),
                        cpu_load_percent=snapshot.cpu_load_percent,
                        active_players=snapshot.active_players,
                    )
                )

    # ── queries ──────────────────────────────────────────────────────

    @property
    def snapshots(self) -> Mapping[str, NodeHealthSnapshot]:
        return self._snapshots

    def get_snapshot(self, name: str) -> NodeHealthSnapshot | None:
        return self._snapshots.get(name)

    def best_node(self) -> str | None:
        """Name of the node that should take the next request.

        Order of preference: healthy connected nodes by lowest load score,
        then reconnecting nodes (most recently connected first, then by
        name), then overloaded but connected nodes by load score, and last
        connected nodes whose stats poll failed, in registry order.
        """
        snapshots = list(self._snapshots.values())

        healthy = [s for s in snapshots if s.is_healthy]
        if healthy:
            return _lowest_load(healthy).name

        reconnecting = sorted((s for s in snapshots if s.is_reconnecting), key=_reconnect_order)
        if reconnecting:
            logger.debug(LogTemplates.HEALTH_FALLBACK_RECONNECTING, reconnecting[0].name)
            return reconnecting[0].name

        overloaded = [s for s in snapshots if s.is_connected and s.stats_error is None]
        if overloaded:
            choice = _lowest_load(overloaded)
            logger.debug(LogTemplates.HEALTH_FALLBACK_OVERLOADED, choice.name)
            return choice.name

        unsampled = [s for s in snapshots if s.is_connected and s.stats_error is not None]
        if unsampled:
            logger.debug(LogTemplates.HEALTH_FALLBACK_UNSAMPLED, unsampled[0].name)
            return unsampled[0].name

        return None

    def best_remote_node(self) -> RemoteNode | None:
        name = self.best_node()
        return self._registry.get(name) if name is not None else None

    def has_healthy_node(self) -> bool:
        return any(s.is_healthy for s in self._snapshots.values())

    def report(self) -> ClusterHealthReport:
        snapshots = self._snapshots
        return ClusterHealthReport(nodes=tuple(snapshots.values()), best_node=self.best_node())
