"""
Unit Tests for NodeHealthMonitor

Tests for:
- Snapshot sampling and issue classification
- Best-node selection and its fallback order
- Unhealthy / recovered event transitions
- Start/stop lifecycle
"""

from datetime import UTC, datetime

import pytest

from conftest import FakeNode, FakeRegistry, drain
from playback_orchestrator.application.services.node_health import NodeHealthMonitor
from playback_orchestrator.config.settings import HealthSettings
from playback_orchestrator.domain.cluster.value_objects import (
    HealthIssue,
    NodeConnectionState,
    NodeStats,
)
from playback_orchestrator.domain.shared.events import NodeRecovered, NodeUnhealthy


def _monitor(*nodes: FakeNode, event_bus=None, **settings) -> NodeHealthMonitor:
    return NodeHealthMonitor(
        registry=FakeRegistry(*nodes),
        settings=HealthSettings(**settings),
        stats_timeout_s=0.5,
        event_bus=event_bus,
    )


# =============================================================================
# Sampling Tests
# =============================================================================


class TestNodeHealthSampling:
    @pytest.mark.asyncio
    async def test_healthy_connected_node(self, event_bus):
        node = FakeNode("a", stats=NodeStats(players=2, cpu_load_percent=12.5))
        monitor = _monitor(node, event_bus=event_bus)

        snapshots = await monitor.poll_once()

        snapshot = snapshots["a"]
        assert snapshot.is_healthy
        assert snapshot.active_players == 2
        assert snapshot.load_score == pytest.approx(32.5)

    @pytest.mark.asyncio
    async def test_issue_classification(self, event_bus):
        node = FakeNode(
            "hot",
            stats=NodeStats(
                players=600,
                cpu_load_percent=95.0,
                memory_used_bytes=95,
                memory_reservable_bytes=100,
            ),
        )
        monitor = _monitor(node, event_bus=event_bus)

        snapshot = (await monitor.poll_once())["hot"]

        assert set(snapshot.issues) == {
            HealthIssue.HIGH_CPU,
            HealthIssue.HIGH_MEMORY,
            HealthIssue.PLAYER_LIMIT,
        }
        assert not snapshot.is_healthy

    @pytest.mark.asyncio
    async def test_disconnected_node_is_not_sampled(self, event_bus):
        node = FakeNode("down", state=NodeConnectionState.DISCONNECTED)
        node.stats_error = AssertionError("should not be called")
        monitor = _monitor(node, event_bus=event_bus)

        snapshot = (await monitor.poll_once())["down"]

        assert snapshot.issues == (HealthIssue.DISCONNECTED,)
        assert snapshot.stats_error is None

    @pytest.mark.asyncio
    async def test_stats_failure_recorded(self, event_bus):
        node = FakeNode("flaky")
        node.stats_error = RuntimeError("stats exploded")
        monitor = _monitor(node, event_bus=event_bus)

        snapshot = (await monitor.poll_once())["flaky"]

        assert snapshot.issues == (HealthIssue.STATS_UNAVAILABLE,)
        assert snapshot.stats_error == "stats exploded"

    @pytest.mark.asyncio
    async def test_snapshot_map_replaced_wholesale(self, event_bus):
        node = FakeNode("a")
        monitor = _monitor(node, event_bus=event_bus)

        first = await monitor.poll_once()
        second = await monitor.poll_once()

        assert first is not second
        assert monitor.snapshots is second
        with pytest.raises(TypeError):
            second["b"] = second["a"]  # type: ignore[index]


# =============================================================================
# Best Node Selection Tests
# =============================================================================


class TestBestNodeSelection:
    @pytest.mark.asyncio
    async def test_lowest_load_healthy_node_wins(self, event_bus):
        busy = FakeNode("busy", stats=NodeStats(players=3, cpu_load_percent=10.0))
        idle = FakeNode("idle", stats=NodeStats(players=0, cpu_load_percent=20.0))
        monitor = _monitor(busy, idle, event_bus=event_bus)
        await monitor.poll_once()

        assert monitor.best_node() == "idle"
        assert monitor.best_remote_node() is idle

    @pytest.mark.asyncio
    async def test_ties_go_to_registry_order(self, event_bus):
        monitor = _monitor(FakeNode("first"), FakeNode("second"), event_bus=event_bus)
        await monitor.poll_once()
        assert monitor.best_node() == "first"

    @pytest.mark.asyncio
    async def test_falls_back_to_most_recent_reconnecting_node(self, event_bus):
        older = FakeNode(
            "older",
            state=NodeConnectionState.RECONNECTING,
            connected_since=datetime(2024, 1, 1, tzinfo=UTC),
        )
        newer = FakeNode(
            "newer",
            state=NodeConnectionState.RECONNECTING,
            connected_since=datetime(2024, 6, 1, tzinfo=UTC),
        )
        overloaded = FakeNode("overloaded", stats=NodeStats(cpu_load_percent=99.0))
        monitor = _monitor(older, overloaded, newer, event_bus=event_bus)
        await monitor.poll_once()

        assert monitor.best_node() == "newer"

    @pytest.mark.asyncio
    async def test_falls_back_to_overloaded_connected_node(self, event_bus):
        hot = FakeNode("hot", stats=NodeStats(cpu_load_percent=99.0))
        hotter = FakeNode("hotter", stats=NodeStats(cpu_load_percent=99.5))
        down = FakeNode("down", state=NodeConnectionState.DISCONNECTED)
        monitor = _monitor(hotter, down, hot, event_bus=event_bus)
        await monitor.poll_once()

        assert monitor.best_node() == "hot"
        assert not monitor.has_healthy_node()

    @pytest.mark.asyncio
    async def test_connected_node_with_failed_stats_is_last_resort(self, event_bus):
        """A single connected node stays usable after one failed stats poll."""
        flaky = FakeNode("flaky")
        flaky.stats_error = RuntimeError("x")
        monitor = _monitor(
            FakeNode("down", state=NodeConnectionState.DISCONNECTED), flaky, event_bus=event_bus
        )
        await monitor.poll_once()

        assert monitor.best_node() == "flaky"
        assert monitor.best_remote_node() is flaky

    @pytest.mark.asyncio
    async def test_sampled_nodes_beat_unsampled_ones(self, event_bus):
        flaky = FakeNode("flaky")
        flaky.stats_error = RuntimeError("x")
        hot = FakeNode("hot", stats=NodeStats(cpu_load_percent=99.0))
        monitor = _monitor(flaky, hot, event_bus=event_bus)
        await monitor.poll_once()

        assert monitor.best_node() == "hot"

    @pytest.mark.asyncio
    async def test_no_usable_node(self, event_bus):
        monitor = _monitor(
            FakeNode("down", state=NodeConnectionState.DISCONNECTED), event_bus=event_bus
        )
        await monitor.poll_once()

        assert monitor.best_node() is None
        assert monitor.best_remote_node() is None

    @pytest.mark.asyncio
    async def test_report_aggregates(self, event_bus):
        monitor = _monitor(
            FakeNode("a", stats=NodeStats(players=2, cpu_load_percent=10.0)),
            FakeNode("b", stats=NodeStats(players=4, cpu_load_percent=30.0)),
            FakeNode("c", state=NodeConnectionState.DISCONNECTED),
            event_bus=event_bus,
        )
        await monitor.poll_once()

        report = monitor.report()
        assert report.total_nodes == 3
        assert report.connected_nodes == 2
        assert report.healthy_nodes == 2
        assert report.total_players == 6
        assert report.average_cpu_percent == pytest.approx(20.0)
        assert report.best_node == "a"


# =============================================================================
# Transition Event Tests
# =============================================================================


class TestHealthTransitions:
    @pytest.mark.asyncio
    async def test_unhealthy_then_recovered_published_once_each(self, event_bus):
        node = FakeNode("a", stats=NodeStats(cpu_load_percent=95.0))
        monitor = _monitor(node, event_bus=event_bus)
        unhealthy: list[NodeUnhealthy] = []
        recovered: list[NodeRecovered] = []

        async def on_unhealthy(event):
            unhealthy.append(event)

        async def on_recovered(event):
            recovered.append(event)

        event_bus.subscribe(NodeUnhealthy, on_unhealthy)
        event_bus.subscribe(NodeRecovered, on_recovered)

        await monitor.poll_once()
        await monitor.poll_once()
        node.stats = NodeStats(cpu_load_percent=5.0)
        await monitor.poll_once()

        assert len(unhealthy) == 1
        assert unhealthy[0].issues == ("high_cpu",)
        assert [e.node_name for e in recovered] == ["a"]


# =============================================================================
# Lifecycle Tests
# =============================================================================


class TestHealthMonitorLifecycle:
    @pytest.mark.asyncio
    async def test_start_polls_and_stop_cancels(self, event_bus):
        node = FakeNode("a")
        monitor = _monitor(node, event_bus=event_bus)

        monitor.start(poll_interval_s=3600)
        monitor.start()  # second start is ignored
        await drain()

        assert monitor.is_running
        assert "a" in monitor.snapshots

        await monitor.stop()
        assert not monitor.is_running
