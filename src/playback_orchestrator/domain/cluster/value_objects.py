"""Immutable health readings for the remote audio cluster."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from playback_orchestrator.domain.shared.datetime_utils import utcnow
from playback_orchestrator.domain.shared.types import (
    NodeName,
    NonNegativeFloat,
    NonNegativeInt,
    UtcDatetimeField,
)

PLAYER_LOAD_WEIGHT = 10
"""Load score points contributed by each active player."""


class NodeConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class HealthIssue(StrEnum):
    HIGH_CPU = "high_cpu"
    HIGH_MEMORY = "high_memory"
    PLAYER_LIMIT = "player_limit"
    DISCONNECTED = "disconnected"
    STATS_UNAVAILABLE = "stats_unavailable"


class NodeStats(BaseModel):
    """Raw load figures reported by a node."""

    model_config = ConfigDict(frozen=True)

    players: NonNegativeInt = 0
    playing_players: NonNegativeInt = 0
    cpu_load_percent: NonNegativeFloat = 0.0
    memory_used_bytes: NonNegativeInt = 0
    memory_reservable_bytes: NonNegativeInt = 0
    uptime_ms: NonNegativeInt = 0

    @property
    def memory_percent(self) -> float:
        if self.memory_reservable_bytes <= 0:
            return 0.0
        return self.memory_used_bytes / self.memory_reservable_bytes * 100


class NodeHealthSnapshot(BaseModel):
    """One node's reading for one poll tick. Replaced wholesale, never merged."""

    model_config = ConfigDict(frozen=True)

    name: NodeName
    connection_state: NodeConnectionState
    stats: NodeStats = Field(default_factory=NodeStats)
    connected_since: UtcDatetimeField | None = None
    issues: tuple[HealthIssue, ...] = ()
    stats_error: str | None = None
    sampled_at: UtcDatetimeField = Field(default_factory=utcnow)

    @property
    def active_players(self) -> int:
        return self.stats.players

    @property
    def playing_players(self) -> int:
        return self.stats.playing_players

    @property
    def cpu_load_percent(self) -> float:
        return self.stats.cpu_load_percent

    @property
    def memory_used_bytes(self) -> int:
        return self.stats.memory_used_bytes

    @property
    def load_score(self) -> float:
        """Lower is better: cpu percent plus ten points per active player."""
        return self.stats.cpu_load_percent + self.stats.players * PLAYER_LOAD_WEIGHT

    @property
    def is_connected(self) -> bool:
        return self.connection_state is NodeConnectionState.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self.connection_state is NodeConnectionState.RECONNECTING

    @property
    def is_healthy(self) -> bool:
        return self.is_connected and not self.issues


class ClusterHealthReport(BaseModel):
    """Aggregate view handed to the observability layer."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[NodeHealthSnapshot, ...] = ()
    best_node: NodeName | None = None
    generated_at: UtcDatetimeField = Field(default_factory=utcnow)

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    @property
    def connected_nodes(self) -> int:
        return sum(1 for n in self.nodes if n.is_connected)

    @property
    def healthy_nodes(self) -> int:
        return sum(1 for n in self.nodes if n.is_healthy)

    @property
    def total_players(self) -> int:
        return sum(n.active_players for n in self.nodes)

    @property
    def average_cpu_percent(self) -> float:
        connected = [n for n in self.nodes if n.is_connected]
        if not connected:
            return 0.0
        return sum(n.cpu_load_percent for n in connected) / len(connected)
