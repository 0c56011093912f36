"""Health readings for the remote audio cluster."""

from playback_orchestrator.domain.cluster.value_objects import (
    ClusterHealthReport,
    NodeConnectionState,
    NodeHealthSnapshot,
    NodeStats,
)

__all__ = [
    "ClusterHealthReport",
    "NodeConnectionState",
    "NodeHealthSnapshot",
    "NodeStats",
]
