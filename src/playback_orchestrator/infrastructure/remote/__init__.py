"""REST adapters for the remote audio nodes (httpx)."""

from playback_orchestrator.infrastructure.remote.rest_link import (
    RestLinkFactory,
    RestPlaybackLink,
)
from playback_orchestrator.infrastructure.remote.rest_node import RestNode, RestNodeRegistry

__all__ = [
    "RestLinkFactory",
    "RestNode",
    "RestNodeRegistry",
    "RestPlaybackLink",
]
