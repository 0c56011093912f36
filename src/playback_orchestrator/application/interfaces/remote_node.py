"""Port interfaces for the remote audio cluster's node registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from playback_orchestrator.domain.cluster.value_objects import NodeConnectionState, NodeStats
    from playback_orchestrator.domain.music.entities import ResolveResult


class RemoteNode(ABC):
    """One audio-processing node reachable over the control protocol."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def connection_state(self) -> "NodeConnectionState":
        ...

    @property
    @abstractmethod
    def connected_since(self) -> datetime | None:
        """When the node last became connected; None if it never was."""
        ...

    @abstractmethod
    async def fetch_stats(self) -> "NodeStats":
        """Read current load figures from the node."""
        ...

    @abstractmethod
    async def resolve(self, identifier: str) -> "ResolveResult":
        """Resolve a URL or a ``source:query`` search identifier into tracks."""
        ...


class NodeRegistry(ABC):
    """The set of nodes known to the client, in a stable order."""

    @abstractmethod
    def nodes(self) -> Sequence[RemoteNode]:
        ...

    @abstractmethod
    def get(self, name: str) -> RemoteNode | None:
        ...
