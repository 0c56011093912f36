"""Port interfaces for the per-community playback control surface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from playback_orchestrator.domain.music.entities import Track
    from playback_orchestrator.application.interfaces.remote_node import RemoteNode


class PlaybackLink(ABC):
    """A session's connection to the node currently hosting its playback."""

    @property
    @abstractmethod
    def community_id(self) -> str:
        ...

    @property
    @abstractmethod
    def node_name(self) -> str:
        ...

    @abstractmethod
    async def play(
        self,
        track: "Track",
        *,
        start_ms: int = 0,
        volume: int | None = None,
        paused: bool = False,
    ) -> None:
        """Start ``track``, replacing whatever is playing."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the current track without closing the link."""
        ...

    @abstractmethod
    async def set_paused(self, paused: bool) -> None:
        ...

    @abstractmethod
    async def seek(self, position_ms: int) -> None:
        ...

    @abstractmethod
    async def set_volume(self, volume: int) -> None:
        ...

    @abstractmethod
    async def set_filters(self, filters: dict[str, Any]) -> None:
        """Replace every active filter with ``filters``."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the remote player. Safe to call more than once."""
        ...


class LinkFactory(ABC):
    """Opens playback links on a chosen node."""

    @abstractmethod
    async def open_link(
        self, node: "RemoteNode", community_id: str, link_target: str | None
    ) -> PlaybackLink:
        ...
