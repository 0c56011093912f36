"""Playback link backed by a node's player REST endpoints."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from playback_orchestrator.application.interfaces.playback_link import LinkFactory, PlaybackLink
from playback_orchestrator.application.interfaces.remote_node import RemoteNode
from playback_orchestrator.domain.music.entities import Track
from playback_orchestrator.infrastructure.remote.payloads import (
    PlayerTrackPayload,
    PlayerUpdatePayload,
)
from playback_orchestrator.infrastructure.remote.rest_node import RestNode

VoiceStateProvider = Callable[[str, str | None], Awaitable[dict[str, str] | None]]
"""Supplies the audio transport's connection details for ``(community_id, link_target)``."""


class RestPlaybackLink(PlaybackLink):
    def __init__(self, node: RestNode, community_id: str) -> None:
        self._node = node
        self._community_id = community_id
        self._closed = False

    @property
    def community_id(self) -> str:
        return self._community_id

    @property
    def node_name(self) -> str:
        return self._node.name

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def _update(self, **fields: Any) -> None:
        await self._node.update_player(self._community_id, PlayerUpdatePayload(**fields))

    async def play(
        self,
        track: Track,
        *,
        start_ms: int = 0,
        volume: int | None = None,
        paused: bool = False,
    ) -> None:
        fields: dict[str, Any] = {
            "track": PlayerTrackPayload(encoded=track.encoded),
            "paused": paused,
        }
        if start_ms > 0:
            fields["position"] = start_ms
        if volume is not None:
            fields["volume"] = volume
        await self._update(**fields)

    async def stop(self) -> None:
        await self._update(track=PlayerTrackPayload(encoded=None))

    async def set_paused(self, paused: bool) -> None:
        await self._update(paused=paused)

    async def seek(self, position_ms: int) -> None:
        await self._update(position=position_ms)

    async def set_volume(self, volume: int) -> None:
        await self._update(volume=volume)

    async def set_filters(self, filters: dict[str, Any]) -> None:
        await self._update(filters=filters)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._node.destroy_player(self._community_id)


class RestLinkFactory(LinkFactory):
    """Creates the node-side player, sending voice details when a provider has them."""

    def __init__(self, voice_states: VoiceStateProvider | None = None) -> None:
        self._voice_states = voice_states

    async def open_link(
        self, node: RemoteNode, community_id: str, link_target: str | None
    ) -> RestPlaybackLink:
        if not isinstance(node, RestNode):
            raise TypeError(f"RestLinkFactory cannot open links on {type(node).__name__}")

        voice = None
        if self._voice_states is not None:
            voice = await self._voice_states(community_id, link_target)

        update = PlayerUpdatePayload(voice=voice) if voice else PlayerUpdatePayload()
        await node.update_player(community_id, update, no_replace=True)
        return RestPlaybackLink(node, community_id)
