"""Wire models for the node's v4 REST API (camelCase JSON)."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from playback_orchestrator.domain.cluster.value_objects import NodeStats
from playback_orchestrator.domain.music.entities import (
    CollectionInfo,
    EmptyResult,
    ResolveResult,
    SingleTrackResult,
    Track,
    TrackCollectionResult,
    TrackListResult,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MemoryPayload(_WireModel):
    free: int = 0
    used: int = 0
    allocated: int = 0
    reservable: int = 0


class CpuPayload(_WireModel):
    cores: int = 1
    system_load: float = 0.0
    lavalink_load: float = 0.0


class StatsPayload(_WireModel):
    players: int = 0
    playing_players: int = 0
    uptime: int = 0
    memory: MemoryPayload = Field(default_factory=MemoryPayload)
    cpu: CpuPayload = Field(default_factory=CpuPayload)

    def to_domain(self) -> NodeStats:
        # The node reports its own process load as a 0-1 fraction.
        return NodeStats(
            players=self.players,
            playing_players=self.playing_players,
            cpu_load_percent=max(0.0, self.cpu.lavalink_load * 100),
            memory_used_bytes=self.memory.used,
            memory_reservable_bytes=self.memory.reservable,
            uptime_ms=self.uptime,
        )


class TrackInfoPayload(_WireModel):
    identifier: str
    is_seekable: bool = True
    author: str = ""
    length: int = 0
    is_stream: bool = False
    title: str
    uri: str | None = None
    source_name: str | None = None


class TrackPayload(_WireModel):
    encoded: str
    info: TrackInfoPayload

    def to_domain(self) -> Track:
        info = self.info
        return Track(
            encoded=self.encoded,
            title=info.title[:500] or info.identifier,
            author=info.author,
            uri=info.uri,
            duration_ms=0 if info.is_stream else max(0, info.length),
            is_live=info.is_stream,
            is_seekable=info.is_seekable and not info.is_stream,
            identifier=info.identifier,
            source_name=info.source_name,
        )


class PlaylistInfoPayload(_WireModel):
    name: str = ""
    selected_track: int = -1


class PlaylistPayload(_WireModel):
    info: PlaylistInfoPayload = Field(default_factory=PlaylistInfoPayload)
    tracks: list[TrackPayload] = Field(default_factory=list)


class LoadErrorPayload(_WireModel):
    message: str | None = None
    severity: str = "common"
    cause: str | None = None


class LoadResultPayload(_WireModel):
    load_type: Literal["track", "playlist", "search", "empty", "error"]
    data: Any = None

    def to_domain(self) -> ResolveResult:
        match self.load_type:
            case "track":
                track = TrackPayload.model_validate(self.data).to_domain()
                return SingleTrackResult(track=track)
            case "search":
                tracks = [TrackPayload.model_validate(t).to_domain() for t in self.data or []]
                return TrackListResult(tracks=tuple(tracks))
            case "playlist":
                playlist = PlaylistPayload.model_validate(self.data or {})
                return TrackCollectionResult(
                    info=CollectionInfo(
                        name=playlist.info.name, selected_track=playlist.info.selected_track
                    ),
                    tracks=tuple(t.to_domain() for t in playlist.tracks),
                )
            case "error":
                error = LoadErrorPayload.model_validate(self.data or {})
                return EmptyResult(message=error.message or error.cause)
            case _:
                return EmptyResult()


class PlayerTrackPayload(_WireModel):
    encoded: str | None


class PlayerUpdatePayload(_WireModel):
    """Body of a player PATCH; unset fields are left untouched by the node."""

    track: PlayerTrackPayload | None = None
    position: int | None = None
    volume: int | None = None
    paused: bool | None = None
    filters: dict[str, Any] | None = None
    voice: dict[str, str] | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ErrorResponsePayload(_WireModel):
    status: int | None = None
    error: str | None = None
    message: str | None = None
