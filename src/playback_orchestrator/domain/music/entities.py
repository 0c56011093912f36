"""Core domain entities for the music bounded context."""

from __future__ import annotations

import random
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from playback_orchestrator.domain.music.value_objects import LoadType, LoopMode
from playback_orchestrator.domain.shared.datetime_utils import format_duration_ms, utcnow
from playback_orchestrator.domain.shared.exceptions import QueueFullError
from playback_orchestrator.domain.shared.types import (
    CommunityId,
    DurationMs,
    NonEmptyStr,
    NonNegativeInt,
    PositiveInt,
    TrackTitleStr,
    UtcDatetimeField,
)


class Track(BaseModel):
    """Immutable value object representing a playable track.

    ``encoded`` is the node-owned opaque payload; it is passed back to the
    node verbatim and never interpreted here.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    encoded: NonEmptyStr
    title: TrackTitleStr
    author: str = ""
    uri: str | None = None
    duration_ms: DurationMs = 0
    is_live: bool = False
    is_seekable: bool = True
    identifier: str | None = None
    source_name: str | None = None

    # Request metadata (set when returned to a caller)
    requester: str | None = None

    @property
    def duration_formatted(self) -> str:
        return format_duration_ms(0 if self.is_live else self.duration_ms)

    @property
    def display_title(self) -> str:
        """Get display title with duration if available."""
        if self.duration_ms and not self.is_live:
            return f"{self.title} [{self.duration_formatted}]"
        return self.title

    @property
    def dedup_key(self) -> str:
        """Identity used for duplicate suppression: uri, else identifier, else payload."""
        return self.uri or self.identifier or self.encoded

    def with_requester(self, requester: str | None) -> Track:
        """Return a copy of this track with requester metadata populated."""
        if requester == self.requester:
            return self
        return self.model_copy(update={"requester": requester})

    def same_track(self, other: Track | None) -> bool:
        """True when ``other`` carries the same node payload, ignoring requester."""
        return other is not None and other.encoded == self.encoded


class CollectionInfo(BaseModel):
    """Metadata of a track collection (playlist/album)."""

    model_config = ConfigDict(frozen=True)

    name: str
    selected_track: int = -1


# === Resolve result (tagged union) ===


class SingleTrackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["track"] = "track"
    track: Track


class TrackListResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["search"] = "search"
    tracks: tuple[Track, ...] = ()


class TrackCollectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["playlist"] = "playlist"
    info: CollectionInfo
    tracks: tuple[Track, ...] = ()


class EmptyResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    message: str | None = None


ResolveResult = Annotated[
    SingleTrackResult | TrackListResult | TrackCollectionResult | EmptyResult,
    Field(discriminator="kind"),
]


class SearchResult(BaseModel):
    """What a search hands back to callers: tracks plus optional collection info.

    Zero tracks is a normal outcome (not-found), not an error.
    """

    model_config = ConfigDict(frozen=True)

    load_type: LoadType
    tracks: tuple[Track, ...] = ()
    collection: CollectionInfo | None = None
    message: str | None = None

    @classmethod
    def from_resolved(cls, result: ResolveResult) -> SearchResult:
        match result:
            case SingleTrackResult(track=track):
                return cls(load_type=LoadType.TRACK, tracks=(track,))
            case TrackListResult(tracks=tracks):
                return cls(load_type=LoadType.SEARCH, tracks=tracks)
            case TrackCollectionResult(info=info, tracks=tracks):
                return cls(load_type=LoadType.PLAYLIST, tracks=tracks, collection=info)
            case EmptyResult(message=message):
                return cls(load_type=LoadType.EMPTY, message=message)
        raise TypeError(f"Unsupported resolve result: {type(result).__name__}")

    @property
    def is_empty(self) -> bool:
        return not self.tracks

    @property
    def first(self) -> Track | None:
        return self.tracks[0] if self.tracks else None

    def with_requester(self, requester: str | None) -> SearchResult:
        """Copy of this result with ``requester`` substituted into every track."""
        return self.model_copy(
            update={"tracks": tuple(t.with_requester(requester) for t in self.tracks)}
        )


class AddResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    added: NonNegativeInt
    skipped: tuple[Track, ...] = ()
    queue_length: NonNegativeInt


# === Queue aggregate ===


class PlaybackQueue(BaseModel):
    """Pure queue state for a single community.

    Holds the pending tracks, the current track, loop mode and a bounded
    most-recent-first history. It performs no I/O; ``PlaybackSession``
    drives it and talks to the remote link.
    """

    community_id: CommunityId
    tracks: list[Track] = Field(default_factory=list)
    current: Track | None = None
    loop_mode: LoopMode = LoopMode.OFF
    history: list[Track] = Field(default_factory=list)
    max_length: PositiveInt = 1000
    history_size: PositiveInt = 50
    last_activity: UtcDatetimeField = Field(default_factory=utcnow)

    def __len__(self) -> int:
        return len(self.tracks)

    @property
    def is_empty(self) -> bool:
        return not self.tracks

    @property
    def has_tracks(self) -> bool:
        return self.current is not None or bool(self.tracks)

    @property
    def total_duration_ms(self) -> int:
        return sum(t.duration_ms for t in self.tracks if not t.is_live)

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = utcnow()

    def _is_duplicate(self, track: Track, seen: set[str]) -> bool:
        return track.dedup_key in seen

    def add(self, tracks: list[Track], *, deduplicate: bool = False) -> AddResult:
        """Append tracks, all or nothing.

        Raises ``QueueFullError`` when the accepted tracks would exceed
        ``max_length``; the queue is untouched in that case.
        """
        accepted: list[Track] = []
        skipped: list[Track] = []

        if deduplicate:
            seen = {t.dedup_key for t in self.tracks}
            if self.current is not None:
                seen.add(self.current.dedup_key)
            for track in tracks:
                if self._is_duplicate(track, seen):
                    skipped.append(track)
                    continue
                seen.add(track.dedup_key)
                accepted.append(track)
        else:
            accepted = list(tracks)

        if len(self.tracks) + len(accepted) > self.max_length:
            raise QueueFullError(self.max_length)

        self.tracks.extend(accepted)
        if accepted:
            self.touch()
        return AddResult(added=len(accepted), skipped=tuple(skipped), queue_length=len(self.tracks))

    def pop_next(self) -> Track | None:
        """Remove and return the next track from the queue."""
        if not self.tracks:
            return None
        track = self.tracks.pop(0)
        self.touch()
        return track

    def push_front(self, track: Track) -> None:
        """Put a track back at the head of the queue, bypassing ``max_length``."""
        self.tracks.insert(0, track)

    def peek(self) -> Track | None:
        return self.tracks[0] if self.tracks else None

    def remove(self, index: int) -> Track | None:
        """Remove a track at a zero-based index; None when out of range."""
        if 0 <= index < len(self.tracks):
            track = self.tracks.pop(index)
            self.touch()
            return track
        return None

    def move(self, from_index: int, to_index: int) -> bool:
        """Move a track between zero-based positions; False when out of range."""
        size = len(self.tracks)
        if not (0 <= from_index < size and 0 <= to_index < size):
            return False
        if from_index != to_index:
            track = self.tracks.pop(from_index)
            self.tracks.insert(to_index, track)
        self.touch()
        return True

    def take(self, position: int) -> Track | None:
        """Remove and return the track at a one-based position."""
        return self.remove(position - 1)

    def shuffle(self, rng: random.Random | None = None) -> None:
        """Unbiased in-place Fisher-Yates shuffle of the pending tracks only."""
        rand = rng or random
        tracks = self.tracks
        for i in range(len(tracks) - 1, 0, -1):
            j = rand.randint(0, i)
            tracks[i], tracks[j] = tracks[j], tracks[i]
        self.touch()

    def clear(self) -> int:
        """Clear all pending tracks and return the count removed."""
        count = len(self.tracks)
        self.tracks.clear()
        self.touch()
        return count

    def record_start(self, track: Track) -> None:
        """Push a started track onto the front of the bounded history."""
        self.history.insert(0, track)
        del self.history[self.history_size :]

    def take_previous(self) -> Track | None:
        """Pop the most recent history entry that is not the current track."""
        while self.history:
            candidate = self.history.pop(0)
            if not candidate.same_track(self.current):
                return candidate
        return None

    def next_after(self, finished: Track, *, honour_track_loop: bool = True) -> Track | None:
        """Decide what plays after ``finished`` under the current loop mode.

        Track loop replays ``finished``. Queue loop re-appends it to the tail
        (outside the ``max_length`` check) before popping the next track.
        """
        if self.loop_mode is LoopMode.TRACK and honour_track_loop:
            return finished
        if self.loop_mode is LoopMode.QUEUE:
            self.tracks.append(finished)
        return self.pop_next()

    def reset(self) -> None:
        """Drop every track, the current one and the history."""
        self.tracks.clear()
        self.history.clear()
        self.current = None
        self.touch()
