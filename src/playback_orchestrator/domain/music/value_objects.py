"""Immutable value objects for the music bounded context."""

from __future__ import annotations

import logging
from enum import Enum, StrEnum

from playback_orchestrator.domain.shared.exceptions import InvalidLoopModeError

logger = logging.getLogger(__name__)


class LoopMode(StrEnum):
    """Loop mode settings for queue playback."""

    OFF = "off"
    TRACK = "track"  # Loop current track
    QUEUE = "queue"  # Loop entire queue

    @classmethod
    def parse(cls, value: LoopMode | str) -> LoopMode:
        """Parse a user-supplied loop mode, rejecting anything unknown."""
        if isinstance(value, LoopMode):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidLoopModeError(value)

    def next_mode(self) -> LoopMode:
        """Cycle to next loop mode."""
        modes = list(LoopMode)
        return modes[(modes.index(self) + 1) % len(modes)]


class TrackEndReason(StrEnum):
    """Why the remote node stopped playing a track."""

    FINISHED = "finished"
    LOAD_FAILED = "loadFailed"
    STOPPED = "stopped"
    REPLACED = "replaced"
    CLEANUP = "cleanup"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> TrackEndReason:
        """Map a raw end reason to a member; malformed values become UNKNOWN."""
        if isinstance(raw, str):
            for member in cls:
                if member.value.lower() == raw.strip().lower():
                    return member
        logger.warning("Unrecognised track end reason %r, treating as unknown", raw)
        return cls.UNKNOWN

    @property
    def was_replaced(self) -> bool:
        return self is TrackEndReason.REPLACED


class LoadType(StrEnum):
    """Shape of a resolve result."""

    TRACK = "track"
    SEARCH = "search"
    PLAYLIST = "playlist"
    EMPTY = "empty"


class SessionDestroyReason(Enum):
    """Reasons a session can be destroyed."""

    REQUESTED = "requested"
    INACTIVITY = "inactivity"
    LINK_LOST = "link_lost"
    RECONNECT_FAILED = "reconnect_failed"
    NODE_LOST = "node_lost"
    MEMORY_PRESSURE = "memory_pressure"
    SHUTDOWN = "shutdown"


class FilterPreset(StrEnum):
    """Named effect presets."""

    NIGHTCORE = "nightcore"
    VAPORWAVE = "vaporwave"
    EIGHT_D = "8d"


class EqualizerPreset(StrEnum):
    """Named equalizer curves."""

    FLAT = "flat"
    BASS = "bass"
    ROCK = "rock"
    JAZZ = "jazz"
    POP = "pop"
