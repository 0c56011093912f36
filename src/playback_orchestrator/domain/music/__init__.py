"""
Music Bounded Context

Tracks, search results, the pure playback queue and audio filters.
"""

from playback_orchestrator.domain.music.entities import (
    AddResult,
    PlaybackQueue,
    SearchResult,
    Track,
)
from playback_orchestrator.domain.music.filters import FilterSettings
from playback_orchestrator.domain.music.value_objects import (
    LoadType,
    LoopMode,
    SessionDestroyReason,
    TrackEndReason,
)

__all__ = [
    # Entities
    "Track",
    "SearchResult",
    "AddResult",
    "PlaybackQueue",
    # Value Objects
    "LoadType",
    "LoopMode",
    "TrackEndReason",
    "SessionDestroyReason",
    "FilterSettings",
]
