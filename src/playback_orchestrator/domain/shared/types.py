"""Reusable Pydantic Annotated types for domain-wide validation.

Every constrained type used across the package is defined here once,
so models can simply annotate their fields::

    from playback_orchestrator.domain.shared.types import CommunityId, VolumeInt

    class MyModel(BaseModel):
        community_id: CommunityId
        volume: VolumeInt
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import BeforeValidator, Field

# ── Numeric constraints ─────────────────────────────────────────────

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer >= 0."""

PositiveInt = Annotated[int, Field(gt=0)]
"""Integer > 0."""

NonNegativeFloat = Annotated[float, Field(ge=0.0)]
"""Float >= 0.0."""

PositiveFloat = Annotated[float, Field(gt=0.0)]
"""Float > 0.0."""

UnitInterval = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float in [0.0, 1.0], used for jitter factors."""

Percentage = Annotated[float, Field(ge=0.0, le=100.0)]
"""Float in [0.0, 100.0]."""

VolumeInt = Annotated[int, Field(ge=0, le=100)]
"""Playback volume in [0, 100]."""

DurationMs = Annotated[int, Field(ge=0)]
"""Track duration in milliseconds; 0 means unknown or live."""

PositionMs = Annotated[int, Field(ge=0)]
"""Playback position in milliseconds."""

QueuePositionInt = Annotated[int, Field(ge=0)]
"""Zero-based queue position."""


# ── String constraints ──────────────────────────────────────────────

NonEmptyStr = Annotated[str, Field(min_length=1)]
"""String with at least one character."""

CommunityId = Annotated[str, Field(min_length=1, max_length=64)]
"""Identifier of the community a session belongs to."""

NodeName = Annotated[str, Field(min_length=1, max_length=64)]
"""Identifier of a remote audio node."""

TrackTitleStr = Annotated[str, Field(min_length=1, max_length=500)]
"""Track title: 1-500 characters."""

HttpUrlStr = Annotated[str, Field(pattern=r"^https?://")]
"""String that starts with http:// or https://."""


# ── Datetime constraints ────────────────────────────────────────────

def _ensure_utc(v: datetime) -> datetime:
    """Validate that a datetime is timezone-aware and normalise to UTC."""
    if v.tzinfo is None:
        raise ValueError("datetime must be timezone-aware (UTC)")
    return v.astimezone(UTC)


UtcDatetimeField = Annotated[datetime, BeforeValidator(_ensure_utc)]
"""Timezone-aware datetime, normalised to UTC on input."""
