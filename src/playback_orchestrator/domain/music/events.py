"""Notifications delivered by a remote node for one community's playback link.

The excluded event-stream consumer parses the node's websocket frames into
these models and hands them to ``PlaybackOrchestrator.dispatch_event``.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from playback_orchestrator.domain.shared.types import CommunityId, PositionMs


class LinkEvent(BaseModel):
    """Base class for all link events."""

    model_config = {"frozen": True}

    community_id: CommunityId


class TrackStartEvent(LinkEvent):
    event_type: Literal["TrackStartEvent"] = "TrackStartEvent"
    encoded: str


class TrackEndEvent(LinkEvent):
    event_type: Literal["TrackEndEvent"] = "TrackEndEvent"
    encoded: str
    # Raw value from the node; parsed leniently by the session.
    reason: str = "finished"


class TrackExceptionEvent(LinkEvent):
    event_type: Literal["TrackExceptionEvent"] = "TrackExceptionEvent"
    encoded: str
    message: str | None = None
    severity: str = "common"


class TrackStuckEvent(LinkEvent):
    event_type: Literal["TrackStuckEvent"] = "TrackStuckEvent"
    encoded: str
    threshold_ms: int = 0


class LinkClosedEvent(LinkEvent):
    event_type: Literal["WebSocketClosedEvent"] = "WebSocketClosedEvent"
    code: int = 0
    reason: str = ""
    # True when the node was migrated or the drop is expected to heal.
    recoverable: bool = False


class PlayerUpdateEvent(LinkEvent):
    event_type: Literal["PlayerUpdate"] = "PlayerUpdate"
    position_ms: PositionMs = 0
    connected: bool = True


PlaybackLinkEvent = Annotated[
    TrackStartEvent
    | TrackEndEvent
    | TrackExceptionEvent
    | TrackStuckEvent
    | LinkClosedEvent
    | PlayerUpdateEvent,
    Field(discriminator="event_type"),
]
