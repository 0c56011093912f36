"""Per-community playback state machine.

A session owns its queue, its remote playback link and two timers (idle
destroy and link reconnection). Every mutator and every remote event takes
the session lock, so a track-end notification can never interleave with a
user-issued skip. Sessions never talk to one another; different sessions
run fully in parallel.

Domain events are published while the lock is held: subscribers must not
await mutators of the same session.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from playback_orchestrator.application.services.resilience import (
    BackoffPolicy,
    Sleeper,
    retry_with_backoff,
    with_timeout,
)
from playback_orchestrator.domain.music.entities import AddResult, PlaybackQueue, Track
from playback_orchestrator.domain.music.events import (
    LinkClosedEvent,
    PlaybackLinkEvent,
    PlayerUpdateEvent,
    TrackEndEvent,
    TrackExceptionEvent,
    TrackStartEvent,
    TrackStuckEvent,
)
from playback_orchestrator.domain.music.filters import FilterSettings
from playback_orchestrator.domain.music.value_objects import (
    EqualizerPreset,
    FilterPreset,
    LoopMode,
    SessionDestroyReason,
    TrackEndReason,
)
from playback_orchestrator.domain.shared.events import (
    EventBus,
    QueueExhausted,
    ReconnectionFailed,
    TrackStarted,
    get_event_bus,
)
from playback_orchestrator.domain.shared.exceptions import (
    DomainError,
    InvalidOperationError,
    NotSeekableError,
    ReconnectionFailedError,
    RemoteRequestError,
    ServiceUnavailableError,
    ValidationError,
)
from playback_orchestrator.domain.shared.messages import ErrorMessages, LogTemplates

if TYPE_CHECKING:
    from playback_orchestrator.application.interfaces.playback_link import PlaybackLink
    from playback_orchestrator.application.services.remote_guard import RemoteCallGuard
    from playback_orchestrator.config.settings import ReconnectSettings, SessionSettings

logger = logging.getLogger(__name__)

LinkConnector = Callable[[], Awaitable["PlaybackLink"]]
DestroyListener = Callable[["PlaybackSession", SessionDestroyReason], Awaitable[None]]

_CONNECT_BACKOFF = BackoffPolicy(initial_delay_s=1.0, max_delay_s=3.0, multiplier=2.0)


def _retry_while_degraded(error: BaseException) -> bool:
    return isinstance(error, ServiceUnavailableError)


@dataclass(slots=True)
class SessionStats:
    tracks_played: int = 0
    total_duration_ms: int = 0
    skips: int = 0
    errors: int = 0


class SessionSnapshot(BaseModel):
    """Read-only view of a session for observers and the command layer."""

    model_config = ConfigDict(frozen=True)

    community_id: str
    current: Track | None
    queue: tuple[Track, ...]
    history: tuple[Track, ...]
    loop_mode: LoopMode
    volume: int
    paused: bool
    position_ms: int
    node_name: str | None
    active_filters: tuple[str, ...]
    tracks_played: int
    total_duration_ms: int
    skips: int
    errors: int
    reconnecting: bool

    @property
    def queue_length(self) -> int:
        return len(self.queue)

    @property
    def is_idle(self) -> bool:
        return self.current is None


class PlaybackSession:
    def __init__(
        self,
        community_id: str,
        *,
        connector: LinkConnector,
        guard: RemoteCallGuard,
        settings: SessionSettings,
        reconnect_settings: ReconnectSettings,
        link_timeout_s: float = 5.0,
        event_bus: EventBus | None = None,
        on_destroyed: DestroyListener | None = None,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._community_id = community_id
        self._connector = connector
        self._guard = guard
        self._settings = settings
        self._link_timeout_s = link_timeout_s
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self._on_destroyed = on_destroyed
        self._sleep = sleep
        self._rng = rng

        self._reconnect_policy = BackoffPolicy(
            initial_delay_s=reconnect_settings.initial_delay_s,
            max_delay_s=reconnect_settings.max_delay_s,
            multiplier=reconnect_settings.multiplier,
            jitter=reconnect_settings.jitter,
        )
        self._reconnect_attempts = reconnect_settings.max_attempts

        self._queue = PlaybackQueue(
            community_id=community_id,
            max_length=settings.max_queue_length,
            history_size=settings.history_size,
        )
        self._volume = settings.default_volume
        self._paused = False
        self._position_ms = 0
        self._filters = FilterSettings()
        self._stats = SessionStats()

        self._link: PlaybackLink | None = None
        self._lock = asyncio.Lock()
        self._destroyed = False
        self._reconnecting = False
        self._idle_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    # ── read-only accessors ──────────────────────────────────────────

    @property
    def community_id(self) -> str:
        return self._community_id

    @property
    def current(self) -> Track | None:
        return self._queue.current

    @property
    def queue(self) -> tuple[Track, ...]:
        return tuple(self._queue.tracks)

    @property
    def history(self) -> tuple[Track, ...]:
        return tuple(self._queue.history)

    @property
    def loop_mode(self) -> LoopMode:
        return self._queue.loop_mode

    @property
    def volume(self) -> int:
        return self._volume

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def position_ms(self) -> int:
        return self._position_ms

    @property
    def filters(self) -> FilterSettings:
        return self._filters

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def link(self) -> PlaybackLink | None:
        return self._link

    @property
    def node_name(self) -> str | None:
        return self._link.node_name if self._link is not None else None

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnecting

    @property
    def is_idle(self) -> bool:
        return self._queue.current is None

    @property
    def has_idle_timer(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            community_id=self._community_id,
            current=self._queue.current,
            queue=tuple(self._queue.tracks),
            history=tuple(self._queue.history),
            loop_mode=self._queue.loop_mode,
            volume=self._volume,
            paused=self._paused,
            position_ms=self._position_ms,
            node_name=self.node_name,
            active_filters=tuple(self._filters.active),
            tracks_played=self._stats.tracks_played,
            total_duration_ms=self._stats.total_duration_ms,
            skips=self._stats.skips,
            errors=self._stats.errors,
            reconnecting=self._reconnecting,
        )

    # ── queue mutators ───────────────────────────────────────────────

    async def add(self, tracks: Track | Sequence[Track]) -> AddResult:
        """Append one or more tracks; rejects the whole batch with ``QueueFullError``."""
        batch = [tracks] if isinstance(tracks, Track) else list(tracks)
        async with self._lock:
            self._ensure_alive("add")
            result = self._queue.add(batch, deduplicate=self._settings.deduplicate_tracks)
        if result.skipped:
            logger.info(
                LogTemplates.QUEUE_DUPLICATES_SKIPPED, len(result.skipped), self._community_id
            )
        logger.debug(
            LogTemplates.QUEUE_TRACKS_ADDED, result.added, self._community_id, result.queue_length
        )
        return result

    async def remove(self, index: int) -> Track | None:
        async with self._lock:
            self._ensure_alive("remove")
            return self._queue.remove(index)

    async def move(self, from_index: int, to_index: int) -> bool:
        async with self._lock:
            self._ensure_alive("move")
            return self._queue.move(from_index, to_index)

    async def shuffle(self) -> None:
        async with self._lock:
            self._ensure_alive("shuffle")
            self._queue.shuffle(self._rng)

    async def clear(self) -> int:
        async with self._lock:
            self._ensure_alive("clear")
            return self._queue.clear()

    async def set_loop(self, mode: LoopMode | str) -> LoopMode:
        parsed = LoopMode.parse(mode)
        async with self._lock:
            self._ensure_alive("set_loop")
            self._queue.loop_mode = parsed
            self._queue.touch()
        return parsed

    # ── playback control ─────────────────────────────────────────────

    async def play(self, track: Track | None = None) -> Track | None:
        """Start ``track``, or pop the next queued track when none is given.

        Returns the track that started, or None when nothing was playable.
        """
        async with self._lock:
            self._ensure_alive("play")
            return await self._play_locked(track)

    async def skip(self) -> Track | None:
        """Advance past the current track, ignoring track loop."""
        async with self._lock:
            self._ensure_alive("skip")
            finished = self._queue.current
            if finished is None:
                return None

            self._stats.skips += 1
            upcoming = self._queue.next_after(finished, honour_track_loop=False)
            if upcoming is not None:
                return await self._play_locked(upcoming, from_queue=True)

            await self._halt_locked(finished)
            return None

    async def stop(self) -> None:
        """Clear the queue and the current track, then start the idle countdown."""
        async with self._lock:
            self._ensure_alive("stop")
            self._queue.clear()
            await self._halt_locked(None, publish=False)

    async def jump(self, position: int) -> Track | None:
        """Play the track at a one-based queue position; None when out of range."""
        async with self._lock:
            self._ensure_alive("jump")
            target = self._queue.take(position)
            if target is None:
                return None
            return await self._play_locked(target, from_queue=True)

    async def previous(self) -> Track | None:
        """Replay the most recent history entry; the current track goes back to the front."""
        async with self._lock:
            self._ensure_alive("previous")
            target = self._queue.take_previous()
            if target is None:
                return None
            if self._queue.current is not None:
                self._queue.push_front(self._queue.current)
            return await self._play_locked(target)

    async def pause(self) -> bool:
        async with self._lock:
            self._ensure_alive("pause")
            if self._link is None or self._queue.current is None or self._paused:
                return False
            link = self._link
            await self._remote(lambda: link.set_paused(True), "pause")
            self._paused = True
            return True

    async def resume(self) -> bool:
        async with self._lock:
            self._ensure_alive("resume")
            if self._link is None or not self._paused:
                return False
            link = self._link
            await self._remote(lambda: link.set_paused(False), "resume")
            self._paused = False
            return True

    async def set_volume(self, volume: int) -> int:
        """Clamp to [0, 100] and apply; returns the volume actually set."""
        clamped = max(0, min(100, int(volume)))
        async with self._lock:
            self._ensure_alive("set_volume")
            if self._link is not None:
                link = self._link
                await self._remote(lambda: link.set_volume(clamped), "set volume")
            self._volume = clamped
        return clamped

    async def seek(self, position_ms: int) -> int:
        async with self._lock:
            self._ensure_alive("seek")
            current = self._queue.current
            if current is None or self._link is None:
                raise InvalidOperationError("seek", "idle", ErrorMessages.NOTHING_PLAYING)
            if current.is_live or not current.is_seekable:
                raise NotSeekableError(current.title)
            if position_ms < 0 or (current.duration_ms and position_ms > current.duration_ms):
                raise ValidationError(
                    ErrorMessages.SEEK_OUT_OF_RANGE.format(
                        position=position_ms, duration=current.duration_ms
                    ),
                    field="position_ms",
                )
            link = self._link
            await self._remote(lambda: link.seek(position_ms), "seek")
            self._position_ms = position_ms
            return position_ms

    # ── filters ──────────────────────────────────────────────────────

    async def apply_filter_preset(self, preset: FilterPreset, enabled: bool = True) -> list[str]:
        """Toggle an effect preset; returns the names of filters it cleared."""
        async with self._lock:
            self._ensure_alive("apply_filter_preset")
            cleared = self._filters.conflicts_with(preset) if enabled else []
            await self._set_filters_locked(self._filters.with_preset(preset, enabled))
        if cleared:
            logger.info(
                LogTemplates.FILTERS_CLEARED_CONFLICTS,
                ", ".join(cleared),
                preset,
                self._community_id,
            )
        return cleared

    async def set_equalizer(self, preset: EqualizerPreset) -> list[str]:
        async with self._lock:
            self._ensure_alive("set_equalizer")
            cleared = self._filters.conflicts_with(preset)
            await self._set_filters_locked(self._filters.with_equalizer(preset))
        return cleared

    async def apply_filters(self, filters: FilterSettings) -> None:
        """Replace the whole filter set, pushing it to the link when connected."""
        async with self._lock:
            self._ensure_alive("apply_filters")
            await self._set_filters_locked(filters)

    async def clear_filters(self) -> None:
        async with self._lock:
            self._ensure_alive("clear_filters")
            await self._set_filters_locked(FilterSettings())

    async def _set_filters_locked(self, filters: FilterSettings) -> None:
        if self._link is not None:
            link = self._link
            payload = filters.to_payload()
            await self._remote(lambda: link.set_filters(payload), "set filters")
        self._filters = filters

    # ── remote events ────────────────────────────────────────────────

    async def handle_event(self, event: PlaybackLinkEvent) -> None:
        """Consume one link notification. Failures are logged, never raised."""
        async with self._lock:
            if self._destroyed:
                return
            try:
                match event:
                    case TrackStartEvent():
                        self._on_track_start(event)
                    case TrackEndEvent():
                        await self._on_track_end(event)
                    case TrackExceptionEvent() | TrackStuckEvent():
                        await self._on_track_failure(event)
                    case LinkClosedEvent():
                        await self._on_link_closed(event)
                    case PlayerUpdateEvent():
                        self._position_ms = event.position_ms
            except Exception:
                logger.exception(
                    LogTemplates.SESSION_EVENT_FAILED, event.event_type, self._community_id
                )
                if self._queue.current is None and not self._destroyed:
                    self._schedule_idle()

    def _is_stale(self, encoded: str) -> bool:
        current = self._queue.current
        return current is None or current.encoded != encoded

    def _on_track_start(self, event: TrackStartEvent) -> None:
        if self._is_stale(event.encoded):
            return
        self._position_ms = 0
        logger.debug(LogTemplates.TRACK_START_CONFIRMED, self._community_id)

    async def _on_track_end(self, event: TrackEndEvent) -> None:
        finished = self._queue.current
        if finished is None or finished.encoded != event.encoded:
            logger.debug(LogTemplates.STALE_EVENT_IGNORED, event.event_type, self._community_id)
            return

        reason = TrackEndReason.parse(event.reason)
        if reason.was_replaced:
            return

        upcoming = self._queue.next_after(finished)
        if upcoming is not None:
            replayed = self._queue.loop_mode is LoopMode.TRACK
            await self._play_locked(upcoming, from_queue=not replayed)
            return

        self._queue.current = None
        self._paused = False
        self._schedule_idle()
        logger.info(LogTemplates.QUEUE_EXHAUSTED, self._community_id)
        await self._event_bus.publish(
            QueueExhausted(community_id=self._community_id, last_track_title=finished.title)
        )

    async def _on_track_failure(self, event: TrackExceptionEvent | TrackStuckEvent) -> None:
        failed = self._queue.current
        if failed is None or failed.encoded != event.encoded:
            logger.debug(LogTemplates.STALE_EVENT_IGNORED, event.event_type, self._community_id)
            return

        self._stats.errors += 1
        logger.warning(
            LogTemplates.TRACK_FAILED, failed.title, event.event_type, self._community_id
        )

        upcoming = self._queue.pop_next()
        if upcoming is not None:
            await self._play_locked(upcoming, from_queue=True)
            return

        await self._halt_locked(failed)

    async def _on_link_closed(self, event: LinkClosedEvent) -> None:
        if not event.recoverable:
            logger.warning(LogTemplates.LINK_LOST, self._community_id, event.code, event.reason)
            await self._destroy_locked(SessionDestroyReason.LINK_LOST)
            return

        if self._reconnecting or (self._reconnect_task and not self._reconnect_task.done()):
            return
        logger.info(LogTemplates.LINK_RECOVERABLE_CLOSE, self._community_id, event.code)
        self._reconnect_task = asyncio.create_task(self._background_reconnect())

    async def _background_reconnect(self) -> None:
        try:
            await self.reconnect()
        except (ReconnectionFailedError, InvalidOperationError) as e:
            logger.debug(LogTemplates.RECONNECT_TASK_ENDED, self._community_id, e)

    # ── reconnection ─────────────────────────────────────────────────

    async def reconnect(self) -> None:
        """Re-open the link and resume the current track at its last position.

        Retries with exponential backoff; on exhaustion the session destroys
        itself and ``ReconnectionFailedError`` is raised.
        """
        async with self._lock:
            self._ensure_alive("reconnect")
            await self._reconnect_locked()

    async def _reconnect_locked(self) -> None:
        if self._reconnecting:
            return
        self._reconnecting = True
        track = self._queue.current
        position = self._position_ms
        attempts = 0

        old_link, self._link = self._link, None
        if old_link is not None:
            await self._close_quietly(old_link)

        logger.info(LogTemplates.RECONNECT_STARTED, self._community_id, position)

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            link = await self._connector()
            try:
                if track is not None:
                    await self._remote(
                        lambda: link.play(
                            track, start_ms=position, volume=self._volume, paused=self._paused
                        ),
                        "resume track",
                    )
                if not self._filters.is_empty:
                    payload = self._filters.to_payload()
                    await self._remote(lambda: link.set_filters(payload), "restore filters")
            except BaseException:
                # destroy() cancels mid-resume; close the fresh player either way.
                await self._close_quietly(link)
                raise
            self._link = link

        try:
            await retry_with_backoff(
                attempt,
                max_retries=self._reconnect_attempts - 1,
                policy=self._reconnect_policy,
                should_retry=_retry_while_degraded,
                operation=f"reconnect {self._community_id}",
                sleep=self._sleep,
            )
        except Exception as e:
            self._reconnecting = False
            logger.error(LogTemplates.RECONNECT_FAILED, self._community_id, attempts, e)
            await self._destroy_locked(SessionDestroyReason.RECONNECT_FAILED)
            await self._event_bus.publish(
                ReconnectionFailed(
                    community_id=self._community_id, attempts=attempts, error=str(e)
                )
            )
            raise ReconnectionFailedError(self._community_id, attempts, str(e)) from e

        self._reconnecting = False
        logger.info(
            LogTemplates.RECONNECT_SUCCEEDED, self._community_id, attempts, self.node_name
        )

    # ── lifecycle ────────────────────────────────────────────────────

    async def destroy(self, reason: SessionDestroyReason = SessionDestroyReason.REQUESTED) -> bool:
        """Release the link and clear all state. Returns False if already destroyed."""
        if self._destroyed:
            return False
        self._cancel_task(self._reconnect_task)
        async with self._lock:
            return await self._destroy_locked(reason)

    async def destroy_if_idle(
        self, reason: SessionDestroyReason = SessionDestroyReason.INACTIVITY
    ) -> bool:
        """Destroy when nothing is playing; used by the idle timer and memory trimming."""
        async with self._lock:
            if self._destroyed or self._queue.current is not None:
                return False
            return await self._destroy_locked(reason)

    async def _destroy_locked(self, reason: SessionDestroyReason) -> bool:
        if self._destroyed:
            return False
        self._destroyed = True
        self._cancel_task(self._idle_task)
        self._cancel_task(self._reconnect_task)

        link, self._link = self._link, None
        self._queue.reset()
        self._paused = False
        self._position_ms = 0
        self._filters = FilterSettings()
        if link is not None:
            await self._close_quietly(link)

        logger.info(LogTemplates.SESSION_DESTROYED, self._community_id, reason.value)
        if self._on_destroyed is not None:
            await self._on_destroyed(self, reason)
        return True

    # ── internals ────────────────────────────────────────────────────

    def _ensure_alive(self, operation: str) -> None:
        if self._destroyed:
            raise InvalidOperationError(operation, "destroyed", ErrorMessages.SESSION_DESTROYED)

    async def _remote(self, fn: Callable[[], Awaitable[Any]], operation: str) -> Any:
        return await self._guard.call(fn, operation=operation, timeout_s=self._link_timeout_s)

    async def _ensure_link(self) -> PlaybackLink:
        if self._link is not None:
            return self._link

        link = await retry_with_backoff(
            self._connector,
            max_retries=self._settings.connect_retries - 1,
            policy=_CONNECT_BACKOFF,
            operation=f"connect {self._community_id}",
            sleep=self._sleep,
        )
        self._link = link
        logger.info(LogTemplates.LINK_OPENED, self._community_id, link.node_name)
        if not self._filters.is_empty:
            payload = self._filters.to_payload()
            await self._remote(lambda: link.set_filters(payload), "apply filters")
        return link

    async def _play_locked(
        self, explicit: Track | None, *, from_queue: bool = False
    ) -> Track | None:
        """Start ``explicit`` or the next queued track.

        ``from_queue`` marks ``explicit`` as already taken off the pending
        queue. On a transient failure only such tracks go back to the front;
        the link is stopped and the idle countdown starts before re-raising.
        """
        if explicit is not None:
            candidate, popped = explicit, from_queue
        else:
            candidate, popped = self._queue.pop_next(), True
        while candidate is not None:
            try:
                await self._start_track(candidate)
            except RemoteRequestError as e:
                self._queue.current = None
                self._stats.errors += 1
                logger.warning(
                    LogTemplates.TRACK_START_FAILED, candidate.title, self._community_id, e
                )
                candidate, popped = self._queue.pop_next(), True
                continue
            except Exception:
                if popped:
                    self._queue.push_front(candidate)
                await self._halt_locked(None, publish=False)
                raise
            return candidate

        self._queue.current = None
        self._paused = False
        self._schedule_idle()
        return None

    async def _start_track(self, track: Track) -> None:
        link = await self._ensure_link()
        self._queue.current = track
        await self._remote(lambda: link.play(track, volume=self._volume), "play")

        self._cancel_task(self._idle_task)
        self._idle_task = None
        self._paused = False
        self._position_ms = 0
        self._queue.record_start(track)
        self._queue.touch()
        self._stats.tracks_played += 1
        self._stats.total_duration_ms += 0 if track.is_live else track.duration_ms

        logger.info(LogTemplates.TRACK_STARTED, track.title, self._community_id)
        await self._event_bus.publish(
            TrackStarted(
                community_id=self._community_id,
                track_title=track.title,
                track_uri=track.uri,
                requester=track.requester,
            )
        )

    async def _halt_locked(self, finished: Track | None, *, publish: bool = True) -> None:
        """Nothing left to play: stop the link, clear current, start the idle countdown."""
        self._queue.current = None
        self._paused = False
        self._position_ms = 0
        if self._link is not None:
            link = self._link
            try:
                await self._remote(link.stop, "stop")
            except DomainError as e:
                logger.warning(LogTemplates.LINK_STOP_FAILED, self._community_id, e)
        self._schedule_idle()
        if publish and finished is not None:
            await self._event_bus.publish(
                QueueExhausted(community_id=self._community_id, last_track_title=finished.title)
            )

    def _schedule_idle(self) -> None:
        self._cancel_task(self._idle_task)
        self._idle_task = None
        if self._destroyed:
            return
        self._idle_task = asyncio.create_task(self._idle_countdown())

    async def _idle_countdown(self) -> None:
        await self._sleep(self._settings.idle_timeout_s)
        if await self.destroy_if_idle():
            logger.info(LogTemplates.SESSION_IDLE_TIMEOUT, self._community_id)

    async def _close_quietly(self, link: PlaybackLink) -> None:
        try:
            await with_timeout(link.close(), self._link_timeout_s, operation="close link")
        except Exception as e:
            logger.warning(LogTemplates.LINK_CLOSE_FAILED, self._community_id, e)

    @staticmethod
    def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
