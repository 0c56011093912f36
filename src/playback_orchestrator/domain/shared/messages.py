"""Centralized message constants for error messages and log templates."""

from __future__ import annotations


class ErrorMessages:
    """Error messages for exceptions and validation failures."""

    # Configuration Errors
    DUPLICATE_NODE_NAMES = "Node names must be unique; duplicated: {names}"
    MEMORY_THRESHOLDS_ORDER = "Memory thresholds must satisfy soft_mb <= normal_mb <= critical_mb"
    INVALID_LOG_LEVEL = "Invalid log level: {level}. Must be one of {valid_levels}"

    # Session Errors
    SESSION_DESTROYED = "Session has been destroyed"
    NOTHING_PLAYING = "Nothing is playing"
    SEEK_OUT_OF_RANGE = "Seek position {position} ms is outside the track (0-{duration} ms)"

    # Remote Errors
    EMPTY_QUERY = "Search query must not be empty"
    NODE_SESSION_UNKNOWN = "Node {node} has no attached websocket session"
    UNEXPECTED_LOAD_TYPE = "Unexpected load type from node: {load_type}"


class LogTemplates:
    """Logging message templates (%-style, formatted lazily by logging)."""

    # Retry / Fallback
    RETRY_NOT_RETRYABLE = "%s failed with non-retryable %s"
    RETRY_EXHAUSTED = "%s failed after %d attempts: %s"
    RETRY_SCHEDULED = "%s failed (attempt %d/%d), retrying in %.2fs: %s"
    RETRY_SUCCEEDED = "%s succeeded on attempt %d"
    FALLBACK_USED = "%s failed, using fallback: %s"
    RACE_WON = "%s: option %d succeeded first"
    STALE_ATTEMPT = "%s failed, trying stale data: %s"
    STALE_UNAVAILABLE = "%s failed and no stale data is available"
    STALE_TOO_OLD = "%s: stale data is %.1fs old (max %.1fs)"
    STALE_SERVED = "%s: serving stale data"

    # Circuit Breaker
    BREAKER_RESET = "Circuit breaker '%s' manually reset"
    BREAKER_REJECTED = "Circuit breaker '%s' is OPEN, rejecting call (retry in %.1fs)"
    BREAKER_TRANSITION = "Circuit breaker '%s': %s -> %s"
    BREAKER_LISTENER_FAILED = "Circuit breaker '%s' state listener failed"
    BREAKER_OPENED = "Circuit breaker '%s' opened after %d failed calls"

    # Result Cache
    CACHE_EXPIRED = "Cache entry expired: %s"
    CACHE_EVICTED = "Cache full, evicted oldest entry: %s"
    CACHE_CLEARED = "Cleared %d cache entries"
    CACHE_PRUNED = "Pruned %d expired cache entries"
    CACHE_WARM_FAILED = "Cache warm failed for %r: %s"
    CACHE_WARMED = "Cache warmed with %d of %d queries"

    # Node Health
    HEALTH_MONITOR_ALREADY_RUNNING = "Node health monitor is already running"
    HEALTH_MONITOR_STARTED = "Node health monitor started (interval %.1fs)"
    HEALTH_MONITOR_STOPPED = "Node health monitor stopped"
    HEALTH_POLL_FAILED = "Error during node health poll"
    HEALTH_STATS_FAILED = "Failed to fetch stats from node %s: %s"
    HEALTH_FALLBACK_RECONNECTING = "No healthy node, falling back to reconnecting node %s"
    HEALTH_FALLBACK_OVERLOADED = "No healthy node, falling back to overloaded node %s"
    HEALTH_FALLBACK_UNSAMPLED = "No sampled node, falling back to connected node %s with failed stats"
    NODE_UNHEALTHY = "Node %s unhealthy [%s] (cpu %.1f%%, %d players)"
    NODE_RECOVERED = "Node %s recovered"
    NODE_DISCONNECTED = "Node %s disconnected with %d sessions (moved=%s)"
    NODE_SESSION_RECOVERY_FAILED = "Failed to recover session %s after node loss: %s"
    NODE_WAIT_TIMEOUT = "No node connected within %.1fs"

    # Queue
    QUEUE_TRACKS_ADDED = "Added %d tracks in community %s (queue length %d)"
    QUEUE_DUPLICATES_SKIPPED = "Skipped %d duplicate tracks in community %s"
    QUEUE_EXHAUSTED = "Queue exhausted in community %s"

    # Playback Session
    TRACK_STARTED = "Now playing: %s in community %s"
    TRACK_START_CONFIRMED = "Node confirmed track start in community %s"
    TRACK_START_FAILED = "Failed to start %s in community %s: %s"
    TRACK_FAILED = "Track %s failed (%s) in community %s"
    STALE_EVENT_IGNORED = "Ignoring stale %s in community %s"
    FILTERS_CLEARED_CONFLICTS = "Cleared conflicting filters [%s] for %s in community %s"
    SESSION_EVENT_FAILED = "Failed to handle %s in community %s"
    SESSION_IDLE_TIMEOUT = "Session %s destroyed after inactivity"
    SESSION_DESTROYED = "Session %s destroyed (%s)"
    SESSION_CREATED = "Session %s created (%d active)"
    SESSION_CAPACITY_REACHED = "Session limit %d reached, refusing community %s"
    SESSION_DESTROY_FAILED = "Failed to destroy session %s: %s"

    # Playback Link
    LINK_OPENED = "Playback link for community %s opened on node %s"
    LINK_LOST = "Playback link for community %s lost (code %s): %s"
    LINK_RECOVERABLE_CLOSE = "Playback link for community %s closed (code %s), reconnecting"
    LINK_STOP_FAILED = "Failed to stop playback in community %s: %s"
    LINK_CLOSE_FAILED = "Failed to close playback link for community %s: %s"
    RECONNECT_STARTED = "Reconnecting community %s (resume at %d ms)"
    RECONNECT_SUCCEEDED = "Reconnected community %s after %d attempts on node %s"
    RECONNECT_FAILED = "Reconnection for community %s failed after %d attempts: %s"
    RECONNECT_TASK_ENDED = "Background reconnect for community %s ended: %s"

    # Orchestrator
    ORCHESTRATOR_STARTED = "Playback orchestrator started with %d nodes"
    ORCHESTRATOR_SHUTTING_DOWN = "Shutting down playback orchestrator (%d sessions)"
    ORCHESTRATOR_STOPPED = "Playback orchestrator stopped"
    EVENT_WITHOUT_SESSION = "No session for %s in community %s"
    SEARCH_CACHE_HIT = "Search cache hit for %r"
    SEARCH_DEDUPLICATED = "Joining in-flight search for %r"
    SEARCH_RESOLVED = "Resolved %r: %s with %d tracks"
    SEARCH_FAILED = "Search for %r failed: %s"

    # Memory Pressure
    MEMORY_MONITOR_DISABLED = "Memory pressure monitor disabled"
    MEMORY_MONITOR_ALREADY_RUNNING = "Memory pressure monitor is already running"
    MEMORY_MONITOR_STARTED = "Memory pressure monitor started (interval %.1fs)"
    MEMORY_MONITOR_STOPPED = "Memory pressure monitor stopped"
    MEMORY_CHECK_FAILED = "Error during memory check"
    MEMORY_SAMPLED = "Process RSS %.1f MB"
    MEMORY_PRESSURE = "Memory pressure %s at %.1f MB RSS"
    MEMORY_TRIMMED = "Memory pressure %s: evicted %d cache entries, destroyed %d idle sessions"

    # Remote Node (REST)
    REST_REQUEST = "%s %s -> %d"
    REST_REQUEST_FAILED = "%s %s on node %s failed: %s"
    REST_NODE_STATE = "Node %s connection state %s -> %s"
    REST_SESSION_ATTACHED = "Node %s attached to websocket session %s"
    REST_CLIENT_CLOSED = "HTTP client for node %s closed"

    # Application
    APP_STARTING = "Starting playback orchestrator (%s)"
    APP_NO_NODES = "No remote nodes configured; searches will fail until one is added"
    APP_SIGNAL_RECEIVED = "Received %s, shutting down"
    APP_STOPPED = "Shutdown complete"
    APP_FATAL_ERROR = "Fatal error: %s"
    CONTAINER_INITIALIZED = "Container initialized successfully"
    CONTAINER_SHUTDOWN_FAILED = "Error closing %s during shutdown: %s"
