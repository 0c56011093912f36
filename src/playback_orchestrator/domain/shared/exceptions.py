"""Exception hierarchy for the playback orchestration layer.

The command layer distinguishes failures by base class:

- ``CapacityError``: rejected synchronously, never retried.
- ``ServiceUnavailableError``: degraded service (no node, breaker open,
  transient remote failures that outlived their retries).
- ``ValidationError``: invalid input with a specific reason.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base exception for all domain-level errors."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__


class ValidationError(DomainError):
    """Raised when domain validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class InvalidLoopModeError(ValidationError):
    def __init__(self, mode: object) -> None:
        super().__init__(f"Unknown loop mode: {mode!r}", field="loop_mode")
        self.code = "INVALID_LOOP_MODE"
        self.mode = mode


class NotSeekableError(ValidationError):
    def __init__(self, title: str) -> None:
        super().__init__(f'"{title}" is a live stream and cannot be seeked', field="position_ms")
        self.code = "NOT_SEEKABLE"
        self.title = title


class EntityNotFoundError(DomainError):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity_type: str, identifier: str | int, message: str | None = None) -> None:
        msg = message or f"{entity_type} with id '{identifier}' not found"
        super().__init__(msg, code="ENTITY_NOT_FOUND")
        self.entity_type = entity_type
        self.identifier = identifier


class InvalidOperationError(DomainError):
    """Raised when an operation is invalid in the current state."""

    def __init__(self, operation: str, current_state: str, message: str | None = None) -> None:
        msg = message or f"Cannot perform '{operation}' in state '{current_state}'"
        super().__init__(msg, code="INVALID_OPERATION")
        self.operation = operation
        self.current_state = current_state


# === Capacity ===


class CapacityError(DomainError):
    """Base for limits that reject work up front."""

    def __init__(self, message: str, limit: int, code: str) -> None:
        super().__init__(message, code=code)
        self.limit = limit


class CapacityExceededError(CapacityError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Maximum number of live sessions reached ({limit})", limit, "CAPACITY_EXCEEDED"
        )


class QueueFullError(CapacityError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Queue is full (max {limit} tracks)", limit, "QUEUE_FULL")


class BulkheadFullError(CapacityError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Bulkhead queue is full ({limit} waiting)", limit, "BULKHEAD_FULL")


# === Service availability ===


class ServiceUnavailableError(DomainError):
    """Base for degraded-mode conditions the command layer reports specially."""


class NoAvailableNodeError(ServiceUnavailableError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "No audio node is available", code="NO_AVAILABLE_NODE")


class CircuitOpenError(ServiceUnavailableError):
    def __init__(self, name: str, retry_after_s: float) -> None:
        super().__init__(
            f"Circuit breaker [{name}] is OPEN. Next attempt in {max(0.0, retry_after_s):.0f}s",
            code="CIRCUIT_OPEN",
        )
        self.name = name
        self.retry_after_s = retry_after_s


class ReconnectionFailedError(ServiceUnavailableError):
    def __init__(self, community_id: str, attempts: int, cause: str | None = None) -> None:
        msg = f"Reconnection for {community_id} failed after {attempts} attempts"
        if cause:
            msg = f"{msg}: {cause}"
        super().__init__(msg, code="RECONNECTION_FAILED")
        self.community_id = community_id
        self.attempts = attempts


class TransientRemoteError(ServiceUnavailableError):
    """A remote call failed in a way that may succeed when retried."""


class RemoteTimeoutError(TransientRemoteError):
    def __init__(self, operation: str, timeout_s: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_s:g}s", code="REMOTE_TIMEOUT")
        self.operation = operation
        self.timeout_s = timeout_s


class RemoteConnectionError(TransientRemoteError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="REMOTE_CONNECTION")


class RemoteRequestError(DomainError):
    """The remote node rejected a request; retrying will not help."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message, code="REMOTE_REQUEST_REJECTED")
        self.status_code = status_code
