"""Single choke point for calls into the remote cluster.

Every remote call goes through the shared circuit breaker and is bounded by
a timeout, so a hung node can neither block a caller forever nor escape the
breaker's failure accounting.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from playback_orchestrator.application.services.circuit_breaker import CircuitBreaker
from playback_orchestrator.application.services.resilience import with_timeout

T = TypeVar("T")


class RemoteCallGuard:
    def __init__(self, breaker: CircuitBreaker, *, default_timeout_s: float = 5.0) -> None:
        self.breaker = breaker
        self.default_timeout_s = default_timeout_s

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str,
        timeout_s: float | None = None,
    ) -> T:
        """Run ``fn`` under the breaker with a deadline.

        A timeout is raised inside the breaker call so it counts as a failure.
        """
        limit = self.default_timeout_s if timeout_s is None else timeout_s

        async def bounded() -> T:
            return await with_timeout(fn(), limit, operation=operation)

        return await self.breaker.execute(bounded)

    def is_available(self) -> bool:
        return self.breaker.is_available()
