"""Periodic process memory sampling with tiered cache and session trimming."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING

import psutil
from pydantic import BaseModel

from playback_orchestrator.domain.shared.messages import LogTemplates

if TYPE_CHECKING:
    from playback_orchestrator.config.settings import MemorySettings

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


class PressureLevel(StrEnum):
    NONE = "none"
    SOFT = "soft"
    NORMAL = "normal"
    CRITICAL = "critical"


PressureHandler = Callable[[PressureLevel, float], Awaitable[object]]
RssSampler = Callable[[], float]


def process_rss_mb() -> float:
    """Resident set size of the current process in MiB."""
    return psutil.Process().memory_info().rss / _MIB


class MemorySample(BaseModel):
    rss_mb: float
    level: PressureLevel


class MemoryPressureMonitor:
    def __init__(
        self,
        *,
        settings: MemorySettings,
        on_pressure: PressureHandler,
        sampler: RssSampler = process_rss_mb,
    ) -> None:
        self._settings = settings
        self._on_pressure = on_pressure
        self._sampler = sampler
        self._running = False
        self._task: asyncio.Task | None = None
        self._last: MemorySample | None = None

    def start(self) -> None:
        if not self._settings.enabled:
            logger.info(LogTemplates.MEMORY_MONITOR_DISABLED)
            return
        if self._running:
            logger.warning(LogTemplates.MEMORY_MONITOR_ALREADY_RUNNING)
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(LogTemplates.MEMORY_MONITOR_STARTED, self._settings.check_interval_s)

    async def stop(self) -> None:
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(LogTemplates.MEMORY_MONITOR_STOPPED)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_sample(self) -> MemorySample | None:
        return self._last

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check_once()
            except Exception:
                logger.exception(LogTemplates.MEMORY_CHECK_FAILED)

            try:
                await asyncio.sleep(self._settings.check_interval_s)
            except asyncio.CancelledError:
                break

    def classify(self, rss_mb: float) -> PressureLevel:
        s = self._settings
        if rss_mb >= s.critical_mb:
            return PressureLevel.CRITICAL
        if rss_mb >= s.normal_mb:
            return PressureLevel.NORMAL
        if rss_mb >= s.soft_mb:
            return PressureLevel.SOFT
        return PressureLevel.NONE

    async def check_once(self) -> MemorySample:
        """Sample RSS once and hand any pressure level above none to the handler."""
        rss_mb = self._sampler()
        sample = MemorySample(rss_mb=round(rss_mb, 1), level=self.classify(rss_mb))
        self._last = sample

        if sample.level is PressureLevel.NONE:
            logger.debug(LogTemplates.MEMORY_SAMPLED, sample.rss_mb)
            return sample

        logger.warning(LogTemplates.MEMORY_PRESSURE, sample.level, sample.rss_mb)
        await self._on_pressure(sample.level, sample.rss_mb)
        return sample
