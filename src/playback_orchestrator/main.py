#!/usr/bin/env python3
"""Main entry point for the playback orchestrator service."""

from __future__ import annotations

import asyncio
import json
import logging
import logging.config
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from playback_orchestrator.domain.shared.messages import LogTemplates

if TYPE_CHECKING:
    from playback_orchestrator.config.container import Container

_LOGGING_CONFIG_PATH = Path(__file__).resolve().parents[2] / "logging_config.json"

_QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level: str = "INFO") -> None:
    resolved_level = getattr(logging, log_level.upper(), logging.INFO)

    try:
        with open(_LOGGING_CONFIG_PATH) as f:
            config = json.load(f)
        logging.config.dictConfig(config)
    except (FileNotFoundError, json.JSONDecodeError, ValueError):
        logging.warning(
            "Could not load %s, falling back to basic config", _LOGGING_CONFIG_PATH
        )
        logging.basicConfig(
            level=resolved_level,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logging.getLogger().setLevel(resolved_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


async def run_until_signal(container: Container, stop: asyncio.Event | None = None) -> None:
    """Start the container, wait for SIGINT/SIGTERM (or ``stop``), then shut down."""
    logger = logging.getLogger(__name__)
    stop_event = stop or asyncio.Event()
    loop = asyncio.get_running_loop()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, stop_event)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; rely on KeyboardInterrupt.
            continue

    try:
        await container.initialize()
        await stop_event.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await container.shutdown()
        logger.info(LogTemplates.APP_STOPPED)


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    logging.getLogger(__name__).info(LogTemplates.APP_SIGNAL_RECEIVED, sig.name)
    stop_event.set()


def main() -> int:
    from playback_orchestrator.config.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level)

    logger = logging.getLogger(__name__)
    logger.info(LogTemplates.APP_STARTING, settings.environment)
    if not settings.cluster.nodes:
        logger.warning(LogTemplates.APP_NO_NODES)

    from playback_orchestrator.config.container import create_container

    container = create_container(settings)

    try:
        asyncio.run(run_until_signal(container))
        return 0
    except KeyboardInterrupt:
        logger.info(LogTemplates.APP_STOPPED)
        return 0
    except Exception as e:
        logger.exception(LogTemplates.APP_FATAL_ERROR, e)
        return 1


def cli() -> None:
    """Console script entry point (used by pyproject.toml [project.scripts])."""
    sys.exit(main())


if __name__ == "__main__":
    cli()  # pragma: no cover
