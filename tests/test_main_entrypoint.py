"""
Tests for main.py - Main Entry Point

Tests for the main entry point including:
- Logging configuration
- Container creation
- Signal-driven run loop
- Error handling
- Graceful shutdown
"""

import asyncio
import json
import logging
import signal
from unittest.mock import AsyncMock, MagicMock, mock_open, patch

import pytest

from playback_orchestrator.main import _on_signal, main, run_until_signal, setup_logging


class TestLoggingSetup:
    """Tests for logging configuration."""

    def _make_valid_config(self) -> dict:
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "handlers": {},
            "loggers": {
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
            "root": {"level": "INFO", "handlers": []},
        }

    def test_dictconfig_called_when_json_exists(self):
        config = self._make_valid_config()
        m = mock_open(read_data=json.dumps(config))
        with (
            patch("builtins.open", m),
            patch("logging.config.dictConfig") as mock_dc,
        ):
            setup_logging()

            mock_dc.assert_called_once_with(config)

    def test_fallback_to_basicconfig_when_json_missing(self):
        with (
            patch("builtins.open", side_effect=FileNotFoundError),
            patch("logging.basicConfig") as mock_bc,
        ):
            setup_logging()

            mock_bc.assert_called_once()
            assert mock_bc.call_args[1]["level"] == logging.INFO

    def test_fallback_to_basicconfig_when_json_malformed(self):
        m = mock_open(read_data="{invalid json")
        with (
            patch("builtins.open", m),
            patch("logging.basicConfig") as mock_bc,
        ):
            setup_logging()

            mock_bc.assert_called_once()

    def test_root_logger_level_overridden(self):
        m = mock_open(read_data=json.dumps(self._make_valid_config()))
        with (
            patch("builtins.open", m),
            patch("logging.config.dictConfig"),
            patch("logging.getLogger") as mock_get_logger,
        ):
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            setup_logging("DEBUG")

            mock_logger.setLevel.assert_any_call(logging.DEBUG)

    def test_http_client_loggers_quieted(self):
        m = mock_open(read_data=json.dumps(self._make_valid_config()))
        with patch("builtins.open", m), patch("logging.config.dictConfig"):
            setup_logging("DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_shipped_config_is_loadable(self):
        """The repository's logging_config.json is valid for dictConfig."""
        from playback_orchestrator.main import _LOGGING_CONFIG_PATH

        with open(_LOGGING_CONFIG_PATH) as f:
            config = json.load(f)

        assert config["formatters"]["colored"]["()"].endswith("ColoredFormatter")
        assert config["loggers"]["httpx"]["level"] == "WARNING"


# =============================================================================
# Run Loop Tests
# =============================================================================


class TestRunUntilSignal:
    @pytest.mark.asyncio
    async def test_initializes_then_shuts_down_when_stopped(self):
        container = MagicMock()
        container.initialize = AsyncMock()
        container.shutdown = AsyncMock()
        stop = asyncio.Event()
        stop.set()

        await run_until_signal(container, stop)

        container.initialize.assert_awaited_once()
        container.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_runs_even_if_initialize_fails(self):
        container = MagicMock()
        container.initialize = AsyncMock(side_effect=RuntimeError("boom"))
        container.shutdown = AsyncMock()

        with pytest.raises(RuntimeError):
            await run_until_signal(container, asyncio.Event())

        container.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_signal_handler_sets_stop_event(self):
        stop = asyncio.Event()
        _on_signal(signal.SIGTERM, stop)
        assert stop.is_set()


# =============================================================================
# main() Tests
# =============================================================================


def _mock_settings(**overrides) -> MagicMock:
    settings = MagicMock()
    settings.log_level = "INFO"
    settings.environment = "test"
    settings.cluster.nodes = (MagicMock(),)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def _close_coroutine(coro):
    coro.close()


class TestMainFunction:
    """Tests for main entry point function."""

    def test_main_successful_run(self):
        settings = _mock_settings()
        with (
            patch("playback_orchestrator.config.settings.get_settings", return_value=settings),
            patch("playback_orchestrator.main.setup_logging"),
            patch("playback_orchestrator.config.container.create_container") as mock_create,
            patch(
                "playback_orchestrator.main.asyncio.run", side_effect=_close_coroutine
            ) as mock_run,
        ):
            exit_code = main()

        assert exit_code == 0
        mock_create.assert_called_once_with(settings)
        mock_run.assert_called_once()

    def test_main_handles_keyboard_interrupt(self):
        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        with (
            patch(
                "playback_orchestrator.config.settings.get_settings",
                return_value=_mock_settings(),
            ),
            patch("playback_orchestrator.main.setup_logging"),
            patch("playback_orchestrator.config.container.create_container"),
            patch("playback_orchestrator.main.asyncio.run", side_effect=interrupted),
        ):
            assert main() == 0

    def test_main_handles_exception(self):
        def crashed(coro):
            coro.close()
            raise RuntimeError("crashed")

        with (
            patch(
                "playback_orchestrator.config.settings.get_settings",
                return_value=_mock_settings(),
            ),
            patch("playback_orchestrator.main.setup_logging"),
            patch("playback_orchestrator.config.container.create_container"),
            patch("playback_orchestrator.main.asyncio.run", side_effect=crashed),
        ):
            assert main() == 1

    def test_main_warns_without_nodes(self, caplog):
        settings = _mock_settings()
        settings.cluster.nodes = ()
        with (
            patch("playback_orchestrator.config.settings.get_settings", return_value=settings),
            patch("playback_orchestrator.main.setup_logging"),
            patch("playback_orchestrator.config.container.create_container"),
            patch("playback_orchestrator.main.asyncio.run", side_effect=_close_coroutine),
            caplog.at_level(logging.WARNING, logger="playback_orchestrator.main"),
        ):
            main()

        assert any("No remote nodes" in r.getMessage() for r in caplog.records)
