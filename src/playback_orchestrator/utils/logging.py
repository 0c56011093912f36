"""Colored logging formatter for console output."""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import TextIO


class ColoredFormatter(logging.Formatter):
    """Logging formatter that applies ANSI color codes to the levelname field.

    Circuit breaker state words in the message are highlighted as well, so
    OPEN/HALF_OPEN transitions stand out in a busy console.

    Colors are disabled when the ``NO_COLOR`` environment variable is set or
    when the output stream is not a TTY (e.g. redirected to a file).
    """

    COLORS: dict[int, str] = {
        logging.DEBUG: "\033[36m",     # cyan
        logging.INFO: "\033[32m",      # green
        logging.WARNING: "\033[33m",   # yellow
        logging.ERROR: "\033[31m",     # red
        logging.CRITICAL: "\033[1;31m",  # bold red
    }
    STATE_COLORS: dict[str, str] = {
        "closed": "\033[32m",
        "half_open": "\033[33m",
        "open": "\033[1;31m",
    }
    RESET = "\033[0m"

    _STATE_PATTERN = re.compile(r"\b(half_open|open|closed)\b", re.IGNORECASE)

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        *,
        stream: TextIO | None = None,
    ) -> None:
        super().__init__(fmt, datefmt)
        self._stream = stream

    def _use_color(self) -> bool:
        if os.environ.get("NO_COLOR") is not None:
            return False
        stream = self._stream or sys.stdout
        return hasattr(stream, "isatty") and stream.isatty()

    def _highlight_states(self, message: str) -> str:
        def paint(match: re.Match[str]) -> str:
            word = match.group(1)
            return f"{self.STATE_COLORS[word.lower()]}{word}{self.RESET}"

        return self._STATE_PATTERN.sub(paint, message)

    def format(self, record: logging.LogRecord) -> str:
        if not self._use_color():
            return super().format(record)

        color = self.COLORS.get(record.levelno, "")
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        if record.name.endswith("circuit_breaker"):
            record.msg = self._highlight_states(record.getMessage())
            record.args = None
        return super().format(record)
