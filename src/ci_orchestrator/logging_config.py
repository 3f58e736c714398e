"""
Logging Configuration

Log records from the orchestrator, its runner and the release stage all
share one handler on stderr, so `--json` output on stdout stays parseable.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "ci_orchestrator"

# Chatty libraries only surface warnings
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class CIFormatter(logging.Formatter):
    """Formats records as `[TIME] LEVEL [component] message`"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[34m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, stream=None):
        super().__init__()
        stream = stream if stream is not None else sys.stderr
        # NO_COLOR is the usual CI convention for plain logs
        self.use_colors = (
            use_colors
            and "NO_COLOR" not in os.environ
            and hasattr(stream, "isatty")
            and stream.isatty()
        )

    @staticmethod
    def component(name: str) -> str:
        if name == LOGGER_NAME:
            return "core"
        prefix = LOGGER_NAME + "."
        return name[len(prefix):] if name.startswith(prefix) else name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        line = f"[{timestamp}] {level} [{self.component(record.name)}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Safe to call more than once; earlier handlers are replaced.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Also append plain-text records to this file
        use_colors: Color the level name when stderr is a terminal
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(CIFormatter(use_colors=use_colors, stream=sys.stderr))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(CIFormatter(use_colors=False))
        logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {level.upper()}")
    return logger
