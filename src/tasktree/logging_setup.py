"""Logging configuration for the command-line and MCP entry points."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVEL_ENV_VAR = "TASKTREE_LOG_LEVEL"


class _LibraryNoiseFilter(logging.Filter):
    """Keep tasktree records; let third-party loggers through only at ERROR+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "tasktree" or record.name.startswith("tasktree."):
            return True
        return record.levelno >= logging.ERROR


def resolve_level(verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    raw = os.getenv(LOG_LEVEL_ENV_VAR, "WARNING").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(level: int | None = None, *, verbose: bool = False) -> None:
    """Send log records to stderr through rich. Call once, early."""
    if level is None:
        level = resolve_level(verbose)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    handler.addFilter(_LibraryNoiseFilter())
    root.addHandler(handler)

    logging.captureWarnings(True)
