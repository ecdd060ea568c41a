"""Logging setup (loguru with a Rich sink on stderr)."""

from __future__ import annotations

import sys

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING") -> None:
    """Route loguru through a single RichHandler. Safe to call more than once."""

    logger.remove()
    logger.add(
        RichHandler(
            console=Console(file=sys.stderr),
            rich_tracebacks=True,
            markup=False,
            show_path=False,
        ),
        format="{message}",
        level=level.upper(),
    )


__all__ = ["configure_logging", "logger"]
