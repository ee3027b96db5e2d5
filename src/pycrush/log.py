from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "pycrush"


def setup_logging(level: int = logging.WARNING, *, console: Console | None = None) -> logging.Logger:
    """Install a rich handler on the package logger.

    Library modules only call ``logging.getLogger(__name__)``; the CLI decides
    where output goes.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers = []

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
