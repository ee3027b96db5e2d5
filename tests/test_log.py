from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from pycrush.log import LOGGER_NAME, setup_logging


def test_setup_logging_installs_single_rich_handler():
    logger = logging.getLogger(LOGGER_NAME)
    saved = (logger.level, logger.propagate, list(logger.handlers))
    try:
        console = Console(record=True, width=120)
        setup_logging(logging.DEBUG, console=console)
        setup_logging(logging.DEBUG, console=console)

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)
        logging.getLogger("pycrush.runner").debug("turn t1 [s]: starting -> streaming")
        assert "starting -> streaming" in console.export_text()
    finally:
        logger.level, logger.propagate, logger.handlers = saved[0], saved[1], saved[2]
