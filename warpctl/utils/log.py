"""Logging setup: append-only log file plus rich console output."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from ..config import AppConfig

LOGGER_NAME = "warpctl"
FILE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(config: AppConfig, verbose: bool = False) -> logging.Logger:
    """Configure the ``warpctl`` logger.

    Everything is appended to ``config.log_file``; the console only shows
    warnings unless ``verbose`` is set. Calling this again replaces the
    handlers installed by a previous call.
    """
    config.ensure_dirs()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    fh = logging.FileHandler(config.log_file, mode="a", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(FILE_FORMAT))

    ch = RichHandler(
        console=Console(stderr=True),
        level=logging.DEBUG if verbose else logging.WARNING,
        show_path=False,
    )

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger
