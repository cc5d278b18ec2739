"""Logging configuration for the taskboard service."""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Attach a stderr handler to the ``taskboard`` logger namespace.

    Calling it again only adjusts the level; handlers are added once.
    """
    logger = logging.getLogger("taskboard")
    logger.setLevel(level.upper())

    if any(getattr(h, "_taskboard", False) for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler._taskboard = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
