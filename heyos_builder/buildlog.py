"""Build log setup.

All modules log through ``logging.getLogger(__name__)``. This module wires
the ``heyos_builder`` logger to the shared build log file (appended across
relocation hops) and to a rich console handler, and registers the ``OK``
level used to mark completed steps.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

OK = 25
logging.addLevelName(OK, "OK")

PACKAGE_LOGGER = "heyos_builder"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_MARK = "_heyos_build_log"


def log_ok(logger: logging.Logger, msg: str, *args: object) -> None:
    """Log a step completion at the OK level."""
    logger.log(OK, msg, *args)


def _remove_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()


def setup_build_log(
    log_path: Path,
    relaunched: bool = False,
    console_level: str = "INFO",
    console: Console | None = None,
) -> Path:
    """Attach the build log file and console handlers.

    A fresh run truncates the log and writes a header; a relaunched run
    (after relocation) appends a marker line instead so both halves of the
    run end up in one file.

    Args:
        log_path: Build log file path.
        relaunched: True when this process was started by relocation.
        console_level: Minimum level shown on the console.
        console: Optional rich console (defaults to stderr).

    Returns:
        The log file path.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    now = datetime.now().strftime("%a %b %d %H:%M:%S %Y")

    if relaunched:
        with log_path.open("a", encoding="utf-8") as f:
            f.write(f"--- Native build relaunched: {now} ---\n")
    else:
        with log_path.open("w", encoding="utf-8") as f:
            f.write(f"heyOS Build Log - {now}\n")
            f.write("=" * 40 + "\n")

    logger = logging.getLogger(PACKAGE_LOGGER)
    _remove_handlers(logger)
    logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    setattr(file_handler, _HANDLER_MARK, True)
    logger.addHandler(file_handler)

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
    )
    console_handler.setLevel(console_level)
    setattr(console_handler, _HANDLER_MARK, True)
    logger.addHandler(console_handler)

    return log_path


def close_build_log() -> None:
    """Detach and close the handlers added by setup_build_log."""
    _remove_handlers(logging.getLogger(PACKAGE_LOGGER))


__all__ = [
    "LOG_FORMAT",
    "OK",
    "PACKAGE_LOGGER",
    "close_build_log",
    "log_ok",
    "setup_build_log",
]
