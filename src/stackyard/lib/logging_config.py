"""Logging setup shared by the Stackyard CLI and server.

Modules obtain loggers with ``get_logger(__name__)``; entry points call
``setup_logging`` once to attach a handler to the ``stackyard`` logger tree.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "stackyard"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ("docker", "urllib3", "httpx", "httpcore")


def get_logger(name: str) -> logging.Logger:
    """Return a logger, nesting bare names under the ``stackyard`` tree.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        The configured logger instance
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the ``stackyard`` logger tree.

    Safe to call more than once; the handler is installed only the first time
    and later calls just adjust the level.

    Args:
        verbose: Enable DEBUG output
        quiet: Only emit warnings and errors
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if not any(getattr(h, "_stackyard", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._stackyard = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.propagate = False

    third_party_level = logging.DEBUG if verbose else logging.WARNING
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(third_party_level)
