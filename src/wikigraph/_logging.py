"""Logging setup for the ``wikigraph`` package logger.

Modules log through ``log = logging.getLogger(__name__)``; nothing below the
package logger gets its own handler.

What goes where:
    - DEBUG: promotions, rollbacks, propagation counts
    - INFO: notes created or rewritten, component merges and splits
    - WARNING: data-quality findings from a build (duplicate wiki-tags,
      unreadable headers)
    - ERROR: an operation that could not finish

The threshold comes from WIKIGRAPH_LOG_LEVEL and defaults to WARNING, since
the CLI already reports what each command changed on stdout. ``wg --quiet``
raises it to ERROR.
"""

import logging
import os
import sys

PACKAGE_LOGGER = "wikigraph"
DEFAULT_LEVEL = "WARNING"

_quiet = False


def _resolve_level() -> int:
    if _quiet:
        return logging.ERROR
    level_name = os.environ.get("WIKIGRAPH_LOG_LEVEL", DEFAULT_LEVEL).upper()
    return getattr(logging, level_name, logging.WARNING)


def configure_logging() -> None:
    """Attach a stderr handler to the package logger.

    Safe to call more than once; only the first call adds a handler.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.propagate = False
    _apply_level(package_logger)


def _apply_level(package_logger: logging.Logger) -> None:
    level = _resolve_level()
    package_logger.setLevel(level)
    for handler in package_logger.handlers:
        handler.setLevel(level)


def set_quiet_mode(quiet: bool) -> None:
    """Limit package logging to errors (``wg --quiet``), or restore the configured level."""
    global _quiet
    _quiet = quiet
    _apply_level(logging.getLogger(PACKAGE_LOGGER))
