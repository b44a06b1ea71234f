"""Idempotent stderr logging setup."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_CONFIGURED = False

_QUIET_FORMAT = "netbuf: %(levelname)s: %(message)s"
_VERBOSE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(verbose: bool = False, stream: TextIO | None = None) -> None:
    """Configure netbuf logging to stderr. Safe to call multiple times.

    Warnings and errors (a failed write during apply, a rule that raised) are
    always shown. ``verbose`` lowers the level to DEBUG, which adds every
    read, write and rule count, and timestamps each line.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(_VERBOSE_FORMAT if verbose else _QUIET_FORMAT))

    logger = logging.getLogger("netbuf")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True
