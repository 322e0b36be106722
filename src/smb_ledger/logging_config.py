# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Logging setup for SMB Ledger.

Modules log through ``logging.getLogger(__name__)``, which places every
logger under the ``smb_ledger`` namespace. Applications (the CLI, a Web UI)
call ``configure_logging`` once to attach a handler to that namespace.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

LOGGER_NAMESPACE = "smb_ledger"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False
_lock = threading.Lock()


def parse_level(level: int | str) -> int:
    """Convert 'INFO', 'debug', 20... into a logging level number."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown logging level: {level!r}")
    return value


def configure_logging(
    level: int | str = logging.WARNING,
    *,
    stream: Any = None,
) -> None:
    """Configure the smb_ledger logger hierarchy (idempotent).

    Only the level is updated on subsequent calls.
    """
    global _configured
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(parse_level(level))

    with _lock:
        if _configured:
            return
        _configured = True

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def reset_logging() -> None:
    """Remove handlers installed by configure_logging (used by tests)."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
