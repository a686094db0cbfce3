from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import SyncConfig

LOG_LEVEL_ENV = "CONTACTS_SYNC_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Libraries that log every HTTP request at INFO.
CHATTY_LOGGERS = ("httpx", "httpcore")


def _resolve_level(level_name: Optional[str]) -> int:
    """Numeric level for a name such as ``info`` or ``10``; unknown names map to INFO."""
    name = (level_name or "INFO").strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(config: SyncConfig, level_override: Optional[str] = None) -> int:
    """
    Configure the root logger and return the level applied.

    Precedence: ``CONTACTS_SYNC_LOG_LEVEL``, then ``level_override`` (the
    ``--log-level`` flag), then ``config.logging.level``, then ``WARNING``.
    HTTP client loggers stay at WARNING unless the effective level is DEBUG.
    """
    level_name = os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"
    level = _resolve_level(level_name)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)
    return level


__all__ = ["LOG_LEVEL_ENV", "configure_logging"]
