"""Process-wide logging setup; modules ask for loggers via get_logger()."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from support_chat.config import get_settings

LOGGER_NAMESPACE = "support_chat"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class LoggingConfig:
    """Configure the root handler once per process."""

    _configured = False

    def __init__(self, log_level: Optional[str] = None) -> None:
        level_name = (log_level or get_settings().log_level or "INFO").upper()
        self.level = getattr(logging, level_name, logging.INFO)
        if not LoggingConfig._configured:
            self._configure()
            LoggingConfig._configured = True
        else:
            logging.getLogger().setLevel(self.level)

    def _configure(self) -> None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        root_logger = logging.getLogger()
        root_logger.addHandler(handler)
        root_logger.setLevel(self.level)

        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the service namespace."""
    if not name:
        return logging.getLogger(LOGGER_NAMESPACE)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
