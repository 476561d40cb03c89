from __future__ import annotations

import logging

from src.transcriptor.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the service process.

    Module loggers ("pipeline", "storage", "audit", ...) propagate to the root
    handler installed here.
    """

    resolved = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=_LOG_FORMAT)
