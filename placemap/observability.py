"""
Logging setup for the map server.

Modules log through ``logging.getLogger(__name__)``; the entry point calls
``configure_logging`` once.
"""

from __future__ import annotations
import logging


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Per-request access lines drown out ingestion progress otherwise
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
