"""
Logging Setup
Console logging configuration and the structured event sink used by the orchestrator.
"""

import copy
import logging
from typing import Any, Dict, Protocol

from uvicorn.config import LOGGING_CONFIG


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
ACCESS_LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(client_addr)s - \"%(request_line)s\" %(status_code)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def uvicorn_log_config() -> Dict[str, Any]:
    """uvicorn logging config using the service line format; access lines keep the request fields."""
    config = copy.deepcopy(LOGGING_CONFIG)
    config["formatters"]["default"]["fmt"] = LOG_FORMAT
    config["formatters"]["access"]["fmt"] = ACCESS_LOG_FORMAT
    for formatter in config["formatters"].values():
        formatter["datefmt"] = DATE_FORMAT
    return config


class EventRecorder(Protocol):
    """Anything that can record a named lifecycle event."""

    def record(self, event: str, **fields: Any) -> None:
        ...


class LoggingEventRecorder:
    """Writes lifecycle events as single log lines: [event] key=value | key=value."""

    def __init__(self, logger_name: str = "modelproxy.events"):
        self.logger = logging.getLogger(logger_name)

    def record(self, event: str, **fields: Any) -> None:
        context = " | ".join(f"{key}={value}" for key, value in fields.items())
        level = logging.WARNING if event in ("integrity_check_failed", "poll_retry") else logging.INFO
        self.logger.log(level, f"[{event}] {context}", extra={"event": event, "fields": fields})


__all__ = [
    "setup_logging",
    "uvicorn_log_config",
    "EventRecorder",
    "LoggingEventRecorder",
    "LOG_FORMAT",
    "ACCESS_LOG_FORMAT",
]
