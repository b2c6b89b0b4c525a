"""
Structured logging setup.

Every module logs through the stdlib logger (logging.getLogger(__name__))
and attaches context through ``extra={...}``. This module installs a JSON
formatter on the root logger so those extra fields end up as JSON keys.
"""

import logging
import sys
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

from connector_core.settings import get_settings


class ConnectorJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with ISO-8601 timestamps and the service name."""

    def __init__(self, *args, service: str = "whatsapp-connector", **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = (
                datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
            )
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record.setdefault("service", self.service)


def setup_logging(log_level: str | None = None, service: str = "whatsapp-connector") -> logging.Logger:
    """
    Configure JSON logging for the process.

    Args:
        log_level: Logging level, defaults to settings.LOG_LEVEL
        service: Service name added to every record

    Returns:
        The configured root logger
    """
    level = (log_level or get_settings().LOG_LEVEL).upper()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConnectorJsonFormatter("%(ts)s %(level)s %(name)s %(message)s", service=service))
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False

    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root
