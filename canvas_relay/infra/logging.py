"""Structured logging with per-request context."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

from canvas_relay.infra.config import config

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
query_id_var: ContextVar[str] = ContextVar("query_id", default="-")


class QueryContextFilter(logging.Filter):
    """Stamp every record with the current request and canvas query ids."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        if not hasattr(record, "query_id"):
            record.query_id = query_id_var.get()
        return True


def setup_logging() -> logging.Logger:
    """Configure the package logger to emit one JSON object per line."""
    logger = logging.getLogger("canvas_relay")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(request_id)s %(query_id)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        rename_fields={"levelname": "level"},
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(QueryContextFilter())
    # avoid duplicate handlers on reload
    logger.handlers = [handler]

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("slack_sdk").setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
