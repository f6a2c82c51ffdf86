from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


_RESERVED_LOG_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }
)

# Libraries that log every request or statement at INFO.
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, celery, sqlalchemy) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }
        extra["logger_name"] = record.name

        bound_logger = logger.bind(**extra)
        bound_logger.opt(depth=6, exception=record.exc_info).log(
            level, message.replace("{", "{{").replace("}", "}}")
        )


def _format_exception(record: Dict[str, Any]) -> str | None:
    exception = record.get("exception")
    if not exception or exception.type is None:
        return None
    return f"{exception.type.__name__}: {exception.value}"


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record
    span_context = trace.get_current_span().get_span_context()

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata["service_name"],
        "environment": metadata["environment"],
        "version": metadata["version"],
    }

    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    error = _format_exception(record)
    if error:
        payload["error"] = error

    if record["extra"]:
        payload.update(record["extra"])

    sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Emit one JSON object per log line, for Loguru and stdlib loggers alike."""

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(lambda message: _serialize_log(message, metadata), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
