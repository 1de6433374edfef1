from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace

_STDLIB_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}

# Noisy at INFO; warnings and errors still come through.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, sqlalchemy, httpx) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class JsonLogSink:
    """Writes one JSON object per record, tagged with the service identity."""

    def __init__(self, *, service_name: str, environment: str, version: str, stream=None) -> None:
        self._static = {"service": service_name, "environment": environment, "version": version}
        self._stream = stream or sys.stdout

    def render(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        # pool / order_number arrive here from the worker pool's contextualize()
        payload.update(record["extra"])

        if record["exception"] is not None:
            exc_type, exc_value, _ = record["exception"]
            payload["exception"] = f"{exc_type.__name__ if exc_type else 'Exception'}: {exc_value}"
        return payload

    def __call__(self, message) -> None:
        self._stream.write(json.dumps(self.render(message.record), default=str) + "\n")
        self._stream.flush()


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Install the JSON sink and bridge stdlib logging into loguru."""

    logger.remove()
    logger.add(
        JsonLogSink(service_name=service_name, environment=environment, version=version),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
