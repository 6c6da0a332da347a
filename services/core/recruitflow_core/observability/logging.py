"""Structured JSON logging.

Every line carries the operation it was written under: an API request, a
sweep run or a worker task. ``operation_scope`` binds an
``OperationContext`` for the duration of a block; plain ``logging``
loggers in the domain services pick it up through ``JsonFormatter``
without passing it around.

Usage:
    with operation_scope(OperationContext(operation_id=task_id, operation="followups.run")):
        logger.info("Sweep finished", extra=report.to_dict())
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "recruitflow"

# Chatty at INFO and below
NOISY_LOGGERS = ("celery", "kombu", "httpx", "httpcore", "sqlalchemy.engine")

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


@dataclass
class OperationContext:
    """Identity of the operation a log line belongs to."""

    operation_id: Optional[str] = None
    acting_user_id: Optional[str] = None
    operation: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        fields = {
            "operation_id": self.operation_id,
            "acting_user_id": self.acting_user_id,
            "operation": self.operation,
        }
        result = {k: v for k, v in fields.items() if v}
        result.update(self.extra)
        return result


_current_operation: ContextVar[Optional[OperationContext]] = ContextVar(
    "recruitflow_operation", default=None
)


def current_operation() -> Optional[OperationContext]:
    return _current_operation.get()


@contextmanager
def operation_scope(context: OperationContext) -> Iterator[OperationContext]:
    """Bind ``context`` to every log line written inside the block."""
    token = _current_operation.set(context)
    try:
        yield context
    finally:
        _current_operation.reset(token)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed through ``extra`` win over the bound operation context.
    Warnings and errors also carry their source location.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        operation = current_operation()
        if operation is not None:
            entry.update(operation.to_dict())

        entry.update(
            (key, _jsonable(value))
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(entry)


class StructuredLogger:
    """Logger taking structured fields as keyword arguments.

    The fields land on the LogRecord, so handlers other than
    ``JsonFormatter`` (pytest's caplog, for one) see them as attributes.
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        context: Optional[OperationContext],
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        bound = context or current_operation()
        extra = {**bound.to_dict(), **fields} if bound else fields
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, context: Optional[OperationContext] = None, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, context, **fields)

    def info(self, msg: str, context: Optional[OperationContext] = None, **fields: Any) -> None:
        self._log(logging.INFO, msg, context, **fields)

    def warning(self, msg: str, context: Optional[OperationContext] = None, **fields: Any) -> None:
        self._log(logging.WARNING, msg, context, **fields)

    def error(
        self,
        msg: str,
        context: Optional[OperationContext] = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        self._log(logging.ERROR, msg, context, exc_info=exc_info, **fields)


_loggers: dict[str, StructuredLogger] = {}


def get_logger(name: str) -> StructuredLogger:
    """Cached StructuredLogger for ``name``."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Replace the root handlers with a single stdout handler.

    Library loggers in ``NOISY_LOGGERS`` are held at WARNING unless the
    service itself runs at DEBUG.
    """
    numeric_level = logging.getLevelName(level.upper())

    if json_format:
        formatter: logging.Formatter = JsonFormatter(service_name=service_name)
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            numeric_level if numeric_level == logging.DEBUG else logging.WARNING
        )
