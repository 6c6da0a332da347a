"""Observability package for logging and metrics."""

from recruitflow_core.observability.logging import (
    JsonFormatter,
    OperationContext,
    StructuredLogger,
    configure_logging,
    current_operation,
    get_logger,
    operation_scope,
)
from recruitflow_core.observability.metrics import (
    MetricsCollector,
    broker_queue_depths,
    get_collector,
)

__all__ = [
    "JsonFormatter",
    "OperationContext",
    "StructuredLogger",
    "configure_logging",
    "current_operation",
    "get_logger",
    "operation_scope",
    "MetricsCollector",
    "broker_queue_depths",
    "get_collector",
]
