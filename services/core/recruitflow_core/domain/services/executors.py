"""Executors for scheduled tasks.

The concrete work of a sync (portal API calls, social posting, ...) is
owned by integration code outside the engine. Integrations register an
executor per integration kind; tasks without one are recorded as not
executed.
"""

import logging
from typing import Any, Callable, Optional, Protocol

from recruitflow_core.domain.models import ScheduledTask, SyncSettings

logger = logging.getLogger(__name__)


class TaskExecutor(Protocol):
    """Runs one scheduled task and returns a JSON-serializable result."""

    def __call__(
        self, task: ScheduledTask, settings: Optional[SyncSettings]
    ) -> dict[str, Any]: ...


def noop_executor(task: ScheduledTask, settings: Optional[SyncSettings]) -> dict[str, Any]:
    """Executor used when nothing is registered for a task."""
    logger.info(
        "No executor registered for task",
        extra={"task_id": task.id, "task_type": task.task_type, "entity_type": task.entity_type},
    )
    return {"executed": False, "reason": "no executor registered"}


class TaskExecutorRegistry:
    """Executors keyed by integration kind (``entity_type``)."""

    def __init__(self, default: Optional[TaskExecutor] = None):
        self._executors: dict[str, TaskExecutor] = {}
        self._default = default or noop_executor

    def register(self, entity_type: str, executor: TaskExecutor) -> None:
        self._executors[entity_type] = executor

    def unregister(self, entity_type: str) -> None:
        self._executors.pop(entity_type, None)

    def get(self, entity_type: Optional[str]) -> TaskExecutor:
        if entity_type is None:
            return self._default
        return self._executors.get(entity_type, self._default)

    def execute(
        self, task: ScheduledTask, settings: Optional[SyncSettings] = None
    ) -> dict[str, Any]:
        """Run the executor for a task's integration kind.

        Exceptions raised by the executor propagate to the caller.
        """
        result = self.get(task.entity_type)(task, settings)
        return result if isinstance(result, dict) else {"result": result}


_registry = TaskExecutorRegistry()


def get_registry() -> TaskExecutorRegistry:
    """Get the process-wide executor registry."""
    return _registry


def executor(entity_type: str) -> Callable[[TaskExecutor], TaskExecutor]:
    """Decorator registering a function as the executor of an integration kind.

    Usage:
        @executor("job_portal")
        def sync_portal(task, settings):
            ...
            return {"synced": 12}
    """

    def decorator(fn: TaskExecutor) -> TaskExecutor:
        _registry.register(entity_type, fn)
        return fn

    return decorator
