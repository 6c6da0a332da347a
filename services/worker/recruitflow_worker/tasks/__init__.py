"""Recruitflow Worker Tasks."""

# Import all tasks to register them with Celery
from recruitflow_worker.tasks import followups  # noqa: F401
from recruitflow_worker.tasks import scheduler  # noqa: F401
