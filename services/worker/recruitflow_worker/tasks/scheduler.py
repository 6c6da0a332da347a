"""Scheduled task execution tasks."""

from datetime import timedelta
from typing import Any, Optional

from recruitflow_worker.celery_app import app


@app.task(name="scheduler.execute_task", bind=True, max_retries=0)
def execute_task(self, task_id: int) -> dict:
    """Claim and run one pending scheduled task (manual triggers).

    A task another worker already claimed is reported as skipped.
    """
    # Import here to avoid circular imports
    from recruitflow_core.domain.services.sweep import SweepScheduler
    from recruitflow_core.infra.db import get_sync_session_factory

    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        scheduler = SweepScheduler(session, commit_each=True)
        report = scheduler.execute_task(task_id)
        session.commit()
        return {"status": "ok", "task_id": task_id, **report.to_dict()}

    except Exception as e:
        session.rollback()
        return {"status": "error", "task_id": task_id, "error": str(e)}

    finally:
        session.close()


@app.task(name="scheduler.sweep_recurring_tasks", bind=True, max_retries=0)
def sweep_recurring_tasks(self) -> dict:
    """Fire due sync policies and run due pending tasks."""
    from recruitflow_worker.tasks.followups import _run

    return _run("sweep_recurring_tasks", self.request.id)


@app.task(name="scheduler.cleanup_finished_tasks", bind=True, max_retries=0)
def cleanup_finished_tasks(self, retention_days: Optional[int] = None) -> dict[str, Any]:
    """Delete completed and failed tasks older than the retention period.

    Args:
        retention_days: Days to keep finished tasks (defaults to
            ``task_retention_days``).
    """
    from recruitflow_core.config import get_settings
    from recruitflow_core.domain.services.clock import get_clock
    from recruitflow_core.domain.services.scheduled_tasks import ScheduledTaskService
    from recruitflow_core.infra.db import get_sync_session_factory

    days = retention_days if retention_days is not None else get_settings().task_retention_days
    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        clock = get_clock()
        service = ScheduledTaskService(session, clock=clock)
        deleted = service.cleanup_finished_tasks(clock.now() - timedelta(days=days))
        session.commit()
        return {"status": "ok", "deleted": deleted, "retention_days": days}

    except Exception as e:
        session.rollback()
        return {"status": "error", "error": str(e)}

    finally:
        session.close()
