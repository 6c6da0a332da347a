"""Celery application for the Recruitflow worker.

Beat is the periodic driver of the follow-up engine: it queues one sweep
every ``SWEEP_INTERVAL_SECONDS`` and a daily cleanup of finished scheduled
tasks. Manual triggers from the API arrive on the ``scheduler`` queue.
"""

import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
from kombu import Queue

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
TASK_RETENTION_DAYS = int(os.getenv("TASK_RETENTION_DAYS", "30"))

app = Celery(
    "recruitflow_worker",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=[
        "recruitflow_worker.tasks.followups",
        "recruitflow_worker.tasks.scheduler",
    ],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Sweeps and task runs are claim-based, a redelivery only finds
    # nothing left to claim
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_soft_time_limit=300,
    task_time_limit=600,
    result_expires=24 * 3600,
    task_queues=(Queue("followups"), Queue("scheduler")),
    task_default_queue="followups",
    task_routes={
        "followups.*": {"queue": "followups"},
        "scheduler.*": {"queue": "scheduler"},
    },
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

app.conf.beat_schedule = {
    # Reminders, no-response watchdog and recurring tasks
    "followups-sweep-periodic": {
        "task": "followups.run_sweep",
        "schedule": SWEEP_INTERVAL_SECONDS,
        "args": (),
        # A sweep still queued when the next one is due is dropped
        "options": {"expires": SWEEP_INTERVAL_SECONDS},
    },
    "daily-scheduled-task-cleanup": {
        "task": "scheduler.cleanup_finished_tasks",
        "schedule": crontab(hour=3, minute=0),
        "args": (TASK_RETENTION_DAYS,),
    },
}


@worker_process_init.connect
def reset_db_connections(**kwargs) -> None:
    """Give each forked worker process its own connection pool."""
    from recruitflow_core.infra.db import dispose_engine

    dispose_engine()


if __name__ == "__main__":
    app.start()
