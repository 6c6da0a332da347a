"""Health and metrics routes."""

from typing import Any

from fastapi import APIRouter
from sqlalchemy import func
from sqlalchemy.orm import Session

from recruitflow_core.api.deps import ClockDep, DBSession, SettingsDep
from recruitflow_core.domain.models import (
    FollowupAction,
    FollowupStatus,
    ProfileSubmissionFollowup,
    ScheduledTask,
    SubmissionStatus,
    TaskStatus,
)
from recruitflow_core.domain.services.clock import to_iso
from recruitflow_core.observability.metrics import broker_queue_depths, get_collector

router = APIRouter(prefix="/api", tags=["metrics"])

VERSION = "0.1.0"


def collect_backlog(db: Session, now) -> dict[str, int]:
    """Work the sweep has not picked up yet."""
    due_reminders = (
        db.query(func.count(FollowupAction.id))
        .filter(
            FollowupAction.status.in_([FollowupStatus.PENDING, FollowupStatus.IN_PROGRESS]),
            FollowupAction.reminder_sent.is_(False),
            FollowupAction.due_date <= now,
        )
        .scalar()
    )
    awaiting_response = (
        db.query(func.count(ProfileSubmissionFollowup.id))
        .filter(ProfileSubmissionFollowup.status == SubmissionStatus.FOLLOWED_UP)
        .scalar()
    )
    tasks_by_status = dict(
        db.query(ScheduledTask.status, func.count(ScheduledTask.id))
        .filter(ScheduledTask.status.in_([TaskStatus.PENDING, TaskStatus.RUNNING]))
        .group_by(ScheduledTask.status)
        .all()
    )
    return {
        "reminders_due": due_reminders,
        "submissions_awaiting_response": awaiting_response,
        "tasks_pending": tasks_by_status.get(TaskStatus.PENDING, 0),
        "tasks_running": tasks_by_status.get(TaskStatus.RUNNING, 0),
    }


@router.get("/health")
async def health_check(clock: ClockDep) -> dict[str, Any]:
    return {
        "status": "healthy",
        "service": "recruitflow-core",
        "version": VERSION,
        "timestamp": to_iso(clock.now()),
    }


@router.get("/metrics")
def get_metrics(db: DBSession, clock: ClockDep, settings: SettingsDep) -> dict[str, Any]:
    """Sweep counters plus the current backlog and broker queue depths."""
    now = clock.now()
    return {
        "collected_at": to_iso(now),
        "application": get_collector().get_all(),
        "backlog": collect_backlog(db, now),
        "queues": broker_queue_depths(settings.redis_url),
    }


@router.get("/metrics/application")
async def get_application_metrics() -> dict[str, Any]:
    """Counters, gauges and histograms recorded in this process."""
    return get_collector().get_all()
