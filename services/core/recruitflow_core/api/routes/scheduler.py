"""Scheduler API routes: sync policies and scheduled tasks.

Work is never executed in a request. Manual triggers create the task and
hand it to the worker; ``/scheduler/run`` queues one sweep.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, status

from recruitflow_core.api.deps import CeleryDep, TaskServiceDep, raise_for_transition
from recruitflow_core.api.schemas.scheduler import (
    ScheduledTaskDetailResponse,
    ScheduledTaskListResponse,
    ScheduledTaskResponse,
    SchedulerLogResponse,
    SchedulerQueuedResponse,
    SyncEnabledRequest,
    SyncSettingsDeleteResponse,
    SyncSettingsListResponse,
    SyncSettingsRequest,
    SyncSettingsResponse,
    SyncTriggerRequest,
    TaskCancelRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])

SWEEP_TASK = "followups.run_sweep"
EXECUTE_TASK = "scheduler.execute_task"
QUEUE = "scheduler"


# =============================================================================
# SYNC SETTINGS
# =============================================================================


@router.get("/sync-settings", response_model=SyncSettingsListResponse)
def list_sync_settings(
    tasks: TaskServiceDep,
    entity_type: Optional[str] = Query(None),
    enabled: Optional[bool] = Query(None),
):
    items = tasks.list_sync_settings(entity_type=entity_type, enabled=enabled)
    return SyncSettingsListResponse(
        settings=[SyncSettingsResponse.from_model(s) for s in items],
        total=len(items),
    )


@router.get("/sync-settings/{entity_type}/{entity_id}", response_model=SyncSettingsResponse)
def get_sync_settings(entity_type: str, entity_id: str, tasks: TaskServiceDep):
    return SyncSettingsResponse.from_model(tasks.get_sync_settings_or_raise(entity_type, entity_id))


@router.put("/sync-settings/{entity_type}/{entity_id}", response_model=SyncSettingsResponse)
def save_sync_settings(
    entity_type: str, entity_id: str, request: SyncSettingsRequest, tasks: TaskServiceDep
):
    """Create or replace the sync policy of an integration instance."""
    settings = tasks.save_sync_settings(
        entity_type,
        entity_id,
        sync_interval_type=request.sync_interval_type,
        sync_interval_value=request.sync_interval_value,
        sync_interval_unit=request.sync_interval_unit,
        enabled=request.enabled,
        config=request.config,
    )
    return SyncSettingsResponse.from_model(settings)


@router.post(
    "/sync-settings/{entity_type}/{entity_id}/enabled",
    response_model=SyncSettingsResponse,
)
def set_sync_enabled(
    entity_type: str, entity_id: str, request: SyncEnabledRequest, tasks: TaskServiceDep
):
    settings = tasks.set_sync_enabled(entity_type, entity_id, request.enabled)
    return SyncSettingsResponse.from_model(settings)


@router.delete(
    "/sync-settings/{entity_type}/{entity_id}", response_model=SyncSettingsDeleteResponse
)
def delete_sync_settings(entity_type: str, entity_id: str, tasks: TaskServiceDep):
    """Delete a sync policy. Its pending tasks are cancelled."""
    cancelled = tasks.delete_sync_settings(entity_type, entity_id)
    return SyncSettingsDeleteResponse(cancelled_tasks=cancelled)


@router.post(
    "/sync-settings/{entity_type}/{entity_id}/trigger",
    response_model=SchedulerQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def trigger_sync(
    entity_type: str,
    entity_id: str,
    request: SyncTriggerRequest,
    tasks: TaskServiceDep,
    celery_app: CeleryDep,
):
    """Queue a manual sync. The policy's schedule is not affected."""
    task = tasks.trigger_sync_now(
        entity_type, entity_id, request.acting_user_id, config=request.config
    )
    # The worker must see the task row before it runs
    tasks.db.commit()

    job = celery_app.send_task(EXECUTE_TASK, kwargs={"task_id": task.id}, queue=QUEUE)
    return SchedulerQueuedResponse(job_id=job.id, task_id=task.id)


# =============================================================================
# TASKS
# =============================================================================


@router.get("/tasks", response_model=ScheduledTaskListResponse)
def list_tasks(
    tasks: TaskServiceDep,
    status_filter: Optional[str] = Query(None, alias="status"),
    task_type: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    trigger: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List tasks, most recently scheduled first."""
    items = tasks.list_tasks(
        status=status_filter,
        task_type=task_type,
        entity_type=entity_type,
        entity_id=entity_id,
        trigger=trigger,
        limit=limit,
        offset=offset,
    )
    return ScheduledTaskListResponse(
        tasks=[ScheduledTaskResponse.from_model(t) for t in items],
        total=len(items),
    )


@router.get("/tasks/{task_id}", response_model=ScheduledTaskDetailResponse)
def get_task(task_id: int, tasks: TaskServiceDep):
    """Get a task with its log."""
    task = tasks.get_task_or_raise(task_id)
    response = ScheduledTaskDetailResponse(**ScheduledTaskResponse.from_model(task).model_dump())
    response.logs = [SchedulerLogResponse.from_model(e) for e in tasks.get_task_logs(task_id)]
    return response


@router.post("/tasks/{task_id}/cancel", response_model=ScheduledTaskResponse)
def cancel_task(task_id: int, tasks: TaskServiceDep, request: Optional[TaskCancelRequest] = None):
    """Cancel a pending task."""
    result = tasks.cancel_task(task_id, reason=request.reason if request else None)
    raise_for_transition(result)
    return ScheduledTaskResponse.from_model(tasks.get_task_or_raise(task_id))


@router.post("/tasks/{task_id}/reenable", response_model=ScheduledTaskResponse)
def reenable_task(task_id: int, tasks: TaskServiceDep):
    """Move a cancelled task back to pending."""
    result = tasks.reenable_task(task_id)
    raise_for_transition(result)
    return ScheduledTaskResponse.from_model(tasks.get_task_or_raise(task_id))


@router.post(
    "/run",
    response_model=SchedulerQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def run_scheduler(celery_app: CeleryDep):
    """Queue one sweep outside the periodic schedule."""
    job = celery_app.send_task(SWEEP_TASK, queue="followups")
    logger.info("Sweep queued", extra={"job_id": job.id})
    return SchedulerQueuedResponse(job_id=job.id)
