"""Scheduler schemas for request/response validation."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from recruitflow_core.domain.models import IntervalType
from recruitflow_core.domain.services.clock import to_iso


class SyncSettingsRequest(BaseModel):
    """Request body for creating or replacing a sync policy."""

    sync_interval_type: str = IntervalType.DAILY
    sync_interval_value: Optional[int] = Field(None, ge=1)
    sync_interval_unit: Optional[str] = None
    enabled: bool = True
    config: Optional[dict[str, Any]] = None


class SyncEnabledRequest(BaseModel):
    enabled: bool


class SyncTriggerRequest(BaseModel):
    """Request body for a manual sync run."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    config: Optional[dict[str, Any]] = None


class SyncSettingsResponse(BaseModel):
    """Response body for a sync policy."""

    id: int
    entity_type: str
    entity_id: str
    sync_interval_type: str
    sync_interval_value: Optional[int] = None
    sync_interval_unit: Optional[str] = None
    enabled: bool
    last_run: Optional[str] = None
    next_run: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, settings) -> "SyncSettingsResponse":
        return cls(
            id=settings.id,
            entity_type=settings.entity_type,
            entity_id=settings.entity_id,
            sync_interval_type=settings.sync_interval_type,
            sync_interval_value=settings.sync_interval_value,
            sync_interval_unit=settings.sync_interval_unit,
            enabled=settings.enabled,
            last_run=to_iso(settings.last_run),
            next_run=to_iso(settings.next_run),
            config=settings.config,
            created_at=to_iso(settings.created_at),
            updated_at=to_iso(settings.updated_at),
        )


class SyncSettingsListResponse(BaseModel):
    settings: list[SyncSettingsResponse]
    total: int


class SyncSettingsDeleteResponse(BaseModel):
    success: bool = True
    cancelled_tasks: int = 0


class ScheduledTaskResponse(BaseModel):
    """Response body for a scheduled task."""

    id: int
    task_type: str
    trigger: str
    status: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    sync_settings_id: Optional[int] = None
    scheduled_for: Optional[str] = None
    started_at: Optional[str] = None
    last_run: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, task) -> "ScheduledTaskResponse":
        return cls(
            id=task.id,
            task_type=task.task_type,
            trigger=task.trigger,
            status=task.status,
            entity_type=task.entity_type,
            entity_id=task.entity_id,
            sync_settings_id=task.sync_settings_id,
            scheduled_for=to_iso(task.scheduled_for),
            started_at=to_iso(task.started_at),
            last_run=to_iso(task.last_run),
            config=task.config,
            result=task.result,
            error=task.error,
            created_by=task.created_by,
            created_at=to_iso(task.created_at),
            updated_at=to_iso(task.updated_at),
        )


class ScheduledTaskListResponse(BaseModel):
    tasks: list[ScheduledTaskResponse]
    total: int


class TaskCancelRequest(BaseModel):
    reason: Optional[str] = None


class SchedulerLogResponse(BaseModel):
    id: int
    task_id: Optional[int] = None
    task_type: str
    action: str
    status: str
    details: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None

    @classmethod
    def from_model(cls, entry) -> "SchedulerLogResponse":
        return cls(
            id=entry.id,
            task_id=entry.task_id,
            task_type=entry.task_type,
            action=entry.action,
            status=entry.status,
            details=entry.details,
            created_at=to_iso(entry.created_at),
        )


class ScheduledTaskDetailResponse(ScheduledTaskResponse):
    logs: list[SchedulerLogResponse] = Field(default_factory=list)


class SchedulerQueuedResponse(BaseModel):
    """Response body for work handed to the worker."""

    job_id: str
    status: str = "queued"
    task_id: Optional[int] = None
