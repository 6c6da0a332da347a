"""Posting pipeline schemas for request/response validation."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from recruitflow_core.domain.services.clock import to_iso
from recruitflow_core.domain.services.pipeline import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DAILY_LIMIT,
    DEFAULT_MIN_INTERVAL_MINUTES,
)


class PipelineItemCreateRequest(BaseModel):
    """Request body for queueing an entity for posting."""

    pipeline_type: str
    entity_type: str = Field(..., min_length=1, max_length=32)
    entity_id: str = Field(..., min_length=1, max_length=128)
    platform: Optional[str] = None
    priority: int = 0
    scheduled_for: Optional[datetime] = None
    content_template: Optional[str] = Field(None, max_length=128)
    content_params: Optional[dict[str, Any]] = None
    target_audience: Optional[dict[str, Any]] = None


class PipelineItemScheduleRequest(BaseModel):
    scheduled_for: datetime


class PipelineItemResponse(BaseModel):
    """Response body for a pipeline item."""

    id: int
    pipeline_type: str
    platform: Optional[str] = None
    entity_type: str
    entity_id: str
    status: str
    priority: int
    scheduled_for: Optional[str] = None
    content_template: Optional[str] = None
    content_params: Optional[dict[str, Any]] = None
    target_audience: Optional[dict[str, Any]] = None
    scheduled_task_id: Optional[int] = None
    posted_at: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, item) -> "PipelineItemResponse":
        return cls(
            id=item.id,
            pipeline_type=item.pipeline_type,
            platform=item.platform,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            status=item.status,
            priority=item.priority,
            scheduled_for=to_iso(item.scheduled_for),
            content_template=item.content_template,
            content_params=item.content_params,
            target_audience=item.target_audience,
            scheduled_task_id=item.scheduled_task_id,
            posted_at=to_iso(item.posted_at),
            result=item.result,
            error=item.error,
            created_at=to_iso(item.created_at),
            updated_at=to_iso(item.updated_at),
        )


class PipelineItemListResponse(BaseModel):
    items: list[PipelineItemResponse]
    total: int


class PipelineSettingsRequest(BaseModel):
    """Request body for creating or replacing pipeline settings."""

    platform: Optional[str] = None
    daily_limit: int = Field(DEFAULT_DAILY_LIMIT, ge=1)
    posting_hours: Optional[list[int]] = None
    posting_days: Optional[list[int]] = Field(None, description="Weekdays, 0 = Sunday")
    min_interval_minutes: int = Field(DEFAULT_MIN_INTERVAL_MINUTES, ge=1)
    enabled: bool = True
    config: Optional[dict[str, Any]] = None


class PipelineEnabledRequest(BaseModel):
    platform: Optional[str] = None
    enabled: bool


class PipelineSettingsResponse(BaseModel):
    """Response body for pipeline settings."""

    id: int
    pipeline_type: str
    platform: Optional[str] = None
    daily_limit: int
    posting_hours: Optional[list[int]] = None
    posting_days: Optional[list[int]] = None
    min_interval_minutes: int
    enabled: bool
    config: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, settings) -> "PipelineSettingsResponse":
        return cls(
            id=settings.id,
            pipeline_type=settings.pipeline_type,
            platform=settings.platform,
            daily_limit=settings.daily_limit,
            posting_hours=settings.posting_hours,
            posting_days=settings.posting_days,
            min_interval_minutes=settings.min_interval_minutes,
            enabled=settings.enabled,
            config=settings.config,
            created_at=to_iso(settings.created_at),
            updated_at=to_iso(settings.updated_at),
        )


class PipelineSettingsListResponse(BaseModel):
    settings: list[PipelineSettingsResponse]
    total: int


class PipelineScheduleRequest(BaseModel):
    """Request body for filling the posting windows of a pipeline."""

    pipeline_type: str
    platform: Optional[str] = None
    max_items: int = Field(DEFAULT_BATCH_SIZE, ge=1, le=100)


class PipelineScheduleResponse(BaseModel):
    scheduled: int
    item_ids: list[int]
