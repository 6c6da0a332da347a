"""Posting pipeline API routes: queued posts and posting windows.

Posting itself happens in the worker: scheduling an item creates its task,
and the sweep runs it once due.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, status

from recruitflow_core.api.deps import PipelineServiceDep
from recruitflow_core.api.schemas.pipeline import (
    PipelineEnabledRequest,
    PipelineItemCreateRequest,
    PipelineItemListResponse,
    PipelineItemResponse,
    PipelineItemScheduleRequest,
    PipelineScheduleRequest,
    PipelineScheduleResponse,
    PipelineSettingsListResponse,
    PipelineSettingsRequest,
    PipelineSettingsResponse,
)

router = APIRouter(prefix="/scheduler/pipeline", tags=["pipeline"])


# =============================================================================
# ITEMS
# =============================================================================


@router.get("", response_model=PipelineItemListResponse)
def list_items(
    pipeline: PipelineServiceDep,
    status_filter: Optional[list[str]] = Query(None, alias="status"),
    pipeline_type: Optional[str] = Query(None),
    platform: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    min_priority: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List queued posts, highest priority first."""
    items = pipeline.list_items(
        status=status_filter,
        pipeline_type=pipeline_type,
        platform=platform,
        entity_type=entity_type,
        entity_id=entity_id,
        from_date=from_date,
        to_date=to_date,
        min_priority=min_priority,
        limit=limit,
        offset=offset,
    )
    return PipelineItemListResponse(
        items=[PipelineItemResponse.from_model(i) for i in items],
        total=len(items),
    )


@router.post("", response_model=PipelineItemResponse, status_code=status.HTTP_201_CREATED)
def add_item(request: PipelineItemCreateRequest, pipeline: PipelineServiceDep):
    item = pipeline.add_to_pipeline(
        request.pipeline_type,
        request.entity_type,
        request.entity_id,
        platform=request.platform,
        priority=request.priority,
        scheduled_for=request.scheduled_for,
        content_template=request.content_template,
        content_params=request.content_params,
        target_audience=request.target_audience,
    )
    return PipelineItemResponse.from_model(item)


@router.get("/next", response_model=PipelineItemListResponse)
def next_items(
    pipeline: PipelineServiceDep,
    pipeline_type: str = Query(...),
    platform: Optional[str] = Query(None),
    limit: int = Query(5, ge=1, le=100),
):
    """Pending posts that still fit into today's limit."""
    items = pipeline.get_next_items_to_post(pipeline_type, platform, limit=limit)
    return PipelineItemListResponse(
        items=[PipelineItemResponse.from_model(i) for i in items],
        total=len(items),
    )


@router.post("/schedule", response_model=PipelineScheduleResponse)
def schedule_posts(request: PipelineScheduleRequest, pipeline: PipelineServiceDep):
    """Spread pending posts over the upcoming posting windows."""
    ids = pipeline.schedule_pipeline_posts(
        request.pipeline_type, request.platform, max_items=request.max_items
    )
    return PipelineScheduleResponse(scheduled=len(ids), item_ids=ids)


# =============================================================================
# SETTINGS
# =============================================================================


@router.get("/settings", response_model=PipelineSettingsListResponse)
def list_settings(pipeline: PipelineServiceDep):
    items = pipeline.list_pipeline_settings()
    return PipelineSettingsListResponse(
        settings=[PipelineSettingsResponse.from_model(s) for s in items],
        total=len(items),
    )


@router.get("/settings/{pipeline_type}", response_model=PipelineSettingsResponse)
def get_settings(
    pipeline_type: str, pipeline: PipelineServiceDep, platform: Optional[str] = Query(None)
):
    return PipelineSettingsResponse.from_model(
        pipeline.get_pipeline_settings_or_raise(pipeline_type, platform)
    )


@router.put("/settings/{pipeline_type}", response_model=PipelineSettingsResponse)
def save_settings(
    pipeline_type: str, request: PipelineSettingsRequest, pipeline: PipelineServiceDep
):
    """Create or replace the settings of a pipeline (and platform)."""
    settings = pipeline.save_pipeline_settings(
        pipeline_type,
        platform=request.platform,
        daily_limit=request.daily_limit,
        posting_hours=request.posting_hours,
        posting_days=request.posting_days,
        min_interval_minutes=request.min_interval_minutes,
        enabled=request.enabled,
        config=request.config,
    )
    return PipelineSettingsResponse.from_model(settings)


@router.post("/settings/{pipeline_type}/enabled", response_model=PipelineSettingsResponse)
def set_enabled(
    pipeline_type: str, request: PipelineEnabledRequest, pipeline: PipelineServiceDep
):
    settings = pipeline.set_pipeline_enabled(pipeline_type, request.platform, request.enabled)
    return PipelineSettingsResponse.from_model(settings)


# =============================================================================
# SINGLE ITEM
# =============================================================================


@router.get("/{item_id}", response_model=PipelineItemResponse)
def get_item(item_id: int, pipeline: PipelineServiceDep):
    return PipelineItemResponse.from_model(pipeline.get_item_or_raise(item_id))


@router.post("/{item_id}/schedule", response_model=PipelineItemResponse)
def schedule_item(
    item_id: int, request: PipelineItemScheduleRequest, pipeline: PipelineServiceDep
):
    """Schedule one post at a fixed time, outside the posting windows."""
    item = pipeline.schedule_item_posting(item_id, request.scheduled_for)
    return PipelineItemResponse.from_model(item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_item(item_id: int, pipeline: PipelineServiceDep):
    """Remove a post from the pipeline. Its pending task is cancelled."""
    pipeline.remove_from_pipeline(item_id)
