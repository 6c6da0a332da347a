"""Follow-up action API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from recruitflow_core.api.deps import (
    ActionServiceDep,
    LifecycleServiceDep,
    RuleEngineDep,
    http_error,
    raise_for_transition,
)
from recruitflow_core.api.schemas.followup import (
    BusinessEventRequest,
    BusinessEventResponse,
    CompleteRequest,
    DeleteCompletedResponse,
    FollowupActionCreateRequest,
    FollowupActionListResponse,
    FollowupActionResponse,
    FollowupActionUpdateRequest,
    FollowupLogListResponse,
    FollowupLogResponse,
    StatusUpdateRequest,
    TransitionResponse,
)
from recruitflow_core.domain.errors import FollowupError
from recruitflow_core.domain.services.followup_actions import (
    ActionFilter,
    FollowupActionCreate,
)
from recruitflow_core.domain.services.rule_engine import BusinessEvent, TriggerSubject

router = APIRouter(prefix="/followups", tags=["followups"])


@router.get("", response_model=FollowupActionListResponse)
def list_followups(
    actions: ActionServiceDep,
    user_id: Optional[str] = Query(None, description="Filter by assignee"),
    candidate_id: Optional[str] = Query(None),
    application_id: Optional[str] = Query(None),
    job_id: Optional[str] = Query(None),
    talent_pool_id: Optional[str] = Query(None),
    status_filter: Optional[list[str]] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    due_before: Optional[datetime] = Query(None),
    due_after: Optional[datetime] = Query(None),
    include_completed: bool = Query(False),
    with_details: bool = Query(False, description="Resolve display names"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: Optional[int] = Query(None, ge=0),
):
    """List follow-up actions ordered by due date.

    Completed actions are excluded unless a status filter is given or
    ``include_completed`` is set.
    """
    statuses = None
    if status_filter:
        statuses = [s for value in status_filter for s in value.split(",") if s]

    action_filter = ActionFilter(
        user_id=user_id,
        candidate_id=candidate_id,
        application_id=application_id,
        job_id=job_id,
        talent_pool_id=talent_pool_id,
        status=statuses,
        priority=priority,
        due_before=due_before,
        due_after=due_after,
        limit=limit,
        offset=offset,
        include_completed=include_completed,
    )

    if with_details:
        items = [
            FollowupActionResponse.from_model(d.action, d)
            for d in actions.get_actions_with_details(action_filter)
        ]
    else:
        items = [FollowupActionResponse.from_model(a) for a in actions.get_actions(action_filter)]

    return FollowupActionListResponse(actions=items, total=len(items))


@router.post("", response_model=FollowupActionResponse, status_code=status.HTTP_201_CREATED)
def create_followup(request: FollowupActionCreateRequest, actions: ActionServiceDep):
    """Create a follow-up action and notify its assignee."""
    action = actions.create_action(
        FollowupActionCreate(
            title=request.title,
            due_date=request.due_date,
            action_type=request.action_type,
            assigned_to=request.assigned_to,
            description=request.description,
            priority=request.priority,
            candidate_id=request.candidate_id,
            application_id=request.application_id,
            job_id=request.job_id,
            talent_pool_id=request.talent_pool_id,
            notes=request.notes,
            allow_composite=request.allow_composite,
        ),
        acting_user_id=request.acting_user_id,
    )
    return FollowupActionResponse.from_model(action)


@router.post("/events", response_model=BusinessEventResponse)
def report_business_event(request: BusinessEventRequest, engine: RuleEngineDep):
    """Apply the active rules for a business event."""
    try:
        subject = TriggerSubject(request.subject_kind, request.subject_id)
    except FollowupError as e:
        raise http_error(e)

    action_ids = engine.on_business_event(
        BusinessEvent(
            type=request.type,
            subject=subject,
            triggered_by=request.triggered_by,
            attributes=request.attributes,
        )
    )
    return BusinessEventResponse(action_ids=action_ids)


@router.delete("/completed", response_model=DeleteCompletedResponse)
def delete_completed_followups(
    actions: ActionServiceDep,
    acting_user_id: str = Query(..., min_length=1),
    older_than_days: Optional[int] = Query(None, ge=0),
):
    """Delete completed actions. Actions linked to profile submissions are kept."""
    deleted = actions.delete_completed(acting_user_id, older_than_days=older_than_days)
    return DeleteCompletedResponse(deleted=deleted)


@router.get("/{action_id}", response_model=FollowupActionResponse)
def get_followup(action_id: int, actions: ActionServiceDep):
    """Get a follow-up action by ID."""
    action = actions.get_action(action_id)
    if action is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Follow-up action {action_id} not found",
        )
    return FollowupActionResponse.from_model(action)


@router.patch("/{action_id}", response_model=FollowupActionResponse)
def update_followup(
    action_id: int, request: FollowupActionUpdateRequest, actions: ActionServiceDep
):
    """Edit the fields of a follow-up action."""
    action = actions.update_action(
        action_id,
        acting_user_id=request.acting_user_id,
        title=request.title,
        description=request.description,
        due_date=request.due_date,
        priority=request.priority,
        action_type=request.action_type,
        assigned_to=request.assigned_to,
        notes=request.notes,
    )
    return FollowupActionResponse.from_model(action)


@router.post("/{action_id}/status", response_model=TransitionResponse)
def update_followup_status(
    action_id: int,
    request: StatusUpdateRequest,
    actions: ActionServiceDep,
    lifecycle: LifecycleServiceDep,
):
    """Move a follow-up action to a new status."""
    result = lifecycle.update_status(
        action_id,
        request.status,
        request.acting_user_id,
        completed_at=request.completed_at,
    )
    raise_for_transition(result)
    return TransitionResponse(
        ok=result.ok,
        changed=result.changed,
        status=result.status,
        action=FollowupActionResponse.from_model(actions.get_action_or_raise(action_id)),
    )


@router.post("/{action_id}/complete", response_model=TransitionResponse)
def complete_followup(
    action_id: int,
    request: CompleteRequest,
    actions: ActionServiceDep,
    lifecycle: LifecycleServiceDep,
):
    """Complete a follow-up action. Completing twice is a no-op."""
    result = lifecycle.complete(action_id, request.acting_user_id, notes=request.notes)
    raise_for_transition(result)
    return TransitionResponse(
        ok=result.ok,
        changed=result.changed,
        status=result.status,
        action=FollowupActionResponse.from_model(actions.get_action_or_raise(action_id)),
    )


@router.get("/{action_id}/logs", response_model=FollowupLogListResponse)
def get_followup_logs(action_id: int, actions: ActionServiceDep):
    """Get the audit log of a follow-up action."""
    actions.get_action_or_raise(action_id)
    logs = [FollowupLogResponse.from_model(entry) for entry in actions.get_logs(action_id)]
    return FollowupLogListResponse(logs=logs, total=len(logs))
