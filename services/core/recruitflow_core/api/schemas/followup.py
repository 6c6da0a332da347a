"""Follow-up schemas for request/response validation.

Timestamps are rendered as ISO-8601 strings in UTC.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from recruitflow_core.domain.models import Priority
from recruitflow_core.domain.services.clock import to_iso


# =============================================================================
# ACTIONS
# =============================================================================


class FollowupActionCreateRequest(BaseModel):
    """Request body for creating a follow-up action."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=512)
    due_date: datetime
    action_type: str
    assigned_to: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    priority: str = Priority.MEDIUM
    candidate_id: Optional[str] = Field(None, max_length=64)
    application_id: Optional[str] = Field(None, max_length=64)
    job_id: Optional[str] = Field(None, max_length=64)
    talent_pool_id: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = None
    allow_composite: bool = False


class FollowupActionUpdateRequest(BaseModel):
    """Request body for editing a follow-up action."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    title: Optional[str] = Field(None, min_length=1, max_length=512)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: Optional[str] = None
    action_type: Optional[str] = None
    assigned_to: Optional[str] = Field(None, min_length=1, max_length=64)
    notes: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    """Request body for a lifecycle transition."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    status: str
    completed_at: Optional[datetime] = None


class CompleteRequest(BaseModel):
    """Request body for completing an action."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    notes: Optional[str] = None


class FollowupActionResponse(BaseModel):
    """Response body for a follow-up action."""

    id: int
    title: str
    description: Optional[str] = None
    due_date: Optional[str] = None
    priority: str
    action_type: str
    assigned_to: str
    assigned_by: str
    status: str
    completed: bool
    completed_at: Optional[str] = None
    reminder_sent: bool
    reminder_date: Optional[str] = None
    candidate_id: Optional[str] = None
    application_id: Optional[str] = None
    job_id: Optional[str] = None
    talent_pool_id: Optional[str] = None
    rule_id: Optional[int] = None
    template_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Display names, only with ``with_details``
    candidate_name: Optional[str] = None
    application_title: Optional[str] = None
    job_title: Optional[str] = None
    talent_pool_name: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assigned_by_name: Optional[str] = None

    @classmethod
    def from_model(cls, action, details=None) -> "FollowupActionResponse":
        """Create response from a FollowupAction, optionally with its details."""
        response = cls(
            id=action.id,
            title=action.title,
            description=action.description,
            due_date=to_iso(action.due_date),
            priority=action.priority,
            action_type=action.action_type,
            assigned_to=action.assigned_to,
            assigned_by=action.assigned_by,
            status=action.status,
            completed=action.completed,
            completed_at=to_iso(action.completed_at),
            reminder_sent=action.reminder_sent,
            reminder_date=to_iso(action.reminder_date),
            candidate_id=action.candidate_id,
            application_id=action.application_id,
            job_id=action.job_id,
            talent_pool_id=action.talent_pool_id,
            rule_id=action.rule_id,
            template_id=action.template_id,
            notes=action.notes,
            created_at=to_iso(action.created_at),
            updated_at=to_iso(action.updated_at),
        )
        if details is not None:
            response.candidate_name = details.candidate_name
            response.application_title = details.application_title
            response.job_title = details.job_title
            response.talent_pool_name = details.talent_pool_name
            response.assigned_to_name = details.assigned_to_name
            response.assigned_by_name = details.assigned_by_name
        return response


class FollowupActionListResponse(BaseModel):
    """Response body for listing follow-up actions."""

    actions: list[FollowupActionResponse]
    total: int


class TransitionResponse(BaseModel):
    """Response body for a lifecycle transition."""

    ok: bool
    changed: bool
    status: Optional[str] = None
    action: Optional[FollowupActionResponse] = None


class FollowupLogResponse(BaseModel):
    """Response body for an action log entry."""

    id: int
    followup_action_id: int
    action_type: str
    user_id: str
    details: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None

    @classmethod
    def from_model(cls, entry) -> "FollowupLogResponse":
        return cls(
            id=entry.id,
            followup_action_id=entry.followup_action_id,
            action_type=entry.action_type,
            user_id=entry.user_id,
            details=entry.details,
            created_at=to_iso(entry.created_at),
        )


class FollowupLogListResponse(BaseModel):
    logs: list[FollowupLogResponse]
    total: int


class DeleteCompletedResponse(BaseModel):
    deleted: int


# =============================================================================
# EVENTS
# =============================================================================


class BusinessEventRequest(BaseModel):
    """Request body for reporting a business event."""

    type: str
    subject_kind: str
    subject_id: str = Field(..., min_length=1, max_length=64)
    triggered_by: str = Field(..., min_length=1, max_length=64)
    attributes: dict[str, Any] = Field(default_factory=dict)


class BusinessEventResponse(BaseModel):
    action_ids: list[int]


# =============================================================================
# RULES AND TEMPLATES
# =============================================================================


class FollowupRuleCreateRequest(BaseModel):
    """Request body for creating a rule."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    trigger_event: str
    entity_type: str
    action_type: str
    days_offset: int = 0
    priority: str = Priority.MEDIUM
    description: Optional[str] = None
    template_id: Optional[int] = None
    assigned_to_type: str = "creator"
    assigned_to_user_id: Optional[str] = Field(None, max_length=64)
    conditions: Optional[dict[str, Any]] = None
    is_active: bool = True


class FollowupRuleUpdateRequest(BaseModel):
    """Request body for updating a rule. Omitted fields stay unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_event: Optional[str] = None
    entity_type: Optional[str] = None
    days_offset: Optional[int] = None
    action_type: Optional[str] = None
    priority: Optional[str] = None
    template_id: Optional[int] = None
    clear_template: bool = False
    assigned_to_type: Optional[str] = None
    assigned_to_user_id: Optional[str] = Field(None, max_length=64)
    conditions: Optional[dict[str, Any]] = None
    clear_conditions: bool = False
    is_active: Optional[bool] = None


class FollowupRuleResponse(BaseModel):
    """Response body for a rule."""

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    trigger_event: str
    entity_type: str
    days_offset: int
    action_type: str
    priority: str
    template_id: Optional[int] = None
    assigned_to_type: str
    assigned_to_user_id: Optional[str] = None
    conditions: Optional[dict[str, Any]] = None
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, rule) -> "FollowupRuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            is_active=rule.is_active,
            trigger_event=rule.trigger_event,
            entity_type=rule.entity_type,
            days_offset=rule.days_offset,
            action_type=rule.action_type,
            priority=rule.priority,
            template_id=rule.template_id,
            assigned_to_type=rule.assigned_to_type,
            assigned_to_user_id=rule.assigned_to_user_id,
            conditions=rule.conditions,
            created_by=rule.created_by,
            created_at=to_iso(rule.created_at),
            updated_at=to_iso(rule.updated_at),
        )


class FollowupRuleListResponse(BaseModel):
    rules: list[FollowupRuleResponse]
    total: int


class FollowupTemplateCreateRequest(BaseModel):
    """Request body for creating a template."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    action_type: str
    template_content: Optional[str] = None
    description: Optional[str] = None
    default_priority: str = Priority.MEDIUM
    default_days_offset: int = 0
    trigger_on: Optional[str] = None
    applicability: Optional[str] = None
    is_active: bool = True


class FollowupTemplateUpdateRequest(BaseModel):
    """Request body for updating a template. Omitted fields stay unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    action_type: Optional[str] = None
    template_content: Optional[str] = None
    description: Optional[str] = None
    default_priority: Optional[str] = None
    default_days_offset: Optional[int] = None
    trigger_on: Optional[str] = None
    applicability: Optional[str] = None
    is_active: Optional[bool] = None


class FollowupTemplateResponse(BaseModel):
    """Response body for a template."""

    id: int
    name: str
    description: Optional[str] = None
    action_type: str
    template_content: Optional[str] = None
    default_priority: str
    default_days_offset: int
    trigger_on: Optional[str] = None
    applicability: Optional[str] = None
    is_active: bool
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, template) -> "FollowupTemplateResponse":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            action_type=template.action_type,
            template_content=template.template_content,
            default_priority=template.default_priority,
            default_days_offset=template.default_days_offset,
            trigger_on=template.trigger_on,
            applicability=template.applicability,
            is_active=template.is_active,
            created_by=template.created_by,
            created_at=to_iso(template.created_at),
            updated_at=to_iso(template.updated_at),
        )


class FollowupTemplateListResponse(BaseModel):
    templates: list[FollowupTemplateResponse]
    total: int


# =============================================================================
# PROFILE SUBMISSIONS
# =============================================================================


class ProfileSubmissionCreateRequest(BaseModel):
    """Request body for recording a sent candidate profile."""

    application_id: str = Field(..., min_length=1, max_length=64)
    customer_id: str = Field(..., min_length=1, max_length=64)
    sent_by: str = Field(..., min_length=1, max_length=64)
    sent_at: Optional[datetime] = None


class ProfileSubmissionStatusRequest(BaseModel):
    """Request body for moving a submission forward."""

    acting_user_id: str = Field(..., min_length=1, max_length=64)
    status: str
    response_details: Optional[str] = None


class ProfileSubmissionResponse(BaseModel):
    """Response body for a profile submission."""

    id: int
    application_id: str
    customer_id: str
    sent_by: str
    sent_at: Optional[str] = None
    status: str
    response_received_at: Optional[str] = None
    response_details: Optional[str] = None
    followup_action_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, submission) -> "ProfileSubmissionResponse":
        return cls(
            id=submission.id,
            application_id=submission.application_id,
            customer_id=submission.customer_id,
            sent_by=submission.sent_by,
            sent_at=to_iso(submission.sent_at),
            status=submission.status,
            response_received_at=to_iso(submission.response_received_at),
            response_details=submission.response_details,
            followup_action_id=submission.followup_action_id,
            created_at=to_iso(submission.created_at),
            updated_at=to_iso(submission.updated_at),
        )


class ProfileSubmissionListResponse(BaseModel):
    submissions: list[ProfileSubmissionResponse]
    total: int


class ProfileSubmissionTransitionResponse(BaseModel):
    ok: bool
    changed: bool
    status: Optional[str] = None
    submission: Optional[ProfileSubmissionResponse] = None
