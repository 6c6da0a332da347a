"""API schemas."""

from recruitflow_core.api.schemas.followup import (
    BusinessEventRequest,
    FollowupActionCreateRequest,
    FollowupActionListResponse,
    FollowupActionResponse,
    FollowupRuleResponse,
    FollowupTemplateResponse,
    ProfileSubmissionResponse,
    TransitionResponse,
)
from recruitflow_core.api.schemas.scheduler import (
    ScheduledTaskResponse,
    SchedulerQueuedResponse,
    SyncSettingsResponse,
)

__all__ = [
    # Follow-up schemas
    "BusinessEventRequest",
    "FollowupActionCreateRequest",
    "FollowupActionListResponse",
    "FollowupActionResponse",
    "FollowupRuleResponse",
    "FollowupTemplateResponse",
    "ProfileSubmissionResponse",
    "TransitionResponse",
    # Scheduler schemas
    "ScheduledTaskResponse",
    "SchedulerQueuedResponse",
    "SyncSettingsResponse",
]
