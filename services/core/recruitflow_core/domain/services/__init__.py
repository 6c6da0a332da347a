"""Domain services for Recruitflow."""

from recruitflow_core.domain.services.followup_actions import FollowupActionService
from recruitflow_core.domain.services.followup_rules import FollowupRuleService
from recruitflow_core.domain.services.lifecycle import FollowupLifecycleService
from recruitflow_core.domain.services.pipeline import PipelineService
from recruitflow_core.domain.services.profile_submission import ProfileSubmissionService
from recruitflow_core.domain.services.rule_engine import (
    BusinessEvent,
    RuleEngine,
    TriggerSubject,
)
from recruitflow_core.domain.services.scheduled_tasks import ScheduledTaskService
from recruitflow_core.domain.services.sweep import SweepReport, SweepScheduler

__all__ = [
    "BusinessEvent",
    "FollowupActionService",
    "FollowupLifecycleService",
    "FollowupRuleService",
    "PipelineService",
    "ProfileSubmissionService",
    "RuleEngine",
    "ScheduledTaskService",
    "SweepReport",
    "SweepScheduler",
    "TriggerSubject",
]
