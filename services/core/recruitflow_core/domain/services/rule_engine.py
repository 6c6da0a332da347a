"""Rule engine: turns business events into follow-up actions.

A business event names a trigger (``profile_sent``, ``job_expiring``, ...)
and the subject it happened to. Every active rule for that trigger and
subject kind whose conditions match the event attributes materializes one
follow-up action.

Usage:
    engine = RuleEngine(db=session, gateway=gateway)
    action_ids = engine.on_business_event(
        BusinessEvent(
            type="profile_sent",
            subject=TriggerSubject.application("A1"),
            triggered_by="U1",
        )
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from recruitflow_core.config import Settings, get_settings
from recruitflow_core.domain.errors import ValidationError
from recruitflow_core.domain.models import (
    AssigneeType,
    FollowupRule,
    SubjectType,
    TriggerEvent,
)
from recruitflow_core.domain.schemas.extensions import parse_conditions
from recruitflow_core.domain.services.blocking import run_with_timeout
from recruitflow_core.domain.services.clock import Clock, get_clock
from recruitflow_core.domain.services.followup_actions import (
    FollowupActionCreate,
    FollowupActionService,
)
from recruitflow_core.domain.services.followup_rules import FollowupRuleService
from recruitflow_core.domain.services.lookups import (
    AssigneeResolver,
    EntityLookup,
    NullAssigneeResolver,
)
from recruitflow_core.domain.services.notifications import NotificationGateway

logger = logging.getLogger(__name__)


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class TriggerSubject:
    """The entity a business event happened to."""

    kind: str
    id: str

    def __post_init__(self):
        if self.kind not in SubjectType.ALL:
            raise ValidationError(f"Invalid subject kind: {self.kind}")
        if not self.id:
            raise ValidationError("subject id is required")

    @classmethod
    def candidate(cls, id: str) -> "TriggerSubject":
        return cls(SubjectType.CANDIDATE, id)

    @classmethod
    def application(cls, id: str) -> "TriggerSubject":
        return cls(SubjectType.APPLICATION, id)

    @classmethod
    def job(cls, id: str) -> "TriggerSubject":
        return cls(SubjectType.JOB, id)

    @classmethod
    def talent_pool(cls, id: str) -> "TriggerSubject":
        return cls(SubjectType.TALENT_POOL, id)

    def foreign_keys(self) -> dict[str, str]:
        """The single action foreign key this subject sets."""
        if self.kind == SubjectType.CANDIDATE:
            return {"candidate_id": self.id}
        elif self.kind == SubjectType.APPLICATION:
            return {"application_id": self.id}
        elif self.kind == SubjectType.JOB:
            return {"job_id": self.id}
        elif self.kind == SubjectType.TALENT_POOL:
            return {"talent_pool_id": self.id}
        raise ValidationError(f"Unhandled subject kind: {self.kind}")


@dataclass
class BusinessEvent:
    """A business event reported by the surrounding application.

    Attributes:
        type: Trigger event name.
        subject: What the event happened to.
        triggered_by: Acting user id.
        attributes: Event data evaluated by rule conditions.
    """

    type: str
    subject: TriggerSubject
    triggered_by: str
    attributes: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# ENGINE
# =============================================================================


class RuleEngine:
    """Materializes follow-up actions from rules."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        actions: Optional[FollowupActionService] = None,
        rules: Optional[FollowupRuleService] = None,
        resolver: Optional[AssigneeResolver] = None,
        lookup: Optional[EntityLookup] = None,
        gateway: Optional[NotificationGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.actions = actions or FollowupActionService(
            db,
            clock=self.clock,
            gateway=gateway,
            lookup=lookup,
            settings=self.settings,
        )
        self.rules = rules or FollowupRuleService(db)
        self.resolver = resolver or NullAssigneeResolver()

    def get_rules_for_trigger(self, trigger_event: str, entity_type: str) -> list[FollowupRule]:
        """Active rules for a trigger event and subject kind."""
        return self.rules.get_rules_for_trigger(trigger_event, entity_type)

    def materialize(
        self,
        rule: FollowupRule,
        subject: TriggerSubject,
        triggered_by: str,
        attributes: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        """Create the follow-up action a rule describes.

        Args:
            rule: The rule to apply.
            subject: The entity the triggering event happened to.
            triggered_by: Acting user id, recorded as ``assigned_by``.
            attributes: Event attributes for rule conditions.

        Returns:
            The new action id, or None if the rule is inactive or its
            conditions do not match. Nothing is written in that case.

        Raises:
            ValidationError: If the rule produces an invalid action.
        """
        if not rule.is_active:
            return None

        conditions = parse_conditions(rule.conditions)
        if conditions is not None and not conditions.matches(attributes):
            logger.debug(
                "Rule conditions did not match",
                extra={"rule_id": rule.id, "subject_kind": subject.kind},
            )
            return None

        if not triggered_by:
            raise ValidationError("triggered_by is required")

        assignee = self.resolve_assignee(rule, subject, triggered_by)
        due_date = self.clock.now() + timedelta(days=rule.days_offset)

        title = f"Nachfassaktion: {rule.name}"
        notes = ""
        template = rule.template if rule.template_id is not None else None
        if template is not None:
            title = template.name
            notes = template.template_content or ""

        action = self.actions.create_action(
            FollowupActionCreate(
                title=title,
                description=rule.description,
                due_date=due_date,
                priority=rule.priority,
                action_type=rule.action_type,
                assigned_to=assignee,
                notes=notes,
                rule_id=rule.id,
                template_id=template.id if template is not None else None,
                **subject.foreign_keys(),
            ),
            acting_user_id=triggered_by,
        )
        return action.id

    def resolve_assignee(
        self, rule: FollowupRule, subject: TriggerSubject, triggered_by: str
    ) -> str:
        """Pick the assignee of an action materialized from ``rule``.

        Role-based rules (manager, recruiter) that cannot be resolved fall
        back to the acting user with a warning.
        """
        if rule.assigned_to_type == AssigneeType.SPECIFIC_USER:
            if not rule.assigned_to_user_id:
                raise ValidationError(
                    f"Rule {rule.id} is specific_user without assigned_to_user_id"
                )
            return rule.assigned_to_user_id
        if rule.assigned_to_type == AssigneeType.CREATOR:
            return triggered_by

        resolved = None
        try:
            resolved = run_with_timeout(
                self.resolver.resolve,
                rule.assigned_to_type,
                subject.kind,
                subject.id,
                triggered_by,
                timeout=self.settings.lookup_timeout_seconds,
            )
        except Exception as e:
            logger.warning(
                "Assignee resolution failed",
                extra={
                    "rule_id": rule.id,
                    "role": rule.assigned_to_type,
                    "error": f"{type(e).__name__}: {e}",
                },
            )

        if not resolved:
            logger.warning(
                "Assignee not resolved, falling back to triggering user",
                extra={
                    "rule_id": rule.id,
                    "role": rule.assigned_to_type,
                    "subject_kind": subject.kind,
                    "subject_id": subject.id,
                    "fallback_user_id": triggered_by,
                },
            )
            return triggered_by
        return resolved

    def on_business_event(self, event: BusinessEvent) -> list[int]:
        """Apply every active rule for an event.

        A failing rule is logged and skipped; the others still run.

        Returns:
            Ids of the created actions.

        Raises:
            ValidationError: If the event itself is malformed.
        """
        if event.type not in TriggerEvent.ALL:
            raise ValidationError(f"Invalid trigger event: {event.type}")
        if not event.triggered_by:
            raise ValidationError("triggered_by is required")

        created = []
        for rule in self.get_rules_for_trigger(event.type, event.subject.kind):
            try:
                # A failed flush only rolls back this rule's savepoint
                with self.db.begin_nested():
                    action_id = self.materialize(
                        rule, event.subject, event.triggered_by, event.attributes
                    )
            except Exception as e:
                logger.error(
                    "Rule materialization failed",
                    exc_info=True,
                    extra={
                        "rule_id": rule.id,
                        "trigger_event": event.type,
                        "error": f"{type(e).__name__}: {e}",
                    },
                )
                continue
            if action_id is not None:
                created.append(action_id)

        logger.info(
            "Business event processed",
            extra={
                "trigger_event": event.type,
                "subject_kind": event.subject.kind,
                "subject_id": event.subject.id,
                "actions_created": len(created),
            },
        )
        return created
