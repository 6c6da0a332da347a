"""Rule store for follow-up rules and templates.

This service provides:
1. Follow-up rule CRUD with validation and soft deactivation
2. Follow-up template CRUD (templates are frozen once an action uses them)
3. Trigger lookups used by the rule engine

Usage:
    service = FollowupRuleService(db=session)

    rule = service.create_rule(
        name="Call after profile",
        trigger_event="profile_sent",
        entity_type="application",
        action_type="call",
        days_offset=2,
        created_by="user-1",
    )

    rules = service.get_rules_for_trigger("profile_sent", "application")
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from recruitflow_core.domain.errors import ConflictError, NotFoundError, ValidationError
from recruitflow_core.domain.models import (
    ActionType,
    AssigneeType,
    FollowupAction,
    FollowupRule,
    FollowupTemplate,
    Priority,
    SubjectType,
    TriggerEvent,
)
from recruitflow_core.domain.schemas.extensions import parse_conditions


# =============================================================================
# CONSTANTS
# =============================================================================


MAX_NAME_LENGTH = 255

# Template fields that freeze once an action references the template
TEMPLATE_CONTENT_FIELDS = (
    "name",
    "description",
    "action_type",
    "template_content",
    "default_priority",
    "default_days_offset",
    "trigger_on",
    "applicability",
)


def _require_choice(value: Optional[str], choices: Iterable[str], field: str) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {sorted(choices)}")
    return value


def _require_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"name must be at most {MAX_NAME_LENGTH} characters")
    return name


class FollowupRuleService:
    """Service for follow-up rule and template storage."""

    def __init__(self, db: Session):
        """Initialize the rule service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    # =========================================================================
    # RULES
    # =========================================================================

    def create_rule(
        self,
        name: str,
        trigger_event: str,
        entity_type: str,
        action_type: str,
        created_by: str,
        days_offset: int = 0,
        priority: str = Priority.MEDIUM,
        description: Optional[str] = None,
        template_id: Optional[int] = None,
        assigned_to_type: str = AssigneeType.CREATOR,
        assigned_to_user_id: Optional[str] = None,
        conditions: Optional[dict[str, Any]] = None,
        is_active: bool = True,
    ) -> FollowupRule:
        """Create a follow-up rule.

        Args:
            name: Rule name, used in the title of materialized actions.
            trigger_event: Business event the rule listens to.
            entity_type: Subject kind the rule applies to.
            action_type: Channel of the actions it creates.
            created_by: Acting user id.
            days_offset: Days between the event and the due date (signed).
            priority: Priority of created actions.
            description: Optional description.
            template_id: Optional template supplying title and notes.
            assigned_to_type: How the assignee is picked.
            assigned_to_user_id: Assignee for ``specific_user`` rules.
            conditions: Optional versioned conditions JSON.
            is_active: Whether the rule materializes.

        Returns:
            The created FollowupRule.

        Raises:
            ValidationError: If any field is invalid.
        """
        name = _require_name(name)
        _require_choice(trigger_event, TriggerEvent.ALL, "trigger_event")
        _require_choice(entity_type, SubjectType.ALL, "entity_type")
        _require_choice(action_type, ActionType.ALL, "action_type")
        _require_choice(priority, Priority.ALL, "priority")
        _require_choice(assigned_to_type, AssigneeType.ALL, "assigned_to_type")

        if assigned_to_type == AssigneeType.SPECIFIC_USER and not assigned_to_user_id:
            raise ValidationError("assigned_to_user_id is required for specific_user rules")
        if not created_by:
            raise ValidationError("created_by is required")
        if template_id is not None:
            self._require_template(template_id)

        parsed = parse_conditions(conditions)

        rule = FollowupRule(
            name=name,
            description=description,
            trigger_event=trigger_event,
            entity_type=entity_type,
            days_offset=int(days_offset),
            action_type=action_type,
            priority=priority,
            template_id=template_id,
            assigned_to_type=assigned_to_type,
            assigned_to_user_id=assigned_to_user_id,
            conditions=parsed.model_dump() if parsed is not None else None,
            is_active=is_active,
            created_by=created_by,
        )
        self.db.add(rule)
        self.db.flush()
        return rule

    def get_rule(self, rule_id: int) -> Optional[FollowupRule]:
        """Get a rule by ID, or None if not found."""
        return self.db.query(FollowupRule).filter(FollowupRule.id == rule_id).first()

    def get_rule_or_raise(self, rule_id: int) -> FollowupRule:
        rule = self.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Follow-up rule not found: {rule_id}")
        return rule

    def list_rules(
        self,
        is_active: Optional[bool] = None,
        trigger_event: Optional[str] = None,
        entity_type: Optional[str] = None,
    ) -> list[FollowupRule]:
        """List rules, newest first."""
        query = self.db.query(FollowupRule)

        if is_active is not None:
            query = query.filter(FollowupRule.is_active == is_active)
        if trigger_event:
            query = query.filter(FollowupRule.trigger_event == trigger_event)
        if entity_type:
            query = query.filter(FollowupRule.entity_type == entity_type)

        return query.order_by(desc(FollowupRule.created_at), desc(FollowupRule.id)).all()

    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        trigger_event: Optional[str] = None,
        entity_type: Optional[str] = None,
        days_offset: Optional[int] = None,
        action_type: Optional[str] = None,
        priority: Optional[str] = None,
        template_id: Optional[int] = None,
        clear_template: bool = False,
        assigned_to_type: Optional[str] = None,
        assigned_to_user_id: Optional[str] = None,
        conditions: Optional[dict[str, Any]] = None,
        clear_conditions: bool = False,
        is_active: Optional[bool] = None,
    ) -> FollowupRule:
        """Update a rule. None leaves a field unchanged.

        Raises:
            NotFoundError: If the rule does not exist.
            ValidationError: If any field is invalid.
        """
        rule = self.get_rule_or_raise(rule_id)

        if name is not None:
            rule.name = _require_name(name)
        if description is not None:
            rule.description = description
        if trigger_event is not None:
            rule.trigger_event = _require_choice(trigger_event, TriggerEvent.ALL, "trigger_event")
        if entity_type is not None:
            rule.entity_type = _require_choice(entity_type, SubjectType.ALL, "entity_type")
        if days_offset is not None:
            rule.days_offset = int(days_offset)
        if action_type is not None:
            rule.action_type = _require_choice(action_type, ActionType.ALL, "action_type")
        if priority is not None:
            rule.priority = _require_choice(priority, Priority.ALL, "priority")

        if clear_template:
            rule.template_id = None
        elif template_id is not None:
            self._require_template(template_id)
            rule.template_id = template_id

        if assigned_to_type is not None:
            rule.assigned_to_type = _require_choice(
                assigned_to_type, AssigneeType.ALL, "assigned_to_type"
            )
        if assigned_to_user_id is not None:
            rule.assigned_to_user_id = assigned_to_user_id
        if rule.assigned_to_type == AssigneeType.SPECIFIC_USER and not rule.assigned_to_user_id:
            raise ValidationError("assigned_to_user_id is required for specific_user rules")

        if clear_conditions:
            rule.conditions = None
        elif conditions is not None:
            rule.conditions = parse_conditions(conditions).model_dump()

        if is_active is not None:
            rule.is_active = is_active

        rule.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return rule

    def deactivate_rule(self, rule_id: int) -> FollowupRule:
        """Soft-deactivate a rule. It stops materializing immediately."""
        rule = self.get_rule_or_raise(rule_id)
        rule.is_active = False
        rule.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return rule

    def delete_rule(self, rule_id: int) -> None:
        """Hard-delete a rule that no action references.

        Raises:
            NotFoundError: If the rule does not exist.
            ConflictError: If actions reference the rule (deactivate instead).
        """
        rule = self.get_rule_or_raise(rule_id)
        referenced = (
            self.db.query(FollowupAction.id)
            .filter(FollowupAction.rule_id == rule_id)
            .first()
        )
        if referenced is not None:
            raise ConflictError(
                f"Follow-up rule {rule_id} is referenced by actions, deactivate it instead"
            )
        self.db.delete(rule)
        self.db.flush()

    def get_rules_for_trigger(self, trigger_event: str, entity_type: str) -> list[FollowupRule]:
        """Get active rules for a trigger event and subject kind, oldest first."""
        return (
            self.db.query(FollowupRule)
            .filter(
                FollowupRule.trigger_event == trigger_event,
                FollowupRule.entity_type == entity_type,
                FollowupRule.is_active.is_(True),
            )
            .order_by(FollowupRule.id.asc())
            .all()
        )

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def create_template(
        self,
        name: str,
        action_type: str,
        created_by: str,
        template_content: Optional[str] = None,
        description: Optional[str] = None,
        default_priority: str = Priority.MEDIUM,
        default_days_offset: int = 0,
        trigger_on: Optional[str] = None,
        applicability: Optional[str] = None,
        is_active: bool = True,
    ) -> FollowupTemplate:
        """Create a follow-up template.

        Raises:
            ValidationError: If any field is invalid.
        """
        name = _require_name(name)
        _require_choice(action_type, ActionType.ALL, "action_type")
        _require_choice(default_priority, Priority.ALL, "default_priority")
        if trigger_on is not None:
            _require_choice(trigger_on, TriggerEvent.ALL, "trigger_on")
        if applicability is not None:
            _require_choice(applicability, SubjectType.ALL, "applicability")
        if not created_by:
            raise ValidationError("created_by is required")

        template = FollowupTemplate(
            name=name,
            description=description,
            action_type=action_type,
            template_content=template_content,
            default_priority=default_priority,
            default_days_offset=int(default_days_offset),
            trigger_on=trigger_on,
            applicability=applicability,
            is_active=is_active,
            created_by=created_by,
        )
        self.db.add(template)
        self.db.flush()
        return template

    def get_template(self, template_id: int) -> Optional[FollowupTemplate]:
        """Get a template by ID, or None if not found."""
        return (
            self.db.query(FollowupTemplate)
            .filter(FollowupTemplate.id == template_id)
            .first()
        )

    def get_template_or_raise(self, template_id: int) -> FollowupTemplate:
        template = self.get_template(template_id)
        if template is None:
            raise NotFoundError(f"Follow-up template not found: {template_id}")
        return template

    def list_templates(
        self,
        is_active: Optional[bool] = None,
        trigger_on: Optional[str] = None,
        applicability: Optional[str] = None,
    ) -> list[FollowupTemplate]:
        """List templates ordered by name."""
        query = self.db.query(FollowupTemplate)

        if is_active is not None:
            query = query.filter(FollowupTemplate.is_active == is_active)
        if trigger_on:
            query = query.filter(FollowupTemplate.trigger_on == trigger_on)
        if applicability:
            query = query.filter(FollowupTemplate.applicability == applicability)

        return query.order_by(FollowupTemplate.name.asc()).all()

    def is_template_referenced(self, template_id: int) -> bool:
        """Whether any follow-up action was created from the template."""
        return (
            self.db.query(FollowupAction.id)
            .filter(FollowupAction.template_id == template_id)
            .first()
            is not None
        )

    def update_template(self, template_id: int, **changes: Any) -> FollowupTemplate:
        """Update a template.

        Only ``is_active`` may change once an action references the
        template; create a new template for different content.

        Args:
            template_id: The template ID.
            **changes: Fields from TEMPLATE_CONTENT_FIELDS and ``is_active``.
                None values are ignored.

        Raises:
            NotFoundError: If the template does not exist.
            ValidationError: If a field is unknown or invalid.
            ConflictError: If content changes target a referenced template.
        """
        template = self.get_template_or_raise(template_id)
        changes = {k: v for k, v in changes.items() if v is not None}

        unknown = set(changes) - set(TEMPLATE_CONTENT_FIELDS) - {"is_active"}
        if unknown:
            raise ValidationError(f"Unknown template fields: {sorted(unknown)}")

        content_changes = {k: v for k, v in changes.items() if k != "is_active"}
        if content_changes and self.is_template_referenced(template_id):
            raise ConflictError(
                f"Follow-up template {template_id} is in use and cannot be edited"
            )

        if "name" in content_changes:
            content_changes["name"] = _require_name(content_changes["name"])
        if "action_type" in content_changes:
            _require_choice(content_changes["action_type"], ActionType.ALL, "action_type")
        if "default_priority" in content_changes:
            _require_choice(content_changes["default_priority"], Priority.ALL, "default_priority")
        if "trigger_on" in content_changes:
            _require_choice(content_changes["trigger_on"], TriggerEvent.ALL, "trigger_on")
        if "applicability" in content_changes:
            _require_choice(content_changes["applicability"], SubjectType.ALL, "applicability")

        for key, value in changes.items():
            setattr(template, key, value)

        template.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return template

    def deactivate_template(self, template_id: int) -> FollowupTemplate:
        """Soft-deactivate a template. Always allowed."""
        template = self.get_template_or_raise(template_id)
        template.is_active = False
        template.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        return template

    def get_templates_for_trigger(
        self, trigger_event: str, applicability: Optional[str] = None
    ) -> list[FollowupTemplate]:
        """Get active templates for a trigger, optionally scoped to a subject kind."""
        query = self.db.query(FollowupTemplate).filter(
            FollowupTemplate.trigger_on == trigger_event,
            FollowupTemplate.is_active.is_(True),
        )
        if applicability:
            query = query.filter(FollowupTemplate.applicability == applicability)
        return query.order_by(FollowupTemplate.name.asc()).all()

    def _require_template(self, template_id: int) -> FollowupTemplate:
        template = self.get_template(template_id)
        if template is None:
            raise ValidationError(f"Unknown template_id: {template_id}")
        return template
