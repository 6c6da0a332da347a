"""Versioned schemas for the JSON columns of the follow-up engine.

``FollowupRule.conditions``, ``SyncSettings.config``/``ScheduledTask.config``
and the ``details`` of audit log rows are free-form JSON in the store. Every
write goes through one of the models below so the stored shape stays
versioned and parseable.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from recruitflow_core.domain.errors import ValidationError


# ============================================================================
# Rule Conditions
# ============================================================================


class RuleConditions(BaseModel):
    """Optional attribute filter evaluated against a business event."""

    version: Literal[1] = Field(default=1, description="Schema version")
    match: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Event attributes that must be present and equal. A list value "
            "matches when the attribute equals any of its items."
        ),
    )

    model_config = {"extra": "forbid"}

    def matches(self, attributes: Optional[dict[str, Any]]) -> bool:
        attributes = attributes or {}
        for key, expected in self.match.items():
            if key not in attributes:
                return False
            actual = attributes[key]
            if isinstance(expected, list):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True


# ============================================================================
# Scheduler Config
# ============================================================================


class TaskConfig(BaseModel):
    """Executor configuration attached to sync settings and tasks."""

    version: Literal[1] = Field(default=1, description="Schema version")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Executor specific options",
    )

    model_config = {"extra": "allow"}


# ============================================================================
# Audit Details
# ============================================================================


class LogDetails(BaseModel):
    """Details payload stored on follow-up and scheduler log rows."""

    version: Literal[1] = Field(default=1, description="Schema version")

    model_config = {"extra": "allow"}


def parse_conditions(raw: Optional[dict[str, Any]]) -> Optional[RuleConditions]:
    """Parse stored or submitted rule conditions.

    Args:
        raw: Conditions JSON, or None for an unconditional rule.

    Returns:
        Parsed conditions or None.

    Raises:
        ValidationError: If the JSON does not fit the schema.
    """
    if raw is None:
        return None
    try:
        return RuleConditions.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid rule conditions: {e}") from e


def normalize_config(raw: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Validate a task config blob and return its stored form.

    Raises:
        ValidationError: If the JSON does not fit the schema.
    """
    if raw is None:
        return None
    try:
        return TaskConfig.model_validate(raw).model_dump()
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid task config: {e}") from e


def build_details(**fields: Any) -> dict[str, Any]:
    """Build a versioned details payload for an audit log row."""
    return LogDetails(**fields).model_dump()
