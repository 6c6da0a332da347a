"""Follow-up rule and template API routes."""

from typing import Optional

from fastapi import APIRouter, Query, status

from recruitflow_core.api.deps import RuleServiceDep
from recruitflow_core.api.schemas.followup import (
    FollowupRuleCreateRequest,
    FollowupRuleListResponse,
    FollowupRuleResponse,
    FollowupRuleUpdateRequest,
    FollowupTemplateCreateRequest,
    FollowupTemplateListResponse,
    FollowupTemplateResponse,
    FollowupTemplateUpdateRequest,
)

router = APIRouter(tags=["followup-rules"])


# =============================================================================
# RULES
# =============================================================================


@router.get("/followup-rules", response_model=FollowupRuleListResponse)
def list_rules(
    rules: RuleServiceDep,
    is_active: Optional[bool] = Query(None),
    trigger_event: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
):
    """List rules, newest first."""
    items = rules.list_rules(
        is_active=is_active, trigger_event=trigger_event, entity_type=entity_type
    )
    return FollowupRuleListResponse(
        rules=[FollowupRuleResponse.from_model(r) for r in items],
        total=len(items),
    )


@router.post(
    "/followup-rules",
    response_model=FollowupRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_rule(request: FollowupRuleCreateRequest, rules: RuleServiceDep):
    """Create a rule."""
    rule = rules.create_rule(
        name=request.name,
        trigger_event=request.trigger_event,
        entity_type=request.entity_type,
        action_type=request.action_type,
        created_by=request.acting_user_id,
        days_offset=request.days_offset,
        priority=request.priority,
        description=request.description,
        template_id=request.template_id,
        assigned_to_type=request.assigned_to_type,
        assigned_to_user_id=request.assigned_to_user_id,
        conditions=request.conditions,
        is_active=request.is_active,
    )
    return FollowupRuleResponse.from_model(rule)


@router.get("/followup-rules/{rule_id}", response_model=FollowupRuleResponse)
def get_rule(rule_id: int, rules: RuleServiceDep):
    return FollowupRuleResponse.from_model(rules.get_rule_or_raise(rule_id))


@router.patch("/followup-rules/{rule_id}", response_model=FollowupRuleResponse)
def update_rule(rule_id: int, request: FollowupRuleUpdateRequest, rules: RuleServiceDep):
    """Update a rule. Omitted fields stay unchanged."""
    rule = rules.update_rule(rule_id, **request.model_dump())
    return FollowupRuleResponse.from_model(rule)


@router.post("/followup-rules/{rule_id}/deactivate", response_model=FollowupRuleResponse)
def deactivate_rule(rule_id: int, rules: RuleServiceDep):
    """Deactivate a rule. Actions it already created are unaffected."""
    return FollowupRuleResponse.from_model(rules.deactivate_rule(rule_id))


@router.delete("/followup-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: int, rules: RuleServiceDep):
    """Delete a rule that no action references."""
    rules.delete_rule(rule_id)


# =============================================================================
# TEMPLATES
# =============================================================================


@router.get("/followup-templates", response_model=FollowupTemplateListResponse)
def list_templates(
    rules: RuleServiceDep,
    is_active: Optional[bool] = Query(None),
    trigger_on: Optional[str] = Query(None),
    applicability: Optional[str] = Query(None),
):
    """List templates ordered by name."""
    items = rules.list_templates(
        is_active=is_active, trigger_on=trigger_on, applicability=applicability
    )
    return FollowupTemplateListResponse(
        templates=[FollowupTemplateResponse.from_model(t) for t in items],
        total=len(items),
    )


@router.post(
    "/followup-templates",
    response_model=FollowupTemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_template(request: FollowupTemplateCreateRequest, rules: RuleServiceDep):
    """Create a template."""
    template = rules.create_template(
        name=request.name,
        action_type=request.action_type,
        created_by=request.acting_user_id,
        template_content=request.template_content,
        description=request.description,
        default_priority=request.default_priority,
        default_days_offset=request.default_days_offset,
        trigger_on=request.trigger_on,
        applicability=request.applicability,
        is_active=request.is_active,
    )
    return FollowupTemplateResponse.from_model(template)


@router.get("/followup-templates/{template_id}", response_model=FollowupTemplateResponse)
def get_template(template_id: int, rules: RuleServiceDep):
    return FollowupTemplateResponse.from_model(rules.get_template_or_raise(template_id))


@router.patch("/followup-templates/{template_id}", response_model=FollowupTemplateResponse)
def update_template(
    template_id: int, request: FollowupTemplateUpdateRequest, rules: RuleServiceDep
):
    """Update a template. Referenced templates only accept ``is_active``."""
    template = rules.update_template(template_id, **request.model_dump(exclude_none=True))
    return FollowupTemplateResponse.from_model(template)


@router.post(
    "/followup-templates/{template_id}/deactivate",
    response_model=FollowupTemplateResponse,
)
def deactivate_template(template_id: int, rules: RuleServiceDep):
    return FollowupTemplateResponse.from_model(rules.deactivate_template(template_id))
