"""Unit tests for the follow-up rule store.

Tests cover:
1. Rule creation and validation
2. Rule updates, soft deactivation and guarded deletion
3. Trigger lookups (active rules only, oldest first)
4. Template freezing once an action references it
"""

import pytest

from recruitflow_core.domain.errors import ConflictError, NotFoundError, ValidationError
from recruitflow_core.domain.models import AssigneeType, TriggerEvent
from recruitflow_core.domain.services.followup_rules import FollowupRuleService
from tests.factories import create_action, create_rule, create_template


@pytest.fixture
def service(db_session):
    return FollowupRuleService(db=db_session)


# =============================================================================
# RULE CREATION
# =============================================================================


class TestCreateRule:
    """Tests for rule creation."""

    def test_create_rule_persists_fields(self, service):
        """A valid rule should be stored with its conditions normalized."""
        rule = service.create_rule(
            name="  Profil gesendet  ",
            trigger_event="profile_sent",
            entity_type="application",
            action_type="call",
            days_offset=2,
            priority="high",
            created_by="U1",
            conditions={"match": {"stage": ["interview", "offer"]}},
        )

        assert rule.id is not None
        assert rule.name == "Profil gesendet"
        assert rule.is_active is True
        assert rule.days_offset == 2
        assert rule.conditions == {"version": 1, "match": {"stage": ["interview", "offer"]}}

    def test_create_rule_allows_negative_offset(self, service):
        rule = service.create_rule(
            name="Vorab erinnern",
            trigger_event="job_expiring",
            entity_type="job",
            action_type="email",
            days_offset=-3,
            created_by="U1",
        )

        assert rule.days_offset == -3

    @pytest.mark.parametrize(
        "field,value",
        [
            ("trigger_event", "unknown_event"),
            ("entity_type", "customer"),
            ("action_type", "fax"),
            ("priority", "urgent"),
            ("assigned_to_type", "everyone"),
        ],
    )
    def test_create_rule_rejects_unknown_choice(self, service, field, value):
        kwargs = dict(
            name="Regel",
            trigger_event="profile_sent",
            entity_type="application",
            action_type="call",
            created_by="U1",
        )
        kwargs[field] = value

        with pytest.raises(ValidationError):
            service.create_rule(**kwargs)

    def test_create_rule_requires_name(self, service):
        with pytest.raises(ValidationError, match="name is required"):
            service.create_rule(
                name="   ",
                trigger_event="profile_sent",
                entity_type="application",
                action_type="call",
                created_by="U1",
            )

    def test_specific_user_rule_requires_user(self, service):
        """A specific_user rule without assigned_to_user_id is invalid."""
        with pytest.raises(ValidationError, match="assigned_to_user_id"):
            service.create_rule(
                name="Regel",
                trigger_event="profile_sent",
                entity_type="application",
                action_type="call",
                created_by="U1",
                assigned_to_type=AssigneeType.SPECIFIC_USER,
            )

    def test_unknown_template_is_rejected(self, service):
        with pytest.raises(ValidationError, match="Unknown template_id"):
            service.create_rule(
                name="Regel",
                trigger_event="profile_sent",
                entity_type="application",
                action_type="call",
                created_by="U1",
                template_id=999,
            )

    def test_invalid_conditions_are_rejected(self, service):
        with pytest.raises(ValidationError, match="Invalid rule conditions"):
            service.create_rule(
                name="Regel",
                trigger_event="profile_sent",
                entity_type="application",
                action_type="call",
                created_by="U1",
                conditions={"version": 2, "match": {}},
            )


# =============================================================================
# RULE UPDATES
# =============================================================================


class TestUpdateRule:
    """Tests for rule updates, deactivation and deletion."""

    def test_update_changes_only_given_fields(self, service, db_session):
        rule = create_rule(db_session, days_offset=2)

        updated = service.update_rule(rule.id, days_offset=5, priority="low")

        assert updated.days_offset == 5
        assert updated.priority == "low"
        assert updated.name == "Profil gesendet"

    def test_update_can_clear_template(self, service, db_session):
        template = create_template(db_session)
        rule = create_rule(db_session, template_id=template.id)

        updated = service.update_rule(rule.id, clear_template=True)

        assert updated.template_id is None

    def test_update_missing_rule_raises(self, service):
        with pytest.raises(NotFoundError):
            service.update_rule(404, name="x")

    def test_deactivate_removes_rule_from_trigger_lookup(self, service, db_session):
        rule = create_rule(db_session)

        service.deactivate_rule(rule.id)

        assert service.get_rules_for_trigger(TriggerEvent.PROFILE_SENT, "application") == []

    def test_delete_unreferenced_rule(self, service, db_session):
        rule = create_rule(db_session)

        service.delete_rule(rule.id)

        assert service.get_rule(rule.id) is None

    def test_delete_referenced_rule_conflicts(self, service, db_session):
        """A rule with actions must be deactivated, not deleted."""
        rule = create_rule(db_session)
        create_action(db_session, rule_id=rule.id)

        with pytest.raises(ConflictError):
            service.delete_rule(rule.id)


# =============================================================================
# TRIGGER LOOKUP
# =============================================================================


class TestRulesForTrigger:
    """Tests for the lookup used by the rule engine."""

    def test_returns_matching_active_rules_in_id_order(self, service, db_session):
        first = create_rule(db_session, name="Erste")
        second = create_rule(db_session, name="Zweite")
        create_rule(db_session, name="Inaktiv", is_active=False)
        create_rule(db_session, name="Andere", trigger_event=TriggerEvent.OFFER_SENT)
        create_rule(db_session, name="Kandidat", entity_type="candidate")

        rules = service.get_rules_for_trigger(TriggerEvent.PROFILE_SENT, "application")

        assert [r.id for r in rules] == [first.id, second.id]


# =============================================================================
# TEMPLATES
# =============================================================================


class TestTemplates:
    """Tests for template CRUD and freezing."""

    def test_create_template(self, service):
        template = service.create_template(
            name="Nachfassen",
            action_type="email",
            created_by="U1",
            template_content="Hallo!",
            trigger_on="profile_sent",
            applicability="application",
        )

        assert template.id is not None
        assert template.default_priority == "medium"

    def test_unreferenced_template_can_be_edited(self, service, db_session):
        template = create_template(db_session)

        updated = service.update_template(template.id, template_content="Neu")

        assert updated.template_content == "Neu"

    def test_referenced_template_is_frozen(self, service, db_session):
        template = create_template(db_session)
        create_action(db_session, template_id=template.id)

        with pytest.raises(ConflictError):
            service.update_template(template.id, template_content="Neu")

    def test_referenced_template_can_still_be_deactivated(self, service, db_session):
        template = create_template(db_session)
        create_action(db_session, template_id=template.id)

        updated = service.update_template(template.id, is_active=False)

        assert updated.is_active is False

    def test_unknown_template_field_is_rejected(self, service, db_session):
        template = create_template(db_session)

        with pytest.raises(ValidationError, match="Unknown template fields"):
            service.update_template(template.id, created_by="U2")

    def test_templates_for_trigger(self, service, db_session):
        create_template(db_session, name="B", trigger_on="profile_sent")
        create_template(db_session, name="A", trigger_on="profile_sent")
        create_template(db_session, name="C", trigger_on="offer_sent")
        create_template(db_session, name="D", trigger_on="profile_sent", is_active=False)

        templates = service.get_templates_for_trigger("profile_sent")

        assert [t.name for t in templates] == ["A", "B"]
