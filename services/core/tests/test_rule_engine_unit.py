"""Unit tests for the rule engine.

Tests cover:
1. Materializing actions from rules (due date, title, subject keys)
2. Inactive rules and rule conditions
3. Assignee resolution with fallback
4. Business event fan-out and failure isolation
"""

from datetime import timedelta

import pytest

from recruitflow_core.domain.errors import ValidationError
from recruitflow_core.domain.models import AssigneeType, FollowupAction, TriggerEvent
from recruitflow_core.domain.services.clock import ensure_utc
from recruitflow_core.domain.services.rule_engine import (
    BusinessEvent,
    RuleEngine,
    TriggerSubject,
)
from tests.factories import T0, create_rule, create_template


class StaticResolver:
    """Resolver mapping roles to fixed users."""

    def __init__(self, users):
        self.users = users
        self.calls = []

    def resolve(self, role, subject_kind, subject_id, triggered_by):
        self.calls.append((role, subject_kind, subject_id, triggered_by))
        return self.users.get(role)


class FailingResolver:
    def resolve(self, role, subject_kind, subject_id, triggered_by):
        raise RuntimeError("directory unavailable")


@pytest.fixture
def engine(db_session, clock, gateway, test_settings):
    return RuleEngine(db_session, clock=clock, gateway=gateway, settings=test_settings)


# =============================================================================
# TRIGGER SUBJECT
# =============================================================================


class TestTriggerSubject:
    def test_foreign_keys(self):
        assert TriggerSubject.application("A1").foreign_keys() == {"application_id": "A1"}
        assert TriggerSubject.talent_pool("T1").foreign_keys() == {"talent_pool_id": "T1"}

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            TriggerSubject("customer", "C1")

    def test_empty_id_is_rejected(self):
        with pytest.raises(ValidationError):
            TriggerSubject.job("")


# =============================================================================
# MATERIALIZE
# =============================================================================


class TestMaterialize:
    """Tests for turning one rule into one action."""

    def test_creates_action_from_rule(self, engine, db_session):
        rule = create_rule(db_session, name="Profil gesendet", days_offset=2)

        action_id = engine.materialize(rule, TriggerSubject.application("A1"), "U1")

        action = db_session.get(FollowupAction, action_id)
        assert action.title == "Nachfassaktion: Profil gesendet"
        assert ensure_utc(action.due_date) == T0 + timedelta(days=2)
        assert action.application_id == "A1"
        assert action.candidate_id is None
        assert action.rule_id == rule.id
        assert action.assigned_to == "U1"
        assert action.assigned_by == "U1"
        assert action.priority == "high"

    def test_negative_offset_makes_action_overdue(self, engine, db_session):
        rule = create_rule(db_session, days_offset=-1)

        action_id = engine.materialize(rule, TriggerSubject.application("A1"), "U1")

        action = db_session.get(FollowupAction, action_id)
        assert ensure_utc(action.due_date) == T0 - timedelta(days=1)

    def test_template_supplies_title_and_notes(self, engine, db_session):
        template = create_template(
            db_session, name="Feedback einholen", template_content="Nach Feedback fragen."
        )
        rule = create_rule(db_session, template_id=template.id)

        action_id = engine.materialize(rule, TriggerSubject.application("A1"), "U1")

        action = db_session.get(FollowupAction, action_id)
        assert action.title == "Feedback einholen"
        assert action.notes == "Nach Feedback fragen."
        assert action.template_id == template.id

    def test_inactive_rule_writes_nothing(self, engine, db_session):
        rule = create_rule(db_session, is_active=False)

        assert engine.materialize(rule, TriggerSubject.application("A1"), "U1") is None
        assert db_session.query(FollowupAction).count() == 0

    def test_conditions_must_match(self, engine, db_session):
        rule = create_rule(
            db_session, conditions={"version": 1, "match": {"stage": ["interview", "offer"]}}
        )
        subject = TriggerSubject.application("A1")

        assert engine.materialize(rule, subject, "U1", {"stage": "screening"}) is None
        assert engine.materialize(rule, subject, "U1", {}) is None
        assert engine.materialize(rule, subject, "U1", {"stage": "offer"}) is not None


# =============================================================================
# ASSIGNEE
# =============================================================================


class TestResolveAssignee:
    """Tests for assignee selection."""

    def test_specific_user(self, engine, db_session):
        rule = create_rule(
            db_session,
            assigned_to_type=AssigneeType.SPECIFIC_USER,
            assigned_to_user_id="U9",
        )

        assert engine.resolve_assignee(rule, TriggerSubject.application("A1"), "U1") == "U9"

    def test_role_resolved_by_resolver(self, db_session, clock, test_settings):
        resolver = StaticResolver({AssigneeType.MANAGER: "M1"})
        engine = RuleEngine(db_session, clock=clock, resolver=resolver, settings=test_settings)
        rule = create_rule(db_session, assigned_to_type=AssigneeType.MANAGER)

        assignee = engine.resolve_assignee(rule, TriggerSubject.job("J1"), "U1")

        assert assignee == "M1"
        assert resolver.calls == [("manager", "job", "J1", "U1")]

    def test_unresolved_role_falls_back_to_actor(self, engine, db_session, caplog):
        rule = create_rule(db_session, assigned_to_type=AssigneeType.RECRUITER)

        with caplog.at_level("WARNING"):
            assignee = engine.resolve_assignee(rule, TriggerSubject.candidate("K1"), "U1")

        assert assignee == "U1"
        assert "falling back" in caplog.text

    def test_failing_resolver_falls_back_to_actor(self, db_session, clock, test_settings):
        engine = RuleEngine(
            db_session, clock=clock, resolver=FailingResolver(), settings=test_settings
        )
        rule = create_rule(db_session, assigned_to_type=AssigneeType.MANAGER)

        assert engine.resolve_assignee(rule, TriggerSubject.job("J1"), "U1") == "U1"


# =============================================================================
# BUSINESS EVENTS
# =============================================================================


class TestOnBusinessEvent:
    """Tests for event fan-out."""

    def test_applies_every_matching_rule(self, engine, db_session):
        first = create_rule(db_session, name="Anrufen")
        second = create_rule(db_session, name="Mailen", action_type="email")
        create_rule(db_session, name="Angebot", trigger_event=TriggerEvent.OFFER_SENT)
        create_rule(db_session, name="Job", entity_type="job")

        ids = engine.on_business_event(
            BusinessEvent(
                type=TriggerEvent.PROFILE_SENT,
                subject=TriggerSubject.application("A1"),
                triggered_by="U1",
            )
        )

        actions = [db_session.get(FollowupAction, i) for i in ids]
        assert [a.rule_id for a in actions] == [first.id, second.id]

    def test_no_rules_creates_nothing(self, engine, db_session):
        ids = engine.on_business_event(
            BusinessEvent(
                type=TriggerEvent.CANDIDATE_ADDED,
                subject=TriggerSubject.candidate("K1"),
                triggered_by="U1",
            )
        )

        assert ids == []

    def test_unknown_event_type_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.on_business_event(
                BusinessEvent(
                    type="candidate_hired",
                    subject=TriggerSubject.candidate("K1"),
                    triggered_by="U1",
                )
            )

    def test_missing_actor_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.on_business_event(
                BusinessEvent(
                    type=TriggerEvent.PROFILE_SENT,
                    subject=TriggerSubject.application("A1"),
                    triggered_by="",
                )
            )

    def test_broken_rule_does_not_block_others(self, engine, db_session):
        """A rule that cannot materialize is skipped, the rest still run."""
        create_rule(
            db_session,
            name="Kaputt",
            assigned_to_type=AssigneeType.SPECIFIC_USER,
            assigned_to_user_id=None,
        )
        good = create_rule(db_session, name="Gut")

        ids = engine.on_business_event(
            BusinessEvent(
                type=TriggerEvent.PROFILE_SENT,
                subject=TriggerSubject.application("A1"),
                triggered_by="U1",
            )
        )

        assert len(ids) == 1
        assert db_session.get(FollowupAction, ids[0]).rule_id == good.id

    def test_failed_flush_does_not_poison_later_rules(self, engine, db_session, monkeypatch):
        create_rule(db_session, name="Kaputt")
        good = create_rule(db_session, name="Gut")
        materialize = engine.materialize

        def flush_fails_for_first_rule(rule, *args):
            if rule.name == "Kaputt":
                db_session.add(FollowupAction(title="ohne Pflichtfelder"))
                db_session.flush()
            return materialize(rule, *args)

        monkeypatch.setattr(engine, "materialize", flush_fails_for_first_rule)

        ids = engine.on_business_event(
            BusinessEvent(
                type=TriggerEvent.PROFILE_SENT,
                subject=TriggerSubject.application("A1"),
                triggered_by="U1",
            )
        )
        db_session.commit()

        assert len(ids) == 1
        assert db_session.query(FollowupAction).one().rule_id == good.id
