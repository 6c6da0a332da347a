"""Unit tests for the follow-up action store.

Tests cover:
1. Creation, validation and the assignment notification
2. Query filters and their defaults
3. Field edits (reminder reset on due date change)
4. Explicit cleanup of completed actions
5. Reminder claims
"""

from datetime import timedelta

import pytest

from recruitflow_core.domain.errors import NotFoundError, ValidationError
from recruitflow_core.domain.models import FollowupLog, FollowupStatus
from recruitflow_core.domain.services.clock import ensure_utc
from recruitflow_core.domain.services.followup_actions import (
    ActionFilter,
    FollowupActionCreate,
    FollowupActionService,
)
from recruitflow_core.domain.services.lookups import ApplicationSummary, NullEntityLookup
from tests.factories import T0, RecordingGateway, create_action, create_submission


class StaticLookup(NullEntityLookup):
    """Lookup answering from fixed data."""

    def application_summary(self, application_id):
        return ApplicationSummary(
            application_id=application_id,
            title="Bewerbung Backend",
            candidate_name="Erika Muster",
            job_title="Backend Entwickler",
        )

    def user_display_name(self, user_id):
        return {"U1": "Anna Recruiter", "U2": "Ben Manager"}.get(user_id)


class BrokenLookup(NullEntityLookup):
    """Lookup whose every call fails."""

    def application_summary(self, application_id):
        raise RuntimeError("lookup down")

    def user_display_name(self, user_id):
        raise RuntimeError("lookup down")


@pytest.fixture
def service(db_session, clock, gateway, test_settings):
    return FollowupActionService(
        db_session, clock=clock, gateway=gateway, settings=test_settings
    )


def _create_data(**overrides) -> FollowupActionCreate:
    data = dict(
        title="Kandidat anrufen",
        due_date=T0 + timedelta(days=2),
        action_type="call",
        assigned_to="U2",
    )
    data.update(overrides)
    return FollowupActionCreate(**data)


# =============================================================================
# CREATE
# =============================================================================


class TestCreateAction:
    """Tests for action creation."""

    def test_create_writes_log_and_notifies_assignee(self, service, gateway):
        """Assigning to someone else should notify them and link the notification."""
        action = service.create_action(_create_data(), acting_user_id="U1")

        assert action.status == FollowupStatus.PENDING
        assert action.completed is False
        assert action.reminder_sent is False
        assert action.assigned_by == "U1"
        assert ensure_utc(action.created_at) == T0

        logs = service.get_logs(action.id)
        assert [log.action_type for log in logs] == ["create"]
        assert logs[0].user_id == "U1"

        assert len(gateway.requests) == 1
        assert gateway.requests[0].user_id == "U2"
        assert gateway.requests[0].metadata == {"followup_action_id": action.id}

        links = service.get_notification_links(action.id)
        assert [(link.notification_id, link.kind) for link in links] == [("notif-1", "assigned")]

    def test_self_assignment_does_not_notify(self, service, gateway):
        service.create_action(_create_data(assigned_to="U1"), acting_user_id="U1")

        assert gateway.requests == []

    def test_failed_notification_keeps_action(self, db_session, clock, test_settings):
        """A gateway failure must not fail the creation."""
        service = FollowupActionService(
            db_session,
            clock=clock,
            gateway=RecordingGateway(fail=True),
            settings=test_settings,
        )

        action = service.create_action(_create_data(), acting_user_id="U1")

        assert service.get_action(action.id) is not None
        assert service.get_notification_links(action.id) == []

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"title": "  "}, "title is required"),
            ({"title": "x" * 513}, "title must be at most"),
            ({"action_type": "fax"}, "Invalid action_type"),
            ({"priority": "urgent"}, "Invalid priority"),
            ({"assigned_to": ""}, "assigned_to is required"),
        ],
    )
    def test_invalid_input_persists_nothing(self, service, db_session, overrides, message):
        with pytest.raises(ValidationError, match=message):
            service.create_action(_create_data(**overrides), acting_user_id="U1")

        assert service.get_actions(ActionFilter(include_completed=True)) == []
        assert db_session.query(FollowupLog).count() == 0

    def test_more_than_one_subject_is_rejected(self, service):
        with pytest.raises(ValidationError, match="At most one subject"):
            service.create_action(
                _create_data(candidate_id="K1", application_id="A1"), acting_user_id="U1"
            )

    def test_composite_subjects_allowed_when_requested(self, service):
        action = service.create_action(
            _create_data(candidate_id="K1", application_id="A1", allow_composite=True),
            acting_user_id="U1",
        )

        assert action.candidate_id == "K1"
        assert action.application_id == "A1"


# =============================================================================
# QUERIES
# =============================================================================


class TestGetActions:
    """Tests for action queries."""

    def test_default_filter_excludes_completed(self, service, db_session):
        open_action = create_action(db_session)
        create_action(db_session, status=FollowupStatus.COMPLETED)
        cancelled = create_action(db_session, status=FollowupStatus.CANCELLED)

        ids = [a.id for a in service.get_actions()]

        assert ids == [open_action.id, cancelled.id]

    def test_include_completed(self, service, db_session):
        create_action(db_session)
        create_action(db_session, status=FollowupStatus.COMPLETED)

        assert len(service.get_actions(ActionFilter(include_completed=True))) == 2

    def test_status_list_filter(self, service, db_session):
        create_action(db_session, status=FollowupStatus.PENDING)
        done = create_action(db_session, status=FollowupStatus.COMPLETED)
        cancelled = create_action(db_session, status=FollowupStatus.CANCELLED)

        actions = service.get_actions(
            ActionFilter(status=[FollowupStatus.COMPLETED, FollowupStatus.CANCELLED])
        )

        assert {a.id for a in actions} == {done.id, cancelled.id}

    def test_results_ordered_by_due_date(self, service, db_session):
        later = create_action(db_session, due_date=T0 + timedelta(days=3))
        sooner = create_action(db_session, due_date=T0 + timedelta(days=1))

        assert [a.id for a in service.get_actions()] == [sooner.id, later.id]

    def test_subject_user_and_due_window_filters(self, service, db_session):
        match = create_action(
            db_session, assigned_to="U2", application_id="A1", due_date=T0 + timedelta(days=1)
        )
        create_action(db_session, assigned_to="U3", application_id="A1")
        create_action(db_session, assigned_to="U2", application_id="A2")
        create_action(
            db_session, assigned_to="U2", application_id="A1", due_date=T0 + timedelta(days=9)
        )

        actions = service.get_actions(
            ActionFilter(
                user_id="U2",
                application_id="A1",
                due_after=T0,
                due_before=T0 + timedelta(days=2),
            )
        )

        assert [a.id for a in actions] == [match.id]

    def test_limit_and_offset(self, service, db_session):
        ids = [
            create_action(db_session, due_date=T0 + timedelta(days=i)).id for i in range(1, 5)
        ]

        page = service.get_actions(ActionFilter(limit=2, offset=1))

        assert [a.id for a in page] == ids[1:3]

    def test_details_resolve_names(self, db_session, clock, test_settings):
        service = FollowupActionService(
            db_session, clock=clock, lookup=StaticLookup(), settings=test_settings
        )
        create_action(db_session, application_id="A1", assigned_to="U2", assigned_by="U1")

        [details] = service.get_actions_with_details()

        assert details.application_title == "Bewerbung Backend"
        assert details.candidate_name == "Erika Muster"
        assert details.job_title == "Backend Entwickler"
        assert details.assigned_to_name == "Ben Manager"
        assert details.assigned_by_name == "Anna Recruiter"

    def test_details_survive_failing_lookup(self, db_session, clock, test_settings):
        """A failing lookup leaves the names empty instead of failing the query."""
        service = FollowupActionService(
            db_session, clock=clock, lookup=BrokenLookup(), settings=test_settings
        )
        create_action(db_session, application_id="A1")

        [details] = service.get_actions_with_details()

        assert details.application_title is None
        assert details.assigned_to_name is None


# =============================================================================
# UPDATE / CLEANUP
# =============================================================================


class TestUpdateAction:
    """Tests for field edits."""

    def test_update_logs_changes(self, service, db_session):
        action = create_action(db_session)

        service.update_action(action.id, "U1", title="Neu", notes="Notiz")

        assert action.title == "Neu"
        assert action.notes == "Notiz"
        [entry] = service.get_logs(action.id)
        assert entry.action_type == "update"
        assert entry.details["changes"] == {"title": "Neu", "notes": "Notiz"}

    def test_moving_due_date_resets_reminder(self, service, db_session):
        action = create_action(db_session, reminder_sent=True, reminder_date=T0)

        service.update_action(action.id, "U1", due_date=T0 + timedelta(days=7))

        assert action.reminder_sent is False
        assert action.reminder_date is None
        assert ensure_utc(action.due_date) == T0 + timedelta(days=7)

    def test_reassignment_notifies_new_assignee(self, service, db_session, gateway):
        action = create_action(db_session, assigned_to="U1")

        service.update_action(action.id, "U1", assigned_to="U3")

        assert [r.user_id for r in gateway.requests] == ["U3"]

    def test_empty_update_is_noop(self, service, db_session):
        action = create_action(db_session)

        service.update_action(action.id, "U1")

        assert service.get_logs(action.id) == []

    def test_update_missing_action(self, service):
        with pytest.raises(NotFoundError):
            service.update_action(999, "U1", title="x")

    def test_update_rejects_blank_title(self, service, db_session):
        action = create_action(db_session)

        with pytest.raises(ValidationError):
            service.update_action(action.id, "U1", title=" ")


class TestDeleteCompleted:
    """Tests for the explicit cleanup of completed actions."""

    def test_deletes_completed_and_keeps_audit_trail(self, service, db_session):
        done = create_action(
            db_session, status=FollowupStatus.COMPLETED, completed_at=T0 - timedelta(days=10)
        )
        service.log(done.id, "complete", "U1")
        keep = create_action(db_session)

        deleted = service.delete_completed("U1")

        assert deleted == 1
        assert service.get_action(done.id) is None
        assert service.get_action(keep.id) is not None
        db_session.expire_all()
        [entry] = service.get_logs(done.id)
        assert entry.action_type == "complete"
        assert entry.action is None

    def test_respects_age_threshold(self, service, db_session):
        create_action(
            db_session, status=FollowupStatus.COMPLETED, completed_at=T0 - timedelta(days=1)
        )
        old = create_action(
            db_session, status=FollowupStatus.COMPLETED, completed_at=T0 - timedelta(days=40)
        )

        deleted = service.delete_completed("U1", older_than_days=30)

        assert deleted == 1
        assert service.get_action(old.id) is None

    def test_keeps_actions_linked_from_submissions(self, service, db_session):
        done = create_action(db_session, status=FollowupStatus.COMPLETED, completed_at=T0)
        create_submission(db_session, followup_action_id=done.id)

        assert service.delete_completed("U1") == 0
        assert service.get_action(done.id) is not None


# =============================================================================
# REMINDER CLAIMS
# =============================================================================


class TestReminderClaims:
    """Tests for the reminder lease."""

    def test_claim_is_exclusive_until_lease_expires(self, service, db_session):
        action = create_action(db_session, due_date=T0 - timedelta(hours=1))

        assert service.claim_reminder(action.id, T0, lease_seconds=300) is True
        assert service.claim_reminder(action.id, T0 + timedelta(seconds=10), 300) is False
        assert service.claim_reminder(action.id, T0 + timedelta(seconds=301), 300) is True

    def test_mark_sent_is_recorded_once(self, service, db_session):
        action = create_action(db_session, due_date=T0 - timedelta(hours=1))

        assert service.mark_reminder_sent(action.id, T0, "notif-9") is True
        assert service.mark_reminder_sent(action.id, T0, "notif-10") is False

        db_session.refresh(action)
        assert action.reminder_sent is True
        assert action.reminder_claimed_at is None
        assert [e.action_type for e in service.get_logs(action.id)] == ["remind"]
        assert [link.kind for link in service.get_notification_links(action.id)] == ["reminder"]

    def test_released_claim_can_be_retaken(self, service, db_session):
        action = create_action(db_session, due_date=T0 - timedelta(hours=1))
        service.claim_reminder(action.id, T0, 300)

        service.release_reminder_claim(action.id)

        assert service.claim_reminder(action.id, T0, 300) is True

    def test_find_due_unreminded_skips_closed_and_reminded(self, service, db_session):
        due = create_action(db_session, due_date=T0 - timedelta(minutes=1))
        create_action(db_session, due_date=T0 + timedelta(minutes=1))
        create_action(db_session, due_date=T0 - timedelta(days=1), reminder_sent=True)
        create_action(
            db_session, due_date=T0 - timedelta(days=1), status=FollowupStatus.CANCELLED
        )

        assert [a.id for a in service.find_due_unreminded(T0)] == [due.id]
