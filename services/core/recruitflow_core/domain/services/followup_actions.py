"""Action repository for follow-up actions.

Provides creation with validation and assignment notification, filtered
queries (plain and with resolved display names), edits, cleanup of
completed items, the audit log and the reminder claim primitives used by
the sweep.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from recruitflow_core.config import Settings, get_settings
from recruitflow_core.domain.errors import NotFoundError, ValidationError
from recruitflow_core.domain.models import (
    ActionType,
    FollowupAction,
    FollowupLog,
    FollowupLogType,
    FollowupStatus,
    NotificationFollowupLink,
    Priority,
    ProfileSubmissionFollowup,
)
from recruitflow_core.domain.schemas.extensions import build_details
from recruitflow_core.domain.services.blocking import run_with_timeout
from recruitflow_core.domain.services.clock import Clock, ensure_utc, get_clock
from recruitflow_core.domain.services.lookups import (
    EntityLookup,
    NullEntityLookup,
    safe_lookup,
)
from recruitflow_core.domain.services.notifications import (
    TYPE_FOLLOWUP,
    TYPE_FOLLOWUP_REMINDER,
    NotificationGateway,
    NotificationRequest,
    NullNotificationGateway,
)

logger = logging.getLogger(__name__)

# User id recorded on log rows written by background sweeps
SYSTEM_USER = "system"

MAX_TITLE_LENGTH = 512

SUBJECT_FIELDS = ("candidate_id", "application_id", "job_id", "talent_pool_id")


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class FollowupActionCreate:
    """Input for creating a follow-up action.

    ``assigned_by`` is not part of the input; it is the acting user.
    """

    title: str
    due_date: datetime
    action_type: str
    assigned_to: str
    description: Optional[str] = None
    priority: str = Priority.MEDIUM
    candidate_id: Optional[str] = None
    application_id: Optional[str] = None
    job_id: Optional[str] = None
    talent_pool_id: Optional[str] = None
    notes: Optional[str] = None
    rule_id: Optional[int] = None
    template_id: Optional[int] = None
    # Permit more than one subject foreign key
    allow_composite: bool = False


@dataclass
class ActionFilter:
    """Filter for follow-up action queries.

    Without ``status`` and with ``include_completed`` false, completed
    actions are excluded.
    """

    user_id: Optional[str] = None
    candidate_id: Optional[str] = None
    application_id: Optional[str] = None
    job_id: Optional[str] = None
    talent_pool_id: Optional[str] = None
    status: Optional[Union[str, list[str]]] = None
    priority: Optional[str] = None
    due_before: Optional[datetime] = None
    due_after: Optional[datetime] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    include_completed: bool = False


@dataclass
class FollowupActionDetails:
    """A follow-up action with display names resolved through lookups."""

    action: FollowupAction
    candidate_name: Optional[str] = None
    application_title: Optional[str] = None
    job_title: Optional[str] = None
    talent_pool_name: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assigned_by_name: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# NOTIFICATION PAYLOADS
# =============================================================================


def _notification_priority(action: FollowupAction) -> str:
    return "high" if action.priority == Priority.HIGH else "normal"


def _action_link(action: FollowupAction) -> str:
    return f"/dashboard/followups/{action.id}"


def build_assignment_request(action: FollowupAction) -> NotificationRequest:
    """Notification announcing a newly assigned action."""
    due = ensure_utc(action.due_date)
    return NotificationRequest(
        user_id=action.assigned_to,
        title=f"Neue Nachfassaktion: {action.title}",
        message=(
            f'Dir wurde eine neue Nachfassaktion zugewiesen: "{action.title}". '
            f"Fällig am {due:%d.%m.%Y}."
        ),
        type=TYPE_FOLLOWUP,
        priority=_notification_priority(action),
        link=_action_link(action),
        metadata={"followup_action_id": action.id},
    )


def build_reminder_request(action: FollowupAction) -> NotificationRequest:
    """Notification reminding the assignee that an action is due."""
    return NotificationRequest(
        user_id=action.assigned_to,
        title=f"Erinnerung: {action.title}",
        message=f'Die Nachfassaktion "{action.title}" ist jetzt fällig.',
        type=TYPE_FOLLOWUP_REMINDER,
        priority=_notification_priority(action),
        link=_action_link(action),
        metadata={"followup_action_id": action.id},
    )


# =============================================================================
# SERVICE
# =============================================================================


class FollowupActionService:
    """Service for follow-up action storage and queries."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        gateway: Optional[NotificationGateway] = None,
        lookup: Optional[EntityLookup] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the action service.

        Args:
            db: SQLAlchemy database session.
            clock: Time source (defaults to the system clock).
            gateway: Notification gateway for assignment notifications.
            lookup: Entity lookup for display names.
            settings: Settings supplying dispatch and lookup timeouts.
        """
        self.db = db
        self.clock = clock or get_clock()
        self.gateway = gateway or NullNotificationGateway()
        self.lookup = lookup or NullEntityLookup()
        self.settings = settings or get_settings()

    # =========================================================================
    # CREATE
    # =========================================================================

    def validate_create(self, data: FollowupActionCreate, acting_user_id: str) -> None:
        """Validate creation input.

        Raises:
            ValidationError: If any field is invalid.
        """
        if not acting_user_id:
            raise ValidationError("acting_user_id is required")
        title = (data.title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
        if not isinstance(data.due_date, datetime):
            raise ValidationError("due_date must be a datetime")
        if data.action_type not in ActionType.ALL:
            raise ValidationError(f"Invalid action_type: {data.action_type}")
        if data.priority not in Priority.ALL:
            raise ValidationError(f"Invalid priority: {data.priority}")
        if not data.assigned_to:
            raise ValidationError("assigned_to is required")

        subjects = [name for name in SUBJECT_FIELDS if getattr(data, name)]
        if len(subjects) > 1 and not data.allow_composite:
            raise ValidationError(
                f"At most one subject may be set, got {', '.join(subjects)}"
            )

    def create_action(
        self, data: FollowupActionCreate, acting_user_id: str
    ) -> FollowupAction:
        """Create a follow-up action.

        Persists the action, writes a ``create`` log entry and notifies the
        assignee when it differs from the acting user. A failed
        notification never fails the creation.

        Args:
            data: Creation input.
            acting_user_id: The user creating the action (``assigned_by``).

        Returns:
            The created FollowupAction.

        Raises:
            ValidationError: If the input is invalid. Nothing is persisted.
        """
        self.validate_create(data, acting_user_id)
        now = self.clock.now()

        action = FollowupAction(
            title=data.title.strip(),
            description=data.description,
            due_date=ensure_utc(data.due_date),
            priority=data.priority,
            action_type=data.action_type,
            assigned_to=data.assigned_to,
            assigned_by=acting_user_id,
            status=FollowupStatus.PENDING,
            completed=False,
            reminder_sent=False,
            candidate_id=data.candidate_id,
            application_id=data.application_id,
            job_id=data.job_id,
            talent_pool_id=data.talent_pool_id,
            notes=data.notes,
            rule_id=data.rule_id,
            template_id=data.template_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(action)
        self.db.flush()

        self.log(
            action.id,
            FollowupLogType.CREATE,
            acting_user_id,
            {"title": action.title, "assigned_to": action.assigned_to},
        )

        if action.assigned_to != acting_user_id:
            self.notify_assignee(action)

        logger.info(
            "Follow-up action created",
            extra={
                "action_id": action.id,
                "assigned_to": action.assigned_to,
                "rule_id": action.rule_id,
            },
        )
        return action

    def notify_assignee(self, action: FollowupAction) -> Optional[str]:
        """Send the assignment notification and link it to the action.

        Returns:
            The notification id, or None if dispatch failed.
        """
        try:
            notification_id = run_with_timeout(
                self.gateway.notify_user,
                build_assignment_request(action),
                timeout=self.settings.notification_timeout_seconds,
            )
        except Exception as e:
            logger.warning(
                "Assignment notification failed",
                extra={"action_id": action.id, "error": f"{type(e).__name__}: {e}"},
            )
            return None

        if notification_id:
            self.add_notification_link(action.id, notification_id, kind="assigned")
        return notification_id

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_action(self, action_id: int) -> Optional[FollowupAction]:
        """Get an action by ID, or None if not found."""
        return (
            self.db.query(FollowupAction).filter(FollowupAction.id == action_id).first()
        )

    def get_action_or_raise(self, action_id: int) -> FollowupAction:
        action = self.get_action(action_id)
        if action is None:
            raise NotFoundError(f"Follow-up action not found: {action_id}")
        return action

    def get_actions(self, filter: Optional[ActionFilter] = None) -> list[FollowupAction]:
        """Query actions ordered by ascending due date.

        Args:
            filter: Query filter. Defaults exclude completed actions.

        Returns:
            List of matching actions.
        """
        f = filter or ActionFilter()
        query = self.db.query(FollowupAction)

        if f.user_id:
            query = query.filter(FollowupAction.assigned_to == f.user_id)
        if f.candidate_id:
            query = query.filter(FollowupAction.candidate_id == f.candidate_id)
        if f.application_id:
            query = query.filter(FollowupAction.application_id == f.application_id)
        if f.job_id:
            query = query.filter(FollowupAction.job_id == f.job_id)
        if f.talent_pool_id:
            query = query.filter(FollowupAction.talent_pool_id == f.talent_pool_id)

        if f.status:
            if isinstance(f.status, (list, tuple, set)):
                query = query.filter(FollowupAction.status.in_(list(f.status)))
            else:
                query = query.filter(FollowupAction.status == f.status)
        elif not f.include_completed:
            query = query.filter(FollowupAction.status != FollowupStatus.COMPLETED)

        if f.priority:
            query = query.filter(FollowupAction.priority == f.priority)
        if f.due_before is not None:
            query = query.filter(FollowupAction.due_date <= ensure_utc(f.due_before))
        if f.due_after is not None:
            query = query.filter(FollowupAction.due_date >= ensure_utc(f.due_after))

        query = query.order_by(FollowupAction.due_date.asc(), FollowupAction.id.asc())

        if f.offset:
            query = query.offset(f.offset)
        if f.limit:
            query = query.limit(f.limit)

        return query.all()

    def get_actions_with_details(
        self, filter: Optional[ActionFilter] = None
    ) -> list[FollowupActionDetails]:
        """Query actions and resolve display names for each.

        Missing entities or failing lookups leave the name as None.
        """
        timeout = self.settings.lookup_timeout_seconds
        results = []

        for action in self.get_actions(filter):
            details = FollowupActionDetails(action=action)

            if action.candidate_id:
                details.candidate_name = safe_lookup(
                    self.lookup.candidate_name, action.candidate_id, timeout=timeout
                )
            if action.application_id:
                summary = safe_lookup(
                    self.lookup.application_summary, action.application_id, timeout=timeout
                )
                if summary is not None:
                    details.application_title = summary.title
                    details.candidate_name = details.candidate_name or summary.candidate_name
                    details.job_title = summary.job_title
            if action.job_id:
                details.job_title = safe_lookup(
                    self.lookup.job_title, action.job_id, timeout=timeout
                )
            if action.talent_pool_id:
                details.talent_pool_name = safe_lookup(
                    self.lookup.talent_pool_name, action.talent_pool_id, timeout=timeout
                )

            details.assigned_to_name = safe_lookup(
                self.lookup.user_display_name, action.assigned_to, timeout=timeout
            )
            details.assigned_by_name = safe_lookup(
                self.lookup.user_display_name, action.assigned_by, timeout=timeout
            )
            results.append(details)

        return results

    # =========================================================================
    # UPDATE / CLEANUP
    # =========================================================================

    def update_action(
        self,
        action_id: int,
        acting_user_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
        priority: Optional[str] = None,
        action_type: Optional[str] = None,
        assigned_to: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FollowupAction:
        """Edit the fields of an action. Status changes go through the lifecycle.

        Moving the due date starts a new due state, so the reminder fields
        are reset and the action is reminded again once due.

        Raises:
            NotFoundError: If the action does not exist.
            ValidationError: If any field is invalid.
        """
        action = self.get_action_or_raise(action_id)
        changes: dict[str, Any] = {}

        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError("title is required")
            if len(title) > MAX_TITLE_LENGTH:
                raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if priority is not None:
            if priority not in Priority.ALL:
                raise ValidationError(f"Invalid priority: {priority}")
            changes["priority"] = priority
        if action_type is not None:
            if action_type not in ActionType.ALL:
                raise ValidationError(f"Invalid action_type: {action_type}")
            changes["action_type"] = action_type
        if assigned_to is not None:
            if not assigned_to:
                raise ValidationError("assigned_to must not be empty")
            changes["assigned_to"] = assigned_to
        if notes is not None:
            changes["notes"] = notes
        if due_date is not None:
            changes["due_date"] = ensure_utc(due_date)

        if not changes:
            return action

        previous_assignee = action.assigned_to
        for key, value in changes.items():
            setattr(action, key, value)

        if "due_date" in changes:
            action.reminder_sent = False
            action.reminder_date = None
            action.reminder_claimed_at = None

        action.updated_at = self.clock.now()
        self.db.flush()

        logged = {
            k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in changes.items()
        }
        self.log(action.id, FollowupLogType.UPDATE, acting_user_id, {"changes": logged})

        if (
            "assigned_to" in changes
            and action.assigned_to != previous_assignee
            and action.assigned_to != acting_user_id
        ):
            self.notify_assignee(action)

        return action

    def delete_completed(
        self, acting_user_id: str, older_than_days: Optional[int] = None
    ) -> int:
        """Delete completed actions (explicit user cleanup).

        Actions still linked from a profile submission are kept. Notification
        links of deleted actions go with them; their log rows stay.

        Args:
            acting_user_id: The user requesting the cleanup.
            older_than_days: Only delete actions completed at least this
                many days ago.

        Returns:
            Number of deleted actions.
        """
        query = self.db.query(FollowupAction.id).filter(
            FollowupAction.status == FollowupStatus.COMPLETED,
            ~FollowupAction.id.in_(
                select(ProfileSubmissionFollowup.followup_action_id).where(
                    ProfileSubmissionFollowup.followup_action_id.isnot(None)
                )
            ),
        )
        if older_than_days is not None:
            cutoff = self.clock.now() - timedelta(days=older_than_days)
            query = query.filter(FollowupAction.completed_at <= cutoff)

        ids = [row.id for row in query.all()]
        if not ids:
            return 0

        self.db.query(NotificationFollowupLink).filter(
            NotificationFollowupLink.followup_action_id.in_(ids)
        ).delete(synchronize_session=False)
        deleted = (
            self.db.query(FollowupAction)
            .filter(FollowupAction.id.in_(ids))
            .delete(synchronize_session=False)
        )
        self.db.flush()

        logger.info(
            "Completed follow-up actions deleted",
            extra={"acting_user_id": acting_user_id, "count": deleted},
        )
        return deleted

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    def log(
        self,
        action_id: int,
        log_type: str,
        user_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> FollowupLog:
        """Append an audit log entry for an action."""
        entry = FollowupLog(
            followup_action_id=action_id,
            action_type=log_type,
            user_id=user_id,
            details=build_details(**details) if details is not None else None,
            created_at=self.clock.now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_logs(self, action_id: int) -> list[FollowupLog]:
        """Get the audit log of an action, oldest first."""
        return (
            self.db.query(FollowupLog)
            .filter(FollowupLog.followup_action_id == action_id)
            .order_by(FollowupLog.created_at.asc(), FollowupLog.id.asc())
            .all()
        )

    def add_notification_link(
        self, action_id: int, notification_id: str, kind: str
    ) -> NotificationFollowupLink:
        link = NotificationFollowupLink(
            notification_id=str(notification_id),
            followup_action_id=action_id,
            kind=kind,
            created_at=self.clock.now(),
        )
        self.db.add(link)
        self.db.flush()
        return link

    def get_notification_links(self, action_id: int) -> list[NotificationFollowupLink]:
        return (
            self.db.query(NotificationFollowupLink)
            .filter(NotificationFollowupLink.followup_action_id == action_id)
            .order_by(NotificationFollowupLink.id.asc())
            .all()
        )

    # =========================================================================
    # REMINDER CLAIMS
    # =========================================================================

    def find_due_unreminded(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[FollowupAction]:
        """Open actions due at ``now`` whose reminder has not been sent."""
        query = (
            self.db.query(FollowupAction)
            .filter(
                FollowupAction.due_date <= ensure_utc(now),
                FollowupAction.status.in_(FollowupStatus.OPEN),
                FollowupAction.reminder_sent.is_(False),
            )
            .order_by(FollowupAction.due_date.asc(), FollowupAction.id.asc())
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def claim_reminder(self, action_id: int, now: datetime, lease_seconds: int) -> bool:
        """Take the reminder lease of an action.

        Only one sweep can hold the lease. A lease older than
        ``lease_seconds`` is considered abandoned and can be taken over.

        Returns:
            True if this caller now holds the lease.
        """
        now = ensure_utc(now)
        expired_before = now - timedelta(seconds=lease_seconds)
        result = (
            self.db.query(FollowupAction)
            .filter(
                FollowupAction.id == action_id,
                FollowupAction.reminder_sent.is_(False),
                FollowupAction.status.in_(FollowupStatus.OPEN),
                or_(
                    FollowupAction.reminder_claimed_at.is_(None),
                    FollowupAction.reminder_claimed_at <= expired_before,
                ),
            )
            .update(
                {FollowupAction.reminder_claimed_at: now},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result > 0

    def mark_reminder_sent(
        self,
        action_id: int,
        now: datetime,
        notification_id: Optional[str] = None,
    ) -> bool:
        """Record a dispatched reminder and release the lease.

        Writes the ``remind`` log entry and the notification link.

        Returns:
            True if the reminder was recorded, False if it already was.
        """
        now = ensure_utc(now)
        result = (
            self.db.query(FollowupAction)
            .filter(
                FollowupAction.id == action_id,
                FollowupAction.reminder_sent.is_(False),
            )
            .update(
                {
                    FollowupAction.reminder_sent: True,
                    FollowupAction.reminder_date: now,
                    FollowupAction.reminder_claimed_at: None,
                    FollowupAction.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        if result == 0:
            return False

        self.log(
            action_id,
            FollowupLogType.REMIND,
            SYSTEM_USER,
            {"notification_id": notification_id},
        )
        if notification_id:
            self.add_notification_link(action_id, notification_id, kind="reminder")
        return True

    def release_reminder_claim(self, action_id: int) -> None:
        """Drop the reminder lease so the next sweep retries."""
        self.db.query(FollowupAction).filter(
            FollowupAction.id == action_id,
            FollowupAction.reminder_sent.is_(False),
        ).update(
            {FollowupAction.reminder_claimed_at: None},
            synchronize_session=False,
        )
        self.db.flush()
