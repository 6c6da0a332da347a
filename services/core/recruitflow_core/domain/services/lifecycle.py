"""Lifecycle manager for follow-up actions.

State machine:

    pending -> in_progress -> completed
       |            |
       +------------+------> cancelled

``completed`` and ``cancelled`` are terminal. Repeating a terminal
transition is a no-op success so client retries never double-log.
Transitions are applied with an update-if-status-unchanged statement;
missing actions and invalid transitions are reported through
``TransitionResult`` rather than raised.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from recruitflow_core.domain.errors import (
    ConflictError,
    NotFoundError,
    TransitionResult,
    ValidationError,
)
from recruitflow_core.domain.models import FollowupAction, FollowupLogType, FollowupStatus
from recruitflow_core.domain.services.clock import Clock, ensure_utc, get_clock
from recruitflow_core.domain.services.followup_actions import FollowupActionService

logger = logging.getLogger(__name__)


# Allowed target states per current state
TRANSITIONS = {
    FollowupStatus.PENDING: {
        FollowupStatus.IN_PROGRESS,
        FollowupStatus.COMPLETED,
        FollowupStatus.CANCELLED,
    },
    FollowupStatus.IN_PROGRESS: {FollowupStatus.COMPLETED, FollowupStatus.CANCELLED},
    FollowupStatus.COMPLETED: set(),
    FollowupStatus.CANCELLED: set(),
}

LOG_TYPES = {
    FollowupStatus.COMPLETED: FollowupLogType.COMPLETE,
    FollowupStatus.CANCELLED: FollowupLogType.CANCEL,
}


class FollowupLifecycleService:
    """Owns status transitions of follow-up actions."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        actions: Optional[FollowupActionService] = None,
    ):
        """Initialize the lifecycle service.

        Args:
            db: SQLAlchemy database session.
            clock: Time source (defaults to the system clock).
            actions: Action repository used for audit logging.
        """
        self.db = db
        self.clock = clock or get_clock()
        self.actions = actions or FollowupActionService(db, clock=self.clock)

    def update_status(
        self,
        action_id: int,
        new_status: str,
        user_id: str,
        completed_at: Optional[datetime] = None,
    ) -> TransitionResult:
        """Move an action to ``new_status``.

        Args:
            action_id: The action ID.
            new_status: Target status.
            user_id: Acting user id, recorded on the log entry.
            completed_at: Completion time (defaults to now). Only used
                when completing.

        Returns:
            TransitionResult describing the outcome.
        """
        return self._transition(action_id, new_status, user_id, completed_at=completed_at)

    def complete(
        self, action_id: int, user_id: str, notes: Optional[str] = None
    ) -> TransitionResult:
        """Complete an action, overwriting its notes when ``notes`` is given.

        Completing an action linked to a pending profile submission moves
        the submission to ``followed_up``.
        """
        return self._transition(
            action_id,
            FollowupStatus.COMPLETED,
            user_id,
            notes=notes,
            log_details={"notes": notes},
        )

    def cancel(
        self, action_id: int, user_id: str, reason: Optional[str] = None
    ) -> TransitionResult:
        """Cancel a pending or in-progress action."""
        return self._transition(
            action_id,
            FollowupStatus.CANCELLED,
            user_id,
            log_details={"reason": reason},
        )

    def start(self, action_id: int, user_id: str) -> TransitionResult:
        """Move a pending action to in_progress."""
        return self._transition(action_id, FollowupStatus.IN_PROGRESS, user_id)

    def _transition(
        self,
        action_id: int,
        new_status: str,
        user_id: str,
        completed_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        log_details: Optional[dict[str, Any]] = None,
    ) -> TransitionResult:
        if new_status not in FollowupStatus.ALL:
            return TransitionResult.failure(ValidationError(f"Invalid status: {new_status}"))
        if not user_id:
            return TransitionResult.failure(ValidationError("user_id is required"))

        action = self.actions.get_action(action_id)
        if action is None:
            return TransitionResult.failure(
                NotFoundError(f"Follow-up action not found: {action_id}")
            )

        current = action.status
        if current == new_status:
            return TransitionResult.success(current, changed=False)
        if new_status not in TRANSITIONS[current]:
            return TransitionResult.failure(
                ValidationError(f"Invalid transition: {current} -> {new_status}"),
                status=current,
            )

        now = self.clock.now()
        values: dict[Any, Any] = {
            FollowupAction.status: new_status,
            FollowupAction.completed: new_status == FollowupStatus.COMPLETED,
            FollowupAction.updated_at: now,
        }
        if new_status == FollowupStatus.COMPLETED:
            values[FollowupAction.completed_at] = ensure_utc(completed_at) or now
        if notes is not None:
            values[FollowupAction.notes] = notes

        updated = (
            self.db.query(FollowupAction)
            .filter(FollowupAction.id == action_id, FollowupAction.status == current)
            .update(values, synchronize_session=False)
        )
        self.db.flush()
        self.db.refresh(action)

        if updated == 0:
            conflict = ConflictError(
                f"Follow-up action {action_id} changed concurrently to {action.status}"
            )
            if action.status == new_status:
                # The concurrent writer already did what was asked
                return TransitionResult(
                    ok=True, changed=False, status=action.status, error=conflict
                )
            return TransitionResult.failure(conflict, status=action.status)

        details = dict(log_details or {})
        details.setdefault("from", current)
        details.setdefault("to", new_status)
        self.actions.log(
            action_id,
            LOG_TYPES.get(new_status, FollowupLogType.UPDATE),
            user_id,
            details,
        )

        if new_status == FollowupStatus.COMPLETED:
            self._cascade_to_submission(action_id)

        logger.info(
            "Follow-up action transitioned",
            extra={
                "action_id": action_id,
                "from_status": current,
                "to_status": new_status,
                "acting_user_id": user_id,
            },
        )
        return TransitionResult.success(new_status)

    def _cascade_to_submission(self, action_id: int) -> None:
        from recruitflow_core.domain.services.profile_submission import (
            ProfileSubmissionService,
        )

        submissions = ProfileSubmissionService(self.db, clock=self.clock, lifecycle=self)
        submissions.mark_followed_up_for_action(action_id)
