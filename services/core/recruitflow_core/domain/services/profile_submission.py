"""Profile-submission watchdog.

Tracks the customer's response to a candidate profile sent by a recruiter:

    pending -> followed_up -> response_received | no_response
    pending -> response_received
    pending | followed_up -> cancelled

Creating a submission materializes a high-priority call action due after
``profile_followup_due_days``. Completing that action moves the submission
to ``followed_up``; a submission left in ``followed_up`` for
``profile_no_response_days`` after the profile was sent is marked
``no_response`` by the sweep. Terminal states never move.

Usage:
    service = ProfileSubmissionService(db=session, lookup=lookup)
    submission = service.create_profile_submission_followup(
        application_id="A1", customer_id="C1", sent_by="U1"
    )
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from recruitflow_core.config import Settings, get_settings
from recruitflow_core.domain.errors import (
    ConflictError,
    NotFoundError,
    TransitionResult,
    ValidationError,
)
from recruitflow_core.domain.models import (
    ActionType,
    FollowupStatus,
    Priority,
    ProfileSubmissionFollowup,
    SubmissionStatus,
)
from recruitflow_core.domain.services.clock import Clock, ensure_utc, get_clock
from recruitflow_core.domain.services.followup_actions import (
    FollowupActionCreate,
    FollowupActionService,
)
from recruitflow_core.domain.services.lifecycle import FollowupLifecycleService
from recruitflow_core.domain.services.lookups import (
    EntityLookup,
    NullEntityLookup,
    safe_lookup,
)
from recruitflow_core.domain.services.notifications import NotificationGateway

logger = logging.getLogger(__name__)


# Placeholders used when a lookup cannot resolve a name
CANDIDATE_PLACEHOLDER = "Kandidat"
JOB_PLACEHOLDER = "Stelle"
CUSTOMER_PLACEHOLDER = "Kunde"
UNKNOWN_PLACEHOLDER = "Nicht angegeben"
NO_DETAILS_PLACEHOLDER = "Keine Details angegeben"

# Transitions a caller may request; no_response is set by the sweep only
TRANSITIONS = {
    SubmissionStatus.PENDING: {
        SubmissionStatus.FOLLOWED_UP,
        SubmissionStatus.RESPONSE_RECEIVED,
        SubmissionStatus.CANCELLED,
    },
    SubmissionStatus.FOLLOWED_UP: {
        SubmissionStatus.RESPONSE_RECEIVED,
        SubmissionStatus.CANCELLED,
    },
    SubmissionStatus.RESPONSE_RECEIVED: set(),
    SubmissionStatus.NO_RESPONSE: set(),
    SubmissionStatus.CANCELLED: set(),
}


def response_note(response_details: Optional[str]) -> str:
    return f"Antwort erhalten: {response_details or NO_DETAILS_PLACEHOLDER}"


class ProfileSubmissionService:
    """Service for the profile-submission watchdog."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        actions: Optional[FollowupActionService] = None,
        lifecycle: Optional[FollowupLifecycleService] = None,
        lookup: Optional[EntityLookup] = None,
        gateway: Optional[NotificationGateway] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the watchdog service.

        Args:
            db: SQLAlchemy database session.
            clock: Time source (defaults to the system clock).
            actions: Action repository.
            lifecycle: Lifecycle manager used for the completion cascade.
            lookup: Entity lookup for titles and notes.
            gateway: Notification gateway passed to a default action repository.
            settings: Settings supplying due/staleness windows and timeouts.
        """
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.lookup = lookup or NullEntityLookup()
        self.actions = actions or FollowupActionService(
            db,
            clock=self.clock,
            gateway=gateway,
            lookup=self.lookup,
            settings=self.settings,
        )
        self.lifecycle = lifecycle or FollowupLifecycleService(
            db, clock=self.clock, actions=self.actions
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_profile_submission_followup(
        self,
        application_id: str,
        customer_id: str,
        sent_by: str,
        sent_at: Optional[datetime] = None,
    ) -> ProfileSubmissionFollowup:
        """Record a sent profile and schedule the follow-up call.

        Args:
            application_id: The application whose profile was sent.
            customer_id: The customer it was sent to.
            sent_by: The recruiter who sent it. Also the assignee.
            sent_at: When it was sent (defaults to now).

        Returns:
            The pending submission, linked to its follow-up action.

        Raises:
            ValidationError: If an id is missing.
        """
        if not application_id:
            raise ValidationError("application_id is required")
        if not customer_id:
            raise ValidationError("customer_id is required")
        if not sent_by:
            raise ValidationError("sent_by is required")

        now = self.clock.now()
        sent_at = ensure_utc(sent_at) or now

        submission = ProfileSubmissionFollowup(
            application_id=application_id,
            customer_id=customer_id,
            sent_by=sent_by,
            sent_at=sent_at,
            status=SubmissionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.db.add(submission)
        self.db.flush()

        timeout = self.settings.lookup_timeout_seconds
        summary = safe_lookup(self.lookup.application_summary, application_id, timeout=timeout)
        customer_name = safe_lookup(self.lookup.customer_name, customer_id, timeout=timeout)
        candidate_name = summary.candidate_name if summary else None
        job_title = summary.job_title if summary else None
        customer = customer_name or CUSTOMER_PLACEHOLDER

        action = self.actions.create_action(
            FollowupActionCreate(
                title=(
                    "Nachfassen nach Profilversand: "
                    f"{candidate_name or CANDIDATE_PLACEHOLDER} für "
                    f"{job_title or JOB_PLACEHOLDER}"
                ),
                description=f"Nachfassen bei {customer} bezüglich des gesendeten Profils.",
                due_date=now + timedelta(days=self.settings.profile_followup_due_days),
                priority=Priority.HIGH,
                action_type=ActionType.CALL,
                assigned_to=sent_by,
                application_id=application_id,
                notes=(
                    f"Nachfassen bezüglich des Profils, das an {customer} gesendet "
                    "wurde. Fragen Sie nach Feedback und nächsten Schritten.\n"
                    f"Kandidat: {candidate_name or UNKNOWN_PLACEHOLDER}\n"
                    f"Stelle: {job_title or UNKNOWN_PLACEHOLDER}\n"
                    f"Kunde: {customer_name or UNKNOWN_PLACEHOLDER}"
                ),
            ),
            acting_user_id=sent_by,
        )

        submission.followup_action_id = action.id
        self.db.flush()

        logger.info(
            "Profile submission follow-up created",
            extra={
                "submission_id": submission.id,
                "action_id": action.id,
                "application_id": application_id,
            },
        )
        return submission

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_submission(self, submission_id: int) -> Optional[ProfileSubmissionFollowup]:
        """Get a submission by ID, or None if not found."""
        return (
            self.db.query(ProfileSubmissionFollowup)
            .filter(ProfileSubmissionFollowup.id == submission_id)
            .first()
        )

    def list_submissions(
        self,
        status: Optional[str] = None,
        application_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[ProfileSubmissionFollowup]:
        """List submissions, most recently sent first."""
        query = self.db.query(ProfileSubmissionFollowup)

        if status:
            query = query.filter(ProfileSubmissionFollowup.status == status)
        if application_id:
            query = query.filter(ProfileSubmissionFollowup.application_id == application_id)

        return (
            query.order_by(
                ProfileSubmissionFollowup.sent_at.desc(), ProfileSubmissionFollowup.id.desc()
            )
            .limit(limit)
            .all()
        )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def update_status(
        self,
        submission_id: int,
        status: str,
        user_id: str,
        response_details: Optional[str] = None,
    ) -> TransitionResult:
        """Move a submission forward.

        ``response_received`` stamps the response time, stores the details
        and completes the linked action with an "Antwort erhalten" note.

        Returns:
            TransitionResult describing the outcome.
        """
        if status not in SubmissionStatus.ALL:
            return TransitionResult.failure(ValidationError(f"Invalid status: {status}"))
        if not user_id:
            return TransitionResult.failure(ValidationError("user_id is required"))

        submission = self.get_submission(submission_id)
        if submission is None:
            return TransitionResult.failure(
                NotFoundError(f"Profile submission not found: {submission_id}")
            )

        current = submission.status
        if current == status:
            return TransitionResult.success(current, changed=False)
        if status not in TRANSITIONS[current]:
            return TransitionResult.failure(
                ValidationError(f"Invalid transition: {current} -> {status}"),
                status=current,
            )

        now = self.clock.now()
        values = {
            ProfileSubmissionFollowup.status: status,
            ProfileSubmissionFollowup.updated_at: now,
        }
        if status == SubmissionStatus.RESPONSE_RECEIVED:
            values[ProfileSubmissionFollowup.response_received_at] = now
            if response_details:
                values[ProfileSubmissionFollowup.response_details] = response_details

        updated = (
            self.db.query(ProfileSubmissionFollowup)
            .filter(
                ProfileSubmissionFollowup.id == submission_id,
                ProfileSubmissionFollowup.status == current,
            )
            .update(values, synchronize_session=False)
        )
        self.db.flush()
        self.db.refresh(submission)

        if updated == 0:
            conflict = ConflictError(
                f"Profile submission {submission_id} changed concurrently to {submission.status}"
            )
            if submission.status == status:
                return TransitionResult(
                    ok=True, changed=False, status=submission.status, error=conflict
                )
            return TransitionResult.failure(conflict, status=submission.status)

        if status == SubmissionStatus.RESPONSE_RECEIVED and submission.followup_action_id:
            self._record_response_on_action(
                submission.followup_action_id, user_id, response_details
            )

        logger.info(
            "Profile submission transitioned",
            extra={
                "submission_id": submission_id,
                "from_status": current,
                "to_status": status,
                "acting_user_id": user_id,
            },
        )
        return TransitionResult.success(status)

    def _record_response_on_action(
        self, action_id: int, user_id: str, response_details: Optional[str]
    ) -> None:
        note = response_note(response_details)
        action = self.actions.get_action(action_id)
        if action is None:
            logger.warning(
                "Linked follow-up action missing", extra={"action_id": action_id}
            )
            return

        if action.status in FollowupStatus.OPEN:
            result = self.lifecycle.complete(action_id, user_id, notes=note)
            if not result.ok:
                logger.warning(
                    "Completing linked follow-up action failed",
                    extra={"action_id": action_id, "error": result.error_message},
                )
        elif action.status == FollowupStatus.COMPLETED:
            # Already completed by the recruiter, keep a single complete log
            self.actions.update_action(action_id, user_id, notes=note)

    def mark_followed_up_for_action(self, action_id: int) -> int:
        """Move pending submissions linked to a completed action to followed_up.

        Returns:
            Number of submissions moved.
        """
        now = self.clock.now()
        updated = (
            self.db.query(ProfileSubmissionFollowup)
            .filter(
                ProfileSubmissionFollowup.followup_action_id == action_id,
                ProfileSubmissionFollowup.status == SubmissionStatus.PENDING,
            )
            .update(
                {
                    ProfileSubmissionFollowup.status: SubmissionStatus.FOLLOWED_UP,
                    ProfileSubmissionFollowup.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return updated

    def find_stale_followed_up(
        self, now: datetime, days: Optional[int] = None
    ) -> list[ProfileSubmissionFollowup]:
        """Followed-up submissions sent at least ``days`` before ``now``."""
        days = self.settings.profile_no_response_days if days is None else days
        cutoff = ensure_utc(now) - timedelta(days=days)
        return (
            self.db.query(ProfileSubmissionFollowup)
            .filter(
                ProfileSubmissionFollowup.status == SubmissionStatus.FOLLOWED_UP,
                ProfileSubmissionFollowup.sent_at <= cutoff,
            )
            .order_by(ProfileSubmissionFollowup.sent_at.asc())
            .all()
        )

    def mark_no_response(self, submission_id: int, now: Optional[datetime] = None) -> bool:
        """Mark a followed-up submission as no_response. No action cascade.

        Returns:
            True if this call made the change.
        """
        now = ensure_utc(now) or self.clock.now()
        updated = (
            self.db.query(ProfileSubmissionFollowup)
            .filter(
                ProfileSubmissionFollowup.id == submission_id,
                ProfileSubmissionFollowup.status == SubmissionStatus.FOLLOWED_UP,
            )
            .update(
                {
                    ProfileSubmissionFollowup.status: SubmissionStatus.NO_RESPONSE,
                    ProfileSubmissionFollowup.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return updated > 0
