"""Recurring task repository and scheduled-task lifecycle.

Provides sync settings storage, interval arithmetic, fire deduplication,
claiming and status management for scheduled tasks.

Task lifecycle:

    pending -> running -> completed | failed
    pending <-> cancelled

A recurring fire is keyed by (entity_type, entity_id, scheduled_for,
trigger). The key is unique in the store, so concurrent sweeps computing
the same fire share one task row, and the atomic pending -> running claim
lets exactly one of them execute it.
"""

import logging
import traceback
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy import insert
from sqlalchemy.orm import Session

from recruitflow_core.domain.errors import (
    ConflictError,
    NotFoundError,
    TransitionResult,
    ValidationError,
)
from recruitflow_core.domain.models import (
    IntervalType,
    IntervalUnit,
    ScheduledTask,
    SchedulerLog,
    SchedulerLogAction,
    SyncEntityType,
    SyncSettings,
    TaskStatus,
    TaskTrigger,
    TaskType,
)
from recruitflow_core.domain.schemas.extensions import build_details, normalize_config
from recruitflow_core.domain.services.clock import Clock, ensure_utc, get_clock

logger = logging.getLogger(__name__)

# Maximum length for error messages
MAX_ERROR_LENGTH = 5000

# Interval lengths of the fixed interval types, per unit of sync_interval_value
INTERVAL_STEPS = {
    IntervalType.HOURLY: timedelta(hours=1),
    IntervalType.DAILY: timedelta(days=1),
    IntervalType.WEEKLY: timedelta(weeks=1),
    # Months are approximated as 30 days
    IntervalType.MONTHLY: timedelta(days=30),
}

CUSTOM_UNIT_STEPS = {
    IntervalUnit.MINUTES: timedelta(minutes=1),
    IntervalUnit.HOURS: timedelta(hours=1),
    IntervalUnit.DAYS: timedelta(days=1),
    IntervalUnit.WEEKS: timedelta(weeks=1),
}

# Task type created for a sync of each integration kind
ENTITY_TASK_TYPES = {
    SyncEntityType.JOB_PORTAL: TaskType.PORTAL_SYNC,
    SyncEntityType.SOCIAL_MEDIA: TaskType.PIPELINE_PROCESSOR,
    SyncEntityType.MOVIDO: TaskType.PIPELINE_PROCESSOR,
}

LOG_ACTIONS = {
    TaskStatus.RUNNING: SchedulerLogAction.START,
    TaskStatus.COMPLETED: SchedulerLogAction.COMPLETE,
    TaskStatus.FAILED: SchedulerLogAction.FAIL,
    TaskStatus.CANCELLED: SchedulerLogAction.CANCEL,
    TaskStatus.PENDING: SchedulerLogAction.RESCHEDULE,
}


def task_type_for(entity_type: Optional[str]) -> str:
    """Task type used for a sync of the given integration kind."""
    return ENTITY_TASK_TYPES.get(entity_type, TaskType.SYNC)


def interval_length(settings: SyncSettings) -> Optional[timedelta]:
    """Length of one interval, or None for ``once``."""
    value = settings.sync_interval_value or 1
    if settings.sync_interval_type == IntervalType.ONCE:
        return None
    if settings.sync_interval_type == IntervalType.CUSTOM:
        step = CUSTOM_UNIT_STEPS.get(settings.sync_interval_unit, timedelta(days=1))
        return step * value
    return INTERVAL_STEPS.get(settings.sync_interval_type, timedelta(days=1)) * value


def compute_next_run(settings: SyncSettings, now: datetime) -> Optional[datetime]:
    """Compute the next fire time of a sync policy.

    Never-run settings are due immediately. Their fire time is anchored at
    the stored ``next_run`` (set on creation) so every sweep derives the
    same fire key. A ``once`` policy that has run never fires again.

    Args:
        settings: The sync settings.
        now: Current time.

    Returns:
        The next fire time, or None if the policy will not fire again.
    """
    last_run = ensure_utc(settings.last_run)
    if last_run is None:
        return ensure_utc(settings.next_run) or ensure_utc(settings.created_at) or ensure_utc(now)

    step = interval_length(settings)
    if step is None:
        return None
    return last_run + step


class ScheduledTaskService:
    """Service for sync settings and scheduled tasks."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        """Initialize the scheduled task service.

        Args:
            db: SQLAlchemy database session.
            clock: Time source (defaults to the system clock).
        """
        self.db = db
        self.clock = clock or get_clock()

    # =========================================================================
    # SYNC SETTINGS
    # =========================================================================

    def save_sync_settings(
        self,
        entity_type: str,
        entity_id: str,
        sync_interval_type: str = IntervalType.DAILY,
        sync_interval_value: Optional[int] = None,
        sync_interval_unit: Optional[str] = None,
        enabled: bool = True,
        config: Optional[dict[str, Any]] = None,
    ) -> SyncSettings:
        """Create or update the sync settings of an integration instance.

        Args:
            entity_type: Integration kind (job_portal, social_media, ...).
            entity_id: Integration instance id.
            sync_interval_type: once, hourly, daily, weekly, monthly or custom.
            sync_interval_value: Interval multiplier (default 1).
            sync_interval_unit: Unit of custom intervals.
            enabled: Whether the sweep fires this policy.
            config: Executor configuration (versioned schema).

        Returns:
            The saved SyncSettings.

        Raises:
            ValidationError: If any field is invalid.
        """
        if entity_type not in SyncEntityType.ALL:
            raise ValidationError(f"Invalid entity_type: {entity_type}")
        if not entity_id:
            raise ValidationError("entity_id is required")
        if sync_interval_type not in IntervalType.ALL:
            raise ValidationError(f"Invalid sync_interval_type: {sync_interval_type}")
        if sync_interval_value is not None and sync_interval_value < 1:
            raise ValidationError("sync_interval_value must be at least 1")
        if sync_interval_type == IntervalType.CUSTOM:
            if sync_interval_unit not in IntervalUnit.ALL:
                raise ValidationError(
                    f"custom intervals need sync_interval_unit in {sorted(IntervalUnit.ALL)}"
                )
        elif sync_interval_unit is not None and sync_interval_unit not in IntervalUnit.ALL:
            raise ValidationError(f"Invalid sync_interval_unit: {sync_interval_unit}")

        config = normalize_config(config)
        now = self.clock.now()

        settings = self.get_sync_settings(entity_type, entity_id)
        if settings is None:
            settings = SyncSettings(
                entity_type=entity_type,
                entity_id=entity_id,
                next_run=now,
                created_at=now,
            )
            self.db.add(settings)

        settings.sync_interval_type = sync_interval_type
        settings.sync_interval_value = sync_interval_value
        settings.sync_interval_unit = sync_interval_unit
        settings.enabled = enabled
        settings.config = config
        settings.updated_at = now
        if settings.last_run is not None:
            settings.next_run = compute_next_run(settings, now)

        self.db.flush()
        return settings

    def get_sync_settings(self, entity_type: str, entity_id: str) -> Optional[SyncSettings]:
        """Get the sync settings of an integration instance, or None."""
        return (
            self.db.query(SyncSettings)
            .filter(
                SyncSettings.entity_type == entity_type,
                SyncSettings.entity_id == entity_id,
            )
            .first()
        )

    def get_sync_settings_or_raise(self, entity_type: str, entity_id: str) -> SyncSettings:
        settings = self.get_sync_settings(entity_type, entity_id)
        if settings is None:
            raise NotFoundError(f"Sync settings not found: {entity_type}/{entity_id}")
        return settings

    def get_sync_settings_by_id(self, settings_id: int) -> Optional[SyncSettings]:
        return self.db.query(SyncSettings).filter(SyncSettings.id == settings_id).first()

    def list_sync_settings(
        self,
        entity_type: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> list[SyncSettings]:
        """List sync settings ordered by entity."""
        query = self.db.query(SyncSettings)

        if entity_type:
            query = query.filter(SyncSettings.entity_type == entity_type)
        if enabled is not None:
            query = query.filter(SyncSettings.enabled == enabled)

        return query.order_by(SyncSettings.entity_type.asc(), SyncSettings.entity_id.asc()).all()

    def set_sync_enabled(self, entity_type: str, entity_id: str, enabled: bool) -> SyncSettings:
        """Enable or disable a sync policy.

        Raises:
            NotFoundError: If the settings do not exist.
        """
        settings = self.get_sync_settings_or_raise(entity_type, entity_id)
        settings.enabled = enabled
        settings.updated_at = self.clock.now()
        self.db.flush()
        return settings

    def delete_sync_settings(self, entity_type: str, entity_id: str) -> int:
        """Delete a sync policy and cancel its pending tasks.

        Returns:
            Number of cancelled tasks.

        Raises:
            NotFoundError: If the settings do not exist.
        """
        settings = self.get_sync_settings_or_raise(entity_type, entity_id)

        pending = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.sync_settings_id == settings.id,
                ScheduledTask.status == TaskStatus.PENDING,
            )
            .all()
        )
        for task in pending:
            self.cancel_task(task.id, reason="sync settings deleted")

        self.db.query(ScheduledTask).filter(
            ScheduledTask.sync_settings_id == settings.id
        ).update({ScheduledTask.sync_settings_id: None}, synchronize_session=False)

        self.db.delete(settings)
        self.db.flush()
        return len(pending)

    def record_last_run(self, settings_id: int, at: Optional[datetime] = None) -> None:
        """Record a finished automatic fire and advance ``next_run``."""
        settings = self.get_sync_settings_by_id(settings_id)
        if settings is None:
            return
        at = ensure_utc(at) or self.clock.now()
        settings.last_run = at
        settings.next_run = compute_next_run(settings, at)
        settings.updated_at = at
        self.db.flush()

    def compute_next_run(self, settings: SyncSettings, now: Optional[datetime] = None) -> Optional[datetime]:
        return compute_next_run(settings, now or self.clock.now())

    def find_due_settings(self, now: datetime) -> list[tuple[SyncSettings, datetime]]:
        """Enabled sync policies whose next fire is at or before ``now``.

        Returns:
            List of (settings, fire time) pairs.
        """
        now = ensure_utc(now)
        due = []
        enabled = (
            self.db.query(SyncSettings)
            .filter(SyncSettings.enabled.is_(True))
            .order_by(SyncSettings.id.asc())
            .all()
        )
        for settings in enabled:
            fire_at = compute_next_run(settings, now)
            if fire_at is not None and fire_at <= now:
                due.append((settings, fire_at))
        return due

    # =========================================================================
    # TASKS
    # =========================================================================

    def create_task(
        self,
        task_type: str,
        scheduled_for: Optional[datetime] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
        trigger: str = TaskTrigger.MANUAL,
        sync_settings_id: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> ScheduledTask:
        """Create a scheduled task (ad-hoc or manual).

        Raises:
            ValidationError: If any field is invalid.
        """
        if task_type not in TaskType.ALL:
            raise ValidationError(f"Invalid task_type: {task_type}")
        if trigger not in TaskTrigger.ALL:
            raise ValidationError(f"Invalid trigger: {trigger}")

        now = self.clock.now()
        task = ScheduledTask(
            task_type=task_type,
            trigger=trigger,
            status=TaskStatus.PENDING,
            entity_type=entity_type,
            entity_id=entity_id,
            sync_settings_id=sync_settings_id,
            scheduled_for=ensure_utc(scheduled_for) or now,
            config=normalize_config(config),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        self.db.flush()
        return task

    def get_task(self, task_id: int) -> Optional[ScheduledTask]:
        """Get a task by ID, or None if not found."""
        return self.db.query(ScheduledTask).filter(ScheduledTask.id == task_id).first()

    def get_task_or_raise(self, task_id: int) -> ScheduledTask:
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Scheduled task not found: {task_id}")
        return task

    def list_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        trigger: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ScheduledTask]:
        """List tasks, most recently scheduled first."""
        query = self.db.query(ScheduledTask)

        if status:
            query = query.filter(ScheduledTask.status == status)
        if task_type:
            query = query.filter(ScheduledTask.task_type == task_type)
        if entity_type:
            query = query.filter(ScheduledTask.entity_type == entity_type)
        if entity_id:
            query = query.filter(ScheduledTask.entity_id == entity_id)
        if trigger:
            query = query.filter(ScheduledTask.trigger == trigger)

        query = query.order_by(ScheduledTask.scheduled_for.desc(), ScheduledTask.id.desc())
        return query.offset(offset).limit(limit).all()

    def find_fire(
        self, entity_type: str, entity_id: str, scheduled_for: datetime, trigger: str
    ) -> Optional[ScheduledTask]:
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.entity_type == entity_type,
                ScheduledTask.entity_id == entity_id,
                ScheduledTask.scheduled_for == ensure_utc(scheduled_for),
                ScheduledTask.trigger == trigger,
            )
            .first()
        )

    def get_or_create_fire(
        self, settings: SyncSettings, scheduled_for: datetime
    ) -> tuple[ScheduledTask, bool]:
        """Get or create the automatic task for one fire of a sync policy.

        Uses an insert that ignores unique-key conflicts, so a concurrent
        sweep that inserted the same fire first wins and both callers end
        up with the same row.

        Returns:
            Tuple of (task, created).
        """
        scheduled_for = ensure_utc(scheduled_for)
        existing = self.find_fire(
            settings.entity_type, settings.entity_id, scheduled_for, TaskTrigger.AUTO
        )
        if existing is not None:
            return existing, False

        now = self.clock.now()
        stmt = (
            insert(ScheduledTask)
            .values(
                task_type=task_type_for(settings.entity_type),
                trigger=TaskTrigger.AUTO,
                status=TaskStatus.PENDING,
                entity_type=settings.entity_type,
                entity_id=settings.entity_id,
                sync_settings_id=settings.id,
                scheduled_for=scheduled_for,
                config=settings.config,
                created_by=None,
                created_at=now,
                updated_at=now,
            )
            .prefix_with("IGNORE", dialect="mysql")
            .prefix_with("OR IGNORE", dialect="sqlite")
        )
        result = self.db.execute(stmt)
        self.db.flush()

        task = self.find_fire(
            settings.entity_type, settings.entity_id, scheduled_for, TaskTrigger.AUTO
        )
        if task is None:
            raise ConflictError(
                f"Fire for {settings.entity_type}/{settings.entity_id} at "
                f"{scheduled_for.isoformat()} could not be created"
            )
        return task, result.rowcount > 0

    def claim_task(self, task_id: int) -> bool:
        """Attempt to claim a pending task for execution.

        Atomically transitions the task from pending to running. Only one
        caller can successfully claim a task.

        Returns:
            True if successfully claimed, False otherwise.
        """
        now = self.clock.now()
        result = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.id == task_id,
                ScheduledTask.status == TaskStatus.PENDING,
            )
            .update(
                {
                    ScheduledTask.status: TaskStatus.RUNNING,
                    ScheduledTask.started_at: now,
                    ScheduledTask.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()

        if result > 0:
            task = self.get_task(task_id)
            self.db.refresh(task)
            self.log_task_action(task.id, task.task_type, SchedulerLogAction.START, TaskStatus.RUNNING)
        return result > 0

    def complete_task(self, task_id: int, result: Optional[dict[str, Any]] = None) -> bool:
        """Mark a running task as completed.

        Returns:
            True if the task was running and is now completed.
        """
        return self._finish(task_id, TaskStatus.COMPLETED, result=result)

    def fail_task(
        self,
        task_id: int,
        error: Union[str, Exception],
        include_traceback: bool = False,
    ) -> bool:
        """Mark a running task as failed.

        Returns:
            True if the task was running and is now failed.
        """
        return self._finish(
            task_id,
            TaskStatus.FAILED,
            error=self.serialize_error(error, include_traceback),
        )

    def _finish(
        self,
        task_id: int,
        status: str,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        now = self.clock.now()
        updated = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.id == task_id,
                ScheduledTask.status == TaskStatus.RUNNING,
            )
            .update(
                {
                    ScheduledTask.status: status,
                    ScheduledTask.last_run: now,
                    ScheduledTask.result: result,
                    ScheduledTask.error: error,
                    ScheduledTask.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        if updated == 0:
            return False

        task = self.get_task(task_id)
        self.db.refresh(task)
        self.log_task_action(
            task.id,
            task.task_type,
            LOG_ACTIONS[status],
            status,
            {"result": result, "error": error},
        )
        return True

    def cancel_task(self, task_id: int, reason: Optional[str] = None) -> TransitionResult:
        """Cancel a pending task. Running and finished tasks cannot be cancelled."""
        return self._move(
            task_id, TaskStatus.PENDING, TaskStatus.CANCELLED, {"reason": reason}
        )

    def reenable_task(self, task_id: int) -> TransitionResult:
        """Move a cancelled task back to pending."""
        return self._move(task_id, TaskStatus.CANCELLED, TaskStatus.PENDING)

    def _move(
        self,
        task_id: int,
        from_status: str,
        to_status: str,
        details: Optional[dict[str, Any]] = None,
    ) -> TransitionResult:
        task = self.get_task(task_id)
        if task is None:
            return TransitionResult.failure(NotFoundError(f"Scheduled task not found: {task_id}"))
        if task.status == to_status:
            return TransitionResult.success(to_status, changed=False)
        if task.status != from_status:
            return TransitionResult.failure(
                ValidationError(f"Invalid transition: {task.status} -> {to_status}"),
                status=task.status,
            )

        updated = (
            self.db.query(ScheduledTask)
            .filter(ScheduledTask.id == task_id, ScheduledTask.status == from_status)
            .update(
                {ScheduledTask.status: to_status, ScheduledTask.updated_at: self.clock.now()},
                synchronize_session=False,
            )
        )
        self.db.flush()
        self.db.refresh(task)

        if updated == 0:
            conflict = ConflictError(f"Scheduled task {task_id} changed concurrently to {task.status}")
            if task.status == to_status:
                return TransitionResult(ok=True, changed=False, status=task.status, error=conflict)
            return TransitionResult.failure(conflict, status=task.status)

        self.log_task_action(task.id, task.task_type, LOG_ACTIONS[to_status], to_status, details)
        return TransitionResult.success(to_status)

    def find_due_tasks(self, now: datetime, limit: int = 100) -> list[ScheduledTask]:
        """Pending tasks scheduled at or before ``now``, oldest first."""
        return (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status == TaskStatus.PENDING,
                ScheduledTask.scheduled_for <= ensure_utc(now),
            )
            .order_by(ScheduledTask.scheduled_for.asc(), ScheduledTask.id.asc())
            .limit(limit)
            .all()
        )

    def fail_stale_running(self, started_before: datetime) -> list[int]:
        """Fail tasks stuck in running since before ``started_before``.

        A worker that died mid-task leaves its task running; failing it
        lets the owning policy fire again.

        Returns:
            Ids of the failed tasks.
        """
        stale = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status == TaskStatus.RUNNING,
                ScheduledTask.started_at < ensure_utc(started_before),
            )
            .all()
        )
        failed = []
        for task in stale:
            if self.fail_task(task.id, "Task exceeded the running time limit"):
                failed.append(task.id)
                if task.sync_settings_id and task.trigger == TaskTrigger.AUTO:
                    self.record_last_run(task.sync_settings_id)
        return failed

    def cleanup_finished_tasks(self, older_than: datetime) -> int:
        """Delete completed and failed tasks last updated before ``older_than``.

        Returns:
            Number of deleted tasks.
        """
        deleted = (
            self.db.query(ScheduledTask)
            .filter(
                ScheduledTask.status.in_(TaskStatus.FINISHED),
                ScheduledTask.updated_at < ensure_utc(older_than),
            )
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted

    # =========================================================================
    # MANUAL TRIGGER
    # =========================================================================

    def trigger_sync_now(
        self,
        entity_type: str,
        entity_id: str,
        acting_user_id: str,
        config: Optional[dict[str, Any]] = None,
    ) -> ScheduledTask:
        """Create a manual sync task due now.

        Manual runs are additive: the policy's ``last_run`` and next
        automatic fire are not touched.

        Raises:
            ValidationError: If the integration kind or actor is invalid.
        """
        if entity_type not in SyncEntityType.ALL:
            raise ValidationError(f"Invalid entity_type: {entity_type}")
        if not entity_id:
            raise ValidationError("entity_id is required")
        if not acting_user_id:
            raise ValidationError("acting_user_id is required")

        settings = self.get_sync_settings(entity_type, entity_id)
        if config is None and settings is not None:
            config = settings.config

        task = self.create_task(
            task_type=task_type_for(entity_type),
            scheduled_for=self.clock.now(),
            entity_type=entity_type,
            entity_id=entity_id,
            config=config,
            trigger=TaskTrigger.MANUAL,
            sync_settings_id=settings.id if settings is not None else None,
            created_by=acting_user_id,
        )
        logger.info(
            "Manual sync triggered",
            extra={
                "task_id": task.id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "acting_user_id": acting_user_id,
            },
        )
        return task

    # =========================================================================
    # LOGS
    # =========================================================================

    def log_task_action(
        self,
        task_id: Optional[int],
        task_type: str,
        action: str,
        status: str,
        details: Optional[dict[str, Any]] = None,
    ) -> SchedulerLog:
        """Append a scheduler log entry."""
        entry = SchedulerLog(
            task_id=task_id,
            task_type=task_type,
            action=action,
            status=status,
            details=build_details(**details) if details is not None else None,
            created_at=self.clock.now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_task_logs(self, task_id: int, limit: int = 50) -> list[SchedulerLog]:
        """Get the log of a task, oldest first."""
        return (
            self.db.query(SchedulerLog)
            .filter(SchedulerLog.task_id == task_id)
            .order_by(SchedulerLog.created_at.asc(), SchedulerLog.id.asc())
            .limit(limit)
            .all()
        )

    def serialize_error(
        self,
        error: Union[str, Exception],
        include_traceback: bool = False,
    ) -> str:
        """Serialize an error to a string suitable for storage.

        Args:
            error: The error message or exception.
            include_traceback: Whether to include traceback.

        Returns:
            Serialized error string (truncated if too long).
        """
        if isinstance(error, str):
            error_str = error
        elif isinstance(error, Exception):
            if include_traceback:
                error_str = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            else:
                error_str = f"{type(error).__name__}: {error}"
        else:
            error_str = str(error)

        if len(error_str) > MAX_ERROR_LENGTH:
            error_str = error_str[: MAX_ERROR_LENGTH - 3] + "..."

        return error_str
