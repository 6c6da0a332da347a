"""Sweep scheduler for due follow-ups and recurring tasks.

One sweep runs three independent sub-sweeps, each idempotent and each
callable on its own:

1. Reminders: open actions past their due date whose reminder has not
   been sent are claimed, notified and marked as reminded. A failed or
   timed-out dispatch releases the claim so the next sweep retries.
2. No response: followed-up profile submissions sent at least
   ``profile_no_response_days`` ago are marked ``no_response``.
3. Recurring tasks: every enabled sync policy whose next fire is due gets
   its fire task (created once per fire key), claimed and executed. Due
   manual and ad-hoc tasks are executed the same way.

Failures of single items are logged and counted; they never abort the
sweep.

Usage:
    scheduler = SweepScheduler(db=session, gateway=gateway)
    report = scheduler.run()
    print(report.to_dict())
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from recruitflow_core.config import Settings, get_settings
from recruitflow_core.domain.models import (
    FollowupAction,
    ScheduledTask,
    SyncSettings,
    TaskStatus,
    TaskTrigger,
)
from recruitflow_core.domain.services.clock import Clock, get_clock, to_iso
from recruitflow_core.domain.services.executors import (
    TaskExecutorRegistry,
    get_registry,
)
from recruitflow_core.domain.services.followup_actions import (
    FollowupActionService,
    build_reminder_request,
)
from recruitflow_core.domain.services.notifications import (
    NotificationGateway,
    NullNotificationGateway,
)
from recruitflow_core.domain.services.profile_submission import ProfileSubmissionService
from recruitflow_core.domain.services.scheduled_tasks import ScheduledTaskService
from recruitflow_core.observability.metrics import MetricsCollector, get_collector

logger = logging.getLogger(__name__)

# Cap on errors kept in a report
MAX_REPORT_ERRORS = 50


@dataclass
class SweepReport:
    """Counts of one sweep run, per sub-sweep."""

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    reminders_sent: int = 0
    reminders_failed: int = 0
    reminders_skipped: int = 0
    no_response_marked: int = 0
    tasks_started: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_REPORT_ERRORS:
            self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "reminders": {
                "sent": self.reminders_sent,
                "failed": self.reminders_failed,
                "skipped": self.reminders_skipped,
            },
            "no_response_marked": self.no_response_marked,
            "tasks": {
                "started": self.tasks_started,
                "completed": self.tasks_completed,
                "failed": self.tasks_failed,
                "skipped": self.tasks_skipped,
            },
            "errors": list(self.errors),
        }


class SweepScheduler:
    """Runs the periodic sweeps against one database session."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        gateway: Optional[NotificationGateway] = None,
        executors: Optional[TaskExecutorRegistry] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
        commit_each: bool = False,
    ):
        """Initialize the sweep scheduler.

        Args:
            db: SQLAlchemy database session.
            clock: Time source (defaults to the system clock).
            gateway: Notification gateway for reminders.
            executors: Executor registry for scheduled tasks.
            settings: Settings (timeouts, pool size, windows).
            metrics: Metrics collector (defaults to the global one).
            commit_each: Commit after every claim and item so other
                sweep processes see claims immediately. Workers set this;
                tests keep everything in one transaction.
        """
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.gateway = gateway or NullNotificationGateway()
        self.executors = executors or get_registry()
        self.metrics = metrics or get_collector()
        self.commit_each = commit_each

        self.actions = FollowupActionService(
            db, clock=self.clock, gateway=self.gateway, settings=self.settings
        )
        self.submissions = ProfileSubmissionService(
            db, clock=self.clock, actions=self.actions, settings=self.settings
        )
        self.tasks = ScheduledTaskService(db, clock=self.clock)

    def _checkpoint(self) -> None:
        if self.commit_each:
            self.db.commit()
        else:
            self.db.flush()

    def _recover(self) -> None:
        if self.commit_each:
            self.db.rollback()

    # =========================================================================
    # FULL SWEEP
    # =========================================================================

    def run(self) -> SweepReport:
        """Run all three sub-sweeps. Never raises for item failures."""
        report = SweepReport(started_at=self.clock.now())

        with self.metrics.timer("sweep_duration_seconds"):
            for name, sub_sweep in (
                ("reminders", self.sweep_reminders),
                ("no_response", self.sweep_no_response),
                ("recurring_tasks", self.sweep_recurring_tasks),
            ):
                try:
                    sub_sweep(report)
                except Exception as e:
                    self._recover()
                    logger.error(
                        "Sub-sweep failed",
                        exc_info=True,
                        extra={"sub_sweep": name, "error": f"{type(e).__name__}: {e}"},
                    )
                    report.add_error(f"{name}: {type(e).__name__}: {e}")

        report.finished_at = self.clock.now()
        self.metrics.increment("sweep_runs_total")

        logger.info("Sweep finished", extra=report.to_dict())
        return report

    # =========================================================================
    # REMINDERS
    # =========================================================================

    def sweep_reminders(self, report: Optional[SweepReport] = None) -> SweepReport:
        """Send reminders for due, open, unreminded actions."""
        report = report or SweepReport(started_at=self.clock.now())
        now = self.clock.now()
        lease = self.settings.reminder_claim_lease_seconds

        claimed: list[FollowupAction] = []
        for action in self.actions.find_due_unreminded(now):
            try:
                if self.actions.claim_reminder(action.id, now, lease):
                    claimed.append(action)
                else:
                    report.reminders_skipped += 1
                self._checkpoint()
            except Exception as e:
                self._recover()
                report.reminders_failed += 1
                report.add_error(f"reminder claim {action.id}: {type(e).__name__}: {e}")
                logger.error(
                    "Reminder claim failed", exc_info=True, extra={"action_id": action.id}
                )

        if not claimed:
            return report

        requests = {action.id: build_reminder_request(action) for action in claimed}
        pool = ThreadPoolExecutor(
            max_workers=self.settings.sweep_max_workers,
            thread_name_prefix="reminder-dispatch",
        )
        futures: dict[int, Future] = {}
        try:
            for action_id, request in requests.items():
                futures[action_id] = pool.submit(self.gateway.notify_user, request)
            wait(futures.values(), timeout=self.settings.notification_timeout_seconds)
        finally:
            # Dispatches still running past the timeout are abandoned
            pool.shutdown(wait=False, cancel_futures=True)

        for action_id, future in futures.items():
            self._record_dispatch(action_id, future, now, report)

        self.metrics.increment("reminders_sent_total", report.reminders_sent)
        self.metrics.increment("reminders_failed_total", report.reminders_failed)
        return report

    def _record_dispatch(
        self, action_id: int, future: Future, now: datetime, report: SweepReport
    ) -> None:
        error = None
        notification_id = None
        if not future.done():
            error = "notification dispatch timed out"
        elif future.cancelled():
            error = "notification dispatch cancelled"
        elif future.exception() is not None:
            exc = future.exception()
            error = f"{type(exc).__name__}: {exc}"
        else:
            notification_id = future.result()
            if not notification_id:
                error = "notification gateway returned no id"

        try:
            if error is not None:
                self.actions.release_reminder_claim(action_id)
                self._checkpoint()
                report.reminders_failed += 1
                logger.warning(
                    "Reminder dispatch failed, will retry",
                    extra={"action_id": action_id, "error": error},
                )
                return

            if self.actions.mark_reminder_sent(action_id, now, notification_id):
                report.reminders_sent += 1
            else:
                report.reminders_skipped += 1
            self._checkpoint()
        except Exception as e:
            self._recover()
            report.reminders_failed += 1
            report.add_error(f"reminder {action_id}: {type(e).__name__}: {e}")
            logger.error(
                "Recording reminder failed", exc_info=True, extra={"action_id": action_id}
            )

    # =========================================================================
    # NO RESPONSE
    # =========================================================================

    def sweep_no_response(self, report: Optional[SweepReport] = None) -> SweepReport:
        """Mark stale followed-up profile submissions as no_response."""
        report = report or SweepReport(started_at=self.clock.now())
        now = self.clock.now()

        for submission in self.submissions.find_stale_followed_up(now):
            try:
                if self.submissions.mark_no_response(submission.id, now):
                    report.no_response_marked += 1
                self._checkpoint()
            except Exception as e:
                self._recover()
                report.add_error(f"submission {submission.id}: {type(e).__name__}: {e}")
                logger.error(
                    "Marking no_response failed",
                    exc_info=True,
                    extra={"submission_id": submission.id},
                )

        self.metrics.increment("submissions_no_response_total", report.no_response_marked)
        return report

    # =========================================================================
    # RECURRING TASKS
    # =========================================================================

    def sweep_recurring_tasks(self, report: Optional[SweepReport] = None) -> SweepReport:
        """Fire due sync policies and run due pending tasks."""
        report = report or SweepReport(started_at=self.clock.now())
        now = self.clock.now()

        stale_before = now - timedelta(seconds=self.settings.task_stale_after_seconds)
        try:
            stale = self.tasks.fail_stale_running(stale_before)
            if stale:
                report.tasks_failed += len(stale)
                logger.warning("Failed stale running tasks", extra={"task_ids": stale})
            self._checkpoint()
        except Exception as e:
            self._recover()
            report.add_error(f"stale tasks: {type(e).__name__}: {e}")
            logger.error("Failing stale tasks failed", exc_info=True)

        for settings, fire_at in self.tasks.find_due_settings(now):
            try:
                task, created = self.tasks.get_or_create_fire(settings, fire_at)
                self._checkpoint()
                if task.status != TaskStatus.PENDING:
                    report.tasks_skipped += 1
                    logger.debug(
                        "Fire already handled",
                        extra={"task_id": task.id, "status": task.status},
                    )
                    continue
                self._execute(task, settings, report)
            except Exception as e:
                self._recover()
                report.add_error(
                    f"sync {settings.entity_type}/{settings.entity_id}: {type(e).__name__}: {e}"
                )
                logger.error(
                    "Recurring fire failed",
                    exc_info=True,
                    extra={"entity_type": settings.entity_type, "entity_id": settings.entity_id},
                )

        for task in self.tasks.find_due_tasks(now):
            try:
                self._execute(task, task.sync_settings, report)
            except Exception as e:
                self._recover()
                report.add_error(f"task {task.id}: {type(e).__name__}: {e}")
                logger.error("Scheduled task failed", exc_info=True, extra={"task_id": task.id})

        self.metrics.increment("tasks_completed_total", report.tasks_completed)
        self.metrics.increment("tasks_failed_total", report.tasks_failed)
        return report

    def execute_task(self, task_id: int, report: Optional[SweepReport] = None) -> SweepReport:
        """Claim and run a single pending task (used by the worker)."""
        report = report or SweepReport(started_at=self.clock.now())
        task = self.tasks.get_task(task_id)
        if task is None:
            report.add_error(f"task {task_id}: not found")
            return report
        self._execute(task, task.sync_settings, report)
        return report

    def _execute(
        self,
        task: ScheduledTask,
        settings: Optional[SyncSettings],
        report: SweepReport,
    ) -> None:
        if not self.tasks.claim_task(task.id):
            report.tasks_skipped += 1
            self._checkpoint()
            return
        self._checkpoint()
        report.tasks_started += 1

        try:
            result = self.executors.execute(task, settings)
        except Exception as e:
            logger.warning(
                "Task executor raised",
                exc_info=True,
                extra={"task_id": task.id, "task_type": task.task_type},
            )
            self.tasks.fail_task(task.id, e)
            report.tasks_failed += 1
            report.add_error(f"task {task.id}: {type(e).__name__}: {e}")
        else:
            self.tasks.complete_task(task.id, result)
            report.tasks_completed += 1

        if (
            settings is not None
            and task.trigger == TaskTrigger.AUTO
            and task.sync_settings_id == settings.id
        ):
            self.tasks.record_last_run(settings.id, self.clock.now())
        self._checkpoint()


def trigger_scheduler_run(
    db: Session,
    clock: Optional[Clock] = None,
    gateway: Optional[NotificationGateway] = None,
    executors: Optional[TaskExecutorRegistry] = None,
    settings: Optional[Settings] = None,
    commit_each: bool = False,
) -> SweepReport:
    """Run one full sweep now, outside the periodic schedule."""
    scheduler = SweepScheduler(
        db,
        clock=clock,
        gateway=gateway,
        executors=executors,
        settings=settings,
        commit_each=commit_each,
    )
    return scheduler.run()
