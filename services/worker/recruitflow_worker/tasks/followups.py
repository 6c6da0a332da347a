"""Follow-up sweep tasks.

Celery beat runs ``followups.run_sweep`` every ``SWEEP_INTERVAL_SECONDS``.
Each sub-sweep is also a task of its own so operators can run one part
on demand. All of them are idempotent: overlapping runs skip items
another run already claimed.
"""

import uuid
from typing import Any, Optional

from recruitflow_worker.celery_app import app


def _operation(name: str, task_id: Optional[str]):
    from recruitflow_core.observability.logging import OperationContext, operation_scope

    return operation_scope(
        OperationContext(operation_id=task_id or uuid.uuid4().hex, operation=name)
    )


def _close_gateway(gateway) -> None:
    close = getattr(gateway, "close", None)
    if close is not None:
        close()


def _run(sub_sweep: str, task_id: Optional[str]) -> dict[str, Any]:
    """Open a session and run one sweep method on a SweepScheduler."""
    # Import here to avoid circular imports
    from recruitflow_core.config import get_settings
    from recruitflow_core.domain.services.notifications import build_notification_gateway
    from recruitflow_core.domain.services.sweep import SweepScheduler
    from recruitflow_core.infra.db import get_sync_session_factory
    from recruitflow_core.observability.logging import get_logger

    logger = get_logger(__name__)

    settings = get_settings()
    gateway = build_notification_gateway(settings)
    session = get_sync_session_factory()()

    with _operation(f"followups.{sub_sweep}", task_id):
        try:
            scheduler = SweepScheduler(
                session, gateway=gateway, settings=settings, commit_each=True
            )
            report = getattr(scheduler, sub_sweep)()
            session.commit()
            result = report.to_dict()
            logger.info("Sweep task finished", report=result)
            return {"status": "ok", **result}

        except Exception as e:
            session.rollback()
            logger.error("Sweep task failed", exc_info=True, error=str(e))
            return {"status": "error", "error": str(e)}

        finally:
            session.close()
            _close_gateway(gateway)


@app.task(name="followups.run_sweep", bind=True, max_retries=0)
def run_sweep(self) -> dict:
    """Run reminders, the no-response watchdog and recurring tasks."""
    return _run("run", self.request.id)


@app.task(name="followups.sweep_reminders", bind=True, max_retries=0)
def sweep_reminders(self) -> dict:
    """Send reminders for due follow-up actions."""
    return _run("sweep_reminders", self.request.id)


@app.task(name="followups.sweep_no_response", bind=True, max_retries=0)
def sweep_no_response(self) -> dict:
    """Mark stale followed-up profile submissions as no_response."""
    return _run("sweep_no_response", self.request.id)


@app.task(name="followups.process_event", bind=True, max_retries=3)
def process_event(self, payload: dict[str, Any]) -> dict:
    """Apply follow-up rules to a business event reported asynchronously.

    Args:
        payload: Dictionary containing:
            - type: Trigger event name
            - subject_kind: candidate, application, job or talent_pool
            - subject_id: Subject id
            - triggered_by: Acting user id
            - attributes: Optional event attributes

    Returns:
        Dictionary with status and the created action ids.
    """
    # Import here to avoid circular imports
    from recruitflow_core.config import get_settings
    from recruitflow_core.domain.errors import ValidationError
    from recruitflow_core.domain.services.notifications import build_notification_gateway
    from recruitflow_core.domain.services.rule_engine import (
        BusinessEvent,
        RuleEngine,
        TriggerSubject,
    )
    from recruitflow_core.infra.db import get_sync_session_factory

    settings = get_settings()
    gateway = build_notification_gateway(settings)
    session = get_sync_session_factory()()

    with _operation("followups.process_event", self.request.id):
        try:
            event = BusinessEvent(
                type=payload.get("type"),
                subject=TriggerSubject(payload.get("subject_kind"), payload.get("subject_id")),
                triggered_by=payload.get("triggered_by"),
                attributes=payload.get("attributes") or {},
            )
            engine = RuleEngine(session, gateway=gateway, settings=settings)
            action_ids = engine.on_business_event(event)
            session.commit()
            return {"status": "ok", "action_ids": action_ids}

        except ValidationError as e:
            session.rollback()
            return {"status": "error", "error": str(e)}

        except Exception as e:
            session.rollback()
            raise self.retry(exc=e)

        finally:
            session.close()
            _close_gateway(gateway)
