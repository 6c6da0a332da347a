"""API dependencies for dependency injection."""

from typing import Annotated

from celery import Celery
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from recruitflow_core.config import Settings, get_settings
from recruitflow_core.domain.errors import (
    ConflictError,
    FollowupError,
    NotFoundError,
    TransitionResult,
    ValidationError,
)
from recruitflow_core.domain.services.clock import Clock, get_clock
from recruitflow_core.domain.services.followup_actions import FollowupActionService
from recruitflow_core.domain.services.followup_rules import FollowupRuleService
from recruitflow_core.domain.services.lifecycle import FollowupLifecycleService
from recruitflow_core.domain.services.pipeline import PipelineService
from recruitflow_core.domain.services.lookups import (
    AssigneeResolver,
    EntityLookup,
    NullAssigneeResolver,
    NullEntityLookup,
)
from recruitflow_core.domain.services.notifications import (
    NotificationGateway,
    build_notification_gateway,
)
from recruitflow_core.domain.services.profile_submission import ProfileSubmissionService
from recruitflow_core.domain.services.rule_engine import RuleEngine
from recruitflow_core.domain.services.scheduled_tasks import ScheduledTaskService
from recruitflow_core.infra.db import get_sync_session_factory


def get_db() -> Session:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_app_clock() -> Clock:
    return get_clock()


def get_gateway(settings: Annotated[Settings, Depends(get_app_settings)]) -> NotificationGateway:
    """Get the notification gateway for the configured endpoint."""
    return build_notification_gateway(settings)


def get_lookup() -> EntityLookup:
    """Get the entity lookup. The surrounding application overrides this."""
    return NullEntityLookup()


def get_resolver() -> AssigneeResolver:
    """Get the assignee resolver. The surrounding application overrides this."""
    return NullAssigneeResolver()


def get_celery_app() -> Celery:
    """Get a Celery app instance for enqueueing worker tasks."""
    settings = get_settings()
    return Celery(broker=settings.celery_broker_url, backend=settings.celery_result_backend)


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ClockDep = Annotated[Clock, Depends(get_app_clock)]
GatewayDep = Annotated[NotificationGateway, Depends(get_gateway)]
LookupDep = Annotated[EntityLookup, Depends(get_lookup)]
ResolverDep = Annotated[AssigneeResolver, Depends(get_resolver)]
CeleryDep = Annotated[Celery, Depends(get_celery_app)]


def get_action_service(
    db: DBSession,
    clock: ClockDep,
    gateway: GatewayDep,
    lookup: LookupDep,
    settings: SettingsDep,
) -> FollowupActionService:
    """Get the follow-up action service."""
    return FollowupActionService(
        db, clock=clock, gateway=gateway, lookup=lookup, settings=settings
    )


ActionServiceDep = Annotated[FollowupActionService, Depends(get_action_service)]


def get_rule_service(db: DBSession) -> FollowupRuleService:
    """Get the rule and template service."""
    return FollowupRuleService(db)


RuleServiceDep = Annotated[FollowupRuleService, Depends(get_rule_service)]


def get_lifecycle_service(
    db: DBSession, clock: ClockDep, actions: ActionServiceDep
) -> FollowupLifecycleService:
    """Get the lifecycle manager."""
    return FollowupLifecycleService(db, clock=clock, actions=actions)


LifecycleServiceDep = Annotated[FollowupLifecycleService, Depends(get_lifecycle_service)]


def get_submission_service(
    db: DBSession,
    clock: ClockDep,
    actions: ActionServiceDep,
    lifecycle: LifecycleServiceDep,
    lookup: LookupDep,
    settings: SettingsDep,
) -> ProfileSubmissionService:
    """Get the profile-submission watchdog service."""
    return ProfileSubmissionService(
        db,
        clock=clock,
        actions=actions,
        lifecycle=lifecycle,
        lookup=lookup,
        settings=settings,
    )


SubmissionServiceDep = Annotated[ProfileSubmissionService, Depends(get_submission_service)]


def get_rule_engine(
    db: DBSession,
    clock: ClockDep,
    actions: ActionServiceDep,
    rules: RuleServiceDep,
    resolver: ResolverDep,
    settings: SettingsDep,
) -> RuleEngine:
    """Get the rule engine."""
    return RuleEngine(
        db,
        clock=clock,
        actions=actions,
        rules=rules,
        resolver=resolver,
        settings=settings,
    )


RuleEngineDep = Annotated[RuleEngine, Depends(get_rule_engine)]


def get_task_service(db: DBSession, clock: ClockDep) -> ScheduledTaskService:
    """Get the scheduled task service."""
    return ScheduledTaskService(db, clock=clock)


TaskServiceDep = Annotated[ScheduledTaskService, Depends(get_task_service)]


def get_pipeline_service(
    db: DBSession, clock: ClockDep, tasks: TaskServiceDep
) -> PipelineService:
    """Get the posting pipeline service."""
    return PipelineService(db, clock=clock, tasks=tasks)


PipelineServiceDep = Annotated[PipelineService, Depends(get_pipeline_service)]


# =============================================================================
# ERROR MAPPING
# =============================================================================


def http_error(error: FollowupError) -> HTTPException:
    """Map a domain error to an HTTP error."""
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(error))


def raise_for_transition(result: TransitionResult) -> None:
    """Raise the HTTP error of a failed transition."""
    if not result.ok and result.error is not None:
        raise http_error(result.error)
