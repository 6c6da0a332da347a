"""Domain models for Recruitflow.

This module defines the SQLAlchemy ORM models for the follow-up and
recurring-task scheduling engine.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class TriggerEvent(str):
    """Business events that can trigger follow-up rules."""

    PROFILE_SENT = "profile_sent"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    OFFER_SENT = "offer_sent"
    APPLICATION_RECEIVED = "application_received"
    APPLICATION_STATUS_CHANGED = "application_status_changed"
    CANDIDATE_ADDED = "candidate_added"
    TALENT_POOL_ADDED = "talent_pool_added"
    NO_CONTACT_PERIOD_ELAPSED = "no_contact_period_elapsed"
    JOB_EXPIRING = "job_expiring"
    MANUAL = "manual"

    ALL = (
        PROFILE_SENT,
        INTERVIEW_SCHEDULED,
        INTERVIEW_COMPLETED,
        OFFER_SENT,
        APPLICATION_RECEIVED,
        APPLICATION_STATUS_CHANGED,
        CANDIDATE_ADDED,
        TALENT_POOL_ADDED,
        NO_CONTACT_PERIOD_ELAPSED,
        JOB_EXPIRING,
        MANUAL,
    )


class SubjectType(str):
    """Entity types a follow-up can be attached to."""

    CANDIDATE = "candidate"
    APPLICATION = "application"
    JOB = "job"
    TALENT_POOL = "talent_pool"

    ALL = (CANDIDATE, APPLICATION, JOB, TALENT_POOL)


class ActionType(str):
    """Follow-up action channel values."""

    EMAIL = "email"
    CALL = "call"
    MEETING = "meeting"
    SMS = "sms"
    NOTE = "note"
    TASK = "task"
    OTHER = "other"

    ALL = (EMAIL, CALL, MEETING, SMS, NOTE, TASK, OTHER)


class Priority(str):
    """Follow-up priority values."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    ALL = (LOW, MEDIUM, HIGH)


class AssigneeType(str):
    """How a rule picks the assignee of the actions it creates."""

    SPECIFIC_USER = "specific_user"
    CREATOR = "creator"
    MANAGER = "manager"
    RECRUITER = "recruiter"

    ALL = (SPECIFIC_USER, CREATOR, MANAGER, RECRUITER)


class FollowupStatus(str):
    """Follow-up action lifecycle values."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING, IN_PROGRESS, COMPLETED, CANCELLED)
    OPEN = (PENDING, IN_PROGRESS)
    TERMINAL = (COMPLETED, CANCELLED)


class FollowupLogType(str):
    """Follow-up audit log entry types."""

    CREATE = "create"
    UPDATE = "update"
    COMPLETE = "complete"
    CANCEL = "cancel"
    REMIND = "remind"

    ALL = (CREATE, UPDATE, COMPLETE, CANCEL, REMIND)


class SubmissionStatus(str):
    """Profile submission watchdog values."""

    PENDING = "pending"
    FOLLOWED_UP = "followed_up"
    RESPONSE_RECEIVED = "response_received"
    NO_RESPONSE = "no_response"
    CANCELLED = "cancelled"

    ALL = (PENDING, FOLLOWED_UP, RESPONSE_RECEIVED, NO_RESPONSE, CANCELLED)
    TERMINAL = (RESPONSE_RECEIVED, NO_RESPONSE, CANCELLED)


class IntervalType(str):
    """Recurring sync interval values."""

    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"

    ALL = (ONCE, HOURLY, DAILY, WEEKLY, MONTHLY, CUSTOM)


class IntervalUnit(str):
    """Units for custom sync intervals."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"

    ALL = (MINUTES, HOURS, DAYS, WEEKS)


class SyncEntityType(str):
    """Integration kinds that own recurring sync settings."""

    JOB_PORTAL = "job_portal"
    SOCIAL_MEDIA = "social_media"
    EMAIL = "email"
    MOVIDO = "movido"
    CRM = "crm"
    OTHER = "other"

    ALL = (JOB_PORTAL, SOCIAL_MEDIA, EMAIL, MOVIDO, CRM, OTHER)


class TaskType(str):
    """Scheduled task kinds."""

    SYNC = "sync"
    SOCIAL_POST = "social_post"
    MOVIDO_POST = "movido_post"
    JOB_REFRESH = "job_refresh"
    PORTAL_SYNC = "portal_sync"
    PIPELINE_PROCESSOR = "pipeline_processor"
    DATA_CLEANUP = "data_cleanup"
    CUSTOM = "custom"

    ALL = (
        SYNC,
        SOCIAL_POST,
        MOVIDO_POST,
        JOB_REFRESH,
        PORTAL_SYNC,
        PIPELINE_PROCESSOR,
        DATA_CLEANUP,
        CUSTOM,
    )


class TaskStatus(str):
    """Scheduled task lifecycle values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (PENDING, RUNNING, COMPLETED, FAILED, CANCELLED)
    FINISHED = (COMPLETED, FAILED)


class TaskTrigger(str):
    """Whether a task is an interval fire or a manual run."""

    AUTO = "auto"
    MANUAL = "manual"

    ALL = (AUTO, MANUAL)


class SchedulerLogAction(str):
    """Scheduler audit log actions."""

    START = "start"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    SKIP = "skip"

    ALL = (START, COMPLETE, FAIL, CANCEL, RESCHEDULE, SKIP)


class PipelineType(str):
    """Posting pipelines."""

    SOCIAL_MEDIA = "social_media"
    MOVIDO = "movido"

    ALL = (SOCIAL_MEDIA, MOVIDO)


class PipelineStatus(str):
    """Posting pipeline item lifecycle values."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    POSTED = "posted"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (PENDING, SCHEDULED, POSTED, FAILED, CANCELLED)


class SocialPlatform(str):
    """Social networks a social_media pipeline posts to."""

    LINKEDIN = "linkedin"
    XING = "xing"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    OTHER = "other"

    ALL = (LINKEDIN, XING, FACEBOOK, INSTAGRAM, TWITTER, OTHER)



# =============================================================================
# FOLLOW-UP MODELS
# =============================================================================


class FollowupTemplate(Base):
    """Reusable title/content bound to a trigger event and scope."""

    __tablename__ = "followup_templates"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(
        Enum(*ActionType.ALL, name="followup_action_type_enum"), nullable=False
    )
    template_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    default_priority: Mapped[str] = mapped_column(
        Enum(*Priority.ALL, name="followup_priority_enum"),
        nullable=False,
        default=Priority.MEDIUM,
    )
    default_days_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trigger_on: Mapped[Optional[str]] = mapped_column(
        Enum(*TriggerEvent.ALL, name="followup_trigger_enum"), nullable=True
    )
    applicability: Mapped[Optional[str]] = mapped_column(
        Enum(*SubjectType.ALL, name="followup_subject_enum"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    rules: Mapped[list["FollowupRule"]] = relationship(back_populates="template")

    __table_args__ = (
        Index("idx_followup_template_trigger", "trigger_on", "applicability", "is_active"),
    )


class FollowupRule(Base):
    """Standing policy mapping a business event to follow-up actions."""

    __tablename__ = "followup_rules"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trigger_event: Mapped[str] = mapped_column(
        Enum(*TriggerEvent.ALL, name="followup_trigger_enum"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(
        Enum(*SubjectType.ALL, name="followup_subject_enum"), nullable=False
    )
    days_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action_type: Mapped[str] = mapped_column(
        Enum(*ActionType.ALL, name="followup_action_type_enum"), nullable=False
    )
    priority: Mapped[str] = mapped_column(
        Enum(*Priority.ALL, name="followup_priority_enum"),
        nullable=False,
        default=Priority.MEDIUM,
    )
    template_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("followup_templates.id"), nullable=True
    )
    assigned_to_type: Mapped[str] = mapped_column(
        Enum(*AssigneeType.ALL, name="followup_assignee_type_enum"),
        nullable=False,
        default=AssigneeType.CREATOR,
    )
    assigned_to_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    template: Mapped[Optional["FollowupTemplate"]] = relationship(back_populates="rules")

    __table_args__ = (
        Index("idx_followup_rule_trigger", "trigger_event", "entity_type", "is_active"),
    )


class FollowupAction(Base):
    """A scheduled, assignable obligation with a due date."""

    __tablename__ = "followup_actions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    priority: Mapped[str] = mapped_column(
        Enum(*Priority.ALL, name="followup_priority_enum"),
        nullable=False,
        default=Priority.MEDIUM,
    )
    action_type: Mapped[str] = mapped_column(
        Enum(*ActionType.ALL, name="followup_action_type_enum"), nullable=False
    )
    assigned_to: Mapped[str] = mapped_column(String(64), nullable=False)
    assigned_by: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(
        Enum(*FollowupStatus.ALL, name="followup_status_enum"),
        nullable=False,
        default=FollowupStatus.PENDING,
    )
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Lease taken by a sweep while it dispatches the reminder
    reminder_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    candidate_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    application_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    talent_pool_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    rule_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("followup_rules.id"), nullable=True
    )
    template_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("followup_templates.id"), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Logs outlive their action; deleting an action never touches them
    logs: Mapped[list["FollowupLog"]] = relationship(
        primaryjoin="FollowupAction.id == foreign(FollowupLog.followup_action_id)",
        back_populates="action",
        order_by="FollowupLog.id",
        passive_deletes="all",
    )

    __table_args__ = (
        Index("idx_followup_action_due", "status", "reminder_sent", "due_date"),
        Index("idx_followup_action_assignee", "assigned_to", "status"),
        Index("idx_followup_action_application", "application_id"),
        Index("idx_followup_action_candidate", "candidate_id"),
    )


class FollowupLog(Base):
    """Append-only audit trail for follow-up actions.

    ``followup_action_id`` is a plain column rather than a foreign key, so
    the trail survives the cleanup of completed actions.
    """

    __tablename__ = "followup_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    followup_action_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(
        Enum(*FollowupLogType.ALL, name="followup_log_type_enum"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    action: Mapped[Optional["FollowupAction"]] = relationship(
        primaryjoin="FollowupAction.id == foreign(FollowupLog.followup_action_id)",
        back_populates="logs",
    )

    __table_args__ = (
        Index("idx_followup_log_action", "followup_action_id", "created_at"),
    )


class NotificationFollowupLink(Base):
    """Notification ids returned by the gateway for a follow-up action."""

    __tablename__ = "notification_followup_links"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    notification_id: Mapped[str] = mapped_column(String(128), nullable=False)
    followup_action_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("followup_actions.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False, default="assigned")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_notification_link_action", "followup_action_id"),
    )


class ProfileSubmissionFollowup(Base):
    """Watchdog tracking the customer's response to a sent candidate profile."""

    __tablename__ = "profile_submission_followups"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    application_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sent_by: Mapped[str] = mapped_column(String(64), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*SubmissionStatus.ALL, name="profile_submission_status_enum"),
        nullable=False,
        default=SubmissionStatus.PENDING,
    )
    response_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    response_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    followup_action_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("followup_actions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    followup_action: Mapped[Optional["FollowupAction"]] = relationship()

    __table_args__ = (
        Index("idx_profile_submission_status", "status", "sent_at"),
        Index("idx_profile_submission_action", "followup_action_id"),
    )


# =============================================================================
# SCHEDULER MODELS
# =============================================================================


class SyncSettings(Base):
    """Recurring sync/publish policy for one integration instance."""

    __tablename__ = "sync_settings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sync_interval_type: Mapped[str] = mapped_column(
        Enum(*IntervalType.ALL, name="sync_interval_type_enum"),
        nullable=False,
        default=IntervalType.DAILY,
    )
    sync_interval_value: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sync_interval_unit: Mapped[Optional[str]] = mapped_column(
        Enum(*IntervalUnit.ALL, name="sync_interval_unit_enum"), nullable=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    tasks: Mapped[list["ScheduledTask"]] = relationship(back_populates="sync_settings")

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_sync_settings_entity"),
        Index("idx_sync_settings_enabled", "enabled", "next_run"),
    )


class ScheduledTask(Base):
    """One concrete firing of a sync policy, or an ad-hoc job."""

    __tablename__ = "scheduled_tasks"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    task_type: Mapped[str] = mapped_column(
        Enum(*TaskType.ALL, name="scheduled_task_type_enum"), nullable=False
    )
    trigger: Mapped[str] = mapped_column(
        Enum(*TaskTrigger.ALL, name="scheduled_task_trigger_enum"),
        nullable=False,
        default=TaskTrigger.AUTO,
    )
    status: Mapped[str] = mapped_column(
        Enum(*TaskStatus.ALL, name="scheduled_task_status_enum"),
        nullable=False,
        default=TaskStatus.PENDING,
    )
    entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sync_settings_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("sync_settings.id", ondelete="SET NULL"), nullable=True
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql"), nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    sync_settings: Mapped[Optional["SyncSettings"]] = relationship(back_populates="tasks")

    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "scheduled_for",
            "trigger",
            name="uq_scheduled_task_fire",
        ),
        Index("idx_scheduled_task_due", "status", "scheduled_for"),
    )


class SchedulerLog(Base):
    """Append-only audit trail of scheduled task transitions."""

    __tablename__ = "scheduler_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    task_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(
        Enum(*SchedulerLogAction.ALL, name="scheduler_log_action_enum"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("idx_scheduler_log_task", "task_id", "created_at"),)


# =============================================================================
# POSTING PIPELINE MODELS
# =============================================================================


class PostPipelineItem(Base):
    """A job (or other entity) waiting to be posted by a pipeline."""

    __tablename__ = "post_pipeline_items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    pipeline_type: Mapped[str] = mapped_column(
        Enum(*PipelineType.ALL, name="pipeline_type_enum"), nullable=False
    )
    platform: Mapped[Optional[str]] = mapped_column(
        Enum(*SocialPlatform.ALL, name="pipeline_platform_enum"), nullable=True
    )
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*PipelineStatus.ALL, name="pipeline_status_enum"),
        nullable=False,
        default=PipelineStatus.PENDING,
    )
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_template: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    content_params: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    target_audience: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    scheduled_task_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("scheduled_tasks.id", ondelete="SET NULL"), nullable=True
    )
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    scheduled_task: Mapped[Optional["ScheduledTask"]] = relationship()

    __table_args__ = (
        Index("idx_pipeline_item_queue", "pipeline_type", "platform", "status", "priority"),
        Index("idx_pipeline_item_entity", "entity_type", "entity_id"),
    )


class PipelineSettings(Base):
    """Posting window and daily limit of one pipeline (and platform)."""

    __tablename__ = "pipeline_settings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    pipeline_type: Mapped[str] = mapped_column(
        Enum(*PipelineType.ALL, name="pipeline_settings_type_enum"), nullable=False
    )
    platform: Mapped[Optional[str]] = mapped_column(
        Enum(*SocialPlatform.ALL, name="pipeline_settings_platform_enum"), nullable=True
    )
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    # Hours of the day (0-23, UTC) and weekdays (0 = Sunday) posts may go out
    posting_hours: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    posting_days: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    min_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("pipeline_type", "platform", name="uq_pipeline_settings_platform"),
    )
