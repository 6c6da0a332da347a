"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates all tables for the follow-up engine and the recurring scheduler:
- followup_templates
- followup_rules
- followup_actions
- followup_logs
- notification_followup_links
- profile_submission_followups
- sync_settings
- scheduled_tasks
- scheduler_logs
- post_pipeline_items
- pipeline_settings
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import mysql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TRIGGER_EVENTS = (
    "profile_sent",
    "interview_scheduled",
    "interview_completed",
    "offer_sent",
    "application_received",
    "application_status_changed",
    "candidate_added",
    "talent_pool_added",
    "no_contact_period_elapsed",
    "job_expiring",
    "manual",
)
SUBJECT_TYPES = ("candidate", "application", "job", "talent_pool")
ACTION_TYPES = ("email", "call", "meeting", "sms", "note", "task", "other")
PRIORITIES = ("low", "medium", "high")


def upgrade() -> None:
    # Follow-up templates
    op.create_table(
        "followup_templates",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "action_type",
            sa.Enum(*ACTION_TYPES, name="followup_action_type_enum"),
            nullable=False,
        ),
        sa.Column("template_content", sa.Text, nullable=True),
        sa.Column(
            "default_priority",
            sa.Enum(*PRIORITIES, name="followup_priority_enum"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("default_days_offset", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "trigger_on",
            sa.Enum(*TRIGGER_EVENTS, name="followup_trigger_enum"),
            nullable=True,
        ),
        sa.Column(
            "applicability",
            sa.Enum(*SUBJECT_TYPES, name="followup_subject_enum"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_followup_template_trigger",
        "followup_templates",
        ["trigger_on", "applicability", "is_active"],
    )

    # Follow-up rules
    op.create_table(
        "followup_rules",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "trigger_event",
            sa.Enum(*TRIGGER_EVENTS, name="followup_trigger_enum"),
            nullable=False,
        ),
        sa.Column(
            "entity_type",
            sa.Enum(*SUBJECT_TYPES, name="followup_subject_enum"),
            nullable=False,
        ),
        sa.Column("days_offset", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "action_type",
            sa.Enum(*ACTION_TYPES, name="followup_action_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "priority",
            sa.Enum(*PRIORITIES, name="followup_priority_enum"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("template_id", sa.BigInteger, nullable=True),
        sa.Column(
            "assigned_to_type",
            sa.Enum(
                "specific_user",
                "creator",
                "manager",
                "recruiter",
                name="followup_assignee_type_enum",
            ),
            nullable=False,
            server_default="creator",
        ),
        sa.Column("assigned_to_user_id", sa.String(64), nullable=True),
        sa.Column("conditions", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["template_id"], ["followup_templates.id"], name="fk_followup_rule_template"
        ),
    )
    op.create_index(
        "idx_followup_rule_trigger",
        "followup_rules",
        ["trigger_event", "entity_type", "is_active"],
    )

    # Follow-up actions
    op.create_table(
        "followup_actions",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("due_date", sa.DateTime, nullable=False),
        sa.Column(
            "priority",
            sa.Enum(*PRIORITIES, name="followup_priority_enum"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column(
            "action_type",
            sa.Enum(*ACTION_TYPES, name="followup_action_type_enum"),
            nullable=False,
        ),
        sa.Column("assigned_to", sa.String(64), nullable=False),
        sa.Column("assigned_by", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "in_progress",
                "completed",
                "cancelled",
                name="followup_status_enum",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("reminder_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("reminder_date", sa.DateTime, nullable=True),
        sa.Column("reminder_claimed_at", sa.DateTime, nullable=True),
        sa.Column("candidate_id", sa.String(64), nullable=True),
        sa.Column("application_id", sa.String(64), nullable=True),
        sa.Column("job_id", sa.String(64), nullable=True),
        sa.Column("talent_pool_id", sa.String(64), nullable=True),
        sa.Column("rule_id", sa.BigInteger, nullable=True),
        sa.Column("template_id", sa.BigInteger, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["rule_id"], ["followup_rules.id"], name="fk_followup_action_rule"
        ),
        sa.ForeignKeyConstraint(
            ["template_id"], ["followup_templates.id"], name="fk_followup_action_template"
        ),
    )
    op.create_index(
        "idx_followup_action_due",
        "followup_actions",
        ["status", "reminder_sent", "due_date"],
    )
    op.create_index(
        "idx_followup_action_assignee", "followup_actions", ["assigned_to", "status"]
    )
    op.create_index(
        "idx_followup_action_application", "followup_actions", ["application_id"]
    )
    op.create_index("idx_followup_action_candidate", "followup_actions", ["candidate_id"])

    # Follow-up logs
    op.create_table(
        "followup_logs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("followup_action_id", sa.BigInteger, nullable=False),
        sa.Column(
            "action_type",
            sa.Enum(
                "create",
                "update",
                "complete",
                "cancel",
                "remind",
                name="followup_log_type_enum",
            ),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_followup_log_action", "followup_logs", ["followup_action_id", "created_at"]
    )

    # Notification links
    op.create_table(
        "notification_followup_links",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("notification_id", sa.String(128), nullable=False),
        sa.Column("followup_action_id", sa.BigInteger, nullable=False),
        sa.Column("kind", sa.String(32), nullable=False, server_default="assigned"),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["followup_action_id"],
            ["followup_actions.id"],
            name="fk_notification_link_action",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "idx_notification_link_action",
        "notification_followup_links",
        ["followup_action_id"],
    )

    # Profile submission watchdog
    op.create_table(
        "profile_submission_followups",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("application_id", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("sent_by", sa.String(64), nullable=False),
        sa.Column("sent_at", sa.DateTime, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "followed_up",
                "response_received",
                "no_response",
                "cancelled",
                name="profile_submission_status_enum",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("response_received_at", sa.DateTime, nullable=True),
        sa.Column("response_details", sa.Text, nullable=True),
        sa.Column("followup_action_id", sa.BigInteger, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["followup_action_id"],
            ["followup_actions.id"],
            name="fk_profile_submission_action",
        ),
    )
    op.create_index(
        "idx_profile_submission_status",
        "profile_submission_followups",
        ["status", "sent_at"],
    )
    op.create_index(
        "idx_profile_submission_action",
        "profile_submission_followups",
        ["followup_action_id"],
    )

    # Sync settings
    op.create_table(
        "sync_settings",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column(
            "sync_interval_type",
            sa.Enum(
                "once",
                "hourly",
                "daily",
                "weekly",
                "monthly",
                "custom",
                name="sync_interval_type_enum",
            ),
            nullable=False,
            server_default="daily",
        ),
        sa.Column("sync_interval_value", sa.Integer, nullable=True),
        sa.Column(
            "sync_interval_unit",
            sa.Enum("minutes", "hours", "days", "weeks", name="sync_interval_unit_enum"),
            nullable=True,
        ),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_run", sa.DateTime, nullable=True),
        sa.Column("next_run", sa.DateTime, nullable=True),
        sa.Column("config", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_sync_settings_entity"),
    )
    op.create_index("idx_sync_settings_enabled", "sync_settings", ["enabled", "next_run"])

    # Scheduled tasks
    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "task_type",
            sa.Enum(
                "sync",
                "social_post",
                "movido_post",
                "job_refresh",
                "portal_sync",
                "pipeline_processor",
                "data_cleanup",
                "custom",
                name="scheduled_task_type_enum",
            ),
            nullable=False,
        ),
        sa.Column(
            "trigger",
            sa.Enum("auto", "manual", name="scheduled_task_trigger_enum"),
            nullable=False,
            server_default="auto",
        ),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "running",
                "completed",
                "failed",
                "cancelled",
                name="scheduled_task_status_enum",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("entity_type", sa.String(32), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("sync_settings_id", sa.BigInteger, nullable=True),
        # Microsecond precision, fire keys compare on this column
        sa.Column(
            "scheduled_for",
            sa.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("last_run", sa.DateTime, nullable=True),
        sa.Column("config", sa.JSON, nullable=True),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["sync_settings_id"],
            ["sync_settings.id"],
            name="fk_scheduled_task_settings",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint(
            "entity_type",
            "entity_id",
            "scheduled_for",
            "trigger",
            name="uq_scheduled_task_fire",
        ),
    )
    op.create_index("idx_scheduled_task_due", "scheduled_tasks", ["status", "scheduled_for"])

    # Scheduler logs
    op.create_table(
        "scheduler_logs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.BigInteger, nullable=True),
        sa.Column("task_type", sa.String(32), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "start",
                "complete",
                "fail",
                "cancel",
                "reschedule",
                "skip",
                name="scheduler_log_action_enum",
            ),
            nullable=False,
        ),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_scheduler_log_task", "scheduler_logs", ["task_id", "created_at"])

    platforms = ("linkedin", "xing", "facebook", "instagram", "twitter", "other")

    # Posting pipeline
    op.create_table(
        "post_pipeline_items",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "pipeline_type",
            sa.Enum("social_media", "movido", name="pipeline_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "platform", sa.Enum(*platforms, name="pipeline_platform_enum"), nullable=True
        ),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "scheduled",
                "posted",
                "failed",
                "cancelled",
                name="pipeline_status_enum",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("scheduled_for", sa.DateTime, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("content_template", sa.String(128), nullable=True),
        sa.Column("content_params", sa.JSON, nullable=True),
        sa.Column("target_audience", sa.JSON, nullable=True),
        sa.Column("scheduled_task_id", sa.BigInteger, nullable=True),
        sa.Column("posted_at", sa.DateTime, nullable=True),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["scheduled_task_id"],
            ["scheduled_tasks.id"],
            name="fk_pipeline_item_task",
            ondelete="SET NULL",
        ),
    )
    op.create_index(
        "idx_pipeline_item_queue",
        "post_pipeline_items",
        ["pipeline_type", "platform", "status", "priority"],
    )
    op.create_index(
        "idx_pipeline_item_entity", "post_pipeline_items", ["entity_type", "entity_id"]
    )

    op.create_table(
        "pipeline_settings",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "pipeline_type",
            sa.Enum("social_media", "movido", name="pipeline_settings_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "platform",
            sa.Enum(*platforms, name="pipeline_settings_platform_enum"),
            nullable=True,
        ),
        sa.Column("daily_limit", sa.Integer, nullable=False, server_default="5"),
        sa.Column("posting_hours", sa.JSON, nullable=True),
        sa.Column("posting_days", sa.JSON, nullable=True),
        sa.Column("min_interval_minutes", sa.Integer, nullable=False, server_default="30"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("config", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "pipeline_type", "platform", name="uq_pipeline_settings_platform"
        ),
    )



def downgrade() -> None:
    # Drop tables in reverse order of creation (respecting foreign keys)
    op.drop_table("pipeline_settings")
    op.drop_table("post_pipeline_items")
    op.drop_table("scheduler_logs")
    op.drop_table("scheduled_tasks")
    op.drop_table("sync_settings")
    op.drop_table("profile_submission_followups")
    op.drop_table("notification_followup_links")
    op.drop_table("followup_logs")
    op.drop_table("followup_actions")
    op.drop_table("followup_rules")
    op.drop_table("followup_templates")
