"""Unit tests for the posting pipeline.

Tests cover:
1. Posting window arithmetic (UTC, 0 = Sunday)
2. Item and settings validation
3. Daily limits and spreading items over posting windows
4. Executors: publishing items and filling windows from a sync policy
"""

from datetime import datetime, timedelta, timezone

import pytest

from recruitflow_core.domain.errors import ConflictError, NotFoundError, ValidationError
from recruitflow_core.domain.models import (
    PipelineStatus,
    PipelineType,
    ScheduledTask,
    TaskStatus,
    TaskType,
)
from recruitflow_core.domain.services.clock import ensure_utc
from recruitflow_core.domain.services.executors import get_registry
from recruitflow_core.domain.services.pipeline import (
    PIPELINE_ITEM_ENTITY,
    PipelineService,
    next_posting_slot,
    process_movido_pipeline,
    process_social_media_pipeline,
    publish_pipeline_item,
    register_publisher,
    unregister_publisher,
    weekday,
)
from recruitflow_core.domain.services.sweep import SweepScheduler
from tests.factories import T0, RecordingGateway, create_pipeline_item, create_sync_settings


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def service(db_session, clock):
    return PipelineService(db_session, clock=clock)


@pytest.fixture
def scheduler(db_session, clock, test_settings, metrics):
    return SweepScheduler(
        db_session,
        clock=clock,
        gateway=RecordingGateway(),
        executors=get_registry(),
        settings=test_settings,
        metrics=metrics,
    )


@pytest.fixture
def published():
    """Social media publisher recording the items it posts."""
    posted = []

    def publisher(item):
        posted.append(item.id)
        return {"post_id": f"{item.platform}-{item.id}"}

    register_publisher(PipelineType.SOCIAL_MEDIA, publisher)
    yield posted
    unregister_publisher(PipelineType.SOCIAL_MEDIA)


# =============================================================================
# POSTING WINDOWS
# =============================================================================


class TestNextPostingSlot:
    """Tests for posting window arithmetic. T0 is Monday 10:00 UTC."""

    def test_weekday_counts_from_sunday(self):
        assert weekday(T0) == 1
        assert weekday(at(7, 12)) == 0
        assert weekday(at(6, 12)) == 6

    def test_unrestricted_is_now(self):
        assert next_posting_slot(T0) == T0

    def test_next_hour_boundary_same_day(self):
        assert next_posting_slot(T0, posting_hours=[9, 14]) == at(1, 14)

    def test_past_last_hour_rolls_to_next_day(self):
        assert next_posting_slot(T0, posting_hours=[8]) == at(2, 8)

    def test_inclusive_inside_window(self):
        assert next_posting_slot(T0, posting_hours=[10], inclusive=True) == T0
        assert next_posting_slot(T0, posting_hours=[10]) == at(2, 10)

    def test_days_without_hours_default_to_nine(self):
        # Wednesday
        assert next_posting_slot(T0, posting_days=[3]) == at(3, 9)

    def test_sunday_window(self):
        assert next_posting_slot(T0, posting_hours=[12], posting_days=[0]) == at(7, 12)

    def test_later_the_same_weekday(self):
        assert next_posting_slot(T0, posting_hours=[16], posting_days=[1]) == at(1, 16)


# =============================================================================
# ITEMS
# =============================================================================


class TestItems:
    """Tests for queueing and managing items."""

    def test_add_social_media_item(self, service):
        item = service.create_social_media_post_item(42, "linkedin", priority=2)

        assert item.id is not None
        assert item.pipeline_type == PipelineType.SOCIAL_MEDIA
        assert item.entity_type == "job"
        assert item.entity_id == "42"
        assert item.status == PipelineStatus.PENDING
        assert item.content_template == "default"

    def test_add_movido_item(self, service):
        item = service.create_movido_post_item("J7")

        assert item.platform is None
        assert item.content_template == "movido_default"

    @pytest.mark.parametrize(
        "pipeline_type,platform,message",
        [
            ("print", None, "Invalid pipeline_type"),
            ("social_media", None, "need platform"),
            ("social_media", "myspace", "need platform"),
            ("movido", "linkedin", "take no platform"),
        ],
    )
    def test_invalid_items(self, service, pipeline_type, platform, message):
        with pytest.raises(ValidationError, match=message):
            service.add_to_pipeline(pipeline_type, "job", "J1", platform=platform)

    def test_entity_is_required(self, service):
        with pytest.raises(ValidationError, match="entity_id is required"):
            service.add_to_pipeline(PipelineType.MOVIDO, "job", "")

    def test_list_orders_by_priority_then_schedule(self, service, db_session):
        late = create_pipeline_item(db_session, entity_id="late", scheduled_for=at(5, 9))
        early = create_pipeline_item(db_session, entity_id="early", scheduled_for=at(2, 9))
        urgent = create_pipeline_item(db_session, entity_id="urgent", priority=5)

        items = service.list_items(pipeline_type=PipelineType.SOCIAL_MEDIA)

        assert [i.id for i in items] == [urgent.id, early.id, late.id]

    def test_list_filters(self, service, db_session):
        create_pipeline_item(db_session, entity_id="A", priority=1)
        create_pipeline_item(db_session, entity_id="B", status=PipelineStatus.POSTED)
        create_pipeline_item(db_session, entity_id="C", platform="xing")
        create_pipeline_item(
            db_session, pipeline_type=PipelineType.MOVIDO, platform=None, entity_id="D"
        )

        pending = service.list_items(status=PipelineStatus.PENDING)
        open_items = service.list_items(
            status=[PipelineStatus.PENDING, PipelineStatus.POSTED], platform="linkedin"
        )
        prioritized = service.list_items(min_priority=1)

        assert {i.entity_id for i in pending} == {"A", "C", "D"}
        assert {i.entity_id for i in open_items} == {"A", "B"}
        assert [i.entity_id for i in prioritized] == ["A"]

    def test_posted_status_stamps_posted_at(self, service, db_session):
        item = create_pipeline_item(db_session)

        service.update_item_status(item.id, PipelineStatus.POSTED, result={"post_id": "p1"})

        assert ensure_utc(item.posted_at) == T0
        assert item.result == {"post_id": "p1"}

    def test_unknown_status_is_rejected(self, service, db_session):
        item = create_pipeline_item(db_session)

        with pytest.raises(ValidationError):
            service.update_item_status(item.id, "archived")

    def test_remove_cancels_pending_task(self, service, db_session):
        item = create_pipeline_item(db_session)
        service.schedule_item_posting(item.id, at(2, 9))
        task_id = item.scheduled_task_id

        service.remove_from_pipeline(item.id)

        assert service.get_item(item.id) is None
        assert db_session.get(ScheduledTask, task_id).status == TaskStatus.CANCELLED

    def test_remove_missing_item(self, service):
        with pytest.raises(NotFoundError):
            service.remove_from_pipeline(999)


# =============================================================================
# SETTINGS
# =============================================================================


class TestSettings:
    """Tests for pipeline settings."""

    def test_save_is_an_upsert(self, service):
        first = service.save_pipeline_settings(
            PipelineType.SOCIAL_MEDIA, "linkedin", posting_hours=[14, 9, 14]
        )
        second = service.save_pipeline_settings(
            PipelineType.SOCIAL_MEDIA, "linkedin", daily_limit=3, posting_days=[5, 1]
        )

        assert first.id == second.id
        assert second.daily_limit == 3
        assert second.posting_hours is None
        assert second.posting_days == [1, 5]
        assert len(service.list_pipeline_settings()) == 1

    def test_hours_are_deduplicated_and_sorted(self, service):
        settings = service.save_pipeline_settings(
            PipelineType.MOVIDO, posting_hours=[14, 9, 14]
        )

        assert settings.posting_hours == [9, 14]
        assert settings.min_interval_minutes == 30
        assert settings.daily_limit == 5

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"daily_limit": 0}, "daily_limit"),
            ({"min_interval_minutes": 0}, "min_interval_minutes"),
            ({"posting_hours": [24]}, "posting_hours"),
            ({"posting_days": [7]}, "posting_days"),
        ],
    )
    def test_invalid_settings(self, service, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            service.save_pipeline_settings(PipelineType.MOVIDO, **kwargs)

    def test_enable_and_disable(self, service):
        service.save_pipeline_settings(PipelineType.MOVIDO)

        settings = service.set_pipeline_enabled(PipelineType.MOVIDO, None, False)

        assert settings.enabled is False

    def test_enable_missing_settings(self, service):
        with pytest.raises(NotFoundError):
            service.set_pipeline_enabled(PipelineType.SOCIAL_MEDIA, "xing", True)


# =============================================================================
# SCHEDULING
# =============================================================================


class TestScheduling:
    """Tests for posting tasks, windows and daily limits."""

    def test_schedule_item_creates_posting_task(self, service, db_session):
        item = create_pipeline_item(db_session)

        service.schedule_item_posting(item.id, at(2, 9))

        task = db_session.get(ScheduledTask, item.scheduled_task_id)
        assert item.status == PipelineStatus.SCHEDULED
        assert ensure_utc(item.scheduled_for) == at(2, 9)
        assert task.task_type == TaskType.SOCIAL_POST
        assert task.entity_type == PIPELINE_ITEM_ENTITY
        assert task.entity_id == str(item.id)
        assert task.status == TaskStatus.PENDING
        assert ensure_utc(task.scheduled_for) == at(2, 9)

    def test_movido_items_get_movido_tasks(self, service, db_session):
        item = create_pipeline_item(
            db_session, pipeline_type=PipelineType.MOVIDO, platform=None
        )

        service.schedule_item_posting(item.id, at(2, 9))

        assert db_session.get(ScheduledTask, item.scheduled_task_id).task_type == (
            TaskType.MOVIDO_POST
        )

    def test_rescheduling_cancels_the_old_task(self, service, db_session):
        item = create_pipeline_item(db_session)
        service.schedule_item_posting(item.id, at(2, 9))
        old_task_id = item.scheduled_task_id

        service.schedule_item_posting(item.id, at(3, 9))

        assert item.scheduled_task_id != old_task_id
        assert db_session.get(ScheduledTask, old_task_id).status == TaskStatus.CANCELLED
        assert ensure_utc(item.scheduled_for) == at(3, 9)

    def test_posted_item_cannot_be_scheduled(self, service, db_session):
        item = create_pipeline_item(db_session, status=PipelineStatus.POSTED)

        with pytest.raises(ConflictError):
            service.schedule_item_posting(item.id, at(2, 9))

    def test_items_spread_over_windows_and_days(self, service, db_session):
        service.save_pipeline_settings(
            PipelineType.SOCIAL_MEDIA,
            "linkedin",
            daily_limit=2,
            posting_hours=[9, 14],
            min_interval_minutes=30,
        )
        items = [
            create_pipeline_item(db_session, entity_id=f"J{p}", priority=p) for p in (3, 2, 1)
        ]

        ids = service.schedule_pipeline_posts(PipelineType.SOCIAL_MEDIA, "linkedin")

        assert ids == [i.id for i in items]
        assert [ensure_utc(i.scheduled_for) for i in items] == [
            at(1, 14),
            at(1, 14, 30),
            at(2, 9),
        ]
        assert all(i.status == PipelineStatus.SCHEDULED for i in items)

    def test_posted_today_counts_against_the_limit(self, service, db_session):
        service.save_pipeline_settings(PipelineType.SOCIAL_MEDIA, "linkedin", daily_limit=1)
        create_pipeline_item(
            db_session,
            entity_id="done",
            status=PipelineStatus.POSTED,
            posted_at=T0 - timedelta(hours=1),
        )
        item = create_pipeline_item(db_session, entity_id="next")

        service.schedule_pipeline_posts(PipelineType.SOCIAL_MEDIA, "linkedin")

        assert ensure_utc(item.scheduled_for) == at(2, 0)

    def test_disabled_pipeline_schedules_nothing(self, service, db_session):
        service.save_pipeline_settings(PipelineType.MOVIDO, enabled=False)
        create_pipeline_item(db_session, pipeline_type=PipelineType.MOVIDO, platform=None)

        assert service.schedule_pipeline_posts(PipelineType.MOVIDO) == []
        assert service.get_next_items_to_post(PipelineType.MOVIDO) == []

    def test_next_items_respect_remaining_daily_limit(self, service, db_session):
        service.save_pipeline_settings(PipelineType.SOCIAL_MEDIA, "linkedin", daily_limit=2)
        create_pipeline_item(
            db_session, entity_id="today", status=PipelineStatus.POSTED, posted_at=T0
        )
        create_pipeline_item(
            db_session,
            entity_id="yesterday",
            status=PipelineStatus.POSTED,
            posted_at=T0 - timedelta(days=1),
        )
        create_pipeline_item(db_session, entity_id="low", priority=1)
        create_pipeline_item(db_session, entity_id="high", priority=9)

        items = service.get_next_items_to_post(PipelineType.SOCIAL_MEDIA, "linkedin")

        assert service.posted_today_count(PipelineType.SOCIAL_MEDIA, "linkedin") == 1
        assert [i.entity_id for i in items] == ["high"]


# =============================================================================
# EXECUTORS
# =============================================================================


class TestPipelineExecutors:
    """Tests for the executors the sweep runs for pipeline tasks."""

    def test_executors_are_registered(self):
        registry = get_registry()

        assert registry.get(PIPELINE_ITEM_ENTITY) is publish_pipeline_item
        assert registry.get("social_media") is process_social_media_pipeline
        assert registry.get("movido") is process_movido_pipeline

    def test_due_item_is_published(self, service, scheduler, db_session, published):
        item = create_pipeline_item(db_session)
        service.schedule_item_posting(item.id, T0)
        task = db_session.get(ScheduledTask, item.scheduled_task_id)

        report = scheduler.sweep_recurring_tasks()

        assert report.tasks_completed == 1
        assert published == [item.id]
        assert item.status == PipelineStatus.POSTED
        assert ensure_utc(item.posted_at) == T0
        assert item.result == {"post_id": f"linkedin-{item.id}"}
        assert task.status == TaskStatus.COMPLETED
        assert task.result["executed"] is True

    def test_item_without_publisher_goes_back_to_pending(self, service, scheduler, db_session):
        item = create_pipeline_item(db_session)
        service.schedule_item_posting(item.id, T0)
        task = db_session.get(ScheduledTask, item.scheduled_task_id)

        scheduler.sweep_recurring_tasks()

        assert item.status == PipelineStatus.PENDING
        assert item.scheduled_task_id is None
        assert task.status == TaskStatus.COMPLETED
        assert task.result == {"executed": False, "reason": "no publisher registered"}

    def test_publisher_error_fails_item_and_task(self, service, scheduler, db_session):
        def broken(item):
            raise RuntimeError("rate limited")

        register_publisher(PipelineType.SOCIAL_MEDIA, broken)
        try:
            item = create_pipeline_item(db_session)
            service.schedule_item_posting(item.id, T0)
            task = db_session.get(ScheduledTask, item.scheduled_task_id)

            report = scheduler.sweep_recurring_tasks()
        finally:
            unregister_publisher(PipelineType.SOCIAL_MEDIA)

        assert report.tasks_failed == 1
        assert item.status == PipelineStatus.FAILED
        assert "rate limited" in item.error
        assert task.status == TaskStatus.FAILED

    def test_sync_policy_fills_posting_windows(self, service, scheduler, db_session):
        service.save_pipeline_settings(
            PipelineType.SOCIAL_MEDIA, "linkedin", posting_hours=[14]
        )
        create_sync_settings(db_session, entity_type="social_media", entity_id="linkedin")
        item = create_pipeline_item(db_session)

        report = scheduler.sweep_recurring_tasks()

        fire = (
            db_session.query(ScheduledTask)
            .filter(ScheduledTask.entity_type == "social_media")
            .one()
        )
        assert report.tasks_completed == 1
        assert fire.task_type == TaskType.PIPELINE_PROCESSOR
        assert fire.result == {"scheduled": 1, "item_ids": [item.id]}
        assert item.status == PipelineStatus.SCHEDULED
        assert ensure_utc(item.scheduled_for) == at(1, 14)
