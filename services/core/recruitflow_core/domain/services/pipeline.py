"""Posting pipeline for social media and Movido.

Items (usually jobs) wait in a pipeline until they are spread over the
posting windows of their pipeline settings:

    pending -> scheduled -> posted | failed
    pending | scheduled -> cancelled

Scheduling an item creates a one-off scheduled task for it. The sweep runs
that task like any other; the ``post_pipeline_item`` executor hands the
item to the publisher registered for its pipeline. A sync policy of kind
``social_media`` (entity id = platform) or ``movido`` fills the posting
windows on every fire.

Posting hours and days are evaluated in UTC. Days count from 0 = Sunday.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, object_session

from recruitflow_core.domain.errors import ConflictError, NotFoundError, ValidationError
from recruitflow_core.domain.models import (
    PipelineSettings,
    PipelineStatus,
    PipelineType,
    PostPipelineItem,
    ScheduledTask,
    SocialPlatform,
    SyncEntityType,
    SyncSettings,
    TaskStatus,
    TaskTrigger,
    TaskType,
)
from recruitflow_core.domain.services.clock import Clock, FixedClock, ensure_utc, get_clock
from recruitflow_core.domain.services.executors import executor
from recruitflow_core.domain.services.scheduled_tasks import ScheduledTaskService

logger = logging.getLogger(__name__)

# entity_type of the one-off tasks that post a single item
PIPELINE_ITEM_ENTITY = "post_pipeline_item"

DEFAULT_DAILY_LIMIT = 5
DEFAULT_MIN_INTERVAL_MINUTES = 30
# Used when posting days are restricted but no hours are given
DEFAULT_POSTING_HOUR = 9
DEFAULT_BATCH_SIZE = 10
# Scheduling never looks further ahead than this
MAX_LOOKAHEAD_DAYS = 366

DEFAULT_TEMPLATES = {
    PipelineType.SOCIAL_MEDIA: "default",
    PipelineType.MOVIDO: "movido_default",
}

POST_TASK_TYPES = {
    PipelineType.SOCIAL_MEDIA: TaskType.SOCIAL_POST,
    PipelineType.MOVIDO: TaskType.MOVIDO_POST,
}

Publisher = Callable[[PostPipelineItem], Optional[dict[str, Any]]]

_publishers: dict[str, Publisher] = {}


def register_publisher(pipeline_type: str, publisher: Publisher) -> None:
    """Register the function that actually posts items of a pipeline."""
    _publishers[pipeline_type] = publisher


def unregister_publisher(pipeline_type: str) -> None:
    _publishers.pop(pipeline_type, None)


def get_publisher(pipeline_type: str) -> Optional[Publisher]:
    return _publishers.get(pipeline_type)


def weekday(value: datetime) -> int:
    """Day of the week with 0 = Sunday."""
    return (value.weekday() + 1) % 7


def effective_hours(
    posting_hours: Optional[Iterable[int]], posting_days: Optional[Iterable[int]]
) -> list[int]:
    hours = sorted(set(posting_hours or ()))
    if not hours and posting_days:
        return [DEFAULT_POSTING_HOUR]
    return hours


def next_posting_slot(
    after: datetime,
    posting_hours: Optional[Iterable[int]] = None,
    posting_days: Optional[Iterable[int]] = None,
    inclusive: bool = False,
) -> Optional[datetime]:
    """First instant a post may go out, relative to ``after``.

    A posting hour opens a one-hour window. Without posting hours or days
    any instant is allowed.

    Args:
        after: Reference instant.
        posting_hours: Allowed hours of the day (0-23).
        posting_days: Allowed weekdays (0 = Sunday).
        inclusive: Whether ``after`` itself may be returned when it lies
            inside a window.

    Returns:
        The slot, or None if no window opens within a week.
    """
    after = ensure_utc(after)
    days = set(posting_days or ())
    hours = effective_hours(posting_hours, days)

    day_ok = not days or weekday(after) in days
    if day_ok and not hours:
        return after
    if inclusive and day_ok and after.hour in hours:
        return after

    for offset in range(8):
        day = after.date() + timedelta(days=offset)
        candidate_day = datetime.combine(day, time.min, tzinfo=timezone.utc)
        if days and weekday(candidate_day) not in days:
            continue
        if not hours:
            return candidate_day
        for hour in hours:
            slot = candidate_day.replace(hour=hour)
            if slot > after:
                return slot
    return None


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class PipelineService:
    """Service for posting pipeline items and their settings."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        tasks: Optional[ScheduledTaskService] = None,
    ):
        self.db = db
        self.clock = clock or get_clock()
        self.tasks = tasks or ScheduledTaskService(db, clock=self.clock)

    # =========================================================================
    # ITEMS
    # =========================================================================

    def add_to_pipeline(
        self,
        pipeline_type: str,
        entity_type: str,
        entity_id: str,
        platform: Optional[str] = None,
        priority: int = 0,
        scheduled_for: Optional[datetime] = None,
        content_template: Optional[str] = None,
        content_params: Optional[dict[str, Any]] = None,
        target_audience: Optional[dict[str, Any]] = None,
    ) -> PostPipelineItem:
        """Queue an entity for posting.

        Raises:
            ValidationError: If any field is invalid.
        """
        if pipeline_type not in PipelineType.ALL:
            raise ValidationError(f"Invalid pipeline_type: {pipeline_type}")
        self._check_platform(pipeline_type, platform)
        if not entity_type:
            raise ValidationError("entity_type is required")
        if not entity_id:
            raise ValidationError("entity_id is required")

        now = self.clock.now()
        item = PostPipelineItem(
            pipeline_type=pipeline_type,
            platform=platform,
            entity_type=entity_type,
            entity_id=str(entity_id),
            status=PipelineStatus.PENDING,
            scheduled_for=ensure_utc(scheduled_for),
            priority=priority,
            content_template=content_template or DEFAULT_TEMPLATES[pipeline_type],
            content_params=content_params,
            target_audience=target_audience,
            created_at=now,
            updated_at=now,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def create_social_media_post_item(
        self,
        job_id: Union[int, str],
        platform: str,
        priority: int = 0,
        content_params: Optional[dict[str, Any]] = None,
        target_audience: Optional[dict[str, Any]] = None,
    ) -> PostPipelineItem:
        """Queue a job for a social network."""
        return self.add_to_pipeline(
            PipelineType.SOCIAL_MEDIA,
            "job",
            str(job_id),
            platform=platform,
            priority=priority,
            content_params=content_params,
            target_audience=target_audience,
        )

    def create_movido_post_item(
        self,
        job_id: Union[int, str],
        priority: int = 0,
        content_params: Optional[dict[str, Any]] = None,
    ) -> PostPipelineItem:
        """Queue a job for Movido."""
        return self.add_to_pipeline(
            PipelineType.MOVIDO,
            "job",
            str(job_id),
            priority=priority,
            content_params=content_params,
        )

    def get_item(self, item_id: int) -> Optional[PostPipelineItem]:
        return self.db.query(PostPipelineItem).filter(PostPipelineItem.id == item_id).first()

    def get_item_or_raise(self, item_id: int) -> PostPipelineItem:
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Pipeline item not found: {item_id}")
        return item

    def list_items(
        self,
        status: Optional[Union[str, list[str]]] = None,
        pipeline_type: Optional[str] = None,
        platform: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        min_priority: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[PostPipelineItem]:
        """List items, highest priority first, then earliest scheduled."""
        query = self.db.query(PostPipelineItem)

        if isinstance(status, str):
            query = query.filter(PostPipelineItem.status == status)
        elif status:
            query = query.filter(PostPipelineItem.status.in_(status))
        if pipeline_type:
            query = query.filter(PostPipelineItem.pipeline_type == pipeline_type)
        if platform:
            query = query.filter(PostPipelineItem.platform == platform)
        if entity_type:
            query = query.filter(PostPipelineItem.entity_type == entity_type)
        if entity_id:
            query = query.filter(PostPipelineItem.entity_id == str(entity_id))
        if from_date is not None:
            query = query.filter(PostPipelineItem.scheduled_for >= ensure_utc(from_date))
        if to_date is not None:
            query = query.filter(PostPipelineItem.scheduled_for <= ensure_utc(to_date))
        if min_priority is not None:
            query = query.filter(PostPipelineItem.priority >= min_priority)

        query = query.order_by(
            PostPipelineItem.priority.desc(),
            PostPipelineItem.scheduled_for.asc(),
            PostPipelineItem.id.asc(),
        )
        return query.offset(offset).limit(limit).all()

    def update_item_status(
        self,
        item_id: int,
        status: str,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> PostPipelineItem:
        """Set an item's status. Posting stamps ``posted_at``.

        Raises:
            ValidationError: If the status is unknown.
            NotFoundError: If the item does not exist.
        """
        if status not in PipelineStatus.ALL:
            raise ValidationError(f"Invalid pipeline status: {status}")
        item = self.get_item_or_raise(item_id)

        now = self.clock.now()
        item.status = status
        if status == PipelineStatus.POSTED:
            item.posted_at = now
        if result is not None:
            item.result = result
        if error is not None:
            item.error = error
        item.updated_at = now
        self.db.flush()
        return item

    def remove_from_pipeline(self, item_id: int) -> None:
        """Delete an item and cancel its posting task if still pending.

        Raises:
            NotFoundError: If the item does not exist.
        """
        item = self.get_item_or_raise(item_id)
        self._cancel_posting_task(item, reason="pipeline item removed")
        self.db.delete(item)
        self.db.flush()

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def save_pipeline_settings(
        self,
        pipeline_type: str,
        platform: Optional[str] = None,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        posting_hours: Optional[list[int]] = None,
        posting_days: Optional[list[int]] = None,
        min_interval_minutes: int = DEFAULT_MIN_INTERVAL_MINUTES,
        enabled: bool = True,
        config: Optional[dict[str, Any]] = None,
    ) -> PipelineSettings:
        """Create or update the settings of a pipeline (and platform).

        Raises:
            ValidationError: If any field is invalid.
        """
        if pipeline_type not in PipelineType.ALL:
            raise ValidationError(f"Invalid pipeline_type: {pipeline_type}")
        self._check_platform(pipeline_type, platform)
        if daily_limit < 1:
            raise ValidationError("daily_limit must be at least 1")
        if min_interval_minutes < 1:
            raise ValidationError("min_interval_minutes must be at least 1")
        if any(not 0 <= h <= 23 for h in posting_hours or ()):
            raise ValidationError("posting_hours must be between 0 and 23")
        if any(not 0 <= d <= 6 for d in posting_days or ()):
            raise ValidationError("posting_days must be between 0 (Sunday) and 6")

        now = self.clock.now()
        settings = self.get_pipeline_settings(pipeline_type, platform)
        if settings is None:
            settings = PipelineSettings(
                pipeline_type=pipeline_type, platform=platform, created_at=now
            )
            self.db.add(settings)

        settings.daily_limit = daily_limit
        settings.posting_hours = sorted(set(posting_hours)) if posting_hours else None
        settings.posting_days = sorted(set(posting_days)) if posting_days else None
        settings.min_interval_minutes = min_interval_minutes
        settings.enabled = enabled
        settings.config = config
        settings.updated_at = now
        self.db.flush()
        return settings

    def get_pipeline_settings(
        self, pipeline_type: str, platform: Optional[str] = None
    ) -> Optional[PipelineSettings]:
        query = self.db.query(PipelineSettings).filter(
            PipelineSettings.pipeline_type == pipeline_type
        )
        if platform is None:
            query = query.filter(PipelineSettings.platform.is_(None))
        else:
            query = query.filter(PipelineSettings.platform == platform)
        return query.first()

    def get_pipeline_settings_or_raise(
        self, pipeline_type: str, platform: Optional[str] = None
    ) -> PipelineSettings:
        settings = self.get_pipeline_settings(pipeline_type, platform)
        if settings is None:
            raise NotFoundError(f"Pipeline settings not found: {pipeline_type}/{platform}")
        return settings

    def list_pipeline_settings(self) -> list[PipelineSettings]:
        return (
            self.db.query(PipelineSettings)
            .order_by(PipelineSettings.pipeline_type.asc(), PipelineSettings.id.asc())
            .all()
        )

    def set_pipeline_enabled(
        self, pipeline_type: str, platform: Optional[str], enabled: bool
    ) -> PipelineSettings:
        settings = self.get_pipeline_settings_or_raise(pipeline_type, platform)
        settings.enabled = enabled
        settings.updated_at = self.clock.now()
        self.db.flush()
        return settings

    # =========================================================================
    # POSTING
    # =========================================================================

    def posted_today_count(self, pipeline_type: str, platform: Optional[str] = None) -> int:
        """Items of a pipeline posted since midnight UTC."""
        start, end = _day_bounds(self.clock.now().date())
        query = self._scoped(
            self.db.query(func.count(PostPipelineItem.id)), pipeline_type, platform
        ).filter(
            PostPipelineItem.status == PipelineStatus.POSTED,
            PostPipelineItem.posted_at >= start,
            PostPipelineItem.posted_at < end,
        )
        return query.scalar() or 0

    def get_next_items_to_post(
        self, pipeline_type: str, platform: Optional[str] = None, limit: int = 5
    ) -> list[PostPipelineItem]:
        """Pending items that still fit into today's limit."""
        settings = self.get_pipeline_settings(pipeline_type, platform)
        if settings is not None and not settings.enabled:
            return []
        daily_limit = settings.daily_limit if settings is not None else DEFAULT_DAILY_LIMIT
        remaining = daily_limit - self.posted_today_count(pipeline_type, platform)
        if remaining <= 0:
            return []
        return self.list_items(
            status=PipelineStatus.PENDING,
            pipeline_type=pipeline_type,
            platform=platform,
            limit=min(limit, remaining),
        )

    def schedule_item_posting(self, item_id: int, scheduled_for: datetime) -> PostPipelineItem:
        """Create the posting task of an item and mark it scheduled.

        A previously scheduled item is moved; its old task is cancelled.

        Raises:
            NotFoundError: If the item does not exist.
            ConflictError: If the item is already posted or cancelled.
        """
        item = self.get_item_or_raise(item_id)
        if item.status in (PipelineStatus.POSTED, PipelineStatus.CANCELLED):
            raise ConflictError(f"Pipeline item {item_id} is {item.status}")

        scheduled_for = ensure_utc(scheduled_for)
        self._cancel_posting_task(item, reason="pipeline item rescheduled")

        entity_id = str(item.id)
        task = self.tasks.find_fire(
            PIPELINE_ITEM_ENTITY, entity_id, scheduled_for, TaskTrigger.AUTO
        )
        if task is None:
            task = self.tasks.create_task(
                POST_TASK_TYPES[item.pipeline_type],
                scheduled_for=scheduled_for,
                entity_type=PIPELINE_ITEM_ENTITY,
                entity_id=entity_id,
                config={"options": {"platform": item.platform}},
                trigger=TaskTrigger.AUTO,
            )
        elif task.status == TaskStatus.CANCELLED:
            self.tasks.reenable_task(task.id)

        item.scheduled_task_id = task.id
        item.scheduled_for = scheduled_for
        item.status = PipelineStatus.SCHEDULED
        item.error = None
        item.updated_at = self.clock.now()
        self.db.flush()
        return item

    def schedule_pipeline_posts(
        self,
        pipeline_type: str,
        platform: Optional[str] = None,
        max_items: int = DEFAULT_BATCH_SIZE,
    ) -> list[int]:
        """Spread pending items over the upcoming posting windows.

        Slots are at least ``min_interval_minutes`` apart and no UTC day
        gets more than ``daily_limit`` posted or scheduled items.

        Returns:
            Ids of the items that were scheduled.
        """
        settings = self.get_pipeline_settings(pipeline_type, platform)
        if settings is not None and not settings.enabled:
            return []

        items = self.list_items(
            status=PipelineStatus.PENDING,
            pipeline_type=pipeline_type,
            platform=platform,
            limit=max_items,
        )
        if not items:
            return []

        hours = settings.posting_hours if settings is not None else None
        days = settings.posting_days if settings is not None else None
        daily_limit = settings.daily_limit if settings is not None else DEFAULT_DAILY_LIMIT
        interval = timedelta(
            minutes=settings.min_interval_minutes
            if settings is not None
            else DEFAULT_MIN_INTERVAL_MINUTES
        )

        now = self.clock.now()
        horizon = now + timedelta(days=MAX_LOOKAHEAD_DAYS)
        booked: dict[date, int] = {}
        scheduled: list[int] = []

        slot = next_posting_slot(now, hours, days, inclusive=True)
        for item in items:
            while slot is not None and slot < horizon:
                day = slot.date()
                if day not in booked:
                    booked[day] = self._booked_on(day, pipeline_type, platform)
                if booked[day] < daily_limit:
                    break
                slot = next_posting_slot(_day_bounds(day)[1], hours, days, inclusive=True)
            if slot is None or slot >= horizon:
                break

            self.schedule_item_posting(item.id, slot)
            booked[slot.date()] += 1
            scheduled.append(item.id)
            slot = next_posting_slot(slot + interval, hours, days, inclusive=True)

        if scheduled:
            logger.info(
                "Scheduled pipeline posts",
                extra={
                    "pipeline_type": pipeline_type,
                    "platform": platform,
                    "item_ids": scheduled,
                },
            )
        return scheduled

    def publish_item(self, item_id: int) -> dict[str, Any]:
        """Hand a scheduled item to its pipeline's publisher.

        Without a publisher the item goes back to pending. A publisher
        error marks the item failed and propagates.
        """
        item = self.get_item_or_raise(item_id)
        if item.status != PipelineStatus.SCHEDULED:
            return {"executed": False, "reason": f"item is {item.status}"}

        publisher = get_publisher(item.pipeline_type)
        if publisher is None:
            item.status = PipelineStatus.PENDING
            item.scheduled_task_id = None
            item.updated_at = self.clock.now()
            self.db.flush()
            return {"executed": False, "reason": "no publisher registered"}

        try:
            result = publisher(item)
        except Exception as e:
            self.update_item_status(item.id, PipelineStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise
        self.update_item_status(item.id, PipelineStatus.POSTED, result=result or {})
        return {"executed": True, "item_id": item.id, "result": result or {}}

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _check_platform(pipeline_type: str, platform: Optional[str]) -> None:
        if pipeline_type == PipelineType.SOCIAL_MEDIA:
            if platform not in SocialPlatform.ALL:
                raise ValidationError(
                    f"social_media items need platform in {sorted(SocialPlatform.ALL)}"
                )
        elif platform is not None:
            raise ValidationError(f"{pipeline_type} items take no platform")

    @staticmethod
    def _scoped(query, pipeline_type: str, platform: Optional[str]):
        query = query.filter(PostPipelineItem.pipeline_type == pipeline_type)
        if platform:
            query = query.filter(PostPipelineItem.platform == platform)
        return query

    def _booked_on(self, day: date, pipeline_type: str, platform: Optional[str]) -> int:
        start, end = _day_bounds(day)
        query = self._scoped(
            self.db.query(func.count(PostPipelineItem.id)), pipeline_type, platform
        ).filter(
            or_(
                and_(
                    PostPipelineItem.status == PipelineStatus.POSTED,
                    PostPipelineItem.posted_at >= start,
                    PostPipelineItem.posted_at < end,
                ),
                and_(
                    PostPipelineItem.status == PipelineStatus.SCHEDULED,
                    PostPipelineItem.scheduled_for >= start,
                    PostPipelineItem.scheduled_for < end,
                ),
            )
        )
        return query.scalar() or 0

    def _cancel_posting_task(self, item: PostPipelineItem, reason: str) -> None:
        if item.scheduled_task_id is None:
            return
        task = self.tasks.get_task(item.scheduled_task_id)
        if task is not None and task.status == TaskStatus.PENDING:
            self.tasks.cancel_task(task.id, reason=reason)
        item.scheduled_task_id = None


# =============================================================================
# EXECUTORS
# =============================================================================


def _service_for(task: ScheduledTask) -> PipelineService:
    """Pipeline service on the task's session, timed at the task's claim."""
    started = ensure_utc(task.started_at)
    return PipelineService(
        object_session(task), clock=FixedClock(started) if started else None
    )


def _batch_size(settings: Optional[SyncSettings]) -> int:
    options = ((settings.config or {}).get("options") or {}) if settings else {}
    return int(options.get("max_items", DEFAULT_BATCH_SIZE))


@executor(PIPELINE_ITEM_ENTITY)
def publish_pipeline_item(task: ScheduledTask, settings: Optional[SyncSettings]) -> dict[str, Any]:
    return _service_for(task).publish_item(int(task.entity_id))


@executor(SyncEntityType.SOCIAL_MEDIA)
def process_social_media_pipeline(
    task: ScheduledTask, settings: Optional[SyncSettings]
) -> dict[str, Any]:
    """Fill the posting windows of one social network (entity id = platform)."""
    platform = task.entity_id if task.entity_id in SocialPlatform.ALL else None
    ids = _service_for(task).schedule_pipeline_posts(
        PipelineType.SOCIAL_MEDIA, platform, max_items=_batch_size(settings)
    )
    return {"scheduled": len(ids), "item_ids": ids}


@executor(SyncEntityType.MOVIDO)
def process_movido_pipeline(
    task: ScheduledTask, settings: Optional[SyncSettings]
) -> dict[str, Any]:
    ids = _service_for(task).schedule_pipeline_posts(
        PipelineType.MOVIDO, max_items=_batch_size(settings)
    )
    return {"scheduled": len(ids), "item_ids": ids}
