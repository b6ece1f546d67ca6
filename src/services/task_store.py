"""
Retrieve task store - creation, due-task lookup, claiming, progress updates,
monitoring queries and administrative deletion.

Every function takes the caller's AsyncSession and never commits: the
caller owns the transaction. Lost claims and stale progress updates are
reported as None / 0 rows, never raised.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.queue_message import QueueMessage, QueueStatus
from src.models.retrieve_task import RetrieveTask, NOT_STARTED
from src.schemas.retrieve_status import TaskFilter
from src.services.queue_messages import create_message
from src.utils.errors import ValidationFailure, persistence_errors

logger = logging.getLogger(__name__)

MAX_STATUS_CODE = 0xFFFF


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def create_task(
    db: AsyncSession,
    *,
    device_name: str,
    local_aet: str,
    remote_aet: str,
    destination_aet: str,
    study_iuid: str,
    series_iuid: Optional[str] = None,
    sop_iuid: Optional[str] = None,
    batch_id: Optional[str] = None,
    scheduled_time: Optional[datetime] = None,
    queue_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RetrieveTask:
    """
    Persist a new retrieve task. queue_name defaults to the configured
    retrieve queue.

    Raises:
        ValidationFailure: a required identifying field is missing (nothing written)
        PersistenceFailure: the database rejected the insert
    """
    task = RetrieveTask.create(
        device_name=device_name,
        queue_name=get_settings().retrieve_queue_name if queue_name is None else queue_name,
        local_aet=local_aet,
        remote_aet=remote_aet,
        destination_aet=destination_aet,
        study_iuid=study_iuid,
        series_iuid=series_iuid,
        sop_iuid=sop_iuid,
        batch_id=batch_id,
        scheduled_time=scheduled_time,
        now=now,
    )
    with persistence_errors("create_task"):
        db.add(task)
        await db.flush()

    logger.info(
        "Retrieve task created: pk=%s study=%s %s->%s",
        task.pk, task.study_iuid, task.remote_aet, task.destination_aet,
        extra={"task_pk": task.pk, "device_name": task.device_name, "batch_id": task.batch_id},
    )
    return task


async def get_task(db: AsyncSession, pk: int) -> Optional[RetrieveTask]:
    """Load a task and its queue message, overwriting any stale in-session copy."""
    with persistence_errors("get_task"):
        result = await db.execute(
            select(RetrieveTask)
            .where(RetrieveTask.pk == pk)
            .execution_options(populate_existing=True)
        )
    return result.scalar_one_or_none()


async def find_due_by_device(
    db: AsyncSession,
    device_name: str,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[int]:
    """
    Keys of unclaimed tasks of a device whose scheduled time has passed.
    A task without scheduled time is due immediately.

    This is a plain read: two schedulers may see the same keys, so each key
    must go through claim_task() before dispatch.
    """
    now = now or _utcnow()
    stmt = (
        select(RetrieveTask.pk)
        .where(
            RetrieveTask.device_name == device_name,
            RetrieveTask.queue_message_id.is_(None),
            or_(
                RetrieveTask.scheduled_time.is_(None),
                RetrieveTask.scheduled_time < now,
            ),
        )
        .order_by(RetrieveTask.pk)
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    with persistence_errors("find_due_by_device"):
        result = await db.execute(stmt)
    return list(result.scalars().all())


async def claim_task(
    db: AsyncSession,
    pk: int,
    *,
    message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[QueueMessage]:
    """
    Attach a new SCHEDULED queue message to an unclaimed task.

    The attach is a conditional update on queue_msg_fk IS NULL, so only one
    of several racing dispatchers succeeds. A copy of the task already loaded
    in the session is linked to the message as well.

    Returns:
        The attached message, or None if the task is gone, already claimed
        or created after now.
    """
    now = now or _utcnow()
    unclaimed = (
        RetrieveTask.pk == pk,
        RetrieveTask.queue_message_id.is_(None),
        RetrieveTask.created_time <= now,
    )

    with persistence_errors("claim_task"):
        result = await db.execute(select(RetrieveTask.queue_name).where(*unclaimed))
        queue_name = result.scalar_one_or_none()
        if queue_name is None:
            return None

        message = await create_message(db, queue_name, message_id=message_id, now=now)
        result = await db.execute(
            update(RetrieveTask)
            .where(*unclaimed)
            .values({
                RetrieveTask.queue_message_id: message.id,
                RetrieveTask.updated_time: now,
            })
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            await db.delete(message)
            await db.flush()
            return None

        task = await db.get(RetrieveTask, pk)
        if task is not None:
            task.attach_queue_message(message, now)

    logger.info(
        "Retrieve task claimed: pk=%s message=%s",
        pk, message.message_id,
        extra={"task_pk": pk, "outcome_id": str(message.id), "queue_name": queue_name},
    )
    return message


def _validate_progress(
    remaining: int, completed: int, failed: int, warning: int, status_code: int
) -> None:
    if remaining < NOT_STARTED:
        raise ValidationFailure("remaining", "must be -1 or non-negative")
    for name, value in (("completed", completed), ("failed", failed), ("warning", warning)):
        if value < 0:
            raise ValidationFailure(name, "must be non-negative")
    if status_code != -1 and not 0 <= status_code <= MAX_STATUS_CODE:
        raise ValidationFailure("status_code", "must be -1 or a 16-bit value")


async def bulk_update_by_outcome(
    db: AsyncSession,
    outcome_id: uuid.UUID,
    remaining: int,
    completed: int,
    failed: int,
    warning: int,
    status_code: int,
    error_comment: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> int:
    """
    Write progress for the task that references the given queue message.

    Counters, status code, error comment and updated_time change together in
    one UPDATE. The row is left alone when:
    - no task references outcome_id (deleted or never claimed),
    - all values equal the stored ones (a retried report),
    - a completed/failed/warning counter would go down (out-of-order report),
    - the reported sub-operations exceed the stored total
      (remaining + completed + failed + warning) once a total is known, or
    - now is earlier than the task's created_time.

    Returns:
        Number of rows updated, 0 or 1.
    """
    _validate_progress(remaining, completed, failed, warning, status_code)
    now = now or _utcnow()
    reported = max(remaining, 0) + completed + failed + warning
    stored_total = (
        RetrieveTask.remaining + RetrieveTask.completed + RetrieveTask.failed + RetrieveTask.warning
    )

    stmt = (
        update(RetrieveTask)
        .where(
            RetrieveTask.queue_message_id == outcome_id,
            RetrieveTask.created_time <= now,
            RetrieveTask.completed <= completed,
            RetrieveTask.failed <= failed,
            RetrieveTask.warning <= warning,
            or_(RetrieveTask.remaining == NOT_STARTED, stored_total >= reported),
            or_(
                RetrieveTask.remaining.is_distinct_from(remaining),
                RetrieveTask.completed.is_distinct_from(completed),
                RetrieveTask.failed.is_distinct_from(failed),
                RetrieveTask.warning.is_distinct_from(warning),
                RetrieveTask.status_code.is_distinct_from(status_code),
                RetrieveTask.error_comment.is_distinct_from(error_comment),
            ),
        )
        .values(
            updated_time=now,
            remaining=remaining,
            completed=completed,
            failed=failed,
            warning=warning,
            status_code=status_code,
            error_comment=error_comment,
        )
        .execution_options(synchronize_session="fetch")
    )
    with persistence_errors("bulk_update_by_outcome"):
        result = await db.execute(stmt)
    return result.rowcount


async def reschedule_task(
    db: AsyncSession,
    pk: int,
    scheduled_time: Optional[datetime],
    *,
    now: Optional[datetime] = None,
) -> int:
    """Move the scheduled time of a task that has not been claimed yet.
    Tasks created after now are left alone."""
    now = now or _utcnow()
    with persistence_errors("reschedule_task"):
        result = await db.execute(
            update(RetrieveTask)
            .where(
                RetrieveTask.pk == pk,
                RetrieveTask.queue_message_id.is_(None),
                RetrieveTask.created_time <= now,
            )
            .values(scheduled_time=scheduled_time, updated_time=now)
            .execution_options(synchronize_session="fetch")
        )
    return result.rowcount


def _filter_clauses(task_filter: TaskFilter) -> list:
    clauses = []
    for field, column in (
        ("device_name", RetrieveTask.device_name),
        ("queue_name", RetrieveTask.queue_name),
        ("local_aet", RetrieveTask.local_aet),
        ("remote_aet", RetrieveTask.remote_aet),
        ("destination_aet", RetrieveTask.destination_aet),
        ("study_iuid", RetrieveTask.study_iuid),
        ("batch_id", RetrieveTask.batch_id),
    ):
        value = getattr(task_filter, field)
        if value is not None:
            clauses.append(column == value)

    if task_filter.created_after is not None:
        clauses.append(RetrieveTask.created_time >= task_filter.created_after)
    if task_filter.created_before is not None:
        clauses.append(RetrieveTask.created_time < task_filter.created_before)
    if task_filter.updated_after is not None:
        clauses.append(RetrieveTask.updated_time >= task_filter.updated_after)
    if task_filter.updated_before is not None:
        clauses.append(RetrieveTask.updated_time < task_filter.updated_before)

    if task_filter.status is QueueStatus.TO_SCHEDULE:
        clauses.append(RetrieveTask.queue_message_id.is_(None))
    elif task_filter.status is not None:
        clauses.append(
            RetrieveTask.queue_message_id.in_(
                select(QueueMessage.id).where(QueueMessage.status == task_filter.status.value)
            )
        )
    return clauses


async def list_tasks(
    db: AsyncSession,
    task_filter: Optional[TaskFilter] = None,
    *,
    offset: int = 0,
    limit: Optional[int] = None,
) -> list[RetrieveTask]:
    """Tasks matching the filter, with queue messages loaded, ordered by pk."""
    stmt = (
        select(RetrieveTask)
        .where(*_filter_clauses(task_filter or TaskFilter()))
        .order_by(RetrieveTask.pk)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    with persistence_errors("list_tasks"):
        result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_tasks(db: AsyncSession, task_filter: Optional[TaskFilter] = None) -> int:
    with persistence_errors("count_tasks"):
        result = await db.execute(
            select(func.count())
            .select_from(RetrieveTask)
            .where(*_filter_clauses(task_filter or TaskFilter()))
        )
    return result.scalar() or 0


async def delete_task(db: AsyncSession, pk: int) -> bool:
    """
    Delete a task and then its queue message, if any.
    Both deletes run in the caller's transaction.
    """
    with persistence_errors("delete_task"):
        result = await db.execute(
            select(RetrieveTask.queue_message_id).where(RetrieveTask.pk == pk)
        )
        row = result.first()
        if row is None:
            return False

        queue_message_id = row[0]
        await db.execute(delete(RetrieveTask).where(RetrieveTask.pk == pk))
        if queue_message_id is not None:
            await db.execute(delete(QueueMessage).where(QueueMessage.id == queue_message_id))

    logger.info("Retrieve task deleted: pk=%s", pk, extra={"task_pk": pk})
    return True


async def purge_tasks(db: AsyncSession, task_filter: TaskFilter) -> int:
    """
    Delete all tasks matching the filter together with their queue messages.
    Refuses an empty filter.

    Returns:
        Number of tasks deleted.
    """
    clauses = _filter_clauses(task_filter)
    if not clauses:
        raise ValidationFailure("task_filter", "must set at least one criterion")

    with persistence_errors("purge_tasks"):
        result = await db.execute(
            select(RetrieveTask.queue_message_id).where(
                *clauses, RetrieveTask.queue_message_id.is_not(None)
            )
        )
        queue_message_ids = list(result.scalars().all())

        result = await db.execute(
            delete(RetrieveTask)
            .where(*clauses)
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount

        if queue_message_ids:
            await db.execute(
                delete(QueueMessage)
                .where(QueueMessage.id.in_(queue_message_ids))
                .execution_options(synchronize_session=False)
            )

    logger.info("Retrieve tasks purged: count=%d", deleted)
    return deleted
