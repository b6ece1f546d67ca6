"""
Queue message service - the messaging side of a dispatched retrieve task.
Creates messages at dispatch time and records processing outcomes.

A terminal status (COMPLETED, WARNING, FAILED, CANCELED) is final: later
status writes for the same message affect 0 rows.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.queue_message import QueueMessage, QueueStatus, TERMINAL_STATUSES
from src.utils.errors import ValidationFailure, persistence_errors

logger = logging.getLogger(__name__)


def new_message_id() -> str:
    return f"ID:{uuid.uuid4().hex}"


async def create_message(
    db: AsyncSession,
    queue_name: str,
    *,
    message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QueueMessage:
    """Create a SCHEDULED message on the given queue and flush it."""
    if not queue_name or not queue_name.strip():
        raise ValidationFailure("queue_name")
    now = now or datetime.now(timezone.utc)

    message = QueueMessage(
        id=uuid.uuid4(),
        message_id=message_id or new_message_id(),
        queue_name=queue_name.strip(),
        status=QueueStatus.SCHEDULED.value,
        num_failures=0,
        created_time=now,
        updated_time=now,
    )
    with persistence_errors("create_message"):
        db.add(message)
        await db.flush()

    logger.debug(
        "Queue message created: id=%s queue=%s",
        message.message_id, message.queue_name,
        extra={"outcome_id": str(message.id), "queue_name": message.queue_name},
    )
    return message


async def update_message_status(
    db: AsyncSession,
    outcome_id: uuid.UUID,
    status: QueueStatus,
    *,
    error_message: Optional[str] = None,
    outcome_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Move a message to a new status.

    IN_PROCESS stamps the processing start time, terminal statuses stamp the
    processing end time, FAILED also bumps the failure count.

    Returns:
        1 if the message was updated, 0 if it does not exist or is already terminal.
    """
    status = QueueStatus(status)
    if status is QueueStatus.TO_SCHEDULE:
        raise ValidationFailure("status", "TO_SCHEDULE is not a queue message status")
    now = now or datetime.now(timezone.utc)

    values: dict = {"status": status.value, "updated_time": now}
    if status is QueueStatus.IN_PROCESS:
        values["processing_start_time"] = now
        values["processing_end_time"] = None
    if status.is_terminal:
        values["processing_end_time"] = now
    if status is QueueStatus.FAILED:
        values["num_failures"] = QueueMessage.num_failures + 1
    if error_message is not None:
        values["error_message"] = error_message
    if outcome_message is not None:
        values["outcome_message"] = outcome_message

    stmt = (
        update(QueueMessage)
        .where(
            QueueMessage.id == outcome_id,
            QueueMessage.status.not_in([s.value for s in TERMINAL_STATUSES]),
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    with persistence_errors("update_message_status"):
        result = await db.execute(stmt)

    if result.rowcount == 0:
        logger.info(
            "Queue message status not changed to %s (missing or terminal)",
            status.value,
            extra={"outcome_id": str(outcome_id)},
        )
    return result.rowcount
