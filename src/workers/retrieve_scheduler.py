"""
Retrieve scheduler worker - polls for due retrieve tasks of this device and
claims each one by attaching a SCHEDULED queue message.

Claims that lose a race against another scheduler are skipped; the winner
dispatches the task.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from src.config import get_settings
from src.database import async_session_factory
from src.services.task_store import find_due_by_device, claim_task
from src.utils.logging import generate_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)


async def run_retrieve_scheduler():
    """Main loop - run a schedule cycle, then sleep for the poll interval."""
    settings = get_settings()
    logger.info(
        "Retrieve scheduler started (device=%s, poll every %ss)",
        settings.device_name, settings.scheduler_poll_interval_seconds,
        extra={"device_name": settings.device_name},
    )

    while True:
        set_correlation_id(generate_correlation_id())
        try:
            await schedule_cycle()
        except Exception as e:
            logger.error("Retrieve scheduler cycle error: %s", str(e))

        await asyncio.sleep(settings.scheduler_poll_interval_seconds)


async def schedule_cycle(device_name: Optional[str] = None) -> int:
    """
    Claim the due tasks of one device.
    A PersistenceFailure aborts the cycle and rolls back its claims.

    Returns:
        Number of tasks claimed in this cycle.
    """
    settings = get_settings()
    device_name = device_name or settings.device_name
    now = datetime.now(timezone.utc)

    async with async_session_factory() as db:
        task_pks = await find_due_by_device(
            db, device_name, now=now, limit=settings.scheduler_batch_limit
        )
        if not task_pks:
            return 0

        logger.info(
            "Scheduling %d due retrieve tasks", len(task_pks),
            extra={"device_name": device_name},
        )

        claimed = 0
        for pk in task_pks:
            message = await claim_task(db, pk, now=now)
            if message is None:
                logger.debug("Retrieve task already claimed: pk=%s", pk, extra={"task_pk": pk})
                continue
            claimed += 1

        await db.commit()

    return claimed
