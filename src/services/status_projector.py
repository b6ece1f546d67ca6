"""
Status projection - the single status view shown to operators.

A task without a queue message is TO_SCHEDULE whatever its counters say.
Once a message is attached, its status and processing details win.
"""
from typing import Optional

from src.models.queue_message import QueueMessage, QueueStatus
from src.models.retrieve_task import RetrieveTask
from src.schemas.retrieve_status import ProjectedStatus


def project(task: RetrieveTask, outcome: Optional[QueueMessage] = None) -> ProjectedStatus:
    """Combine a task and its queue message. Reads both, writes neither."""
    if outcome is None:
        return ProjectedStatus(status=QueueStatus.TO_SCHEDULE)

    failures = outcome.num_failures or 0
    return ProjectedStatus(
        status=QueueStatus(outcome.status),
        message_id=outcome.message_id,
        failure_count=failures if failures > 0 else None,
        processing_start=outcome.processing_start_time,
        processing_end=outcome.processing_end_time,
        error_message=outcome.error_message,
        outcome_message=outcome.outcome_message,
    )
