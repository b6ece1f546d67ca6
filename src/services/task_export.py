"""
Retrieve task export - JSON objects and CSV rows.

Both formats are produced from the same ordered field list built by
export_fields(). A value of None there means "absent": JSON drops the key,
CSV writes an empty cell. Null, empty text and zero counters are absent;
status code -1 is absent, otherwise 4 uppercase hex digits.
"""
import csv
import enum
import json
import logging
from typing import IO, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.queue_message import QueueMessage
from src.models.retrieve_task import RetrieveTask
from src.schemas.retrieve_status import TaskFilter
from src.services.status_projector import project
from src.services.task_store import list_tasks
from src.utils.formatting import format_status_code, format_timestamp

logger = logging.getLogger(__name__)

CSV_HEADER = (
    "pk",
    "createdTime",
    "updatedTime",
    "localAET",
    "remoteAET",
    "destinationAET",
    "studyInstanceUID",
    "seriesInstanceUID",
    "sopInstanceUID",
    "remaining",
    "completed",
    "failed",
    "warning",
    "statusCode",
    "errorComment",
    "batchID",
    "deviceName",
    "queueName",
    "scheduledTime",
    "status",
    "messageId",
    "failureCount",
    "processingStart",
    "processingEnd",
    "errorMessage",
    "outcomeMessage",
)


class ExportFormat(str, enum.Enum):
    JSON = "json"
    CSV = "csv"


def _text(value: Optional[str]) -> Optional[str]:
    return value or None


def _count(value: Optional[int]) -> Optional[int]:
    return value or None


def export_fields(
    task: RetrieveTask,
    outcome: Optional[QueueMessage] = None,
    *,
    tz_name: Optional[str] = None,
) -> list[tuple[str, object]]:
    """Canonical (name, value) pairs in CSV_HEADER order, None for absent values."""
    tz_name = tz_name or get_settings().export_timezone
    projected = project(task, outcome)
    return [
        ("pk", task.pk),
        ("createdTime", format_timestamp(task.created_time, tz_name)),
        ("updatedTime", format_timestamp(task.updated_time, tz_name)),
        ("localAET", _text(task.local_aet)),
        ("remoteAET", _text(task.remote_aet)),
        ("destinationAET", _text(task.destination_aet)),
        ("studyInstanceUID", _text(task.study_iuid)),
        ("seriesInstanceUID", _text(task.series_iuid)),
        ("sopInstanceUID", _text(task.sop_iuid)),
        ("remaining", _count(task.remaining)),
        ("completed", _count(task.completed)),
        ("failed", _count(task.failed)),
        ("warning", _count(task.warning)),
        ("statusCode", format_status_code(task.status_code)),
        ("errorComment", _text(task.error_comment)),
        ("batchID", _text(task.batch_id)),
        ("deviceName", _text(task.device_name)),
        ("queueName", _text(task.queue_name)),
        ("scheduledTime", format_timestamp(task.scheduled_time, tz_name)),
        ("status", projected.status.value),
        ("messageId", _text(projected.message_id)),
        ("failureCount", projected.failure_count),
        ("processingStart", format_timestamp(projected.processing_start, tz_name)),
        ("processingEnd", format_timestamp(projected.processing_end, tz_name)),
        ("errorMessage", _text(projected.error_message)),
        ("outcomeMessage", _text(projected.outcome_message)),
    ]


def to_json_dict(
    task: RetrieveTask,
    outcome: Optional[QueueMessage] = None,
    *,
    tz_name: Optional[str] = None,
) -> dict:
    """Sparse JSON object: absent fields are left out."""
    return {
        name: value
        for name, value in export_fields(task, outcome, tz_name=tz_name)
        if value is not None
    }


def to_csv_row(
    task: RetrieveTask,
    outcome: Optional[QueueMessage] = None,
    *,
    tz_name: Optional[str] = None,
) -> list[str]:
    """One cell per CSV_HEADER column; absent fields are empty cells."""
    return [
        "" if value is None else str(value)
        for _, value in export_fields(task, outcome, tz_name=tz_name)
    ]


def write_json(
    tasks: Iterable[RetrieveTask],
    out: IO[str],
    *,
    tz_name: Optional[str] = None,
) -> int:
    """Write tasks (each with its loaded queue message) as a JSON array."""
    items = [to_json_dict(task, task.queue_message, tz_name=tz_name) for task in tasks]
    json.dump(items, out)
    return len(items)


def write_csv(
    tasks: Iterable[RetrieveTask],
    out: IO[str],
    *,
    header: bool = True,
    tz_name: Optional[str] = None,
) -> int:
    """Write an optional header line and one row per task. Returns the row count."""
    writer = csv.writer(out)
    if header:
        writer.writerow(CSV_HEADER)
    count = 0
    for task in tasks:
        writer.writerow(to_csv_row(task, task.queue_message, tz_name=tz_name))
        count += 1
    return count


async def export_tasks(
    db: AsyncSession,
    out: IO[str],
    export_format: ExportFormat = ExportFormat.JSON,
    task_filter: Optional[TaskFilter] = None,
) -> int:
    """Export tasks matching the filter (capped at export_max_rows)."""
    settings = get_settings()
    tasks = await list_tasks(db, task_filter, limit=settings.export_max_rows)

    if ExportFormat(export_format) is ExportFormat.CSV:
        count = write_csv(tasks, out, tz_name=settings.export_timezone)
    else:
        count = write_json(tasks, out, tz_name=settings.export_timezone)

    logger.info("Exported %d retrieve tasks as %s", count, ExportFormat(export_format).value)
    return count
