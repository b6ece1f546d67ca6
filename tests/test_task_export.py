"""
Tests for src/services/task_export.py - sparse JSON objects and CSV rows.
"""
import csv
import io
import json
import uuid
from datetime import datetime, timezone

import pytest

from src.models.queue_message import QueueMessage, QueueStatus
from src.models.retrieve_task import RetrieveTask
from src.schemas.retrieve_status import TaskFilter
from src.services.queue_messages import update_message_status
from src.services.task_export import (
    CSV_HEADER,
    ExportFormat,
    export_fields,
    export_tasks,
    to_csv_row,
    to_json_dict,
    write_csv,
    write_json,
)
from src.services.task_store import bulk_update_by_outcome, claim_task, get_task

CREATED = datetime(2026, 10, 19, 8, 15, 2, 123000, tzinfo=timezone.utc)


def _task(**overrides):
    task = RetrieveTask.create(
        device_name="DEV1",
        queue_name="Retrieve1",
        local_aet="ARCHIVE",
        remote_aet="PACS_A",
        destination_aet="WORKSTATION",
        study_iuid="1.2.3",
        now=CREATED,
    )
    task.pk = 17
    for key, value in overrides.items():
        setattr(task, key, value)
    return task


def _message(**overrides):
    fields = {
        "id": uuid.uuid4(),
        "message_id": "ID:abc",
        "queue_name": "Retrieve1",
        "status": QueueStatus.IN_PROCESS.value,
        "num_failures": 0,
    }
    fields.update(overrides)
    return QueueMessage(**fields)


def _cells(row):
    return dict(zip(CSV_HEADER, row))


class TestExportFields:
    def test_canonical_order(self):
        names = [name for name, _ in export_fields(_task(), tz_name="UTC")]
        assert tuple(names) == CSV_HEADER

    def test_header(self):
        assert CSV_HEADER[0] == "pk"
        assert CSV_HEADER[13] == "statusCode"
        assert CSV_HEADER[19] == "status"
        assert CSV_HEADER[-1] == "outcomeMessage"
        assert len(CSV_HEADER) == 26


class TestToJsonDict:
    def test_unclaimed_task(self):
        data = to_json_dict(_task(), None, tz_name="UTC")
        assert data == {
            "pk": 17,
            "createdTime": "2026-10-19T08:15:02.123+0000",
            "updatedTime": "2026-10-19T08:15:02.123+0000",
            "localAET": "ARCHIVE",
            "remoteAET": "PACS_A",
            "destinationAET": "WORKSTATION",
            "studyInstanceUID": "1.2.3",
            "remaining": -1,
            "deviceName": "DEV1",
            "queueName": "Retrieve1",
            "status": "TO_SCHEDULE",
        }

    def test_zero_counters_and_sentinel_omitted(self):
        data = to_json_dict(_task(remaining=0, completed=4), tz_name="UTC")
        assert "remaining" not in data
        assert data["completed"] == 4
        assert "failed" not in data
        assert "warning" not in data
        assert "statusCode" not in data

    def test_status_code_hex(self):
        data = to_json_dict(_task(status_code=0xB000), tz_name="UTC")
        assert data["statusCode"] == "B000"

    def test_success_status_code_kept(self):
        data = to_json_dict(_task(status_code=0), tz_name="UTC")
        assert data["statusCode"] == "0000"

    def test_scheduled_time(self):
        data = to_json_dict(_task(scheduled_time=CREATED), tz_name="Europe/Berlin")
        assert data["scheduledTime"] == "2026-10-19T10:15:02.123+0200"

    def test_queue_fields(self):
        message = _message(
            status=QueueStatus.FAILED.value,
            num_failures=2,
            processing_start_time=CREATED,
            processing_end_time=CREATED,
            error_message="Association rejected",
        )
        data = to_json_dict(_task(), message, tz_name="UTC")
        assert data["status"] == "FAILED"
        assert data["messageId"] == "ID:abc"
        assert data["failureCount"] == 2
        assert data["processingStart"] == "2026-10-19T08:15:02.123+0000"
        assert data["processingEnd"] == "2026-10-19T08:15:02.123+0000"
        assert data["errorMessage"] == "Association rejected"
        assert "outcomeMessage" not in data

    def test_zero_failures_omitted(self):
        data = to_json_dict(_task(), _message(), tz_name="UTC")
        assert "failureCount" not in data

    def test_empty_comment_omitted(self):
        data = to_json_dict(_task(error_comment=""), tz_name="UTC")
        assert "errorComment" not in data


class TestToCsvRow:
    def test_row_shape_without_message(self):
        row = to_csv_row(_task(), None, tz_name="UTC")
        assert len(row) == len(CSV_HEADER)
        cells = _cells(row)
        assert cells["status"] == "TO_SCHEDULE"
        assert cells["messageId"] == ""
        assert cells["statusCode"] == ""
        assert cells["seriesInstanceUID"] == ""
        assert cells["remaining"] == "-1"

    def test_row_shape_with_message(self):
        row = to_csv_row(_task(), _message(), tz_name="UTC")
        assert len(row) == len(CSV_HEADER)
        assert _cells(row)["status"] == "IN_PROCESS"
        assert _cells(row)["messageId"] == "ID:abc"

    @pytest.mark.parametrize("task_overrides,message", [
        ({}, None),
        ({"remaining": 3, "completed": 2, "failed": 1, "status_code": 0xB000}, None),
        ({"batch_id": "b1", "series_iuid": "1.2.3.4", "error_comment": "partial"}, "msg"),
    ])
    def test_non_empty_cells_match_json(self, task_overrides, message):
        task = _task(**task_overrides)
        outcome = _message(num_failures=1, outcome_message="done") if message else None

        data = to_json_dict(task, outcome, tz_name="UTC")
        cells = {name: cell for name, cell in _cells(to_csv_row(task, outcome, tz_name="UTC")).items() if cell}

        assert cells == {name: str(value) for name, value in data.items()}


class TestWriters:
    def test_write_json(self):
        task = _task()
        task.queue_message = None
        out = io.StringIO()

        assert write_json([task], out, tz_name="UTC") == 1
        assert json.loads(out.getvalue()) == [to_json_dict(task, None, tz_name="UTC")]

    def test_write_csv(self):
        task = _task()
        task.queue_message = None
        out = io.StringIO()

        assert write_csv([task, task], out, tz_name="UTC") == 2
        rows = list(csv.reader(io.StringIO(out.getvalue())))
        assert tuple(rows[0]) == CSV_HEADER
        assert len(rows) == 3
        assert rows[1] == to_csv_row(task, None, tz_name="UTC")

    def test_write_csv_without_header(self):
        task = _task()
        task.queue_message = None
        out = io.StringIO()

        write_csv([task], out, header=False, tz_name="UTC")
        rows = list(csv.reader(io.StringIO(out.getvalue())))
        assert len(rows) == 1


class TestExportScenarios:
    async def test_in_process_progress(self, db, make_task):
        task = await make_task()
        message = await claim_task(db, task.pk)
        await update_message_status(db, message.id, QueueStatus.IN_PROCESS)
        await bulk_update_by_outcome(db, message.id, 5, 2, 0, 0, -1, None)

        loaded = await get_task(db, task.pk)
        data = to_json_dict(loaded, loaded.queue_message)

        assert data["completed"] == 2
        assert data["remaining"] == 5
        assert "statusCode" not in data
        assert "errorComment" not in data
        assert data["status"] == QueueStatus.IN_PROCESS.value
        assert data["processingStart"].endswith("+0000")

    async def test_session_copy_exports_current_state(self, db, make_task):
        task = await make_task()
        message = await claim_task(db, task.pk)
        await update_message_status(db, message.id, QueueStatus.IN_PROCESS)
        assert await bulk_update_by_outcome(db, message.id, 5, 2, 0, 0, -1, None) == 1

        data = to_json_dict(task, task.queue_message)

        assert data["status"] == QueueStatus.IN_PROCESS.value
        assert data["messageId"] == message.message_id
        assert (data["remaining"], data["completed"]) == (5, 2)
        assert "processingStart" in data

    async def test_failed_with_status_code(self, db, make_task):
        task = await make_task()
        message = await claim_task(db, task.pk)
        await update_message_status(db, message.id, QueueStatus.IN_PROCESS)
        await bulk_update_by_outcome(db, message.id, 0, 3, 2, 0, 0xA701, "Out of resources")
        await update_message_status(db, message.id, QueueStatus.FAILED, error_message="Move failed")

        loaded = await get_task(db, task.pk)
        data = to_json_dict(loaded, loaded.queue_message)
        cells = _cells(to_csv_row(loaded, loaded.queue_message))

        assert data["statusCode"] == "A701"
        assert data["status"] == "FAILED"
        assert data["failureCount"] == 1
        assert cells["statusCode"] == "A701"
        assert cells["status"] == "FAILED"
        assert cells["errorMessage"] == "Move failed"

    async def test_export_tasks_csv(self, db, make_task):
        await make_task(batch_id="b1")
        claimed = await make_task(batch_id="b1")
        await make_task(batch_id="b2")
        await claim_task(db, claimed.pk)
        out = io.StringIO()

        count = await export_tasks(db, out, ExportFormat.CSV, TaskFilter(batch_id="b1"))

        assert count == 2
        rows = list(csv.reader(io.StringIO(out.getvalue())))
        statuses = [_cells(row)["status"] for row in rows[1:]]
        assert statuses == ["TO_SCHEDULE", "SCHEDULED"]

    async def test_export_tasks_json(self, db, make_task):
        await make_task()
        out = io.StringIO()

        assert await export_tasks(db, out) == 1
        assert json.loads(out.getvalue())[0]["status"] == "TO_SCHEDULE"
