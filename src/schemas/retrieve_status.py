"""
Retrieve task view schemas - projected status and monitoring filters.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from src.models.queue_message import QueueStatus


class ProjectedStatus(BaseModel):
    """Combined status of a task and its (optional) queue message."""
    model_config = ConfigDict(frozen=True)

    status: QueueStatus
    message_id: Optional[str] = None
    failure_count: Optional[int] = Field(default=None, gt=0)
    processing_start: Optional[datetime] = None
    processing_end: Optional[datetime] = None
    error_message: Optional[str] = None
    outcome_message: Optional[str] = None


class TaskFilter(BaseModel):
    """Ad-hoc monitoring filter. Unset fields do not constrain the query."""
    device_name: Optional[str] = None
    queue_name: Optional[str] = None
    local_aet: Optional[str] = None
    remote_aet: Optional[str] = None
    destination_aet: Optional[str] = None
    study_iuid: Optional[str] = None
    batch_id: Optional[str] = None
    status: Optional[QueueStatus] = None  # TO_SCHEDULE matches unclaimed tasks
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    updated_after: Optional[datetime] = None
    updated_before: Optional[datetime] = None
