"""
RetrieveTask model - one request to move a study, series or instance from
a remote AE to a destination AE, with sub-operation progress counters.

Timestamps are stamped explicitly: create() sets created/updated time,
every mutator goes through touch(). Bulk updates in the task store set
updated_time in the same statement.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.database import Base
from src.models.queue_message import QueueMessage
from src.utils.errors import ValidationFailure

NOT_STARTED = -1  # remaining before the first progress report
NO_STATUS_CODE = -1  # status_code before a terminal protocol outcome

REQUIRED_FIELDS = (
    "device_name",
    "queue_name",
    "local_aet",
    "remote_aet",
    "destination_aet",
    "study_iuid",
)


class RetrieveTask(Base):
    __tablename__ = "retrieve_task"

    # BIGINT only autoincrements on SQLite as INTEGER PRIMARY KEY
    pk: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )

    device_name: Mapped[str] = mapped_column(String(64), nullable=False)
    queue_name: Mapped[str] = mapped_column(String(64), nullable=False)

    created_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Endpoints and target scope, fixed at creation
    local_aet: Mapped[str] = mapped_column(String(64), nullable=False)
    remote_aet: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_aet: Mapped[str] = mapped_column(String(64), nullable=False)
    study_iuid: Mapped[str] = mapped_column(String(64), nullable=False)
    series_iuid: Mapped[Optional[str]] = mapped_column(String(64))
    sop_iuid: Mapped[Optional[str]] = mapped_column(String(64))
    batch_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Sub-operation progress
    remaining: Mapped[int] = mapped_column(Integer, default=NOT_STARTED, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    warning: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, default=NO_STATUS_CODE, nullable=False)
    error_comment: Mapped[Optional[str]] = mapped_column(Text)

    # Set once by the claim step; unique so a message backs at most one task
    queue_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        "queue_msg_fk", UUID(as_uuid=True), ForeignKey("queue_message.id"), unique=True
    )
    queue_message: Mapped[Optional[QueueMessage]] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_retrieve_task_device_name", "device_name"),
        Index("ix_retrieve_task_queue_name", "queue_name"),
        Index("ix_retrieve_task_local_aet", "local_aet"),
        Index("ix_retrieve_task_remote_aet", "remote_aet"),
        Index("ix_retrieve_task_destination_aet", "destination_aet"),
        Index("ix_retrieve_task_created_time", "created_time"),
        Index("ix_retrieve_task_updated_time", "updated_time"),
        Index("ix_retrieve_task_scheduled_time", "scheduled_time"),
        Index("ix_retrieve_task_study_iuid", "study_iuid"),
        Index("ix_retrieve_task_batch_id", "batch_id"),
    )

    @classmethod
    def create(
        cls,
        *,
        device_name: str,
        queue_name: str,
        local_aet: str,
        remote_aet: str,
        destination_aet: str,
        study_iuid: str,
        series_iuid: Optional[str] = None,
        sop_iuid: Optional[str] = None,
        batch_id: Optional[str] = None,
        scheduled_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "RetrieveTask":
        """
        Build a new, unsaved task with fresh counters.

        Raises ValidationFailure if any identifying field is blank.
        A SOP instance UID requires a series instance UID.
        """
        values = {
            "device_name": device_name,
            "queue_name": queue_name,
            "local_aet": local_aet,
            "remote_aet": remote_aet,
            "destination_aet": destination_aet,
            "study_iuid": study_iuid,
        }
        for name in REQUIRED_FIELDS:
            value = values[name]
            if value is None or not str(value).strip():
                raise ValidationFailure(name)
        if sop_iuid and not series_iuid:
            raise ValidationFailure("series_iuid", "is required when sop_iuid is set")

        now = now or datetime.now(timezone.utc)
        return cls(
            **{name: str(value).strip() for name, value in values.items()},
            series_iuid=series_iuid,
            sop_iuid=sop_iuid,
            batch_id=batch_id,
            scheduled_time=scheduled_time,
            created_time=now,
            updated_time=now,
            remaining=NOT_STARTED,
            completed=0,
            failed=0,
            warning=0,
            status_code=NO_STATUS_CODE,
        )

    def touch(self, now: Optional[datetime] = None) -> None:
        """Refresh updated_time. Every mutation of a loaded task calls this."""
        self.updated_time = now or datetime.now(timezone.utc)

    def reschedule(self, scheduled_time: Optional[datetime], now: Optional[datetime] = None) -> None:
        self.scheduled_time = scheduled_time
        self.touch(now)

    def attach_queue_message(self, message: QueueMessage, now: Optional[datetime] = None) -> None:
        """Link the dispatched queue message to this task."""
        self.queue_message = message
        self.queue_message_id = message.id
        self.touch(now)

    @property
    def has_progress(self) -> bool:
        return self.remaining != NOT_STARTED

    @property
    def is_terminal(self) -> bool:
        return self.status_code != NO_STATUS_CODE

    @property
    def is_claimed(self) -> bool:
        return self.queue_message_id is not None

    def __repr__(self) -> str:
        return f"<RetrieveTask {self.pk} {self.remote_aet}->{self.destination_aet}>"
