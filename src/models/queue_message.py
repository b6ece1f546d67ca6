"""
QueueMessage model - dispatch/processing outcome of one queued work item.
Written by the messaging subsystem; retrieve tasks only reference it.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class QueueStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROCESS = "IN_PROCESS"
    COMPLETED = "COMPLETED"
    WARNING = "WARNING"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    # Projected status of a task that has no queue message yet. Never stored.
    TO_SCHEDULE = "TO_SCHEDULE"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def __str__(self) -> str:
        return self.value


TERMINAL_STATUSES = frozenset({
    QueueStatus.COMPLETED,
    QueueStatus.WARNING,
    QueueStatus.FAILED,
    QueueStatus.CANCELED,
})


class QueueMessage(Base):
    __tablename__ = "queue_message"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    message_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    queue_name: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=QueueStatus.SCHEDULED.value, nullable=False
    )  # SCHEDULED, IN_PROCESS, COMPLETED, WARNING, FAILED, CANCELED

    num_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    processing_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processing_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    outcome_message: Mapped[Optional[str]] = mapped_column(Text)

    created_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        Index("ix_queue_message_queue_status", "queue_name", "status"),
    )

    def __repr__(self) -> str:
        return f"<QueueMessage {self.message_id} ({self.status})>"
