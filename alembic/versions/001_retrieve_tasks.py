"""Retrieve tasks and queue messages

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RETRIEVE_TASK_INDEXES = (
    "device_name",
    "queue_name",
    "local_aet",
    "remote_aet",
    "destination_aet",
    "created_time",
    "updated_time",
    "scheduled_time",
    "study_iuid",
    "batch_id",
)


def upgrade() -> None:
    # --- Queue messages (written by the messaging subsystem) ---
    op.create_table(
        "queue_message",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("message_id", sa.String(64), nullable=False, unique=True),
        sa.Column("queue_name", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column("num_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processing_start_time", sa.DateTime(timezone=True)),
        sa.Column("processing_end_time", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("outcome_message", sa.Text),
        sa.Column("created_time", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_time", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_queue_message_queue_status", "queue_message",
        ["queue_name", "status"],
    )

    # --- Retrieve tasks ---
    op.create_table(
        "retrieve_task",
        sa.Column("pk", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("device_name", sa.String(64), nullable=False),
        sa.Column("queue_name", sa.String(64), nullable=False),
        sa.Column("created_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_time", sa.DateTime(timezone=True)),
        sa.Column("local_aet", sa.String(64), nullable=False),
        sa.Column("remote_aet", sa.String(64), nullable=False),
        sa.Column("destination_aet", sa.String(64), nullable=False),
        sa.Column("study_iuid", sa.String(64), nullable=False),
        sa.Column("series_iuid", sa.String(64)),
        sa.Column("sop_iuid", sa.String(64)),
        sa.Column("batch_id", sa.String(64)),
        sa.Column("remaining", sa.Integer, nullable=False, server_default="-1"),
        sa.Column("completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("warning", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status_code", sa.Integer, nullable=False, server_default="-1"),
        sa.Column("error_comment", sa.Text),
        sa.Column(
            "queue_msg_fk", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("queue_message.id"), unique=True,
        ),
    )
    for column in RETRIEVE_TASK_INDEXES:
        op.create_index(f"ix_retrieve_task_{column}", "retrieve_task", [column])


def downgrade() -> None:
    for column in RETRIEVE_TASK_INDEXES:
        op.drop_index(f"ix_retrieve_task_{column}", table_name="retrieve_task")
    op.drop_table("retrieve_task")
    op.drop_index("ix_queue_message_queue_status", table_name="queue_message")
    op.drop_table("queue_message")
