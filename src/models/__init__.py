"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.queue_message import QueueMessage, QueueStatus
from src.models.retrieve_task import RetrieveTask

__all__ = [
    "QueueMessage",
    "QueueStatus",
    "RetrieveTask",
]
