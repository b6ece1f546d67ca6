"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from src.database import Base
from src.models import QueueMessage, RetrieveTask  # noqa: F401 - registers tables
from src.services.task_store import create_task


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


def _one_second_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=1)


@pytest.fixture
def make_task(db):
    """Create and flush a retrieve task with sensible defaults."""

    async def _make_task(**overrides) -> RetrieveTask:
        fields = {
            "device_name": "DEV1",
            "queue_name": "Retrieve1",
            "local_aet": "ARCHIVE",
            "remote_aet": "PACS_A",
            "destination_aet": "WORKSTATION",
            "study_iuid": "1.2.840.113619.2.55.3.1",
            "scheduled_time": _one_second_ago(),
        }
        fields.update(overrides)
        return await create_task(db, **fields)

    return _make_task
