"""
Shared fixtures for scheduler tests.
"""

import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobscheduler.models import Base
from jobscheduler.scheduler import SchedulerService, SqlConfigStore, SqlExecutionTracker
from jobscheduler.scheduler.engine import build_cron_trigger


class ManualTimerHandle:
    """Timer handle whose fires are triggered by the test."""

    def __init__(self, name: str, expression: str, callback):
        self.name = name
        self.expression = expression
        self.callback = callback
        self.stopped = False
        self.next_run_time = None

    def stop(self) -> None:
        self.stopped = True


class ManualCronEngine:
    """
    Cron engine that never fires on its own.

    Tests call ``fire(name)`` to simulate the scheduled time of a job coming up.
    """

    def __init__(self):
        self.handles: List[ManualTimerHandle] = []

    def validate(self, expression: str) -> None:
        build_cron_trigger(expression)

    def schedule(self, expression: str, callback, name: Optional[str] = None):
        self.validate(expression)
        handle = ManualTimerHandle(name or "job", expression, callback)
        self.handles.append(handle)
        return handle

    def active(self, name: str) -> List[ManualTimerHandle]:
        return [h for h in self.handles if h.name == name and not h.stopped]

    def active_by_name(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for handle in self.handles:
            if not handle.stopped:
                counts[handle.name] = counts.get(handle.name, 0) + 1
        return counts

    async def fire(self, name: str) -> int:
        """Fire every active timer of ``name``. Returns how many fired."""
        handles = self.active(name)
        for handle in handles:
            await handle.callback()
        return len(handles)


@pytest.fixture
async def session_factory():
    """Session maker bound to a fresh temporary SQLite database."""
    with tempfile.NamedTemporaryFile(delete=False, suffix=".db") as tmp_file:
        db_path = tmp_file.name

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

    yield factory

    await engine.dispose()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def config_store(session_factory) -> SqlConfigStore:
    return SqlConfigStore(session_factory)


@pytest.fixture
def execution_tracker(session_factory) -> SqlExecutionTracker:
    return SqlExecutionTracker(session_factory)


@pytest.fixture
def cron_engine() -> ManualCronEngine:
    return ManualCronEngine()


@pytest.fixture
def scheduler(config_store, execution_tracker, cron_engine):
    service = SchedulerService(config_store, execution_tracker, cron_engine)
    yield service
    service.stop()


@pytest.fixture
def make_cron_engine():
    """Factory for extra engines, e.g. to simulate a process restart."""
    return ManualCronEngine
