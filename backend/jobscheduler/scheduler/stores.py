"""
SQLAlchemy-backed job config store and execution tracker.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.database import get_async_session
from ..models import ExecutionStatus, SchedulerConfig, SchedulerExecution
from .errors import PersistenceError
from .types import ExecutionRecord, PersistedJobConfig

SessionFactory = Callable[[], AsyncSession]

_CONFIG_FIELDS = {"schedule", "enabled", "updated_at", "updated_by"}
_EXECUTION_FIELDS = {"completed_at", "duration_ms", "status", "error"}


class _SqlStore:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or get_async_session

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to {action}: {e}") from e


def _to_config(row: SchedulerConfig) -> PersistedJobConfig:
    return PersistedJobConfig(
        job_name=row.job_name,
        schedule=row.schedule,
        enabled=row.enabled,
        updated_at=row.updated_at,
        updated_by=row.updated_by,
    )


def _to_record(row: SchedulerExecution) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        job_name=row.job_name,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        status=row.status,
        error=row.error,
    )


class SqlConfigStore(_SqlStore):
    """One ``scheduler_config`` row per job name."""

    async def find_one(self, job_name: str) -> Optional[PersistedJobConfig]:
        async with self._session(f"load config of {job_name}") as session:
            result = await session.execute(
                select(SchedulerConfig).where(SchedulerConfig.job_name == job_name)
            )
            row = result.scalar_one_or_none()
            return _to_config(row) if row else None

    async def create(
        self, job_name: str, schedule: str, enabled: bool = True
    ) -> PersistedJobConfig:
        async with self._session(f"create config of {job_name}") as session:
            row = SchedulerConfig(
                job_name=job_name,
                schedule=schedule,
                enabled=enabled,
                updated_at=datetime.now(timezone.utc),
                updated_by=None,
            )
            session.add(row)
            await session.commit()
            return _to_config(row)

    async def update_one(
        self,
        job_name: str,
        values: dict[str, Any],
        upsert: bool = True,
        defaults: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Write ``values`` onto the config of ``job_name``.

        When no row exists and ``upsert`` is set, a row is inserted from
        ``defaults`` overlaid with ``values``; columns that neither provides
        keep their model defaults.

        Raises:
            ValueError: If ``values`` contains an unknown field
            PersistenceError: If the database write fails
        """
        unknown = set(values) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")

        async with self._session(f"update config of {job_name}") as session:
            result = await session.execute(
                update(SchedulerConfig)
                .where(SchedulerConfig.job_name == job_name)
                .values(**values)
            )
            if result.rowcount == 0 and upsert:
                session.add(
                    SchedulerConfig(job_name=job_name, **{**(defaults or {}), **values})
                )
            await session.commit()

    async def delete_one(self, job_name: str) -> bool:
        async with self._session(f"delete config of {job_name}") as session:
            result = await session.execute(
                delete(SchedulerConfig).where(SchedulerConfig.job_name == job_name)
            )
            await session.commit()
            return result.rowcount > 0


class ExecutionHandle:
    """Handle on a single execution row, used to patch in its terminal state."""

    def __init__(self, store: "SqlExecutionTracker", execution_id: int, job_name: str):
        self._store = store
        self.id = execution_id
        self.job_name = job_name

    async def update(self, **values: Any) -> None:
        unknown = set(values) - _EXECUTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown execution fields: {sorted(unknown)}")

        async with self._store._session(
            f"update execution {self.id} of {self.job_name}"
        ) as session:
            await session.execute(
                update(SchedulerExecution)
                .where(SchedulerExecution.id == self.id)
                .values(**values)
            )
            await session.commit()


class SqlExecutionTracker(_SqlStore):
    """Execution history in ``scheduler_execution``."""

    async def create(self, job_name: str, started_at: datetime) -> ExecutionHandle:
        async with self._session(f"record execution of {job_name}") as session:
            row = SchedulerExecution(
                job_name=job_name,
                started_at=started_at,
                status=ExecutionStatus.RUNNING,
            )
            session.add(row)
            await session.commit()
            return ExecutionHandle(self, row.id, job_name)

    async def latest(self, job_name: str) -> Optional[ExecutionRecord]:
        records = await self.history(job_name, limit=1)
        return records[0] if records else None

    async def history(self, job_name: str, limit: int = 50) -> List[ExecutionRecord]:
        """Most recent executions of ``job_name``, newest first."""
        async with self._session(f"load execution history of {job_name}") as session:
            result = await session.execute(
                select(SchedulerExecution)
                .where(SchedulerExecution.job_name == job_name)
                .order_by(SchedulerExecution.started_at.desc(), SchedulerExecution.id.desc())
                .limit(limit)
            )
            return [_to_record(row) for row in result.scalars().all()]

    async def count(self, status: Optional[ExecutionStatus] = None) -> int:
        async with self._session("count executions") as session:
            query = select(func.count()).select_from(SchedulerExecution)
            if status is not None:
                query = query.where(SchedulerExecution.status == status)
            result = await session.execute(query)
            return result.scalar_one()

    async def prune(self, older_than: datetime) -> int:
        """Delete executions started before ``older_than``. Returns the number removed."""
        async with self._session("prune executions") as session:
            result = await session.execute(
                delete(SchedulerExecution).where(SchedulerExecution.started_at < older_than)
            )
            await session.commit()
            return result.rowcount
