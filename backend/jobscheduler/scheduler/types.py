"""
Type definitions for the job scheduling core.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

from ..models import ExecutionStatus

# Handlers take no arguments; anything they need is bound at registration time
JobHandler = Callable[[], Union[Awaitable[None], None]]

# What the cron engine invokes on every fire
TickCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    """Stoppable handle returned by a cron engine for one scheduled callback."""

    @property
    def next_run_time(self) -> Optional[datetime]: ...

    def stop(self) -> None: ...


class CronEngine(Protocol):
    def validate(self, expression: str) -> None: ...

    def schedule(
        self, expression: str, callback: TickCallback, name: Optional[str] = None
    ) -> TimerHandle: ...


@dataclass
class JobDescriptor:
    """
    In-memory state of a registered job.

    ``current_schedule`` and ``enabled`` are overwritten from the persisted
    config whenever the job is (re)loaded. ``active_timer`` is set only while
    the job is enabled and the scheduler has started.
    """

    name: str
    default_schedule: str
    current_schedule: str
    handler: JobHandler
    enabled: bool = True
    active_timer: Optional[TimerHandle] = None
    # Bumped by every runtime config update
    revision: int = 0


@dataclass(frozen=True)
class JobConfigView:
    """Read-only projection of a job descriptor for admin display."""

    name: str
    schedule: str
    enabled: bool
    default_schedule: str


@dataclass(frozen=True)
class PersistedJobConfig:
    job_name: str
    schedule: str
    enabled: bool
    updated_at: datetime
    updated_by: Optional[str] = None


@dataclass(frozen=True)
class ExecutionRecord:
    """
    Snapshot of one execution row.

    ``completed_at``, ``duration_ms`` and ``error`` stay empty while the run
    is still in progress.
    """

    id: int
    job_name: str
    started_at: datetime
    completed_at: Optional[datetime]
    duration_ms: Optional[int]
    status: ExecutionStatus
    error: Optional[str]


class ConfigStore(Protocol):
    async def find_one(self, job_name: str) -> Optional[PersistedJobConfig]: ...

    async def create(
        self, job_name: str, schedule: str, enabled: bool = True
    ) -> PersistedJobConfig: ...

    async def update_one(
        self,
        job_name: str,
        values: dict[str, Any],
        upsert: bool = True,
        defaults: Optional[dict[str, Any]] = None,
    ) -> None: ...

    async def delete_one(self, job_name: str) -> bool: ...


class ExecutionRecordHandle(Protocol):
    async def update(self, **values: Any) -> None: ...


class ExecutionTracker(Protocol):
    async def create(
        self, job_name: str, started_at: datetime
    ) -> ExecutionRecordHandle: ...

    async def latest(self, job_name: str) -> Optional[ExecutionRecord]: ...

    async def history(
        self, job_name: str, limit: int = 50
    ) -> List[ExecutionRecord]: ...

    async def count(self, status: Optional[ExecutionStatus] = None) -> int: ...

    async def prune(self, older_than: datetime) -> int: ...
