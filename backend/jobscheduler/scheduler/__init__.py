"""
Job scheduling core.

Jobs are registered with a name, a default cron schedule and a handler. The
schedule and enabled state of every job are persisted and can be changed at
runtime; each run is recorded with its outcome, and a job never runs twice
at the same time.
"""

from typing import Optional

from ..config import SchedulerSettings
from .engine import APSchedulerCronEngine, CronTimerHandle, build_cron_trigger
from .errors import ConfigurationError, PersistenceError, SchedulerError
from .registry import JobRegistry, RunningSet
from .service import SchedulerService
from .stores import (
    ExecutionHandle,
    SessionFactory,
    SqlConfigStore,
    SqlExecutionTracker,
)
from .types import (
    ExecutionRecord,
    JobConfigView,
    JobDescriptor,
    JobHandler,
    PersistedJobConfig,
)


def build_scheduler(
    scheduler_settings: SchedulerSettings,
    session_factory: Optional[SessionFactory] = None,
    cron_engine: Optional[APSchedulerCronEngine] = None,
) -> SchedulerService:
    """Assemble a scheduler service backed by SQL stores and APScheduler."""
    return SchedulerService(
        config_store=SqlConfigStore(session_factory),
        execution_tracker=SqlExecutionTracker(session_factory),
        cron_engine=cron_engine
        or APSchedulerCronEngine(timezone=scheduler_settings.timezone),
    )


__all__ = [
    "APSchedulerCronEngine",
    "ConfigurationError",
    "CronTimerHandle",
    "ExecutionHandle",
    "ExecutionRecord",
    "JobConfigView",
    "JobDescriptor",
    "JobHandler",
    "JobRegistry",
    "PersistedJobConfig",
    "PersistenceError",
    "RunningSet",
    "SchedulerError",
    "SchedulerService",
    "SqlConfigStore",
    "SqlExecutionTracker",
    "build_cron_trigger",
    "build_scheduler",
]
