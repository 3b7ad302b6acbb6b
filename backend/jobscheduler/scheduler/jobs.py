"""
Maintenance jobs owned by the scheduler itself.
"""

import logging
from datetime import datetime, timedelta, timezone

from ..config import SchedulerSettings
from .service import SchedulerService
from .types import ExecutionTracker

logger = logging.getLogger(__name__)

PRUNE_EXECUTIONS_JOB = "scheduler:prune-executions"


def register_core_jobs(
    scheduler: SchedulerService,
    execution_tracker: ExecutionTracker,
    scheduler_settings: SchedulerSettings,
) -> None:
    """Register the built-in jobs on ``scheduler``."""
    retention = timedelta(days=scheduler_settings.execution_retention_days)

    async def prune_executions() -> None:
        cutoff = datetime.now(timezone.utc) - retention
        removed = await execution_tracker.prune(cutoff)
        logger.info(f"Pruned {removed} execution records older than {cutoff.isoformat()}")

    scheduler.register(
        PRUNE_EXECUTIONS_JOB,
        scheduler_settings.execution_prune_schedule,
        prune_executions,
    )
