"""
Scheduler service - job registration, persisted configuration and execution tracking.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, List, Optional, Set

from ..logger import log_exception
from ..models import ExecutionStatus
from .registry import JobRegistry, RunningSet
from .types import (
    ConfigStore,
    CronEngine,
    ExecutionRecordHandle,
    ExecutionTracker,
    JobConfigView,
    JobDescriptor,
    JobHandler,
)

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Central cron scheduler with runtime reconfiguration.

    Jobs are registered in code with a default schedule. On ``start()`` the
    persisted configuration of every job is loaded (or seeded from the
    defaults) and enabled jobs are handed to the cron engine. Schedule and
    enabled state can then be changed through ``update_job_config`` without
    a restart.

    Each fire of a job goes through ``_run_job``, which skips the fire while
    a previous run of the same job is still in flight and records every run
    that does happen in the execution tracker.

    Handlers that never return keep their job marked as running until the
    process restarts; there is no execution timeout.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        execution_tracker: ExecutionTracker,
        cron_engine: CronEngine,
    ):
        self.config_store = config_store
        self.execution_tracker = execution_tracker
        self.cron_engine = cron_engine
        self.registry = JobRegistry()
        self.running = RunningSet()
        self._started = False
        self._pending_activations: Set[asyncio.Task] = set()

    @property
    def started(self) -> bool:
        return self._started

    def register(self, name: str, default_schedule: str, handler: JobHandler) -> None:
        """
        Register a job with its default schedule.

        When the service has already started, the job's configuration is
        loaded and the job activated in a background task on the running
        event loop.

        Args:
            name: Unique job name, e.g. ``"markets:refresh"``
            default_schedule: Cron expression used until an admin changes it
            handler: Zero-argument callable, sync or returning an awaitable

        Raises:
            ConfigurationError: If the name is already registered
        """
        descriptor = self.registry.add(name, default_schedule, handler)

        if self._started:
            task = asyncio.get_running_loop().create_task(
                self._activate_late(descriptor)
            )
            self._pending_activations.add(task)
            task.add_done_callback(self._pending_activations.discard)

    async def wait_for_activations(self) -> None:
        """Wait until every late registration has been loaded and activated."""
        while self._pending_activations:
            await asyncio.gather(*list(self._pending_activations))

    async def start(self) -> None:
        """
        Load persisted configuration for every registered job and schedule the enabled ones.

        Jobs are processed in registration order. Calling this twice without
        ``stop()`` in between schedules every enabled job twice.

        Raises:
            PersistenceError: If the config store cannot be read or written
            ValueError: If a persisted schedule is rejected by the cron engine
        """
        for descriptor in self.registry.all():
            await self._load_and_activate(descriptor)
        self._started = True

    def stop(self) -> None:
        """Stop every active timer. Registered jobs and persisted config are kept."""
        for descriptor in self.registry.all():
            if descriptor.active_timer is not None:
                descriptor.active_timer.stop()
                descriptor.active_timer = None
        self._started = False
        logger.info("All scheduler jobs stopped")

    async def update_job_config(
        self,
        name: str,
        schedule: Optional[str] = None,
        enabled: Optional[bool] = None,
        updated_by: Optional[str] = None,
    ) -> None:
        """
        Persist and apply a new schedule and/or enabled state.

        Only the provided fields are written. Changes are detected against the
        live descriptor; when the schedule or enabled flag changed, the current
        timer is stopped and, if the job is enabled, a new one is created. A
        run already in progress is left alone.

        Raises:
            ConfigurationError: If the job is not registered
            ValueError: If ``schedule`` is rejected by the cron engine
            PersistenceError: If the config store write fails
        """
        descriptor = self.registry.require(name)
        if schedule is not None:
            self.cron_engine.validate(schedule)

        values: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if schedule is not None:
            values["schedule"] = schedule
        if enabled is not None:
            values["enabled"] = enabled
        if updated_by is not None:
            values["updated_by"] = updated_by

        await self.config_store.update_one(
            name,
            values,
            upsert=True,
            defaults={
                "schedule": descriptor.current_schedule,
                "enabled": descriptor.enabled,
            },
        )

        schedule_changed = schedule is not None and schedule != descriptor.current_schedule
        enabled_changed = enabled is not None and enabled != descriptor.enabled

        descriptor.revision += 1
        if schedule is not None:
            descriptor.current_schedule = schedule
        if enabled is not None:
            descriptor.enabled = enabled

        if not (schedule_changed or enabled_changed):
            return

        if descriptor.active_timer is not None:
            descriptor.active_timer.stop()
            descriptor.active_timer = None
            logger.info(f"Stopped existing timer of job {name}")

        if descriptor.enabled:
            if self._started:
                self._activate(descriptor)
            if enabled_changed:
                logger.warning(
                    f"Scheduler job enabled: {name} ({descriptor.current_schedule})"
                )
            else:
                logger.info(
                    f"Rescheduled job {name} with new schedule {descriptor.current_schedule}"
                )
        elif enabled_changed:
            logger.warning(f"Scheduler job disabled: {name}")
        else:
            logger.info(f"Job {name} is disabled, not scheduling")

    async def disable(self, name: str) -> None:
        await self.update_job_config(name, enabled=False)

    async def enable(self, name: str) -> None:
        await self.update_job_config(name, enabled=True)

    async def unregister(self, name: str, delete_from_database: bool = False) -> None:
        """
        Stop a job and remove it from the registry.

        Args:
            name: Job to remove
            delete_from_database: Also delete the job's persisted config

        Raises:
            ConfigurationError: If the job is not registered
        """
        descriptor = self.registry.require(name)

        if descriptor.active_timer is not None:
            descriptor.active_timer.stop()
            descriptor.active_timer = None

        self.registry.remove(name)

        if delete_from_database:
            await self.config_store.delete_one(name)

        logger.info(
            f"Job {name} unregistered from scheduler (deleted from database: {delete_from_database})"
        )

    def get_job_config(self, name: str) -> Optional[JobConfigView]:
        descriptor = self.registry.get(name)
        return self._view(descriptor) if descriptor else None

    def get_all_job_configs(self) -> List[JobConfigView]:
        return [self._view(descriptor) for descriptor in self.registry.all()]

    def is_running(self, name: str) -> bool:
        return name in self.running

    def running_jobs(self) -> List[str]:
        return self.running.snapshot()

    def next_run_time(self, name: str) -> Optional[datetime]:
        descriptor = self.registry.get(name)
        if descriptor is None or descriptor.active_timer is None:
            return None
        return descriptor.active_timer.next_run_time

    @staticmethod
    def _view(descriptor: JobDescriptor) -> JobConfigView:
        return JobConfigView(
            name=descriptor.name,
            schedule=descriptor.current_schedule,
            enabled=descriptor.enabled,
            default_schedule=descriptor.default_schedule,
        )

    async def _load_and_activate(self, descriptor: JobDescriptor) -> None:
        """
        Apply the persisted config of ``descriptor`` and schedule it if enabled.

        An ``update_job_config`` that lands while the config is loading wins:
        its values are already persisted and applied, so the loaded row is
        discarded. Any timer the update created is replaced, never duplicated.
        """
        name = descriptor.name
        revision = descriptor.revision
        config = await self.config_store.find_one(name)

        unchanged = self.registry.get(name) is descriptor and descriptor.revision == revision
        if config is None and unchanged:
            config = await self.config_store.create(
                name, descriptor.default_schedule, enabled=True
            )
            logger.info(
                f"Created default scheduler config for {name} ({descriptor.default_schedule})"
            )

        if self.registry.get(name) is not descriptor:
            # Unregistered while the config was loading
            return

        if descriptor.revision != revision:
            logger.info(f"Job {name} was reconfigured while loading, keeping the update")
        elif config is not None:
            descriptor.current_schedule = config.schedule
            descriptor.enabled = config.enabled

        if descriptor.active_timer is not None:
            descriptor.active_timer.stop()
            descriptor.active_timer = None

        if not descriptor.enabled:
            logger.info(f"Scheduler job disabled (skipped): {name}")
            return

        try:
            self._activate(descriptor)
        except ValueError:
            # Report the job as not running rather than enabled without a timer
            descriptor.enabled = False
            raise
        logger.info(f"Scheduler job started: {name} ({descriptor.current_schedule})")

    @log_exception("Failed to activate late-registered job {descriptor.name}")
    async def _activate_late(self, descriptor: JobDescriptor) -> None:
        await self._load_and_activate(descriptor)

    def _activate(self, descriptor: JobDescriptor) -> None:
        name = descriptor.name

        async def tick() -> None:
            await self._run_job(name)

        descriptor.active_timer = self.cron_engine.schedule(
            descriptor.current_schedule, tick, name=name
        )

    async def _run_job(self, name: str) -> None:
        """
        Run one fire of ``name``.

        Never raises for handler failures; they end up as failed execution
        records and error logs.
        """
        descriptor = self.registry.get(name)
        if descriptor is None:
            logger.debug(f"Ignoring fire of unregistered job {name}")
            return

        if not self.running.try_acquire(name):
            logger.warning(
                f"Scheduled job skipped: {name} - previous execution still running"
            )
            return

        try:
            execution = await self._open_execution(name)
            started = time.monotonic()
            logger.debug(f"Scheduled job start: {name}")

            try:
                result = descriptor.handler()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                error_message = str(e) or type(e).__name__
                await self._close_execution(
                    execution,
                    name,
                    status=ExecutionStatus.FAILED,
                    completed_at=datetime.now(timezone.utc),
                    duration_ms=duration_ms,
                    error=error_message,
                )
                logger.error(
                    f"Scheduled job failed: {name} after {duration_ms}ms: {error_message}",
                    exc_info=True,
                )
            else:
                duration_ms = int((time.monotonic() - started) * 1000)
                await self._close_execution(
                    execution,
                    name,
                    status=ExecutionStatus.SUCCESS,
                    completed_at=datetime.now(timezone.utc),
                    duration_ms=duration_ms,
                )
                logger.info(f"Scheduled job complete: {name} in {duration_ms}ms")
        finally:
            self.running.release(name)

    @log_exception("Failed to record start of job {name}")
    async def _open_execution(self, name: str) -> Optional[ExecutionRecordHandle]:
        return await self.execution_tracker.create(name, datetime.now(timezone.utc))

    @log_exception("Failed to record outcome of job {name}")
    async def _close_execution(
        self, execution: Optional[ExecutionRecordHandle], name: str, **values: Any
    ) -> None:
        if execution is None:
            return
        await execution.update(**values)
