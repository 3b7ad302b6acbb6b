import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from .config import settings
from .db.database import init_db
from .logger import logger
from .routers import scheduler as scheduler_router
from .scheduler import APSchedulerCronEngine, SchedulerService, build_scheduler
from .scheduler.jobs import register_core_jobs

JobRegistrar = Callable[[SchedulerService], None]


def create_app(register_jobs: Optional[JobRegistrar] = None) -> FastAPI:
    """
    Build the application.

    ``register_jobs`` is called with the scheduler before it starts, so
    application jobs are registered at bootstrap and picked up by ``start()``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up and initializing the database...")
        await init_db()
        app.state.started_at = time.monotonic()
        app.state.scheduler = None

        if not settings.scheduler.enabled:
            logger.warning("Scheduler disabled by configuration (scheduler.enabled=false)")
            yield
            return

        cron_engine = APSchedulerCronEngine(timezone=settings.scheduler.timezone)
        scheduler = build_scheduler(settings.scheduler, cron_engine=cron_engine)
        register_core_jobs(scheduler, scheduler.execution_tracker, settings.scheduler)
        if register_jobs is not None:
            register_jobs(scheduler)

        cron_engine.start()
        await scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Startup complete.")

        try:
            yield
        finally:
            scheduler.stop()
            cron_engine.shutdown()

    app = FastAPI(lifespan=lifespan, title="Job Scheduler")
    app.include_router(scheduler_router.router, prefix="/api")
    return app


app = create_app()
