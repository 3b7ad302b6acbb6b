"""
Test the scheduler admin API endpoints.
"""

import time

import httpx
import pytest
from fastapi import FastAPI

from jobscheduler.routers import scheduler as scheduler_router


async def noop():
    pass


async def failing():
    raise RuntimeError("fetch failed")


def build_app(scheduler) -> FastAPI:
    app = FastAPI()
    app.include_router(scheduler_router.router, prefix="/api")
    app.state.scheduler = scheduler
    app.state.started_at = time.monotonic()
    return app


@pytest.fixture
async def started_scheduler(scheduler):
    scheduler.register("markets:refresh", "*/10 * * * *", noop)
    scheduler.register("blockchain:sync", "* * * * *", failing)
    await scheduler.start()
    return scheduler


@pytest.fixture
async def client(started_scheduler):
    transport = httpx.ASGITransport(app=build_app(started_scheduler))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestJobEndpoints:
    async def test_list_jobs(self, client):
        response = await client.get("/api/scheduler/jobs")

        assert response.status_code == 200
        assert response.json() == [
            {
                "name": "markets:refresh",
                "schedule": "*/10 * * * *",
                "enabled": True,
                "default_schedule": "*/10 * * * *",
            },
            {
                "name": "blockchain:sync",
                "schedule": "* * * * *",
                "enabled": True,
                "default_schedule": "* * * * *",
            },
        ]

    async def test_get_unknown_job(self, client):
        response = await client.get("/api/scheduler/jobs/missing")

        assert response.status_code == 404

    async def test_update_job(self, client, started_scheduler, cron_engine):
        response = await client.patch(
            "/api/scheduler/jobs/markets:refresh",
            json={"schedule": "*/5 * * * *", "enabled": False},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["job"]["schedule"] == "*/5 * * * *"
        assert body["job"]["enabled"] is False
        assert cron_engine.active("markets:refresh") == []

    async def test_update_unknown_job(self, client):
        response = await client.patch(
            "/api/scheduler/jobs/missing", json={"enabled": False}
        )

        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    async def test_update_with_invalid_schedule(self, client, started_scheduler):
        response = await client.patch(
            "/api/scheduler/jobs/markets:refresh", json={"schedule": "whenever"}
        )

        assert response.status_code == 400
        assert started_scheduler.get_job_config("markets:refresh").schedule == (
            "*/10 * * * *"
        )

    async def test_update_rejects_wrong_types(self, client):
        response = await client.patch(
            "/api/scheduler/jobs/markets:refresh", json={"enabled": "yes"}
        )

        assert response.status_code == 422


class TestStatusEndpoints:
    async def test_status_reports_last_run(self, client, cron_engine):
        await cron_engine.fire("markets:refresh")
        await cron_engine.fire("blockchain:sync")

        response = await client.get("/api/scheduler/status")

        assert response.status_code == 200
        jobs = {job["name"]: job for job in response.json()}
        assert jobs["markets:refresh"]["status"] == "success"
        assert jobs["markets:refresh"]["last_run"] is not None
        assert jobs["markets:refresh"]["duration"] is not None
        assert jobs["blockchain:sync"]["status"] == "failed"
        assert jobs["blockchain:sync"]["error"] == "fetch failed"

    async def test_status_of_disabled_job_is_never_run(
        self, client, started_scheduler, cron_engine
    ):
        await cron_engine.fire("markets:refresh")
        await started_scheduler.disable("markets:refresh")

        response = await client.get("/api/scheduler/status")

        jobs = {job["name"]: job for job in response.json()}
        assert jobs["markets:refresh"]["status"] == "never_run"
        assert jobs["markets:refresh"]["enabled"] is False

    async def test_health(self, client, cron_engine):
        await cron_engine.fire("markets:refresh")
        await cron_engine.fire("blockchain:sync")

        response = await client.get("/api/scheduler/health")

        assert response.status_code == 200
        health = response.json()
        assert health["total_jobs_executed"] == 2
        assert health["success_rate"] == 50
        assert health["running_jobs"] == []
        assert health["uptime"] >= 0

    async def test_executions(self, client, cron_engine):
        await cron_engine.fire("blockchain:sync")
        await cron_engine.fire("blockchain:sync")

        response = await client.get(
            "/api/scheduler/jobs/blockchain:sync/executions", params={"limit": 1}
        )

        assert response.status_code == 200
        executions = response.json()
        assert len(executions) == 1
        assert executions[0]["status"] == "failed"
        assert executions[0]["error"] == "fetch failed"


class TestSchedulerDisabled:
    async def test_endpoints_return_503_except_health(self):
        transport = httpx.ASGITransport(app=build_app(None))
        async with httpx.AsyncClient(
            transport=transport, base_url="http://test"
        ) as client:
            jobs = await client.get("/api/scheduler/jobs")
            health = await client.get("/api/scheduler/health")

        assert jobs.status_code == 503
        assert health.status_code == 200
        assert health.json()["enabled"] is False
