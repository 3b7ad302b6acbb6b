"""
Tests for the log_exception decorator.
"""

import asyncio

from jobscheduler.logger import log_exception


class TestLogException:
    def test_sync_function_with_prefix(self, caplog):
        @log_exception("SyncOperation")
        def failing():
            raise ValueError("Test error from sync function")

        assert failing() is None
        assert "SyncOperation: ValueError: Test error from sync function" in caplog.text
        assert "ERROR" in caplog.text

    async def test_async_function_with_prefix(self, caplog):
        @log_exception("AsyncOperation")
        async def failing():
            await asyncio.sleep(0.01)
            raise ValueError("Test error from async function")

        assert await failing() is None
        assert (
            "AsyncOperation: ValueError: Test error from async function" in caplog.text
        )

    async def test_successful_call_is_not_logged(self, caplog):
        @log_exception("SuccessfulOp")
        async def succeeding():
            return "ok"

        assert await succeeding() == "ok"
        assert "SuccessfulOp" not in caplog.text

    def test_default_return(self, caplog):
        @log_exception("Lookup", default_return=[])
        def failing():
            raise KeyError("missing")

        assert failing() == []

    def test_prefix_parameter_substitution(self, caplog):
        @log_exception("Recording outcome of {job_name}")
        def record(job_name, status="success"):
            raise RuntimeError("disk full")

        record("markets:refresh", status="failed")

        assert "Recording outcome of markets:refresh: RuntimeError: disk full" in caplog.text
        assert "job_name='markets:refresh'" in caplog.text
        assert "status='failed'" in caplog.text

    def test_prefix_with_unknown_parameter(self, caplog):
        @log_exception("Processing {missing}")
        def failing(job_name):
            raise RuntimeError("boom")

        failing("x")

        assert "Failed to format prefix" in caplog.text
        assert "Processing {missing}: RuntimeError: boom" in caplog.text
