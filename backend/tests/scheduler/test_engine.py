"""
Tests for the APScheduler-backed cron engine.
"""

from datetime import datetime, timezone

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from jobscheduler.scheduler import APSchedulerCronEngine, build_cron_trigger
from jobscheduler.scheduler.engine import translate_day_of_week


async def tick():
    pass


class TestBuildCronTrigger:
    def test_five_fields_fire_on_second_zero(self):
        trigger = build_cron_trigger("*/10 * * * *", "UTC")

        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["second"] == "0"
        assert fields["minute"] == "*/10"

    def test_six_fields_take_leading_second(self):
        trigger = build_cron_trigger("30 0 12 * * mon", "UTC")

        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["second"] == "30"
        assert fields["minute"] == "0"
        assert fields["hour"] == "12"
        assert fields["day_of_week"] == "mon"

    @pytest.mark.parametrize("expression", ["* * * *", "* * * * * * *", ""])
    def test_wrong_field_count(self, expression):
        with pytest.raises(ValueError, match="5 fields"):
            build_cron_trigger(expression)

    def test_invalid_field_value(self):
        with pytest.raises(ValueError):
            build_cron_trigger("99 * * * *")


class TestDayOfWeek:
    # Monday 2026-10-19, 01:00 UTC
    NOW = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)

    def next_fire(self, expression: str) -> datetime:
        return build_cron_trigger(expression, "UTC").get_next_fire_time(None, self.NOW)

    @pytest.mark.parametrize("day", ["0", "7", "sun", "Sunday"])
    def test_sunday(self, day):
        next_fire = self.next_fire(f"0 0 * * {day}")

        assert next_fire.strftime("%A") == "Sunday"
        assert next_fire.date().isoformat() == "2026-10-25"

    def test_weekday_range_skips_weekend(self):
        # Saturday 2026-10-24
        saturday = datetime(2026, 10, 24, 12, 0, tzinfo=timezone.utc)

        next_fire = build_cron_trigger("0 9 * * 1-5", "UTC").get_next_fire_time(
            None, saturday
        )

        assert next_fire == datetime(2026, 10, 26, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "field, expected",
        [
            ("*", "*"),
            ("1", "mon"),
            ("1-5", "mon,tue,wed,thu,fri"),
            ("6,0", "sun,sat"),
            ("5-7", "sun,fri,sat"),
            ("*/2", "sun,tue,thu,sat"),
            ("1/3", "mon,thu"),
            ("mon-wed", "mon,tue,wed"),
            ("0-6", "*"),
        ],
    )
    def test_translate(self, field, expected):
        assert translate_day_of_week(field) == expected

    @pytest.mark.parametrize("field", ["8", "5-1", "funday", "*/0", "1,,2"])
    def test_translate_rejects_invalid(self, field):
        with pytest.raises(ValueError):
            translate_day_of_week(field)


class TestAPSchedulerCronEngine:
    @pytest.fixture
    async def engine(self):
        engine = APSchedulerCronEngine(AsyncIOScheduler(timezone="UTC"), timezone="UTC")
        yield engine
        engine.shutdown()

    async def test_schedule_adds_job(self, engine):
        handle = engine.schedule("* * * * *", tick, name="x")

        job = engine.scheduler.get_job(handle.job_id)
        assert job is not None
        assert job.name == "x"
        assert handle.job_id.startswith("x#")

    async def test_each_schedule_gets_distinct_job(self, engine):
        first = engine.schedule("* * * * *", tick, name="x")
        second = engine.schedule("*/5 * * * *", tick, name="x")

        assert first.job_id != second.job_id
        assert len(engine.scheduler.get_jobs()) == 2

    async def test_stop_removes_job_and_is_idempotent(self, engine):
        handle = engine.schedule("* * * * *", tick, name="x")

        handle.stop()
        handle.stop()

        assert handle.stopped
        assert engine.scheduler.get_job(handle.job_id) is None
        assert handle.next_run_time is None

    async def test_next_run_time_once_started(self, engine):
        engine.start()
        handle = engine.schedule("0 0 * * *", tick, name="x")

        next_run = handle.next_run_time
        assert next_run is not None
        assert (next_run.hour, next_run.minute, next_run.second) == (0, 0, 0)

    async def test_invalid_expression_raises_synchronously(self, engine):
        with pytest.raises(ValueError):
            engine.schedule("not a cron", tick, name="x")

        assert engine.scheduler.get_jobs() == []

    def test_validate(self):
        engine = APSchedulerCronEngine(timezone="UTC")

        engine.validate("*/5 * * * *")
        with pytest.raises(ValueError):
            engine.validate("61 * * * *")
