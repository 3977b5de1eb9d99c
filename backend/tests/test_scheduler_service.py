"""
Tests for the in-process APScheduler wrapper and run-log retention.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.infrastructure.clock import utc_now
from batchguard.services.scheduler_service import SchedulerService, build_schedule, cleanup_old_runs


def test_schedule_uses_configured_crons(test_settings):
    schedule = build_schedule()
    assert set(schedule) == {
        "daily_batch_trigger", "execution_monitor", "prompt_guardian", "scheduler_postcheck", "run_log_cleanup",
    }
    assert schedule["daily_batch_trigger"]["cron"] == "5 3 * * *"


class TestSchedulerService:

    @pytest.mark.asyncio
    async def test_start_registers_jobs_in_business_timezone(self, test_settings):
        service = SchedulerService()
        await service.start()
        try:
            status = service.get_status()
            assert status["running"] is True
            assert status["job_count"] == 5

            job = service.scheduler.get_job("daily_batch_trigger")
            next_run = job.next_run_time
            assert str(next_run.tzinfo) == "America/New_York"
            assert (next_run.hour, next_run.minute) == (3, 5)
        finally:
            await service.stop()
        assert service.get_status()["running"] is False

    @pytest.mark.asyncio
    async def test_trigger_unknown_job(self, test_settings):
        result = await SchedulerService().trigger_job("nope")
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_trigger_job_reports_failure_without_raising(self, test_settings):
        service = SchedulerService()
        with patch.object(service, "_run_execution_monitor", new=AsyncMock(side_effect=RuntimeError("down"))):
            result = await service.trigger_job("execution_monitor")
        assert result == {"success": False, "job": "execution_monitor"}

    @pytest.mark.asyncio
    async def test_daily_job_calls_trigger_unforced(self, test_settings):
        trigger = AsyncMock()
        with patch("batchguard.services.scheduler_service.get_daily_trigger_service", return_value=trigger):
            result = await SchedulerService().trigger_job("daily_batch_trigger")

        assert result["success"] is True
        trigger.run.assert_awaited_once()
        assert trigger.run.await_args.kwargs["force"] is False

    @pytest.mark.asyncio
    async def test_postcheck_job_uses_auto_repair_setting(self, test_settings, monkeypatch):
        from batchguard.infrastructure.config import get_settings

        monkeypatch.setenv("BATCHGUARD_POSTCHECK_AUTO_REPAIR", "true")
        get_settings.cache_clear()
        postcheck = AsyncMock()
        with patch("batchguard.services.scheduler_service.get_postcheck_service", return_value=postcheck):
            result = await SchedulerService().trigger_job("scheduler_postcheck")

        assert result["success"] is True
        postcheck.run.assert_awaited_once_with(repair=True)


@pytest.mark.asyncio
async def test_cleanup_old_runs_keeps_recent_and_running(db):
    runs = SchedulerRunRepository()
    now = utc_now()

    old_id = await runs.start_run(
        function_name="daily-batch-trigger", run_key="old", trigger_source="cron",
        started_at=now - timedelta(days=40),
    )
    await runs.finish_run(old_id, status="completed", completed_at=now - timedelta(days=40))
    await runs.start_run(
        function_name="daily-batch-trigger", run_key="stuck", trigger_source="cron",
        started_at=now - timedelta(days=40),
    )
    await runs.start_run(
        function_name="daily-batch-trigger", run_key="recent", trigger_source="cron",
        started_at=now - timedelta(days=1),
    )

    removed = await cleanup_old_runs(retention_days=30)

    assert removed == 1
    remaining = {r.run_key for r in await runs.list()}
    assert remaining == {"stuck", "recent"}
