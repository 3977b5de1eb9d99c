"""
Tests for the daily trigger state machine.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
from batchguard.infrastructure.exceptions import FanOutEnumerationError
from batchguard.models.scheduler import DAILY_TRIGGER_FUNCTION, TriggerSource
from batchguard.services.daily_trigger_service import (
    ALREADY_COMPLETED_MESSAGE,
    CLAIM_LOST_MESSAGE,
    DailyTriggerService,
)

NOW = datetime(2026, 5, 4, 16, 0, tzinfo=timezone.utc)
TODAY = "2026-05-04"


def make_service(executor, release_claim_on_failure=False):
    return DailyTriggerService(
        executor=executor,
        clock=lambda: NOW,
        release_claim_on_failure=release_claim_on_failure,
    )


async def run_rows():
    return await SchedulerRunRepository().list(filters={"function_name": DAILY_TRIGGER_FUNCTION})


class TestDailyTrigger:

    @pytest.mark.asyncio
    async def test_first_call_runs_fanout(self, db, fake_executor):
        result = await make_service(fake_executor).run()

        assert result.success is True
        assert result.skipped is False
        assert result.date == TODAY
        assert result.total_runs == 4
        assert result.organizations_processed == 2
        assert result.trigger_source == TriggerSource.CRON
        assert fake_executor.run_calls == [TODAY]

        rows = await run_rows()
        assert len(rows) == 1
        assert rows[0].status == "completed"
        assert rows[0].run_key == TODAY
        assert rows[0].result["total_runs"] == 4

    @pytest.mark.asyncio
    async def test_already_completed_short_circuits(self, db, fake_executor):
        service = make_service(fake_executor)
        await service.run()
        result = await service.run()

        assert result.success is True
        assert result.skipped is True
        assert result.message == ALREADY_COMPLETED_MESSAGE
        assert result.previous_run_key == TODAY
        assert len(fake_executor.run_calls) == 1
        assert len(await run_rows()) == 1

    @pytest.mark.asyncio
    async def test_forced_call_cannot_rerun_a_claimed_day(self, db, fake_executor):
        service = make_service(fake_executor)
        await service.run()
        result = await service.run(force=True, trigger_source=TriggerSource.GUARDIAN_RECOVERY)

        assert result.skipped is True
        assert result.message == CLAIM_LOST_MESSAGE
        assert result.forced is True
        assert len(fake_executor.run_calls) == 1

    @pytest.mark.asyncio
    async def test_forced_call_runs_unclaimed_day(self, db, fake_executor):
        await SchedulerStateRepository().claim_day("2026-05-03", NOW)

        result = await make_service(fake_executor).run(
            force=True, trigger_source=TriggerSource.MONITOR_RECOVERY
        )

        assert result.skipped is False
        assert result.previous_run_key == "2026-05-03"
        rows = await run_rows()
        assert rows[0].trigger_source == "monitor_recovery"

    @pytest.mark.asyncio
    async def test_concurrent_calls_fan_out_once(self, db, make_executor):
        executor = make_executor(delay=0.05)
        service = make_service(executor)

        results = await asyncio.gather(*[
            service.run(force=i % 2 == 0, trigger_source=TriggerSource.MANUAL_TRIGGER)
            for i in range(10)
        ])

        assert len(executor.run_calls) == 1
        assert sum(1 for r in results if not r.skipped) == 1
        assert all(r.success for r in results)
        assert len(await run_rows()) == 1


class TestDailyTriggerFailure:

    @pytest.mark.asyncio
    async def test_failed_fanout_keeps_claim_by_default(self, db, make_executor):
        executor = make_executor(error=RuntimeError("organizations unavailable"))
        service = make_service(executor)

        with pytest.raises(FanOutEnumerationError):
            await service.run()

        state = await SchedulerStateRepository().get_state()
        assert state.last_daily_run_key == TODAY

        rows = await run_rows()
        assert rows[0].status == "failed"
        assert "organizations unavailable" in rows[0].error_message

        # A forced retry the same day still loses the claim
        executor.error = None
        retry = await service.run(force=True, trigger_source=TriggerSource.GUARDIAN_RECOVERY)
        assert retry.skipped is True

    @pytest.mark.asyncio
    async def test_failed_fanout_releases_claim_when_enabled(self, db, make_executor):
        state_repo = SchedulerStateRepository()
        await state_repo.claim_day("2026-05-03", NOW)
        executor = make_executor(error=RuntimeError("boom"))
        service = make_service(executor, release_claim_on_failure=True)

        with pytest.raises(FanOutEnumerationError):
            await service.run()

        assert (await state_repo.get_state()).last_daily_run_key == "2026-05-03"

        executor.error = None
        retry = await service.run(force=True, trigger_source=TriggerSource.GUARDIAN_RECOVERY)
        assert retry.skipped is False
        assert len(executor.run_calls) == 2

    @pytest.mark.asyncio
    async def test_run_log_failure_does_not_abort(self, db, fake_executor):
        class BrokenRuns(SchedulerRunRepository):
            async def start_run(self, **kwargs):
                raise RuntimeError("run log down")

        service = DailyTriggerService(
            executor=fake_executor,
            runs=BrokenRuns(),
            clock=lambda: NOW,
            release_claim_on_failure=False,
        )
        result = await service.run()

        assert result.skipped is False
        assert result.run_id is None
        assert fake_executor.run_calls == [TODAY]
        assert await SchedulerRunRepository().count() == 0
