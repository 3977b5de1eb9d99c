"""
Daily Trigger Service.

Runs the daily batch at most once per business day, no matter how many
cron entries, guardians or operators invoke it concurrently. The atomic
claim in the scheduler state store is the only arbiter:

    Idle -> Claiming -> Running -> Done | Failed

A non-forced call first reads the state and short-circuits if today is
already recorded. Every call (forced or not) must then win the claim
before any fan-out work starts.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
from batchguard.infrastructure.clock import ensure_utc, today_key, utc_now
from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.exceptions import FanOutEnumerationError
from batchguard.models.scheduler import (
    DAILY_TRIGGER_FUNCTION,
    DailyTriggerResponse,
    RunStatus,
    TriggerSource,
)
from batchguard.services.fanout_service import BatchFanOutExecutor

logger = structlog.get_logger(__name__)

ALREADY_COMPLETED_MESSAGE = "Daily batch already completed today"
CLAIM_LOST_MESSAGE = "Another instance handled today's run"


class DailyTriggerService:
    """Idempotent once-per-day batch trigger."""

    def __init__(
        self,
        state: Optional[SchedulerStateRepository] = None,
        runs: Optional[SchedulerRunRepository] = None,
        executor: Optional[BatchFanOutExecutor] = None,
        clock: Callable[[], datetime] = utc_now,
        release_claim_on_failure: Optional[bool] = None,
    ):
        self.state = state or SchedulerStateRepository()
        self.runs = runs or SchedulerRunRepository()
        self.executor = executor or BatchFanOutExecutor()
        self._clock = clock
        if release_claim_on_failure is None:
            release_claim_on_failure = get_settings().release_claim_on_failure
        self.release_claim_on_failure = release_claim_on_failure

    async def run(
        self,
        force: bool = False,
        trigger_source: TriggerSource = TriggerSource.CRON,
    ) -> DailyTriggerResponse:
        """
        Run today's batch if nobody has claimed it yet.

        Raises:
            StoreUnavailableError: the state could not be read or claimed.
            FanOutEnumerationError: the claim was won but the fan-out aborted.
        """
        now = self._clock()
        day_key = today_key(now)
        log = logger.bind(day_key=day_key, force=force, trigger_source=trigger_source.value)

        state = await self.state.get_state()
        previous_key = state.last_daily_run_key if state else None
        previous_at = ensure_utc(state.last_daily_run_at) if state else None

        if not force and previous_key == day_key:
            log.info("daily_trigger_already_completed")
            return DailyTriggerResponse(
                success=True,
                skipped=True,
                message=ALREADY_COMPLETED_MESSAGE,
                date=day_key,
                forced=force,
                trigger_source=trigger_source,
                previous_run_key=previous_key,
                previous_run_at=previous_at,
            )

        if not await self.state.claim_day(day_key, now):
            log.info("daily_trigger_claim_lost")
            return DailyTriggerResponse(
                success=True,
                skipped=True,
                message=CLAIM_LOST_MESSAGE,
                date=day_key,
                forced=force,
                trigger_source=trigger_source,
            )

        log.info("daily_trigger_claimed", previous_run_key=previous_key)
        run_id = await self._start_run(day_key, trigger_source, now)

        try:
            result = await self.executor.run(day_key)
        except Exception as e:
            log.error("daily_trigger_fanout_failed", run_id=run_id, error=str(e))
            await self._finish_run(run_id, RunStatus.FAILED, error_message=str(e))
            if self.release_claim_on_failure:
                await self._release(day_key, previous_key, previous_at)
            raise FanOutEnumerationError(
                f"Daily batch fan-out failed: {e}",
                details={"date": day_key, "run_id": run_id},
            ) from e

        summary = {
            "total_runs": result.total_runs,
            "failed_runs": result.failed_runs,
            "organizations_processed": result.organizations_processed,
            "forced": force,
        }
        await self._finish_run(run_id, RunStatus.COMPLETED, result=summary)
        log.info("daily_trigger_completed", run_id=run_id, **summary)

        return DailyTriggerResponse(
            success=True,
            message=(
                f"Daily batch completed: {result.total_runs} runs across "
                f"{result.organizations_processed} organizations"
            ),
            date=day_key,
            forced=force,
            trigger_source=trigger_source,
            total_runs=result.total_runs,
            failed_runs=result.failed_runs,
            organizations_processed=result.organizations_processed,
            run_id=run_id,
            previous_run_key=previous_key,
            previous_run_at=previous_at,
        )

    # ============================================
    # RUN LOG
    # ============================================

    async def _start_run(
        self, day_key: str, trigger_source: TriggerSource, now: datetime
    ) -> Optional[str]:
        try:
            return await self.runs.start_run(
                function_name=DAILY_TRIGGER_FUNCTION,
                run_key=day_key,
                trigger_source=trigger_source.value,
                started_at=now,
            )
        except Exception as e:
            logger.warning("run_log_start_failed", day_key=day_key, error=str(e))
            return None

    async def _finish_run(
        self,
        run_id: Optional[str],
        status: RunStatus,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if run_id is None:
            return
        try:
            await self.runs.finish_run(
                run_id,
                status=status.value,
                completed_at=self._clock(),
                result=result,
                error_message=error_message,
            )
        except Exception as e:
            logger.warning("run_log_finish_failed", run_id=run_id, error=str(e))

    async def _release(
        self, day_key: str, previous_key: Optional[str], previous_at: Optional[datetime]
    ) -> None:
        try:
            await self.state.release_day(day_key, previous_key, previous_at)
        except Exception as e:
            logger.error("daily_claim_release_failed", day_key=day_key, error=str(e))


# ============================================
# SINGLETON
# ============================================

_daily_trigger_service: Optional[DailyTriggerService] = None


def get_daily_trigger_service() -> DailyTriggerService:
    """Get the singleton daily trigger service instance."""
    global _daily_trigger_service
    if _daily_trigger_service is None:
        _daily_trigger_service = DailyTriggerService()
    return _daily_trigger_service
