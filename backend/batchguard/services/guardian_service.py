"""
Health Guardians (dead-man's switch).

Two independent watchers look for evidence that the daily batch ran within
a rolling window. Each reads a different signal:

- ExecutionMonitor: completed ``daily-batch-trigger`` entries in the
  scheduler run log.
- PromptExecutionGuardian: successful rows in the provider response log.
  This catches runs that "completed" without producing a single response.

On silence a guardian force-invokes the daily trigger once, tagged with its
own trigger source. It never retries; the next poll is the retry.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from batchguard.db.repositories.responses import ResponseRepository
from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.infrastructure.clock import utc_now
from batchguard.infrastructure.config import get_settings
from batchguard.models.scheduler import (
    DAILY_TRIGGER_FUNCTION,
    GuardianCheckResponse,
    GuardianStatus,
    TriggerSource,
)
from batchguard.services.daily_trigger_service import (
    DailyTriggerService,
    get_daily_trigger_service,
)

logger = structlog.get_logger(__name__)


class Guardian(ABC):
    """Base watcher: signal lookup plus forced recovery on silence."""

    name: str = "guardian"
    trigger_source: TriggerSource

    def __init__(
        self,
        trigger: Optional[DailyTriggerService] = None,
        window_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._trigger = trigger
        if window_hours is None:
            window_hours = get_settings().guardian_window_hours
        self.window_hours = window_hours
        self._clock = clock

    @property
    def trigger(self) -> DailyTriggerService:
        if self._trigger is None:
            self._trigger = get_daily_trigger_service()
        return self._trigger

    @abstractmethod
    async def last_signal_since(self, since: datetime) -> Optional[datetime]:
        """Newest qualifying signal strictly after ``since``, or None."""

    async def check(self) -> GuardianCheckResponse:
        """
        Poll the signal and recover if it went silent.

        Store failures while reading the signal propagate (fail closed);
        failures of the recovery invocation are reported, not raised.
        """
        now = self._clock()
        since = now - timedelta(hours=self.window_hours)
        last_signal = await self.last_signal_since(since)

        if last_signal is not None:
            logger.info("guardian_healthy", guardian=self.name, last_signal_at=last_signal.isoformat())
            return GuardianCheckResponse(
                status=GuardianStatus.HEALTHY,
                guardian=self.name,
                checked_at=now,
                window_hours=self.window_hours,
                last_signal_at=last_signal,
            )

        logger.warning("guardian_silence_detected", guardian=self.name, window_hours=self.window_hours)
        try:
            result = await self.trigger.run(force=True, trigger_source=self.trigger_source)
        except Exception as e:
            logger.error("guardian_recovery_failed", guardian=self.name, error=str(e))
            return GuardianCheckResponse(
                status=GuardianStatus.RECOVERY_FAILED,
                guardian=self.name,
                checked_at=now,
                window_hours=self.window_hours,
                error=str(e) or type(e).__name__,
            )

        if not result.success:
            logger.error("guardian_recovery_failed", guardian=self.name, error=result.message)
            return GuardianCheckResponse(
                status=GuardianStatus.RECOVERY_FAILED,
                guardian=self.name,
                checked_at=now,
                window_hours=self.window_hours,
                trigger_result=result,
                error=result.message,
            )

        if result.skipped:
            message = f"Recovery was a no-op: {result.message}"
            logger.warning("guardian_recovery_skipped", guardian=self.name, reason=result.message)
        else:
            message = "Recovery run completed"
            logger.info("guardian_recovery_triggered", guardian=self.name, total_runs=result.total_runs)
        return GuardianCheckResponse(
            status=GuardianStatus.RECOVERY_TRIGGERED,
            guardian=self.name,
            checked_at=now,
            window_hours=self.window_hours,
            trigger_result=result,
            recovery_skipped=result.skipped,
            message=message,
        )


class ExecutionMonitor(Guardian):
    """Watches the scheduler run log for completed daily triggers."""

    name = "execution-monitor"
    trigger_source = TriggerSource.MONITOR_RECOVERY

    def __init__(self, runs: Optional[SchedulerRunRepository] = None, **kwargs):
        super().__init__(**kwargs)
        self.runs = runs or SchedulerRunRepository()

    async def last_signal_since(self, since: datetime) -> Optional[datetime]:
        return await self.runs.latest_completed_since(DAILY_TRIGGER_FUNCTION, since)


class PromptExecutionGuardian(Guardian):
    """Watches the provider response log for successful responses."""

    name = "prompt-execution-guardian"
    trigger_source = TriggerSource.GUARDIAN_RECOVERY

    def __init__(self, responses: Optional[ResponseRepository] = None, **kwargs):
        super().__init__(**kwargs)
        self.responses = responses or ResponseRepository()

    async def last_signal_since(self, since: datetime) -> Optional[datetime]:
        return await self.responses.latest_success_since(since)


# ============================================
# SINGLETONS
# ============================================

_execution_monitor: Optional[ExecutionMonitor] = None
_prompt_guardian: Optional[PromptExecutionGuardian] = None


def get_execution_monitor() -> ExecutionMonitor:
    global _execution_monitor
    if _execution_monitor is None:
        _execution_monitor = ExecutionMonitor()
    return _execution_monitor


def get_prompt_guardian() -> PromptExecutionGuardian:
    global _prompt_guardian
    if _prompt_guardian is None:
        _prompt_guardian = PromptExecutionGuardian()
    return _prompt_guardian
