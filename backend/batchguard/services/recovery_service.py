"""
Manual Recovery Service.

Operator escape hatch: re-runs the fan-out for every organization without
consulting or touching the day claim. Each organization gets its own
correlation id; a failure for one organization never stops the others.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, Optional

import structlog

from batchguard.db.repositories.catalog import OrganizationRepository
from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.infrastructure.clock import today_key, utc_now
from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.exceptions import FanOutEnumerationError
from batchguard.models.scheduler import (
    MANUAL_RECOVERY_FUNCTION,
    ManualRecoveryResponse,
    OrgRecoveryResult,
    RunStatus,
    TriggerSource,
)
from batchguard.services.fanout_service import BatchFanOutExecutor

logger = structlog.get_logger(__name__)


class ManualRecoveryService:
    def __init__(
        self,
        executor: Optional[BatchFanOutExecutor] = None,
        organizations: Optional[OrganizationRepository] = None,
        runs: Optional[SchedulerRunRepository] = None,
        org_delay_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.executor = executor or BatchFanOutExecutor()
        self.organizations = organizations or OrganizationRepository()
        self.runs = runs or SchedulerRunRepository()
        if org_delay_seconds is None:
            org_delay_seconds = get_settings().recovery_org_delay_seconds
        self.org_delay_seconds = org_delay_seconds
        self._clock = clock

    async def run(self) -> ManualRecoveryResponse:
        now = self._clock()
        day_key = today_key(now)

        try:
            orgs = await self.organizations.list_all()
        except Exception as e:
            logger.error("manual_recovery_enumeration_failed", error=str(e))
            raise FanOutEnumerationError(
                f"Could not list organizations: {e}", details={"date": day_key}
            ) from e

        run_id = await self._start_run(day_key, now)
        logger.info("manual_recovery_started", day_key=day_key, organizations=len(orgs))

        results = []
        for index, org in enumerate(orgs):
            if index and self.org_delay_seconds > 0:
                await asyncio.sleep(self.org_delay_seconds)

            correlation_id = f"manual-recovery-{uuid.uuid4()}"
            try:
                org_result = await self.executor.run_org(org, day_key, correlation_id=correlation_id)
                results.append(OrgRecoveryResult(
                    org_id=org.id,
                    org_name=org.name,
                    success=org_result.success,
                    correlation_id=correlation_id,
                    total_runs=org_result.successful_runs,
                    failed_runs=org_result.failed_runs,
                    error=org_result.error,
                ))
            except Exception as e:
                logger.error("manual_recovery_org_failed", org_id=org.id, error=str(e))
                results.append(OrgRecoveryResult(
                    org_id=org.id,
                    org_name=org.name,
                    success=False,
                    correlation_id=correlation_id,
                    error=str(e) or type(e).__name__,
                ))

        successful = sum(1 for r in results if r.success)
        response = ManualRecoveryResponse(
            success=True,
            date=day_key,
            run_id=run_id,
            total_organizations=len(orgs),
            successful_triggers=successful,
            failed_triggers=len(results) - successful,
            results=results,
        )
        await self._finish_run(run_id, response)
        logger.info(
            "manual_recovery_completed",
            day_key=day_key,
            successful_triggers=response.successful_triggers,
            failed_triggers=response.failed_triggers,
        )
        return response

    async def _start_run(self, day_key: str, now: datetime) -> Optional[str]:
        try:
            return await self.runs.start_run(
                function_name=MANUAL_RECOVERY_FUNCTION,
                run_key=day_key,
                trigger_source=TriggerSource.MANUAL_TRIGGER.value,
                started_at=now,
            )
        except Exception as e:
            logger.warning("run_log_start_failed", day_key=day_key, error=str(e))
            return None

    async def _finish_run(self, run_id: Optional[str], response: ManualRecoveryResponse) -> None:
        if run_id is None:
            return
        try:
            await self.runs.finish_run(
                run_id,
                status=RunStatus.COMPLETED.value,
                completed_at=self._clock(),
                result={
                    "total_organizations": response.total_organizations,
                    "successful_triggers": response.successful_triggers,
                    "failed_triggers": response.failed_triggers,
                },
            )
        except Exception as e:
            logger.warning("run_log_finish_failed", run_id=run_id, error=str(e))


_manual_recovery_service: Optional[ManualRecoveryService] = None


def get_manual_recovery_service() -> ManualRecoveryService:
    global _manual_recovery_service
    if _manual_recovery_service is None:
        _manual_recovery_service = ManualRecoveryService()
    return _manual_recovery_service
