"""
Scheduler API endpoints.

Entry points for cron, guardians and operators into the daily batch
pipeline. Authentication runs before any scheduler state is read.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
import structlog

from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
from batchguard.infrastructure.auth import (
    require_cron_secret,
    require_service_role,
    require_user,
    verify_cron_secret,
)
from batchguard.infrastructure.clock import ensure_utc, is_past_cutoff, next_cutoff, today_key, utc_now
from batchguard.models.scheduler import (
    CronSecretSyncResponse,
    DailyTriggerRequest,
    DailyTriggerResponse,
    GuardianCheckResponse,
    ManualRecoveryResponse,
    PostcheckResponse,
    SchedulerStatusResponse,
)
from batchguard.services.cron_secret_service import CronSecretSyncService, get_cron_secret_service
from batchguard.services.daily_trigger_service import DailyTriggerService, get_daily_trigger_service
from batchguard.services.guardian_service import (
    ExecutionMonitor,
    PromptExecutionGuardian,
    get_execution_monitor,
    get_prompt_guardian,
)
from batchguard.services.postcheck_service import PostcheckService, get_postcheck_service
from batchguard.services.recovery_service import ManualRecoveryService, get_manual_recovery_service
from batchguard.services.scheduler_service import get_scheduler_service

router = APIRouter()
logger = structlog.get_logger()


@router.post("/daily-trigger", response_model=DailyTriggerResponse)
async def daily_trigger(
    request: Request,
    body: Optional[DailyTriggerRequest] = None,
    x_cron_secret: Optional[str] = Header(default=None, alias="x-cron-secret"),
    service: DailyTriggerService = Depends(get_daily_trigger_service),
):
    """Run today's batch once. Forced calls must carry the cron secret."""
    body = body or DailyTriggerRequest()
    if body.force:
        await verify_cron_secret(x_cron_secret, request)
    return await service.run(force=body.force, trigger_source=body.trigger_source)


@router.post(
    "/execution-monitor",
    response_model=GuardianCheckResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def execution_monitor(monitor: ExecutionMonitor = Depends(get_execution_monitor)):
    """Recover if no daily trigger completed within the window."""
    return await monitor.check()


@router.post(
    "/prompt-guardian",
    response_model=GuardianCheckResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def prompt_guardian(guardian: PromptExecutionGuardian = Depends(get_prompt_guardian)):
    """Recover if no provider response landed within the window."""
    return await guardian.check()


@router.post(
    "/postcheck",
    response_model=PostcheckResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def postcheck(
    repair: bool = False,
    service: PostcheckService = Depends(get_postcheck_service),
):
    """Report today's prompt coverage; with ``repair=true`` re-dispatch uncovered prompts."""
    return await service.run(repair=repair)


@router.post(
    "/manual-recovery",
    response_model=ManualRecoveryResponse,
    dependencies=[Depends(require_service_role)],
)
async def manual_recovery(service: ManualRecoveryService = Depends(get_manual_recovery_service)):
    """Re-run the fan-out for every organization, ignoring the day claim."""
    return await service.run()


@router.get(
    "/status",
    response_model=SchedulerStatusResponse,
    dependencies=[Depends(require_user)],
)
async def scheduler_status():
    """Last claimed day, today's key, cutoff, in-process jobs and recent runs."""
    now = utc_now()
    key = today_key(now)
    state = await SchedulerStateRepository().get_state()
    last_key = state.last_daily_run_key if state else None

    if last_key is None:
        run_status = "never_run"
    elif last_key == key:
        run_status = "completed_today"
    else:
        run_status = "pending"

    return SchedulerStatusResponse(
        last_daily_run_key=last_key,
        last_daily_run_at=ensure_utc(state.last_daily_run_at) if state else None,
        status=run_status,
        today_key=key,
        past_cutoff=is_past_cutoff(now),
        next_cutoff=next_cutoff(now),
        jobs=get_scheduler_service().get_status()["jobs"],
        recent_runs=await SchedulerRunRepository().recent(limit=20),
    )


@router.post(
    "/sync-cron-secret",
    response_model=CronSecretSyncResponse,
    dependencies=[Depends(require_service_role)],
)
async def sync_cron_secret(service: CronSecretSyncService = Depends(get_cron_secret_service)):
    """Copy the configured cron secret into the settings store."""
    return await service.sync()
