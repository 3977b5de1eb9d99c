"""
In-process Scheduler Service for batchguard.

Fires the recurring jobs of the daily batch pipeline:
- Daily batch trigger (once per business day)
- Execution monitor and prompt guardian (hourly, at different minutes)
- Prompt coverage postcheck (daily, after the batch)
- Weekly scheduler run-log retention cleanup

Uses APScheduler cron triggers evaluated in the business timezone, so a
single entry covers both standard and daylight time. Duplicate or
overlapping firings are harmless: the daily trigger's claim decides.
"""
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.infrastructure.clock import business_zone, utc_now
from batchguard.infrastructure.config import get_settings
from batchguard.models.scheduler import TriggerSource
from batchguard.services.daily_trigger_service import get_daily_trigger_service
from batchguard.services.guardian_service import get_execution_monitor, get_prompt_guardian
from batchguard.services.postcheck_service import get_postcheck_service

logger = structlog.get_logger(__name__)


# ============================================
# SCHEDULE CONFIGURATION
# ============================================

def build_schedule() -> Dict[str, Dict[str, Any]]:
    """Job table, with cron expressions taken from settings."""
    settings = get_settings()
    return {
        "daily_batch_trigger": {
            "cron": settings.daily_trigger_cron,
            "description": "Claim today and fan out the daily prompt batch",
            "enabled": True,
        },
        "execution_monitor": {
            "cron": settings.execution_monitor_cron,
            "description": "Force a run if no daily trigger completed in the window",
            "enabled": True,
        },
        "prompt_guardian": {
            "cron": settings.prompt_guardian_cron,
            "description": "Force a run if no provider response landed in the window",
            "enabled": True,
        },
        "scheduler_postcheck": {
            "cron": settings.postcheck_cron,
            "description": "Check today's prompt coverage, repairing gaps if enabled",
            "enabled": True,
        },
        "run_log_cleanup": {
            "cron": settings.run_log_cleanup_cron,
            "description": "Delete scheduler run-log rows past retention",
            "enabled": True,
        },
    }


# ============================================
# SCHEDULER SERVICE
# ============================================

class SchedulerService:
    """
    Manages the recurring jobs of the batch pipeline.

    Job outcomes are audited through structured logs; the pipeline itself
    writes the scheduler_runs table.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=business_zone())
        self._running = False
        self._jobs: Dict[str, str] = {}  # job_name -> job_id

    async def start(self):
        """Start the scheduler with all configured jobs."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        logger.info("scheduler_starting")

        for job_name, config in build_schedule().items():
            if config.get("enabled", True):
                self._register_job(job_name, config)

        self.scheduler.start()
        self._running = True

        logger.info("scheduler_started", jobs=list(self._jobs.keys()))

    async def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return

        logger.info("scheduler_stopping")
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("scheduler_stopped")

    def _register_job(self, job_name: str, config: Dict[str, Any]):
        """Register a scheduled job, wrapped with audit logging."""
        handler = self._get_handler(job_name)
        if not handler:
            logger.warning("no_handler_for_job", job=job_name)
            return

        async def audited_handler(_name=job_name, _handler=handler):
            await self._run_with_audit(_name, _handler)

        trigger = CronTrigger.from_crontab(config["cron"], timezone=business_zone())

        job = self.scheduler.add_job(
            audited_handler,
            trigger=trigger,
            id=job_name,
            name=config.get("description", job_name),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._jobs[job_name] = job.id
        logger.info("job_registered", job=job_name, cron=config["cron"])

    async def _run_with_audit(self, job_name: str, handler: Callable) -> bool:
        """Execute a handler; failures are logged, never propagated into APScheduler."""
        t0 = time.monotonic()
        status = "completed"
        error_msg = None

        try:
            await handler()
        except Exception as e:
            status = "failed"
            error_msg = str(e)
            logger.error("job_failed", job=job_name, error=error_msg)
        finally:
            duration = round(time.monotonic() - t0, 2)
            logger.info("job_audit", job=job_name, status=status, duration=duration, error=error_msg)
        return status == "completed"

    def _get_handler(self, job_name: str) -> Optional[Callable]:
        handlers = {
            "daily_batch_trigger": self._run_daily_batch_trigger,
            "execution_monitor": self._run_execution_monitor,
            "prompt_guardian": self._run_prompt_guardian,
            "scheduler_postcheck": self._run_postcheck,
            "run_log_cleanup": self._run_log_cleanup,
        }
        return handlers.get(job_name)

    # ============================================
    # JOB HANDLERS
    # ============================================

    async def _run_daily_batch_trigger(self):
        result = await get_daily_trigger_service().run(force=False, trigger_source=TriggerSource.CRON)
        logger.info("scheduled_daily_trigger_result", skipped=result.skipped, message=result.message)

    async def _run_execution_monitor(self):
        result = await get_execution_monitor().check()
        logger.info("scheduled_guardian_result", guardian=result.guardian, status=result.status.value)

    async def _run_prompt_guardian(self):
        result = await get_prompt_guardian().check()
        logger.info("scheduled_guardian_result", guardian=result.guardian, status=result.status.value)

    async def _run_postcheck(self):
        result = await get_postcheck_service().run(repair=get_settings().postcheck_auto_repair)
        logger.info(
            "scheduled_postcheck_result",
            coverage_percent=result.coverage_percent,
            repaired_runs=result.repaired_runs,
        )

    async def _run_log_cleanup(self):
        await cleanup_old_runs()

    # ============================================
    # MANUAL TRIGGERS
    # ============================================

    async def trigger_job(self, job_name: str) -> Dict[str, Any]:
        """Manually run a scheduled job now (goes through the audit wrapper)."""
        handler = self._get_handler(job_name)
        if not handler:
            return {"success": False, "error": f"Unknown job: {job_name}"}

        ok = await self._run_with_audit(job_name, handler)
        return {"success": ok, "job": job_name}

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })

        return {
            "running": self._running,
            "jobs": jobs,
            "job_count": len(jobs),
        }


async def cleanup_old_runs(retention_days: Optional[int] = None) -> int:
    """Delete finalized scheduler run-log rows older than the retention period."""
    days = retention_days if retention_days is not None else get_settings().run_log_retention_days
    cutoff = utc_now() - timedelta(days=days)
    return await SchedulerRunRepository().delete_older_than(cutoff)


# ============================================
# SINGLETON
# ============================================

_scheduler_service: Optional[SchedulerService] = None


def get_scheduler_service() -> SchedulerService:
    """Get the singleton scheduler service instance."""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


async def start_scheduler():
    """Start the scheduler (call from app startup)."""
    await get_scheduler_service().start()


async def stop_scheduler():
    """Stop the scheduler (call from app shutdown)."""
    await get_scheduler_service().stop()
