"""
Postcheck Service.

Third recovery tier, below the guardians. Counts today's active prompts
against today's successful provider responses and reports per-organization
coverage. With ``repair`` it re-dispatches only the prompts that have no
successful response yet, so a claimed day that produced nothing can be
healed without replaying every organization.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from batchguard.db.repositories.catalog import OrganizationRepository, PromptRepository
from batchguard.db.repositories.responses import ResponseRepository
from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.infrastructure.clock import day_start, today_key, utc_now
from batchguard.infrastructure.config import get_settings
from batchguard.models.scheduler import (
    POSTCHECK_FUNCTION,
    PostcheckOrgCoverage,
    PostcheckResponse,
    RunStatus,
    TriggerSource,
)
from batchguard.services.fanout_service import BatchFanOutExecutor

logger = structlog.get_logger(__name__)


class PostcheckService:
    """Prompt-level coverage check with optional targeted repair."""

    def __init__(
        self,
        executor: Optional[BatchFanOutExecutor] = None,
        organizations: Optional[OrganizationRepository] = None,
        prompts: Optional[PromptRepository] = None,
        responses: Optional[ResponseRepository] = None,
        runs: Optional[SchedulerRunRepository] = None,
        coverage_threshold: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.executor = executor or BatchFanOutExecutor()
        self.organizations = organizations or OrganizationRepository()
        self.prompts = prompts or PromptRepository()
        self.responses = responses or ResponseRepository()
        self.runs = runs or SchedulerRunRepository()
        if coverage_threshold is None:
            coverage_threshold = get_settings().postcheck_coverage_threshold
        self.coverage_threshold = coverage_threshold
        self._clock = clock

    async def run(
        self,
        repair: bool = False,
        trigger_source: TriggerSource = TriggerSource.CRON,
    ) -> PostcheckResponse:
        """
        Measure today's coverage and optionally repair the gaps.

        Store failures while reading the catalog or the response log
        propagate. A failed repair for one organization is recorded on that
        organization and never stops the others.
        """
        now = self._clock()
        day_key = today_key(now)

        orgs = await self.organizations.list_all()
        active = await self.prompts.list_all_active()
        covered = await self.responses.prompt_ids_with_success_since(day_start(now))

        run_id = await self._start_run(day_key, now, trigger_source)

        by_org: Dict[str, List] = defaultdict(list)
        for prompt in active:
            by_org[prompt.org_id].append(prompt)

        provider_names: Optional[List[str]] = None
        coverage: List[PostcheckOrgCoverage] = []
        for org in orgs:
            org_prompts = by_org.get(org.id)
            if not org_prompts:
                continue

            missing = [p for p in org_prompts if p.id not in covered]
            entry = PostcheckOrgCoverage(
                org_id=org.id,
                org_name=org.name,
                expected_prompts=len(org_prompts),
                missing_prompt_ids=[p.id for p in missing],
            )
            coverage.append(entry)

            if not (repair and missing):
                continue

            entry.correlation_id = f"postcheck-repair-{uuid.uuid4()}"
            try:
                if provider_names is None:
                    provider_names = await self.executor.provider_snapshot()
                entry.repaired_runs, entry.failed_repairs = await self.executor.run_prompts(
                    org.id, missing, provider_names, day_key, entry.correlation_id
                )
            except Exception as e:
                logger.error("postcheck_repair_failed", org_id=org.id, error=str(e))
                entry.error = str(e) or type(e).__name__

        expected = sum(c.expected_prompts for c in coverage)
        missing_count = sum(len(c.missing_prompt_ids) for c in coverage)
        run_today = expected - missing_count
        percent = round(run_today * 100 / expected) if expected else 100

        response = PostcheckResponse(
            success=True,
            date=day_key,
            run_id=run_id,
            repair=repair,
            expected_prompts=expected,
            prompts_run_today=run_today,
            coverage_percent=percent,
            missing_prompts=missing_count,
            overall_health="healthy" if percent >= self.coverage_threshold else "needs_attention",
            repaired_runs=sum(c.repaired_runs for c in coverage),
            failed_repairs=sum(c.failed_repairs for c in coverage),
            organizations=coverage,
        )
        await self._finish_run(run_id, response)

        log = logger.info if response.overall_health == "healthy" else logger.warning
        log(
            "postcheck_completed",
            day_key=day_key,
            coverage_percent=percent,
            missing_prompts=missing_count,
            repair=repair,
            repaired_runs=response.repaired_runs,
        )
        return response

    async def _start_run(
        self, day_key: str, now: datetime, trigger_source: TriggerSource
    ) -> Optional[str]:
        try:
            return await self.runs.start_run(
                function_name=POSTCHECK_FUNCTION,
                run_key=day_key,
                trigger_source=trigger_source.value,
                started_at=now,
            )
        except Exception as e:
            logger.warning("run_log_start_failed", day_key=day_key, error=str(e))
            return None

    async def _finish_run(self, run_id: Optional[str], response: PostcheckResponse) -> None:
        if run_id is None:
            return
        try:
            await self.runs.finish_run(
                run_id,
                status=RunStatus.COMPLETED.value,
                completed_at=self._clock(),
                result={
                    "coverage_percent": response.coverage_percent,
                    "expected_prompts": response.expected_prompts,
                    "missing_prompts": response.missing_prompts,
                    "repair": response.repair,
                    "repaired_runs": response.repaired_runs,
                    "failed_repairs": response.failed_repairs,
                },
            )
        except Exception as e:
            logger.warning("run_log_finish_failed", run_id=run_id, error=str(e))


_postcheck_service: Optional[PostcheckService] = None


def get_postcheck_service() -> PostcheckService:
    global _postcheck_service
    if _postcheck_service is None:
        _postcheck_service = PostcheckService()
    return _postcheck_service
