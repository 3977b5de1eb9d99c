"""
Batch Fan-Out Executor.

Expands a daily run into (organization x active prompt x enabled provider)
units and dispatches them with bounded concurrency. A failed or timed-out
unit is counted and never aborts its siblings; only failing to enumerate
organizations aborts the whole run.
"""

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

import structlog

from batchguard.db.repositories.catalog import (
    OrganizationRepository,
    PromptRepository,
    ProviderRepository,
)
from batchguard.infrastructure.config import get_settings
from batchguard.models.scheduler import FanOutResult, OrgFanOutResult
from batchguard.services.prompt_runner import PromptRunner

logger = structlog.get_logger(__name__)


class BatchFanOutExecutor:
    """Runs every active prompt of every organization against every enabled provider."""

    def __init__(
        self,
        runner: Optional[PromptRunner] = None,
        organizations: Optional[OrganizationRepository] = None,
        prompts: Optional[PromptRepository] = None,
        providers: Optional[ProviderRepository] = None,
        concurrency: Optional[int] = None,
        unit_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.runner = runner or PromptRunner()
        self.organizations = organizations or OrganizationRepository()
        self.prompts = prompts or PromptRepository()
        self.providers = providers or ProviderRepository()
        if concurrency is None:
            concurrency = settings.fanout_concurrency
        if unit_timeout is None:
            unit_timeout = settings.unit_timeout_seconds
        self.concurrency = max(1, concurrency)
        self.unit_timeout = unit_timeout

    async def run(self, day_key: str, correlation_id: Optional[str] = None) -> FanOutResult:
        """
        Fan out the batch for ``day_key``.

        Raises whatever the organization listing raises; the caller treats
        that as a failed run.
        """
        orgs = await self.organizations.list_all()
        provider_names = await self.provider_snapshot()

        logger.info(
            "fanout_started",
            day_key=day_key,
            organizations=len(orgs),
            providers=provider_names,
        )

        result = FanOutResult()
        for org in orgs:
            org_result = await self.run_org(
                org,
                day_key,
                correlation_id=correlation_id,
                provider_names=provider_names,
            )
            result.org_results.append(org_result)
            result.total_runs += org_result.successful_runs
            result.failed_runs += org_result.failed_runs
            result.organizations_processed += 1

        logger.info(
            "fanout_completed",
            day_key=day_key,
            total_runs=result.total_runs,
            failed_runs=result.failed_runs,
            organizations_processed=result.organizations_processed,
        )
        return result

    async def run_org(
        self,
        org: Any,
        day_key: str,
        correlation_id: Optional[str] = None,
        provider_names: Optional[Sequence[str]] = None,
    ) -> OrgFanOutResult:
        """Dispatch all units of one organization. Never raises for unit failures."""
        org_result = OrgFanOutResult(
            org_id=org.id,
            org_name=org.name,
            correlation_id=correlation_id,
        )

        try:
            if provider_names is None:
                provider_names = await self.provider_snapshot()
            prompts = await self.prompts.list_active(org.id)
        except Exception as e:
            logger.error("fanout_org_enumeration_failed", org_id=org.id, error=str(e))
            org_result.error = str(e) or type(e).__name__
            return org_result

        org_result.prompts_count = len(prompts)
        org_result.providers_count = len(provider_names)
        if not prompts or not provider_names:
            return org_result

        successful, failed = await self.run_prompts(
            org.id, prompts, provider_names, day_key, correlation_id
        )
        org_result.successful_runs = successful
        org_result.failed_runs = failed
        logger.info(
            "fanout_org_completed",
            org_id=org.id,
            successful_runs=org_result.successful_runs,
            failed_runs=org_result.failed_runs,
        )
        return org_result

    async def run_prompts(
        self,
        org_id: str,
        prompts: Sequence[Any],
        provider_names: Sequence[str],
        day_key: str,
        correlation_id: Optional[str] = None,
    ) -> Tuple[int, int]:
        """Dispatch ``prompts`` x ``provider_names`` for one organization. Returns (successful, failed)."""
        sem = asyncio.Semaphore(self.concurrency)

        async def _dispatch(prompt, provider_name: str) -> bool:
            async with sem:
                return await self._run_unit(org_id, prompt, provider_name, day_key, correlation_id)

        tasks = [_dispatch(p, name) for p in prompts for name in provider_names]
        outcomes: List[bool] = await asyncio.gather(*tasks)

        successful = sum(1 for ok in outcomes if ok)
        return successful, len(outcomes) - successful

    async def provider_snapshot(self) -> List[str]:
        return [p.name for p in await self.providers.list_enabled()]

    async def _run_unit(
        self,
        org_id: str,
        prompt: Any,
        provider_name: str,
        day_key: str,
        correlation_id: Optional[str],
    ) -> bool:
        try:
            await asyncio.wait_for(
                self.runner.run_unit(
                    org_id=org_id,
                    prompt_id=prompt.id,
                    prompt_text=prompt.text,
                    provider_name=provider_name,
                    run_key=day_key,
                    correlation_id=correlation_id,
                ),
                timeout=self.unit_timeout,
            )
            return True
        except asyncio.TimeoutError:
            await self.runner.record_failure(
                org_id=org_id,
                prompt_id=prompt.id,
                provider_name=provider_name,
                run_key=day_key,
                correlation_id=correlation_id,
                reason=f"timed out after {self.unit_timeout}s",
            )
            return False
        except Exception as e:
            logger.debug("fanout_unit_failed", prompt_id=prompt.id, provider=provider_name, error=str(e))
            return False
