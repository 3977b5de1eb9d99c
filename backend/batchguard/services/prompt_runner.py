"""
Prompt Runner.

Executes one (organization, prompt, provider) unit: sends the prompt text to
the provider and records the outcome in the response log.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from batchguard.db.repositories.responses import ResponseRepository
from batchguard.infrastructure.clock import utc_now
from batchguard.infrastructure.exceptions import UnitDispatchError
from batchguard.infrastructure.llm_providers import get_provider

logger = structlog.get_logger(__name__)


class PromptRunner:
    """Dispatches single prompt units to LLM providers."""

    def __init__(
        self,
        responses: Optional[ResponseRepository] = None,
        provider_lookup: Callable = get_provider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.responses = responses or ResponseRepository()
        self._provider_lookup = provider_lookup
        self._clock = clock

    async def run_unit(
        self,
        *,
        org_id: str,
        prompt_id: str,
        prompt_text: str,
        provider_name: str,
        run_key: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        """
        Run one unit and record a ``success`` response row.

        Returns:
            The response row id.

        Raises:
            UnitDispatchError: the provider call failed; an ``error`` row
                has been recorded.
        """
        try:
            provider = self._provider_lookup(provider_name)
            text = await provider.chat([{"role": "user", "content": prompt_text}])
        except Exception as e:
            reason = str(e) or type(e).__name__
            await self.record_failure(
                org_id=org_id,
                prompt_id=prompt_id,
                provider_name=provider_name,
                run_key=run_key,
                correlation_id=correlation_id,
                reason=reason,
            )
            raise UnitDispatchError(prompt_id, provider_name, reason) from e

        response_id = await self.responses.record(
            org_id=org_id,
            prompt_id=prompt_id,
            provider=provider_name,
            status="success",
            run_at=self._clock(),
            run_key=run_key,
            correlation_id=correlation_id,
            raw_response=text,
        )
        logger.debug(
            "prompt_unit_succeeded",
            org_id=org_id,
            prompt_id=prompt_id,
            provider=provider_name,
        )
        return response_id

    async def record_failure(
        self,
        *,
        org_id: str,
        prompt_id: str,
        provider_name: str,
        run_key: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Record an ``error`` response row. Store failures are logged, not raised."""
        logger.warning(
            "prompt_unit_failed",
            org_id=org_id,
            prompt_id=prompt_id,
            provider=provider_name,
            reason=reason,
        )
        try:
            await self.responses.record(
                org_id=org_id,
                prompt_id=prompt_id,
                provider=provider_name,
                status="error",
                run_at=self._clock(),
                run_key=run_key,
                correlation_id=correlation_id,
                error=reason,
            )
        except Exception as e:
            logger.error("prompt_failure_record_failed", prompt_id=prompt_id, error=str(e))
