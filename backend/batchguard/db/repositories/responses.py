"""
Provider response log.
"""

import uuid
from datetime import datetime
from typing import Optional, Set

from sqlalchemy import func, select

from batchguard.db.models import PromptProviderResponseModel
from batchguard.db.repositories.base import BaseRepository, store_session
from batchguard.infrastructure.clock import ensure_utc


class ResponseRepository(BaseRepository[PromptProviderResponseModel]):
    def __init__(self):
        super().__init__(PromptProviderResponseModel)

    async def record(
        self,
        *,
        org_id: str,
        prompt_id: str,
        provider: str,
        status: str,
        run_at: datetime,
        run_key: Optional[str] = None,
        correlation_id: Optional[str] = None,
        raw_response: Optional[str] = None,
        error: Optional[str] = None,
    ) -> str:
        response_id = str(uuid.uuid4())
        async with store_session("responses.record") as session:
            session.add(PromptProviderResponseModel(
                id=response_id,
                org_id=org_id,
                prompt_id=prompt_id,
                provider=provider,
                status=status,
                run_at=run_at,
                run_key=run_key,
                correlation_id=correlation_id,
                raw_response=raw_response,
                error=error,
            ))
        return response_id

    async def latest_success_since(self, since: datetime) -> Optional[datetime]:
        stmt = (
            select(func.max(PromptProviderResponseModel.run_at))
            .where(PromptProviderResponseModel.status == "success")
            .where(PromptProviderResponseModel.run_at > since)
        )
        async with store_session("responses.latest_success") as session:
            result = await session.execute(stmt)
            return ensure_utc(result.scalar_one_or_none())

    async def prompt_ids_with_success_since(self, since: datetime) -> Set[str]:
        """Distinct prompts with at least one successful response at or after ``since``."""
        stmt = (
            select(PromptProviderResponseModel.prompt_id)
            .where(PromptProviderResponseModel.status == "success")
            .where(PromptProviderResponseModel.run_at >= since)
            .distinct()
        )
        async with store_session("responses.prompts_covered") as session:
            result = await session.execute(stmt)
            return set(result.scalars().all())
