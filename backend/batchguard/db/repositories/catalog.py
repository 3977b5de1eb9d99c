"""
Read-only access to organizations, prompts and providers.
"""

from typing import Sequence

from batchguard.db.models import LLMProviderModel, OrganizationModel, PromptModel
from batchguard.db.repositories.base import BaseRepository


class OrganizationRepository(BaseRepository[OrganizationModel]):
    def __init__(self):
        super().__init__(OrganizationModel)

    async def list_all(self) -> Sequence[OrganizationModel]:
        return await self.list(order_by="name")


class PromptRepository(BaseRepository[PromptModel]):
    def __init__(self):
        super().__init__(PromptModel)

    async def list_active(self, org_id: str) -> Sequence[PromptModel]:
        return await self.list(filters={"org_id": org_id, "active": True}, order_by="created_at")

    async def list_all_active(self) -> Sequence[PromptModel]:
        return await self.list(filters={"active": True}, order_by="created_at")


class ProviderRepository(BaseRepository[LLMProviderModel]):
    def __init__(self):
        super().__init__(LLMProviderModel)

    async def list_enabled(self) -> Sequence[LLMProviderModel]:
        return await self.list(filters={"enabled": True}, order_by="name")
