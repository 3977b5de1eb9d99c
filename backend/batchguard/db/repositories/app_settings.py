"""
Key-value settings shared with the scheduling environment.
"""

from typing import Optional

from batchguard.db.models import AppSettingModel
from batchguard.db.repositories.base import BaseRepository

CRON_SECRET_KEY = "cron_secret"


class AppSettingsRepository(BaseRepository[AppSettingModel]):
    def __init__(self):
        super().__init__(AppSettingModel)

    async def get_value(self, key: str) -> Optional[str]:
        row = await self.get_by_id(key)
        return row.value if row else None

    async def put_value(self, key: str, value: str, description: Optional[str] = None) -> bool:
        """Upsert ``key``. Returns True if the stored value changed."""
        current = await self.get_value(key)
        if current == value:
            return False
        kwargs = {"value": value}
        if description is not None:
            kwargs["description"] = description
        await self.upsert(key, **kwargs)
        return True
