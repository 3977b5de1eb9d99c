"""
Cron secret sync.

Copies the configured cron secret into the ``app_settings`` row that
guardian and forced-trigger authentication reads, so both sides agree.
"""

from typing import Optional

import structlog

from batchguard.db.repositories.app_settings import CRON_SECRET_KEY, AppSettingsRepository
from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.exceptions import ConfigurationError
from batchguard.models.scheduler import CronSecretSyncResponse

logger = structlog.get_logger(__name__)


class CronSecretSyncService:
    def __init__(
        self,
        app_settings: Optional[AppSettingsRepository] = None,
        secret: Optional[str] = None,
    ):
        self.app_settings = app_settings or AppSettingsRepository()
        self._secret = secret

    async def sync(self) -> CronSecretSyncResponse:
        """Idempotent upsert of the configured secret."""
        secret = self._secret or get_settings().cron_secret
        if not secret:
            raise ConfigurationError("cron_secret")

        changed = await self.app_settings.put_value(
            CRON_SECRET_KEY,
            secret,
            description="Shared secret for cron and guardian calls",
        )
        logger.info("cron_secret_synced", changed=changed)
        return CronSecretSyncResponse(
            success=True,
            changed=changed,
            message="Cron secret updated" if changed else "Cron secret already in sync",
        )


def get_cron_secret_service() -> CronSecretSyncService:
    return CronSecretSyncService()
