"""
Tests for manual recovery and cron secret sync.
"""
from datetime import datetime, timezone

import pytest

from batchguard.db.repositories.app_settings import CRON_SECRET_KEY, AppSettingsRepository
from batchguard.db.repositories.scheduler_runs import SchedulerRunRepository
from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
from batchguard.infrastructure.exceptions import ConfigurationError, FanOutEnumerationError
from batchguard.models.scheduler import MANUAL_RECOVERY_FUNCTION
from batchguard.services.cron_secret_service import CronSecretSyncService
from batchguard.services.recovery_service import ManualRecoveryService

NOW = datetime(2026, 5, 4, 16, 0, tzinfo=timezone.utc)


class TestManualRecovery:

    @pytest.mark.asyncio
    async def test_runs_every_org_despite_claim(self, seed_catalog, fake_executor):
        await seed_catalog(org_names=("Acme", "Globex", "Initech"))
        await SchedulerStateRepository().claim_day("2026-05-04", NOW)

        service = ManualRecoveryService(executor=fake_executor, org_delay_seconds=0, clock=lambda: NOW)
        result = await service.run()

        assert result.success is True
        assert result.total_organizations == 3
        assert result.successful_triggers == 3
        assert result.failed_triggers == 0
        assert len(set(fake_executor.org_calls)) == 3
        assert all(cid.startswith("manual-recovery-") for cid in fake_executor.org_calls)

    @pytest.mark.asyncio
    async def test_continues_past_org_failure(self, seed_catalog, fake_executor):
        created = await seed_catalog(org_names=("Acme", "Globex", "Initech"))
        fake_executor.failing_orgs = {created["orgs"][1]}

        service = ManualRecoveryService(executor=fake_executor, org_delay_seconds=0, clock=lambda: NOW)
        result = await service.run()

        assert result.successful_triggers == 2
        assert result.failed_triggers == 1
        failed = [r for r in result.results if not r.success]
        assert failed[0].org_id == created["orgs"][1]
        assert "dispatch failed" in failed[0].error

    @pytest.mark.asyncio
    async def test_records_run_log_entry(self, seed_catalog, fake_executor):
        await seed_catalog(org_names=("Acme",))

        service = ManualRecoveryService(executor=fake_executor, org_delay_seconds=0, clock=lambda: NOW)
        result = await service.run()

        rows = await SchedulerRunRepository().list(filters={"function_name": MANUAL_RECOVERY_FUNCTION})
        assert len(rows) == 1
        assert rows[0].id == result.run_id
        assert rows[0].trigger_source == "manual_trigger"
        assert rows[0].status == "completed"

    @pytest.mark.asyncio
    async def test_enumeration_failure_raises(self, db, fake_executor):
        class BrokenOrgs:
            async def list_all(self):
                raise RuntimeError("catalog offline")

        service = ManualRecoveryService(
            executor=fake_executor, organizations=BrokenOrgs(), org_delay_seconds=0, clock=lambda: NOW
        )
        with pytest.raises(FanOutEnumerationError):
            await service.run()


class TestCronSecretSync:

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, db):
        service = CronSecretSyncService(secret="s3cret")

        first = await service.sync()
        second = await service.sync()

        assert first.changed is True
        assert second.changed is False
        assert second.success is True
        assert await AppSettingsRepository().get_value(CRON_SECRET_KEY) == "s3cret"

    @pytest.mark.asyncio
    async def test_missing_secret_is_configuration_error(self, db, monkeypatch):
        from batchguard.infrastructure.config import get_settings

        monkeypatch.delenv("BATCHGUARD_CRON_SECRET")
        get_settings.cache_clear()

        with pytest.raises(ConfigurationError):
            await CronSecretSyncService().sync()
