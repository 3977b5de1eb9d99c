"""
Startup validation checks for the batchguard API.

Runs before the scheduler starts to catch configuration problems early.
Non-critical checks log warnings; critical failures prevent scheduler startup.
"""

from typing import Any, Dict, List

import structlog
from sqlalchemy import text

from batchguard.infrastructure.config import get_settings

logger = structlog.get_logger(__name__)


class StartupChecker:
    """Validates configuration and the store on API startup."""

    def __init__(self):
        self.results: List[Dict[str, Any]] = []

    async def run_all(self) -> bool:
        """
        Run all startup checks.

        Returns True if all critical checks pass.
        """
        logger.info("startup_checks_begin")

        checks = [
            ("database_reachable", self._check_database, True),
            ("scheduler_state", self._check_scheduler_state, True),
            ("business_timezone", self._check_timezone, True),
            ("cron_secret", self._check_cron_secret, False),  # non-critical
            ("service_role_key", self._check_service_role_key, False),  # non-critical
            ("llm_providers", self._check_providers, False),  # non-critical
        ]

        all_critical_passed = True

        for name, check_fn, is_critical in checks:
            try:
                passed = await check_fn()
                self.results.append({
                    "name": name,
                    "status": "pass" if passed else ("fail" if is_critical else "warn"),
                    "critical": is_critical,
                })
                if not passed and is_critical:
                    all_critical_passed = False
                    logger.error("startup_check_failed", check=name, critical=True)
                elif not passed:
                    logger.warning("startup_check_warn", check=name)
            except Exception as e:
                self.results.append({
                    "name": name,
                    "status": "error",
                    "error": str(e),
                    "critical": is_critical,
                })
                if is_critical:
                    all_critical_passed = False
                    logger.error("startup_check_error", check=name, error=str(e))
                else:
                    logger.warning("startup_check_error", check=name, error=str(e))

        passed_count = sum(1 for r in self.results if r["status"] == "pass")
        total = len(self.results)

        if all_critical_passed:
            logger.info("startup_checks_passed", passed=passed_count, total=total)
        else:
            failed = [r["name"] for r in self.results if r["status"] in ("fail", "error") and r["critical"]]
            logger.error("startup_checks_critical_failure", failed=failed)

        return all_critical_passed

    async def _check_database(self) -> bool:
        from batchguard.infrastructure.database import get_session
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def _check_scheduler_state(self) -> bool:
        """Bootstrap the singleton scheduler state row."""
        from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
        state = await SchedulerStateRepository().ensure_state()
        return state is not None

    async def _check_timezone(self) -> bool:
        from batchguard.infrastructure.clock import today_key
        today_key()
        return True

    async def _check_cron_secret(self) -> bool:
        """Without a secret, forced triggers and guardians are rejected."""
        from batchguard.db.repositories.app_settings import CRON_SECRET_KEY, AppSettingsRepository
        if get_settings().cron_secret:
            return True
        return bool(await AppSettingsRepository().get_value(CRON_SECRET_KEY))

    async def _check_service_role_key(self) -> bool:
        return bool(get_settings().service_role_key)

    async def _check_providers(self) -> bool:
        from batchguard.infrastructure.llm_providers import get_provider_registry
        configured = [name for name, p in get_provider_registry().items() if p.is_configured]
        if not configured:
            logger.info("no_llm_providers_configured")
        return bool(configured)


async def run_startup_checks() -> bool:
    """Run all startup checks. Returns True if critical checks pass."""
    checker = StartupChecker()
    return await checker.run_all()
