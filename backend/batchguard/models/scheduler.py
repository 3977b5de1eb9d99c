"""
Scheduler request/response models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TriggerSource(str, Enum):
    """How a pipeline invocation was initiated."""
    CRON = "cron"
    MANUAL_TRIGGER = "manual_trigger"
    GUARDIAN_RECOVERY = "guardian_recovery"
    MONITOR_RECOVERY = "monitor_recovery"


class RunStatus(str, Enum):
    """Scheduler run log status."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class GuardianStatus(str, Enum):
    HEALTHY = "healthy"
    RECOVERY_TRIGGERED = "recovery_triggered"
    RECOVERY_FAILED = "recovery_failed"


DAILY_TRIGGER_FUNCTION = "daily-batch-trigger"
MANUAL_RECOVERY_FUNCTION = "manual-recovery-trigger"
POSTCHECK_FUNCTION = "scheduler-postcheck"


# ============================================
# FAN-OUT RESULTS
# ============================================

class OrgFanOutResult(BaseModel):
    """Outcome of one organization's (prompt x provider) fan-out."""
    org_id: str
    org_name: str
    prompts_count: int = 0
    providers_count: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    correlation_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class FanOutResult(BaseModel):
    total_runs: int = 0
    failed_runs: int = 0
    organizations_processed: int = 0
    org_results: List[OrgFanOutResult] = Field(default_factory=list)


# ============================================
# DAILY TRIGGER
# ============================================

class DailyTriggerRequest(BaseModel):
    """Body accepted by the daily trigger endpoint."""
    model_config = ConfigDict(extra="forbid")

    force: bool = False
    trigger_source: TriggerSource = TriggerSource.CRON


class DailyTriggerResponse(BaseModel):
    success: bool
    message: str
    date: str
    skipped: bool = False
    forced: bool = False
    trigger_source: TriggerSource
    total_runs: int = 0
    failed_runs: int = 0
    organizations_processed: int = 0
    run_id: Optional[str] = None
    previous_run_key: Optional[str] = None
    previous_run_at: Optional[datetime] = None


# ============================================
# GUARDIANS
# ============================================

class GuardianCheckResponse(BaseModel):
    status: GuardianStatus
    guardian: str
    checked_at: datetime
    window_hours: int
    last_signal_at: Optional[datetime] = None
    trigger_result: Optional[DailyTriggerResponse] = None
    # True when the forced trigger found the day already claimed and re-ran nothing
    recovery_skipped: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


# ============================================
# MANUAL RECOVERY
# ============================================

class OrgRecoveryResult(BaseModel):
    org_id: str
    org_name: str
    success: bool
    correlation_id: str
    total_runs: int = 0
    failed_runs: int = 0
    error: Optional[str] = None


class ManualRecoveryResponse(BaseModel):
    success: bool
    date: str
    run_id: Optional[str] = None
    total_organizations: int
    successful_triggers: int
    failed_triggers: int
    results: List[OrgRecoveryResult] = Field(default_factory=list)


# ============================================
# POSTCHECK
# ============================================

class PostcheckOrgCoverage(BaseModel):
    """Today's prompt coverage for one organization."""
    org_id: str
    org_name: str
    expected_prompts: int
    missing_prompt_ids: List[str] = Field(default_factory=list)
    repaired_runs: int = 0
    failed_repairs: int = 0
    correlation_id: Optional[str] = None
    error: Optional[str] = None


class PostcheckResponse(BaseModel):
    success: bool
    date: str
    run_id: Optional[str] = None
    repair: bool = False
    expected_prompts: int
    prompts_run_today: int
    coverage_percent: int
    missing_prompts: int
    overall_health: str  # "healthy" | "needs_attention"
    repaired_runs: int = 0
    failed_repairs: int = 0
    organizations: List[PostcheckOrgCoverage] = Field(default_factory=list)


# ============================================
# STATUS / SECRET SYNC
# ============================================

class SchedulerStatusResponse(BaseModel):
    last_daily_run_key: Optional[str] = None
    last_daily_run_at: Optional[datetime] = None
    status: str  # "completed_today" | "pending" | "never_run"
    today_key: str
    past_cutoff: bool
    next_cutoff: datetime
    jobs: List[Dict[str, Any]] = Field(default_factory=list)
    recent_runs: List[Dict[str, Any]] = Field(default_factory=list)


class CronSecretSyncResponse(BaseModel):
    success: bool
    message: str
    changed: bool = False
