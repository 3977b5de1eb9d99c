# Data models
from batchguard.models.scheduler import (
    TriggerSource, RunStatus, GuardianStatus,
    DailyTriggerRequest, DailyTriggerResponse,
    FanOutResult, OrgFanOutResult,
    GuardianCheckResponse, ManualRecoveryResponse, OrgRecoveryResult,
    SchedulerStatusResponse, CronSecretSyncResponse,
)

__all__ = [
    "TriggerSource", "RunStatus", "GuardianStatus",
    "DailyTriggerRequest", "DailyTriggerResponse",
    "FanOutResult", "OrgFanOutResult",
    "GuardianCheckResponse", "ManualRecoveryResponse", "OrgRecoveryResult",
    "SchedulerStatusResponse", "CronSecretSyncResponse",
]
