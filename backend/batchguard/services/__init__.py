# Services
from batchguard.services.daily_trigger_service import DailyTriggerService, get_daily_trigger_service
from batchguard.services.fanout_service import BatchFanOutExecutor
from batchguard.services.guardian_service import ExecutionMonitor, PromptExecutionGuardian
from batchguard.services.postcheck_service import PostcheckService
from batchguard.services.recovery_service import ManualRecoveryService

__all__ = [
    "DailyTriggerService",
    "get_daily_trigger_service",
    "BatchFanOutExecutor",
    "ExecutionMonitor",
    "PromptExecutionGuardian",
    "PostcheckService",
    "ManualRecoveryService",
]
