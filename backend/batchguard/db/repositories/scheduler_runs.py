"""
Scheduler run log.

One row per pipeline execution. Rows start as ``running`` and are finalized
exactly once; guardians only read them.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
import structlog

from batchguard.db.models import SchedulerRunModel
from batchguard.db.repositories.base import BaseRepository, store_session
from batchguard.infrastructure.clock import ensure_utc

logger = structlog.get_logger(__name__)


class SchedulerRunRepository(BaseRepository[SchedulerRunModel]):
    """Append and query scheduler run entries."""

    def __init__(self):
        super().__init__(SchedulerRunModel)

    async def start_run(
        self,
        *,
        function_name: str,
        run_key: str,
        trigger_source: str,
        started_at: datetime,
    ) -> str:
        run_id = str(uuid.uuid4())
        async with store_session("scheduler_runs.start") as session:
            session.add(SchedulerRunModel(
                id=run_id,
                run_key=run_key,
                function_name=function_name,
                trigger_source=trigger_source,
                status="running",
                started_at=started_at,
            ))
        return run_id

    async def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        completed_at: datetime,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        stmt = (
            update(SchedulerRunModel)
            .where(SchedulerRunModel.id == run_id)
            .where(SchedulerRunModel.status == "running")
            .values(
                status=status,
                completed_at=completed_at,
                result=result,
                error_message=error_message,
            )
            .execution_options(synchronize_session=False)
        )
        async with store_session("scheduler_runs.finish") as session:
            await session.execute(stmt)

    async def latest_completed_since(
        self, function_name: str, since: datetime
    ) -> Optional[datetime]:
        """Completion time of the newest completed run of ``function_name`` after ``since``."""
        stmt = (
            select(SchedulerRunModel.completed_at)
            .where(SchedulerRunModel.function_name == function_name)
            .where(SchedulerRunModel.status == "completed")
            .where(SchedulerRunModel.completed_at > since)
            .order_by(SchedulerRunModel.completed_at.desc())
            .limit(1)
        )
        async with store_session("scheduler_runs.latest_completed") as session:
            result = await session.execute(stmt)
            return ensure_utc(result.scalar_one_or_none())

    async def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent runs, newest first, as JSON-ready dicts."""
        rows = await self.list(order_by="-started_at", limit=limit)
        return [
            {
                "id": row.id,
                "run_key": row.run_key,
                "function_name": row.function_name,
                "trigger_source": row.trigger_source,
                "status": row.status,
                "started_at": ensure_utc(row.started_at).isoformat(),
                "completed_at": ensure_utc(row.completed_at).isoformat() if row.completed_at else None,
                "error_message": row.error_message,
            }
            for row in rows
        ]

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Retention cleanup. Only finalized rows are removed."""
        stmt = (
            delete(SchedulerRunModel)
            .where(SchedulerRunModel.started_at < cutoff)
            .where(SchedulerRunModel.status != "running")
            .execution_options(synchronize_session=False)
        )
        async with store_session("scheduler_runs.cleanup") as session:
            result = await session.execute(stmt)
            removed = result.rowcount or 0
        logger.info("scheduler_runs_cleaned", removed=removed, cutoff=cutoff.isoformat())
        return removed
