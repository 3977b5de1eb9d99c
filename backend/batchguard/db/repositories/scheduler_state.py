"""
Scheduler state store.

One row (id = "global") records the day-key of the last claimed daily run.
All coordination between concurrent trigger invocations happens through the
conditional UPDATE in ``claim_day``; the caller's view of the row is never
used to decide who wins.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
import structlog

from batchguard.db.models import SCHEDULER_STATE_ID, SchedulerStateModel
from batchguard.db.repositories.base import BaseRepository, store_session

logger = structlog.get_logger(__name__)


class SchedulerStateRepository(BaseRepository[SchedulerStateModel]):
    """Compare-and-swap access to the singleton scheduler state row."""

    def __init__(self):
        super().__init__(SchedulerStateModel)

    async def get_state(self) -> Optional[SchedulerStateModel]:
        return await self.get_by_id(SCHEDULER_STATE_ID)

    async def ensure_state(self) -> SchedulerStateModel:
        """Create the singleton row if it does not exist yet (bootstrap)."""
        state = await self.get_state()
        if state is not None:
            return state
        try:
            async with store_session("scheduler_state.bootstrap") as session:
                state = SchedulerStateModel(id=SCHEDULER_STATE_ID)
                session.add(state)
            logger.info("scheduler_state_bootstrapped")
        except IntegrityError:
            # Another process bootstrapped first
            pass
        return await self.get_state()

    async def claim_day(self, day_key: str, now: datetime) -> bool:
        """
        Atomically record ``day_key`` as claimed.

        Returns True only for the single caller whose write applied. The row
        is updated only if its stored key differs from ``day_key``.
        """
        stmt = (
            update(SchedulerStateModel)
            .where(SchedulerStateModel.id == SCHEDULER_STATE_ID)
            .where(
                or_(
                    SchedulerStateModel.last_daily_run_key.is_(None),
                    SchedulerStateModel.last_daily_run_key != day_key,
                )
            )
            .values(last_daily_run_key=day_key, last_daily_run_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with store_session("scheduler_state.claim") as session:
            result = await session.execute(stmt)
            claimed = result.rowcount == 1

        if claimed:
            logger.info("day_claimed", day_key=day_key)
            return True

        if await self.get_state() is None:
            return await self._claim_by_insert(day_key, now)
        return False

    async def _claim_by_insert(self, day_key: str, now: datetime) -> bool:
        # Primary key uniqueness arbitrates callers racing on a missing row
        try:
            async with store_session("scheduler_state.claim_insert") as session:
                session.add(
                    SchedulerStateModel(
                        id=SCHEDULER_STATE_ID,
                        last_daily_run_key=day_key,
                        last_daily_run_at=now,
                    )
                )
        except IntegrityError:
            return False
        logger.info("day_claimed", day_key=day_key, bootstrap=True)
        return True

    async def release_day(
        self,
        day_key: str,
        previous_key: Optional[str],
        previous_at: Optional[datetime],
    ) -> bool:
        """Restore the previous key, but only if ``day_key`` is still the stored one."""
        stmt = (
            update(SchedulerStateModel)
            .where(SchedulerStateModel.id == SCHEDULER_STATE_ID)
            .where(SchedulerStateModel.last_daily_run_key == day_key)
            .values(last_daily_run_key=previous_key, last_daily_run_at=previous_at)
            .execution_options(synchronize_session=False)
        )
        async with store_session("scheduler_state.release") as session:
            result = await session.execute(stmt)
            released = result.rowcount == 1
        logger.info("day_claim_released", day_key=day_key, released=released)
        return released
