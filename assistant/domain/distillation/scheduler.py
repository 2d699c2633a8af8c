from typing import Callable, Optional
from datetime import datetime, timedelta
import asyncio

import structlog

from domain.models.artifact import utc_now
from .distillation_service import DistillationService

logger = structlog.get_logger(__name__)


class MemoryScheduler:
    """Runs distillation once per local day, after a configured hour"""

    def __init__(
        self,
        service: DistillationService,
        hour: int = 5,
        utc_offset_hours: int = -5,
        check_interval_seconds: float = 1800,
        clock: Callable[[], datetime] = utc_now
    ):
        self.service = service
        self.hour = hour
        self.utc_offset = timedelta(hours=utc_offset_hours)
        self.check_interval_seconds = check_interval_seconds
        self.clock = clock
        self.last_run_date: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return

        logger.info("Memory scheduler started",
                    distill_hour=self.hour,
                    check_interval_seconds=self.check_interval_seconds)
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Memory scheduler stopped")

    async def check(self) -> bool:
        """Run distillation if today's run is due. Returns whether it ran."""

        local = self.clock() + self.utc_offset
        date_str = local.date().isoformat()

        if local.hour < self.hour or self.last_run_date == date_str:
            return False

        self.last_run_date = date_str
        logger.info("Running daily memory distillation", date=date_str)

        try:
            run = await self.service.run_for_all_users()
        except Exception as e:
            logger.error("Scheduled distillation failed", date=date_str, error=str(e))
            return True

        logger.info("Scheduled distillation done",
                    users_processed=run.users_processed,
                    total_insights=run.total_insights,
                    error_count=len(run.errors))
        return True

    async def _loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.check_interval_seconds)
