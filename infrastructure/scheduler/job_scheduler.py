import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from loguru import logger

from other.loguru_tools import safe_catch_async

EXPIRE_TRANSFERS = "expire-transfers"
SEND_REMINDERS = "send-reminders"


class PendingTransferScheduler:
    """
    Periodic expiry and reminder sweeps over one service instance.

    Both jobs run once at start and then on their interval. A task never
    overlaps itself: a scheduled tick that finds it running is skipped, while
    `run_now` waits for the running sweep to finish and then runs its own.
    """

    def __init__(self, service, expiry_interval_minutes: int = 60, reminder_interval_minutes: int = 360,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.service = service
        self.expiry_interval_minutes = expiry_interval_minutes
        self.reminder_interval_minutes = reminder_interval_minutes
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._tasks: Dict[str, Callable[[], Awaitable[int]]] = {
            EXPIRE_TRANSFERS: service.expire_pending_transfers,
            SEND_REMINDERS: service.send_expiry_reminders,
        }
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in self._tasks}

    def start(self) -> None:
        now = datetime.now(timezone.utc)
        self.scheduler.add_job(self._tick, "interval", minutes=self.expiry_interval_minutes,
                               args=(EXPIRE_TRANSFERS,), id=EXPIRE_TRANSFERS, next_run_time=now,
                               max_instances=1, coalesce=True, misfire_grace_time=60)
        self.scheduler.add_job(self._tick, "interval", minutes=self.reminder_interval_minutes,
                               args=(SEND_REMINDERS,), id=SEND_REMINDERS, next_run_time=now,
                               max_instances=1, coalesce=True, misfire_grace_time=60)
        self.scheduler.start()
        logger.info(f"Scheduler started: expiry every {self.expiry_interval_minutes} min, "
                    f"reminders every {self.reminder_interval_minutes} min")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def run_now(self, task_name: str) -> int:
        if task_name not in self._tasks:
            raise ValueError(f"Unknown task {task_name}")
        async with self._locks[task_name]:
            return await self._execute(task_name)

    @safe_catch_async
    async def _tick(self, task_name: str) -> Optional[int]:
        lock = self._locks[task_name]
        if lock.locked():
            logger.info(f"Skipping {task_name}: previous run still in progress")
            return None
        async with lock:
            return await self._execute(task_name)

    async def _execute(self, task_name: str) -> int:
        logger.info(f"Running {task_name}")
        count = await self._tasks[task_name]()
        logger.info(f"{task_name} finished, processed {count}")
        return count
