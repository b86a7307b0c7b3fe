import asyncio
from typing import Any, Awaitable, Callable, Set

from loguru import logger

from core.interfaces.services import ITaskDispatcher


class NotificationDispatcher(ITaskDispatcher):
    """Fire-and-forget runner for notifications, at most once per dispatch.

    At most `max_pending` tasks are in flight; anything beyond that is dropped
    and logged. Failures are logged and never reach the caller.
    """

    def __init__(self, max_pending: int = 100, timeout: float = 30.0):
        self.max_pending = max_pending
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, description: str, factory: Callable[[], Awaitable[Any]]) -> bool:
        if len(self._tasks) >= self.max_pending:
            self.dropped += 1
            logger.warning(f"Notification queue full ({self.max_pending}), dropped: {description}")
            return False
        task = asyncio.create_task(self._run(description, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, description: str, factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.wait_for(factory(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Notification timed out: {description}")
        except Exception as e:
            logger.warning(f"Notification failed: {description}: {e}")

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight notifications, cancelling what is left after `timeout`."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} notifications on shutdown")
