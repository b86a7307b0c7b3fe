import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.interfaces.services import IPendingTransferService
from infrastructure.scheduler.job_scheduler import EXPIRE_TRANSFERS, SEND_REMINDERS, PendingTransferScheduler


@pytest.fixture
def mock_service():
    service = AsyncMock(spec=IPendingTransferService)
    service.expire_pending_transfers.return_value = 3
    service.send_expiry_reminders.return_value = 2
    return service


def test_start_registers_both_jobs(mock_service):
    apscheduler = MagicMock()
    scheduler = PendingTransferScheduler(mock_service, expiry_interval_minutes=30, reminder_interval_minutes=120,
                                         scheduler=apscheduler)

    scheduler.start()

    job_ids = [call.kwargs["id"] for call in apscheduler.add_job.call_args_list]
    assert job_ids == [EXPIRE_TRANSFERS, SEND_REMINDERS]
    assert apscheduler.add_job.call_args_list[0].kwargs["minutes"] == 30
    assert apscheduler.add_job.call_args_list[1].kwargs["minutes"] == 120
    assert all(call.kwargs["max_instances"] == 1 for call in apscheduler.add_job.call_args_list)
    apscheduler.start.assert_called_once()


@pytest.mark.asyncio
async def test_run_now_returns_count(mock_service):
    scheduler = PendingTransferScheduler(mock_service, scheduler=MagicMock())

    assert await scheduler.run_now(EXPIRE_TRANSFERS) == 3
    assert await scheduler.run_now(SEND_REMINDERS) == 2
    with pytest.raises(ValueError):
        await scheduler.run_now("unknown")


@pytest.mark.asyncio
async def test_tick_skips_while_running(mock_service):
    scheduler = PendingTransferScheduler(mock_service, scheduler=MagicMock())
    release = asyncio.Event()

    async def slow_sweep():
        await release.wait()
        return 5

    mock_service.expire_pending_transfers.side_effect = slow_sweep

    running = asyncio.create_task(scheduler.run_now(EXPIRE_TRANSFERS))
    await asyncio.sleep(0.01)

    assert await scheduler._tick(EXPIRE_TRANSFERS) is None
    release.set()
    assert await running == 5
    assert mock_service.expire_pending_transfers.await_count == 1


@pytest.mark.asyncio
async def test_tick_swallows_errors(mock_service):
    mock_service.send_expiry_reminders.side_effect = RuntimeError("db down")
    scheduler = PendingTransferScheduler(mock_service, scheduler=MagicMock())

    assert await scheduler._tick(SEND_REMINDERS) is None
