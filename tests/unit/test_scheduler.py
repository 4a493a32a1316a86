import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from core.exceptions import SyncError
from models.base import SyncMode
from sync.scheduler import SyncScheduler


def mock_client(result=None, error=None):
    client = MagicMock()
    client.sync = AsyncMock(return_value=result, side_effect=error)
    client.last_result = result
    return client


@pytest.mark.asyncio
async def test_scheduler_initialization():
    scheduler = SyncScheduler(mock_client(), interval_minutes=15)
    assert scheduler.scheduler is not None
    assert scheduler.interval_minutes == 15
    assert scheduler.mode == SyncMode.INCREMENTAL


@pytest.mark.asyncio
async def test_scheduler_job_execution():
    result = MagicMock(success=True)
    result.total_records.return_value = 10
    client = mock_client(result=result)

    scheduler = SyncScheduler(client, mode=SyncMode.FULL)
    await scheduler.run_sync_job()

    client.sync.assert_awaited_once_with(SyncMode.FULL)
    assert scheduler.last_result is result


@pytest.mark.asyncio
async def test_scheduler_job_failure_is_logged_not_raised():
    client = mock_client(error=SyncError("A sync is already running"))

    scheduler = SyncScheduler(client)
    await scheduler.run_sync_job()

    client.sync.assert_awaited_once()


@pytest.mark.asyncio
async def test_scheduler_registers_single_instance_job():
    scheduler = SyncScheduler(mock_client(), interval_minutes=5)

    with patch.object(scheduler.scheduler, "start"), patch.object(scheduler.scheduler, "add_job") as add_job:
        scheduler.start()

    kwargs = add_job.call_args.kwargs
    assert kwargs["id"] == "sync_job"
    assert kwargs["max_instances"] == 1
    assert kwargs["trigger"].interval.total_seconds() == 300
