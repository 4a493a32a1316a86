"""
Unit tests for the sync orchestrator
"""

import asyncio
import logging

import pytest
from unittest.mock import AsyncMock, patch

from core.exceptions import SchemaError, SourceConnectionError, SyncError, ValidationError
from models.base import SyncMode, SyncPhase
from models.values import classify_row
from schemas.mapping import TableMapping
from sync.runner import SyncClient, checkpoint_ids

ORDERS = {"source_table": "orders", "primary_key": ["id"]}


def block_fetch(source):
    """Make the next fetch wait until released; returns (started, release) events"""
    started, release = asyncio.Event(), asyncio.Event()
    original = source.fetch_rows

    async def fetch_rows(*args, **kwargs):
        started.set()
        await release.wait()
        return await original(*args, **kwargs)

    source.fetch_rows = fetch_rows
    return started, release


@pytest.fixture
def client_factory(fake_source, make_config, target, orders_schema, orders_records):
    """Build a SyncClient over a fake source and the in-memory target"""

    def _build(tables=None, records=None, **sync_overrides):
        source = fake_source(
            tables={"orders": orders_records if records is None else records},
            schemas={"orders": orders_schema},
        )
        config = make_config(tables if tables is not None else [ORDERS], **sync_overrides)
        return SyncClient(config, source, target), source

    return _build


class TestCheckpointIds:

    def test_first_key_as_text(self):
        mapping = TableMapping(source_table="orders", primary_key=["id", "region"])
        rows = [classify_row({"id": 1, "region": "eu"}), classify_row({"id": "x-2", "region": "us"})]
        assert checkpoint_ids(mapping, rows) == ["1", "x-2"]

    def test_missing_keys_are_dropped_with_a_warning(self, caplog):
        mapping = TableMapping(source_table="orders", primary_key=["id"])
        rows = [classify_row({"id": None}), classify_row({"other": 1}), classify_row({"id": 3})]

        with caplog.at_level(logging.WARNING, logger="sync.runner"):
            ids = checkpoint_ids(mapping, rows)

        assert ids == ["3"]
        assert len([r for r in caplog.records if "will not be marked" in r.message]) == 2


class TestSyncClient:

    @pytest.mark.asyncio
    async def test_incremental_sync(self, client_factory, target):
        client, source = client_factory()

        result = await client.sync(SyncMode.INCREMENTAL)

        assert result.success is True
        assert result.mode == "incremental"
        table = result.tables["orders"]
        assert table.records_synced == 5
        assert table.records_failed == 0
        assert source.checkpoint_calls == [("orders", ["1", "2", "3", "4", "5"])]
        assert await target.count_rows("orders") == 5
        assert client.last_result is result

    @pytest.mark.asyncio
    async def test_progress_events_follow_phase_order(self, client_factory):
        client, _ = client_factory()
        events = []
        client.set_progress_callback(events.append)

        await client.sync()

        assert [(e.phase, e.percent) for e in events] == [
            (SyncPhase.CONNECTING, 0),
            (SyncPhase.FETCHING, 0),
            (SyncPhase.INSERTING, 25),
            (SyncPhase.MARKING, 75),
            (SyncPhase.COMPLETED, 100),
        ]

    @pytest.mark.asyncio
    async def test_full_mode_never_checkpoints(self, client_factory):
        client, source = client_factory()

        result = await client.sync("full")

        assert result.success is True
        assert result.mode == "full"
        assert source.checkpoint_calls == []

    @pytest.mark.asyncio
    async def test_mark_synced_disabled(self, client_factory):
        client, source = client_factory(mark_synced=False)

        await client.sync()

        assert source.checkpoint_calls == []

    @pytest.mark.asyncio
    async def test_zero_rows_is_a_trivial_success(self, client_factory):
        client, source = client_factory(records=[])
        events = []
        client.set_progress_callback(events.append)

        result = await client.sync()

        table = result.tables["orders"]
        assert table.success is True
        assert (table.records_synced, table.records_failed) == (0, 0)
        assert [e.phase for e in events] == [SyncPhase.CONNECTING, SyncPhase.FETCHING, SyncPhase.COMPLETED]
        assert source.checkpoint_calls == []

    @pytest.mark.asyncio
    async def test_disabled_mapping_is_absent(self, client_factory):
        client, _ = client_factory(tables=[ORDERS, {**ORDERS, "source_table": "archive", "enabled": False}])

        result = await client.sync()

        assert list(result.tables) == ["orders"]

    @pytest.mark.asyncio
    async def test_reconcile_failure_is_not_fatal(self, client_factory, target, caplog):
        client, _ = client_factory()
        await target.execute('CREATE TABLE "orders" (id INTEGER PRIMARY KEY, customer VARCHAR, amount DOUBLE, created_at TIMESTAMPTZ)')

        with patch.object(client.reconciler, "reconcile", AsyncMock(side_effect=SchemaError("introspection failed"))):
            result = await client.sync()

        assert result.success is True
        assert any("Failed to create target table" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_checkpoint_failure_fails_the_table(self, client_factory):
        client, source = client_factory()
        source.fail_checkpoint.add("orders")
        events = []
        client.set_progress_callback(events.append)

        result = await client.sync()

        table = result.tables["orders"]
        assert result.success is False
        assert table.success is False
        assert table.records_synced == 5
        assert "Mark synced failed" in table.error
        assert events[-1].phase == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_max_records_limits_the_fetch(self, client_factory):
        client, _ = client_factory(max_records=2)

        result = await client.sync()

        assert result.tables["orders"].records_synced == 2

    @pytest.mark.asyncio
    async def test_connections_are_not_shared_with_a_running_sync(self, client_factory):
        client, source = client_factory()
        started, release = block_fetch(source)

        task = asyncio.create_task(client.sync())
        await started.wait()

        assert client.is_running
        with pytest.raises(SyncError):
            await client.sync()
        with pytest.raises(SyncError):
            await client.get_unsynced_counts()
        with pytest.raises(SyncError):
            await client.clean("truncate")
        assert await client.check_connectivity() == (True, True)
        assert source.ping_calls == 0

        release.set()
        result = await task

        assert result.success is True
        assert client.is_running is False
        assert await client.get_unsynced_counts() == {"orders": 0}

    @pytest.mark.asyncio
    async def test_sync_metadata_is_recorded(self, client_factory, target):
        client, _ = client_factory()

        await client.sync()

        rows = await target.fetch_all("SELECT table_name, records_synced, sync_mode FROM sync_metadata")
        assert rows == [("orders", 5, "incremental")]

    @pytest.mark.asyncio
    async def test_unsynced_counts_cover_enabled_tables_only(self, client_factory):
        client, _ = client_factory(tables=[ORDERS, {**ORDERS, "source_table": "archive", "enabled": False}])

        assert await client.get_unsynced_counts() == {"orders": 5}

    @pytest.mark.asyncio
    async def test_connectivity_failure_raises(self, client_factory):
        client, source = client_factory()
        source.offline = True

        with pytest.raises(SourceConnectionError):
            await client.test_connectivity()

    @pytest.mark.asyncio
    async def test_close_closes_both_stores(self, client_factory, target):
        client, source = client_factory()

        await client.close()

        assert source.closed is True
        assert target._closed is True

    @pytest.mark.asyncio
    async def test_check_connectivity_reports_each_store(self, client_factory):
        client, source = client_factory()
        source.offline = True

        assert await client.check_connectivity() == (False, True)
        assert source.ping_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_mode_raises_validation_error(self, client_factory):
        client, _ = client_factory()

        with pytest.raises(ValidationError):
            await client.sync("partial")
        with pytest.raises(ValidationError):
            await client.clean("vacuum")

    @pytest.mark.asyncio
    async def test_partially_marked_checkpoint_is_logged(self, client_factory, caplog):
        client, source = client_factory()
        source.checkpoint = AsyncMock(return_value=3)

        with caplog.at_level(logging.WARNING, logger="sync.runner"):
            result = await client.sync()

        assert result.success is True
        assert any("Only 3 of 5 written rows in orders" in r.message for r in caplog.records)


class TestTargetMaintenance:

    @pytest.mark.asyncio
    async def test_target_counts(self, client_factory):
        client, _ = client_factory(tables=[ORDERS, {"source_table": "archive", "primary_key": ["id"]}])

        assert await client.get_target_counts() == {"orders": None, "archive": None}
        await client.sync()

        counts = await client.get_target_counts()
        assert counts["orders"] == 5
        assert await client.list_target_tables() == ["orders", "sync_metadata"]

    @pytest.mark.asyncio
    async def test_truncate_keeps_the_table(self, client_factory, target):
        client, _ = client_factory()
        await client.sync()

        outcomes = await client.clean("truncate")

        assert outcomes == {"orders": "truncated: 5 rows"}
        assert await target.table_exists("orders")
        assert await target.count_rows("orders") == 0

    @pytest.mark.asyncio
    async def test_reset_recreates_from_source_schema(self, client_factory, target):
        client, _ = client_factory()
        await client.sync()

        outcomes = await client.clean("reset")

        assert outcomes == {"orders": "reset"}
        assert await target.count_rows("orders") == 0
        result = await client.sync("full")
        assert result.tables["orders"].records_synced == 5

    @pytest.mark.asyncio
    async def test_reset_without_auto_create_only_drops(self, client_factory, target):
        client, _ = client_factory(auto_create_tables=False)
        await target.execute('CREATE TABLE "orders" (id INTEGER PRIMARY KEY)')

        assert await client.clean("reset") == {"orders": "dropped"}
        assert await target.table_exists("orders") is False

    @pytest.mark.asyncio
    async def test_clean_failure_is_reported_per_table(self, client_factory):
        client, _ = client_factory()

        outcomes = await client.clean("truncate")

        assert outcomes["orders"].startswith("error: ")

    @pytest.mark.asyncio
    async def test_clean_unknown_table(self, client_factory):
        client, _ = client_factory()

        with pytest.raises(ValidationError):
            await client.clean("truncate", table="missing")
