"""
Unit tests for the batched upsert engine (against in-memory DuckDB)
"""

import pytest
from unittest.mock import patch

from core.exceptions import SerializationError, SyncError, TargetQueryError
from models.schema import Column, ColumnType, Table
from models.values import SqlValue, classify_row
from schemas.mapping import TableMapping
from sync.upsert import BatchedUpsertEngine, build_upsert_sql, chunked

MAPPING = TableMapping(source_table="events", primary_key=["id"])


def make_rows(count, start=1):
    return [classify_row({"id": i, "label": f"event {i}"}) for i in range(start, start + count)]


async def create_events_table(target, name="events"):
    await target.create_table(Table(
        name=name,
        columns=[
            Column("id", ColumnType.INTEGER, nullable=False),
            Column("label", ColumnType.VARCHAR),
        ],
        primary_key=["id"],
    ))


def test_chunk_sizes():
    sizes = [len(c) for c in chunked(list(range(2500)), 1000)]
    assert sizes == [1000, 1000, 500]


def test_build_upsert_sql_sorts_columns_and_fills_nulls():
    rows = [
        classify_row({"name": "a'b", "id": 1}),
        classify_row({"id": 2}),
    ]
    mapping = TableMapping(source_table="people", primary_key=["id"], column_mappings={"name": "full_name"})

    sql = build_upsert_sql('"people"', mapping, rows)

    assert sql == (
        'INSERT OR REPLACE INTO "people" ("id", "full_name") '
        "VALUES (1, 'a''b'), (2, NULL)"
    )


class TestBatchedUpsertEngine:
    """Test chunked transactional writes"""

    @pytest.mark.asyncio
    async def test_writes_in_chunks(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, batch_size=1000)

        with patch.object(target, "begin", wraps=target.begin) as begin:
            written = await engine.write(MAPPING, make_rows(2500))

        assert written == 2500
        assert begin.call_count == 3
        assert await target.count_rows("events") == 2500

    @pytest.mark.asyncio
    async def test_quote_round_trip(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target)

        await engine.write(MAPPING, [classify_row({"id": 1, "label": "a'b"})])

        assert await target.fetch_all('SELECT label FROM "events"') == [("a'b",)]

    @pytest.mark.asyncio
    async def test_rewriting_rows_is_idempotent(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, batch_size=2)

        await engine.write(MAPPING, make_rows(5))
        await engine.write(MAPPING, make_rows(5))

        assert await target.count_rows("events") == 5

    @pytest.mark.asyncio
    async def test_failed_chunk_rolls_back_and_stops(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, batch_size=2)
        rows = make_rows(2) + [classify_row({"id": None, "label": "no key"})] + make_rows(2, start=10)

        with pytest.raises(SyncError) as exc_info:
            await engine.write(MAPPING, rows)

        assert exc_info.value.records_synced == 2
        assert isinstance(exc_info.value.original_exception, TargetQueryError)
        # First chunk committed, failing chunk rolled back, last chunk never attempted
        assert await target.fetch_all('SELECT id FROM "events" ORDER BY id') == [(1,), (2,)]

    @pytest.mark.asyncio
    async def test_non_transactional_single_statement(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, batch_size=10, use_transactions=False)

        with patch.object(target, "execute", wraps=target.execute) as execute:
            written = await engine.write(MAPPING, make_rows(35))

        assert written == 35
        assert execute.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_table_fails_without_writes(self, target):
        engine = BatchedUpsertEngine(target)

        with pytest.raises(SyncError) as exc_info:
            await engine.write(MAPPING, make_rows(3))

        assert exc_info.value.records_synced == 0

    @pytest.mark.asyncio
    async def test_empty_batch(self, target):
        engine = BatchedUpsertEngine(target)
        assert await engine.write(MAPPING, []) == 0

    @pytest.mark.asyncio
    async def test_non_finite_array_elements_in_later_chunk(self, target):
        await target.execute('CREATE TABLE "readings" ("id" INTEGER PRIMARY KEY, "tags" VARCHAR)')
        mapping = TableMapping(source_table="readings", primary_key=["id"])
        engine = BatchedUpsertEngine(target, batch_size=3)
        rows = [classify_row({"id": i, "tags": [1.0, 2.0]}) for i in range(1, 4)]
        rows.append(classify_row({"id": 4, "tags": [float("nan"), float("inf")]}))

        written = await engine.write(mapping, rows)

        assert written == 4
        assert await target.fetch_all('SELECT tags FROM "readings" WHERE id = 4') == [('["NaN","Infinity"]',)]

    @pytest.mark.asyncio
    async def test_unrenderable_value_in_later_chunk_keeps_committed_count(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, batch_size=3)
        rows = make_rows(3) + [{"id": classify_row({"id": 4})["id"], "label": SqlValue("mystery", 1)}]

        with pytest.raises(SyncError) as exc_info:
            await engine.write(MAPPING, rows)

        assert exc_info.value.records_synced == 3
        assert isinstance(exc_info.value.original_exception, SerializationError)
        assert await target.count_rows("events") == 3

    @pytest.mark.asyncio
    async def test_unrenderable_value_without_transactions(self, target):
        await create_events_table(target)
        engine = BatchedUpsertEngine(target, use_transactions=False)
        rows = make_rows(2) + [{"id": classify_row({"id": 3})["id"], "label": SqlValue("mystery", 1)}]

        with pytest.raises(SyncError) as exc_info:
            await engine.write(MAPPING, rows)

        assert exc_info.value.records_synced == 0
        assert await target.count_rows("events") == 0
