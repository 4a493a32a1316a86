"""
Batched, idempotent writes into the target store.

Rows are rendered as literal ``INSERT OR REPLACE`` statements, so writing
the same row twice leaves a single copy keyed by the primary key.
"""

import logging
from typing import Iterator, List, Optional, Sequence

from core.exceptions import SyncError, SyncException
from core.retry import BackoffPolicy, retry_async
from models.schema import quote_identifier
from models.values import NULL, Row, to_sql_literal
from schemas.mapping import TableMapping

logger = logging.getLogger(__name__)


def chunked(rows: Sequence[Row], size: int) -> Iterator[Sequence[Row]]:
    """Yield consecutive slices of at most ``size`` rows."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def build_upsert_sql(qualified_table: str, mapping: TableMapping, rows: Sequence[Row]) -> str:
    """
    Render one ``INSERT OR REPLACE`` statement for ``rows``.

    The column set is taken from the first row, sorted; rows lacking a
    column contribute NULL for it.
    """
    if not rows:
        raise ValueError("cannot build an upsert for zero rows")

    columns = sorted(rows[0].keys())
    column_list = ", ".join(quote_identifier(mapping.target_column(c)) for c in columns)

    tuples = []
    for row in rows:
        literals = ", ".join(to_sql_literal(row.get(c, NULL)) for c in columns)
        tuples.append(f"({literals})")

    return f"INSERT OR REPLACE INTO {qualified_table} ({column_list}) VALUES {', '.join(tuples)}"


class BatchedUpsertEngine:
    """
    Writes fetched rows to a target table.

    Transactional mode writes ``batch_size`` rows per transaction and stops
    at the first failed chunk (earlier chunks stay committed).
    Non-transactional mode writes everything in a single statement.
    """

    def __init__(
        self,
        target,
        batch_size: int = 1000,
        use_transactions: bool = True,
        retry_policy: Optional[BackoffPolicy] = None
    ):
        self.target = target
        self.batch_size = batch_size
        self.use_transactions = use_transactions
        self.retry_policy = retry_policy or BackoffPolicy.no_retry()

    async def write(self, mapping: TableMapping, rows: List[Row]) -> int:
        """
        Write ``rows`` into the mapping's target table.

        Returns:
            Number of rows written

        Raises:
            SyncError: When a chunk fails; ``records_synced`` holds the rows
                committed before the failure
        """
        if not rows:
            return 0

        if self.use_transactions:
            written = await self._write_chunks(mapping, rows)
        else:
            try:
                sql = build_upsert_sql(self.target.qualified(mapping.target_table), mapping, rows)
                await self._retry(
                    mapping,
                    lambda: self.target.execute(sql, table=mapping.target_table)
                )
            except SyncException as e:
                raise SyncError(
                    f"Upsert into {mapping.target_table} failed: {e.message}",
                    records_synced=0,
                    context={"table": mapping.target_table},
                    original_exception=e
                )
            written = len(rows)

        logger.info(f"Batch upserted {written} rows to {mapping.target_table}")
        return written

    async def _write_chunks(self, mapping: TableMapping, rows: List[Row]) -> int:
        table = mapping.target_table
        qualified = self.target.qualified(table)
        written = 0

        for index, chunk in enumerate(chunked(rows, self.batch_size)):

            async def _transaction(sql):
                await self.target.begin(table)
                try:
                    await self.target.execute(sql, table=table)
                    await self.target.commit(table)
                except SyncException:
                    await self.target.rollback(table)
                    raise

            try:
                sql = build_upsert_sql(qualified, mapping, chunk)
                await self._retry(mapping, lambda sql=sql: _transaction(sql))
            except SyncException as e:
                logger.error(
                    f"Chunk {index + 1} of {table} rolled back after {written} committed rows: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                raise SyncError(
                    f"Upsert into {table} failed at chunk {index + 1}: {e.message}",
                    records_synced=written,
                    context={"table": table, "chunk": index + 1},
                    original_exception=e
                )

            written += len(chunk)
            logger.debug(f"Committed chunk {index + 1} ({len(chunk)} rows) to {table}")

        return written

    async def _retry(self, mapping: TableMapping, operation):
        return await retry_async(
            operation,
            self.retry_policy,
            f"Upsert into {mapping.target_table}"
        )
