"""
PostgreSQL source store: fetch, checkpoint, introspection and counting
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import exc as sa_exc, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.exceptions import (
    SourceConnectionError,
    SourceQueryError,
    SyncCancelledError,
    SyncException,
    SyncIOError,
)
from core.retry import BackoffPolicy, retry_async
from models.schema import IntrospectedColumn, quote_identifier
from models.values import Row, classify_row
from schemas.mapping import TableMapping

logger = logging.getLogger(__name__)

T = TypeVar("T")


INTROSPECT_QUERY = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable = 'YES' AS nullable,
        c.column_default,
        COALESCE(pk.is_pk, false) AS is_primary_key
    FROM information_schema.columns c
    LEFT JOIN (
        SELECT kcu.column_name, true AS is_pk
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
            ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
            AND tc.table_name = kcu.table_name
        WHERE tc.table_name = :table
            AND tc.table_schema = COALESCE(CAST(:schema AS TEXT), current_schema())
            AND tc.constraint_type = 'PRIMARY KEY'
    ) pk ON c.column_name = pk.column_name
    WHERE c.table_name = :table
        AND c.table_schema = COALESCE(CAST(:schema AS TEXT), current_schema())
    ORDER BY c.ordinal_position
"""


def split_table_name(table: str):
    """Split ``schema.table`` into (schema, table); schema is None if absent."""
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return None, table


def classify_source_error(error: BaseException, table: str, message: str) -> SyncException:
    """Translate a driver error into the sync error taxonomy."""
    if isinstance(error, SyncException):
        return error
    if isinstance(error, sa_exc.ResourceClosedError):
        return SyncCancelledError(
            f"{message}: connection closed",
            context={"table": table},
            original_exception=error
        )
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return SourceConnectionError(message, context={"table": table}, original_exception=error)
    if isinstance(error, (sa_exc.InterfaceError, sa_exc.DisconnectionError)):
        return SourceConnectionError(message, context={"table": table}, original_exception=error)
    if isinstance(error, (OSError, asyncio.TimeoutError)):
        return SyncIOError(message, context={"table": table}, original_exception=error)
    return SourceQueryError(table, message, original_exception=error)


class SourceStore:
    """
    Read/introspect/checkpoint operations against the PostgreSQL source.

    Holds one ``AsyncConnection`` for the lifetime of the sync client. Every
    operation runs in its own transaction: committed on success, rolled
    back on failure so the connection stays usable for the next table.
    """

    def __init__(
        self,
        connection: AsyncConnection,
        retry_policy: Optional[BackoffPolicy] = None
    ):
        self.connection = connection
        self.retry_policy = retry_policy or BackoffPolicy.no_retry()

    @classmethod
    async def connect(
        cls,
        engine: AsyncEngine,
        retry_policy: Optional[BackoffPolicy] = None
    ) -> "SourceStore":
        """Open a persistent connection, retrying transient failures."""
        policy = retry_policy or BackoffPolicy.no_retry()

        async def _open() -> AsyncConnection:
            try:
                return await engine.connect()
            except Exception as e:
                raise SourceConnectionError("Failed to connect", original_exception=e)

        logger.info("Connecting to PostgreSQL...")
        connection = await retry_async(_open, policy, "PostgreSQL connect")
        logger.info("Connected to PostgreSQL")
        return cls(connection, policy)

    async def close(self):
        await self.connection.close()

    async def _run(
        self,
        table: str,
        message: str,
        operation: Callable[[], Awaitable[T]]
    ) -> T:
        async def _attempt() -> T:
            try:
                result = await operation()
                await self.connection.commit()
                return result
            except Exception as e:
                await self._rollback_quietly()
                raise classify_source_error(e, table, message)

        return await retry_async(_attempt, self.retry_policy, f"{message} ({table or 'postgres'})")

    async def _rollback_quietly(self):
        try:
            await self.connection.rollback()
        except Exception as e:
            logger.debug(f"Rollback after failed source operation also failed: {e}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def ping(self):
        """Test connectivity."""
        async def _ping():
            await self.connection.execute(text("SELECT 1"))

        await self._run("", "Ping failed", _ping)

    @staticmethod
    def build_fetch_query(
        mapping: TableMapping,
        full_sync: bool,
        limit: Optional[int] = None
    ) -> str:
        """
        Build the read query for a mapping.

        Incremental reads require the sync flag to be false; the mapping
        filter is ANDed, then ORDER BY and LIMIT are appended.
        """
        projected = mapping.projected_columns()
        if projected:
            select_list = ", ".join(quote_identifier(c) for c in projected)
        else:
            select_list = "*"

        conditions = []
        if not full_sync:
            conditions.append(f"NOT {quote_identifier(mapping.sync_flag_column)}")
        if mapping.filter:
            conditions.append(f"({mapping.filter})")

        query = f"SELECT {select_list} FROM {quote_identifier(mapping.source_table)}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        if mapping.order_by:
            query += f" ORDER BY {mapping.order_by}"
        if limit:
            query += f" LIMIT {int(limit)}"
        return query

    async def fetch_rows(
        self,
        mapping: TableMapping,
        full_sync: bool,
        limit: Optional[int] = None
    ) -> List[Row]:
        """
        Fetch rows for a mapping with the sync flag column stripped.

        Args:
            mapping: Table mapping to read
            full_sync: Read every row instead of only unsynced ones
            limit: Maximum number of rows (None = unlimited)
        """
        query = self.build_fetch_query(mapping, full_sync, limit)
        logger.debug(f"Executing query: {query}")

        async def _fetch() -> List[Row]:
            # Raw driver SQL: filter fragments may contain colons
            result = await self.connection.exec_driver_sql(query)
            return [
                classify_row(record, skip_column=mapping.sync_flag_column)
                for record in result.mappings().all()
            ]

        rows = await self._run(mapping.source_table, "Fetch failed", _fetch)
        logger.debug(f"Fetched {len(rows)} rows from {mapping.source_table}")
        return rows

    async def checkpoint(self, mapping: TableMapping, ids: List[str]) -> int:
        """
        Mark rows as synced.

        Rows are matched on the first primary key column compared as text.

        Returns:
            Number of source rows updated (0 if ``ids`` is empty)
        """
        if not ids:
            return 0

        statement = text(
            f"UPDATE {quote_identifier(mapping.source_table)} "
            f"SET {quote_identifier(mapping.sync_flag_column)} = TRUE "
            f"WHERE CAST({quote_identifier(mapping.checkpoint_column)} AS TEXT) = ANY(:ids)"
        )

        async def _update() -> int:
            result = await self.connection.execute(statement, {"ids": list(ids)})
            return result.rowcount

        affected = await self._run(mapping.source_table, "Mark synced failed", _update)
        logger.debug(f"Marked {affected} rows as synced in {mapping.source_table}")
        return affected

    async def introspect(self, table: str) -> List[IntrospectedColumn]:
        """Introspect a source table's columns via information_schema."""
        schema, name = split_table_name(table)

        async def _introspect() -> List[IntrospectedColumn]:
            result = await self.connection.execute(
                text(INTROSPECT_QUERY), {"table": name, "schema": schema}
            )
            return [
                IntrospectedColumn(
                    name=row["column_name"],
                    pg_type=row["data_type"],
                    nullable=bool(row["nullable"]),
                    default=row["column_default"],
                    is_primary_key=bool(row["is_primary_key"]),
                )
                for row in result.mappings().all()
            ]

        return await self._run(table, "Introspection failed", _introspect)

    async def count_rows(self, table: str, filter: Optional[str] = None) -> int:
        query = f"SELECT COUNT(*) FROM {quote_identifier(table)}"
        if filter:
            query += f" WHERE {filter}"

        async def _count() -> int:
            result = await self.connection.exec_driver_sql(query)
            return int(result.scalar_one())

        return await self._run(table, "Count failed", _count)

    async def unsynced_count(self, mapping: TableMapping) -> int:
        """Count rows not yet synced, honouring the mapping filter."""
        condition = f"NOT {quote_identifier(mapping.sync_flag_column)}"
        if mapping.filter:
            condition += f" AND ({mapping.filter})"
        return await self.count_rows(mapping.source_table, condition)
