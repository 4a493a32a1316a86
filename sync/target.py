"""
DuckDB / MotherDuck target store.

The ``duckdb`` client is blocking, so every call is pushed to a worker
thread with ``asyncio.to_thread``. Calls are issued one at a time by the
sync client; the connection is never used concurrently.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Sequence, TypeVar

import duckdb

from core.config import TargetConfig
from core.database import connect_target
from core.exceptions import (
    SyncCancelledError,
    SyncException,
    SyncIOError,
    TargetConnectionError,
    TargetQueryError,
)
from core.retry import BackoffPolicy, retry_async
from models.schema import SYNC_METADATA_TABLE, Table, quote_identifier
from models.values import quote_literal

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SCHEMA = "main"


def classify_target_error(error: BaseException, table: str, message: str) -> SyncException:
    """Translate a duckdb error into the sync error taxonomy."""
    if isinstance(error, SyncException):
        return error
    if isinstance(error, duckdb.ConnectionException):
        return TargetConnectionError(message, context={"table": table}, original_exception=error)
    if isinstance(error, (duckdb.IOException, OSError)):
        return SyncIOError(message, context={"table": table}, original_exception=error)
    return TargetQueryError(table, message, original_exception=error)


class TargetStore:
    """
    Schema creation, writes and bookkeeping against DuckDB/MotherDuck.

    Table names passed to this class are unqualified; they are placed in
    ``schema_name`` unless it is the default ``main`` schema.
    """

    def __init__(
        self,
        connection: "duckdb.DuckDBPyConnection",
        schema_name: str = DEFAULT_SCHEMA,
        retry_policy: Optional[BackoffPolicy] = None
    ):
        self.connection = connection
        self.schema_name = schema_name
        self.retry_policy = retry_policy or BackoffPolicy.no_retry()
        self._closed = False

    @classmethod
    async def connect(
        cls,
        config: TargetConfig,
        retry_policy: Optional[BackoffPolicy] = None
    ) -> "TargetStore":
        """Open the target connection, retrying transient failures."""
        policy = retry_policy or BackoffPolicy.no_retry()

        async def _open():
            return await asyncio.to_thread(connect_target, config)

        connection = await retry_async(_open, policy, "MotherDuck connect")
        return cls(connection, config.schema_name, policy)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self.connection.close)

    def qualified(self, table: str) -> str:
        """Quoted, schema-qualified table name."""
        return quote_identifier(self._qualified_name(table))

    async def _call(
        self,
        table: str,
        message: str,
        func: Callable[[], T],
        retry: bool = True
    ) -> T:
        async def _attempt() -> T:
            if self._closed:
                raise SyncCancelledError(f"{message}: connection closed", context={"table": table})
            try:
                return await asyncio.to_thread(func)
            except (duckdb.Error, OSError) as e:
                raise classify_target_error(e, table, message)

        if not retry:
            return await _attempt()
        return await retry_async(_attempt, self.retry_policy, f"{message} ({table or 'motherduck'})")

    # ------------------------------------------------------------------
    # Raw execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        sql: str,
        table: str = "",
        parameters: Optional[Sequence[Any]] = None,
        retry: bool = False
    ):
        """
        Execute a statement.

        Not retried by default: statements issued inside an explicit
        transaction must be retried as a whole unit by the caller.
        """
        def _execute():
            if parameters is None:
                self.connection.execute(sql)
            else:
                self.connection.execute(sql, parameters)

        await self._call(table, "Execute failed", _execute, retry=retry)

    async def fetch_all(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> List[tuple]:
        def _fetch():
            if parameters is None:
                return self.connection.execute(sql).fetchall()
            return self.connection.execute(sql, parameters).fetchall()

        return await self._call("", "Query failed", _fetch)

    async def begin(self, table: str = ""):
        await self._call(table, "Begin transaction failed", lambda: self.connection.execute("BEGIN TRANSACTION"), retry=False)

    async def commit(self, table: str = ""):
        await self._call(table, "Commit failed", lambda: self.connection.execute("COMMIT"), retry=False)

    async def rollback(self, table: str = ""):
        """Roll back the open transaction, logging instead of raising."""
        try:
            await self._call(table, "Rollback failed", lambda: self.connection.execute("ROLLBACK"), retry=False)
        except SyncException as e:
            logger.warning(f"Rollback failed for {table or 'target'}: {e.message}")

    # ------------------------------------------------------------------
    # Schema operations
    # ------------------------------------------------------------------

    async def ping(self):
        """Test connectivity."""
        await self._call("", "Ping failed", lambda: self.connection.execute("SELECT 1").fetchall())

    async def ensure_schema(self):
        """Create the target schema if it is not ``main``."""
        if self.schema_name == DEFAULT_SCHEMA:
            return
        sql = f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(self.schema_name)}"
        await self._call(self.schema_name, "Create schema failed", lambda: self.connection.execute(sql))
        logger.info(f"Ensured schema exists: {self.schema_name}")

    async def table_exists(self, table: str) -> bool:
        """
        Check the current database only; a MotherDuck connection also sees
        every other attached database.
        """
        sql = (
            "SELECT COUNT(*) FROM information_schema.tables "
            "WHERE table_catalog = current_database() AND table_schema = ? AND table_name = ?"
        )
        if "." in table:
            schema, name = table.split(".", 1)
        else:
            schema, name = self.schema_name, table

        def _exists() -> bool:
            row = self.connection.execute(sql, [schema, name]).fetchone()
            return bool(row and row[0] > 0)

        return await self._call(table, "Table existence check failed", _exists)

    async def create_table(self, table: Table):
        """Create a table from a definition (no-op if it already exists)."""
        definition = Table(
            name=self._qualified_name(table.name),
            columns=table.columns,
            primary_key=table.primary_key,
        )
        ddl = definition.to_duckdb_ddl()
        logger.debug(f"Creating table: {ddl}")
        await self._call(table.name, "Create table failed", lambda: self.connection.execute(ddl))

    async def execute_ddl(self, ddl: str):
        """
        Run a configured DDL statement (auxiliary analytics tables).

        Unqualified names in ``ddl`` resolve in ``schema_name``.
        """
        def _execute():
            if self.schema_name == DEFAULT_SCHEMA:
                self.connection.execute(ddl)
                return
            previous = self.connection.execute("SELECT current_schema()").fetchone()[0]
            self.connection.execute(f"SET schema = {quote_literal(self.schema_name)}")
            try:
                self.connection.execute(ddl)
            finally:
                self.connection.execute(f"SET schema = {quote_literal(previous)}")

        await self._call("", "DDL failed", _execute)

    async def ensure_sync_metadata(self):
        await self.create_table(SYNC_METADATA_TABLE)

    async def list_tables(self) -> List[str]:
        """Tables in ``schema_name`` of the current database."""
        rows = await self.fetch_all(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_catalog = current_database() AND table_schema = ? "
            "ORDER BY table_name",
            [self.schema_name]
        )
        return [row[0] for row in rows]

    async def count_rows(self, table: str) -> int:
        sql = f"SELECT COUNT(*) FROM {self.qualified(table)}"

        def _count() -> int:
            return int(self.connection.execute(sql).fetchone()[0])

        return await self._call(table, "Count failed", _count)

    async def truncate_table(self, table: str) -> int:
        """Delete every row of ``table``, keeping its structure; returns rows deleted."""
        qualified = self.qualified(table)

        def _truncate() -> int:
            count = int(self.connection.execute(f"SELECT COUNT(*) FROM {qualified}").fetchone()[0])
            self.connection.execute(f"DELETE FROM {qualified}")
            return count

        return await self._call(table, "Truncate failed", _truncate)

    async def drop_table(self, table: str):
        sql = f"DROP TABLE IF EXISTS {self.qualified(table)}"
        await self._call(table, "Drop table failed", lambda: self.connection.execute(sql))

    async def record_sync(self, table: str, records_synced: int, mode: str):
        """Upsert the bookkeeping row for ``table`` in sync_metadata."""
        sql = (
            f"INSERT OR REPLACE INTO {self.qualified(SYNC_METADATA_TABLE.name)} "
            "(table_name, last_sync_at, records_synced, sync_mode) VALUES (?, current_timestamp, ?, ?)"
        )
        parameters = [table, records_synced, mode]
        await self._call(
            SYNC_METADATA_TABLE.name,
            "Record sync metadata failed",
            lambda: self.connection.execute(sql, parameters)
        )

    def _qualified_name(self, table: str) -> str:
        if self.schema_name == DEFAULT_SCHEMA or "." in table:
            return table
        return f"{self.schema_name}.{table}"
