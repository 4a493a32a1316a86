"""
Sync Runner - Orchestrates PostgreSQL -> MotherDuck table syncs.

For every enabled table mapping the runner:
- Reconciles the target schema (creating the table from the source schema)
- Fetches unsynced rows (or every row in full mode)
- Writes them to the target in transactional chunks
- Marks the written rows as synced in the source
- Records a per-table result

A failing table is recorded as failed and the run moves on to the next
table; the overall result is successful only if every table succeeded.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple, Union

from core.config import SyncConfig
from core.database import create_source_engine
from core.exceptions import SyncError, SyncException, ValidationError
from core.retry import BackoffPolicy
from models.base import CleanMode, SyncMode, SyncPhase
from models.values import Row, to_checkpoint_id
from schemas.mapping import TableMapping
from schemas.results import SyncResult, TableSyncResult
from sync.progress import (
    ProgressCallback,
    ProgressReporter,
    ResultAccumulator,
    TableProgress,
    elapsed_ms,
)
from sync.reconciler import SchemaReconciler
from sync.source import SourceStore
from sync.target import TargetStore
from sync.upsert import BatchedUpsertEngine

logger = logging.getLogger(__name__)


def checkpoint_ids(mapping: TableMapping, rows: List[Row]) -> List[str]:
    """
    Textual ids of the first primary key column, used to mark rows synced.

    Rows whose key is missing or NULL cannot be marked; each one is logged
    and left out.
    """
    column = mapping.checkpoint_column
    ids = []
    for position, row in enumerate(rows):
        value = row.get(column)
        key = to_checkpoint_id(value) if value is not None else None
        if key is None:
            logger.warning(
                f"Row {position} of {mapping.source_table} has no value for "
                f"primary key column {column}; it will not be marked as synced"
            )
            continue
        ids.append(key)
    return ids


def _parse_mode(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError as e:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Unknown {enum_cls.__name__} {value!r} (expected one of: {choices})",
            context={"mode": str(value)},
            original_exception=e
        )


class SyncClient:
    """
    Sync orchestrator

    Responsibilities:
    - Own the source and target connections for its lifetime
    - Drive each table through its phases, reporting progress
    - Isolate per-table failures
    - Build the aggregate SyncResult

    The two connections are used by one operation at a time. A second
    ``sync()`` while one is in flight raises ``SyncError``, and so do the
    counting and cleaning operations; ``check_connectivity()`` reports the
    last known state instead.
    """

    def __init__(
        self,
        config: SyncConfig,
        source: SourceStore,
        target: TargetStore,
        progress_callback: Optional[ProgressCallback] = None,
        engine=None
    ):
        self.config = config
        self.source = source
        self.target = target
        self.reporter = ProgressReporter(progress_callback)
        self.reconciler = SchemaReconciler(source, target)
        self.upserter = BatchedUpsertEngine(
            target,
            batch_size=config.sync.batch_size,
            use_transactions=config.sync.use_transactions,
            retry_policy=BackoffPolicy.from_config(config.retry),
        )
        self.last_result: Optional[SyncResult] = None
        self._engine = engine
        # Held while either connection is in use
        self._lock = asyncio.Lock()
        self._running = False
        self._connectivity: Tuple[bool, bool] = (True, True)

    @classmethod
    async def connect(
        cls,
        config: SyncConfig,
        progress_callback: Optional[ProgressCallback] = None
    ) -> "SyncClient":
        """
        Connect to both stores and build a client.

        Raises:
            SourceConnectionError / TargetConnectionError / RetryExhaustedError:
                If either store stays unreachable
        """
        policy = BackoffPolicy.from_config(config.retry)
        engine = create_source_engine(config.source)

        try:
            source = await SourceStore.connect(engine, policy)
        except Exception:
            await engine.dispose()
            raise

        try:
            target = await TargetStore.connect(config.target, policy)
        except Exception:
            await source.close()
            await engine.dispose()
            raise

        return cls(config, source, target, progress_callback, engine=engine)

    def set_progress_callback(self, callback: Optional[ProgressCallback]):
        self.reporter.callback = callback

    @property
    def is_running(self) -> bool:
        return self._running

    async def close(self):
        """Close both connections; later calls fail as cancelled."""
        try:
            await self.source.close()
        finally:
            try:
                await self.target.close()
            finally:
                if self._engine is not None:
                    await self._engine.dispose()
                    self._engine = None

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def test_connectivity(self):
        """Ping both stores, raising the first connectivity error."""
        async with self._exclusive("test connectivity"):
            await self.source.ping()
            logger.info("PostgreSQL connection OK")
            await self.target.ping()
            logger.info("MotherDuck connection OK")

    async def check_connectivity(self) -> Tuple[bool, bool]:
        """
        Ping both stores without raising.

        Returns:
            (postgres_connected, motherduck_connected). While the connections
            are busy the last known state is returned without pinging.
        """
        if self.is_running or self._lock.locked():
            return self._connectivity

        async with self._lock:
            source_ok = await self._ping(self.source, "PostgreSQL")
            target_ok = await self._ping(self.target, "MotherDuck")

        self._connectivity = (source_ok, target_ok)
        return self._connectivity

    async def get_unsynced_counts(self) -> Dict[str, int]:
        """Unsynced row count per enabled source table."""
        counts = {}
        async with self._exclusive("count unsynced rows"):
            for mapping in self.config.enabled_tables():
                counts[mapping.source_table] = await self.source.unsynced_count(mapping)
        return counts

    async def get_target_counts(self) -> Dict[str, Optional[int]]:
        """Row count per enabled target table; None when the table does not exist."""
        counts: Dict[str, Optional[int]] = {}
        async with self._exclusive("count target rows"):
            for mapping in self.config.enabled_tables():
                table = mapping.target_table
                if await self.target.table_exists(table):
                    counts[table] = await self.target.count_rows(table)
                else:
                    counts[table] = None
        return counts

    async def list_target_tables(self) -> List[str]:
        """Every table in the target schema, mirrored or not."""
        async with self._exclusive("list target tables"):
            return await self.target.list_tables()

    async def clean(self, mode: Union[CleanMode, str], table: Optional[str] = None) -> Dict[str, str]:
        """
        Truncate or reset the target tables of the enabled mappings.

        ``reset`` drops each table and, when ``auto_create_tables`` is on,
        recreates it from the source schema. Source rows keep their sync
        flag either way, so run a full sync to repopulate.

        Args:
            mode: ``truncate`` or ``reset``
            table: Restrict cleaning to this target table

        Returns:
            Outcome per target table: ``"truncated: N rows"``, ``"reset"``,
            ``"dropped"`` or ``"error: ..."``

        Raises:
            ValidationError: Unknown mode, or ``table`` is not a configured target table
            SyncError: If a sync is running
        """
        mode = _parse_mode(CleanMode, mode)
        mappings = self.config.enabled_tables()
        if table is not None:
            mappings = [m for m in mappings if m.target_table == table]
            if not mappings:
                raise ValidationError(
                    f"{table} is not the target of an enabled table mapping",
                    context={"table": table}
                )

        outcomes = {}
        async with self._exclusive(f"{mode} target tables"):
            for mapping in mappings:
                outcomes[mapping.target_table] = await self._clean_table(mapping, mode)
        return outcomes

    async def sync(self, mode: Union[SyncMode, str] = SyncMode.INCREMENTAL) -> SyncResult:
        """
        Run one sync over every enabled table.

        Args:
            mode: ``incremental`` (unsynced rows only) or ``full`` (every row,
                without marking rows as synced)

        Returns:
            SyncResult listing every attempted table

        Raises:
            ValidationError: If ``mode`` is not a sync mode
            SyncError: If a sync is already running on this client
        """
        mode = _parse_mode(SyncMode, mode)
        if self._running:
            raise SyncError("A sync is already running")

        self._running = True
        try:
            async with self._lock:
                return await self._run(mode)
        finally:
            self._running = False

    @asynccontextmanager
    async def _exclusive(self, operation: str):
        if self.is_running:
            raise SyncError(f"Cannot {operation} while a sync is running")
        async with self._lock:
            yield

    @staticmethod
    async def _ping(store, name: str) -> bool:
        try:
            await store.ping()
        except SyncException as e:
            logger.error(f"{name} health check failed: {e.message}", extra={"error_context": e.to_dict()})
            return False
        return True

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    async def _run(self, mode: SyncMode) -> SyncResult:
        full_sync = mode == SyncMode.FULL
        accumulator = ResultAccumulator(mode)
        logger.info(f"Starting {mode} sync")

        if self.config.sync.auto_create_tables:
            await self._prepare_target()

        for mapping in self.config.tables:
            if not mapping.enabled:
                logger.debug(f"Skipping disabled table: {mapping.source_table}")
                continue

            logger.info(f"Syncing table: {mapping.source_table} -> {mapping.target_table}")
            table_result = await self._sync_mapping(mapping, full_sync)
            accumulator.add(table_result)

            if table_result.success:
                await self._record_metadata(mapping, table_result.records_synced, mode)

        result = accumulator.build()
        self.last_result = result

        if result.success:
            logger.info(
                f"Sync completed successfully in {result.duration_ms}ms. "
                f"Total records: {result.total_records()}, Tables synced: {len(result.tables)}"
            )
        else:
            logger.warning(
                f"Sync completed with errors in {result.duration_ms}ms. "
                f"Synced: {result.total_records()}, Failed tables: {len(result.failed_tables())}"
            )
        return result

    async def _prepare_target(self):
        """Ensure the target schema, sync_metadata and auxiliary tables exist."""
        await self.target.ensure_schema()
        await self.target.ensure_sync_metadata()
        for ddl in self.config.auxiliary_tables:
            await self.target.execute_ddl(ddl)
        if self.config.auxiliary_tables:
            logger.info(f"Ensured {len(self.config.auxiliary_tables)} auxiliary table(s)")

    async def _sync_mapping(self, mapping: TableMapping, full_sync: bool) -> TableSyncResult:
        started = time.monotonic()
        progress = TableProgress(mapping.source_table, self.reporter)

        if self.config.sync.auto_create_tables:
            try:
                await self.reconciler.reconcile(mapping)
            except SyncException as e:
                # The table may already exist with a compatible schema
                logger.warning(
                    f"Failed to create target table {mapping.target_table}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )

        try:
            fetched, synced = await self._sync_table(mapping, full_sync, progress)
        except Exception as e:
            synced = 0
            if isinstance(e, SyncError):
                synced = e.records_synced
            elif progress.phase == SyncPhase.MARKING:
                # Rows were written; only the checkpoint failed
                synced = progress.records_processed
            total = progress.total_records or 0

            if isinstance(e, SyncException):
                logger.error(
                    f"Failed to sync table {mapping.source_table}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
            else:
                logger.exception(f"Unexpected error syncing table {mapping.source_table}")

            if not progress.finished:
                progress.advance(SyncPhase.FAILED, records_processed=synced)

            return TableSyncResult(
                source_table=mapping.source_table,
                target_table=mapping.target_table,
                success=False,
                records_synced=synced,
                records_failed=max(total - synced, 0),
                duration_ms=elapsed_ms(started),
                error=str(e),
            )

        return TableSyncResult(
            source_table=mapping.source_table,
            target_table=mapping.target_table,
            success=True,
            records_synced=synced,
            records_failed=fetched - synced,
            duration_ms=elapsed_ms(started),
        )

    async def _sync_table(
        self,
        mapping: TableMapping,
        full_sync: bool,
        progress: TableProgress
    ) -> Tuple[int, int]:
        """Fetch, write and checkpoint one table; returns (fetched, synced)."""
        progress.advance(SyncPhase.FETCHING)

        limit = self.config.sync.max_records or None
        rows = await self.source.fetch_rows(mapping, full_sync, limit)
        total = len(rows)

        if total == 0:
            logger.info(f"No rows to sync for {mapping.source_table}")
            progress.advance(SyncPhase.COMPLETED)
            return 0, 0

        logger.info(f"Fetched {total} rows from {mapping.source_table}")
        progress.advance(SyncPhase.INSERTING, total_records=total)

        synced = await self.upserter.write(mapping, rows)

        if self.config.sync.mark_synced and not full_sync and synced > 0:
            progress.advance(SyncPhase.MARKING, records_processed=synced, total_records=total)
            ids = checkpoint_ids(mapping, rows)
            marked = await self.source.checkpoint(mapping, ids)
            if marked < len(ids):
                # e.g. a timestamptz key whose text form differs from PostgreSQL's pk::text
                logger.warning(
                    f"Only {marked} of {len(ids)} written rows in {mapping.source_table} were "
                    f"marked as synced; the rest will be fetched again on the next run"
                )
            else:
                logger.debug(f"Checkpointed {marked}/{len(ids)} rows in {mapping.source_table}")

        progress.advance(SyncPhase.COMPLETED, records_processed=synced, total_records=total)
        logger.info(f"Synced {synced} rows to {mapping.target_table} ({total - synced} failed)")
        return total, synced

    async def _clean_table(self, mapping: TableMapping, mode: CleanMode) -> str:
        table = mapping.target_table
        try:
            if mode == CleanMode.TRUNCATE:
                deleted = await self.target.truncate_table(table)
                logger.info(f"Truncated {table}: {deleted} rows deleted")
                return f"truncated: {deleted} rows"

            await self.target.drop_table(table)
            if not self.config.sync.auto_create_tables:
                logger.info(f"Dropped {table}")
                return "dropped"
            await self.reconciler.reconcile(mapping)
            logger.info(f"Reset {table}")
            return "reset"
        except SyncException as e:
            logger.error(f"Failed to {mode} {table}: {e.message}", extra={"error_context": e.to_dict()})
            return f"error: {e.message}"

    async def _record_metadata(self, mapping: TableMapping, records_synced: int, mode: SyncMode):
        try:
            await self.target.record_sync(mapping.target_table, records_synced, str(mode))
        except SyncException as e:
            logger.warning(f"Failed to update sync_metadata for {mapping.target_table}: {e.message}")
