"""
Sync engine components for PostgreSQL -> DuckDB/MotherDuck replication.

Modules:
    source: PostgreSQL store (fetch, checkpoint, introspection, counts)
    target: DuckDB/MotherDuck store (DDL, writes, sync_metadata bookkeeping)
    reconciler: Creates target tables from the introspected source schema
    upsert: Chunked INSERT OR REPLACE writes with per-chunk rollback
    progress: Per-table phase state machine and result accumulation
    runner: SyncClient orchestrator
    scheduler: APScheduler integration for recurring syncs

Architecture:
    For each enabled table mapping the runner goes through:

    1. Reconcile - Make sure the target table exists
    2. Fetch - Read unsynced rows (all rows in full mode)
    3. Insert - Upsert rows into the target in transactional chunks
    4. Mark - Set the sync flag on the written source rows

    A failing table is recorded and the run continues with the next one.

Usage:
    from core.config import SyncConfig
    from sync.runner import SyncClient

Example:
    config = SyncConfig.from_settings()

    async with await SyncClient.connect(config) as client:
        result = await client.sync("incremental")

    print(f"Synced {result.total_records()} records")
"""

__all__ = [
    "SyncClient",
    "SyncScheduler",
    "SourceStore",
    "TargetStore",
    "SchemaReconciler",
    "BatchedUpsertEngine",
]
