"""
Pydantic schemas for configuration and results.

Schemas:
    mapping: TableMapping and the compact SYNC_TABLES_CONFIG entry format
    results: TableSyncResult, SyncResult and SyncProgress
    api: API response models

Usage:
    from schemas.mapping import TableMapping
    from schemas.results import SyncResult
"""

__all__ = [
    "TableMapping",
    "TableEntry",
    "TableSyncResult",
    "SyncResult",
    "SyncProgress",
    "HealthCheckResponse",
    "UnsyncedCountsResponse",
    "TargetTablesResponse",
    "CleanResponse",
]
