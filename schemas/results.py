"""
Pydantic schemas for sync results and progress events
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, List

from models.base import SyncPhase


class TableSyncResult(BaseModel):
    """Outcome of syncing one table mapping"""

    model_config = ConfigDict(frozen=True)

    source_table: str
    target_table: str
    success: bool
    records_synced: int = 0
    records_failed: int = 0
    duration_ms: int = 0
    error: Optional[str] = None


class SyncResult(BaseModel):
    """
    Aggregate outcome of one sync run.

    ``tables`` is keyed by source table and lists every attempted mapping;
    disabled mappings never appear in it.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "success": True,
                "mode": "incremental",
                "tables": {
                    "orders": {
                        "source_table": "orders",
                        "target_table": "orders",
                        "success": True,
                        "records_synced": 1500,
                        "records_failed": 0,
                        "duration_ms": 842,
                        "error": None
                    }
                },
                "duration_ms": 910,
                "completed_at": "2024-01-15T10:30:00+00:00",
                "error": None
            }
        },
    )

    success: bool
    mode: str
    tables: Dict[str, TableSyncResult] = Field(default_factory=dict)
    duration_ms: int = 0
    completed_at: str = Field(..., description="RFC 3339 completion timestamp (UTC)")
    error: Optional[str] = None

    def total_records(self) -> int:
        return sum(t.records_synced for t in self.tables.values())

    def total_failed(self) -> int:
        return sum(t.records_failed for t in self.tables.values())

    def all_tables_success(self) -> bool:
        return all(t.success for t in self.tables.values())

    def failed_tables(self) -> List[str]:
        return [name for name, t in self.tables.items() if not t.success]


class SyncProgress(BaseModel):
    """Progress event emitted while a table is being synced"""

    model_config = ConfigDict(frozen=True)

    table: str
    phase: SyncPhase
    records_processed: int = 0
    total_records: Optional[int] = None
    percent: int = Field(default=0, ge=0, le=100)
