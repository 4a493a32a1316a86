"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone

from models.base import CleanMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "postgres_connected": True,
                "motherduck_connected": True,
                "sync_running": False,
                "last_sync_success": True
            }
        }
    )

    status: str = Field(default="healthy", description="Overall status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=_utcnow)
    postgres_connected: bool
    motherduck_connected: bool
    sync_running: bool = False
    last_sync_success: Optional[bool] = None

    @model_validator(mode="after")
    def determine_status(self) -> "HealthCheckResponse":
        """Determine overall health status from store connectivity"""
        if self.postgres_connected and self.motherduck_connected:
            self.status = "degraded" if self.last_sync_success is False else "healthy"
        elif self.postgres_connected or self.motherduck_connected:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self


# ============================================================================
# Sync Schemas
# ============================================================================

class UnsyncedCountsResponse(BaseModel):
    """Unsynced row counts per enabled source table"""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "tables": {"orders": 120, "customers": 0},
                "total_unsynced": 120
            }
        }
    )

    timestamp: datetime = Field(default_factory=_utcnow)
    tables: Dict[str, int] = Field(default_factory=dict)
    total_unsynced: int = 0


class TargetTablesResponse(BaseModel):
    """Row counts of the mirrored target tables"""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "tables": {"orders": 1200, "customers": None},
                "all_tables": ["orders", "sync_metadata"],
                "total_records": 1200
            }
        }
    )

    timestamp: datetime = Field(default_factory=_utcnow)
    tables: Dict[str, Optional[int]] = Field(
        default_factory=dict,
        description="Row count per enabled target table (null when the table does not exist)"
    )
    all_tables: List[str] = Field(default_factory=list, description="Every table in the target schema")
    total_records: int = 0


class CleanResponse(BaseModel):
    """Outcome of a truncate/reset of target tables"""

    timestamp: datetime = Field(default_factory=_utcnow)
    mode: CleanMode
    tables: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response model"""

    error: str
    code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)
