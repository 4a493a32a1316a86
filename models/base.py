import enum


# ============================================================================
# ENUMS
# ============================================================================

class SyncMode(str, enum.Enum):
    """Sync mode"""
    INCREMENTAL = "incremental"  # Only rows not yet synced
    FULL = "full"                # Every row, without checkpointing

    def __str__(self) -> str:
        return self.value


class SyncPhase(str, enum.Enum):
    """Per-table sync phase"""
    CONNECTING = "connecting"
    FETCHING = "fetching"
    INSERTING = "inserting"
    MARKING = "marking"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class SslMode(str, enum.Enum):
    """SSL mode for PostgreSQL"""
    DISABLE = "disable"
    PREFER = "prefer"
    REQUIRE = "require"


class LogFormat(str, enum.Enum):
    """Log output format"""
    TEXT = "text"
    JSON = "json"


class CleanMode(str, enum.Enum):
    """Target table maintenance"""
    TRUNCATE = "truncate"  # Delete every row, keep the table
    RESET = "reset"        # Drop and recreate the table

    def __str__(self) -> str:
        return self.value
