"""
Custom exceptions for the sync engine with structured error context.

Every error raised by the engine carries a human-readable message, a
context dictionary for logging, an optional original exception and a
stable error code used in logs and API responses.

Exception Hierarchy:
    SyncException (base)
    ├── RetryableError
    │   ├── SourceConnectionError
    │   ├── TargetConnectionError
    │   └── SyncIOError
    ├── NonRetryableError
    │   ├── ConfigurationError
    │   ├── ValidationError
    │   ├── SchemaError
    │   ├── SerializationError
    │   └── SyncCancelledError
    ├── QueryError
    │   ├── SourceQueryError
    │   └── TargetQueryError
    ├── SyncError
    └── RetryExhaustedError

Only connection and I/O errors are retryable. Query errors are raised for
bad SQL, constraint violations and similar logic failures and must never
be retried.
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table, operation, etc.)
        original_exception: The original exception that was caught (if any)
    """

    code = "SYNC_EXCEPTION"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{self.original_exception}"
            )

        return base_msg

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Bases
# ============================================================================

class RetryableError(SyncException):
    """
    Base for errors that may succeed when the operation is attempted again.

    Use this for transient errors like:
    - Dropped or refused connections
    - Network timeouts
    - Transient file/socket I/O failures
    """

    @property
    def retryable(self) -> bool:
        return True


class NonRetryableError(SyncException):
    """
    Base for errors that will fail the same way on every attempt.

    Use this for permanent errors like:
    - Invalid configuration
    - Missing source tables
    - Values that cannot be serialized
    """
    pass


# ============================================================================
# Configuration / Validation Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """
    Exception raised when the sync configuration is invalid or missing.

    Attributes:
        errors: One entry per invalid field, formatted as ``"<field>: <problem>"``
    """

    code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.errors = list(errors or [])
        super().__init__(message, context, original_exception)

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.errors:
            base_msg += " | Invalid fields: " + "; ".join(self.errors)
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class ValidationError(NonRetryableError):
    """Exception raised when a runtime value fails validation."""

    code = "VALIDATION_ERROR"


class SchemaError(NonRetryableError):
    """
    Exception raised when the target schema cannot be derived.

    Context should include:
        - source_table: Table that was introspected
        - target_table: Table that was to be created
    """

    code = "SCHEMA_ERROR"


class SerializationError(NonRetryableError):
    """Exception raised when a value cannot be converted for the target store."""

    code = "SERIALIZATION_ERROR"


class SyncCancelledError(NonRetryableError):
    """Exception raised when a sync is aborted by closing the client."""

    code = "CANCELLED"


# ============================================================================
# Connection / I/O Errors (retryable)
# ============================================================================

class SourceConnectionError(RetryableError):
    """PostgreSQL connection errors that should be retried."""

    code = "PG_CONNECTION_ERROR"


class TargetConnectionError(RetryableError):
    """MotherDuck/DuckDB connection errors that should be retried."""

    code = "MD_CONNECTION_ERROR"


class SyncIOError(RetryableError):
    """Transient I/O errors surfaced by either driver."""

    code = "IO_ERROR"


# ============================================================================
# Query Errors (table scoped, not retryable)
# ============================================================================

class QueryError(SyncException):
    """
    Base exception for a statement that the store rejected.

    Attributes:
        table: Name of the table the statement targeted ("" if none)
    """

    def __init__(
        self,
        table: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.table = table
        context = dict(context or {})
        if table:
            context.setdefault("table", table)
        super().__init__(message, context, original_exception)


class SourceQueryError(QueryError):
    """PostgreSQL query error on a source table."""

    code = "PG_QUERY_ERROR"


class TargetQueryError(QueryError):
    """MotherDuck/DuckDB query error on a target table."""

    code = "MD_QUERY_ERROR"


# ============================================================================
# Sync / Retry Errors
# ============================================================================

class SyncError(SyncException):
    """
    Exception raised when the sync protocol itself is violated.

    Attributes:
        records_synced: Records successfully written before the error
    """

    code = "SYNC_ERROR"

    def __init__(
        self,
        message: str,
        records_synced: int = 0,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.records_synced = records_synced
        context = dict(context or {})
        context.setdefault("records_synced", records_synced)
        super().__init__(message, context, original_exception)


class RetryExhaustedError(SyncException):
    """
    Exception raised when a retryable operation kept failing.

    Attributes:
        attempts: Number of attempts made
        last_error: The error raised by the final attempt
    """

    code = "RETRY_EXHAUSTED"

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.attempts = attempts
        self.last_error = last_error
        context = dict(context or {})
        context.setdefault("attempts", attempts)
        super().__init__(
            f"Operation failed after {attempts} attempts: {message}",
            context,
            original_exception=last_error
        )


def is_retryable(error: BaseException) -> bool:
    """Return True if ``error`` is a connection or I/O error."""
    return isinstance(error, SyncException) and error.retryable
