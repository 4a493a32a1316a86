"""
Core utilities and configuration for the sync service.

Modules:
    config: Environment settings and validated sync configuration
    database: Source engine and target connection factories
    exceptions: Sync error hierarchy (retryable vs non-retryable)
    logging: Logging configuration (text or JSON lines)
    retry: Exponential backoff for connection and I/O errors

Usage:
    from core.config import settings, SyncConfig
    from core.exceptions import SyncException, ConfigurationError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "setup_logging",
    "SyncConfig",
    "build_sync_config",
    "BackoffPolicy",
    "retry_async",
    # Exceptions
    "SyncException",
    "RetryableError",
    "NonRetryableError",
    "ConfigurationError",
    "SourceConnectionError",
    "TargetConnectionError",
    "SourceQueryError",
    "TargetQueryError",
    "SchemaError",
    "ValidationError",
    "SerializationError",
    "SyncError",
    "RetryExhaustedError",
    "SyncCancelledError",
    "SyncIOError",
]
