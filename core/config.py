"""
Application configuration using Pydantic Settings

``Settings`` reads the process environment (and ``.env``). ``SyncConfig``
is the validated configuration value the sync engine consumes; build it
with ``build_sync_config`` or ``SyncConfig.from_settings``.
"""

import base64
import binascii
import json
import logging
from typing import Optional, List, Dict, Any, Mapping

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from core.exceptions import ConfigurationError
from models.base import LogFormat, SslMode
from schemas.mapping import DEFAULT_SYNC_FLAG_COLUMN, TableEntry, TableMapping

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Source (PostgreSQL)
    DATABASE_URL: Optional[str] = None
    POSTGRES_URL: Optional[str] = None
    POSTGRES_POOL_SIZE: int = 5
    POSTGRES_CONNECT_TIMEOUT_SECS: int = 30
    POSTGRES_SSL_MODE: str = "prefer"

    # Target (MotherDuck / DuckDB)
    MOTHERDUCK_TOKEN: Optional[str] = None
    MOTHERDUCK_DATABASE: str = "analytics"
    MOTHERDUCK_SCHEMA: str = "main"
    MOTHERDUCK_CREATE_DATABASE: bool = True
    DUCKDB_PATH: Optional[str] = None

    # Sync behaviour
    SYNC_MODE: str = "incremental"
    SYNC_BATCH_SIZE: int = 1000
    SYNC_MAX_RECORDS: int = 0
    SYNC_MARK_SYNCED: bool = True
    SYNC_USE_TRANSACTIONS: bool = True
    SYNC_AUTO_CREATE_TABLES: bool = True
    SYNC_FLAG_COLUMN: str = DEFAULT_SYNC_FLAG_COLUMN
    SYNC_INTERVAL_MINUTES: int = 30
    SYNC_TABLES_CONFIG: Optional[str] = None
    SYNC_TABLES_JSON: Optional[str] = None
    SYNC_AUXILIARY_TABLES_JSON: Optional[str] = None

    # Retry
    MAX_RETRIES: int = 3
    RETRY_INITIAL_BACKOFF_MS: int = 1000
    RETRY_MAX_BACKOFF_MS: int = 60000
    RETRY_MULTIPLIER: float = 2.0
    RETRY_JITTER: bool = True

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()


# ============================================================================
# Sync configuration
# ============================================================================

class SourceConfig(BaseModel):
    """PostgreSQL connection configuration."""

    url: str = Field(..., min_length=1)
    pool_size: int = Field(default=5, ge=1, le=100)
    connect_timeout_secs: int = Field(default=30, ge=1)
    ssl_mode: SslMode = SslMode.PREFER

    @field_validator("url")
    @classmethod
    def check_scheme(cls, v: str) -> str:
        scheme = v.split("://", 1)[0] if "://" in v else ""
        if not scheme.startswith("postgres"):
            raise ValueError("must be a postgres:// or postgresql:// URL")
        return v


class TargetConfig(BaseModel):
    """
    MotherDuck connection configuration.

    Setting ``local_path`` connects to a local DuckDB file (or ``:memory:``)
    instead of MotherDuck, in which case no token is needed.
    """

    token: Optional[str] = Field(default=None, repr=False)
    database: str = Field(default="analytics", min_length=1, max_length=128)
    schema_name: str = Field(default="main", min_length=1)
    create_database: bool = True
    local_path: Optional[str] = None

    @model_validator(mode="after")
    def require_token(self) -> "TargetConfig":
        if not self.local_path and not self.token:
            raise ValueError("token is required unless local_path is set")
        return self


class SyncBehaviorConfig(BaseModel):
    """Sync behaviour configuration."""

    batch_size: int = Field(default=1000, ge=1, le=100000)
    use_transactions: bool = True
    mark_synced: bool = True
    sync_flag_column: str = Field(default=DEFAULT_SYNC_FLAG_COLUMN, min_length=1)
    auto_create_tables: bool = True
    max_records: int = Field(default=0, ge=0, description="0 = unlimited")


class RetryConfig(BaseModel):
    """Exponential backoff configuration for connection and I/O errors."""

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_backoff_ms: int = Field(default=1000, ge=0)
    max_backoff_ms: int = Field(default=60000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    max_elapsed_secs: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "RetryConfig":
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError("max_backoff_ms must be >= initial_backoff_ms")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: LogFormat = LogFormat.TEXT
    timestamps: bool = True

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level


class SyncConfig(BaseModel):
    """
    Complete, validated configuration for a ``SyncClient``.

    ``auxiliary_tables`` holds ``CREATE TABLE IF NOT EXISTS`` statements for
    analytical tables that are not mirrored from a source table; they are
    created on every run when ``sync.auto_create_tables`` is on.
    """

    source: SourceConfig
    target: TargetConfig
    sync: SyncBehaviorConfig = Field(default_factory=SyncBehaviorConfig)
    tables: List[TableMapping] = Field(default_factory=list)
    auxiliary_tables: List[str] = Field(default_factory=list)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="before")
    @classmethod
    def default_sync_flag_column(cls, values: Any) -> Any:
        """Mappings without their own sync flag column use ``sync.sync_flag_column``."""
        if not isinstance(values, dict):
            return values
        sync = values.get("sync")
        if isinstance(sync, SyncBehaviorConfig):
            flag = sync.sync_flag_column
        elif isinstance(sync, dict):
            flag = sync.get("sync_flag_column")
        else:
            flag = None
        tables = values.get("tables")
        if not flag or not isinstance(tables, list):
            return values

        values = dict(values)
        values["tables"] = [
            {**table, "sync_flag_column": flag}
            if isinstance(table, dict) and not table.get("sync_flag_column") else table
            for table in tables
        ]
        return values

    def enabled_tables(self) -> List[TableMapping]:
        return [t for t in self.tables if t.enabled]

    @classmethod
    def from_settings(cls, env: Optional[Settings] = None) -> "SyncConfig":
        """Build the sync configuration from environment settings."""
        env = env or settings
        return build_sync_config(settings_to_dict(env))


def _format_errors(exc: PydanticValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "config"
        errors.append(f"{location}: {err['msg']}")
    return errors


def build_sync_config(data: Mapping[str, Any]) -> SyncConfig:
    """
    Validate raw configuration data into a ``SyncConfig``.

    Raises:
        ConfigurationError: listing every invalid field, not just the first
    """
    try:
        config = SyncConfig.model_validate(dict(data))
    except PydanticValidationError as e:
        errors = _format_errors(e)
        raise ConfigurationError(
            f"Config validation failed ({len(errors)} invalid field(s))",
            errors=errors,
            original_exception=e
        )

    logger.debug(f"Validated sync config with {len(config.tables)} table mapping(s)")
    return config


def tables_from_env(env: Settings) -> List[Dict[str, Any]]:
    """
    Load table mappings from SYNC_TABLES_CONFIG (base64 JSON) or
    SYNC_TABLES_JSON (plain JSON, for local development).

    Returns:
        List of mapping dictionaries ready for ``TableMapping`` validation;
        empty when neither variable is set.
    """
    if env.SYNC_TABLES_CONFIG:
        try:
            raw = base64.b64decode(env.SYNC_TABLES_CONFIG, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(
                "Failed to decode SYNC_TABLES_CONFIG",
                errors=["SYNC_TABLES_CONFIG: not valid base64-encoded UTF-8"],
                original_exception=e
            )
    elif env.SYNC_TABLES_JSON:
        raw = env.SYNC_TABLES_JSON
    else:
        return []

    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            "Failed to parse table config JSON",
            errors=[f"SYNC_TABLES: {e}"],
            original_exception=e
        )

    if not isinstance(entries, list):
        raise ConfigurationError(
            "Table config must be a JSON array",
            errors=["SYNC_TABLES: expected a JSON array of table entries"]
        )

    mappings = []
    errors = []
    for index, entry in enumerate(entries):
        try:
            parsed = TableEntry.model_validate(entry)
        except PydanticValidationError as e:
            errors.extend(f"tables.{index}.{msg}" for msg in _format_errors(e))
            continue
        mappings.append(parsed.to_mapping_dict(env.SYNC_FLAG_COLUMN))

    if errors:
        raise ConfigurationError("Invalid table entries in table config", errors=errors)

    logger.info(f"Loaded {len(mappings)} tables from environment")
    return mappings


def settings_to_dict(env: Settings) -> Dict[str, Any]:
    """Translate flat environment settings into nested config data."""
    auxiliary: List[str] = []
    if env.SYNC_AUXILIARY_TABLES_JSON:
        try:
            auxiliary = json.loads(env.SYNC_AUXILIARY_TABLES_JSON)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                "Failed to parse SYNC_AUXILIARY_TABLES_JSON",
                errors=[f"SYNC_AUXILIARY_TABLES_JSON: {e}"],
                original_exception=e
            )

    return {
        "source": {
            "url": env.DATABASE_URL or env.POSTGRES_URL or "",
            "pool_size": env.POSTGRES_POOL_SIZE,
            "connect_timeout_secs": env.POSTGRES_CONNECT_TIMEOUT_SECS,
            "ssl_mode": env.POSTGRES_SSL_MODE,
        },
        "target": {
            "token": env.MOTHERDUCK_TOKEN,
            "database": env.MOTHERDUCK_DATABASE,
            "schema_name": env.MOTHERDUCK_SCHEMA,
            "create_database": env.MOTHERDUCK_CREATE_DATABASE,
            "local_path": env.DUCKDB_PATH,
        },
        "sync": {
            "batch_size": env.SYNC_BATCH_SIZE,
            "use_transactions": env.SYNC_USE_TRANSACTIONS,
            "mark_synced": env.SYNC_MARK_SYNCED,
            "sync_flag_column": env.SYNC_FLAG_COLUMN,
            "auto_create_tables": env.SYNC_AUTO_CREATE_TABLES,
            "max_records": env.SYNC_MAX_RECORDS,
        },
        "tables": tables_from_env(env),
        "auxiliary_tables": auxiliary,
        "retry": {
            "max_retries": env.MAX_RETRIES,
            "initial_backoff_ms": env.RETRY_INITIAL_BACKOFF_MS,
            "max_backoff_ms": env.RETRY_MAX_BACKOFF_MS,
            "multiplier": env.RETRY_MULTIPLIER,
            "jitter": env.RETRY_JITTER,
        },
        "logging": {
            "level": env.LOG_LEVEL,
            "format": env.LOG_FORMAT,
        },
    }


def mask_url(url: str) -> str:
    """Mask the password of a connection URL for logging."""
    if "://" not in url or "@" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    if ":" not in credentials:
        return url
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
