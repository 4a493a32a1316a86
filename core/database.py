"""
Connection factories for the source (SQLAlchemy async) and target (DuckDB) stores
"""

import logging

import duckdb
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.config import SourceConfig, TargetConfig, mask_url
from core.exceptions import TargetConnectionError, TargetQueryError
from models.base import SslMode
from models.schema import quote_identifier

logger = logging.getLogger(__name__)


def source_url(raw_url: str):
    """Normalise a postgres:// URL for the asyncpg driver."""
    url = make_url(raw_url)
    url = url.set(drivername="postgresql+asyncpg")
    # asyncpg takes ssl through connect_args, not as a query parameter
    return url.difference_update_query(["sslmode"])


def create_source_engine(config: SourceConfig) -> AsyncEngine:
    """Create the async engine for the PostgreSQL source store."""
    connect_args = {"timeout": config.connect_timeout_secs}
    if config.ssl_mode == SslMode.DISABLE:
        connect_args["ssl"] = False
    else:
        connect_args["ssl"] = config.ssl_mode.value

    logger.info(f"Creating PostgreSQL engine for {mask_url(config.url)}")
    return create_async_engine(
        source_url(config.url),
        pool_size=config.pool_size,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def connect_target(config: TargetConfig) -> "duckdb.DuckDBPyConnection":
    """
    Open a blocking DuckDB connection for the target store.

    Run it through ``asyncio.to_thread`` from async code.
    """
    if config.local_path:
        logger.info(f"Connecting to local DuckDB database: {config.local_path}")
        try:
            return duckdb.connect(config.local_path)
        except duckdb.Error as e:
            raise TargetConnectionError(
                "Failed to open local DuckDB database",
                context={"path": config.local_path},
                original_exception=e
            )

    logger.info("Connecting to MotherDuck...")

    if config.create_database:
        try:
            init_conn = duckdb.connect(f"md:?motherduck_token={config.token}")
        except duckdb.Error as e:
            raise TargetConnectionError("Failed to connect to MotherDuck", original_exception=e)
        try:
            init_conn.execute(f"CREATE DATABASE IF NOT EXISTS {quote_identifier(config.database)}")
        except duckdb.Error as e:
            raise TargetQueryError("", "Failed to create database", original_exception=e)
        finally:
            init_conn.close()
        logger.info(f"Ensured database exists: {config.database}")

    try:
        conn = duckdb.connect(f"md:{config.database}?motherduck_token={config.token}")
    except duckdb.Error as e:
        raise TargetConnectionError(
            "Failed to connect to database",
            context={"database": config.database},
            original_exception=e
        )

    logger.info(f"Connected to MotherDuck database: {config.database}")
    return conn
