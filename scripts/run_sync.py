"""
Script to run one PostgreSQL -> MotherDuck sync for all configured tables
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import SyncConfig, mask_url, settings
from core.exceptions import ConfigurationError, SyncException
from core.logging import setup_logging
from models.base import SyncMode
from sync.runner import SyncClient

logger = logging.getLogger(__name__)


async def run_sync() -> int:
    """Run one sync; returns the process exit code"""

    try:
        config = SyncConfig.from_settings(settings)
    except ConfigurationError as e:
        setup_logging()
        logger.error(str(e))
        return 2

    setup_logging(config.logging.level, config.logging.format.value, config.logging.timestamps)

    if not config.enabled_tables():
        logger.warning("No tables configured. Set SYNC_TABLES_CONFIG or SYNC_TABLES_JSON.")
        return 0

    mode = SyncMode(settings.SYNC_MODE)
    logger.info(f"Source: {mask_url(config.source.url)}")
    logger.info(f"Target: {config.target.local_path or 'md:' + config.target.database}")

    try:
        client = await SyncClient.connect(config)
    except SyncException as e:
        logger.error(f"Connection failed: {e.message}", extra={"error_context": e.to_dict()})
        return 1

    async with client:
        try:
            result = await client.sync(mode)
        except SyncException as e:
            logger.error(f"Sync failed: {e.message}", extra={"error_context": e.to_dict()})
            return 1

    for name, table in result.tables.items():
        if table.success:
            logger.info(
                f"{name} -> {table.target_table}: {table.records_synced} synced, "
                f"{table.records_failed} failed ({table.duration_ms}ms)"
            )
        else:
            logger.error(f"{name} -> {table.target_table}: FAILED - {table.error}")

    logger.info(
        f"Sync {'succeeded' if result.success else 'failed'}: "
        f"{result.total_records()} records in {result.duration_ms}ms"
    )
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(run_sync()))
