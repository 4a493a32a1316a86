"""
Schema reconciliation: make sure a target table exists for a mapping.
"""

import logging
from typing import List

from core.exceptions import SchemaError
from models.schema import IntrospectedColumn, Table
from schemas.mapping import TableMapping

logger = logging.getLogger(__name__)


def build_target_table(mapping: TableMapping, columns: List[IntrospectedColumn]) -> Table:
    """
    Translate introspected source columns into a target table definition.

    The projection (when set) restricts the columns, and every column is
    renamed through ``column_mappings``.

    Raises:
        SchemaError: If no column survives the projection, or a primary key
            column is missing from the source table
    """
    projected = mapping.projected_columns()
    if projected:
        wanted = set(projected)
        columns = [c for c in columns if c.name in wanted]

    if not columns:
        raise SchemaError(
            f"Source table {mapping.source_table} has no columns or doesn't exist",
            context={"table": mapping.source_table}
        )

    available = {c.name for c in columns}
    missing = [pk for pk in mapping.primary_key if pk not in available]
    if missing:
        raise SchemaError(
            f"Primary key column(s) {', '.join(missing)} not found in {mapping.source_table}",
            context={"table": mapping.source_table, "missing": missing}
        )

    table = Table(
        name=mapping.target_table,
        columns=[
            c.to_column(mapping.target_column(c.name))
            for c in columns
            if c.name != mapping.sync_flag_column
        ],
        primary_key=mapping.target_primary_key(),
    )

    # The sync flag column is never mirrored, so it cannot be a key column
    if any(table.get_column(pk) is None for pk in table.primary_key):
        raise SchemaError(
            f"Primary key of {mapping.source_table} includes the sync flag column {mapping.sync_flag_column}",
            context={"table": mapping.source_table}
        )
    return table


class SchemaReconciler:
    """
    Ensures a target table exists whose columns mirror the source table.

    An existing target table is left untouched: schema drift is not
    detected or corrected.
    """

    def __init__(self, source, target):
        self.source = source
        self.target = target

    async def reconcile(self, mapping: TableMapping) -> bool:
        """
        Create the target table for ``mapping`` if it does not exist.

        Returns:
            True if the table was created, False if it already existed
        """
        if await self.target.table_exists(mapping.target_table):
            logger.debug(f"Target table {mapping.target_table} already exists")
            return False

        logger.info(f"Introspecting schema for {mapping.source_table}")
        columns = await self.source.introspect(mapping.source_table)

        table = build_target_table(mapping, columns)
        await self.target.create_table(table)

        logger.info(
            f"Created target table {mapping.target_table} with {len(table.columns)} "
            f"columns from source {mapping.source_table}"
        )
        return True
