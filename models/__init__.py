"""
Domain value types shared by the sync engine.

Models:
    base: Enums (SyncMode, SyncPhase, CleanMode, SslMode, LogFormat)
    values: SqlValue tagged variant, row classification and SQL literals
    schema: Column types, PostgreSQL -> DuckDB type mapping and DDL

Usage:
    from models.base import SyncMode, SyncPhase
    from models.values import classify, to_sql_literal
    from models.schema import ColumnType, Table
"""

__all__ = [
    "SyncMode",
    "SyncPhase",
    "CleanMode",
    "SqlValue",
    "ValueKind",
    "ColumnType",
    "Column",
    "Table",
    "IntrospectedColumn",
]
