"""
Schema types, PostgreSQL -> DuckDB type mapping and DDL generation.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import List, Optional


def quote_identifier(name: str) -> str:
    """Double-quote an identifier; dotted names are quoted per part."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in name.split("."))


class ColumnType(str, enum.Enum):
    """Column types supported by both PostgreSQL and DuckDB"""
    BOOLEAN = "BOOLEAN"
    SMALLINT = "SMALLINT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    REAL = "REAL"
    DOUBLE = "DOUBLE"
    DECIMAL = "DECIMAL(38,9)"
    VARCHAR = "VARCHAR"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMPTZ = "TIMESTAMPTZ"
    JSON = "JSON"
    BLOB = "BLOB"

    def to_duckdb(self) -> str:
        return self.value

    @classmethod
    def from_postgres(cls, pg_type: str) -> "ColumnType":
        """
        Map a PostgreSQL type name to a DuckDB column type.

        The mapping is total: unrecognised types (hstore, arrays, enums,
        geometry, ...) fall back to VARCHAR.
        """
        normalized = _normalize_type_name(pg_type)
        mapped = _POSTGRES_TYPES.get(normalized)
        if mapped is not None:
            return mapped
        return cls.VARCHAR


def _normalize_type_name(pg_type: str) -> str:
    # "character varying(255)" -> "character varying", "numeric(10, 2)" -> "numeric"
    without_modifiers = re.sub(r"\(.*?\)", "", pg_type or "")
    return " ".join(without_modifiers.lower().split())


_POSTGRES_TYPES = {
    "boolean": ColumnType.BOOLEAN,
    "bool": ColumnType.BOOLEAN,
    "smallint": ColumnType.SMALLINT,
    "int2": ColumnType.SMALLINT,
    "integer": ColumnType.INTEGER,
    "int": ColumnType.INTEGER,
    "int4": ColumnType.INTEGER,
    "bigint": ColumnType.BIGINT,
    "int8": ColumnType.BIGINT,
    "real": ColumnType.REAL,
    "float4": ColumnType.REAL,
    "double precision": ColumnType.DOUBLE,
    "float8": ColumnType.DOUBLE,
    "numeric": ColumnType.DECIMAL,
    "decimal": ColumnType.DECIMAL,
    "char": ColumnType.VARCHAR,
    "character": ColumnType.VARCHAR,
    "bpchar": ColumnType.VARCHAR,
    "character varying": ColumnType.VARCHAR,
    "varchar": ColumnType.VARCHAR,
    "text": ColumnType.VARCHAR,
    "date": ColumnType.DATE,
    "time": ColumnType.TIME,
    "time without time zone": ColumnType.TIME,
    "timestamp": ColumnType.TIMESTAMP,
    "timestamp without time zone": ColumnType.TIMESTAMP,
    "timestamp with time zone": ColumnType.TIMESTAMPTZ,
    "timestamptz": ColumnType.TIMESTAMPTZ,
    "uuid": ColumnType.VARCHAR,
    "json": ColumnType.JSON,
    "jsonb": ColumnType.JSON,
    "bytea": ColumnType.BLOB,
}


@dataclass(frozen=True)
class IntrospectedColumn:
    """Schema introspection result for one source column."""
    name: str
    pg_type: str
    nullable: bool = True
    default: Optional[str] = None
    is_primary_key: bool = False

    def to_column(self, name: Optional[str] = None) -> "Column":
        return Column(
            name=name or self.name,
            column_type=ColumnType.from_postgres(self.pg_type),
            nullable=self.nullable,
        )


@dataclass
class Column:
    name: str
    column_type: ColumnType
    nullable: bool = True
    default: Optional[str] = None

    def to_ddl(self) -> str:
        parts = [quote_identifier(self.name), self.column_type.to_duckdb()]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


@dataclass
class Table:
    """Target table definition."""
    name: str
    columns: List[Column] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)

    def get_column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_duckdb_ddl(self) -> str:
        """Generate CREATE TABLE IF NOT EXISTS DDL for DuckDB/MotherDuck."""
        definitions = [f"    {c.to_ddl()}" for c in self.columns]
        if self.primary_key:
            keys = ", ".join(quote_identifier(k) for k in self.primary_key)
            definitions.append(f"    PRIMARY KEY ({keys})")
        body = ",\n".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.name)} (\n{body}\n)"


SYNC_METADATA_TABLE = Table(
    name="sync_metadata",
    columns=[
        Column("table_name", ColumnType.VARCHAR, nullable=False),
        Column("last_sync_at", ColumnType.TIMESTAMPTZ),
        Column("records_synced", ColumnType.BIGINT),
        Column("sync_mode", ColumnType.VARCHAR),
    ],
    primary_key=["table_name"],
)
