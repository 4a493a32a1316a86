"""
Pydantic schemas for source -> target table mappings
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any


DEFAULT_SYNC_FLAG_COLUMN = "synced_to_motherduck"


class TableMapping(BaseModel):
    """
    Declarative pairing of one PostgreSQL table with one DuckDB table.

    Mappings are frozen: the sync engine reads them but never mutates them.
    ``target_table`` defaults to ``source_table`` when omitted.
    """

    model_config = ConfigDict(frozen=True)

    source_table: str = Field(..., min_length=1, max_length=128)
    target_table: str = Field(..., min_length=1, max_length=128)
    primary_key: List[str] = Field(..., min_length=1)
    sync_flag_column: str = Field(default=DEFAULT_SYNC_FLAG_COLUMN, min_length=1)
    columns: List[str] = Field(default_factory=list, description="Columns to sync (empty = all)")
    column_mappings: Dict[str, str] = Field(default_factory=dict, description="Source -> target column renames")
    filter: Optional[str] = Field(None, description="Raw predicate ANDed to the read query")
    order_by: Optional[str] = Field(None, description="Raw ORDER BY fragment")
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def default_target_table(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("target_table"):
            values = dict(values)
            values["target_table"] = values.get("source_table")
        return values

    @field_validator("source_table", "target_table", "sync_flag_column")
    @classmethod
    def strip_identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identifier must not be blank")
        return v

    @field_validator("primary_key", "columns")
    @classmethod
    def no_blank_columns(cls, v: List[str]) -> List[str]:
        cleaned = [c.strip() for c in v]
        if any(not c for c in cleaned):
            raise ValueError("column names must not be blank")
        return cleaned

    @property
    def checkpoint_column(self) -> str:
        """Source column used to mark rows as synced."""
        return self.primary_key[0]

    def target_column(self, source: str) -> str:
        """Get the target column name for a source column."""
        return self.column_mappings.get(source, source)

    def target_primary_key(self) -> List[str]:
        return [self.target_column(c) for c in self.primary_key]

    def projected_columns(self) -> List[str]:
        """
        Columns to read from the source table.

        Returns an empty list when every column is synced. An explicit
        projection always includes the primary key columns.
        """
        if not self.columns:
            return []
        projected = list(self.columns)
        for pk in self.primary_key:
            if pk not in projected:
                projected.append(pk)
        return projected


class TableEntry(BaseModel):
    """
    Compact table entry used by the SYNC_TABLES_CONFIG environment variable.

    Example:
        {"source": "analytics_daily_stats", "target": "daily_stats", "pk": ["date"]}
    """

    source: str
    target: str
    pk: List[str]
    columns: List[str] = Field(default_factory=list)
    mappings: Dict[str, str] = Field(default_factory=dict)
    order_by: Optional[str] = None
    filter: Optional[str] = None
    enabled: bool = True

    def to_mapping_dict(self, sync_flag_column: str = DEFAULT_SYNC_FLAG_COLUMN) -> Dict[str, Any]:
        return {
            "source_table": self.source,
            "target_table": self.target,
            "primary_key": self.pk,
            "sync_flag_column": sync_flag_column,
            "columns": self.columns,
            "column_mappings": self.mappings,
            "filter": self.filter,
            "order_by": self.order_by,
            "enabled": self.enabled,
        }
