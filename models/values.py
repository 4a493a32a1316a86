"""
Dynamically-typed row values.

Driver values are classified exactly once, at the fetch boundary, into a
``SqlValue`` tagged with one of six kinds. Every conversion site (SQL
literal rendering, checkpoint ids, JSON text) branches over ``ValueKind``
and raises ``SerializationError`` on a kind it does not know.
"""

import enum
import json
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from core.exceptions import SerializationError


class ValueKind(str, enum.Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class SqlValue:
    """
    One column value of a fetched row.

    ``payload`` depends on ``kind``: ``None`` for NULL, ``bool`` for BOOL,
    ``int``/``float``/``Decimal`` for NUMBER, ``str`` for STRING, a tuple of
    ``SqlValue`` for ARRAY and a dict of ``str -> SqlValue`` for OBJECT.
    """

    kind: ValueKind
    payload: Any = None

    @property
    def is_null(self) -> bool:
        return self.kind == ValueKind.NULL


NULL = SqlValue(ValueKind.NULL)

Row = Dict[str, SqlValue]


def classify(value: Any) -> SqlValue:
    """Classify a Python/driver value into a ``SqlValue``."""
    if value is None:
        return NULL
    if isinstance(value, SqlValue):
        return value
    # bool is a subclass of int and must be checked first
    if isinstance(value, bool):
        return SqlValue(ValueKind.BOOL, value)
    if isinstance(value, (int, float, Decimal)):
        return SqlValue(ValueKind.NUMBER, value)
    if isinstance(value, str):
        return SqlValue(ValueKind.STRING, value)
    if isinstance(value, datetime):
        return SqlValue(ValueKind.STRING, value.isoformat(sep=" "))
    if isinstance(value, (date, time)):
        return SqlValue(ValueKind.STRING, value.isoformat())
    if isinstance(value, uuid.UUID):
        return SqlValue(ValueKind.STRING, str(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return SqlValue(ValueKind.STRING, "".join(f"\\x{b:02X}" for b in raw))
    if isinstance(value, (list, tuple)):
        return SqlValue(ValueKind.ARRAY, tuple(classify(v) for v in value))
    if isinstance(value, dict):
        return SqlValue(ValueKind.OBJECT, {str(k): classify(v) for k, v in value.items()})
    return SqlValue(ValueKind.STRING, str(value))


def classify_row(record: Mapping[str, Any], skip_column: Optional[str] = None) -> Row:
    """Build a row from a driver record, dropping ``skip_column``."""
    return {
        name: classify(value)
        for name, value in record.items()
        if name != skip_column
    }


def _number_text(number: Any) -> str:
    if isinstance(number, Decimal):
        return format(number, "f")
    if isinstance(number, float):
        return repr(number)
    return str(number)


def _is_finite(number: Any) -> bool:
    if isinstance(number, Decimal):
        return number.is_finite()
    if isinstance(number, float):
        return math.isfinite(number)
    return True


def _non_finite_text(number: Any) -> str:
    if isinstance(number, Decimal):
        number = float(number)
    if math.isnan(number):
        return "NaN"
    return "Infinity" if number > 0 else "-Infinity"


def to_python(value: SqlValue) -> Any:
    """
    Convert a ``SqlValue`` back into plain JSON-compatible Python data.

    Non-finite numbers become the strings ``"NaN"``, ``"Infinity"`` and
    ``"-Infinity"``, matching their scalar literal form.
    """
    kind = value.kind
    if kind == ValueKind.NULL:
        return None
    if kind == ValueKind.BOOL:
        return value.payload
    if kind == ValueKind.NUMBER:
        number = value.payload
        if not _is_finite(number):
            return _non_finite_text(number)
        if isinstance(number, Decimal):
            return int(number) if number == number.to_integral_value() else float(number)
        return number
    if kind == ValueKind.STRING:
        return value.payload
    if kind == ValueKind.ARRAY:
        return [to_python(v) for v in value.payload]
    if kind == ValueKind.OBJECT:
        return {k: to_python(v) for k, v in value.payload.items()}
    raise SerializationError(f"Unknown value kind: {kind!r}")


def to_json_text(value: SqlValue) -> str:
    """Canonical JSON text: compact separators, sorted keys."""
    try:
        return json.dumps(
            to_python(value),
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
            allow_nan=False
        )
    except ValueError as e:
        raise SerializationError(
            "Structured value is not representable as JSON",
            context={"kind": value.kind.value},
            original_exception=e
        )


def quote_literal(text: str) -> str:
    """Single-quote ``text`` for SQL, doubling embedded quotes."""
    return "'" + text.replace("'", "''") + "'"


def to_sql_literal(value: SqlValue) -> str:
    """
    Render a value as a SQL literal.

    Quoting doubles every embedded single quote, which is the only escaping
    DuckDB's string literal syntax requires.
    """
    kind = value.kind
    if kind == ValueKind.NULL:
        return "NULL"
    if kind == ValueKind.BOOL:
        return "TRUE" if value.payload else "FALSE"
    if kind == ValueKind.NUMBER:
        if not _is_finite(value.payload):
            return quote_literal(_non_finite_text(value.payload))
        return _number_text(value.payload)
    if kind == ValueKind.STRING:
        return quote_literal(value.payload)
    if kind in (ValueKind.ARRAY, ValueKind.OBJECT):
        return quote_literal(to_json_text(value))
    raise SerializationError(f"Unknown value kind: {kind!r}")


def to_checkpoint_id(value: SqlValue) -> Optional[str]:
    """
    Textual form of a primary key value, compared against ``pk::text``.

    Returns None for NULL, meaning the row cannot be checkpointed.
    """
    kind = value.kind
    if kind == ValueKind.NULL:
        return None
    if kind == ValueKind.BOOL:
        return "true" if value.payload else "false"
    if kind == ValueKind.NUMBER:
        if not _is_finite(value.payload):
            return _non_finite_text(value.payload)
        return _number_text(value.payload)
    if kind == ValueKind.STRING:
        return value.payload
    if kind in (ValueKind.ARRAY, ValueKind.OBJECT):
        return to_json_text(value)
    raise SerializationError(f"Unknown value kind: {kind!r}")
