"""
Column type system.

Each ``ColumnType`` member knows three things:

- which JSON values it accepts and how they are coerced into a Python value
  that psycopg can bind (``ColumnType.coerce``),
- the PostgreSQL type used in DDL (``ColumnType.sql_type``),
- the ``information_schema.columns.data_type`` spelling of that type, used by
  the reconciler to detect drift (``ColumnType.catalog_type``).

Coercion never truncates or rounds: a JSON float for an integer column, an
out-of-range integer, or a malformed timestamp string is a ``TypeMismatch``.
"""

from __future__ import annotations

import enum
import math
import re
import struct
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Tuple

from eventsink.errors import TypeMismatch

I32_MIN, I32_MAX = -(2**31), 2**31 - 1
I64_MIN, I64_MAX = -(2**63), 2**63 - 1
F32_MAX = 3.4028234663852886e38

_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


class ColumnType(str, enum.Enum):
    BOOL = "bool"
    I32 = "i32"
    I64 = "i64"
    F32 = "f32"
    F64 = "f64"
    STRING = "string"
    TIMESTAMP = "timestamp"

    @property
    def sql_type(self) -> str:
        """PostgreSQL type name used in CREATE TABLE / ADD COLUMN."""
        return _SQL_TYPES[self][0]

    @property
    def catalog_type(self) -> str:
        """``information_schema.columns.data_type`` for this type."""
        return _SQL_TYPES[self][1]

    def coerce(self, value: Any, column: str) -> Any:
        """
        Validate a non-null JSON value and return its coerced Python form.

        Raises
        ------
        TypeMismatch
            If the JSON value's kind is not accepted by this type or it does
            not fit the type's range.
        """
        return _COERCERS[self](value, column)

    @classmethod
    def parse(cls, name: str) -> "ColumnType":
        try:
            return cls(name)
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ValueError(f"unknown column type {name!r} (expected one of: {valid})") from None


def json_kind(value: Any) -> str:
    """Name the JSON kind of a decoded value, for error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_bool(value: Any, column: str) -> bool:
    if isinstance(value, bool):
        return value
    raise TypeMismatch(column, ColumnType.BOOL.value, json_kind(value))


def _integer_coercer(
    member: ColumnType, bounds: Tuple[int, int]
) -> Callable[[Any, str], int]:
    low, high = bounds

    def coerce(value: Any, column: str) -> int:
        if not isinstance(value, int) or isinstance(value, bool):
            detail = "fractional numbers are not integers" if isinstance(value, float) else None
            raise TypeMismatch(column, member.value, json_kind(value), detail)
        if not low <= value <= high:
            raise TypeMismatch(column, member.value, "number", f"{value} is out of range")
        return value

    return coerce


def _rounds_to_zero_as_float32(value: float) -> bool:
    return value != 0.0 and struct.unpack("f", struct.pack("f", value))[0] == 0.0


def _float_coercer(
    member: ColumnType, limit: float, single_precision: bool = False
) -> Callable[[Any, str], float]:
    def coerce(value: Any, column: str) -> float:
        if not _is_number(value):
            raise TypeMismatch(column, member.value, json_kind(value))
        try:
            result = float(value)
        except OverflowError:
            raise TypeMismatch(column, member.value, "number", "out of range") from None
        if not math.isfinite(result):
            raise TypeMismatch(column, member.value, "number", "not a finite number")
        if abs(result) > limit:
            raise TypeMismatch(column, member.value, "number", f"{value} is out of range")
        # PostgreSQL rejects a nonzero float8 that becomes 0 as float4.
        if single_precision and _rounds_to_zero_as_float32(result):
            raise TypeMismatch(column, member.value, "number", f"{value} underflows {member.value}")
        return result

    return coerce


def _coerce_string(value: Any, column: str) -> str:
    if not isinstance(value, str):
        raise TypeMismatch(column, ColumnType.STRING.value, json_kind(value))
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        # JSON allows lone surrogate escapes such as "\ud800"
        raise TypeMismatch(
            column, ColumnType.STRING.value, "string", "not valid UTF-8"
        ) from None
    return value


def parse_rfc3339(text: str) -> datetime:
    """
    Parse an RFC 3339 date-time into an aware ``datetime``.

    A UTC offset (``Z`` or ``+hh:mm``) is mandatory; naive timestamps are
    ambiguous and rejected. Fractional seconds are kept to microseconds.
    """
    match = _RFC3339.match(text)
    if not match:
        raise ValueError(f"{text!r} is not an RFC 3339 date-time")
    fraction = match.group("fraction")
    offset = match.group("offset")
    normalized = "{}T{}{}{}".format(
        match.group("date"),
        match.group("time"),
        f".{fraction[:6].ljust(6, '0')}" if fraction else "",
        "+00:00" if offset in ("Z", "z") else offset,
    )
    return datetime.fromisoformat(normalized)


def _coerce_timestamp(value: Any, column: str) -> datetime:
    expected = ColumnType.TIMESTAMP.value
    if _is_number(value):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise TypeMismatch(column, expected, "number", f"{value} is out of range") from None
    if isinstance(value, str):
        try:
            return parse_rfc3339(value)
        except ValueError as exc:
            raise TypeMismatch(column, expected, "string", str(exc)) from None
    raise TypeMismatch(column, expected, json_kind(value))


_SQL_TYPES: Dict[ColumnType, Tuple[str, str]] = {
    ColumnType.BOOL: ("BOOLEAN", "boolean"),
    ColumnType.I32: ("INTEGER", "integer"),
    ColumnType.I64: ("BIGINT", "bigint"),
    ColumnType.F32: ("REAL", "real"),
    ColumnType.F64: ("DOUBLE PRECISION", "double precision"),
    ColumnType.STRING: ("VARCHAR", "character varying"),
    ColumnType.TIMESTAMP: ("TIMESTAMP WITH TIME ZONE", "timestamp with time zone"),
}

_COERCERS: Dict[ColumnType, Callable[[Any, str], Any]] = {
    ColumnType.BOOL: _coerce_bool,
    ColumnType.I32: _integer_coercer(ColumnType.I32, (I32_MIN, I32_MAX)),
    ColumnType.I64: _integer_coercer(ColumnType.I64, (I64_MIN, I64_MAX)),
    ColumnType.F32: _float_coercer(ColumnType.F32, F32_MAX, single_precision=True),
    ColumnType.F64: _float_coercer(ColumnType.F64, math.inf),
    ColumnType.STRING: _coerce_string,
    ColumnType.TIMESTAMP: _coerce_timestamp,
}


__all__ = ["ColumnType", "json_kind", "parse_rfc3339"]
