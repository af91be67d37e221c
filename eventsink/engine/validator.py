"""
Event Validator: turns one decoded JSON event into a ``TypedRow``.

Columns are processed in the table's declared order so that the first
offending column is reported deterministically. Validation is a pure function
of (table, event, headers); it has no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from eventsink.domain.schema import TABLE_SELECTOR, Column, Table
from eventsink.errors import MissingRequiredField, UnknownField


@dataclass(frozen=True)
class TypedRow:
    """Validated, coerced column values of one event, in table column order."""

    table: str
    items: Tuple[Tuple[str, Any], ...]

    @property
    def columns(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.items)

    @property
    def values(self) -> Tuple[Any, ...]:
        return tuple(value for _, value in self.items)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.items)


def normalize_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Lower-case header names so lookups are case-insensitive."""
    if not headers:
        return {}
    return {str(name).lower(): value for name, value in headers.items()}


def _header_value(column: Column, header: str, headers: Mapping[str, str]) -> Optional[str]:
    value = headers.get(header.lower())
    if value is None:
        if column.required:
            raise MissingRequiredField(column.name, source=column.source)
        return None
    return value


def _body_value(column: Column, event: Mapping[str, Any]) -> Any:
    raw = event.get(column.name)
    if raw is None:
        if column.required:
            raise MissingRequiredField(column.name)
        return None
    return column.type.coerce(raw, column.name)


def validate_event(
    table: Table,
    event: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> TypedRow:
    """
    Validate ``event`` against ``table`` and return the coerced row.

    Parameters
    ----------
    table : Table
        Destination table definition.
    event : Mapping[str, Any]
        Decoded JSON object. The table selector key ``_t`` is ignored.
    headers : Mapping[str, str] | None
        Request headers; names are matched case-insensitively.

    Raises
    ------
    MissingRequiredField
        A required column is absent (or null) in the body or headers.
    TypeMismatch
        A body value does not match its column type.
    UnknownField
        The event has a key that is not a body column of ``table``.
    """
    lowered = normalize_headers(headers)
    items = []
    consumed = {TABLE_SELECTOR}
    for column in table.columns:
        if column.header is not None:
            value = _header_value(column, column.header, lowered)
        else:
            value = _body_value(column, event)
            consumed.add(column.name)
        items.append((column.name, value))

    for key in event:
        if key not in consumed:
            raise UnknownField(str(key), table.name)

    return TypedRow(table=table.name, items=tuple(items))


__all__ = ["TypedRow", "normalize_headers", "validate_event"]
