"""
Schema Model: the immutable, in-memory description of tables, columns and apps.

The model is built once at startup from a ``SchemaDocument`` and is shared
read-only by the reconciler, the authorizer and the validator. Nothing in the
running service reads the configuration document directly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from eventsink.domain.document import AppDocument, SchemaDocument, TableDocument
from eventsink.domain.types import ColumnType
from eventsink.errors import ConfigError

#: Event key naming the destination table when it is not routed from the URL.
TABLE_SELECTOR = "_t"

#: PostgreSQL truncates identifiers beyond NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_LENGTH = 63

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HEADER_NAME = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")


def is_valid_identifier(name: str) -> bool:
    return bool(_IDENTIFIER.match(name)) and len(name) <= MAX_IDENTIFIER_LENGTH


def index_name(table: str, column: str) -> str:
    """Name of the index on ``table.column``; unique per database schema."""
    return f"{table}_{column}_idx"[:MAX_IDENTIFIER_LENGTH]


@dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType = ColumnType.STRING
    header: Optional[str] = None
    indexed: bool = False
    required: bool = False

    @property
    def source(self) -> str:
        """``"body"`` or ``"header:<Name>"``."""
        return f"header:{self.header}" if self.header else "body"

    @property
    def from_header(self) -> bool:
        return self.header is not None


@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[Column, ...]

    def column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def body_columns(self) -> Tuple[Column, ...]:
        return tuple(column for column in self.columns if not column.from_header)

    @property
    def header_columns(self) -> Tuple[Column, ...]:
        return tuple(column for column in self.columns if column.from_header)


@dataclass(frozen=True)
class App:
    app_id: str
    secret_key: str = field(repr=False)
    access_control_allow_origin: str = "*"
    tables: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Schema:
    tables: Mapping[str, Table]
    apps: Mapping[str, App]
    database_url: Optional[str] = field(default=None, repr=False)

    def table(self, name: str) -> Optional[Table]:
        return self.tables.get(name)

    def app(self, app_id: str) -> Optional[App]:
        return self.apps.get(app_id)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_document(cls, document: SchemaDocument) -> "Schema":
        """Build the Schema Model, enforcing every cross-field rule."""
        tables = {
            name: _build_table(name, table_doc) for name, table_doc in document.tables.items()
        }
        _check_index_names(tables.values())
        apps = {
            app_id: _build_app(app_id, app_doc, tables) for app_id, app_doc in document.apps.items()
        }
        return cls(
            tables=MappingProxyType(tables),
            apps=MappingProxyType(apps),
            database_url=document.database_url,
        )

    @classmethod
    def from_mapping(cls, data: object) -> "Schema":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("schema document must be a mapping at the top level")
        try:
            document = SchemaDocument.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"invalid schema document: {exc}") from exc
        return cls.from_document(document)

    @classmethod
    def from_yaml(cls, text: str) -> "Schema":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"schema document is not valid YAML: {exc}") from exc
        return cls.from_mapping(data)


def load_schema(path: Path | str) -> Schema:
    """Read and validate a YAML schema file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read schema file {path}: {exc}") from exc
    return Schema.from_yaml(text)


def _build_table(name: str, document: TableDocument) -> Table:
    if not is_valid_identifier(name):
        raise ConfigError(f"table name {name!r} is not a valid SQL identifier")
    if not document.columns:
        raise ConfigError(f"table {name!r} declares no columns")

    seen = set()
    columns = []
    for column_doc in document.columns:
        column_name = column_doc.name
        if not is_valid_identifier(column_name):
            raise ConfigError(
                f"column name {column_name!r} in table {name!r} is not a valid SQL identifier"
            )
        if column_name == TABLE_SELECTOR:
            raise ConfigError(f"column name {TABLE_SELECTOR!r} in table {name!r} is reserved")
        if column_name in seen:
            raise ConfigError(f"table {name!r} declares column {column_name!r} twice")
        seen.add(column_name)

        try:
            column_type = ColumnType.parse(column_doc.type)
        except ValueError as exc:
            raise ConfigError(f"table {name!r}, column {column_name!r}: {exc}") from None

        if column_doc.header is not None:
            if not _HEADER_NAME.match(column_doc.header):
                raise ConfigError(
                    f"table {name!r}, column {column_name!r}: "
                    f"{column_doc.header!r} is not a valid HTTP header name"
                )
            if column_type is not ColumnType.STRING:
                raise ConfigError(
                    f"table {name!r}, column {column_name!r}: header columns must have type "
                    f"'string', not {column_type.value!r}"
                )

        columns.append(
            Column(
                name=column_name,
                type=column_type,
                header=column_doc.header,
                indexed=column_doc.indexed,
                required=column_doc.required,
            )
        )
    return Table(name=name, columns=tuple(columns))


def _check_index_names(tables: Iterable[Table]) -> None:
    owners: Dict[str, str] = {}
    for table in tables:
        for column in table.columns:
            if not column.indexed:
                continue
            name = index_name(table.name, column.name)
            owner = f"{table.name}.{column.name}"
            if name in owners:
                raise ConfigError(
                    f"indexed columns {owners[name]} and {owner} would share the index "
                    f"name {name!r}; rename one of them"
                )
            owners[name] = owner


def _build_app(app_id: str, document: AppDocument, tables: Mapping[str, Table]) -> App:
    if not app_id:
        raise ConfigError("app id must not be empty")
    if "/" in app_id:
        raise ConfigError(f"app id {app_id!r} may not contain '/'")
    if not document.secret_key:
        raise ConfigError(f"app {app_id!r} has an empty secret_key")
    for table_name in document.tables:
        if table_name not in tables:
            raise ConfigError(f"app {app_id!r} refers to undefined table {table_name!r}")
    return App(
        app_id=app_id,
        secret_key=document.secret_key,
        access_control_allow_origin=document.access_control_allow_origin,
        tables=frozenset(document.tables),
    )


__all__ = [
    "TABLE_SELECTOR",
    "Column",
    "Table",
    "App",
    "Schema",
    "load_schema",
    "index_name",
    "is_valid_identifier",
]
