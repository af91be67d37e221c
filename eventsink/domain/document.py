"""
Pydantic models for the YAML schema document.

These models describe the document exactly as written by an operator; they
perform shape validation only (unknown keys, wrong scalar types, defaults).
Cross-references and identifier rules are enforced when the document is
turned into a ``Schema`` (see ``eventsink.domain.schema``).

Example document::

    tables:
      events:
        columns:
          - name: time
            type: timestamp
            indexed: true
          - name: referer
            header: Referer
          - name: event_type
            required: true
    apps:
      com.example.myapp:
        secret_key: qD3eRda0709mD/3kGp4DlJtEQy5aMY0m
        access_control_allow_origin: http://example.com
        tables: [events]
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

_STRICT = {"extra": "forbid", "frozen": True, "populate_by_name": True}


class ColumnDocument(BaseModel):
    name: str = Field(..., description="Column name; must be a valid SQL identifier.")
    type: str = Field("string", description="One of bool, i32, i64, f32, f64, string, timestamp.")
    header: Optional[str] = Field(
        None, description="Populate from this HTTP request header instead of the body."
    )
    indexed: bool = Field(False, description="Create an index on this column.")
    required: bool = Field(False, description="Forbid NULL values.")

    model_config = _STRICT


class TableDocument(BaseModel):
    columns: List[ColumnDocument] = Field(default_factory=list)

    model_config = _STRICT


class AppDocument(BaseModel):
    secret_key: str = Field(..., description="Shared secret sent by the app with every batch.")
    access_control_allow_origin: str = Field("*", description="CORS origin for responses.")
    tables: List[str] = Field(default_factory=list)

    model_config = _STRICT


class SchemaDocument(BaseModel):
    database_url: Optional[str] = None
    tables: Dict[str, TableDocument] = Field(default_factory=dict)
    apps: Dict[str, AppDocument] = Field(default_factory=dict)

    model_config = _STRICT


__all__ = ["ColumnDocument", "TableDocument", "AppDocument", "SchemaDocument"]
