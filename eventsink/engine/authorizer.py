"""
Authorizer: app id + secret key + table name -> allow or a specific denial.

A pure lookup against the read-only Schema Model; safe to call from any
number of concurrent requests.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from eventsink.domain.schema import App, Schema, Table
from eventsink.errors import InvalidSecret, TableNotPermitted, UnknownApp, UnknownTable


@dataclass(frozen=True)
class Authorization:
    """A granted write of ``app`` into ``table``."""

    app: App
    table: Table

    @property
    def allow_origin(self) -> str:
        return self.app.access_control_allow_origin


class Authorizer:
    def __init__(self, schema: Schema) -> None:
        self._schema = schema

    def authenticate(self, app_id: str, secret_key: str) -> App:
        """
        Resolve the app and check its secret.

        Raises ``UnknownApp`` or ``InvalidSecret``.
        """
        app = self._schema.app(app_id)
        if app is None:
            raise UnknownApp(app_id)
        if not isinstance(secret_key, str) or not secrets.compare_digest(
            secret_key.encode("utf-8"), app.secret_key.encode("utf-8")
        ):
            raise InvalidSecret(app_id)
        return app

    def authorize_table(self, app: App, table_name: str) -> Authorization:
        """
        Check that ``table_name`` exists and ``app`` may write to it.

        Raises ``UnknownTable`` (checked first) or ``TableNotPermitted``.
        """
        table = self._schema.table(table_name)
        if table is None:
            raise UnknownTable(table_name)
        if table_name not in app.tables:
            raise TableNotPermitted(app.app_id, table_name)
        return Authorization(app=app, table=table)

    def authorize(self, app_id: str, secret_key: str, table_name: str) -> Authorization:
        """Full check in order: app, secret, table existence, table permission."""
        app = self.authenticate(app_id, secret_key)
        return self.authorize_table(app, table_name)

    def preflight(self, app_id: str) -> str:
        """CORS origin for an app's preflight response; raises ``UnknownApp``."""
        app = self._schema.app(app_id)
        if app is None:
            raise UnknownApp(app_id)
        return app.access_control_allow_origin


__all__ = ["Authorization", "Authorizer"]
