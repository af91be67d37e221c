from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import typer

from eventsink.config import get_settings
from eventsink.domain.schema import Schema, load_schema
from eventsink.engine.reconciler import reconcile_database
from eventsink.errors import BatchRejected, ConfigError, ReconciliationError
from eventsink.pipeline import bootstrap
from eventsink.reporter import print_plan, print_result, print_schema
from eventsink.response import rejection_payload, result_payload, status_code
from eventsink.utils.logging import configure_logging

app = typer.Typer(help="eventsink: schema-driven analytics event ingestion.")

SchemaOption = typer.Option(
    None,
    "--schema",
    "-s",
    help="Path to the YAML schema file (default: SCHEMA_FILE setting).",
)


def _load(schema_path: Optional[Path]) -> Schema:
    settings = get_settings()
    path = schema_path or Path(settings.schema_file)
    try:
        return load_schema(path)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _parse_headers(values: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    dsn_source = "DATABASE_URL" if settings.database_url else "DB_*"
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} "
        f"(from {dsn_source}) | schema={settings.schema_file} | "
        f"pool=({settings.pool_min_size},{settings.pool_max_size}) "
        f"concurrency={settings.ingest_concurrency} max_events={settings.max_events_per_batch}"
    )


@app.command()
def check(schema_path: Optional[Path] = SchemaOption) -> None:
    """
    Validate the schema file and print its tables and apps.
    """
    schema = _load(schema_path)
    print_schema(schema)
    typer.echo(f"Schema OK: {len(schema.tables)} table(s), {len(schema.apps)} app(s).")


@app.command()
def reconcile(
    schema_path: Optional[Path] = SchemaOption,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Only show the DDL that would be executed."
    ),
) -> None:
    """
    Create missing tables, columns and indexes (never drops or alters).
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    schema = _load(schema_path)
    try:
        plan = reconcile_database(
            schema, dsn=settings.dsn(schema.database_url), dry_run=dry_run
        )
    except ReconciliationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    print_plan(plan, applied=not dry_run)


@app.command()
def ingest(
    app_id: str = typer.Argument(..., help="App identifier."),
    batch_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help='JSON file: {"secret_key": ..., "events": [...]}.'
    ),
    table: Optional[str] = typer.Option(
        None, "--table", "-t", help="Destination table for every event (instead of '_t')."
    ),
    header: List[str] = typer.Option(
        [], "--header", "-H", help="Request header as 'Name: value'; repeatable."
    ),
    pretty: bool = typer.Option(False, "--pretty", help="Render outcomes as a table."),
    schema_path: Optional[Path] = SchemaOption,
) -> None:
    """
    Reconcile the database, then run one batch through the ingestion pipeline.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    headers = _parse_headers(header)
    schema = _load(schema_path)

    try:
        body = json.loads(batch_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        typer.echo(f"error: cannot read batch file {batch_file}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not isinstance(body, dict):
        typer.echo("error: batch file must contain a JSON object", err=True)
        raise typer.Exit(code=1)

    try:
        pipeline = bootstrap(settings, schema)
    except ReconciliationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    try:
        result = pipeline.ingest(
            app_id=app_id,
            secret_key=body.get("secret_key"),
            events=body.get("events"),
            headers=headers,
            table=table,
        )
    except BatchRejected as exc:
        status, payload = rejection_payload(exc)
        typer.echo(json.dumps({"status": status, **payload}, indent=2), err=True)
        raise typer.Exit(code=1) from exc

    if pretty:
        print_result(result)
    else:
        typer.echo(json.dumps({"status": status_code(result), **result_payload(result)}, indent=2))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
