from __future__ import annotations

from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from eventsink.domain.schema import Schema
from eventsink.engine.reconciler import ReconciliationPlan
from eventsink.pipeline import IngestResult


def print_schema(schema: Schema, console: Optional[Console] = None) -> None:
    """
    Render the configured tables (one rich table each) and the app registry.
    """
    console = console or Console()

    if not schema.tables:
        console.print("[yellow]No tables configured.[/yellow]")

    for table_def in schema.tables.values():
        table = Table(title=f"Table [bold]{table_def.name}[/bold]", box=box.ROUNDED)
        table.add_column("Column", style="cyan", no_wrap=True)
        table.add_column("Type", style="magenta")
        table.add_column("Source", style="green")
        table.add_column("Indexed", justify="center")
        table.add_column("Required", justify="center")
        for column in table_def.columns:
            table.add_row(
                column.name,
                column.type.value,
                column.source,
                "✓" if column.indexed else "",
                "✓" if column.required else "",
            )
        console.print(table)

    apps = Table(title="Apps", box=box.ROUNDED)
    apps.add_column("App", style="cyan", no_wrap=True)
    apps.add_column("Allow-Origin", style="green")
    apps.add_column("Tables", style="magenta")
    for app in sorted(schema.apps.values(), key=lambda a: a.app_id):
        apps.add_row(app.app_id, app.access_control_allow_origin, ", ".join(sorted(app.tables)))
    console.print(apps)


def print_plan(plan: ReconciliationPlan, applied: bool, console: Optional[Console] = None) -> None:
    """
    Render the DDL of a reconciliation plan and its warnings.
    """
    console = console or Console()

    if plan.is_empty:
        console.print("[green]Database schema is up to date; no DDL needed.[/green]")
    else:
        title = "Applied DDL" if applied else "Planned DDL (dry run)"
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Table", style="cyan", no_wrap=True)
        table.add_column("Statement", style="green")
        for table_plan in plan.tables:
            for statement in table_plan.statements:
                table.add_row(table_plan.table, statement.description)
        console.print(table)

    for warning in plan.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


def print_result(result: IngestResult, console: Optional[Console] = None) -> None:
    """
    Render per-event outcomes of one batch.
    """
    console = console or Console()

    table = Table(
        title="Batch outcome",
        box=box.ROUNDED,
        caption=f"{result.accepted} accepted, {result.rejected} rejected",
    )
    table.add_column("#", justify="right", style="blue")
    table.add_column("Table", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for outcome in result.outcomes:
        if outcome.ok:
            table.add_row(str(outcome.index), outcome.table, "[green]ok[/green]", "")
        else:
            assert outcome.error is not None
            table.add_row(
                str(outcome.index),
                outcome.table,
                f"[red]{outcome.error.kind}[/red]",
                escape(str(outcome.error)),
            )
    console.print(table)


__all__ = ["print_plan", "print_result", "print_schema"]
