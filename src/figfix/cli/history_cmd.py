"""figfix history commands."""

from __future__ import annotations

import json

import click
from rich.markup import escape

from figfix.cli._engine import build_engine, fail
from figfix.core.errors import FigFixError
from figfix.core.models import FixStatus
from figfix.core.output import console, print_history_page, print_history_record


@click.group("history")
def history():
    """Browse executed fix batches."""


@history.command("list")
@click.argument("project_id")
@click.option(
    "--status",
    type=click.Choice([s.value for s in FixStatus], case_sensitive=False),
    help="Only show records in this status",
)
@click.option("--limit", type=int, default=None, help="Page size (default from figfix.toml)")
@click.option("--offset", type=int, default=0, help="Records to skip")
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.pass_context
def list_history(
    ctx: click.Context,
    project_id: str,
    status: str | None,
    limit: int | None,
    offset: int,
    as_json: bool,
):
    """Show executed fix batches for PROJECT_ID, newest first."""
    engine = build_engine(ctx.obj["workspace"])
    try:
        page = engine.list_history(project_id, status=status, limit=limit, offset=offset)
    except FigFixError as e:
        fail(e)
        return

    if as_json:
        output = {
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
            "records": [record.to_dict() for record in page.records],
        }
        click.echo(json.dumps(output, indent=2))
        return

    if not page.records:
        console.print("\n  No fix history yet. Run `figfix execute` to apply fixes.\n")
        return

    console.print()
    print_history_page(page)
    console.print()


@history.command("show")
@click.argument("history_id")
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.pass_context
def show_history(ctx: click.Context, history_id: str, as_json: bool):
    """Show one batch with its per-item results and stored diffs."""
    engine = build_engine(ctx.obj["workspace"])
    try:
        record = engine.get_history(history_id)
    except FigFixError as e:
        fail(e)
        return

    if record is None:
        console.print(f"\n  [red]NOT_FOUND: History {escape(history_id)} does not exist[/red]\n")
        ctx.exit(1)

    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return

    console.print()
    print_history_record(record)
    console.print()
