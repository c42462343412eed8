"""figfix rollback command."""

from __future__ import annotations

import click

from figfix.cli._engine import build_engine, fail
from figfix.core.errors import FigFixError
from figfix.core.output import console, print_rollback_report


@click.command()
@click.argument("history_ids", nargs=-1, required=True)
@click.pass_context
def rollback(ctx: click.Context, history_ids: tuple[str, ...]):
    """Revert previously executed batches.

    Each HISTORY_ID is rolled back independently; only COMPLETED batches
    can be reverted, and only once.
    """
    engine = build_engine(ctx.obj["workspace"])
    try:
        report = engine.rollback(list(history_ids))
    except FigFixError as e:
        fail(e)
        return

    console.print("\n  [bold]Rollback[/bold]\n")
    print_rollback_report(report)
    if report.failed_count:
        ctx.exit(1)
