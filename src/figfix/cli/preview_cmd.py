"""figfix preview command."""

from __future__ import annotations

import click

from figfix.cli._engine import build_engine, fail
from figfix.core.errors import FigFixError
from figfix.core.output import print_preview


@click.command()
@click.argument("project_id")
@click.argument("violation_ids", nargs=-1, required=True)
@click.pass_context
def preview(ctx: click.Context, project_id: str, violation_ids: tuple[str, ...]):
    """Show what fixing VIOLATION_IDS would change. Nothing is modified."""
    engine = build_engine(ctx.obj["workspace"])
    try:
        result = engine.generate_preview(project_id, list(violation_ids))
    except FigFixError as e:
        fail(e)
        return
    print_preview(result)
