"""figfix execute command."""

from __future__ import annotations

import click
from rich.prompt import Confirm

from figfix.cli._engine import build_engine, fail
from figfix.core.errors import FigFixError
from figfix.core.models import FixOptions, FixStatus
from figfix.core.output import console, print_execute_result, print_preview


@click.command()
@click.argument("project_id")
@click.argument("violation_ids", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--actor", default="", help="Actor id recorded in history")
@click.option("--delete-comments", is_flag=True, help="Delete review comments on fixed nodes")
@click.pass_context
def execute(
    ctx: click.Context,
    project_id: str,
    violation_ids: tuple[str, ...],
    yes: bool,
    actor: str,
    delete_comments: bool,
):
    """Apply fixes for VIOLATION_IDS and record the batch in history.

    The preview is shown first; pass --yes to skip the confirmation.
    """
    engine = build_engine(ctx.obj["workspace"])
    options = FixOptions(delete_comments=delete_comments, actor_id=actor)
    ids = list(violation_ids)

    try:
        print_preview(engine.generate_preview(project_id, ids, options))

        if not yes:
            if not Confirm.ask(f"  Apply {len(ids)} fix(es)?", default=False):
                console.print("  [dim]Cancelled.[/dim]")
                return

        result = engine.execute(project_id, ids, options)
    except FigFixError as e:
        fail(e)
        return

    console.print()
    print_execute_result(result)
    if result.status == FixStatus.FAILED:
        ctx.exit(1)
