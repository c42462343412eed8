"""Click CLI entry point for figfix."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import click

from figfix._version import __version__


@click.group()
@click.version_option(version=__version__, prog_name="figfix")
@click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Directory holding design.json, violations.json and figfix.toml",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, workspace: Path, verbose: bool):
    """figfix - preview, apply and roll back design-lint fixes.

    Every applied batch is recorded in .figfix/history.db and can be
    reverted with `figfix rollback`.
    """
    level = "DEBUG" if verbose else os.environ.get("FIGFIX_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace.resolve()


# Import and register subcommands
from figfix.cli.preview_cmd import preview  # noqa: E402
from figfix.cli.execute_cmd import execute  # noqa: E402
from figfix.cli.rollback_cmd import rollback  # noqa: E402
from figfix.cli.history_cmd import history  # noqa: E402

cli.add_command(preview)
cli.add_command(execute)
cli.add_command(rollback)
cli.add_command(history)


if __name__ == "__main__":
    cli()
