"""Shared engine construction and error reporting for CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from rich.markup import escape

from figfix.core.errors import FigFixError
from figfix.core.oracles import DocumentMutationOracle, JsonViolationSource, PenaltyScoreOracle
from figfix.core.output import console
from figfix.fix.engine import AutoFixEngine

DESIGN_FILE = "design.json"
VIOLATIONS_FILE = "violations.json"


def build_engine(workspace: Path) -> AutoFixEngine:
    """Wire the engine to the file-backed oracles in ``workspace``."""
    return AutoFixEngine(
        violations=JsonViolationSource(workspace / VIOLATIONS_FILE),
        scores=PenaltyScoreOracle(),
        mutations=DocumentMutationOracle(workspace / DESIGN_FILE),
        workspace=workspace,
    )


def fail(exc: FigFixError) -> None:
    console.print(f"\n  [red]{exc.code}: {escape(str(exc))}[/red]\n")
    sys.exit(1)
