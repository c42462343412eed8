"""Rich terminal formatting for figfix output."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from figfix.core.models import (
    ExecuteResult,
    FixStatus,
    HistoryPage,
    HistoryRecord,
    PreviewResult,
    RollbackReport,
)

console = Console()


STATUS_COLORS = {
    FixStatus.PENDING: "dim",
    FixStatus.EXECUTING: "cyan",
    FixStatus.COMPLETED: "green",
    FixStatus.FAILED: "red",
    FixStatus.ROLLED_BACK: "yellow",
}


def score_color(score: float) -> str:
    """Return color name based on score."""
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    return "red"


def format_delta(delta: float | None) -> str:
    if delta is None:
        return "[dim]unknown[/dim]"
    text = f"+{delta:g}" if delta >= 0 else f"{delta:g}"
    color = "green" if delta > 0 else "red" if delta < 0 else "dim"
    return f"[{color}]{text}[/{color}]"


def _format_state(state: dict[str, Any]) -> str:
    if not state:
        return "{}"
    return escape(", ".join(f"{k}={json.dumps(v)}" for k, v in state.items()))


def print_preview(preview: PreviewResult) -> None:
    """Print a preview panel: planned changes and score impact."""
    impact = preview.score_impact
    lines = [""]
    for op in preview.items:
        lines.append(f"  [bold]{op.violation_id}[/bold]  {op.fix_type.value}  {op.node_name or op.node_id}")
        if op.description:
            lines.append(f"     {escape(op.description)}")
        lines.append(f"     [red]- {_format_state(op.before)}[/red]")
        lines.append(f"     [green]+ {_format_state(op.after)}[/green]")
        lines.append("")

    color = score_color(impact.estimated)
    lines.append(
        f"  Score: {impact.current:g} -> [{color}]{impact.estimated:g}[/{color}] "
        f"({format_delta(impact.improvement)})"
    )
    lines.append(f"  {preview.total_count} fix(es), about {preview.estimated_duration:g}s")
    if preview.canceled:
        lines.append("  [yellow]Preview canceled; list is partial.[/yellow]")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]Fix Preview  {preview.project_id}[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_execute_result(result: ExecuteResult) -> None:
    """Print per-item results and the batch summary."""
    for item in result.items:
        if item.succeeded:
            console.print(f"  [green]✅ {item.violation_id}[/green]  {item.fix_type.value if item.fix_type else ''}")
        else:
            console.print(f"  [red]❌ {item.violation_id}[/red]  [{item.error_code}] {escape(item.error or '')}")

    console.print()
    if result.success_count > 0:
        console.print(f"  [green]{result.success_count} fixes applied.[/green]")
    if result.failed_count > 0:
        console.print(f"  [red]{result.failed_count} fixes failed.[/red]")
    if result.canceled:
        console.print("  [yellow]Batch canceled before every fix was attempted.[/yellow]")

    if result.after_score is None:
        console.print(f"  Score: {result.before_score:g} -> [dim]unknown[/dim] ({escape(result.score_error or '')})")
    else:
        color = score_color(result.after_score)
        console.print(
            f"  Score: {result.before_score:g} -> [{color}]{result.after_score:g}[/{color}] "
            f"({format_delta(result.score_delta)})"
        )
    status_color = STATUS_COLORS[result.status]
    console.print(f"  History: {result.history_id}  [{status_color}]{result.status.value}[/{status_color}]")
    console.print(f"  [dim]Run `figfix rollback {result.history_id}` to revert.[/dim]")
    console.print()


def print_rollback_report(report: RollbackReport) -> None:
    for outcome in report:
        if outcome.success:
            console.print(
                f"  [green]✅ {outcome.history_id}[/green]  "
                f"{outcome.reverted_count} item(s) reverted"
            )
            continue
        console.print(f"  [red]❌ {outcome.history_id}[/red]  [{outcome.error_code}] {escape(outcome.error or '')}")
        for failure in outcome.failed_items:
            console.print(
                f"     [red]-> {failure.violation_id}[/red] on {failure.node_id}: "
                f"[{failure.error_code}] {escape(failure.error)}"
            )

    console.print()
    console.print(f"  {report.success_count} rolled back, {report.failed_count} failed.")
    if report.canceled:
        console.print("  [yellow]Rollback canceled; remaining records untouched.[/yellow]")
    console.print()


def print_history_page(page: HistoryPage) -> None:
    """Print one page of history records, newest first."""
    first = page.offset + 1
    last = page.offset + len(page.records)
    console.print(f"  [bold]Fix History[/bold]  ({first}-{last} of {page.total})\n")

    for record in page.records:
        color = STATUS_COLORS[record.status]
        after = f"{record.after_score:g}" if record.after_score is not None else "?"
        console.print(
            f"  {record.id}  [{color}]{record.status.value}[/{color}]  "
            f"{record.executed_at.strftime('%Y-%m-%d %H:%M')}  {record.kind.value}"
        )
        console.print(
            f"     fixed {len(record.fixed_violations)}/{len(record.violation_ids)}  "
            f"score {record.before_score:g} -> {after}  "
            f"actor {record.actor_id or '-'}"
        )


def print_history_record(record: HistoryRecord) -> None:
    """Print one batch: summary, per-item results, then the stored diffs."""
    color = STATUS_COLORS[record.status]
    after = f"{record.after_score:g}" if record.after_score is not None else "?"
    console.print(f"  [bold]{record.id}[/bold]  [{color}]{record.status.value}[/{color}]  {record.kind.value}")
    console.print(
        f"     project {escape(record.project_id)}  actor {escape(record.actor_id or '-')}  "
        f"executed {record.executed_at.strftime('%Y-%m-%d %H:%M')}"
    )
    console.print(f"     score {record.before_score:g} -> {after}")
    if record.rolled_back_at is not None:
        console.print(f"     rolled back {record.rolled_back_at.strftime('%Y-%m-%d %H:%M')}")

    console.print()
    for item in record.items:
        if item.succeeded:
            console.print(f"  [green]✅ {item.violation_id}[/green]  {item.fix_type.value if item.fix_type else ''}")
        else:
            console.print(f"  [red]❌ {item.violation_id}[/red]  [{item.error_code}] {escape(item.error or '')}")

    if record.diffs:
        console.print("\n  [bold]Changes[/bold]")
    for diff in record.diffs:
        console.print(f"  {diff.violation_id}  on {diff.node_id}")
        console.print(f"     [red]- {_format_state(diff.before)}[/red]")
        console.print(f"     [green]+ {_format_state(diff.after)}[/green]")
