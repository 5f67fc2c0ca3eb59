"""CLI review command for pending merge conflicts.

Provides the `casemerge review` command that walks through the conflicts an
import left pending and records a decision for each one.

Design decisions:
- One conflict per panel: both records side by side, the score breakdown,
  and the fields the merge resolver could not decide.
- "Decide later" leaves a conflict pending; the next session shows it again.
- Decisions are applied through resolve() in one go at the end of the
  session (or on Ctrl+C), then the result file is rewritten.
- A Merge the engine rejects (fields still unresolved) is reported and the
  conflict stays pending; nothing is silently dropped.

Usage:
    casemerge review casemerge-result.json [--limit <n>]
"""

from __future__ import annotations

from pathlib import Path

import questionary
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from casemerge.cli.snapshot import load_result, save_result
from casemerge.conflict.review import resolve
from casemerge.dedup.scorer import similarity_band
from casemerge.records.models import MergeConflict, Record, Resolution, ResolutionAction

# Module-level console used by the review command
console = Console()

_CHOICES = {
    "Merge": ResolutionAction.MERGE,
    "Keep both": ResolutionAction.KEEP_BOTH,
    "Skip (discard incoming)": ResolutionAction.SKIP,
}
_LATER = "Decide later"

_BAND_COLORS = {
    "identical": "red",
    "very_high": "red",
    "high": "yellow",
    "medium": "yellow",
    "low": "blue",
}


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def _record_summary(record: Record) -> str:
    priority = record.priority.value if record.priority else "-"
    lines = [
        f"[bold]{record.title}[/bold]",
        f"Category: {record.category or '-'} · Priority: {priority} · v{record.version}",
        f"Steps: {len(record.steps)}",
    ]
    for number, step in enumerate(record.steps, start=1):
        lines.append(f"  [dim]{number}. {step.description}[/dim]")
    if record.tags:
        lines.append(f"Tags: {', '.join(record.tags)}")
    if record.remarks:
        lines.append(f"Remarks: {record.remarks}")
    return "\n".join(lines)


def _build_score_line(conflict: MergeConflict) -> str:
    """Build a Rich-formatted similarity line with the per-dimension breakdown."""
    value = conflict.score.value
    color = _BAND_COLORS[similarity_band(value)]
    b = conflict.score.breakdown
    return (
        f"[{color}]{value:.1%} similar[/{color}]  "
        f"[dim]title {b.title:.0%} · steps {b.steps:.0%} · "
        f"category {b.category:.0%} · tags {b.tags:.0%}[/dim]"
    )


def _build_field_section(conflict: MergeConflict) -> str:
    if not conflict.field_conflicts:
        return "[green]The merge resolver can combine these automatically.[/green]"
    lines = ["[bold]Fields needing a decision:[/bold]"]
    for fc in conflict.field_conflicts:
        if fc.field == "steps":
            lines.append(
                f"  [yellow]steps[/yellow]: {len(fc.existing_value)} existing vs "
                f"{len(fc.incoming_value)} incoming (different sequences)"
            )
        else:
            lines.append(f"  [yellow]{fc.field}[/yellow]: {fc.existing_value!r} vs {fc.incoming_value!r}")
    return "\n".join(lines)


def _conflict_panel(conflict: MergeConflict, position: int, total: int) -> Panel:
    table = Table.grid(expand=True, padding=(0, 2))
    table.add_column(ratio=1)
    table.add_column(ratio=1)
    table.add_row("[bold]Existing[/bold]", "[bold]Incoming[/bold]")
    table.add_row(_record_summary(conflict.existing), _record_summary(conflict.incoming))

    body = Table.grid()
    body.add_row(_build_score_line(conflict))
    body.add_row("")
    body.add_row(table)
    body.add_row("")
    body.add_row(_build_field_section(conflict))
    return Panel(body, title=f"Conflict {position}/{total}", border_style="blue")


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def review(
    result_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Result file written by `import`."),
    limit: int = typer.Option(0, "--limit", min=0, help="Maximum conflicts to review this session (0 = all)."),
) -> None:
    """Review pending merge conflicts and decide Merge, Keep both or Skip.

    \b
    - Merge       — fold the incoming case into the existing one
    - Keep both   — save the incoming case as a separate record
    - Skip        — discard the incoming case
    - Decide later — leave the conflict pending
    """
    try:
        result = load_result(result_path)
    except (ValueError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    pending = list(result.pending_conflicts)
    if limit:
        pending = pending[:limit]

    if not pending:
        console.print(Panel(
            "[green]All caught up! No pending conflicts.[/green]",
            title="casemerge",
            border_style="green",
        ))
        return

    console.print(f"\n[bold]You have {len(result.pending_conflicts)} conflict(s) to review[/bold]\n")

    resolutions: list[Resolution] = []
    later_count = 0

    for idx, conflict in enumerate(pending):
        console.print(_conflict_panel(conflict, idx + 1, len(pending)))

        choice = questionary.select(
            "What would you like to do?",
            choices=[*_CHOICES, _LATER],
        ).ask()

        # Handle None (Ctrl+C or EOF)
        if choice is None:
            console.print("\n[yellow]Review interrupted, saving decisions made so far.[/yellow]")
            break

        if choice == _LATER:
            later_count += 1
            continue

        resolutions.append(Resolution(conflict_id=conflict.id, action=_CHOICES[choice]))

    errors_before = len(result.errors)
    updated = resolve(result, resolutions)
    save_result(result_path, updated)

    for error in updated.errors[errors_before:]:
        console.print(f"[red]Not applied ({error.error}): {error.message}[/red]")

    # -----------------------------------------------------------------------
    # Session summary
    # -----------------------------------------------------------------------
    applied = len(updated.resolved) - len(result.resolved)
    console.print(Panel(
        f"[bold green]Review session complete![/bold green]\n\n"
        f"Applied:        {applied}\n"
        f"Rejected:       {len(updated.errors) - errors_before}\n"
        f"Decide later:   {later_count}\n"
        f"Still pending:  {updated.pending_count}\n\n"
        f"Saved: {updated.saved_count} · Merged: {updated.auto_merged_count} · "
        f"Exact duplicates: {updated.exact_duplicate_count}",
        title="Session Summary",
        border_style="green",
    ))
