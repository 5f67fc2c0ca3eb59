"""CLI commands that run the engine over JSON snapshots.

Commands:
    casemerge import BATCH --pool POOL [--mode smart|strict|off] --out RESULT
    casemerge reconcile POOL [--apply] [--out OUT]

`import` writes a serialized BatchResult; pending conflicts in it are worked
through later with `casemerge review RESULT`. Nothing is committed anywhere:
the updated pool lives inside the result file until the caller takes it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from casemerge.cli.snapshot import load_records, save_records, save_result
from casemerge.dedup.pipeline import run
from casemerge.dedup.reconcile import reconcile_pool
from casemerge.errors import CaseMergeError, ItemError
from casemerge.records.models import BatchResult, DedupMode

console = Console()


def _print_rejected(rejected: list[ItemError], label: str) -> None:
    for item in rejected:
        console.print(f"[yellow]Skipped {label} record {item.ref}: {item.message}[/yellow]")


def _summary_panel(result: BatchResult) -> Panel:
    body = (
        f"Mode:               [bold]{result.mode.value}[/bold]\n"
        f"Saved as new:       {result.saved_count}\n"
        f"Exact duplicates:   {result.exact_duplicate_count}\n"
        f"Auto-merged:        {result.auto_merged_count}\n"
        f"Needs review:       {result.review_required_count}\n"
        f"Errors:             {len(result.errors)}"
    )
    border = "yellow" if result.pending_conflicts else "green"
    return Panel(body, title="Import summary", border_style=border)


def import_batch(
    batch_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON array of incoming records."),
    pool_path: Optional[Path] = typer.Option(
        None, "--pool", exists=True, dir_okay=False, help="JSON array of existing records."
    ),
    mode: DedupMode = typer.Option(DedupMode.SMART, "--mode", case_sensitive=False, help="Deduplication mode."),
    out: Path = typer.Option(Path("casemerge-result.json"), "--out", help="Where to write the batch result."),
) -> None:
    """Reconcile an incoming batch against the existing pool."""
    try:
        batch, rejected = load_records(batch_path)
        pool, pool_rejected = load_records(pool_path) if pool_path else ([], [])
    except (ValueError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    _print_rejected(rejected, "batch")
    _print_rejected(pool_rejected, "pool")

    result = run(batch, pool, mode)
    save_result(out, result)

    console.print(_summary_panel(result))
    if result.pending_conflicts:
        console.print(
            f"[yellow]{len(result.pending_conflicts)} conflict(s) pending. "
            f"Run: casemerge review {out}[/yellow]"
        )
    else:
        console.print(f"[green]Result written to {out}[/green]")


def reconcile(
    pool_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON array of existing records."),
    apply: bool = typer.Option(False, "--apply/--preview", help="Drop duplicates instead of only listing them."),
    out: Optional[Path] = typer.Option(None, "--out", help="Where to write the reconciled pool (with --apply)."),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", min=0.0, max=1.0, help="Score needed to confirm a duplicate pair."
    ),
) -> None:
    """Find (and optionally remove) duplicates already inside a pool."""
    try:
        pool, rejected = load_records(pool_path)
        result = reconcile_pool(pool, preview=not apply, threshold=threshold)
    except (CaseMergeError, ValueError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    _print_rejected(rejected, "pool")

    if not result.groups:
        console.print(Panel("[green]No duplicates found.[/green]", title="casemerge", border_style="green"))
        return

    table = Table(title=f"{len(result.groups)} duplicate group(s) in {result.total} record(s)")
    table.add_column("Keep")
    table.add_column("Remove")
    table.add_column("Score", justify="right")
    for group in result.groups:
        table.add_row(
            f"{group.keep_id}\n[dim]{group.keep_title}[/dim]",
            "\n".join(f"{rid} [dim]{title}[/dim]" for rid, title in zip(group.remove_ids, group.remove_titles)),
            f"{group.score:.0%}",
        )
    console.print(table)

    if not apply:
        console.print(f"[dim]Preview only: {len(result.removed_ids)} record(s) would be removed.[/dim]")
        return

    target = out or pool_path
    save_records(target, result.pool)
    console.print(f"[green]Removed {len(result.removed_ids)} record(s); pool written to {target}[/green]")
