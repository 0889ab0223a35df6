"""Embedding backfill CLI command.

Embeds every catalog asset that has neither an embedding nor a skip reason.
Safe to interrupt and re-run: finished assets are never touched again.
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.table import Table

from assetrecon.cli.common import console, run_with_services
from assetrecon.intelligence.backfill import BackfillStats, format_duration
from assetrecon.services import Services


def _print_progress(stats: BackfillStats) -> None:
    eta = stats.eta_seconds
    console.print(
        f"  [dim]batch {stats.batches}[/dim] "
        f"{stats.processed}/{stats.total_pending} processed | "
        f"{stats.errors} errors | {stats.skipped} skipped | "
        f"{stats.rate:.1f} assets/s | ETA: {format_duration(eta) if eta else '-'}"
    )


def backfill(
    batch: Annotated[
        Optional[int],
        typer.Option("--batch", "-b", min=1, help="Assets per batch (capped at the configured maximum)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Only report counts; write nothing"),
    ] = False,
    max_batches: Annotated[
        Optional[int],
        typer.Option("--max-batches", min=1, help="Stop after this many batches"),
    ] = None,
) -> None:
    """Backfill catalog embeddings in batches."""

    async def _run(services: Services):
        preview = await services.backfill.preview(batch)
        console.print(f"[bold]Catalog assets:[/bold] {preview.total_assets}")
        console.print(f"[bold]Pending embedding:[/bold] {preview.pending}")
        console.print(
            f"[bold]Batch size:[/bold] {preview.batch_size} "
            f"(~{preview.estimated_batches} batches)"
        )
        return await services.backfill.run(
            dry_run=dry_run,
            max_batches=max_batches,
            batch_size=batch,
        )

    stats = run_with_services(_run, on_backfill_progress=_print_progress)

    if stats.dry_run:
        console.print("[yellow]Dry run: no changes made[/yellow]")
        return

    table = Table(title=f"Backfill finished in {format_duration(stats.elapsed_seconds)}")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Skipped (missing name)", justify="right", style="yellow")
    table.add_column("Batches", justify="right")
    table.add_row(
        str(stats.processed),
        str(stats.errors),
        str(stats.skipped),
        str(stats.batches),
    )
    console.print(table)

    if stats.errors:
        raise typer.Exit(code=2)
