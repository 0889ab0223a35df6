"""Reconciliation job CLI commands.

This module provides CLI commands for creating jobs from a JSON file of
legacy rows, processing them in the foreground, inspecting suggestions,
automatic reconciliation, export and deletion.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from assetrecon.cli.common import console, parse_uuid, run_with_services
from assetrecon.services import Services

app = typer.Typer(help="Reconciliation job commands")


def _load_rows(rows_file: Path) -> list[dict]:
    try:
        with open(rows_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error reading rows file:[/red] {e}")
        raise typer.Exit(code=1) from e

    rows = data.get("rows") if isinstance(data, dict) else data
    if not isinstance(rows, list):
        console.print("[red]Rows file must contain a JSON list or an object with 'rows'[/red]")
        raise typer.Exit(code=1)
    return rows


@app.command()
def create(
    rows_file: Annotated[
        Path,
        typer.Argument(
            help="JSON file with rows: [{rowNumber, sapDescription, sapLocation}]",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    location: Annotated[
        Optional[str],
        typer.Option("--location", "-l", help="Restrict candidates to this location subtree"),
    ] = None,
) -> None:
    """Create a pending job from a JSON file of legacy rows."""
    rows = _load_rows(rows_file)

    async def _create(services: Services):
        return await services.engine.create_job(rows, location)

    created = run_with_services(_create)
    console.print(
        Panel(
            f"[green]Job created[/green]\n\n"
            f"[bold]ID:[/bold] {created.job_id}\n"
            f"[bold]Rows:[/bold] {created.total_rows}",
            title="Reconciliation Job",
            border_style="green",
        )
    )


@app.command()
def process(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
) -> None:
    """Process a job in the foreground until every row has suggestions."""
    uuid = parse_uuid(job_id, "job ID")

    async def _process(services: Services):
        return await services.engine.process_job(uuid)

    console.print(f"[cyan]Processing job {uuid}...[/cyan]")
    result = run_with_services(_process)
    console.print(
        f"[green]Job {result.status.value}[/green]: "
        f"{result.processed_rows} processed, "
        f"{result.skipped_rows} skipped, "
        f"{result.failed_rows} failed"
    )


@app.command()
def show(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    offset: Annotated[int, typer.Option("--offset", help="Rows to skip")] = 0,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Rows to show")] = 20,
) -> None:
    """Show a job with one page of rows and their best suggestion."""
    uuid = parse_uuid(job_id, "job ID")

    async def _show(services: Services):
        return await services.engine.get_job(uuid, offset, limit)

    view = run_with_services(_show)

    console.print(
        f"[bold]Job {view.job_id}[/bold]  status={view.status.value}  "
        f"progress={view.processed_rows}/{view.total_rows}  "
        f"location={view.location_filter or '-'}"
    )
    console.print(
        "[dim]decisions:[/dim] "
        + ", ".join(f"{d.value}={n}" for d, n in view.decision_counts.items())
    )

    table = Table(title=f"Rows {view.offset + 1}-{view.offset + len(view.rows)}")
    table.add_column("Row", justify="right")
    table.add_column("SAP Description", style="cyan")
    table.add_column("Best Suggestion")
    table.add_column("Score", justify="right")
    table.add_column("Decision")

    for row in view.rows:
        best = row.suggestions[0] if row.suggestions else None
        label = " ".join(
            part for part in (best.name, best.brand, best.model) if part
        ) if best else "-"
        table.add_row(
            str(row.row_number),
            row.sap_description,
            label,
            f"{best.score:.3f}" if best else "-",
            row.decision.value,
        )

    console.print(table)


@app.command("list")
def list_jobs(
    from_date: Annotated[
        Optional[datetime],
        typer.Option("--from", formats=["%Y-%m-%d"], help="First creation day (inclusive)"),
    ] = None,
    to_date: Annotated[
        Optional[datetime],
        typer.Option("--to", formats=["%Y-%m-%d"], help="Last creation day (inclusive)"),
    ] = None,
) -> None:
    """List jobs, newest first."""

    async def _list(services: Services):
        return await services.engine.list_jobs(
            from_date.date() if from_date else None,
            to_date.date() if to_date else None,
        )

    jobs = run_with_services(_list)
    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(title="Reconciliation Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Location")
    table.add_column("Created")

    for job in jobs:
        table.add_row(
            str(job.job_id),
            job.status.value,
            f"{job.processed_rows}/{job.total_rows}",
            job.location_filter or "-",
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command("auto-reconcile")
def auto_reconcile(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    min_score: Annotated[
        Optional[float],
        typer.Option("--min-score", min=0.0, max=1.0, help="Minimum suggestion score"),
    ] = None,
) -> None:
    """Match pending rows whose best free suggestion clears the threshold."""
    uuid = parse_uuid(job_id, "job ID")

    async def _auto(services: Services):
        return await services.engine.auto_reconcile(uuid, min_score)

    result = run_with_services(_auto)
    console.print(
        f"[green]{result.auto_matched} of {result.total_rows} rows matched[/green] "
        f"(min score {result.min_score:.2f})"
    )
    for match in result.matches:
        console.print(f"  row {match.row_number} -> {match.asset_id} ({match.score:.3f})")


@app.command()
def export(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write JSON to this file instead of stdout"),
    ] = None,
) -> None:
    """Export a job with all rows as JSON."""
    uuid = parse_uuid(job_id, "job ID")

    async def _export(services: Services):
        return await services.engine.export_job(uuid)

    document = run_with_services(_export).model_dump_json(by_alias=True, indent=2)
    if output is None:
        console.print_json(document)
        return

    output.write_text(document, encoding="utf-8")
    console.print(f"[green]Exported to {output}[/green]")


@app.command()
def delete(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a job and all of its rows."""
    uuid = parse_uuid(job_id, "job ID")
    if not yes:
        typer.confirm(f"Delete job {uuid}?", abort=True)

    async def _delete(services: Services):
        return await services.engine.delete_job(uuid)

    run_with_services(_delete)
    console.print(f"[green]Job {uuid} deleted[/green]")
