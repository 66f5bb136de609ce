"""quarry status — list jobs, or show one job's status, answer and failures."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from quarry.cli.errors import err_job_not_found, err_no_db
from quarry.cli.runtime import DEFAULT_DB, load_runtime_config, open_db
from quarry.db.models import Job, JobStatus
from quarry.db.repository import JobRepository
from quarry.db.vectors import VectorIndex

console = Console()

_STATUS_STYLE = {
    JobStatus.RUNNING: "[yellow]⏳ running[/]",
    JobStatus.FINISHED: "[green]✓ finished[/]",
    JobStatus.ERROR: "[red]✗ error[/]",
}


def status_cmd(
    job_id: Annotated[
        str | None, typer.Argument(help="Show a single job in detail.")
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
) -> None:
    """Show job status, answers and indexed vector counts."""
    cfg = load_runtime_config(console)

    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        repo = JobRepository(conn)
        index = VectorIndex(conn, cfg.embedding.model, cfg.embedding.dimensions)
        if job_id is None:
            _show_jobs(repo.list_jobs(), index)
            return
        job = repo.get(job_id)
        if job is None:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1)
        _show_job(job, index)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_jobs(jobs: list[Job], index: VectorIndex) -> None:
    if not jobs:
        console.print("[dim]No jobs yet.[/]  Run:  quarry submit --name <name> --source <text-or-url>")
        return

    table = Table(box=None, padding=(0, 1))
    table.add_column("Id", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Sources", justify="right")
    table.add_column("Vectors", justify="right")
    table.add_column("Created", style="dim")

    for job in jobs:
        table.add_row(
            job.id,
            escape(job.name),
            _STATUS_STYLE[job.status],
            str(len(job.sources)),
            f"{index.count(job.id):,}",
            (job.created_at or "")[:16],
        )
    console.print(Panel(table, title=f"[bold]Jobs[/] [dim]({len(jobs)})[/]", expand=False))


def _show_job(job: Job, index: VectorIndex) -> None:
    lines = [
        f"Name:     [bold]{escape(job.name)}[/]",
        f"Status:   {_STATUS_STYLE[job.status]}",
        f"Sources:  {len(job.sources)}",
        f"Vectors:  {index.count(job.id):,}",
    ]
    for failure in job.failures:
        lines.append(
            f"  [yellow]⚠ source {failure.source_index}:[/] {escape(failure.reason)}"
        )
    if job.answer:
        lines.append("")
        lines.append(f"Answer:   {escape(job.answer)}")
    console.print(Panel("\n".join(lines), title=f"[bold]Job {job.id}[/]", expand=False))
