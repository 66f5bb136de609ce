"""quarry submit — create a job from 1-5 sources and ingest it.

The CLI is its own scheduler: the ingest stage runs inline right after the
job is created, and the job id is printed either way.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from quarry.cli.errors import (
    err_ingest_failed,
    err_invalid_submission,
    err_job_busy,
    err_no_api_key,
)
from quarry.cli.runtime import DEFAULT_DB, load_runtime_config, open_db
from quarry.errors import JobBusyError, QuarryError, SubmissionError
from quarry.jobs.orchestrator import build_orchestrator
from quarry.rag.llm_client import validate_api_key

console = Console()


def submit_cmd(
    name: Annotated[str, typer.Option("--name", "-n", help="Job name (1-100 chars).")],
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="Literal text or URL (repeatable, 1-5)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .quarry.db (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Create a job from the given sources and index it."""
    cfg = load_runtime_config(console)

    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError:
        console.print(err_no_api_key(_provider(cfg.embedding.model)))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        orchestrator = build_orchestrator(conn, cfg)
        try:
            job_id = orchestrator.submit(name, source or [])
        except SubmissionError as exc:
            console.print(err_invalid_submission(exc.problems))
            raise typer.Exit(1)

        console.print(f"[bold]Job[/] {job_id}")
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Resolving, chunking and embedding…", total=None)
            try:
                report = orchestrator.ingest(job_id)
            except JobBusyError:
                console.print(err_job_busy(job_id))
                raise typer.Exit(1)
            except QuarryError as exc:
                console.print(err_ingest_failed(job_id, str(exc)))
                raise typer.Exit(1)

        for failure in report.failures:
            console.print(
                f"  [yellow]⚠ Source {failure.source_index} unreachable:[/] {failure.reason}"
            )
        console.print(f"  [green]✓[/] finished — {report.chunks} chunks indexed")
    finally:
        conn.close()


def _provider(model: str) -> str:
    return model.split("/")[0] if "/" in model else "openai"
