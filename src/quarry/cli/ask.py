"""quarry ask — answer a question from a finished job's sources."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from quarry.cli.errors import (
    err_invalid_submission,
    err_job_not_found,
    err_job_not_ready,
    err_no_api_key,
    err_no_db,
    err_query_failed,
)
from quarry.cli.runtime import DEFAULT_DB, load_runtime_config, open_db
from quarry.errors import JobNotFoundError, JobNotReadyError, QuarryError, SubmissionError
from quarry.jobs.orchestrator import build_orchestrator
from quarry.rag.llm_client import validate_api_key

console = Console()


def ask_cmd(
    job_id: Annotated[str, typer.Argument(help="Job id printed by quarry submit.")],
    question: Annotated[str, typer.Argument(help="Question (max 500 chars).")],
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
) -> None:
    """Answer a question from a job's indexed sources."""
    cfg = load_runtime_config(console)

    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    for model in (cfg.embedding.model, cfg.generation.model):
        try:
            validate_api_key(model)
        except EnvironmentError:
            console.print(err_no_api_key(model.split("/")[0] if "/" in model else "openai"))
            raise typer.Exit(1)

    conn = open_db(db)
    try:
        orchestrator = build_orchestrator(conn, cfg)
        try:
            answer = orchestrator.answer(job_id, question)
        except SubmissionError as exc:
            console.print(err_invalid_submission(exc.problems))
            raise typer.Exit(1)
        except JobNotFoundError:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1)
        except JobNotReadyError as exc:
            console.print(err_job_not_ready(job_id, exc.status))
            raise typer.Exit(1)
        except QuarryError as exc:
            console.print(err_query_failed(job_id, str(exc)))
            raise typer.Exit(1)
    finally:
        conn.close()

    console.print(Panel(answer, title=f"[bold]{question}[/]", expand=False))
