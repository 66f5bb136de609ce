"""Quarry rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".quarry.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  quarry submit --name <name> --source <text-or-url>"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix the value in quarry.yaml or ~/.quarry/config.yaml."
    )


def err_invalid_submission(problems: list[str]) -> str:
    lines = "\n".join(f"    - {escape(p)}" for p in problems)
    return (
        "[red]Error:[/] Submission rejected.\n"
        f"{lines}\n"
        "  Use 1-5 sources of at most 1500 characters and a question of at most 500."
    )


def err_job_not_found(job_id: str) -> str:
    return (
        f"[red]Error:[/] Job '{escape(job_id)}' not found.\n"
        "  Run:  quarry status  to see all jobs."
    )


def err_job_not_ready(job_id: str, status: str) -> str:
    if status == "error":
        action = "  Ingest failed; submit the sources again:  quarry submit ..."
    else:
        action = f"  Run:  quarry status {job_id}  and retry once it is finished."
    return (
        f"[red]Error:[/] Job '{escape(job_id)}' is {status}; only finished jobs can be queried.\n"
        f"{action}"
    )


def err_job_busy(job_id: str) -> str:
    return (
        f"[yellow]Busy:[/] Job '{escape(job_id)}' is already being ingested.\n"
        f"  Run:  quarry status {job_id}  to follow it."
    )


def err_ingest_failed(job_id: str, message: str) -> str:
    return (
        f"[red]Error:[/] Ingest of job '{escape(job_id)}' failed: {escape(message)}\n"
        "  The job is marked 'error'. Check the model and API key, then run:  quarry submit ..."
    )


def err_query_failed(job_id: str, message: str) -> str:
    return (
        f"[red]Error:[/] Query against job '{escape(job_id)}' failed: {escape(message)}\n"
        "  The job is unchanged. Retry:  quarry ask <job-id> <question>"
    )
