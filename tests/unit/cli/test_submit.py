"""Tests for quarry submit."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from quarry.cli.main import app
from quarry.config import QuarryConfig
from quarry.db.connection import Database
from quarry.db.models import JobStatus
from quarry.db.repository import JobRepository
from quarry.errors import FetchError
from quarry.jobs.orchestrator import build_orchestrator

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _broken_embed(model: str, texts: list[str]) -> list[list[float]]:
    raise ValueError("model not found")


def _fetch(url: str, timeout: float) -> tuple[bytes, str]:
    raise FetchError(url, "HTTP 404")


def _cfg() -> QuarryConfig:
    cfg = QuarryConfig()
    cfg.embedding.dimensions = 16
    return cfg


def _invoke(args: list[str], embed_fn):
    wired = partial(
        build_orchestrator, embed_fn=embed_fn, fetcher=_fetch, complete_fn=lambda *a, **k: "ok"
    )
    with (
        patch("quarry.cli.runtime.load_config", return_value=_cfg()),
        patch("quarry.cli.runtime.setup_logger"),
        patch("quarry.cli.submit.build_orchestrator", side_effect=wired),
        patch("quarry.cli.submit.console", Console(width=200)),
    ):
        return runner.invoke(app, args)


def _jobs(db_path: Path):
    with Database(db_path) as conn:
        return JobRepository(conn).list_jobs()


@pytest.fixture(autouse=True)
def _api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------


def test_submit_indexes_and_finishes(tmp_path: Path, bow_embed) -> None:
    db = tmp_path / ".quarry.db"
    result = _invoke(
        ["submit", "--name", "France", "--source", "The capital of France is Paris.", "--db", str(db)],
        bow_embed,
    )

    assert result.exit_code == 0, result.output
    jobs = _jobs(db)
    assert len(jobs) == 1
    assert jobs[0].status is JobStatus.FINISHED
    assert jobs[0].id in result.output
    assert "1 chunks indexed" in result.output


def test_submit_reports_unreachable_source(tmp_path: Path, bow_embed) -> None:
    db = tmp_path / ".quarry.db"
    result = _invoke(
        [
            "submit", "-n", "Mixed",
            "-s", "The capital of France is Paris.",
            "-s", "https://example.com/not-real",
            "--db", str(db),
        ],
        bow_embed,
    )

    assert result.exit_code == 0, result.output
    assert "Source 1 unreachable" in result.output
    assert "HTTP 404" in result.output
    assert "2 chunks indexed" in result.output


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_submit_without_sources_rejected(tmp_path: Path, bow_embed) -> None:
    db = tmp_path / ".quarry.db"
    result = _invoke(["submit", "--name", "Empty", "--db", str(db)], bow_embed)

    assert result.exit_code == 1
    assert "Submission rejected" in result.output
    assert _jobs(db) == []


def test_submit_too_many_sources_rejected(tmp_path: Path, bow_embed) -> None:
    args = ["submit", "--name", "Many", "--db", str(tmp_path / ".quarry.db")]
    for i in range(6):
        args += ["--source", f"text {i}"]
    result = _invoke(args, bow_embed)

    assert result.exit_code == 1
    assert "between 1 and 5 sources" in result.output


def test_submit_embedding_failure_marks_error(tmp_path: Path) -> None:
    db = tmp_path / ".quarry.db"
    result = _invoke(
        ["submit", "--name", "France", "--source", "Paris.", "--db", str(db)], _broken_embed
    )

    assert result.exit_code == 1
    assert "failed" in result.output
    assert _jobs(db)[0].status is JobStatus.ERROR


def test_submit_missing_api_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, bow_embed) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    db = tmp_path / ".quarry.db"
    result = _invoke(["submit", "--name", "France", "--source", "Paris.", "--db", str(db)], bow_embed)

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
    assert not db.exists()
