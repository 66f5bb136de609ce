"""Submission validation for jobs and queries."""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from quarry.errors import SubmissionError

MAX_NAME_CHARS = 100
MAX_SOURCES = 5
MAX_SOURCE_CHARS = 1500
MAX_QUESTION_CHARS = 500


def validate_submission(name: str, sources: Sequence[str]) -> None:
    """Raise SubmissionError listing every problem with a job submission."""
    problems: list[str] = []
    if not name or not name.strip():
        problems.append("name must not be empty")
    elif len(name) > MAX_NAME_CHARS:
        problems.append(f"name must be at most {MAX_NAME_CHARS} characters")

    if not 1 <= len(sources) <= MAX_SOURCES:
        problems.append(f"between 1 and {MAX_SOURCES} sources are required, got {len(sources)}")
    for i, source in enumerate(sources):
        if not source or not source.strip():
            problems.append(f"source {i} must not be empty")
        elif len(source) > MAX_SOURCE_CHARS:
            problems.append(
                f"source {i} must be at most {MAX_SOURCE_CHARS} characters, got {len(source)}"
            )

    if problems:
        raise SubmissionError(problems)


def validate_query(job_id: str, question: str) -> None:
    """Raise SubmissionError listing every problem with a query submission."""
    problems: list[str] = []
    try:
        uuid.UUID(job_id)
    except (ValueError, TypeError, AttributeError):
        problems.append(f"job id '{job_id}' is not a valid UUID")

    if not question or not question.strip():
        problems.append("question must not be empty")
    elif len(question) > MAX_QUESTION_CHARS:
        problems.append(
            f"question must be at most {MAX_QUESTION_CHARS} characters, got {len(question)}"
        )

    if problems:
        raise SubmissionError(problems)
