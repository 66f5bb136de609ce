"""Typed failures raised by the quarry pipeline stages.

Propagation:
  FetchError        — absorbed by the content resolver (placeholder or exclusion).
  EmbeddingError    — fatal to ingest; fatal to a query.
  VectorIndexError  — fatal to ingest; fatal to a query.
  SynthesisError    — fatal to a query.

The orchestrator catches stage failures once, records the job status, and
re-raises. Job-level errors (not found, not ready, busy, cancelled, invalid
submission) are raised by the orchestrator itself.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all quarry failures."""


class FetchError(QuarryError):
    """A URL source could not be fetched or converted to text."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class SsrfError(FetchError):
    """A URL resolves to a private or reserved address."""


class EmbeddingError(QuarryError):
    """The embedding model failed, after retries where the failure was transient."""


class VectorIndexError(QuarryError):
    """The vector store rejected an upsert or query."""


class SynthesisError(QuarryError):
    """The generation model failed to produce an answer."""


class JobNotFoundError(QuarryError):
    """No job exists with the requested id."""


class JobNotReadyError(QuarryError):
    """A query was issued against a job whose ingest has not finished."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(
            f"Job '{job_id}' is '{status}'; only finished jobs can be queried."
        )
        self.job_id = job_id
        self.status = status


class JobBusyError(QuarryError):
    """An ingest for this job is already running."""


class IngestCancelled(QuarryError):
    """The scheduler cancelled an ingest between stages."""


class SubmissionError(QuarryError):
    """A job or query submission failed validation.

    Attributes:
        problems: Every validation message, in field order.
    """

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems
