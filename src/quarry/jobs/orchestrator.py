"""Job orchestrator — the ingest/query state machine.

States: running (set on submission) → finished | error.

Ingest:  Resolver (fan-out over sources) → Chunker → one batched Embedder
         call → one Vector Index upsert → finished.
Query:   Embedder(question) → Vector Index top-k → Synthesizer (ordered
         fallbacks) → answer written onto the job. Status is untouched.

Stage failures are caught here exactly once: ingest failures set the job to
'error' and re-raise; query failures are logged and re-raised. Records already
upserted are not rolled back; a failed job is re-ingested by submitting a new
one. The scheduler that runs ``ingest``/``answer`` is external; submission
hands it an event through the injected dispatcher.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial

from loguru import logger

from quarry.config import QuarryConfig
from quarry.db.connection import LockedConnection
from quarry.db.models import (
    AnalysisPayload,
    Chunk,
    Job,
    JobStatus,
    RecordPayload,
    SourceFailure,
    VectorRecord,
)
from quarry.db.repository import JobRepository
from quarry.db.vectors import VectorIndex
from quarry.errors import (
    IngestCancelled,
    JobBusyError,
    JobNotReadyError,
    QuarryError,
    SubmissionError,
    SynthesisError,
)
from quarry.ingest.chunker import TextChunker
from quarry.ingest.embedder import EmbedFn, Embedder
from quarry.ingest.resolver import ContentResolver, Fetcher
from quarry.jobs.validation import validate_query, validate_submission
from quarry.rag.fallback import first_success
from quarry.rag.synthesizer import AnswerSynthesizer, CompleteFn

INGEST_EVENT = "quarry/job.ingest"
QUERY_EVENT = "quarry/job.query"

Dispatch = Callable[[str, dict], None]
CancelCheck = Callable[[], bool]


@dataclass
class IngestReport:
    job_id: str
    chunks: int = 0
    failures: list[SourceFailure] = field(default_factory=list)


class JobOrchestrator:
    """Sequence the pipeline stages for one job at a time per job id.

    Args:
        repo: Job persistence.
        resolver: Source → plain text.
        chunker: Text → chunks.
        embedder: Text → vectors.
        index: Namespaced vector store (namespace = job id).
        synthesizers: Answer generators tried in order until one succeeds.
        top_k: Passages retrieved per question.
        on_fetch_failure: 'placeholder' indexes the resolver's sentinel text;
            'exclude' leaves failed sources out of the index.
        dispatcher: ``(event, payload)`` hand-off to the external scheduler.
            Without one, callers run ``ingest``/``answer`` themselves.
    """

    def __init__(
        self,
        repo: JobRepository,
        resolver: ContentResolver,
        chunker: TextChunker,
        embedder: Embedder,
        index: VectorIndex,
        synthesizers: Sequence[AnswerSynthesizer],
        *,
        top_k: int = 3,
        on_fetch_failure: str = "placeholder",
        dispatcher: Dispatch | None = None,
    ) -> None:
        if not synthesizers:
            raise ValueError("at least one synthesizer is required")
        if on_fetch_failure not in ("placeholder", "exclude"):
            raise ValueError(f"unknown fetch failure policy '{on_fetch_failure}'")
        self._repo = repo
        self._resolver = resolver
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._synthesizers = list(synthesizers)
        self.top_k = top_k
        self.on_fetch_failure = on_fetch_failure
        self._dispatch = dispatcher
        self._active: set[str] = set()
        self._active_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Submission (called by the UI / CRUD layer)
    # ------------------------------------------------------------------

    def submit(self, name: str, sources: Sequence[str]) -> str:
        """Create a job in 'running', hand its ingest to the scheduler, return its id.

        Raises:
            SubmissionError: If the name or sources fail validation.
        """
        validate_submission(name, sources)
        job = Job(
            id=str(uuid.uuid4()),
            name=name.strip(),
            payload=AnalysisPayload(sources=tuple(sources)),
        )
        self._repo.create(job)
        logger.info(f"Job {job.id} submitted ({len(job.sources)} sources)")
        if self._dispatch is not None:
            self._dispatch(INGEST_EVENT, {"job_id": job.id})
        return job.id

    def submit_query(self, job_id: str, question: str) -> None:
        """Validate a question and hand it to the scheduler.

        Raises:
            SubmissionError: If the id or question fail validation.
            JobNotFoundError: If the job does not exist.
            JobNotReadyError: If the job has not finished ingesting.
        """
        validate_query(job_id, question)
        self._require_finished(job_id)
        if self._dispatch is not None:
            self._dispatch(QUERY_EVENT, {"job_id": job_id, "question": question})

    def handle(self, event: str, payload: dict) -> IngestReport | str:
        """Scheduler entry point: run the stage named by *event*."""
        if event == INGEST_EVENT:
            return self.ingest(payload["job_id"])
        if event == QUERY_EVENT:
            return self.answer(payload["job_id"], payload["question"])
        raise ValueError(f"Unknown event '{event}'")

    # ------------------------------------------------------------------
    # Ingest path
    # ------------------------------------------------------------------

    def ingest(self, job_id: str, should_cancel: CancelCheck | None = None) -> IngestReport:
        """Resolve, chunk, embed and upsert every source of *job_id*.

        At most one ingest per job id runs at a time.

        Raises:
            JobBusyError: If an ingest of this job is already running.
            JobNotFoundError: If the job does not exist (no status is written).
            QuarryError: Any stage failure, after the job is set to 'error'.
        """
        with self._active_guard:
            if job_id in self._active:
                raise JobBusyError(f"Job '{job_id}' is already being ingested.")
            self._active.add(job_id)

        try:
            job = self._repo.load(job_id)
            self._repo.save_status(job_id, JobStatus.RUNNING)
            try:
                report = self._run_ingest(job, should_cancel)
            except Exception as exc:
                self._repo.save_status(job_id, JobStatus.ERROR)
                logger.error(f"Job {job_id} ingest failed: {exc}")
                raise
            self._repo.save_status(job_id, JobStatus.FINISHED)
            logger.info(f"Job {job_id} finished ({report.chunks} chunks indexed)")
            return report
        finally:
            with self._active_guard:
                self._active.discard(job_id)

    def _run_ingest(self, job: Job, should_cancel: CancelCheck | None) -> IngestReport:
        if not job.sources:
            raise SubmissionError([f"Job '{job.id}' has no sources to process."])

        _checkpoint(should_cancel, "resolve")
        resolved = self._resolver.resolve_many(job.sources)
        failures = [
            SourceFailure(source_index=i, source=r.source, reason=r.error or "")
            for i, r in enumerate(resolved)
            if r.failed
        ]
        self._repo.save_failures(job.id, failures)
        report = IngestReport(job_id=job.id, failures=failures)

        chunks: list[Chunk] = []
        for i, r in enumerate(resolved):
            if r.failed and self.on_fetch_failure == "exclude":
                logger.info(f"Job {job.id}: source {i} excluded after fetch failure")
                continue
            chunks.extend(self._chunker.chunk_source(i, r.text))

        if not chunks:
            logger.info(f"Job {job.id}: no content to index")
            return report

        _checkpoint(should_cancel, "embed")
        vectors = self._embedder.embed_many([c.text for c in chunks])

        records = [
            VectorRecord(
                id=c.record_id,
                vector=v,
                payload=RecordPayload(content=c.text, source_index=c.source_index),
            )
            for c, v in zip(chunks, vectors, strict=True)
        ]

        _checkpoint(should_cancel, "upsert")
        self._index.upsert(job.id, records)
        report.chunks = len(records)
        return report

    # ------------------------------------------------------------------
    # Query path
    # ------------------------------------------------------------------

    def answer(self, job_id: str, question: str) -> str:
        """Answer *question* from *job_id*'s passages and store it on the job.

        Raises:
            SubmissionError: If the id or question fail validation.
            JobNotFoundError: If the job does not exist.
            JobNotReadyError: If the job is not 'finished'.
            QuarryError: Embedding, index or synthesis failure. The job's
                status is left unchanged.
        """
        validate_query(job_id, question)
        self._require_finished(job_id)
        try:
            vector = self._embedder.embed_one(question)
            hits = self._index.query(job_id, vector, self.top_k)
            passages = [payload.content for payload, _ in hits]
            strategy, answer = first_success(
                [(s.model, partial(s.synthesize, question, passages)) for s in self._synthesizers],
                recover=(SynthesisError,),
            )
        except QuarryError as exc:
            logger.error(f"Job {job_id} query failed: {exc}")
            raise
        logger.info(f"Job {job_id} answered by {strategy} from {len(passages)} passages")
        self._repo.save_answer(job_id, answer)
        return answer

    def _require_finished(self, job_id: str) -> Job:
        job = self._repo.load(job_id)
        if job.status is not JobStatus.FINISHED:
            raise JobNotReadyError(job_id, job.status.value)
        return job


def _checkpoint(should_cancel: CancelCheck | None, stage: str) -> None:
    if should_cancel is not None and should_cancel():
        raise IngestCancelled(f"Ingest cancelled before {stage} stage.")


def build_orchestrator(
    conn: LockedConnection,
    cfg: QuarryConfig,
    *,
    dispatcher: Dispatch | None = None,
    fetcher: Fetcher | None = None,
    embed_fn: EmbedFn | None = None,
    complete_fn: CompleteFn | None = None,
) -> JobOrchestrator:
    """Wire a JobOrchestrator from *cfg*; external clients may be substituted."""
    index = VectorIndex(conn, cfg.embedding.model, cfg.embedding.dimensions)
    index.ensure()
    models = [cfg.generation.model, *cfg.generation.fallback_models]
    return JobOrchestrator(
        repo=JobRepository(conn),
        resolver=ContentResolver(
            timeout=cfg.resolver.timeout,
            max_workers=cfg.resolver.max_workers,
            fetcher=fetcher,
        ),
        chunker=TextChunker(chunk_size=cfg.chunker.chunk_size, overlap=cfg.chunker.overlap),
        embedder=Embedder(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            batch_size=cfg.embedding.batch_size,
            max_attempts=cfg.embedding.max_attempts,
            backoff_min=cfg.embedding.backoff_min,
            backoff_max=cfg.embedding.backoff_max,
            embed_fn=embed_fn,
        ),
        index=index,
        synthesizers=[
            AnswerSynthesizer(
                model=m,
                max_tokens=cfg.generation.max_tokens,
                temperature=cfg.generation.temperature,
                complete_fn=complete_fn,
            )
            for m in models
        ],
        top_k=cfg.retrieval.top_k,
        on_fetch_failure=cfg.resolver.on_fetch_failure,
        dispatcher=dispatcher,
    )
