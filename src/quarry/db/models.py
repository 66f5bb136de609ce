"""Domain models for the quarry database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar


class JobStatus(str, Enum):
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class AnalysisPayload:
    """Typed payload for an 'analysis' job: the ordered raw sources.

    Each job kind owns one payload class with a fixed schema; the kind tag is
    stored alongside the serialised payload in the jobs table.
    """

    kind: ClassVar[str] = "analysis"

    sources: tuple[str, ...]

    def to_json(self) -> str:
        return json.dumps({"sources": list(self.sources)})

    @classmethod
    def from_json(cls, raw: str) -> AnalysisPayload:
        return cls(sources=tuple(json.loads(raw).get("sources", [])))


PAYLOAD_KINDS: dict[str, type[AnalysisPayload]] = {
    AnalysisPayload.kind: AnalysisPayload,
}


@dataclass
class SourceFailure:
    """A source the resolver could not fetch, recorded against its job."""

    source_index: int
    source: str
    reason: str


@dataclass
class Job:
    id: str
    name: str
    payload: AnalysisPayload
    status: JobStatus = JobStatus.RUNNING
    answer: str | None = None
    failures: list[SourceFailure] = field(default_factory=list)
    created_at: str | None = None

    @property
    def kind(self) -> str:
        return self.payload.kind

    @property
    def sources(self) -> tuple[str, ...]:
        return self.payload.sources


@dataclass(frozen=True)
class Chunk:
    """Ephemeral text segment awaiting embedding; never persisted on its own."""

    source_index: int
    sequence_index: int
    text: str

    @property
    def record_id(self) -> str:
        return f"chunk-{self.source_index}-{self.sequence_index}"


@dataclass(frozen=True)
class RecordPayload:
    content: str
    source_index: int


@dataclass(frozen=True)
class VectorRecord:
    id: str
    vector: list[float]
    payload: RecordPayload
