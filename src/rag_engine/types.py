"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Document:
    """A source document before chunking."""

    doc_id: str
    source_kind: str
    title: str
    raw_text: str
    created_at: datetime = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TextSpan:
    """A trimmed chunk of text with offsets into its source."""

    text: str
    start: int
    end: int


@dataclass(slots=True)
class DocumentChunk:
    """A chunked section of a source document."""

    chunk_id: str
    doc_id: str
    text: str
    ordinal: int
    char_span: tuple[int, int]
    metadata: dict[str, Any]


@dataclass(slots=True)
class VectorRecord:
    """The unit stored in and returned by a vector store."""

    record_id: str
    vector: list[float]
    text: str
    metadata: dict[str, Any]

    @property
    def document_id(self) -> str | None:
        value = self.metadata.get("document_id")
        return None if value is None else str(value)


@dataclass(slots=True)
class ScoredRecord:
    """A search hit with similarity normalized to [0, 1]."""

    record: VectorRecord
    similarity: float


@dataclass(slots=True)
class ContextItem:
    """A candidate passage offered to the generation step."""

    record_id: str
    document_id: str | None
    text: str
    similarity: float
    origin: Literal["store", "live"] = "store"
    metadata: dict[str, Any] = field(default_factory=dict)


class QuerySettings(BaseModel):
    """Per-query generation and retrieval settings."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_results: int = Field(default=5, ge=1, le=20)


@dataclass(slots=True)
class SourceRef:
    """A context item referenced by a recorded answer."""

    record_id: str
    document_id: str | None
    text: str
    similarity: float
    origin: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class QueryRecord:
    query_id: str
    query: str
    answer: str
    sources: list[SourceRef]
    confidence: float
    created_at: datetime
    settings: QuerySettings
    context: str = ""
    documents_searched: int = 0
    latency_ms: float = 0.0
    answer_mode: str = "generated"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.query_id,
            "query": self.query,
            "answer": self.answer,
            "sources": [
                {
                    "id": source.record_id,
                    "document_id": source.document_id,
                    "text": source.text,
                    "similarity": source.similarity,
                    "origin": source.origin,
                    "metadata": source.metadata,
                }
                for source in self.sources
            ],
            "confidence": self.confidence,
            "timestamp": self.created_at.isoformat(),
            "settings": self.settings.model_dump(),
            "context": self.context,
            "documents_searched": self.documents_searched,
            "latency_ms": self.latency_ms,
            "answer_mode": self.answer_mode,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "QueryRecord":
        return cls(
            query_id=str(payload["id"]),
            query=str(payload["query"]),
            answer=str(payload.get("answer", "")),
            sources=[
                SourceRef(
                    record_id=str(item["id"]),
                    document_id=item.get("document_id"),
                    text=str(item.get("text", "")),
                    similarity=float(item.get("similarity", 0.0)),
                    origin=str(item.get("origin", "store")),
                    metadata=dict(item.get("metadata") or {}),
                )
                for item in payload.get("sources", [])
            ],
            confidence=float(payload.get("confidence", 0.0)),
            created_at=datetime.fromisoformat(payload["timestamp"]),
            settings=QuerySettings.model_validate(payload.get("settings") or {}),
            context=str(payload.get("context", "")),
            documents_searched=int(payload.get("documents_searched", 0)),
            latency_ms=float(payload.get("latency_ms", 0.0)),
            answer_mode=str(payload.get("answer_mode", "generated")),
        )


@dataclass(slots=True)
class SyncState:
    """Per-source bookkeeping updated after each completed sync pass."""

    item_count: int
    last_sync_time: datetime


@dataclass(slots=True)
class SourceSyncReport:
    fetched: int
    processed: int
    last_sync: datetime


@dataclass(slots=True)
class SyncResult:
    reports: dict[str, SourceSyncReport] = field(default_factory=dict)
    total_processed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class SearchResult:
    """Semantic search hits without generation."""

    hits: list[ScoredRecord]
    documents_searched: int
    total_candidates: int
