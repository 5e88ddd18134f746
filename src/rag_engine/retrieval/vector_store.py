"""Vector store interfaces, in-process backend, and remote failover."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from math import sqrt
from typing import Protocol, TypeVar

from rag_engine.errors import ConfigurationError, DimensionMismatchError
from rag_engine.types import ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CORRUPTION_SIGNATURES: tuple[str, ...] = ("compaction", "log store")


class VectorStore(Protocol):
    """Minimal vector store contract for indexing and retrieval."""

    def add(self, records: Sequence[VectorRecord]) -> None:
        """Insert records."""

    def remove(self, document_id: str) -> None:
        """Delete every record belonging to `document_id`; no-op if none."""

    def search(
        self,
        query_vector: list[float],
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int = 10,
    ) -> list[ScoredRecord]:
        """Return up to `max_results` hits ranked by similarity in [0, 1]."""

    def count(self) -> int:
        """Number of stored records."""


class RecoverableVectorStore(VectorStore, Protocol):
    """A remote backend that can re-provision its collection."""

    def recreate(self) -> None:
        """Provision a fresh collection under a new identifier."""


class InMemoryVectorStore:
    """Linear-scan cosine index held in process memory.

    Writes take a lock; searches iterate over a snapshot taken under the same
    lock, so concurrent `add`/`remove` never disturb an in-flight search.
    """

    def __init__(self, dimension: int | None = None) -> None:
        self._dimension = dimension
        self._records: dict[str, VectorRecord] = {}
        self._lock = threading.RLock()

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def add(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        with self._lock:
            expected = self._dimension or len(records[0].vector)
            for record in records:
                if len(record.vector) != expected:
                    raise DimensionMismatchError(expected, len(record.vector))
            self._dimension = expected
            for record in records:
                self._records[record.record_id] = record

    def remove(self, document_id: str) -> None:
        with self._lock:
            stale = [
                record_id
                for record_id, record in self._records.items()
                if record.document_id == document_id
            ]
            for record_id in stale:
                del self._records[record_id]

    def search(
        self,
        query_vector: list[float],
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int = 10,
    ) -> list[ScoredRecord]:
        with self._lock:
            snapshot = list(self._records.values())
            dimension = self._dimension
        if dimension is not None and len(query_vector) != dimension:
            raise DimensionMismatchError(dimension, len(query_vector))

        allowed = set(document_ids) if document_ids else None
        candidates = [
            record
            for record in snapshot
            if allowed is None or record.document_id in allowed
        ]
        ranked = sorted(
            (
                ScoredRecord(record=record, similarity=cosine_similarity(query_vector, record.vector))
                for record in candidates
            ),
            key=lambda item: item.similarity,
            reverse=True,
        )
        return ranked[:max_results]

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def document_ids(self) -> set[str]:
        with self._lock:
            return {
                record.document_id
                for record in self._records.values()
                if record.document_id is not None
            }


def is_store_corruption(
    exc: BaseException, signatures: Sequence[str] = DEFAULT_CORRUPTION_SIGNATURES
) -> bool:
    message = str(exc).lower()
    return any(signature.lower() in message for signature in signatures)


class FailoverVectorStore:
    """Routes operations to a remote backend until it fails for good.

    A store-corruption failure (recognized by its message signature) gets
    one recovery cycle: the remote collection is recreated and the failed
    operation retried once. Any other remote failure, or a failed recovery,
    permanently downgrades the store to the in-process backend for the rest
    of the process lifetime. `remote=None` starts in the downgraded state.
    """

    def __init__(
        self,
        remote: RecoverableVectorStore | None,
        fallback: InMemoryVectorStore | None = None,
        *,
        corruption_signatures: Sequence[str] = DEFAULT_CORRUPTION_SIGNATURES,
    ) -> None:
        self._remote = remote
        self._fallback = fallback or InMemoryVectorStore()
        self._signatures = tuple(corruption_signatures)
        self._downgraded = remote is None
        self._generation = 0
        self._transition_lock = threading.Lock()
        self.downgrade_reason: str | None = None if remote is not None else "remote store not configured"

    @property
    def downgraded(self) -> bool:
        return self._downgraded

    @property
    def backend_name(self) -> str:
        return "in-process" if self._downgraded else "remote"

    @property
    def fallback(self) -> InMemoryVectorStore:
        return self._fallback

    def add(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        self._execute("add", lambda store: store.add(records))

    def remove(self, document_id: str) -> None:
        self._execute("remove", lambda store: store.remove(document_id))

    def search(
        self,
        query_vector: list[float],
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int = 10,
    ) -> list[ScoredRecord]:
        return self._execute(
            "search",
            lambda store: store.search(
                query_vector, document_ids=document_ids, max_results=max_results
            ),
        )

    def count(self) -> int:
        return self._execute("count", lambda store: store.count())

    def _execute(self, operation: str, call: Callable[[VectorStore], T]) -> T:
        remote = self._remote
        generation = self._generation
        if self._downgraded or remote is None:
            return call(self._fallback)
        try:
            return call(remote)
        except ConfigurationError:
            raise
        except Exception as exc:
            return self._recover(operation, remote, generation, exc, call)

    def _recover(
        self,
        operation: str,
        remote: RecoverableVectorStore,
        generation: int,
        exc: Exception,
        call: Callable[[VectorStore], T],
    ) -> T:
        with self._transition_lock:
            if not self._downgraded:
                if self._generation != generation:
                    # Another caller already recreated the collection; retry on it.
                    try:
                        return call(remote)
                    except ConfigurationError:
                        raise
                    except Exception as retry_exc:
                        self._downgrade(f"{operation} failed after recovery: {retry_exc}")
                elif is_store_corruption(exc, self._signatures):
                    logger.warning(
                        "Remote store %s hit a corruption-class error (%s); recreating collection",
                        operation,
                        exc,
                    )
                    try:
                        remote.recreate()
                        self._generation += 1
                        result = call(remote)
                        logger.info("Recovered remote store after corruption-class error")
                        return result
                    except ConfigurationError:
                        raise
                    except Exception as retry_exc:
                        self._downgrade(f"recovery failed during {operation}: {retry_exc}")
                else:
                    self._downgrade(f"{operation} failed: {exc}")
        return call(self._fallback)

    def _downgrade(self, reason: str) -> None:
        self._downgraded = True
        self.downgrade_reason = reason
        logger.warning("Vector store downgraded to in-process backend: %s", reason)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [0, 1]; zero vectors score 0."""

    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(0.0, min(1.0, numerator / (norm_a * norm_b)))
