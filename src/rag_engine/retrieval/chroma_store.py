"""Remote similarity-search backend on a Chroma server."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any
from urllib.parse import urlparse

from rag_engine.config import VectorStoreConfig
from rag_engine.errors import ConfigurationError, DimensionMismatchError
from rag_engine.types import ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)

_SCALAR_TYPES = (str, int, float, bool)


class ChromaVectorStore:
    """Stores records in a Chroma collection using cosine distance.

    Chroma reports cosine *distance* in [0, 2]; it is mapped to a similarity
    in [0, 1] as `1 - distance`, clamped.
    """

    def __init__(self, client: Any, *, collection_name: str, dimension: int) -> None:
        if dimension is None or dimension < 1:
            raise ConfigurationError("ChromaVectorStore requires a positive dimension")
        self._client = client
        self._base_name = collection_name
        self.collection_name = collection_name
        self.dimension = dimension
        self._collection = self._open(collection_name)

    @classmethod
    def connect(cls, config: VectorStoreConfig) -> "ChromaVectorStore":
        """Connect to the configured server, bounded by `probe_timeout`."""

        if not config.url:
            raise ConfigurationError("VectorStoreConfig.url is required for the remote store")
        if config.dimension is None:
            raise ConfigurationError("VectorStoreConfig.dimension is required for the remote store")

        import chromadb

        parsed = urlparse(config.url)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chroma-probe")
        try:
            future = executor.submit(
                lambda: cls(
                    chromadb.HttpClient(
                        host=parsed.hostname or "localhost",
                        port=parsed.port or 8000,
                        ssl=parsed.scheme == "https",
                    ),
                    collection_name=config.collection_name,
                    dimension=config.dimension,
                )
            )
            try:
                store = future.result(timeout=config.probe_timeout)
            except FutureTimeout as exc:
                raise ConnectionError(
                    f"Chroma connection timed out after {config.probe_timeout}s"
                ) from exc
        finally:
            executor.shutdown(wait=False)
        logger.info("Connected to Chroma collection '%s' at %s", store.collection_name, config.url)
        return store

    def _open(self, name: str) -> Any:
        return self._client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "cosine", "description": "Document chunks"},
        )

    def recreate(self) -> None:
        name = f"{self._base_name}_{uuid.uuid4().hex[:8]}"
        self._collection = self._open(name)
        self.collection_name = name
        logger.info("Provisioned replacement Chroma collection '%s'", name)

    def add(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        for record in records:
            if len(record.vector) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(record.vector))
        self._collection.add(
            ids=[record.record_id for record in records],
            embeddings=[list(record.vector) for record in records],
            documents=[record.text for record in records],
            metadatas=[_sanitize_metadata(record.metadata) for record in records],
        )

    def remove(self, document_id: str) -> None:
        self._collection.delete(where={"document_id": document_id})

    def search(
        self,
        query_vector: list[float],
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int = 10,
    ) -> list[ScoredRecord]:
        if len(query_vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(query_vector))

        where: dict[str, Any] | None = None
        if document_ids:
            ids = list(document_ids)
            where = {"document_id": ids[0]} if len(ids) == 1 else {"document_id": {"$in": ids}}

        result = self._collection.query(
            query_embeddings=[list(query_vector)],
            n_results=max_results,
            where=where,
            include=["documents", "metadatas", "distances", "embeddings"],
        )

        ids_rows = result.get("ids") or [[]]
        if not ids_rows or not ids_rows[0]:
            return []
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        embeddings = result.get("embeddings")
        vectors = embeddings[0] if embeddings is not None and len(embeddings) else None

        hits: list[ScoredRecord] = []
        for index, record_id in enumerate(ids_rows[0]):
            distance = distances[index] if index < len(distances) else None
            vector = (
                [float(value) for value in vectors[index]]
                if vectors is not None and index < len(vectors)
                else []
            )
            record = VectorRecord(
                record_id=str(record_id),
                vector=vector,
                text=documents[index] if index < len(documents) else "",
                metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
            )
            hits.append(ScoredRecord(record=record, similarity=distance_to_similarity(distance)))
        return hits

    def count(self) -> int:
        return int(self._collection.count())


def distance_to_similarity(distance: float | None) -> float:
    if distance is None:
        return 0.0
    return max(0.0, min(1.0, 1.0 - float(distance)))


def _sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma accepts only scalar metadata values; drop None, stringify the rest."""

    clean: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        clean[key] = value if isinstance(value, _SCALAR_TYPES) else str(value)
    return clean
