"""End-to-end ingest pipeline: chunk -> embed -> add."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any

from rag_engine.ingest.chunker import TextChunker
from rag_engine.ingest.embedder import Embedder
from rag_engine.retrieval.vector_store import VectorStore
from rag_engine.types import Document, DocumentChunk, VectorRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CatalogEntry:
    document: Document
    chunk_count: int


class DocumentCatalog:
    """In-memory registry of indexed documents, keyed by document id."""

    def __init__(self) -> None:
        self._entries: dict[str, CatalogEntry] = {}
        self._lock = threading.Lock()

    def add(self, document: Document, chunk_count: int) -> None:
        with self._lock:
            self._entries[document.doc_id] = CatalogEntry(document, chunk_count)

    def get(self, doc_id: str) -> Document | None:
        with self._lock:
            entry = self._entries.get(doc_id)
        return entry.document if entry else None

    def remove(self, doc_id: str) -> bool:
        with self._lock:
            return self._entries.pop(doc_id, None) is not None

    def list(self, source_kind: str | None = None) -> list[Document]:
        with self._lock:
            entries = list(self._entries.values())
        return [
            entry.document
            for entry in entries
            if source_kind is None or entry.document.source_kind == source_kind
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            entries = list(self._entries.values())
        by_source: dict[str, int] = {}
        for entry in entries:
            kind = entry.document.source_kind
            by_source[kind] = by_source.get(kind, 0) + 1
        return {
            "total_documents": len(entries),
            "total_chunks": sum(entry.chunk_count for entry in entries),
            "total_characters": sum(len(entry.document.raw_text) for entry in entries),
            "by_source": by_source,
        }


class IngestPipeline:
    """Coordinates chunker/embedder/vector store stages.

    Chunk ids derive from the document id and ordinal, so re-ingesting a
    document replaces its previous chunks instead of duplicating them.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        catalog: DocumentCatalog | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self.catalog = catalog if catalog is not None else DocumentCatalog()

    def ingest(self, document: Document) -> list[DocumentChunk]:
        """Index a single document and return the chunks created."""

        chunks = self._chunker.chunk_document(document)
        if self.catalog.get(document.doc_id) is not None:
            self._vector_store.remove(document.doc_id)

        if chunks:
            vectors = self._embedder.embed_documents([chunk.text for chunk in chunks])
            self._vector_store.add(
                [
                    VectorRecord(
                        record_id=chunk.chunk_id,
                        vector=vector,
                        text=chunk.text,
                        metadata=dict(chunk.metadata),
                    )
                    for chunk, vector in zip(chunks, vectors, strict=True)
                ]
            )
        self.catalog.add(document, len(chunks))
        logger.info("Indexed document %s (%d chunks)", document.doc_id, len(chunks))
        return chunks

    def ingest_text(
        self,
        text: str,
        *,
        title: str,
        doc_id: str | None = None,
        source_kind: str = "upload",
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Upload path: wrap raw text in a `Document` and index it."""

        document = Document(
            doc_id=doc_id or str(uuid.uuid4()),
            source_kind=source_kind,
            title=title,
            raw_text=text,
            metadata=dict(metadata or {}),
        )
        self.ingest(document)
        return document

    def reindex(self, doc_id: str | None = None) -> int:
        """Re-chunk and re-embed catalogued documents, e.g. after the embedding
        provider changed. Returns the number of documents reindexed.
        """

        if doc_id is not None:
            document = self.catalog.get(doc_id)
            if document is None:
                raise KeyError(f"Document not found: {doc_id}")
            documents = [document]
        else:
            documents = self.catalog.list()
        for document in documents:
            self.ingest(document)
        logger.info("Reindexed %d documents", len(documents))
        return len(documents)

    def remove(self, doc_id: str) -> bool:
        """Delete a document and all of its chunks; False if it was unknown."""

        self._vector_store.remove(doc_id)
        removed = self.catalog.remove(doc_id)
        if removed:
            logger.info("Removed document %s", doc_id)
        return removed
