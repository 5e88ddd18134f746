"""Boundary-aware sliding-window chunking."""

from __future__ import annotations

from collections.abc import Sequence

from rag_engine.config import ChunkingConfig
from rag_engine.types import Document, DocumentChunk, TextSpan

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ")


def chunk_text(
    text: str,
    chunk_size: int,
    overlap: int,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> list[TextSpan]:
    """Split `text` into ordered, trimmed spans of at most ~`chunk_size` chars.

    Each window of `chunk_size` characters is cut at the last preferred
    separator found in its back half (paragraph break, line break, sentence
    end, space, in that order) or at the raw window edge when none exists.

    The next window starts at `max(start + chunk_size - overlap, cut)` but
    never past the cut, so no text is skipped; in practice every window
    begins where the previous one was cut.
    """

    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")

    length = len(text)
    if length <= chunk_size:
        span = _trimmed_span(text, 0, length)
        return [span] if span is not None else []

    spans: list[TextSpan] = []
    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            cut = _boundary_cut(text, start, end, chunk_size, separators)
            if cut is not None:
                end = cut

        span = _trimmed_span(text, start, end)
        if span is not None:
            spans.append(span)
        if end >= length:
            break

        # max(start + chunk_size - overlap, cut) capped at the cut.
        start = end

    return spans


def _boundary_cut(
    text: str, start: int, end: int, chunk_size: int, separators: Sequence[str]
) -> int | None:
    floor = start + chunk_size * 0.5
    for separator in separators:
        index = text.rfind(separator, start, end + len(separator))
        if index > floor:
            return min(index + len(separator), len(text))
    return None


def _trimmed_span(text: str, start: int, end: int) -> TextSpan | None:
    piece = text[start:end]
    stripped = piece.strip()
    if not stripped:
        return None
    leading = len(piece) - len(piece.lstrip())
    return TextSpan(text=stripped, start=start + leading, end=start + leading + len(stripped))


class TextChunker:
    """Turns documents into `DocumentChunk` objects with stable ids."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split(self, text: str) -> list[TextSpan]:
        return chunk_text(
            text,
            self.config.chunk_size,
            self.config.overlap,
            self.config.separators,
        )

    def chunk_document(self, document: Document) -> list[DocumentChunk]:
        """Chunk a document; identical input always yields identical chunks."""

        chunks: list[DocumentChunk] = []
        for ordinal, span in enumerate(self.split(document.raw_text)):
            chunks.append(
                DocumentChunk(
                    chunk_id=f"{document.doc_id}-chunk-{ordinal:04d}",
                    doc_id=document.doc_id,
                    text=span.text,
                    ordinal=ordinal,
                    char_span=(span.start, span.end),
                    metadata={
                        **document.metadata,
                        "document_id": document.doc_id,
                        "ordinal": ordinal,
                        "char_start": span.start,
                        "char_end": span.end,
                        "source_kind": document.source_kind,
                        "title": document.title,
                    },
                )
            )
        return chunks
