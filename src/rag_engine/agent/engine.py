"""Query orchestration: retrieval, live augmentation, generation, and history."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence

from rag_engine.agent.fallback import extractive_answer
from rag_engine.agent.generator import Generator
from rag_engine.config import QueryConfig
from rag_engine.errors import QueryValidationError
from rag_engine.ingest.embedder import Embedder, FallbackEmbedder, HashingEmbedder
from rag_engine.obs.history import QueryHistory, Timer
from rag_engine.retrieval.context import ContextComposer, confidence_of
from rag_engine.retrieval.vector_store import VectorStore
from rag_engine.sources.live import LiveContextSource
from rag_engine.types import (
    ContextItem,
    QueryRecord,
    QuerySettings,
    ScoredRecord,
    SearchResult,
    SourceRef,
    utc_now,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes documents for authors. "
    "Provide clear, accurate answers based on the provided context. "
    "If information is not available in the context, clearly state that."
)

_USER_PROMPT_TEMPLATE = """Based on the following context from the author's documents, please answer the question. If the answer cannot be found in the context, please say so.

Context:
{context}

Question: {query}

Answer:"""


def build_user_prompt(query: str, context: str) -> str:
    return _USER_PROMPT_TEMPLATE.format(context=context, query=query)


class RagEngine:
    """Answers questions over the indexed documents.

    Capability failures never fail a query: a broken live source is skipped
    and a broken (or absent) generator yields an extractive answer. Only
    invalid input and store configuration errors reach the caller.
    """

    def __init__(
        self,
        *,
        embedder: Embedder,
        vector_store: VectorStore,
        history: QueryHistory,
        generator: Generator | None = None,
        live_sources: Sequence[LiveContextSource] = (),
        composer: ContextComposer | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.history = history
        self.generator = generator
        self.live_sources = list(live_sources)
        self.config = config or QueryConfig()
        self.composer = composer or ContextComposer(self.config.max_context_chars)
        if isinstance(embedder, FallbackEmbedder):
            self._local_embedder = embedder.fallback
        else:
            self._local_embedder = HashingEmbedder(embedder.dimension)

    async def query(
        self,
        text: str,
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int | None = None,
        temperature: float | None = None,
        include_live: bool = True,
    ) -> QueryRecord:
        if not text or not text.strip():
            raise QueryValidationError("Query text must not be empty")
        settings = QuerySettings(
            max_results=self.config.max_results if max_results is None else max_results,
            temperature=self.config.temperature if temperature is None else temperature,
        )
        doc_filter = list(document_ids) if document_ids else None

        with Timer() as timer:
            hits = await self._retrieve(text, doc_filter, settings.max_results * 2)
            live_items: list[ContextItem] = []
            if include_live and doc_filter is None:
                live_items = await self._gather_live(text)

            context_items = self.composer.compose(hits, live_items)
            context_text = self.composer.render(context_items)
            answer, answer_mode = await self._answer(text, context_items, context_text, settings)

        record = QueryRecord(
            query_id=str(uuid.uuid4()),
            query=text,
            answer=answer,
            sources=[
                SourceRef(
                    record_id=item.record_id,
                    document_id=item.document_id,
                    text=item.text,
                    similarity=item.similarity,
                    origin=item.origin,
                    metadata=dict(item.metadata),
                )
                for item in context_items
            ],
            confidence=confidence_of(context_items),
            created_at=utc_now(),
            settings=settings,
            context=context_text,
            documents_searched=_count_documents(hits),
            latency_ms=timer.elapsed_ms,
            answer_mode=answer_mode,
        )
        self.history.add(record)
        logger.info(
            "Answered query %s (%s, %d context items, confidence %.2f)",
            record.query_id,
            answer_mode,
            len(context_items),
            record.confidence,
        )
        return record

    async def search(
        self,
        text: str,
        *,
        document_ids: Sequence[str] | None = None,
        max_results: int = 10,
        threshold: float = 0.0,
    ) -> SearchResult:
        """Semantic search without generation; hits below `threshold` are dropped."""

        if not text or not text.strip():
            raise QueryValidationError("Search text must not be empty")
        if max_results < 1:
            raise QueryValidationError("max_results must be at least 1")
        doc_filter = list(document_ids) if document_ids else None
        hits = await self._retrieve(text, doc_filter, max_results)
        return SearchResult(
            hits=[hit for hit in hits if hit.similarity >= threshold],
            documents_searched=_count_documents(hits),
            total_candidates=len(hits),
        )

    async def _retrieve(
        self, text: str, document_ids: list[str] | None, limit: int
    ) -> list[ScoredRecord]:
        try:
            vector = await asyncio.wait_for(
                asyncio.to_thread(self.embedder.embed_query, text),
                self.config.embedding_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Query embedding exceeded %.1fs, using local embedding",
                self.config.embedding_timeout,
            )
            vector = self._local_embedder.embed_query(text)
        return await asyncio.to_thread(
            self.vector_store.search,
            vector,
            document_ids=document_ids,
            max_results=limit,
        )

    async def _gather_live(self, text: str) -> list[ContextItem]:
        if not self.live_sources:
            return []
        results = await asyncio.gather(
            *(source.fetch(text) for source in self.live_sources),
            return_exceptions=True,
        )
        items: list[ContextItem] = []
        for source, result in zip(self.live_sources, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Live source %s failed, continuing without it: %s", source.name, result)
                continue
            items.extend(result)
        return items

    async def _answer(
        self,
        query: str,
        context_items: list[ContextItem],
        context_text: str,
        settings: QuerySettings,
    ) -> tuple[str, str]:
        if self.generator is not None and context_items:
            try:
                answer = await asyncio.wait_for(
                    asyncio.to_thread(
                        self.generator.generate,
                        _SYSTEM_PROMPT,
                        build_user_prompt(query, context_text),
                        settings.temperature,
                    ),
                    self.config.generation_timeout,
                )
                return answer, "generated"
            except asyncio.TimeoutError:
                logger.warning(
                    "Generation exceeded %.1fs, using extractive answer",
                    self.config.generation_timeout,
                )
            except Exception as exc:
                logger.warning("Generation failed, using extractive answer: %s", exc)
        return extractive_answer(query, context_items), "extractive"


def _count_documents(hits: Sequence[ScoredRecord]) -> int:
    return len({hit.record.document_id for hit in hits if hit.record.document_id is not None})
