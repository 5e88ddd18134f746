"""Composition root: wires every component from an `EngineConfig`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from rag_engine.agent.engine import RagEngine
from rag_engine.agent.generator import Generator, create_chat_generator
from rag_engine.config import EngineConfig
from rag_engine.errors import ConfigurationError, ToolProcessError
from rag_engine.ingest.chunker import TextChunker
from rag_engine.ingest.embedder import Embedder, FallbackEmbedder, build_embedder
from rag_engine.ingest.pipeline import IngestPipeline
from rag_engine.obs.history import QueryHistory
from rag_engine.retrieval.chroma_store import ChromaVectorStore
from rag_engine.retrieval.vector_store import (
    FailoverVectorStore,
    InMemoryVectorStore,
    RecoverableVectorStore,
)
from rag_engine.sources.adapters import DEFAULT_ADAPTERS
from rag_engine.sources.aggregator import ContentAggregator
from rag_engine.sources.live import ToolLiveContext
from rag_engine.tools.supervisor import ToolServerSupervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RagServices:
    """Every long-lived component of one engine instance."""

    config: EngineConfig
    embedder: Embedder
    vector_store: FailoverVectorStore
    pipeline: IngestPipeline
    history: QueryHistory
    supervisor: ToolServerSupervisor
    aggregator: ContentAggregator
    engine: RagEngine
    startup_errors: dict[str, ToolProcessError | None] = field(default_factory=dict)

    async def start(self) -> None:
        self.history.load()
        self.startup_errors = await self.supervisor.start()

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()
        self.history.save()

    def health(self) -> dict[str, Any]:
        return {
            "vector_store": {
                "backend": self.vector_store.backend_name,
                "downgraded": self.vector_store.downgraded,
                "reason": self.vector_store.downgrade_reason,
                "records": self.vector_store.count(),
            },
            "embeddings": {
                "mode": "remote" if isinstance(self.embedder, FallbackEmbedder) else "local",
                "dimension": self.config.embedding.dimension,
            },
            "generation": {"configured": self.engine.generator is not None},
            "tool_servers": self.supervisor.status(),
            "documents": len(self.pipeline.catalog),
            "queries": len(self.history),
        }


def build_services(
    config: EngineConfig | None = None,
    *,
    generator: Generator | None = None,
    remote_embeddings: Any | None = None,
    remote_store: RecoverableVectorStore | None = None,
) -> RagServices:
    """Create all services; nothing is started until `RagServices.start()`."""

    config = config or EngineConfig()
    store_dimension = config.vector_store.dimension
    if store_dimension is not None and store_dimension != config.embedding.dimension:
        raise ConfigurationError(
            f"Vector store dimension {store_dimension} does not match "
            f"embedding dimension {config.embedding.dimension}"
        )

    embedder = build_embedder(config.embedding, remote=remote_embeddings)
    connect_error: Exception | None = None
    if remote_store is None and config.vector_store.url:
        try:
            remote_store = ChromaVectorStore.connect(config.vector_store)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning("Remote vector store unavailable, using in-process store: %s", exc)
            connect_error = exc
    vector_store = FailoverVectorStore(
        remote_store,
        InMemoryVectorStore(config.embedding.dimension),
        corruption_signatures=config.vector_store.corruption_signatures,
    )
    if connect_error is not None:
        vector_store.downgrade_reason = f"remote store unavailable at startup: {connect_error}"

    pipeline = IngestPipeline(TextChunker(config.chunking), embedder, vector_store)
    history = QueryHistory(config.history_path)
    supervisor = ToolServerSupervisor(config.tool_servers)
    aggregator = ContentAggregator(supervisor, pipeline)

    live_sources = []
    for name in config.live_sources:
        adapter = DEFAULT_ADAPTERS.get(name)
        if adapter is None:
            raise ConfigurationError(f"Unknown live source: {name}")
        live_sources.append(
            ToolLiveContext(
                supervisor,
                adapter,
                limit=config.query.live_item_limit,
                similarity=config.query.live_similarity,
            )
        )

    if generator is None and config.query.use_generation:
        generator = create_chat_generator(
            config.query.generation_model, timeout=config.query.generation_timeout
        )

    engine = RagEngine(
        embedder=embedder,
        vector_store=vector_store,
        history=history,
        generator=generator,
        live_sources=live_sources,
        config=config.query,
    )
    logger.info(
        "Services ready (store=%s, generation=%s, live sources=%s)",
        vector_store.backend_name,
        generator is not None,
        ", ".join(config.live_sources) or "none",
    )
    return RagServices(
        config=config,
        embedder=embedder,
        vector_store=vector_store,
        pipeline=pipeline,
        history=history,
        supervisor=supervisor,
        aggregator=aggregator,
        engine=engine,
    )
