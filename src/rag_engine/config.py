"""Configuration models for the RAG engine."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, model_validator

from rag_engine.errors import ConfigurationError


class ChunkingConfig(BaseModel):
    """Configures character-window chunking."""

    chunk_size: int = Field(default=1000, ge=1)
    overlap: int = Field(default=200, ge=0)
    separators: tuple[str, ...] = ("\n\n", "\n", ". ", " ")


class EmbeddingConfig(BaseModel):
    """Configures the embedding provider and its local fallback."""

    dimension: int = Field(default=384, ge=1)
    remote_model: str = "text-embedding-3-small"
    use_remote: bool = False
    request_timeout: float = Field(default=10.0, gt=0.0)


class VectorStoreConfig(BaseModel):
    """Configures the remote similarity-search backend."""

    url: str | None = None
    collection_name: str = "rag_engine_documents"
    dimension: int | None = Field(default=None, ge=1)
    probe_timeout: float = Field(default=5.0, gt=0.0)
    corruption_signatures: tuple[str, ...] = ("compaction", "log store")

    @model_validator(mode="after")
    def _require_dimension(self) -> "VectorStoreConfig":
        if self.url and self.dimension is None:
            raise ValueError("dimension is required when a remote store url is configured")
        return self


class QueryConfig(BaseModel):
    """Configures query-time retrieval and context assembly."""

    max_results: int = Field(default=5, ge=1, le=20)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_context_chars: int = Field(default=12000, ge=100)
    live_similarity: float = Field(default=0.8, ge=0.0, le=1.0)
    live_item_limit: int = Field(default=3, ge=0)
    generation_model: str = "gpt-4o-mini"
    use_generation: bool = False
    generation_timeout: float = Field(default=30.0, gt=0.0)
    embedding_timeout: float = Field(default=10.0, gt=0.0)


class ToolServerConfig(BaseModel):
    """Describes one tool-provider worker process."""

    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    ready_markers: tuple[str, ...] = ("MCP server running", "server running")
    startup_timeout: float = Field(default=10.0, gt=0.0)
    call_timeout: float = Field(default=30.0, gt=0.0)
    shutdown_grace: float = Field(default=5.0, gt=0.0)


class EngineConfig(BaseModel):
    """Top-level configuration used by the runtime composition root."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    tool_servers: list[ToolServerConfig] = Field(default_factory=list)
    live_sources: list[str] = Field(default_factory=list)
    history_path: str | None = None


def load_config(environ: Mapping[str, str] | None = None) -> EngineConfig:
    """Build an `EngineConfig` from environment variables.

    A configured remote store (`CHROMA_URL`) requires `EMBEDDING_DIMENSION`;
    a missing or non-numeric value is fatal.
    """

    env = os.environ if environ is None else environ
    chroma_url = env.get("CHROMA_URL") or None
    raw_dimension = env.get("EMBEDDING_DIMENSION")

    dimension: int | None = None
    if raw_dimension:
        try:
            dimension = int(raw_dimension)
        except ValueError as exc:
            raise ConfigurationError(
                f"EMBEDDING_DIMENSION must be an integer, got {raw_dimension!r}"
            ) from exc
    if chroma_url and dimension is None:
        raise ConfigurationError("EMBEDDING_DIMENSION is required when CHROMA_URL is set")

    has_api_key = bool(env.get("OPENAI_API_KEY"))
    embedding = EmbeddingConfig(
        dimension=dimension or 384,
        remote_model=env.get("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        use_remote=has_api_key,
    )
    return EngineConfig(
        embedding=embedding,
        vector_store=VectorStoreConfig(url=chroma_url, dimension=dimension),
        query=QueryConfig(
            generation_model=env.get("OPENAI_MODEL", "gpt-4o-mini"),
            use_generation=has_api_key,
        ),
        history_path=env.get("QUERY_HISTORY_PATH") or None,
    )
