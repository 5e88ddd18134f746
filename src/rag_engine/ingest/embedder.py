"""Embedding abstractions, deterministic baseline, and remote fallback."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from rag_engine.config import EmbeddingConfig

logger = logging.getLogger(__name__)

_WORD_PATTERN = re.compile(r"\b\w+\b", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components."""

    dimension: int

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


class HashingEmbedder(Embedder):
    """Deterministic hashed bag-of-words embedding without external calls.

    Every word token is hashed into one of `dimension` buckets and adds
    `1/sqrt(token_count)` to it; the result is L2-normalized. The output is a
    pure function of the input text, so it is reproducible across processes.
    """

    def __init__(self, dimension: int = 384) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _WORD_PATTERN.findall(text.lower())
        if not tokens:
            return vector

        weight = 1.0 / sqrt(len(tokens))
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest, "little") % self.dimension] += weight

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class FallbackEmbedder(Embedder):
    """Delegates to a remote LangChain `Embeddings`, degrading to local hashing.

    Remote failures (network, auth, quota) are logged and answered by the
    local embedder; they never reach the caller.
    """

    def __init__(self, remote: Any, fallback: HashingEmbedder) -> None:
        self.remote = remote
        self.fallback = fallback
        self.dimension = fallback.dimension

    def embed(self, text: str) -> list[float]:
        try:
            vector = [float(value) for value in self.remote.embed_query(text)]
        except Exception as exc:
            logger.warning("Remote embedding failed, using local fallback: %s", exc)
            return self.fallback.embed(text)
        if len(vector) != self.dimension:
            logger.warning(
                "Remote embedding returned %d dimensions, expected %d; using local fallback",
                len(vector),
                self.dimension,
            )
            return self.fallback.embed(text)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = [
                [float(value) for value in vector]
                for vector in self.remote.embed_documents(texts)
            ]
        except Exception as exc:
            logger.warning("Remote batch embedding failed, using local fallback: %s", exc)
            return self.fallback.embed_documents(texts)
        if len(vectors) != len(texts) or any(len(v) != self.dimension for v in vectors):
            logger.warning("Remote batch embedding returned unexpected shape; using local fallback")
            return self.fallback.embed_documents(texts)
        return vectors


def build_embedder(config: EmbeddingConfig | None = None, remote: Any | None = None) -> Embedder:
    """Select the embedding variant at construction time.

    `remote` may be any LangChain `Embeddings`; when omitted and the config
    asks for a remote provider, an `OpenAIEmbeddings` client is created with
    the configured dimensionality.
    """

    config = config or EmbeddingConfig()
    local = HashingEmbedder(config.dimension)
    if remote is None and config.use_remote:
        from langchain_openai import OpenAIEmbeddings

        remote = OpenAIEmbeddings(
            model=config.remote_model,
            dimensions=config.dimension,
            timeout=config.request_timeout,
        )
    if remote is None:
        return local
    return FallbackEmbedder(remote, local)
