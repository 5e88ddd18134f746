import pytest
from pydantic import ValidationError

from rag_engine.config import VectorStoreConfig, load_config
from rag_engine.errors import ConfigurationError


def test_defaults_without_environment() -> None:
    config = load_config({})

    assert config.tool_servers == []
    assert config.history_path is None
    assert config.vector_store.url is None
    assert config.embedding.dimension == 384
    assert config.chunking.chunk_size == 1000
    assert config.chunking.overlap == 200
    assert not config.query.use_generation


def test_remote_store_requires_dimension() -> None:
    with pytest.raises(ConfigurationError):
        load_config({"CHROMA_URL": "http://localhost:8000"})
    with pytest.raises(ConfigurationError):
        load_config({"CHROMA_URL": "http://localhost:8000", "EMBEDDING_DIMENSION": "many"})
    with pytest.raises(ValidationError):
        VectorStoreConfig(url="http://localhost:8000")


def test_environment_selects_remote_capabilities() -> None:
    config = load_config(
        {
            "CHROMA_URL": "http://chroma:8000",
            "EMBEDDING_DIMENSION": "1536",
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_MODEL": "gpt-4o",
            "QUERY_HISTORY_PATH": "/tmp/history.json",
        }
    )

    assert config.vector_store.url == "http://chroma:8000"
    assert config.vector_store.dimension == 1536
    assert config.embedding.dimension == 1536
    assert config.embedding.use_remote
    assert config.query.use_generation
    assert config.query.generation_model == "gpt-4o"
    assert config.history_path == "/tmp/history.json"
