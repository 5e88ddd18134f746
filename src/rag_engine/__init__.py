"""RAG query engine package."""

from .config import EngineConfig, load_config
from .runtime import RagServices, build_services

__all__ = ["EngineConfig", "RagServices", "build_services", "load_config"]
