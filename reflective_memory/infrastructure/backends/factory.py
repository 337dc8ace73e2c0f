from __future__ import annotations

from typing import Callable, Dict, Optional

from ...domain.errors import ValidationError
from ...domain.interfaces import VectorStore
from ..config import VectorStoreConfig
from ..pool import ConnectionPool, ConnectionSpec
from .chroma import ChromaVectorStore
from .in_memory import InMemoryVectorStore
from .milvus import MilvusVectorStore
from .qdrant import QdrantVectorStore


def connection_spec(config: VectorStoreConfig) -> ConnectionSpec:
    """Build the pooled-connection key and auth headers for a networked backend."""
    url = config.url or ""
    if config.backend == "qdrant":
        return ConnectionSpec(url=url, username=config.username or "", secret=config.api_key or "",
                              auth_header="api-key", timeout=config.timeout)
    if config.backend == "milvus":
        token = config.api_key or (f"{config.username}:{config.password}" if config.username else "")
        return ConnectionSpec(url=url, username=config.username or "", secret=token,
                              auth_header="Authorization", auth_scheme="Bearer", timeout=config.timeout)
    return ConnectionSpec(url=url, username=config.username or "", secret=config.api_key or "",
                          auth_header="Authorization", auth_scheme="Bearer", timeout=config.timeout)


def _in_memory(config: VectorStoreConfig, pool: Optional[ConnectionPool]) -> VectorStore:
    return InMemoryVectorStore(config.collection_name, config.dimension, config.distance, config.max_vectors)


def _networked(driver: Callable[..., VectorStore]) -> Callable[[VectorStoreConfig, Optional[ConnectionPool]], VectorStore]:
    def build(config: VectorStoreConfig, pool: Optional[ConnectionPool]) -> VectorStore:
        return driver(config.collection_name, config.dimension, connection_spec(config), config.distance, pool)
    return build


DRIVERS: Dict[str, Callable[[VectorStoreConfig, Optional[ConnectionPool]], VectorStore]] = {
    "in-memory": _in_memory,
    "qdrant": _networked(QdrantVectorStore),
    "milvus": _networked(MilvusVectorStore),
    "chroma": _networked(ChromaVectorStore),
}


def create_vector_store(config: VectorStoreConfig, pool: Optional[ConnectionPool] = None) -> VectorStore:
    """Instantiate the driver for ``config.backend``; networked drivers without a URL are rejected."""
    builder = DRIVERS.get(config.backend)
    if builder is None:
        raise ValidationError(f"Unknown vector store backend: {config.backend}", "configure")
    if config.backend != "in-memory" and not config.url:
        raise ValidationError(f"Backend {config.backend} requires a URL", "configure")
    return builder(config, pool)
