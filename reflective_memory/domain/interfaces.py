from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .models import Point, QueryResult

Filters = Dict[str, Any]


class EmbeddingService(ABC):
    """Port for embedding provider (e.g., Ollama)."""

    provider_name: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed one text into a fixed-length vector.

        Raises:
            EmbeddingError: Provider/network failures; callers trip the breaker.
        """
        raise NotImplementedError

    @abstractmethod
    def get_dimension(self) -> int:
        """Return embedding dimension, probing provider if needed."""
        raise NotImplementedError


class LLMService(ABC):
    """Port for the optional LLM used to adjudicate memory decisions."""

    @abstractmethod
    async def direct_generate(self, prompt: str) -> str:
        raise NotImplementedError


class VectorStore(ABC):
    """Port for a vector database bound to one collection and one dimension.

    Every operation except connect() raises NotConnectedError before connect().
    Search scores are normalized so that 1.0 means identical.
    """

    backend_type: str = "unknown"

    def __init__(self, collection_name: str, dimension: int) -> None:
        self.collection_name = collection_name
        self.dimension = dimension

    @abstractmethod
    async def connect(self) -> None:
        """Connect (idempotent) and create the collection if absent."""
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def insert(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        """Insert-or-replace a batch of records."""
        raise NotImplementedError

    @abstractmethod
    async def search(self, query: List[float], limit: int = 10, filters: Optional[Filters] = None) -> List[QueryResult]:
        raise NotImplementedError

    @abstractmethod
    async def get(self, memory_id: int) -> Optional[Point]:
        """Return the stored record, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, memory_id: int, vector: List[float], payload: Dict[str, Any]) -> None:
        """Replace vector and payload of an existing record."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, memory_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list(self, filters: Optional[Filters] = None, limit: int = 100) -> Tuple[List[Point], int]:
        """Return up to ``limit`` records and the total matching count."""
        raise NotImplementedError

    @abstractmethod
    async def delete_collection(self) -> None:
        raise NotImplementedError
