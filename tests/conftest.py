"""
Pytest configuration and fixtures for reflective memory tests.

Provides deterministic fake capabilities (embeddings, LLM) and in-memory
store managers so no network service is needed.
"""

import hashlib
import os
import random
from typing import Dict, List, Optional

import pytest

from reflective_memory.application.dual_collection import DualCollectionManager
from reflective_memory.application.embedding_availability import EmbeddingAvailability
from reflective_memory.domain.errors import EmbeddingError
from reflective_memory.domain.ids import MemoryIdAllocator
from reflective_memory.domain.interfaces import EmbeddingService, LLMService
from reflective_memory.infrastructure.config import VectorStoreConfig

DIM = 64


class FakeEmbedder(EmbeddingService):
    """Deterministic embedder: explicit vectors for known texts, hashed vectors otherwise.

    Hashed components are centred on zero, so unrelated texts have near-zero
    cosine similarity at this dimension.
    """

    provider_name = "fake"

    def __init__(self, dimension: int = DIM, vectors: Optional[Dict[str, List[float]]] = None, fail: bool = False):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding provider unavailable")
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha512(text.encode("utf-8")).digest()
        return [(b - 127.5) / 127.5 for b in digest[: self.dimension]]

    def get_dimension(self) -> int:
        return self.dimension


class FakeLLM(LLMService):
    def __init__(self, response: str = "", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    async def direct_generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


def unit_vector(index: int, dimension: int = DIM) -> List[float]:
    v = [0.0] * dimension
    v[index] = 1.0
    return v


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def availability():
    """Fresh circuit breaker so tests never share the process-wide one."""
    return EmbeddingAvailability()


@pytest.fixture
def id_allocator():
    return MemoryIdAllocator(random.Random(1234))


@pytest.fixture
def store_config():
    return VectorStoreConfig(backend="in-memory", collection_name="knowledge_test", dimension=DIM, retry_delay=0.0)


@pytest.fixture
async def stores(store_config):
    """Connected knowledge + reflection managers backed by the in-memory store."""
    manager = DualCollectionManager(store_config, "reflection_test")
    await manager.connect()
    yield manager
    await manager.disconnect()


@pytest.fixture
async def knowledge_only_stores(store_config):
    manager = DualCollectionManager(store_config, None)
    await manager.connect()
    yield manager
    await manager.disconnect()


@pytest.fixture
def clean_environment():
    """Clean environment variables for testing."""
    env_vars_to_clean = [
        'VECTOR_STORE_TYPE', 'VECTOR_STORE_URL', 'VECTOR_STORE_HOST', 'VECTOR_STORE_PORT',
        'VECTOR_STORE_API_KEY', 'VECTOR_STORE_USERNAME', 'VECTOR_STORE_PASSWORD',
        'VECTOR_STORE_DIMENSION', 'VECTOR_STORE_DISTANCE', 'VECTOR_STORE_MAX_VECTORS', 'EMBED_DIMENSION',
        'MEMORY_COLLECTION_NAME', 'REFLECTION_COLLECTION_NAME', 'MEMORY_SIMILARITY_THRESHOLD', 'MEMORY_TOP_K',
        'MEMORY_CONNECT_RETRIES', 'MEMORY_RETRY_DELAY', 'MEMORY_HTTP_TIMEOUT',
        'MEMORY_WORKSPACE_MODE', 'MEMORY_USER_ID', 'MEMORY_PROJECT_ID',
        'OLLAMA_URL', 'EMBED_MODEL', 'LLM_MODEL',
    ]

    original_env = {}
    for var in env_vars_to_clean:
        if var in os.environ:
            original_env[var] = os.environ[var]
            del os.environ[var]

    yield

    for var in env_vars_to_clean:
        os.environ.pop(var, None)
    for var, value in original_env.items():
        os.environ[var] = value


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "cli: mark test as CLI command test")
    config.addinivalue_line("markers", "env: mark test as environment resolution test")
