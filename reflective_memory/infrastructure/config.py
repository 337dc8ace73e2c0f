from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Optional

from ..domain.models import MemoryScope, WorkspaceMode

NETWORKED_BACKENDS = ("qdrant", "milvus", "chroma")
SUPPORTED_BACKENDS = ("in-memory",) + NETWORKED_BACKENDS

DEFAULT_PORTS = {"qdrant": 6333, "milvus": 19530, "chroma": 8000}


def _parse_dotenv(dotenv_path: Path) -> Dict[str, str]:
    """Parse a simple .env file (KEY=VALUE per line, '#' comments, quotes stripped)."""
    env: Dict[str, str] = {}
    if dotenv_path.exists():
        with contextlib.suppress(OSError):
            for raw in dotenv_path.read_text(encoding="utf-8", errors="ignore").splitlines():
                s = raw.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                k, v = s.split("=", 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k:
                    env[k] = v
    return env


def env_get(key: str) -> Optional[str]:
    """Get environment value from process env, falling back to .env in CWD."""
    v = os.getenv(key)
    if v is not None and v.strip():
        return v.strip()
    v2 = _parse_dotenv(Path(".env")).get(key)
    return v2.strip() if v2 is not None and v2.strip() else None


def env_str(name: str, default: str) -> str:
    return env_get(name) or default


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)))
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(env_str(name, str(default)))
    except ValueError:
        return default


def ollama_url() -> str:
    return env_str("OLLAMA_URL", "http://localhost:11434").rstrip("/")


def embed_model() -> str:
    return env_str("EMBED_MODEL", "mxbai-embed-large")


def llm_model() -> Optional[str]:
    return env_get("LLM_MODEL")


@dataclass(frozen=True)
class VectorStoreConfig:
    """Settings for one backend driver bound to one collection.

    Fields:
        backend: One of SUPPORTED_BACKENDS.
        collection_name: Collection the driver binds to.
        dimension: Vector length enforced on every record.
        url: Base URL of a networked backend; None for in-memory.
        fallback_from: Requested backend when the in-memory store was
            substituted because no address was configured.
    """
    backend: str = "in-memory"
    collection_name: str = "knowledge_memory"
    dimension: int = 1536
    distance: str = "Cosine"
    url: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    max_vectors: int = 10000
    timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 1.0
    fallback_from: Optional[str] = None

    def with_collection(self, name: str) -> "VectorStoreConfig":
        return replace(self, collection_name=name)

    def with_dimension(self, dimension: int) -> "VectorStoreConfig":
        return replace(self, dimension=int(dimension))

    def resolve_fallback(self) -> "VectorStoreConfig":
        """Swap a networked backend without an address for the in-memory store."""
        if self.backend in NETWORKED_BACKENDS and not self.url:
            return replace(self, backend="in-memory", fallback_from=self.backend)
        return self


def _store_url(backend: str) -> Optional[str]:
    url = env_get("VECTOR_STORE_URL")
    if url:
        return url.rstrip("/")
    host = env_get("VECTOR_STORE_HOST")
    if not host or backend not in DEFAULT_PORTS:
        return None
    port = env_int("VECTOR_STORE_PORT", DEFAULT_PORTS[backend])
    scheme = "" if host.startswith(("http://", "https://")) else "http://"
    return f"{scheme}{host}:{port}"


def declared_dimension() -> Optional[int]:
    """EMBED_DIMENSION, else VECTOR_STORE_DIMENSION; None when neither holds a positive integer."""
    for name in ("EMBED_DIMENSION", "VECTOR_STORE_DIMENSION"):
        raw = env_get(name)
        if raw is None:
            continue
        try:
            value = int(raw)
        except ValueError:
            continue
        if value > 0:
            return value
    return None


def vector_store_config_from_env() -> VectorStoreConfig:
    """Resolve the knowledge store configuration from env/.env.

    EMBED_DIMENSION (the embedding model's declared size) wins over
    VECTOR_STORE_DIMENSION; with neither set the dimension defaults to 1536 and
    callers holding an embedder should ask it instead (see ``declared_dimension``).
    A networked backend without an address resolves to the in-memory store with
    ``fallback_from`` set.
    """
    backend = env_str("VECTOR_STORE_TYPE", "in-memory").lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(f"Unsupported VECTOR_STORE_TYPE={backend!r}; expected one of {', '.join(SUPPORTED_BACKENDS)}")
    dimension = declared_dimension() or 1536
    cfg = VectorStoreConfig(
        backend=backend,
        collection_name=env_str("MEMORY_COLLECTION_NAME", "knowledge_memory"),
        dimension=dimension,
        distance=env_str("VECTOR_STORE_DISTANCE", "Cosine"),
        url=_store_url(backend),
        api_key=env_get("VECTOR_STORE_API_KEY"),
        username=env_get("VECTOR_STORE_USERNAME"),
        password=env_get("VECTOR_STORE_PASSWORD"),
        max_vectors=env_int("VECTOR_STORE_MAX_VECTORS", 10000),
        timeout=env_float("MEMORY_HTTP_TIMEOUT", 10.0),
        max_retries=env_int("MEMORY_CONNECT_RETRIES", 3),
        retry_delay=env_float("MEMORY_RETRY_DELAY", 1.0),
    )
    return cfg.resolve_fallback()


def reflection_collection_name() -> Optional[str]:
    """Reflection storage is enabled only when REFLECTION_COLLECTION_NAME is set."""
    return env_get("REFLECTION_COLLECTION_NAME")


@dataclass(frozen=True)
class MemoryEngineSettings:
    similarity_threshold: float = 0.8
    top_k: int = 5


def engine_settings_from_env() -> MemoryEngineSettings:
    return MemoryEngineSettings(
        similarity_threshold=env_float("MEMORY_SIMILARITY_THRESHOLD", 0.8),
        top_k=env_int("MEMORY_TOP_K", 5),
    )


def memory_scope_from_env() -> MemoryScope:
    mode = env_str("MEMORY_WORKSPACE_MODE", "isolated").lower()
    try:
        workspace_mode = WorkspaceMode(mode)
    except ValueError:
        workspace_mode = WorkspaceMode.ISOLATED
    return MemoryScope(
        workspace_mode=workspace_mode,
        user_id=env_get("MEMORY_USER_ID"),
        project_id=env_get("MEMORY_PROJECT_ID"),
    )
