from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional

from ..domain.errors import BackendConnectionError, VectorStoreError
from ..domain.interfaces import VectorStore
from ..infrastructure.backends.factory import create_vector_store
from ..infrastructure.config import VectorStoreConfig
from ..infrastructure.logging import get_logger
from ..infrastructure.pool import ConnectionPool

logger = get_logger(__name__)

DriverFactory = Callable[[VectorStoreConfig, Optional[ConnectionPool]], VectorStore]


class VectorStoreManager:
    """Owns the lifecycle of one backend driver bound to one collection.

    The driver is chosen once, from the resolved configuration, when the
    manager is built. Driver errors propagate unchanged.
    """

    def __init__(
        self,
        config: VectorStoreConfig,
        pool: Optional[ConnectionPool] = None,
        driver_factory: DriverFactory = create_vector_store,
    ) -> None:
        resolved = config.resolve_fallback()
        if resolved.fallback_from:
            logger.warning(
                "No address configured for %s | collection=%s | falling back to in-memory store",
                resolved.fallback_from, resolved.collection_name,
            )
        self._config = resolved
        self._store = driver_factory(resolved, pool)
        self._connection_attempts = 0
        self._last_error: Optional[str] = None

    @property
    def config(self) -> VectorStoreConfig:
        """Resolved configuration; ``fallback_from`` is set when the in-memory store was substituted."""
        return self._config

    def get_store(self) -> VectorStore:
        return self._store

    def is_connected(self) -> bool:
        return self._store.is_connected()

    async def connect(self) -> VectorStore:
        """Connect with bounded retries and linear backoff.

        Raises:
            BackendConnectionError: When every attempt failed.
            ValidationError: When the backend rejects the collection shape (not retried).
        """
        if self._store.is_connected():
            return self._store
        attempts = max(1, self._config.max_retries)
        for attempt in range(1, attempts + 1):
            self._connection_attempts += 1
            try:
                await self._store.connect()
            except BackendConnectionError as exc:
                self._last_error = str(exc)
                logger.warning("Connect attempt failed | backend=%s | collection=%s | attempt=%s/%s | error=%s",
                               self._store.backend_type, self._config.collection_name, attempt, attempts, exc)
                if attempt < attempts:
                    await asyncio.sleep(self._config.retry_delay * attempt)
                continue
            self._last_error = None
            logger.info("Vector store connected | backend=%s | collection=%s",
                        self._store.backend_type, self._config.collection_name)
            return self._store
        raise BackendConnectionError(
            f"Failed to connect to {self._store.backend_type} collection {self._config.collection_name} "
            f"after {attempts} attempts: {self._last_error}",
            "connect",
        )

    async def disconnect(self) -> None:
        if self._store.is_connected():
            await self._store.disconnect()
            logger.info("Vector store disconnected | backend=%s | collection=%s",
                        self._store.backend_type, self._config.collection_name)

    async def reconnect(self) -> VectorStore:
        """Force a disconnect/connect cycle; connect() recreates a missing collection."""
        await self.disconnect()
        return await self.connect()

    async def health_check(self) -> Dict[str, object]:
        details: Dict[str, object] = {"status": "disconnected", "latency": None, "error": self._last_error}
        if self._store.is_connected():
            started = time.perf_counter()
            try:
                await self._store.list(limit=1)
            except VectorStoreError as exc:
                details = {"status": "unhealthy", "latency": None, "error": str(exc)}
            else:
                latency_ms = round((time.perf_counter() - started) * 1000, 2)
                details = {"status": "healthy", "latency": latency_ms, "error": None}
        return {
            "backend": self._store.backend_type,
            "overall": details["status"] == "healthy",
            "details": {"backend": details},
        }

    def get_info(self) -> Dict[str, object]:
        return {
            "connected": self._store.is_connected(),
            "backend": {
                "type": self._store.backend_type,
                "connected": self._store.is_connected(),
                "fallback": self._config.fallback_from is not None,
                "fallback_from": self._config.fallback_from,
                "collection_name": self._config.collection_name,
                "dimension": self._config.dimension,
            },
            "connection_attempts": self._connection_attempts,
            "last_error": self._last_error,
        }
