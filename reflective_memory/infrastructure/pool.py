from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .http import RestClient
from .logging import get_logger

logger = get_logger(__name__)

PoolKey = Tuple[str, str, str]


@dataclass(frozen=True)
class ConnectionSpec:
    """Address and credentials of a networked backend.

    Fields:
        url: Base URL; normalized (lowercase, no trailing slash) for pooling.
        username: Optional account name.
        secret: API key, token or password.
        auth_header: Header that carries the secret (e.g. "api-key").
        auth_scheme: Optional scheme prefix for the header value (e.g. "Bearer").
    """
    url: str
    username: str = ""
    secret: str = field(default="", repr=False)
    auth_header: str = ""
    auth_scheme: str = ""
    timeout: float = 10.0

    def key(self) -> PoolKey:
        fingerprint = hashlib.sha256(self.secret.encode("utf-8")).hexdigest()[:16] if self.secret else ""
        return (self.url.strip().rstrip("/").lower(), self.username or "", fingerprint)

    def headers(self) -> Dict[str, str]:
        if not self.secret or not self.auth_header:
            return {}
        value = f"{self.auth_scheme} {self.secret}" if self.auth_scheme else self.secret
        return {self.auth_header: value}


@dataclass
class _PooledClient:
    client: RestClient
    ref_count: int = 0
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)


class ConnectionPool:
    """Process-wide cache of REST clients keyed by (address, username, credential fingerprint).

    Reference counts are mutated under a lock; the underlying session is closed
    when the last holder releases it.
    """

    def __init__(self, max_connections: int = 10) -> None:
        self.max_connections = max_connections
        self._lock = threading.Lock()
        self._clients: Dict[PoolKey, _PooledClient] = {}

    def get_client(self, spec: ConnectionSpec) -> RestClient:
        key = spec.key()
        with self._lock:
            entry = self._clients.get(key)
            if entry is None:
                if len(self._clients) >= self.max_connections:
                    logger.warning("Connection pool above limit | size=%s | max=%s", len(self._clients), self.max_connections)
                entry = _PooledClient(client=RestClient(spec.url, headers=spec.headers(), timeout=spec.timeout))
                self._clients[key] = entry
                logger.debug("Pool client created | address=%s", key[0])
            entry.ref_count += 1
            entry.last_used = time.time()
            return entry.client

    def release_client(self, spec: ConnectionSpec) -> None:
        key = spec.key()
        with self._lock:
            entry = self._clients.get(key)
            if entry is None:
                return
            entry.ref_count -= 1
            if entry.ref_count > 0:
                return
            del self._clients[key]
        entry.client.close()
        logger.debug("Pool client closed | address=%s", key[0])

    def has_connection(self, spec: ConnectionSpec) -> bool:
        with self._lock:
            return spec.key() in self._clients

    def ref_count(self, spec: ConnectionSpec) -> int:
        with self._lock:
            entry = self._clients.get(spec.key())
            return entry.ref_count if entry else 0

    def size(self) -> int:
        with self._lock:
            return len(self._clients)

    def stats(self) -> List[dict]:
        with self._lock:
            return [
                {
                    "address": key[0],
                    "username": key[1] or None,
                    "ref_count": entry.ref_count,
                    "created_at": entry.created_at,
                    "last_used": entry.last_used,
                }
                for key, entry in self._clients.items()
            ]

    def shutdown(self) -> None:
        with self._lock:
            entries = list(self._clients.values())
            self._clients.clear()
        for entry in entries:
            entry.client.close()


_default_pool: Optional[ConnectionPool] = None
_default_pool_lock = threading.Lock()


def default_pool() -> ConnectionPool:
    global _default_pool
    with _default_pool_lock:
        if _default_pool is None:
            _default_pool = ConnectionPool()
        return _default_pool
