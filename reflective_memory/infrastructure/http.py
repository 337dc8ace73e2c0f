from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import requests

from ..domain.errors import BackendError
from .logging import get_logger, preview

logger = get_logger(__name__)


class RestClient:
    """Thin JSON-over-HTTP client shared through the connection pool.

    Transport failures, timeouts and non-2xx responses all surface as
    BackendError; callers map status codes to more specific errors.
    """

    def __init__(self, base_url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        self._session.headers.update(headers or {})
        self.closed = False

    def request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self._session.request(method, url, json=json, params=params, timeout=self.timeout)
        except requests.Timeout as exc:
            raise BackendError(f"{method} {url} timed out after {self.timeout}s", operation) from exc
        except requests.RequestException as exc:
            raise BackendError(f"{method} {url} failed: {exc}", operation) from exc
        if r.status_code >= 400:
            logger.debug("HTTP error | %s %s | status=%s | body=%s", method, url, r.status_code, preview(r.text, 200))
            raise BackendError(
                f"{method} {url} returned HTTP {r.status_code}: {preview(r.text, 200)}",
                operation,
                status_code=r.status_code,
            )
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError as exc:
            raise BackendError(f"{method} {url} returned non-JSON body", operation) from exc

    async def arequest(self, method: str, path: str, **kwargs: Any) -> Any:
        """Run ``request`` on a worker thread so the event loop is not blocked."""
        return await asyncio.to_thread(self.request, method, path, **kwargs)

    def close(self) -> None:
        self._session.close()
        self.closed = True
