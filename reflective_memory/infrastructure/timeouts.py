from __future__ import annotations

from .config import env_float


def http_timeout_seconds(default: float = 10.0) -> float:
    """Per-request timeout for backend and provider HTTP calls (MEMORY_HTTP_TIMEOUT)."""
    value = env_float("MEMORY_HTTP_TIMEOUT", default)
    return value if value > 0 else default
