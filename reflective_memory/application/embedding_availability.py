from __future__ import annotations

import threading
import time
from typing import Dict, Optional

from ..infrastructure.logging import get_logger

logger = get_logger(__name__)


class EmbeddingAvailability:
    """Process-wide circuit breaker for the embedding provider.

    The first recorded failure disables embeddings until the process restarts
    (or ``reset`` is called). Every consumer checks ``is_available`` before
    calling the provider and takes its degraded chat-only path otherwise.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._disabled = False
        self._reason: Optional[str] = None
        self._provider: Optional[str] = None
        self._disabled_at: Optional[float] = None

    def is_available(self) -> bool:
        with self._lock:
            return not self._disabled

    def trip(self, error: BaseException, provider: str = "unknown") -> bool:
        """Disable embeddings. Returns True only for the call that tripped the breaker."""
        with self._lock:
            if self._disabled:
                return False
            self._disabled = True
            self._reason = str(error)
            self._provider = provider
            self._disabled_at = time.time()
        logger.error("Embeddings disabled for this process | provider=%s | reason=%s", provider, error)
        return True

    def reset(self) -> None:
        with self._lock:
            self._disabled = False
            self._reason = None
            self._provider = None
            self._disabled_at = None

    def status(self) -> Dict[str, object]:
        with self._lock:
            return {
                "available": not self._disabled,
                "provider": self._provider,
                "reason": self._reason,
                "disabled_at": self._disabled_at,
            }


_process_availability = EmbeddingAvailability()


def embedding_availability() -> EmbeddingAvailability:
    return _process_availability
