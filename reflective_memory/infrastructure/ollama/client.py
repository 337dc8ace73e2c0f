from __future__ import annotations

import asyncio
from typing import List, Optional

import requests

from ...domain.errors import EmbeddingError
from ...domain.interfaces import EmbeddingService, LLMService
from ..config import embed_model, llm_model, ollama_url
from ..timeouts import http_timeout_seconds


class OllamaEmbeddingService(EmbeddingService):
    """Embedding adapter for Ollama /api/embeddings."""

    provider_name = "ollama"

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None, dimension: Optional[int] = None) -> None:
        self.base_url = (base_url or ollama_url()).rstrip("/")
        self.model = model or embed_model()
        self._dimension = dimension

    def _embed_sync(self, text: str) -> List[float]:
        timeout = http_timeout_seconds()
        try:
            r = requests.post(f"{self.base_url}/api/embeddings", json={"model": self.model, "prompt": text}, timeout=timeout)
            r.raise_for_status()
            values = [float(x) for x in r.json()["embedding"]]
        except requests.RequestException as exc:
            raise EmbeddingError(f"Ollama embedding request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Ollama returned an unexpected embedding payload: {exc}") from exc
        if not values:
            raise EmbeddingError("Ollama returned an empty embedding")
        return values

    async def embed(self, text: str) -> List[float]:
        values = await asyncio.to_thread(self._embed_sync, text)
        if self._dimension is None:
            self._dimension = len(values)
        return values

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self._embed_sync("probe"))
        return self._dimension


class OllamaLLMService(LLMService):
    """Single-shot completion through Ollama /api/generate, used for memory decisions."""

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
        self.base_url = (base_url or ollama_url()).rstrip("/")
        self.model = model or llm_model() or "llama3.1"

    def _generate_sync(self, prompt: str) -> str:
        timeout = http_timeout_seconds(60.0)
        r = requests.post(
            f"{self.base_url}/api/generate",
            json={"model": self.model, "prompt": prompt, "stream": False, "format": "json"},
            timeout=timeout,
        )
        r.raise_for_status()
        return str(r.json().get("response", ""))

    async def direct_generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate_sync, prompt)
