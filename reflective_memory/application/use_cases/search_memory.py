from __future__ import annotations

from typing import List, Optional

from ..dto import MemoryHit, QueryRequest, QueryResponse
from ..dual_collection import DualCollectionManager
from ..embedding_availability import EmbeddingAvailability, embedding_availability
from ...domain.errors import EmbeddingError, ValidationError
from ...domain.ids import memory_kind_for_id
from ...domain.interfaces import EmbeddingService
from ...domain.models import CollectionKind, QueryResult
from ...domain.payloads import parse_payload
from ...infrastructure.logging import get_logger, preview

logger = get_logger(__name__)


class SearchMemoryUseCase:
    """Use-case: embed query string and search knowledge (and optionally reflection) memories."""

    def __init__(self, stores: DualCollectionManager, embeddings: EmbeddingService,
                 availability: Optional[EmbeddingAvailability] = None) -> None:
        self._stores = stores
        self._emb = embeddings
        self._availability = availability or embedding_availability()

    async def execute(self, req: QueryRequest) -> QueryResponse:
        if not req.query.strip():
            return QueryResponse(success=False, error="query must not be empty")
        if not self._availability.is_available():
            return QueryResponse(success=True, mode="chat-only")
        try:
            vector = await self._emb.embed(req.query)
        except EmbeddingError as exc:
            self._availability.trip(exc, self._emb.provider_name)
            return QueryResponse(success=False, mode="chat-only", error=f"Embedding failed: {exc}")

        kinds = [CollectionKind.KNOWLEDGE]
        if req.include_reflection and self._stores.get_store(CollectionKind.REFLECTION) is not None:
            kinds.append(CollectionKind.REFLECTION)
        found: List[QueryResult] = []
        for kind in kinds:
            found.extend(await self._stores.get_store(kind).search(vector, req.k, req.filters))
        if req.score_threshold is not None:
            found = [r for r in found if r.score >= req.score_threshold]
        found.sort(key=lambda r: r.score, reverse=True)
        hits = [self._hit(r) for r in found[: req.k]]
        logger.info("Memory search | query=%s | collections=%s | hits=%s",
                    preview(req.query), ",".join(k.value for k in kinds), len(hits))
        return QueryResponse(success=True, hits=hits)

    @staticmethod
    def _hit(result: QueryResult) -> MemoryHit:
        """Stored payloads are parsed on the way out; a record that fails is still
        returned, flagged invalid, so legacy data stays visible.
        """
        kind = memory_kind_for_id(result.id)
        text, valid = result.text, True
        try:
            text = parse_payload(result.payload).text
        except ValidationError as exc:
            valid = False
            logger.warning("Stored payload failed validation | id=%s | error=%s", result.id, exc)
        return MemoryHit(id=result.id, kind=kind.value if kind else None, score=result.score, text=text,
                         payload=result.payload, valid=valid)
