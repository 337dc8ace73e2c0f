from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..dto import StoreReasoningRequest, StoreReasoningResult
from ..dual_collection import DualCollectionManager
from ..embedding_availability import EmbeddingAvailability, embedding_availability
from ...domain.errors import CollectionMissingError, EmbeddingError, VectorStoreError
from ...domain.ids import MemoryIdAllocator
from ...domain.interfaces import EmbeddingService
from ...domain.models import CollectionKind, MemoryScope
from ...domain.payloads import ReasoningPayload
from ...infrastructure.logging import get_logger

logger = get_logger(__name__)

MSG_SKIPPED = "Storage skipped - quality threshold not met"
MSG_NO_REFLECTION = "Reflection vector store not available"
MSG_EMBEDDINGS_DISABLED = "Embeddings disabled; reasoning not stored (chat-only mode)"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unwrap(value: Any, key: str) -> Any:
    """Accept tool outputs shaped ``{"result": {key: ...}}`` as well as the bare object."""
    if isinstance(value, dict) and isinstance(value.get("result"), dict) and key in value["result"]:
        return value["result"][key]
    return value


def _valid_steps(trace: Any, errors: List[str]) -> List[Dict[str, Any]]:
    if not isinstance(trace, dict):
        errors.append("trace must be an object")
        return []
    steps = trace.get("steps")
    if not isinstance(steps, list) or not steps:
        errors.append("trace.steps must be a non-empty list")
        return []
    kept = [
        dict(s) for s in steps
        if isinstance(s, dict) and isinstance(s.get("type"), str) and s["type"].strip()
        and isinstance(s.get("content"), str) and s["content"].strip()
    ]
    if not kept:
        errors.append("trace.steps contains no step with both 'type' and 'content'")
    elif len(kept) < len(steps):
        logger.warning("Dropped malformed reasoning steps | kept=%s | total=%s", len(kept), len(steps))
    return kept


def _quality_score(value: Any) -> float:
    """Clamp to [0, 1]; numeric strings are parsed, anything else scores 0.5."""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.5
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.5
    return max(0.0, min(1.0, float(value)))


def _valid_evaluation(evaluation: Any, errors: List[str]) -> Optional[Dict[str, Any]]:
    if not isinstance(evaluation, dict):
        errors.append("evaluation must be an object")
        return None
    issues = evaluation.get("issues", [])
    suggestions = evaluation.get("suggestions", [])
    if not isinstance(issues, list):
        errors.append("evaluation.issues must be a list")
    if not isinstance(suggestions, list):
        errors.append("evaluation.suggestions must be a list")
    if errors:
        return None
    out = dict(evaluation)
    out["qualityScore"] = _quality_score(evaluation.get("qualityScore"))
    out["issues"] = list(issues)
    out["suggestions"] = list(suggestions)
    return out


def _context(trace: Dict[str, Any]) -> str:
    metadata = trace.get("metadata") or {}
    task = metadata.get("taskContext") or {}
    return str(task.get("goal") or task.get("input") or trace.get("context") or "No context provided")


def searchable_content(steps: List[Dict[str, Any]], quality: float) -> str:
    joined = " ".join(f"{s['type']}: {s['content']}" for s in steps)
    return f"{joined} Quality: {quality:.2f}"


class StoreReasoningUseCase:
    """Use-case: persist one reasoning trace and its evaluation as a single reflection record.

    Steps and evaluation always travel in one single-element insert. When the
    reflection collection is reported missing the store reconnects (which
    recreates it) and retries once.
    """

    def __init__(
        self,
        stores: DualCollectionManager,
        embeddings: Optional[EmbeddingService],
        scope: Optional[MemoryScope] = None,
        availability: Optional[EmbeddingAvailability] = None,
        ids: Optional[MemoryIdAllocator] = None,
    ) -> None:
        self._stores = stores
        self._emb = embeddings
        self._scope = scope or MemoryScope()
        self._availability = availability or embedding_availability()
        self._ids = ids or MemoryIdAllocator()

    def _fail(self, message: str, **kwargs: Any) -> StoreReasoningResult:
        return StoreReasoningResult(success=False, stored=False, message=message, error=message, timestamp=_now(), **kwargs)

    def _validate(self, req: StoreReasoningRequest) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]], Dict[str, Any], List[str]]:
        errors: List[str] = []
        trace = _unwrap(req.trace, "trace")
        steps = _valid_steps(trace, errors)
        evaluation = _valid_evaluation(_unwrap(req.evaluation, "evaluation"), errors)
        return steps, evaluation, trace if isinstance(trace, dict) else {}, errors

    async def execute(self, req: StoreReasoningRequest) -> StoreReasoningResult:
        steps, evaluation, trace, errors = self._validate(req)
        if errors:
            logger.warning("Reasoning trace rejected | errors=%s", "; ".join(errors))
            return self._fail("Invalid reasoning trace or evaluation", validation_errors=errors)

        if evaluation.get("shouldStore") is False:
            logger.info("Reasoning storage skipped | quality=%.2f", evaluation["qualityScore"])
            return StoreReasoningResult(success=True, stored=False, message=MSG_SKIPPED, timestamp=_now())

        store = self._stores.get_store(CollectionKind.REFLECTION)
        if store is None:
            logger.warning("Reasoning not stored | reason=%s", MSG_NO_REFLECTION)
            return self._fail(MSG_NO_REFLECTION)
        if self._emb is None:
            return self._fail("Embedding service not available")
        if not self._availability.is_available():
            return self._fail(MSG_EMBEDDINGS_DISABLED, mode="chat-only")

        quality = evaluation["qualityScore"]
        content = searchable_content(steps, quality)
        try:
            vector = await self._emb.embed(content)
        except EmbeddingError as exc:
            self._availability.trip(exc, self._emb.provider_name)
            return self._fail(f"Embedding failed: {exc}", mode="chat-only")

        memory_id = self._ids.next_reflection_id()
        payload = ReasoningPayload(
            id=memory_id,
            text=content,
            reasoning_steps=steps,
            evaluation=evaluation,
            context=_context(trace),
            timestamp=_now(),
            source_session_id=req.session_id or self._scope.session_id,
            user_id=self._scope.user_id,
            project_id=self._scope.project_id,
            workspace_mode=self._scope.workspace_mode,
        )
        metrics = {
            "stepCount": payload.step_count,
            "stepTypes": payload.step_types,
            "issueCount": payload.issue_count,
            "qualityScore": quality,
        }
        try:
            await self._insert(store, [vector], [memory_id], [payload.to_dict()])
        except VectorStoreError as exc:
            logger.error("Reasoning insert failed | id=%s | steps=%s | error=%s", memory_id, payload.step_count, exc)
            return StoreReasoningResult(success=True, stored=False, message="Reasoning insert failed",
                                        error=str(exc), timestamp=_now(), memory_id=memory_id, metrics=metrics)
        logger.info("Reasoning stored | id=%s | steps=%s | issues=%s | quality=%.2f",
                    memory_id, payload.step_count, payload.issue_count, quality)
        return StoreReasoningResult(success=True, stored=True, message="Reasoning trace stored",
                                    timestamp=_now(), memory_id=memory_id, metrics=metrics)

    async def _insert(self, store: Any, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        try:
            await store.insert(vectors, ids, payloads)
        except CollectionMissingError:
            logger.warning("Reflection collection missing | recreating and retrying once")
            manager = self._stores.get_manager(CollectionKind.REFLECTION)
            store = await manager.reconnect()
            await store.insert(vectors, ids, payloads)
