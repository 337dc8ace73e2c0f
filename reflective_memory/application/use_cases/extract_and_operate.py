from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from ..classifiers import Classifier, FallbackClassifier, HeuristicClassifier, LLMClassifier
from ..dto import ExtractOptions, ExtractRequest, ExtractResult, FactOutcome
from ..dual_collection import DualCollectionManager
from ..embedding_availability import EmbeddingAvailability, embedding_availability
from ..significance import extract_code_pattern, extract_technical_tags, infer_domain, is_significant
from ...domain.errors import EmbeddingError, VectorStoreError
from ...domain.ids import MemoryIdAllocator
from ...domain.interfaces import EmbeddingService, LLMService, VectorStore
from ...domain.models import CollectionKind, Decision, MemoryEvent, MemoryScope, QualitySource, QueryResult
from ...domain.payloads import KnowledgePayload
from ...infrastructure.config import MemoryEngineSettings
from ...infrastructure.logging import get_logger, preview

logger = get_logger(__name__)

REASON_EMBEDDING_FAILED = "Fallback ADD due to embedding failure"
REASON_EMBEDDINGS_DISABLED = "Embeddings disabled for this process; best-effort ADD without similarity check"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _option_error(options: ExtractOptions, settings: MemoryEngineSettings) -> Optional[str]:
    """Check the effective per-call values (options over engine settings)."""
    top_k = options.top_k if options.top_k is not None else settings.top_k
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
        return f"top_k must be a positive integer, got {top_k!r}"
    threshold = options.similarity_threshold if options.similarity_threshold is not None else settings.similarity_threshold
    for name, value in (("similarity_threshold", threshold), ("confidence_threshold", options.confidence_threshold)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0):
            return f"{name} must be between 0 and 1, got {value!r}"
    return None


class ExtractAndOperateUseCase:
    """Use-case: filter facts for significance, then classify and persist each one.

    Facts are processed one at a time (embed, search, classify, persist) so a
    later fact sees memories written by earlier facts of the same call. A
    failure on one fact is recorded on its outcome and never stops the batch.
    """

    def __init__(
        self,
        stores: DualCollectionManager,
        embeddings: Optional[EmbeddingService],
        llm: Optional[LLMService] = None,
        settings: Optional[MemoryEngineSettings] = None,
        scope: Optional[MemoryScope] = None,
        availability: Optional[EmbeddingAvailability] = None,
        ids: Optional[MemoryIdAllocator] = None,
    ) -> None:
        self._stores = stores
        self._emb = embeddings
        self._settings = settings or MemoryEngineSettings()
        self._scope = scope or MemoryScope()
        self._availability = availability or embedding_availability()
        self._ids = ids or MemoryIdAllocator()
        self._heuristic = HeuristicClassifier()
        self._assisted: Optional[Classifier] = FallbackClassifier(LLMClassifier(llm), self._heuristic) if llm else None

    def _classifier(self, options: ExtractOptions) -> Classifier:
        if options.use_llm and self._assisted is not None:
            return self._assisted
        return self._heuristic

    async def execute(self, req: ExtractRequest) -> ExtractResult:
        timestamp = _now()
        if self._emb is None:
            return ExtractResult(success=False, timestamp=timestamp, error="Embedding service not available")
        store = self._stores.get_store(CollectionKind.KNOWLEDGE)
        if store is None or not store.is_connected():
            return ExtractResult(success=False, timestamp=timestamp, error="Knowledge vector store not connected")
        if not isinstance(req.facts, list) or not all(isinstance(f, str) for f in req.facts):
            return ExtractResult(success=False, timestamp=timestamp, error="facts must be a list of strings")
        option_error = _option_error(req.options, self._settings)
        if option_error:
            return ExtractResult(success=False, timestamp=timestamp, error=option_error)

        result = ExtractResult(success=True, timestamp=timestamp)
        significant: List[str] = []
        for raw in req.facts:
            fact = raw.strip()
            if is_significant(fact):
                significant.append(fact)
            else:
                result.skipped_facts.append(preview(fact))
                logger.info("Fact skipped as not significant | fact=%s", preview(fact))
        result.extracted = len(significant)
        result.skipped = len(result.skipped_facts)
        logger.info("Extract request | facts=%s | significant=%s | session=%s",
                    len(req.facts), len(significant), req.session_id)

        if not self._availability.is_available():
            result.mode = "chat-only"
            result.outcomes = [self._degraded(fact, REASON_EMBEDDINGS_DISABLED) for fact in significant]
            logger.warning("Embeddings disabled | chat-only mode | facts_not_persisted=%s", len(significant))
            return result

        classifier = self._classifier(req.options)
        for fact in significant:
            try:
                outcome = await self._process(fact, store, classifier, req)
            except Exception as exc:
                logger.exception("Fact processing failed | fact=%s", preview(fact))
                outcome = FactOutcome(fact=fact, event=MemoryEvent.NONE, confidence=0.0,
                                      reason="Processing failed", quality_source=QualitySource.HEURISTIC.value,
                                      error=str(exc))
            result.outcomes.append(outcome)
        if not self._availability.is_available():
            result.mode = "chat-only"
        result.failed = sum(1 for o in result.outcomes if o.error)
        return result

    def _degraded(self, fact: str, reason: str, error: Optional[str] = None, confidence: float = 0.5) -> FactOutcome:
        return FactOutcome(
            fact=fact,
            event=MemoryEvent.ADD,
            confidence=confidence,
            reason=reason,
            quality_source=QualitySource.HEURISTIC.value,
            degraded=True,
            error=error,
            tags=extract_technical_tags(fact),
        )

    async def _process(self, fact: str, store: VectorStore, classifier: Classifier, req: ExtractRequest) -> FactOutcome:
        if not self._availability.is_available():
            return self._degraded(fact, REASON_EMBEDDINGS_DISABLED)
        try:
            vector = await self._emb.embed(fact)
        except EmbeddingError as exc:
            self._availability.trip(exc, self._emb.provider_name)
            logger.warning("Embedding failed; best-effort ADD without persistence | fact=%s | error=%s", preview(fact), exc)
            return self._degraded(fact, REASON_EMBEDDING_FAILED, error=str(exc))

        options = req.options
        top_k = options.top_k or self._settings.top_k
        threshold = options.similarity_threshold if options.similarity_threshold is not None else self._settings.similarity_threshold
        try:
            matches = await store.search(vector, top_k)
        except VectorStoreError as exc:
            logger.warning("Similarity search failed; classifying without matches | fact=%s | error=%s", preview(fact), exc)
            matches = []

        decision = self._apply_options(await classifier.classify(fact, matches, threshold, req.context), options)
        outcome = FactOutcome(
            fact=fact,
            event=decision.event,
            confidence=decision.confidence,
            reason=decision.reason,
            quality_source=decision.quality_source.value,
            target_id=decision.target_id,
            tags=extract_technical_tags(fact),
        )
        logger.info("Memory decision | fact=%s | action=%s | confidence=%.2f | target=%s | source=%s",
                    preview(fact), decision.event.value, decision.confidence, decision.target_id,
                    decision.quality_source.value)
        try:
            await self._persist(fact, vector, decision, matches, outcome, req)
        except VectorStoreError as exc:
            outcome.error = str(exc)
            logger.error("Memory persistence failed | fact=%s | action=%s | target=%s | error=%s",
                         preview(fact), decision.event.value, decision.target_id, exc)
        return outcome

    @staticmethod
    def _apply_options(decision: Decision, options: ExtractOptions) -> Decision:
        if decision.event is MemoryEvent.DELETE and not options.enable_delete:
            return Decision(MemoryEvent.NONE, decision.confidence, "Delete operations disabled; ignoring.",
                            decision.target_id, decision.quality_source, decision.matches)
        if (
            options.confidence_threshold is not None
            and decision.event in (MemoryEvent.UPDATE, MemoryEvent.DELETE)
            and decision.confidence < options.confidence_threshold
        ):
            return Decision(MemoryEvent.NONE, decision.confidence,
                            f"Confidence {decision.confidence:.2f} below threshold; ignoring {decision.event.value}.",
                            decision.target_id, decision.quality_source, decision.matches)
        return decision

    def _payload(self, memory_id: int, fact: str, decision: Decision, req: ExtractRequest, old_memory: Optional[str] = None) -> dict:
        tags = extract_technical_tags(fact)
        return KnowledgePayload(
            id=memory_id,
            text=fact,
            confidence=decision.confidence,
            event=decision.event,
            quality_source=decision.quality_source,
            timestamp=_now(),
            tags=tags,
            reasoning=decision.reason,
            domain=infer_domain(tags),
            source_session_id=req.session_id or self._scope.session_id,
            code_pattern=extract_code_pattern(fact),
            old_memory=old_memory,
            user_id=self._scope.user_id,
            project_id=self._scope.project_id,
            workspace_mode=self._scope.workspace_mode,
        ).to_dict()

    async def _persist(self, fact: str, vector: List[float], decision: Decision, matches: List[QueryResult],
                       outcome: FactOutcome, req: ExtractRequest) -> None:
        store = self._stores.get_store(CollectionKind.KNOWLEDGE)
        if decision.event is MemoryEvent.ADD:
            memory_id = self._ids.next_knowledge_id()
            outcome.memory_id = memory_id
            await store.insert([vector], [memory_id], [self._payload(memory_id, fact, decision, req)])
        elif decision.event is MemoryEvent.UPDATE:
            old = next((m.text for m in matches if m.id == decision.target_id), None)
            outcome.memory_id = decision.target_id
            await store.update(decision.target_id, vector, self._payload(decision.target_id, fact, decision, req, old))
        elif decision.event is MemoryEvent.DELETE:
            outcome.memory_id = decision.target_id
            await store.delete(decision.target_id)
        else:
            return
        outcome.persisted = True
