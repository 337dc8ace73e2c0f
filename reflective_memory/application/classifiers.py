from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..domain.errors import DecisionParseError
from ..domain.interfaces import LLMService
from ..domain.models import Decision, MemoryEvent, QualitySource, QueryResult
from ..infrastructure.logging import get_logger, preview

logger = get_logger(__name__)

NEGATION_TOKENS = ("not", "never", "no longer", "don't", "doesn't", "isn't", "aren't", "shouldn't", "cannot", "can't")

REASON_ADD = "No highly similar memory found; adding as new."
REASON_REDUNDANT = "Fact is redundant; already present."
REASON_UPDATE = "Fact is more complete/correct; updating existing memory."
REASON_DELETE = "Fact contradicts existing memory; deleting old memory."
REASON_IGNORE = "Fact is similar but not more complete; ignoring."


class Classifier(ABC):
    """Strategy that turns a fact and its nearest memories into a Decision."""

    @abstractmethod
    async def classify(self, fact: str, matches: List[QueryResult], threshold: float, context: str = "") -> Decision:
        raise NotImplementedError


def _negations(text: str) -> set:
    lowered = text.lower()
    return {tok for tok in NEGATION_TOKENS if re.search(rf"(?<!\w){re.escape(tok)}(?!\w)", lowered)}


class HeuristicClassifier(Classifier):
    """Similarity-threshold rules over the single best match."""

    async def classify(self, fact: str, matches: List[QueryResult], threshold: float, context: str = "") -> Decision:
        best = max(matches, key=lambda m: m.score) if matches else None
        if best is None:
            return Decision(MemoryEvent.ADD, 0.7, REASON_ADD, None, QualitySource.HEURISTIC)
        if best.score < threshold:
            return Decision(MemoryEvent.ADD, 1.0 - best.score, REASON_ADD, None, QualitySource.SIMILARITY, matches)
        existing = best.text
        if fact.strip() == existing.strip():
            event, reason = MemoryEvent.NONE, REASON_REDUNDANT
        elif len(fact.strip()) > len(existing.strip()):
            event, reason = MemoryEvent.UPDATE, REASON_UPDATE
        elif _negations(fact) - _negations(existing):
            event, reason = MemoryEvent.DELETE, REASON_DELETE
        else:
            event, reason = MemoryEvent.NONE, REASON_IGNORE
        return Decision(event, best.score, reason, best.id, QualitySource.SIMILARITY, matches)


DECISION_PROMPT = """You maintain the long-term technical memory of a coding assistant.
Decide what to do with a new fact given the most similar stored memories.

Operations:
- ADD: the fact is new knowledge.
- UPDATE: the fact refines or completes an existing memory (give its ID).
- DELETE: the fact contradicts an existing memory that should be removed (give its ID).
- NONE: the fact is already captured; nothing changes.

New fact:
{fact}

Similar memories:
{similar}

Context:
{context}

Answer with a single JSON object and nothing else:
{{"operation": "ADD|UPDATE|DELETE|NONE", "confidence": 0.0-1.0, "reasoning": "...", "targetMemoryId": <id or null>}}
"""


def format_similar(matches: List[QueryResult], limit: int = 3) -> str:
    if not matches:
        return "(none)"
    lines = []
    for n, m in enumerate(matches[:limit], start=1):
        lines.append(f"{n}. ID: {m.id} (similarity: {m.score:.2f})\n   Content: {m.text[:200]}")
    return "\n".join(lines)


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number > 0 else None


def _normalize(obj: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(obj, dict) or not obj.get("operation"):
        return None
    confidence = obj.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    return {
        "operation": str(obj["operation"]).strip().upper(),
        "confidence": max(0.0, min(1.0, float(confidence))),
        "reasoning": str(obj.get("reasoning") or obj.get("reason") or "LLM decision"),
        "target_id": _positive_int(obj.get("targetMemoryId", obj.get("target_id", obj.get("id")))),
    }


_OPERATION_RE = re.compile(r'"?operation"?\s*[:=]\s*"?(ADD|UPDATE|DELETE|NONE)\b', re.I)
_CONFIDENCE_RE = re.compile(r'"?confidence"?\s*[:=]\s*([0-9]*\.?[0-9]+)', re.I)
_REASONING_RE = re.compile(r'"?reasoning"?\s*[:=]\s*"([^"]*)"', re.I)
_TARGET_RE = re.compile(r'"?targetMemoryId"?\s*[:=]\s*"?(\d+)', re.I)


def parse_llm_decision(response: str) -> Dict[str, Any]:
    """Extract ``{operation, confidence, reasoning, target_id}`` from free text.

    Tries the outermost ``{...}`` span, then every JSON object embedded in the
    text, then loose ``key: value`` pairs.

    Raises:
        DecisionParseError: When no usable decision is present.
    """
    text = (response or "").strip()
    if not text:
        raise DecisionParseError("Empty LLM response")
    greedy = re.search(r"\{[\s\S]*\}", text)
    if greedy:
        try:
            parsed = _normalize(json.loads(greedy.group(0)))
        except json.JSONDecodeError:
            parsed = None
        if parsed:
            return parsed
    decoder = json.JSONDecoder()
    for start in (m.start() for m in re.finditer(r"\{", text)):
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        parsed = _normalize(obj)
        if parsed:
            return parsed
    op, conf = _OPERATION_RE.search(text), _CONFIDENCE_RE.search(text)
    if op and conf:
        reasoning, target = _REASONING_RE.search(text), _TARGET_RE.search(text)
        return {
            "operation": op.group(1).upper(),
            "confidence": max(0.0, min(1.0, float(conf.group(1)))),
            "reasoning": reasoning.group(1) if reasoning else "LLM decision",
            "target_id": _positive_int(target.group(1)) if target else None,
        }
    raise DecisionParseError(f"No decision found in LLM response: {preview(text, 120)}")


class LLMClassifier(Classifier):
    """Asks an LLM to adjudicate the fact against its top matches."""

    def __init__(self, llm: LLMService, max_matches: int = 3) -> None:
        self._llm = llm
        self._max_matches = max_matches

    async def classify(self, fact: str, matches: List[QueryResult], threshold: float, context: str = "") -> Decision:
        prompt = DECISION_PROMPT.format(
            fact=fact,
            similar=format_similar(matches, self._max_matches),
            context=context or "No additional context",
        )
        parsed = parse_llm_decision(await self._llm.direct_generate(prompt))
        try:
            event = MemoryEvent(parsed["operation"])
        except ValueError as exc:
            raise DecisionParseError(f"Invalid operation from LLM: {parsed['operation']}") from exc
        known = {m.id for m in matches}
        target = parsed["target_id"] if parsed["target_id"] in known else None
        if event in (MemoryEvent.UPDATE, MemoryEvent.DELETE, MemoryEvent.NONE) and target is None and matches:
            target = max(matches, key=lambda m: m.score).id
        if event in (MemoryEvent.UPDATE, MemoryEvent.DELETE) and target is None:
            raise DecisionParseError(f"LLM chose {event.value} without an existing memory to target")
        if event is MemoryEvent.ADD:
            target = None
        return Decision(event, parsed["confidence"], parsed["reasoning"], target, QualitySource.LLM, matches)


class FallbackClassifier(Classifier):
    """Runs ``primary``; any failure falls back to ``fallback`` for that fact."""

    def __init__(self, primary: Classifier, fallback: Classifier) -> None:
        self.primary = primary
        self.fallback = fallback

    async def classify(self, fact: str, matches: List[QueryResult], threshold: float, context: str = "") -> Decision:
        try:
            return await self.primary.classify(fact, matches, threshold, context)
        except Exception as exc:
            logger.warning("Primary classifier failed; using fallback | fact=%s | error=%s", preview(fact), exc)
            return await self.fallback.classify(fact, matches, threshold, context)
