from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..domain.models import MemoryEvent


@dataclass(frozen=True)
class ExtractOptions:
    """Per-call overrides for the decision engine; None means use engine settings."""
    similarity_threshold: Optional[float] = None
    top_k: Optional[int] = None
    use_llm: bool = True
    confidence_threshold: Optional[float] = None
    enable_delete: bool = True


@dataclass(frozen=True)
class ExtractRequest:
    facts: List[str]
    session_id: Optional[str] = None
    context: str = ""
    options: ExtractOptions = field(default_factory=ExtractOptions)


@dataclass
class FactOutcome:
    """Per-fact record: the decision label plus whether the store mutation succeeded."""
    fact: str
    event: MemoryEvent
    confidence: float
    reason: str
    quality_source: str
    target_id: Optional[int] = None
    memory_id: Optional[int] = None
    persisted: bool = False
    degraded: bool = False
    error: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = self.event.value
        return data


@dataclass
class ExtractResult:
    success: bool
    timestamp: str
    mode: str = "normal"
    extracted: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: List[FactOutcome] = field(default_factory=list)
    skipped_facts: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode,
            "timestamp": self.timestamp,
            "extraction": {"extracted": self.extracted, "skipped": self.skipped, "skipped_facts": self.skipped_facts},
            "counts": {"processed": self.processed, "skipped": self.skipped, "failed": self.failed},
            "memory": [o.to_dict() for o in self.outcomes],
            "error": self.error,
        }


@dataclass(frozen=True)
class StoreReasoningRequest:
    trace: Dict[str, Any]
    evaluation: Dict[str, Any]
    session_id: Optional[str] = None


@dataclass
class StoreReasoningResult:
    success: bool
    stored: bool
    message: str
    timestamp: str
    memory_id: Optional[int] = None
    mode: str = "normal"
    error: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QueryRequest:
    query: str
    k: int = 5
    include_reflection: bool = False
    score_threshold: Optional[float] = None
    filters: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class MemoryHit:
    id: int
    kind: Optional[str]
    score: float
    text: str
    payload: Dict[str, Any]
    valid: bool = True


@dataclass
class QueryResponse:
    success: bool
    mode: str = "normal"
    hits: List[MemoryHit] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
