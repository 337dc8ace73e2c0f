from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class MemoryEvent(str, Enum):
    """Terminal state of a fact passing through the decision engine."""

    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NONE = "NONE"


class QualitySource(str, Enum):
    SIMILARITY = "similarity"
    LLM = "llm"
    HEURISTIC = "heuristic"


class WorkspaceMode(str, Enum):
    SHARED = "shared"
    ISOLATED = "isolated"


class CollectionKind(str, Enum):
    KNOWLEDGE = "knowledge"
    REFLECTION = "reflection"


@dataclass(frozen=True)
class Point:
    """A stored vector record.

    Fields:
        id: Caller-assigned positive 64-bit integer.
        vector: Embedding values; length equals the collection dimension.
        payload: Versioned payload map (see domain.payloads).
    """
    id: int
    vector: List[float]
    payload: Dict[str, object]


@dataclass(frozen=True)
class QueryResult:
    """Vector search match returned by the store.

    Fields:
        id: Point ID.
        score: Normalized similarity; 1.0 means identical, lower is less similar.
        payload: Returned payload.
        vector: Stored vector when the backend was asked to return it.
    """
    id: int
    score: float
    payload: Dict[str, object]
    vector: Optional[List[float]] = None

    @property
    def text(self) -> str:
        return str(self.payload.get("text", ""))


@dataclass(frozen=True)
class MemoryScope:
    """Ownership fields stamped onto every payload."""
    workspace_mode: WorkspaceMode = WorkspaceMode.ISOLATED
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class Decision:
    """Classification outcome for one fact.

    Fields:
        event: ADD/UPDATE/DELETE/NONE.
        confidence: Clamped to [0, 1].
        reason: Human-readable explanation.
        target_id: Existing memory the event applies to (UPDATE/DELETE/NONE).
        quality_source: Which strategy produced the decision.
    """
    event: MemoryEvent
    confidence: float
    reason: str
    target_id: Optional[int] = None
    quality_source: QualitySource = QualitySource.HEURISTIC
    matches: List[QueryResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
