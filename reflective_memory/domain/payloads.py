"""Versioned payload structures persisted alongside memory vectors.

Both payload kinds carry ``version: 2``. They are serialized with camelCase
keys (the durable wire format read by external tools) and validated when
parsed back, so a malformed record is rejected at the boundary instead of
leaking into the decision engine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import ValidationError
from .models import MemoryEvent, QualitySource, WorkspaceMode

PAYLOAD_VERSION = 2


def _require(data: Mapping[str, Any], key: str, kind: type, allow_none: bool = False) -> Any:
    if key not in data or (data[key] is None and not allow_none):
        raise ValidationError(f"Payload field '{key}' is required", "payload")
    value = data[key]
    if value is not None and not isinstance(value, kind):
        raise ValidationError(f"Payload field '{key}' must be {kind.__name__}", "payload")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Payload field '{key}' must be str", "payload")
    return value


def _unit_interval(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Payload field '{key}' must be a number", "payload")
    if not 0.0 <= float(value) <= 1.0:
        raise ValidationError(f"Payload field '{key}' must be within [0, 1]", "payload")
    return float(value)


def _enum(enum_type: Any, value: Any, key: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Payload field '{key}' has invalid value {value!r}", "payload") from exc


def _check_version(data: Mapping[str, Any]) -> None:
    if data.get("version") != PAYLOAD_VERSION:
        raise ValidationError(f"Unsupported payload version {data.get('version')!r}", "payload")


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class KnowledgePayload:
    id: int
    text: str
    confidence: float
    event: MemoryEvent
    quality_source: QualitySource
    timestamp: str
    tags: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    domain: Optional[str] = None
    source_session_id: Optional[str] = None
    code_pattern: Optional[str] = None
    old_memory: Optional[str] = None
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    workspace_mode: WorkspaceMode = WorkspaceMode.ISOLATED
    version: int = PAYLOAD_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "text": self.text,
            "tags": list(self.tags),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "event": self.event.value,
            "qualitySource": self.quality_source.value,
            "domain": self.domain,
            "sourceSessionId": self.source_session_id,
            "codePattern": self.code_pattern,
            "oldMemory": self.old_memory,
            "userId": self.user_id,
            "projectId": self.project_id,
            "workspaceMode": self.workspace_mode.value,
            "timestamp": self.timestamp,
            "version": self.version,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KnowledgePayload":
        _check_version(data)
        tags = data.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("Payload field 'tags' must be a list of strings", "payload")
        return cls(
            id=_require(data, "id", int),
            text=_require(data, "text", str),
            confidence=_unit_interval(data.get("confidence"), "confidence"),
            event=_enum(MemoryEvent, data.get("event"), "event"),
            quality_source=_enum(QualitySource, data.get("qualitySource"), "qualitySource"),
            timestamp=_require(data, "timestamp", str),
            tags=list(tags),
            reasoning=_optional_str(data, "reasoning"),
            domain=_optional_str(data, "domain"),
            source_session_id=_optional_str(data, "sourceSessionId"),
            code_pattern=_optional_str(data, "codePattern"),
            old_memory=_optional_str(data, "oldMemory"),
            user_id=_optional_str(data, "userId"),
            project_id=_optional_str(data, "projectId"),
            workspace_mode=_enum(WorkspaceMode, data.get("workspaceMode", "isolated"), "workspaceMode"),
        )


@dataclass(frozen=True)
class ReasoningPayload:
    id: int
    text: str
    reasoning_steps: List[Dict[str, Any]]
    evaluation: Dict[str, Any]
    context: str
    timestamp: str
    source_session_id: Optional[str] = None
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    workspace_mode: WorkspaceMode = WorkspaceMode.ISOLATED
    tags: List[str] = field(default_factory=lambda: ["reasoning"])
    version: int = PAYLOAD_VERSION

    @property
    def step_count(self) -> int:
        return len(self.reasoning_steps)

    @property
    def step_types(self) -> List[str]:
        seen: List[str] = []
        for step in self.reasoning_steps:
            if step["type"] not in seen:
                seen.append(step["type"])
        return seen

    @property
    def issue_count(self) -> int:
        return len(self.evaluation.get("issues") or [])

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "text": self.text,
            "tags": list(self.tags),
            "reasoningSteps": [dict(s) for s in self.reasoning_steps],
            "evaluation": dict(self.evaluation),
            "context": self.context,
            "stepCount": self.step_count,
            "stepTypes": self.step_types,
            "issueCount": self.issue_count,
            "sourceSessionId": self.source_session_id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "workspaceMode": self.workspace_mode.value,
            "timestamp": self.timestamp,
            "version": self.version,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReasoningPayload":
        _check_version(data)
        steps = _require(data, "reasoningSteps", list)
        for step in steps:
            if not isinstance(step, dict) or not isinstance(step.get("type"), str) or not isinstance(step.get("content"), str):
                raise ValidationError("Each reasoning step needs string 'type' and 'content'", "payload")
        evaluation = _require(data, "evaluation", dict)
        _unit_interval(evaluation.get("qualityScore"), "evaluation.qualityScore")
        return cls(
            id=_require(data, "id", int),
            text=_require(data, "text", str),
            reasoning_steps=[dict(s) for s in steps],
            evaluation=dict(evaluation),
            context=_require(data, "context", str),
            timestamp=_require(data, "timestamp", str),
            source_session_id=_optional_str(data, "sourceSessionId"),
            user_id=_optional_str(data, "userId"),
            project_id=_optional_str(data, "projectId"),
            workspace_mode=_enum(WorkspaceMode, data.get("workspaceMode", "isolated"), "workspaceMode"),
            tags=list(data.get("tags") or ["reasoning"]),
        )


MemoryPayload = Union[KnowledgePayload, ReasoningPayload]


def parse_payload(data: Mapping[str, Any]) -> MemoryPayload:
    """Parse a raw payload map into its typed form.

    Reasoning payloads are recognised by their ``reasoningSteps`` field;
    everything else is treated as knowledge.

    Raises:
        ValidationError: On unknown version or malformed fields.
    """
    if "reasoningSteps" in data:
        return ReasoningPayload.from_dict(data)
    return KnowledgePayload.from_dict(data)
