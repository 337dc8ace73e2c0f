from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from ...domain.errors import DimensionMismatchError, NotConnectedError, ValidationError
from ...domain.ids import is_valid_id
from ...domain.interfaces import Filters, VectorStore
from ..pool import ConnectionPool, ConnectionSpec, default_pool
from ..http import RestClient

RANGE_OPERATORS = ("gte", "gt", "lte", "lt")


class BaseVectorStore(VectorStore):
    """Validation shared by every driver; subclasses only speak their wire protocol."""

    def __init__(self, collection_name: str, dimension: int, distance: str = "Cosine") -> None:
        super().__init__(collection_name, dimension)
        if not collection_name:
            raise ValidationError("Collection name is required", "configure")
        if int(dimension) <= 0:
            raise ValidationError(f"Dimension must be positive, got {dimension}", "configure")
        self.distance = distance
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def _ensure_connected(self, operation: str) -> None:
        if not self._connected:
            raise NotConnectedError(operation)

    def _validate_vector(self, vector: Sequence[float], operation: str) -> List[float]:
        if not isinstance(vector, (list, tuple)):
            raise ValidationError("Vector must be a sequence of numbers", operation)
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), operation)
        out: List[float] = []
        for value in vector:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError("Vector values must be finite numbers", operation)
            out.append(float(value))
        return out

    def _validate_id(self, memory_id: Any, operation: str) -> int:
        if not is_valid_id(memory_id):
            raise ValidationError(f"Invalid id {memory_id!r}: must be a positive 64-bit integer", operation)
        return int(memory_id)

    def _validate_batch(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> List[List[float]]:
        if not (len(vectors) == len(ids) == len(payloads)):
            raise ValidationError(
                f"Batch arrays differ in length: vectors={len(vectors)} ids={len(ids)} payloads={len(payloads)}",
                "insert",
            )
        for memory_id in ids:
            self._validate_id(memory_id, "insert")
        for payload in payloads:
            if not isinstance(payload, dict):
                raise ValidationError("Payload must be a mapping", "insert")
        return [self._validate_vector(v, "insert") for v in vectors]

    def _validate_limit(self, limit: int, operation: str) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"Limit must be a positive integer, got {limit!r}", operation)
        return limit


class PooledVectorStore(BaseVectorStore):
    """Base for networked drivers; borrows its REST client from the connection pool."""

    def __init__(self, collection_name: str, dimension: int, spec: ConnectionSpec, distance: str = "Cosine",
                 pool: Optional[ConnectionPool] = None) -> None:
        super().__init__(collection_name, dimension, distance)
        self.spec = spec
        self._pool = pool or default_pool()
        self._client: Optional[RestClient] = None
        self._dropped = False

    def _needs_connect(self) -> bool:
        """True unless connected with the collection intact.

        A collection dropped through this driver forces a fresh handshake on the
        next connect(); the pooled client is kept and reused.
        """
        if self._connected and self._dropped:
            self._connected = False
            self._dropped = False
        return not self._connected

    def _acquire(self) -> RestClient:
        if self._client is None:
            self._client = self._pool.get_client(self.spec)
        return self._client

    def _release(self) -> None:
        if self._client is not None:
            self._pool.release_client(self.spec)
            self._client = None

    @property
    def client(self) -> RestClient:
        if self._client is None:
            raise NotConnectedError("client")
        return self._client

    async def disconnect(self) -> None:
        self._connected = False
        self._dropped = False
        self._release()


def is_range_condition(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(k in RANGE_OPERATORS for k in condition)


def is_any_condition(condition: Any) -> bool:
    return isinstance(condition, dict) and set(condition) == {"any"} and isinstance(condition["any"], list)


def check_filters(filters: Optional[Filters], operation: str) -> Filters:
    """Validate the filter language: scalar equality, range dicts, or {"any": [...]}."""
    if not filters:
        return {}
    if not isinstance(filters, dict):
        raise ValidationError("Filters must be a mapping of payload field to condition", operation)
    for key, condition in filters.items():
        if isinstance(condition, dict) and not (is_range_condition(condition) or is_any_condition(condition)):
            raise ValidationError(f"Unsupported filter condition for '{key}': {condition!r}", operation)
        if isinstance(condition, list):
            raise ValidationError(f"Use {{'any': [...]}} for membership filters on '{key}'", operation)
    return filters


def similarity_from_distance(distance: float, metric: str) -> float:
    """Convert a native distance into a similarity where 1.0 means identical."""
    metric = metric.lower()
    if metric in ("cosine", "ip", "dot"):
        return 1.0 - float(distance)
    return 1.0 / (1.0 + max(0.0, float(distance)))
