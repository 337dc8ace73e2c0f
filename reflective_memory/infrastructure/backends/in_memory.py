from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ...domain.errors import BackendError, CollectionMissingError, ValidationError
from ...domain.interfaces import Filters
from ...domain.models import Point, QueryResult
from ..logging import get_logger
from .base import BaseVectorStore, check_filters, is_any_condition, is_range_condition

logger = get_logger(__name__)


def matches_filters(payload: Dict[str, Any], filters: Filters) -> bool:
    for key, condition in filters.items():
        value = payload.get(key)
        if is_range_condition(condition):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if "gte" in condition and not value >= condition["gte"]:
                return False
            if "gt" in condition and not value > condition["gt"]:
                return False
            if "lte" in condition and not value <= condition["lte"]:
                return False
            if "lt" in condition and not value < condition["lt"]:
                return False
        elif is_any_condition(condition):
            if isinstance(value, list):
                if not any(v in condition["any"] for v in value):
                    return False
            elif value not in condition["any"]:
                return False
        elif isinstance(value, list) and not isinstance(condition, list):
            if condition not in value:
                return False
        elif value != condition:
            return False
    return True


class InMemoryVectorStore(BaseVectorStore):
    """In-process store backed by numpy; data lives for the life of the connection.

    Vectors and payloads are deep-copied on the way in and out, so callers can
    never mutate stored state through a returned object.
    """

    backend_type = "in-memory"

    def __init__(self, collection_name: str, dimension: int, distance: str = "Cosine", max_vectors: int = 10000) -> None:
        super().__init__(collection_name, dimension, distance)
        if self.distance.lower() not in ("cosine", "euclid", "dot"):
            raise ValidationError(f"Unsupported distance for in-memory store: {distance}", "configure")
        self.max_vectors = max_vectors
        self._vectors: Dict[int, np.ndarray] = {}
        self._payloads: Dict[int, Dict[str, Any]] = {}
        self._collection_exists = False

    async def connect(self) -> None:
        if self._connected and self._collection_exists:
            return
        self._collection_exists = True
        self._connected = True
        logger.info("In-memory store ready | collection=%s | dim=%s | max=%s",
                    self.collection_name, self.dimension, self.max_vectors)

    async def disconnect(self) -> None:
        self._vectors.clear()
        self._payloads.clear()
        self._collection_exists = False
        self._connected = False

    def _ensure_collection(self, operation: str) -> None:
        self._ensure_connected(operation)
        if not self._collection_exists:
            raise CollectionMissingError(f"Collection {self.collection_name} does not exist", operation)

    async def insert(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        self._ensure_collection("insert")
        checked = self._validate_batch(vectors, ids, payloads)
        new_ids = {i for i in ids if i not in self._vectors}
        if len(self._vectors) + len(new_ids) > self.max_vectors:
            raise BackendError(
                f"Maximum vector limit reached ({self.max_vectors}) for collection {self.collection_name}",
                "insert",
            )
        for memory_id, vector, payload in zip(ids, checked, payloads):
            self._vectors[memory_id] = np.asarray(vector, dtype=np.float64)
            self._payloads[memory_id] = copy.deepcopy(payload)

    def _scores(self, query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """Similarity per row. Cosine and Euclid map into (0, 1] with 1.0 for identical
        vectors; Dot is the raw inner product and is only bounded for unit vectors.
        """
        metric = self.distance.lower()
        if metric == "dot":
            return matrix @ query
        if metric == "euclid":
            return 1.0 / (1.0 + np.linalg.norm(matrix - query, axis=1))
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

    async def search(self, query: List[float], limit: int = 10, filters: Optional[Filters] = None) -> List[QueryResult]:
        self._ensure_collection("search")
        q = np.asarray(self._validate_vector(query, "search"), dtype=np.float64)
        limit = self._validate_limit(limit, "search")
        conditions = check_filters(filters, "search")
        ids = [i for i, p in self._payloads.items() if matches_filters(p, conditions)]
        if not ids:
            return []
        scores = self._scores(q, np.vstack([self._vectors[i] for i in ids]))
        order = np.argsort(-scores, kind="stable")[:limit]
        return [
            QueryResult(id=ids[k], score=float(scores[k]), payload=copy.deepcopy(self._payloads[ids[k]]))
            for k in order
        ]

    async def get(self, memory_id: int) -> Optional[Point]:
        self._ensure_collection("get")
        memory_id = self._validate_id(memory_id, "get")
        if memory_id not in self._vectors:
            return None
        return Point(
            id=memory_id,
            vector=self._vectors[memory_id].tolist(),
            payload=copy.deepcopy(self._payloads[memory_id]),
        )

    async def update(self, memory_id: int, vector: List[float], payload: Dict[str, Any]) -> None:
        self._ensure_collection("update")
        memory_id = self._validate_id(memory_id, "update")
        checked = self._validate_vector(vector, "update")
        if memory_id not in self._vectors:
            raise BackendError(f"Vector with ID {memory_id} not found", "update", status_code=404)
        self._vectors[memory_id] = np.asarray(checked, dtype=np.float64)
        self._payloads[memory_id] = copy.deepcopy(payload)

    async def delete(self, memory_id: int) -> None:
        self._ensure_collection("delete")
        memory_id = self._validate_id(memory_id, "delete")
        if self._vectors.pop(memory_id, None) is None:
            logger.warning("Delete of unknown id ignored | collection=%s | id=%s", self.collection_name, memory_id)
        self._payloads.pop(memory_id, None)

    async def list(self, filters: Optional[Filters] = None, limit: int = 100) -> Tuple[List[Point], int]:
        self._ensure_collection("list")
        limit = self._validate_limit(limit, "list")
        conditions = check_filters(filters, "list")
        ids = [i for i, p in self._payloads.items() if matches_filters(p, conditions)]
        points = [
            Point(id=i, vector=self._vectors[i].tolist(), payload=copy.deepcopy(self._payloads[i]))
            for i in ids[:limit]
        ]
        return points, len(ids)

    async def delete_collection(self) -> None:
        self._ensure_connected("delete_collection")
        self._vectors.clear()
        self._payloads.clear()
        self._collection_exists = False
        logger.info("In-memory collection dropped | collection=%s", self.collection_name)
