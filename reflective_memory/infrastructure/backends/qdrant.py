from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ...domain.errors import (
    BackendConnectionError,
    BackendError,
    CollectionMissingError,
    DimensionMismatchError,
    ValidationError,
)
from ...domain.interfaces import Filters
from ...domain.models import Point, QueryResult
from ..logging import get_logger
from ..pool import ConnectionPool, ConnectionSpec
from .base import PooledVectorStore, check_filters, is_any_condition, is_range_condition

logger = get_logger(__name__)

DISTANCES = {"cosine": "Cosine", "euclid": "Euclid", "euclidean": "Euclid", "dot": "Dot", "manhattan": "Manhattan"}


def qdrant_filter(filters: Filters) -> Optional[dict]:
    """Translate the generic filter map into a Qdrant ``must`` clause."""
    if not filters:
        return None
    must: List[dict] = []
    for key, condition in filters.items():
        if is_range_condition(condition):
            must.append({"key": key, "range": dict(condition)})
        elif is_any_condition(condition):
            must.append({"key": key, "match": {"any": list(condition["any"])}})
        else:
            must.append({"key": key, "match": {"value": condition}})
    return {"must": must}


class QdrantVectorStore(PooledVectorStore):
    """Vector store adapter for Qdrant REST."""

    backend_type = "qdrant"

    def __init__(self, collection_name: str, dimension: int, spec: ConnectionSpec, distance: str = "Cosine",
                 pool: Optional[ConnectionPool] = None) -> None:
        native = DISTANCES.get(distance.lower())
        if native is None:
            raise ValidationError(f"Unsupported Qdrant distance: {distance}", "configure")
        super().__init__(collection_name, dimension, spec, native, pool)
        self._base = f"/collections/{collection_name}"

    async def _call(self, method: str, path: str, operation: str, **kwargs: Any) -> Any:
        try:
            return await self.client.arequest(method, f"{self._base}{path}", operation=operation, **kwargs)
        except BackendError as exc:
            if exc.status_code == 404:
                raise CollectionMissingError(f"Qdrant collection {self.collection_name} not found", operation) from exc
            raise

    async def connect(self) -> None:
        if not self._needs_connect():
            return
        client = self._acquire()
        try:
            data = await client.arequest("GET", self._base, operation="connect")
        except BackendError as exc:
            if exc.status_code != 404:
                self._release()
                raise BackendConnectionError(f"Cannot reach Qdrant at {self.spec.url}: {exc}", "connect") from exc
            await self._create_collection(client)
        else:
            self._verify_dimension(data)
        self._connected = True
        logger.info("Qdrant connected | url=%s | collection=%s | dim=%s", self.spec.url, self.collection_name, self.dimension)

    async def _create_collection(self, client: Any) -> None:
        body = {"vectors": {"size": self.dimension, "distance": self.distance}}
        try:
            await client.arequest("PUT", self._base, json=body, operation="connect")
        except BackendError as exc:
            self._release()
            raise BackendConnectionError(f"Failed to create Qdrant collection {self.collection_name}: {exc}", "connect") from exc
        logger.info("Qdrant collection created | collection=%s | dim=%s | distance=%s",
                    self.collection_name, self.dimension, self.distance)

    def _verify_dimension(self, data: dict) -> None:
        try:
            existing = int(data["result"]["config"]["params"]["vectors"]["size"])
        except (KeyError, TypeError, ValueError):
            existing = None
        if existing is not None and existing != self.dimension:
            self._release()
            raise DimensionMismatchError(self.dimension, existing, "connect")

    async def insert(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        self._ensure_connected("insert")
        checked = self._validate_batch(vectors, ids, payloads)
        body = {"points": [{"id": i, "vector": v, "payload": p} for i, v, p in zip(ids, checked, payloads)]}
        await self._call("PUT", "/points", "insert", json=body, params={"wait": "true"})

    def _score(self, raw: float) -> float:
        # Dot scores pass through unnormalized.
        if self.distance in ("Euclid", "Manhattan"):
            return 1.0 / (1.0 + max(0.0, raw))
        return raw

    async def search(self, query: List[float], limit: int = 10, filters: Optional[Filters] = None) -> List[QueryResult]:
        self._ensure_connected("search")
        body: Dict[str, Any] = {
            "vector": self._validate_vector(query, "search"),
            "limit": self._validate_limit(limit, "search"),
            "with_vector": False,
            "with_payload": True,
        }
        native = qdrant_filter(check_filters(filters, "search"))
        if native:
            body["filter"] = native
        data = await self._call("POST", "/points/search", "search", json=body) or {}
        results = [
            QueryResult(id=int(it["id"]), score=self._score(float(it.get("score", 0.0))), payload=it.get("payload") or {})
            for it in (data.get("result") or [])
        ]
        return sorted(results, key=lambda r: r.score, reverse=True)

    async def get(self, memory_id: int) -> Optional[Point]:
        self._ensure_connected("get")
        memory_id = self._validate_id(memory_id, "get")
        body = {"ids": [memory_id], "with_payload": True, "with_vector": True}
        data = await self._call("POST", "/points", "get", json=body) or {}
        found = data.get("result") or []
        if not found:
            return None
        it = found[0]
        return Point(id=int(it["id"]), vector=[float(x) for x in it.get("vector") or []], payload=it.get("payload") or {})

    async def update(self, memory_id: int, vector: List[float], payload: Dict[str, Any]) -> None:
        self._ensure_connected("update")
        memory_id = self._validate_id(memory_id, "update")
        checked = self._validate_vector(vector, "update")
        body = {"points": [{"id": memory_id, "vector": checked, "payload": payload}]}
        await self._call("PUT", "/points", "update", json=body, params={"wait": "true"})

    async def delete(self, memory_id: int) -> None:
        self._ensure_connected("delete")
        memory_id = self._validate_id(memory_id, "delete")
        await self._call("POST", "/points/delete", "delete", json={"points": [memory_id]}, params={"wait": "true"})

    async def list(self, filters: Optional[Filters] = None, limit: int = 100) -> Tuple[List[Point], int]:
        self._ensure_connected("list")
        native = qdrant_filter(check_filters(filters, "list"))
        body: Dict[str, Any] = {"limit": self._validate_limit(limit, "list"), "with_payload": True, "with_vector": True}
        count_body: Dict[str, Any] = {"exact": True}
        if native:
            body["filter"] = native
            count_body["filter"] = native
        data = await self._call("POST", "/points/scroll", "list", json=body) or {}
        points = [
            Point(id=int(it["id"]), vector=[float(x) for x in it.get("vector") or []], payload=it.get("payload") or {})
            for it in ((data.get("result") or {}).get("points") or [])
        ]
        counted = await self._call("POST", "/points/count", "list", json=count_body) or {}
        total = int((counted.get("result") or {}).get("count", len(points)))
        return points, total

    async def delete_collection(self) -> None:
        self._ensure_connected("delete_collection")
        await self._call("DELETE", "", "delete_collection")
        self._dropped = True
        logger.info("Qdrant collection dropped | collection=%s", self.collection_name)
