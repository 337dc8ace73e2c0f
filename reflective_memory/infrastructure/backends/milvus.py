from __future__ import annotations

import json
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
from .base import PooledVectorStore, check_filters, is_any_condition, is_range_condition, similarity_from_distance

logger = get_logger(__name__)

METRICS = {"cosine": "COSINE", "euclid": "L2", "euclidean": "L2", "l2": "L2", "dot": "IP", "ip": "IP"}
_RANGE_SYMBOLS = {"gte": ">=", "gt": ">", "lte": "<=", "lt": "<"}


def milvus_filter(filters: Filters) -> str:
    """Translate the generic filter map into a Milvus boolean expression over the JSON payload field."""
    clauses: List[str] = []
    for key, condition in (filters or {}).items():
        field = f'payload[{json.dumps(key)}]'
        if is_range_condition(condition):
            clauses.extend(f"{field} {_RANGE_SYMBOLS[op]} {json.dumps(v)}" for op, v in condition.items())
        elif is_any_condition(condition):
            clauses.append(f"{field} in {json.dumps(list(condition['any']))}")
        else:
            clauses.append(f"{field} == {json.dumps(condition)}")
    return " and ".join(clauses)


class MilvusVectorStore(PooledVectorStore):
    """Vector store adapter for the Milvus RESTful v2 API.

    Records use an Int64 primary key ``id``, a float vector field ``vector``
    and keep the whole payload in a dynamic JSON field ``payload``.
    """

    backend_type = "milvus"

    def __init__(self, collection_name: str, dimension: int, spec: ConnectionSpec, distance: str = "Cosine",
                 pool: Optional[ConnectionPool] = None) -> None:
        metric = METRICS.get(distance.lower())
        if metric is None:
            raise ValidationError(f"Unsupported Milvus metric: {distance}", "configure")
        super().__init__(collection_name, dimension, spec, metric, pool)

    async def _post(self, path: str, body: Dict[str, Any], operation: str, client: Any = None) -> Any:
        body = {"collectionName": self.collection_name, **body}
        data = await (client or self.client).arequest("POST", f"/v2/vectordb{path}", json=body, operation=operation) or {}
        code = data.get("code", 0)
        if code not in (0, 200):
            message = str(data.get("message", "unknown error"))
            if "collection" in message.lower() and "not" in message.lower() and "found" in message.lower():
                raise CollectionMissingError(f"Milvus collection {self.collection_name} not found: {message}", operation)
            raise BackendError(f"Milvus {path} failed (code={code}): {message}", operation)
        return data.get("data")

    async def connect(self) -> None:
        if not self._needs_connect():
            return
        client = self._acquire()
        try:
            has = await self._post("/collections/has", {}, "connect", client) or {}
            if has.get("has"):
                described = await self._post("/collections/describe", {}, "connect", client) or {}
                self._verify_dimension(described)
            else:
                await self._post("/collections/create", {
                    "dimension": self.dimension,
                    "metricType": self.distance,
                    "primaryFieldName": "id",
                    "idType": "Int64",
                    "vectorFieldName": "vector",
                    "autoId": False,
                    "enableDynamicField": True,
                }, "connect", client)
                logger.info("Milvus collection created | collection=%s | dim=%s | metric=%s",
                            self.collection_name, self.dimension, self.distance)
        except BackendError as exc:
            self._release()
            raise BackendConnectionError(f"Cannot reach Milvus at {self.spec.url}: {exc}", "connect") from exc
        self._connected = True
        logger.info("Milvus connected | url=%s | collection=%s | dim=%s", self.spec.url, self.collection_name, self.dimension)

    def _verify_dimension(self, described: dict) -> None:
        for fld in described.get("fields") or []:
            if fld.get("name") != "vector":
                continue
            for param in fld.get("params") or []:
                if param.get("key") == "dim" and int(param.get("value")) != self.dimension:
                    self._release()
                    raise DimensionMismatchError(self.dimension, int(param.get("value")), "connect")

    @staticmethod
    def _row(memory_id: int, vector: List[float], payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": memory_id, "vector": vector, "payload": payload}

    @staticmethod
    def _point(row: Dict[str, Any]) -> Point:
        payload = row.get("payload") or {}
        if isinstance(payload, str):
            payload = json.loads(payload)
        return Point(id=int(row["id"]), vector=[float(x) for x in row.get("vector") or []], payload=payload)

    async def insert(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        self._ensure_connected("insert")
        checked = self._validate_batch(vectors, ids, payloads)
        rows = [self._row(i, v, p) for i, v, p in zip(ids, checked, payloads)]
        await self._post("/entities/upsert", {"data": rows}, "insert")

    async def search(self, query: List[float], limit: int = 10, filters: Optional[Filters] = None) -> List[QueryResult]:
        self._ensure_connected("search")
        body: Dict[str, Any] = {
            "data": [self._validate_vector(query, "search")],
            "annsField": "vector",
            "limit": self._validate_limit(limit, "search"),
            "outputFields": ["payload"],
        }
        expr = milvus_filter(check_filters(filters, "search"))
        if expr:
            body["filter"] = expr
        rows = await self._post("/entities/search", body, "search") or []
        results = []
        for row in rows:
            raw = float(row.get("distance", 0.0))
            score = similarity_from_distance(raw, "l2") if self.distance == "L2" else raw
            results.append(QueryResult(id=int(row["id"]), score=score, payload=self._point(row).payload))
        return sorted(results, key=lambda r: r.score, reverse=True)

    async def get(self, memory_id: int) -> Optional[Point]:
        self._ensure_connected("get")
        memory_id = self._validate_id(memory_id, "get")
        rows = await self._post("/entities/get", {"id": [memory_id], "outputFields": ["vector", "payload"]}, "get") or []
        return self._point(rows[0]) if rows else None

    async def update(self, memory_id: int, vector: List[float], payload: Dict[str, Any]) -> None:
        self._ensure_connected("update")
        memory_id = self._validate_id(memory_id, "update")
        checked = self._validate_vector(vector, "update")
        await self._post("/entities/upsert", {"data": [self._row(memory_id, checked, payload)]}, "update")

    async def delete(self, memory_id: int) -> None:
        self._ensure_connected("delete")
        memory_id = self._validate_id(memory_id, "delete")
        await self._post("/entities/delete", {"filter": f"id in [{memory_id}]"}, "delete")

    async def list(self, filters: Optional[Filters] = None, limit: int = 100) -> Tuple[List[Point], int]:
        self._ensure_connected("list")
        expr = milvus_filter(check_filters(filters, "list")) or "id > 0"
        rows = await self._post("/entities/query", {
            "filter": expr,
            "limit": self._validate_limit(limit, "list"),
            "outputFields": ["id", "vector", "payload"],
        }, "list") or []
        counted = await self._post("/entities/query", {"filter": expr, "outputFields": ["count(*)"]}, "list") or []
        total = int(counted[0].get("count(*)", len(rows))) if counted else len(rows)
        return [self._point(r) for r in rows], total

    async def delete_collection(self) -> None:
        self._ensure_connected("delete_collection")
        await self._post("/collections/drop", {}, "delete_collection")
        self._dropped = True
        logger.info("Milvus collection dropped | collection=%s", self.collection_name)
