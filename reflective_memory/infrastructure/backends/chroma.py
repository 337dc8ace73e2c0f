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

SPACES = {"cosine": "cosine", "euclid": "l2", "euclidean": "l2", "l2": "l2", "dot": "ip", "ip": "ip"}
JSON_FIELDS_KEY = "_json_fields"


def to_metadata(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a payload into Chroma metadata (scalar values only).

    Lists and mappings are JSON-encoded and their keys recorded under
    ``_json_fields`` so ``from_metadata`` can restore them. None values are dropped.
    """
    meta: Dict[str, Any] = {}
    encoded: List[str] = []
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            meta[key] = value
        else:
            meta[key] = json.dumps(value)
            encoded.append(key)
    if encoded:
        meta[JSON_FIELDS_KEY] = ",".join(encoded)
    return meta


def from_metadata(meta: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload = dict(meta or {})
    encoded = payload.pop(JSON_FIELDS_KEY, "")
    for key in filter(None, str(encoded).split(",")):
        if isinstance(payload.get(key), str):
            payload[key] = json.loads(payload[key])
    return payload


def chroma_where(filters: Filters) -> Optional[dict]:
    clauses: List[dict] = []
    for key, condition in (filters or {}).items():
        if is_range_condition(condition):
            clauses.extend({key: {f"${op}": v}} for op, v in condition.items())
        elif is_any_condition(condition):
            clauses.append({key: {"$in": list(condition["any"])}})
        else:
            clauses.append({key: {"$eq": condition}})
    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class ChromaVectorStore(PooledVectorStore):
    """Vector store adapter for the Chroma REST API.

    Chroma ids are strings, so integer ids are stringified on the way in and
    parsed back on the way out. The collection dimension is kept in collection
    metadata because Chroma only learns it from the first insert.
    """

    backend_type = "chroma"

    def __init__(self, collection_name: str, dimension: int, spec: ConnectionSpec, distance: str = "Cosine",
                 pool: Optional[ConnectionPool] = None) -> None:
        space = SPACES.get(distance.lower())
        if space is None:
            raise ValidationError(f"Unsupported Chroma space: {distance}", "configure")
        super().__init__(collection_name, dimension, spec, space, pool)
        self._collection_id: Optional[str] = None

    async def _call(self, method: str, path: str, operation: str, **kwargs: Any) -> Any:
        try:
            return await self.client.arequest(method, f"/api/v1/collections/{self._collection_id}{path}",
                                              operation=operation, **kwargs)
        except BackendError as exc:
            if exc.status_code == 404 or "does not exist" in str(exc):
                raise CollectionMissingError(f"Chroma collection {self.collection_name} not found", operation) from exc
            raise

    async def connect(self) -> None:
        if not self._needs_connect():
            return
        client = self._acquire()
        body = {
            "name": self.collection_name,
            "metadata": {"hnsw:space": self.distance, "dimension": self.dimension},
            "get_or_create": True,
        }
        try:
            await client.arequest("GET", "/api/v1/heartbeat", operation="connect")
            data = await client.arequest("POST", "/api/v1/collections", json=body, operation="connect") or {}
        except BackendError as exc:
            self._release()
            raise BackendConnectionError(f"Cannot reach Chroma at {self.spec.url}: {exc}", "connect") from exc
        existing = (data.get("metadata") or {}).get("dimension")
        if existing is not None and int(existing) != self.dimension:
            self._release()
            raise DimensionMismatchError(self.dimension, int(existing), "connect")
        self._collection_id = str(data.get("id"))
        self._connected = True
        logger.info("Chroma connected | url=%s | collection=%s | id=%s", self.spec.url, self.collection_name, self._collection_id)

    async def disconnect(self) -> None:
        await super().disconnect()
        self._collection_id = None

    async def insert(self, vectors: List[List[float]], ids: List[int], payloads: List[Dict[str, Any]]) -> None:
        self._ensure_connected("insert")
        checked = self._validate_batch(vectors, ids, payloads)
        body = {
            "ids": [str(i) for i in ids],
            "embeddings": checked,
            "metadatas": [to_metadata(p) for p in payloads],
            "documents": [str(p.get("text", "")) for p in payloads],
        }
        await self._call("POST", "/upsert", "insert", json=body)

    async def search(self, query: List[float], limit: int = 10, filters: Optional[Filters] = None) -> List[QueryResult]:
        self._ensure_connected("search")
        body: Dict[str, Any] = {
            "query_embeddings": [self._validate_vector(query, "search")],
            "n_results": self._validate_limit(limit, "search"),
            "include": ["metadatas", "distances"],
        }
        where = chroma_where(check_filters(filters, "search"))
        if where:
            body["where"] = where
        data = await self._call("POST", "/query", "search", json=body) or {}
        ids = (data.get("ids") or [[]])[0]
        distances = (data.get("distances") or [[]])[0]
        metas = (data.get("metadatas") or [[]])[0]
        results = [
            QueryResult(id=int(i), score=similarity_from_distance(d, self.distance), payload=from_metadata(m))
            for i, d, m in zip(ids, distances, metas)
        ]
        return sorted(results, key=lambda r: r.score, reverse=True)

    async def _get_rows(self, body: Dict[str, Any], operation: str) -> List[Point]:
        data = await self._call("POST", "/get", operation, json=body) or {}
        ids = data.get("ids") or []
        embeddings = data.get("embeddings") or [[] for _ in ids]
        metas = data.get("metadatas") or [{} for _ in ids]
        return [
            Point(id=int(i), vector=[float(x) for x in (e or [])], payload=from_metadata(m))
            for i, e, m in zip(ids, embeddings, metas)
        ]

    async def get(self, memory_id: int) -> Optional[Point]:
        self._ensure_connected("get")
        memory_id = self._validate_id(memory_id, "get")
        rows = await self._get_rows({"ids": [str(memory_id)], "include": ["embeddings", "metadatas"]}, "get")
        return rows[0] if rows else None

    async def update(self, memory_id: int, vector: List[float], payload: Dict[str, Any]) -> None:
        self._ensure_connected("update")
        memory_id = self._validate_id(memory_id, "update")
        checked = self._validate_vector(vector, "update")
        body = {
            "ids": [str(memory_id)],
            "embeddings": [checked],
            "metadatas": [to_metadata(payload)],
            "documents": [str(payload.get("text", ""))],
        }
        await self._call("POST", "/upsert", "update", json=body)

    async def delete(self, memory_id: int) -> None:
        self._ensure_connected("delete")
        memory_id = self._validate_id(memory_id, "delete")
        await self._call("POST", "/delete", "delete", json={"ids": [str(memory_id)]})

    async def list(self, filters: Optional[Filters] = None, limit: int = 100) -> Tuple[List[Point], int]:
        self._ensure_connected("list")
        where = chroma_where(check_filters(filters, "list"))
        body: Dict[str, Any] = {"limit": self._validate_limit(limit, "list"), "include": ["embeddings", "metadatas"]}
        if where:
            body["where"] = where
            matched = await self._call("POST", "/get", "list", json={"where": where, "include": []}) or {}
            total = len(matched.get("ids") or [])
        else:
            total = int(await self._call("GET", "/count", "list"))
        return await self._get_rows(body, "list"), total

    async def delete_collection(self) -> None:
        self._ensure_connected("delete_collection")
        try:
            await self.client.arequest("DELETE", f"/api/v1/collections/{self.collection_name}", operation="delete_collection")
        except BackendError as exc:
            if exc.status_code == 404:
                raise CollectionMissingError(f"Chroma collection {self.collection_name} not found", "delete_collection") from exc
            raise
        self._dropped = True
        logger.info("Chroma collection dropped | collection=%s", self.collection_name)
