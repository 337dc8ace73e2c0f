from __future__ import annotations

from typing import Dict, Optional, Union

from ..domain.interfaces import VectorStore
from ..domain.models import CollectionKind
from ..infrastructure.backends.factory import create_vector_store
from ..infrastructure.config import VectorStoreConfig
from ..infrastructure.logging import get_logger
from ..infrastructure.pool import ConnectionPool
from .store_manager import DriverFactory, VectorStoreManager

logger = get_logger(__name__)

Kind = Union[CollectionKind, str]


def _kind(kind: Kind) -> CollectionKind:
    try:
        return CollectionKind(kind)
    except ValueError as exc:
        raise ValueError(f"Unknown collection kind {kind!r}; expected 'knowledge' or 'reflection'") from exc


class DualCollectionManager:
    """Routes knowledge and reflection memories to separate collections.

    The knowledge manager always exists. The reflection manager exists only
    when a non-empty reflection collection name is configured; once it exists
    it is required, so a reflection connect failure fails connect().
    """

    def __init__(
        self,
        config: VectorStoreConfig,
        reflection_collection: Optional[str] = None,
        pool: Optional[ConnectionPool] = None,
        driver_factory: DriverFactory = create_vector_store,
    ) -> None:
        self._managers: Dict[CollectionKind, VectorStoreManager] = {
            CollectionKind.KNOWLEDGE: VectorStoreManager(config, pool, driver_factory),
        }
        name = (reflection_collection or "").strip()
        if name:
            if name == config.collection_name:
                raise ValueError("Reflection collection must differ from the knowledge collection")
            self._managers[CollectionKind.REFLECTION] = VectorStoreManager(config.with_collection(name), pool, driver_factory)
        else:
            logger.info("Reflection collection not configured | reflection memory disabled")

    @property
    def reflection_enabled(self) -> bool:
        return CollectionKind.REFLECTION in self._managers

    def get_manager(self, kind: Kind) -> Optional[VectorStoreManager]:
        return self._managers.get(_kind(kind))

    def get_store(self, kind: Kind) -> Optional[VectorStore]:
        """Return the store bound to ``kind``; None for reflection when disabled."""
        manager = self.get_manager(kind)
        return manager.get_store() if manager else None

    async def connect(self) -> None:
        knowledge = self._managers[CollectionKind.KNOWLEDGE]
        await knowledge.connect()
        reflection = self._managers.get(CollectionKind.REFLECTION)
        if reflection is None:
            return
        try:
            await reflection.connect()
        except Exception:
            logger.error("Reflection collection failed to connect | collection=%s", reflection.config.collection_name)
            await knowledge.disconnect()
            raise

    async def disconnect(self) -> None:
        for manager in self._managers.values():
            await manager.disconnect()

    def is_connected(self, kind: Optional[Kind] = None) -> bool:
        """With ``kind``, report that collection; otherwise every configured collection."""
        if kind is not None:
            manager = self.get_manager(kind)
            return bool(manager and manager.is_connected())
        return all(m.is_connected() for m in self._managers.values())

    async def health_check(self) -> Dict[str, object]:
        checks = {kind.value: await m.health_check() for kind, m in self._managers.items()}
        return {"overall": all(c["overall"] for c in checks.values()), "collections": checks}

    def get_info(self) -> Dict[str, object]:
        return {
            "connected": self.is_connected(),
            "reflection_enabled": self.reflection_enabled,
            "collections": {kind.value: m.get_info() for kind, m in self._managers.items()},
        }
