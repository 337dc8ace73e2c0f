from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Sequence

from ..application.dto import ExtractOptions, ExtractRequest, QueryRequest, StoreReasoningRequest
from ..application.dual_collection import DualCollectionManager
from ..application.use_cases.extract_and_operate import ExtractAndOperateUseCase
from ..application.use_cases.search_memory import SearchMemoryUseCase
from ..application.use_cases.store_reasoning import StoreReasoningUseCase
from ..domain.errors import EmbeddingError, VectorStoreError
from ..domain.interfaces import EmbeddingService, LLMService
from ..infrastructure.config import (
    VectorStoreConfig,
    declared_dimension,
    engine_settings_from_env,
    llm_model,
    memory_scope_from_env,
    reflection_collection_name,
    vector_store_config_from_env,
)
from ..infrastructure.logging import get_logger
from ..infrastructure.ollama.client import OllamaEmbeddingService, OllamaLLMService
from .parsers import build_parser

logger = get_logger(__name__)


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _read_facts(texts: List[str], file: Optional[str]) -> List[str]:
    facts = [t for t in texts if t and t.strip()]
    if file:
        p = Path(file)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {file}")
        facts.extend(s.strip() for s in p.read_text(encoding="utf-8").splitlines() if s.strip())
    return facts


def _read_json(path: str) -> dict:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def store_config_for(emb: EmbeddingService) -> VectorStoreConfig:
    """Store config from env/.env, sized by the embedding model unless a dimension is declared."""
    cfg = vector_store_config_from_env()
    if declared_dimension() is not None:
        return cfg
    try:
        dimension = emb.get_dimension()
    except EmbeddingError as exc:
        logger.warning("Embedding dimension lookup failed; using default | dim=%s | error=%s", cfg.dimension, exc)
        return cfg
    logger.info("Vector dimension from embedding model | provider=%s | dim=%s", emb.provider_name, dimension)
    return cfg.with_dimension(dimension)


def build_stores(config: Optional[VectorStoreConfig] = None) -> DualCollectionManager:
    """Build the dual-collection manager from env/.env."""
    return DualCollectionManager(config or vector_store_config_from_env(), reflection_collection_name())


async def _run(ns, stores: DualCollectionManager, emb: EmbeddingService, llm: Optional[LLMService]) -> int:
    await stores.connect()
    try:
        if ns.cmd == "health":
            health = await stores.health_check()
            _print({"status": "ok" if health["overall"] else "error", "health": health, "info": stores.get_info()})
            return 0 if health["overall"] else 2

        if ns.cmd == "remember":
            facts = _read_facts(ns.text, ns.file)
            if not facts:
                _print({"status": "error", "error": "Provide --text or --file with at least one fact"})
                return 2
            options = ExtractOptions(
                similarity_threshold=ns.threshold,
                top_k=ns.k,
                use_llm=not ns.no_llm,
                enable_delete=not ns.no_delete,
            )
            logger.info("Remember request | facts=%s | llm=%s", len(facts), options.use_llm and llm is not None)
            engine = ExtractAndOperateUseCase(stores, emb, llm, engine_settings_from_env(), memory_scope_from_env())
            result = await engine.execute(ExtractRequest(facts=facts, session_id=ns.session_id,
                                                         context=ns.context, options=options))
            _print({"status": "ok" if result.success else "error", "result": result.to_dict()})
            return 0 if result.success else 2

        if ns.cmd == "recall":
            response = await SearchMemoryUseCase(stores, emb).execute(
                QueryRequest(query=str(ns.q), k=int(ns.k), include_reflection=bool(ns.reflection),
                             score_threshold=ns.score_threshold)
            )
            _print({"status": "ok" if response.success else "error", "result": response.to_dict()})
            return 0 if response.success else 2

        if ns.cmd == "store-reasoning":
            store = StoreReasoningUseCase(stores, emb, memory_scope_from_env())
            result = await store.execute(StoreReasoningRequest(
                trace=_read_json(ns.trace), evaluation=_read_json(ns.evaluation), session_id=ns.session_id,
            ))
            _print({"status": "ok" if result.success else "error", "result": result.to_dict()})
            return 0 if result.success else 2

        _print({"status": "error", "error": f"Unknown command: {ns.cmd}"})
        return 2
    finally:
        await stores.disconnect()


def run(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    ns = ap.parse_args(list(argv or []))
    try:
        emb = OllamaEmbeddingService()
        stores = build_stores(store_config_for(emb))
        llm = OllamaLLMService() if llm_model() else None
        return asyncio.run(_run(ns, stores, emb, llm))
    except (VectorStoreError, ValueError, OSError) as ex:
        _print({"status": "error", "error": f"{type(ex).__name__}: {ex}"})
        return 2


def main() -> int:
    import sys
    return run(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
