"""
Tests for similarity search across knowledge and reflection memories.
"""

from reflective_memory.application.dto import QueryRequest
from reflective_memory.application.use_cases.search_memory import SearchMemoryUseCase
from reflective_memory.domain.models import CollectionKind, MemoryEvent, QualitySource
from reflective_memory.domain.payloads import KnowledgePayload

from conftest import FakeEmbedder, unit_vector


async def seed(stores, id_allocator):
    knowledge = stores.get_store(CollectionKind.KNOWLEDGE)
    reflection = stores.get_store(CollectionKind.REFLECTION)
    k1, k2 = id_allocator.next_knowledge_id(), id_allocator.next_knowledge_id()
    r1 = id_allocator.next_reflection_id()
    close = [0.9] + [0.0] * 63
    close[1] = 0.1
    await knowledge.insert([unit_vector(0), unit_vector(5)], [k1, k2],
                           [{"text": "Use ruff for linting", "lang": "python"}, {"text": "Docker layers cache", "lang": "ops"}])
    await reflection.insert([close], [r1], [{"text": "analysis: lint failures came from ruff config"}])
    return k1, k2, r1


class TestSearchMemory:
    async def test_knowledge_only_by_default(self, stores, availability, id_allocator):
        k1, _, _ = await seed(stores, id_allocator)
        embedder = FakeEmbedder(vectors={"ruff": unit_vector(0)})

        response = await SearchMemoryUseCase(stores, embedder, availability).execute(QueryRequest(query="ruff", k=5))

        assert response.success
        assert response.hits[0].id == k1
        assert response.hits[0].kind == "knowledge"
        assert response.hits[0].text == "Use ruff for linting"
        assert all(h.kind == "knowledge" for h in response.hits)

    async def test_include_reflection_merges_by_score(self, stores, availability, id_allocator):
        k1, _, r1 = await seed(stores, id_allocator)
        embedder = FakeEmbedder(vectors={"ruff": unit_vector(0)})

        response = await SearchMemoryUseCase(stores, embedder, availability).execute(
            QueryRequest(query="ruff", k=2, include_reflection=True)
        )

        assert [h.id for h in response.hits] == [k1, r1]
        assert response.hits[1].kind == "reflection"

    async def test_score_threshold_and_filters(self, stores, availability, id_allocator):
        k1, _, _ = await seed(stores, id_allocator)
        embedder = FakeEmbedder(vectors={"ruff": unit_vector(0)})
        use_case = SearchMemoryUseCase(stores, embedder, availability)

        above = await use_case.execute(QueryRequest(query="ruff", k=5, score_threshold=0.5))
        ops = await use_case.execute(QueryRequest(query="ruff", k=5, filters={"lang": "ops"}))

        assert [h.id for h in above.hits] == [k1]
        assert [h.payload["lang"] for h in ops.hits] == ["ops"]

    async def test_hits_are_validated_on_read(self, stores, availability, id_allocator):
        knowledge = stores.get_store(CollectionKind.KNOWLEDGE)
        good_id, bad_id = id_allocator.next_knowledge_id(), id_allocator.next_knowledge_id()
        good = KnowledgePayload(
            id=good_id, text="Use ruff for linting", confidence=0.9, event=MemoryEvent.ADD,
            quality_source=QualitySource.HEURISTIC, timestamp="2026-01-01T00:00:00+00:00",
        ).to_dict()
        bad = dict(good, id=bad_id, confidence=4.2)
        await knowledge.insert([unit_vector(0), unit_vector(0)], [good_id, bad_id], [good, bad])
        embedder = FakeEmbedder(vectors={"ruff": unit_vector(0)})

        response = await SearchMemoryUseCase(stores, embedder, availability).execute(QueryRequest(query="ruff", k=5))

        validity = {h.id: h.valid for h in response.hits}
        assert validity == {good_id: True, bad_id: False}
        assert all(h.text == "Use ruff for linting" for h in response.hits)

    async def test_empty_query_rejected(self, stores, embedder, availability):
        response = await SearchMemoryUseCase(stores, embedder, availability).execute(QueryRequest(query="  "))
        assert not response.success
        assert embedder.calls == []

    async def test_chat_only_after_embedding_failure(self, stores, availability):
        embedder = FakeEmbedder(fail=True)
        use_case = SearchMemoryUseCase(stores, embedder, availability)

        first = await use_case.execute(QueryRequest(query="ruff"))
        second = await use_case.execute(QueryRequest(query="ruff"))

        assert not first.success and first.mode == "chat-only"
        assert second.success and second.mode == "chat-only" and second.hits == []
        assert len(embedder.calls) == 1
