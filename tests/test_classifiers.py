"""
Unit tests for the heuristic and LLM-assisted memory classifiers.
"""

import json

import pytest

from reflective_memory.application.classifiers import (
    FallbackClassifier,
    HeuristicClassifier,
    LLMClassifier,
    parse_llm_decision,
)
from reflective_memory.domain.errors import DecisionParseError
from reflective_memory.domain.models import MemoryEvent, QualitySource, QueryResult

from conftest import FakeLLM

THRESHOLD = 0.8


def match(memory_id, text, score):
    return QueryResult(id=memory_id, score=score, payload={"text": text})


class TestHeuristicClassifier:
    async def test_no_matches_is_add(self):
        decision = await HeuristicClassifier().classify("Use pytest fixtures", [], THRESHOLD)
        assert decision.event is MemoryEvent.ADD
        assert decision.target_id is None
        assert decision.quality_source is QualitySource.HEURISTIC

    async def test_below_threshold_is_add(self):
        decision = await HeuristicClassifier().classify("Use pytest fixtures", [match(1, "Docker tips", 0.42)], THRESHOLD)
        assert decision.event is MemoryEvent.ADD
        assert decision.target_id is None

    async def test_identical_text_is_none_targeting_match(self):
        fact = "Use pytest fixtures for setup"
        decision = await HeuristicClassifier().classify(fact, [match(9, fact, 1.0)], THRESHOLD)

        assert decision.event is MemoryEvent.NONE
        assert decision.target_id == 9
        assert decision.confidence == pytest.approx(1.0)

    async def test_longer_text_is_update_of_best_match(self):
        matches = [match(3, "Use pytest fixtures", 0.81), match(4, "Use pytest", 0.93)]
        decision = await HeuristicClassifier().classify("Use pytest fixtures for setup and teardown", matches, THRESHOLD)

        assert decision.event is MemoryEvent.UPDATE
        assert decision.target_id == 4
        assert decision.quality_source is QualitySource.SIMILARITY

    async def test_negation_absent_from_match_is_delete(self):
        decision = await HeuristicClassifier().classify(
            "Redis is not required", [match(5, "Redis is required here", 0.88)], THRESHOLD,
        )
        assert decision.event is MemoryEvent.DELETE
        assert decision.target_id == 5

    async def test_similar_but_not_more_complete_is_none(self):
        decision = await HeuristicClassifier().classify(
            "Use yarn workspaces", [match(6, "Use npm workspaces!", 0.85)], THRESHOLD,
        )
        assert decision.event is MemoryEvent.NONE
        assert decision.target_id == 6


class TestParseLLMDecision:
    def test_plain_json(self):
        parsed = parse_llm_decision('{"operation": "update", "confidence": 1.7, "reasoning": "newer", "targetMemoryId": "12"}')
        assert parsed == {"operation": "UPDATE", "confidence": 1.0, "reasoning": "newer", "target_id": 12}

    def test_json_embedded_in_prose(self):
        text = 'Sure! {"note": 1} and then {"operation": "NONE", "confidence": 0.4, "reason": "dup"} done.'
        parsed = parse_llm_decision(text)
        assert parsed["operation"] == "NONE"
        assert parsed["reasoning"] == "dup"
        assert parsed["target_id"] is None

    def test_loose_key_values(self):
        parsed = parse_llm_decision("operation: DELETE\nconfidence: 0.75\ntargetMemoryId: 44")
        assert parsed["operation"] == "DELETE"
        assert parsed["confidence"] == pytest.approx(0.75)
        assert parsed["target_id"] == 44

    @pytest.mark.parametrize("text", ["", "I think you should add it.", '{"operation": "ADD"}'])
    def test_unusable_responses_raise(self, text):
        with pytest.raises(DecisionParseError):
            parse_llm_decision(text)


class TestLLMClassifier:
    async def test_prompt_lists_top_matches_and_decision_is_used(self):
        llm = FakeLLM(json.dumps({"operation": "UPDATE", "confidence": 0.9, "reasoning": "refines", "targetMemoryId": 2}))
        matches = [match(2, "Use pytest", 0.9), match(3, "Use tox", 0.7)]

        decision = await LLMClassifier(llm).classify("Use pytest with xdist", matches, THRESHOLD, "ci setup")

        assert decision.event is MemoryEvent.UPDATE
        assert decision.target_id == 2
        assert decision.quality_source is QualitySource.LLM
        assert "ID: 2 (similarity: 0.90)" in llm.prompts[0]
        assert "ci setup" in llm.prompts[0]

    async def test_unknown_target_falls_back_to_best_match(self):
        llm = FakeLLM('{"operation": "DELETE", "confidence": 0.8, "targetMemoryId": 999}')
        decision = await LLMClassifier(llm).classify("x is not used", [match(2, "x is used", 0.9)], THRESHOLD)
        assert decision.target_id == 2

    async def test_update_without_matches_is_rejected(self):
        llm = FakeLLM('{"operation": "UPDATE", "confidence": 0.8}')
        with pytest.raises(DecisionParseError):
            await LLMClassifier(llm).classify("new fact", [], THRESHOLD)

    async def test_invalid_operation_is_rejected(self):
        llm = FakeLLM('{"operation": "MERGE", "confidence": 0.8}')
        with pytest.raises(DecisionParseError):
            await LLMClassifier(llm).classify("new fact", [], THRESHOLD)


class TestFallbackClassifier:
    async def test_falls_back_on_llm_error(self):
        classifier = FallbackClassifier(LLMClassifier(FakeLLM(error=RuntimeError("llm down"))), HeuristicClassifier())
        decision = await classifier.classify("Use pytest fixtures", [], THRESHOLD)
        assert decision.event is MemoryEvent.ADD
        assert decision.quality_source is QualitySource.HEURISTIC

    async def test_falls_back_on_unparseable_response(self):
        fact = "Use pytest fixtures"
        classifier = FallbackClassifier(LLMClassifier(FakeLLM("no idea")), HeuristicClassifier())
        decision = await classifier.classify(fact, [match(1, fact, 0.99)], THRESHOLD)
        assert decision.event is MemoryEvent.NONE
        assert decision.quality_source is QualitySource.SIMILARITY
