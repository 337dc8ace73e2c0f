"""
Unit tests for the technical-significance filter and tag helpers.
"""

import pytest

from reflective_memory.application.significance import (
    extract_code_pattern,
    extract_technical_tags,
    infer_domain,
    is_significant,
    technical_density,
)


class TestSignificanceFilter:
    @pytest.mark.parametrize("fact", [
        "Use async/await for I/O in Node",
        "API endpoint is https://api.example.com/v1",
        "Run `pytest -x` before pushing",
        "Set $HOME before running the installer",
        "x = compute(a, b); y.z()",
    ])
    def test_keeps_technical_facts(self, fact):
        assert is_significant(fact)

    @pytest.mark.parametrize("fact", [
        "Hello there",
        "thanks!",
        "ok",
        "My name is Sam",
        "What is the weather like",
        "task completed",
        "",
        "   ",
        "I had a lovely walk in the park today",
    ])
    def test_discards_chatter_and_personal_information(self, fact):
        assert not is_significant(fact)

    def test_personal_information_wins_over_technical_terms(self):
        assert not is_significant("my password for the database is hunter2")

    def test_density_counts_technical_words(self):
        assert technical_density("cache token queue") == pytest.approx(1.0)
        assert technical_density("the quick brown fox") == 0.0


class TestTags:
    def test_languages_frameworks_and_triggers(self):
        tags = extract_technical_tags("Node handler in src/app.ts throws an error when config is missing")

        assert "node" in tags
        assert "file-path" in tags
        assert "error-handling" in tags
        assert "configuration" in tags

    def test_domain_inference(self):
        assert infer_domain(["python", "file-path"]) == "programming"
        assert infer_domain(["configuration"]) == "configuration"
        assert infer_domain(["error-handling"]) == "debugging"
        assert infer_domain(["git"]) is None

    def test_code_pattern_prefers_fenced_block(self):
        text = "Use this:\n```python\nprint('hi')\n```\nnot `inline`"
        assert extract_code_pattern(text) == "print('hi')"
        assert extract_code_pattern("call `make build` first") == "make build"
        assert extract_code_pattern("no code here") is None
