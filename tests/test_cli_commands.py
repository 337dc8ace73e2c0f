"""
Unit tests for CLI command parsing and dispatch.

Commands run against in-memory stores and a fake embedder; output is the
JSON document printed to stdout.
"""

import json
import os
from argparse import Namespace
from unittest.mock import Mock, patch

import pytest
import requests

from reflective_memory.application.embedding_availability import embedding_availability
from reflective_memory.cli.main import _read_facts, _run, run
from reflective_memory.cli.parsers import build_parser
from reflective_memory.domain.ids import KNOWLEDGE_ID_RANGE

from conftest import FakeLLM


@pytest.fixture(autouse=True)
def _fresh_breaker():
    embedding_availability().reset()
    yield
    embedding_availability().reset()


def remember_ns(**overrides):
    base = dict(cmd="remember", text=[], file=None, session_id=None, context="", threshold=None, k=None,
                no_llm=False, no_delete=False)
    base.update(overrides)
    return Namespace(**base)


@pytest.mark.cli
class TestCommandParsing:
    """Test CLI argument parsing functionality."""

    def test_build_parser_structure(self):
        parser = build_parser()
        assert "Reflective memory" in parser.description
        with pytest.raises(SystemExit):
            parser.parse_args(["--help"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_remember_args(self):
        args = build_parser().parse_args([
            "remember", "--text", "Use uv for installs", "--text", "Pin numpy",
            "--threshold", "0.7", "--k", "3", "--no-llm", "--no-delete", "--session-id", "s1",
        ])
        assert args.cmd == "remember"
        assert args.text == ["Use uv for installs", "Pin numpy"]
        assert args.threshold == 0.7
        assert args.k == 3
        assert args.no_llm is True
        assert args.no_delete is True
        assert args.session_id == "s1"

    def test_recall_args(self):
        args = build_parser().parse_args(["recall", "--q", "linting", "--k", "7", "--reflection"])
        assert args.q == "linting"
        assert args.k == 7
        assert args.reflection is True
        assert args.score_threshold is None

    def test_store_reasoning_requires_files(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["store-reasoning", "--trace", "t.json"])


class TestReadFacts:

    def test_text_and_file(self, tmp_path):
        facts_file = tmp_path / "facts.txt"
        facts_file.write_text("Use ruff\n\n  Pin numpy  \n")
        assert _read_facts(["Use git", "  "], str(facts_file)) == ["Use git", "Use ruff", "Pin numpy"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            _read_facts([], str(tmp_path / "nope.txt"))


@pytest.mark.cli
class TestCommandDispatch:
    """Dispatch against connected in-memory stores."""

    async def test_health(self, stores, embedder, capsys):
        code = await _run(Namespace(cmd="health"), stores, embedder, None)
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["status"] == "ok"
        assert out["health"]["overall"] is True

    async def test_remember(self, stores, embedder, capsys):
        ns = remember_ns(text=["Use async/await for I/O in Node", "Hello there"], session_id="cli-1")
        code = await _run(ns, stores, embedder, None)
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["result"]["counts"] == {"processed": 1, "skipped": 1, "failed": 0}
        assert out["result"]["memory"][0]["event"] == "ADD"
        assert out["result"]["memory"][0]["persisted"] is True

    async def test_remember_without_facts(self, stores, embedder, capsys):
        code = await _run(remember_ns(), stores, embedder, None)
        assert code == 2
        assert json.loads(capsys.readouterr().out)["status"] == "error"

    async def test_remember_no_llm_skips_model(self, stores, embedder, capsys):
        llm = FakeLLM('{"operation": "ADD", "confidence": 0.9}')
        await _run(remember_ns(text=["Use git worktrees"], no_llm=True), stores, embedder, llm)
        assert llm.prompts == []

    async def test_recall_after_remember(self, stores, embedder, capsys):
        await stores.get_store("knowledge").insert([await embedder.embed("Use git worktrees")], [KNOWLEDGE_ID_RANGE[0]],
                                                   [{"text": "Use git worktrees"}])
        code = await _run(Namespace(cmd="recall", q="Use git worktrees", k=1, score_threshold=None, reflection=False),
                          stores, embedder, None)
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["result"]["hits"][0]["text"] == "Use git worktrees"
        assert out["result"]["hits"][0]["kind"] == "knowledge"

    async def test_store_reasoning(self, stores, embedder, tmp_path, capsys):
        trace = tmp_path / "trace.json"
        evaluation = tmp_path / "evaluation.json"
        trace.write_text(json.dumps({"steps": [{"type": "analysis", "content": "Cache misses dominate latency."}]}))
        evaluation.write_text(json.dumps({"qualityScore": 0.8, "issues": [], "suggestions": []}))

        code = await _run(Namespace(cmd="store-reasoning", trace=str(trace), evaluation=str(evaluation), session_id=None),
                          stores, embedder, None)
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["result"]["stored"] is True
        assert out["result"]["metrics"]["stepCount"] == 1

    async def test_disconnects_after_command(self, stores, embedder, capsys):
        await _run(Namespace(cmd="health"), stores, embedder, None)
        assert not stores.is_connected()


@pytest.mark.cli
class TestRun:
    """End-to-end through run() with env-driven configuration and a mocked Ollama."""

    @pytest.fixture(autouse=True)
    def _isolated_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

    @pytest.fixture
    def ollama_post(self):
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = {"embedding": [0.01] * 1024}
        with patch("reflective_memory.infrastructure.ollama.client.requests.post", return_value=response) as post:
            yield post

    def test_health_with_in_memory_default(self, clean_environment, ollama_post, capsys):
        code = run(["health"])
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        knowledge = out["info"]["collections"]["knowledge"]["backend"]
        assert knowledge["type"] == "in-memory"
        assert knowledge["dimension"] == 1024

    def test_store_is_sized_by_embedding_model(self, clean_environment, ollama_post, capsys):
        code = run(["remember", "--text", "Use async/await for I/O in Node", "--no-llm"])
        out = json.loads(capsys.readouterr().out)

        assert code == 0
        memory = out["result"]["memory"][0]
        assert memory["event"] == "ADD"
        assert memory["persisted"] is True
        assert memory["error"] is None

    def test_declared_dimension_skips_model_lookup(self, clean_environment, ollama_post, capsys):
        os.environ['EMBED_DIMENSION'] = '768'
        code = run(["health"])
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["info"]["collections"]["knowledge"]["backend"]["dimension"] == 768
        ollama_post.assert_not_called()

    def test_unreachable_model_keeps_default_dimension(self, clean_environment, capsys):
        with patch("reflective_memory.infrastructure.ollama.client.requests.post",
                   side_effect=requests.ConnectionError("refused")):
            code = run(["health"])
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["info"]["collections"]["knowledge"]["backend"]["dimension"] == 1536

    def test_unsupported_backend_reports_error(self, clean_environment, ollama_post, capsys):
        os.environ['VECTOR_STORE_TYPE'] = 'pinecone'
        code = run(["health"])
        out = json.loads(capsys.readouterr().out)
        assert code == 2
        assert "Unsupported VECTOR_STORE_TYPE" in out["error"]
