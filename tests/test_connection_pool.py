"""
Unit tests for the shared REST connection pool.
"""

import threading
from unittest.mock import patch

import pytest

from reflective_memory.infrastructure.pool import ConnectionPool, ConnectionSpec


@pytest.fixture
def pool():
    p = ConnectionPool(max_connections=2)
    yield p
    p.shutdown()


class TestConnectionSpec:
    def test_key_normalizes_address(self):
        a = ConnectionSpec(url="HTTP://Qdrant:6333/")
        b = ConnectionSpec(url="http://qdrant:6333")
        assert a.key() == b.key()

    def test_key_distinguishes_credentials_without_storing_them(self):
        a = ConnectionSpec(url="http://q", secret="one")
        b = ConnectionSpec(url="http://q", secret="two")
        assert a.key() != b.key()
        assert "one" not in "".join(a.key())
        assert "one" not in repr(a)

    def test_headers_with_scheme(self):
        spec = ConnectionSpec(url="http://m", secret="tok", auth_header="Authorization", auth_scheme="Bearer")
        assert spec.headers() == {"Authorization": "Bearer tok"}
        assert ConnectionSpec(url="http://m").headers() == {}


class TestReferenceCounting:
    def test_same_address_shares_one_client(self, pool):
        spec = ConnectionSpec(url="http://q:6333")
        first = pool.get_client(spec)
        second = pool.get_client(ConnectionSpec(url="http://q:6333/"))

        assert first is second
        assert pool.size() == 1
        assert pool.ref_count(spec) == 2

    def test_client_closed_only_when_last_holder_releases(self, pool):
        spec = ConnectionSpec(url="http://q:6333")
        client = pool.get_client(spec)
        pool.get_client(spec)

        pool.release_client(spec)
        assert not client.closed
        assert pool.has_connection(spec)

        pool.release_client(spec)
        assert client.closed
        assert not pool.has_connection(spec)

    def test_release_of_unknown_spec_is_ignored(self, pool):
        pool.release_client(ConnectionSpec(url="http://nowhere"))
        assert pool.size() == 0

    def test_concurrent_acquire_and_release_keeps_count_consistent(self, pool):
        spec = ConnectionSpec(url="http://q:6333")
        pool.get_client(spec)

        def worker():
            for _ in range(200):
                pool.get_client(spec)
                pool.release_client(spec)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert pool.ref_count(spec) == 1

    def test_stats_and_limit_warning(self, pool):
        for n in range(3):
            pool.get_client(ConnectionSpec(url=f"http://host{n}", username="svc"))

        stats = pool.stats()
        assert len(stats) == 3
        assert {s["username"] for s in stats} == {"svc"}
        assert all(s["ref_count"] == 1 for s in stats)

    def test_shutdown_closes_everything(self):
        p = ConnectionPool()
        client = p.get_client(ConnectionSpec(url="http://q"))
        p.shutdown()
        assert client.closed
        assert p.size() == 0


class TestRestClient:
    def test_timeout_becomes_backend_error(self, pool):
        import requests
        from reflective_memory.domain.errors import BackendError

        client = pool.get_client(ConnectionSpec(url="http://q:6333", timeout=0.5))
        with patch.object(client._session, "request", side_effect=requests.Timeout("slow")):
            with pytest.raises(BackendError) as exc:
                client.request("GET", "/collections", operation="connect")
        assert "timed out" in str(exc.value)
        assert exc.value.operation == "connect"
