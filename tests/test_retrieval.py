# =============================================================================
# Unit Tests — Retrieval Service Client
# =============================================================================

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from paperai.services.retrieval import RetrievalClient


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class _RetrievalServer:
    """MockTransport handler: canned JSON per (method, path), calls recorded."""

    def __init__(self, routes=None, status_code=200):
        self.routes = routes or {}
        self.status_code = status_code
        self.calls: list[tuple[str, str, dict | None]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        payload = self.routes.get((request.method, request.url.path), {})
        return httpx.Response(self.status_code, json=payload)

    def client(self, settings) -> RetrievalClient:
        http = httpx.AsyncClient(
            base_url="http://rag.test", transport=httpx.MockTransport(self),
        )
        return RetrievalClient(settings, client=http)


class TestRetrievalClient:

    def test_get_context(self, settings):
        server = _RetrievalServer({
            ("POST", "/context"): {"context": "summary", "sources": [{"doc_id": 1}]},
        })
        client = server.client(settings)

        data = _run(client.get_context("What is due?"))

        assert data["context"] == "summary"
        assert server.calls == [
            ("POST", "/context", {"question": "What is due?", "max_sources": 5}),
        ]

    def test_start_indexing_runs_in_background(self, settings):
        server = _RetrievalServer({("POST", "/indexing/start"): {"status": "started"}})
        result = _run(server.client(settings).start_indexing(force=True))
        assert result == {"status": "started"}
        assert server.calls[0][2] == {"force": True, "background": True}

    def test_search_merges_filters(self, settings):
        server = _RetrievalServer({("POST", "/search"): [{"doc_id": 3}]})
        results = _run(server.client(settings).search("rent", correspondent="Landlord"))
        assert results == [{"doc_id": 3}]
        assert server.calls[0][2] == {"query": "rent", "correspondent": "Landlord"}

    def test_operator_endpoints(self, settings):
        server = _RetrievalServer({
            ("POST", "/indexing/check"): {"needs_update": False, "message": "ok"},
            ("GET", "/indexing/status"): {"running": False},
            ("POST", "/initialize"): {"initialized": True},
        })
        client = server.client(settings)

        assert _run(client.check_for_updates())["needs_update"] is False
        assert _run(client.get_indexing_status()) == {"running": False}
        assert _run(client.initialize())["initialized"] is True
        assert server.calls[-1] == ("POST", "/initialize", {"force": False})

    def test_errors_are_raised(self, settings):
        server = _RetrievalServer(status_code=500)
        with pytest.raises(httpx.HTTPStatusError):
            _run(server.client(settings).get_context("q", max_sources=3))


class TestRetrievalStatus:

    def test_status_passthrough(self, settings):
        status = {"server_up": True, "data_loaded": True, "index_ready": True}
        server = _RetrievalServer({("GET", "/status"): status})
        assert _run(server.client(settings).check_status()) == status

    def test_status_when_service_is_down(self, settings):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        http = httpx.AsyncClient(
            base_url="http://rag.test", transport=httpx.MockTransport(refuse),
        )
        status = _run(RetrievalClient(settings, client=http).check_status())

        assert status["server_up"] is False
        assert status["data_loaded"] is False
        assert status["index_ready"] is False
        assert "Connection refused" in status["error"]
