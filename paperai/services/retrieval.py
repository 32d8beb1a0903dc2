# =============================================================================
# Retrieval Service Client — Context, Search & Indexing Endpoints
# =============================================================================
#
# The retrieval service (embeddings, vector index, document sync) runs as a
# separate HTTP server. This module is a thin async client for it; the RAG
# orchestrator only needs get_context(), the rest are operator endpoints.
#
# ENDPOINTS:
#   GET  /status            → {server_up, data_loaded, index_ready, ...}
#   POST /search            {query, **filters}          → [results]
#   POST /context           {question, max_sources}     → {context, sources}
#   POST /indexing/start    {force, background: true}   → indexing status
#   POST /indexing/check                                → {needs_update, message}
#   GET  /indexing/status                               → indexing status
#   POST /initialize        {force}                     → init status
#
# check_status() never raises (a down service is a status, not an error);
# every other call logs and re-raises httpx errors.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

import httpx

from paperai.config import Settings, get_settings

logger = logging.getLogger(__name__)


class RetrievalClient:
    """Async client for the retrieval service."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.rag_service_url,
            timeout=httpx.Timeout(self._settings.rag_timeout),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def check_status(self) -> dict[str, Any]:
        """Service readiness. On transport failure, a synthesized 'down' record."""
        try:
            response = await self._client.get("/status")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error checking RAG service status: %s", e)
            return {
                "server_up": False,
                "data_loaded": False,
                "index_ready": False,
                "error": str(e),
            }

    async def search(self, query: str, **filters: Any) -> Any:
        return await self._request(
            "POST", "/search", "searching documents",
            json={"query": query, **filters},
        )

    async def get_context(
        self, question: str, max_sources: int | None = None,
    ) -> dict[str, Any]:
        """
        Summarized context plus candidate sources for a question.

        Returns:
            {"context": str, "sources": [{"doc_id", "title", ...}, ...]}
        """
        if max_sources is None:
            max_sources = self._settings.rag_max_sources
        return await self._request(
            "POST", "/context", "fetching context",
            json={"question": question, "max_sources": max_sources},
        )

    async def start_indexing(self, force: bool = False) -> Any:
        """Start a background indexing run; `force` re-syncs from the archive."""
        return await self._request(
            "POST", "/indexing/start", "indexing documents",
            json={"force": force, "background": True},
        )

    async def check_for_updates(self) -> Any:
        return await self._request(
            "POST", "/indexing/check", "checking for updates",
        )

    async def get_indexing_status(self) -> Any:
        return await self._request(
            "GET", "/indexing/status", "getting indexing status",
        )

    async def initialize(self, force: bool = False) -> Any:
        return await self._request(
            "POST", "/initialize", "initializing RAG service",
            json={"force": force},
        )

    async def _request(
        self, method: str, path: str, action: str, **kwargs: Any,
    ) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error("Error %s: %s", action, e)
            raise
