# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Settings are always built explicitly (never from .env or the process
# environment) with diagnostics files redirected into pytest's tmp_path.
# =============================================================================

from __future__ import annotations

import pytest

from paperai.config import Settings


@pytest.fixture
def make_settings(tmp_path):
    """Factory for isolated Settings; keyword arguments override defaults."""

    def _make(**overrides) -> Settings:
        values = {
            "image_cache_dir": str(tmp_path / "images"),
            "prompt_log_path": str(tmp_path / "logs" / "prompt.txt"),
            "response_log_path": str(tmp_path / "logs" / "response.txt"),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


class FakeRepository:
    """
    In-memory document archive.

    `documents` maps id → metadata dict; ids listed in `failing` raise on
    every fetch. Calls are recorded for assertions.
    """

    def __init__(self, documents=None, tags=None, thumbnails=None, failing=()):
        self.documents = documents or {}
        self.tag_cache = {}
        self._tags = tags or {}
        self.thumbnails = thumbnails or {}
        self.failing = set(failing)
        self.thumbnail_calls: list = []
        self.content_calls: list = []

    async def ensure_tag_cache(self) -> None:
        if not self.tag_cache:
            self.tag_cache = {
                tag_id: {"id": tag_id, "name": name}
                for tag_id, name in self._tags.items()
            }

    async def get_document(self, document_id):
        if document_id in self.failing:
            raise RuntimeError(f"document {document_id} unavailable")
        return self.documents[document_id]

    async def get_document_content(self, document_id):
        self.content_calls.append(document_id)
        if document_id in self.failing:
            raise RuntimeError(f"content {document_id} unavailable")
        return self.documents[document_id].get("content", "")

    async def get_thumbnail_image(self, document_id):
        self.thumbnail_calls.append(document_id)
        return self.thumbnails.get(document_id)


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def make_repository():
    return FakeRepository
