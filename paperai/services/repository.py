# =============================================================================
# Document Repository — Collaborator Interface
# =============================================================================
#
# The document archive client (thumbnails, metadata, raw content, tag
# cache) lives outside this package. This module only states what the
# providers and the RAG orchestrator need from it.
#
# The tag cache is owned and refreshed by the repository; this package only
# reads it to turn numeric tag ids into names.
# =============================================================================

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol


class DocumentRepository(Protocol):
    """What the core consumes from the document archive client."""

    tag_cache: Mapping[Any, Mapping[str, Any]]

    async def get_thumbnail_image(self, document_id: int | str) -> bytes | None:
        """PNG bytes of the document thumbnail, or None if there is none."""
        ...

    async def get_document(self, document_id: int | str) -> dict[str, Any]:
        """Document metadata: title, created, correspondent, tags (ids), content."""
        ...

    async def get_document_content(self, document_id: int | str) -> str:
        """Full extracted text of the document."""
        ...

    async def ensure_tag_cache(self) -> None:
        """Populate `tag_cache` if it has not been loaded yet."""
        ...


def resolve_tag_names(
    tag_ids: Iterable[Any],
    tag_cache: Mapping[Any, Mapping[str, Any]],
) -> list[str]:
    """
    Map tag ids to tag names, dropping ids the cache does not know.

    Accepts caches keyed by id as well as caches keyed by name whose records
    carry an `id`.
    """
    by_id: dict[Any, str] = {}
    for key, record in tag_cache.items():
        name = record.get("name")
        if not name:
            continue
        by_id[record.get("id", key)] = name

    names: list[str] = []
    for tag_id in tag_ids:
        name = by_id.get(tag_id)
        if name:
            names.append(name)
    return names
