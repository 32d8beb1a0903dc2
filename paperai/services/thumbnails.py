# =============================================================================
# Thumbnail Cache — Local Copies of Document Thumbnails
# =============================================================================
#
# Analysis calls make sure a thumbnail for the document exists under
# `image_cache_dir/<id>.png`, fetching it from the repository at most once
# per id. Writes are idempotent (same id → same bytes), so concurrent
# requests racing on one id need no coordination.
#
# File I/O runs in a worker thread via asyncio.to_thread() so the event
# loop is never blocked on disk.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from paperai.services.repository import DocumentRepository

logger = logging.getLogger(__name__)


class ThumbnailCache:
    """Thumbnail files keyed by document id."""

    def __init__(
        self,
        directory: str | Path,
        repository: DocumentRepository | None,
    ) -> None:
        self.directory = Path(directory)
        self._repository = repository

    def path_for(self, document_id: int | str) -> Path:
        return self.directory / f"{document_id}.png"

    async def ensure(self, document_id: int | str | None) -> None:
        """Fetch and store the thumbnail unless it is already cached."""
        if document_id is None or self._repository is None:
            return

        path = self.path_for(document_id)
        if await asyncio.to_thread(path.exists):
            logger.debug("Thumbnail already cached: %s", path)
            return

        logger.info("Thumbnail not cached, fetching document %s", document_id)
        data = await self._repository.get_thumbnail_image(document_id)
        if not data:
            logger.warning("Thumbnail not found for document %s", document_id)
            return

        await asyncio.to_thread(self._write, path, data)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
