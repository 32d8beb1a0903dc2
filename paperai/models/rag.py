# =============================================================================
# RAG Models — Answers & Citation Metadata
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

EXCERPT_LENGTH = 500


class RagAnswer(BaseModel):
    """
    Answer to a question about the archive.

    `sources` are the retrieval service's records, passed through untouched
    so a UI can list them even when answer generation failed.
    """

    answer: str
    sources: list[dict[str, Any]] = Field(default_factory=list)


@dataclass
class ReferenceDocument:
    """
    Citation metadata for a source tagged as a reference work.

    Lives only for the duration of one question.
    """

    id: int | str
    title: str
    created: str | None
    correspondent: str | int | None
    tags: list[str] = field(default_factory=list)
    excerpt: str = ""

    @staticmethod
    def make_excerpt(content: str | None) -> str:
        """First EXCERPT_LENGTH characters, with `...` when cut."""
        if not content:
            return ""
        if len(content) <= EXCERPT_LENGTH:
            return content
        return content[:EXCERPT_LENGTH] + "..."

    def to_prompt_block(self) -> str:
        return (
            f"ID: {self.id}\n"
            f"Title: {self.title}\n"
            f"Created: {self.created}\n"
            f"Correspondent: {self.correspondent}\n"
            f"Tags: {', '.join(self.tags)}\n"
            f"Excerpt: {self.excerpt}"
        )
