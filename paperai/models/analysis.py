# =============================================================================
# Analysis Models — Requests & Results of Document Analysis
# =============================================================================
#
# AnalysisRequest is what callers hand to a provider; AnalysisResult is what
# they always get back, even on failure. A failed analysis is recognisable by
# an empty tag list, a null correspondent and a non-null `error`.
# =============================================================================

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _names(items: Any) -> list[str]:
    """Flatten a list of names or `{name: ...}` records, dropping blanks."""
    if not isinstance(items, (list, tuple)):
        return []
    names: list[str] = []
    for item in items:
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            name = item.get("name") or ""
        else:
            name = getattr(item, "name", "") or ""
        if name:
            names.append(name)
    return names


class AnalysisRequest(BaseModel):
    """
    Input for `AIProvider.analyze_document()`.

    The existing taxonomy lists are used verbatim in the prompt (order is
    preserved). Items may be plain names or archive records with a `name`.
    """

    content: str
    existing_tags: list[str] = Field(default_factory=list)
    existing_correspondents: list[str] = Field(default_factory=list)
    existing_document_types: list[str] = Field(default_factory=list)
    document_id: int | str | None = None
    custom_prompt: str | None = None
    external_data: Any | None = None

    @field_validator(
        "existing_tags",
        "existing_correspondents",
        "existing_document_types",
        mode="before",
    )
    @classmethod
    def _flatten_names(cls, value: Any) -> list[str]:
        return _names(value)


class DocumentMetadata(BaseModel):
    """Metadata extracted from one document. Extra keys from the model are kept."""

    model_config = ConfigDict(extra="allow")

    title: str | None = None
    correspondent: str | None = None
    tags: list[str] = Field(default_factory=list)
    document_type: str | None = None
    document_date: str | None = None
    language: str | None = None
    custom_fields: Any | None = None


class UsageMetrics(BaseModel):
    """Token usage reported by the backend (zeros when it reports none)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AnalysisResult(BaseModel):
    """Outcome of one analysis call."""

    document: DocumentMetadata
    metrics: UsageMetrics | None = None
    truncated: bool = False
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> AnalysisResult:
        """The error-shaped result: no tags, no correspondent, error set."""
        return cls(
            document=DocumentMetadata(tags=[], correspondent=None),
            metrics=None,
            truncated=False,
            error=error,
        )

    @property
    def is_empty(self) -> bool:
        return not self.document.tags and self.document.correspondent is None


class ProviderStatus(BaseModel):
    """Result of a provider health check."""

    status: Literal["ok", "error"]
    model: str | None = None
    error: str | None = None
