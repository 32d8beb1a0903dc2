# =============================================================================
# AI Provider Abstraction — Pluggable Analysis Backend
# =============================================================================
#
# Provides a common interface for document analysis and text generation,
# with two concrete implementations:
#
#   AzureOpenAIProvider (azure.py)  — structured-output backend. The
#       response schema is sent with the request and the backend emits
#       conforming JSON; output still goes through normalize_structured().
#   OllamaProvider (ollama.py)      — free-text backend. JSON is extracted
#       from the generated text by normalize_free_text().
#
# The variant is chosen once, at startup, by create_ai_provider(); call
# sites only ever see the AIProvider protocol.
#
# BOUNDARY CONTRACT (both variants):
#   analyze_document / analyze_playground → never raise; failures come back
#       as AnalysisResult.failed(<message>)
#   generate_text → raises (ProviderUnavailable, HTTP/SDK errors,
#       InvalidResponseShape) so callers can tell failure from an answer
#   check_status  → never raises; ProviderStatus(status="ok"|"error")
#
# ARCHITECTURE:
#   AIProvider (Protocol)
#   ├── AzureOpenAIProvider — openai.AsyncAzureOpenAI, tiktoken budgets
#   ├── OllamaProvider      — httpx.AsyncClient, chars/4 budgets
#   └── create_ai_provider() — factory, reads settings.ai_provider
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Protocol

from paperai.config import Settings, get_settings
from paperai.models.analysis import AnalysisRequest, AnalysisResult, ProviderStatus
from paperai.services.repository import DocumentRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
# Sent to the backend so it can constrain its output. custom_fields is
# open-ended because the configured field set varies per installation.
# ---------------------------------------------------------------------------

DOCUMENT_ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "correspondent": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "document_type": {"type": "string"},
        "document_date": {"type": "string"},
        "language": {"type": "string"},
        "custom_fields": {"type": "object", "additionalProperties": True},
    },
    "required": [
        "title",
        "correspondent",
        "tags",
        "document_type",
        "document_date",
        "language",
    ],
}

PLAYGROUND_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "correspondent": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "document_type": {"type": "string"},
        "document_date": {"type": "string"},
        "language": {"type": "string"},
    },
    "required": [
        "title",
        "correspondent",
        "tags",
        "document_type",
        "document_date",
        "language",
    ],
}


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class AIProvider(Protocol):
    """
    Protocol defining the AI provider interface.

    Both backends implement these four operations with the same signatures
    and failure behavior; see the boundary contract above.
    """

    name: str

    async def analyze_document(self, request: AnalysisRequest) -> AnalysisResult:
        """
        Extract metadata from one archived document.

        Runs prompt assembly, token budgeting and content truncation, the
        wire call and response normalization. Also makes sure the document
        thumbnail is cached locally.
        """
        ...

    async def analyze_playground(self, content: str, prompt: str) -> AnalysisResult:
        """Analyze `content` with a caller-written prompt and a fixed schema."""
        ...

    async def generate_text(self, prompt: str, temperature: float | None = None) -> str:
        """Single free-form completion, no schema. Raises on failure."""
        ...

    async def check_status(self) -> ProviderStatus:
        """Cheap health-check request. Never raises."""
        ...


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def create_ai_provider(
    settings: Settings | None = None,
    repository: DocumentRepository | None = None,
) -> AIProvider:
    """
    Build the provider selected by `settings.ai_provider`.

    - "azure"  → AzureOpenAIProvider
    - "ollama" → OllamaProvider

    `repository` is used for thumbnail caching; without one, thumbnails are
    skipped.

    Raises:
        ValueError: If the configured provider name is unknown.
    """
    settings = settings or get_settings()

    if settings.ai_provider == "azure":
        from paperai.services.azure import AzureOpenAIProvider

        return AzureOpenAIProvider(settings, repository)

    if settings.ai_provider == "ollama":
        from paperai.services.ollama import OllamaProvider

        return OllamaProvider(settings, repository)

    raise ValueError(
        f"Unknown AI provider '{settings.ai_provider}'. "
        "Supported providers: ['azure', 'ollama']"
    )
