# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Where each error stops:
#   ProviderUnavailable  → error-shaped AnalysisResult from analyze_*;
#                          raised to generate_text callers;
#                          status "error" from check_status
#   BudgetExceeded       → error-shaped AnalysisResult (request aborted
#                          before anything is sent)
#   InvalidResponseShape → error-shaped AnalysisResult
#   MalformedOutput      → caught inside the normalizer, replaced by the
#                          canonical empty result
#   RagQueryError        → raised by RagOrchestrator.ask_question when the
#                          retrieval service cannot provide context
# =============================================================================

from __future__ import annotations


class PaperAIError(Exception):
    """Base class for all errors raised by this package."""


class ProviderUnavailable(PaperAIError):
    """The AI backend has no usable client or configuration."""


class BudgetExceeded(PaperAIError):
    """No token budget is left for document content after prompt overhead."""

    def __init__(self, max_tokens: int, reserved_tokens: int) -> None:
        self.max_tokens = max_tokens
        self.reserved_tokens = reserved_tokens
        super().__init__(
            "Token limit exceeded: prompt too large for available token limit "
            f"(reserved={reserved_tokens}, max={max_tokens})"
        )


class InvalidResponseShape(PaperAIError):
    """The backend returned JSON that is missing required fields."""


class MalformedOutput(PaperAIError):
    """Free-text output could not be parsed as JSON, even after repair."""


class RagQueryError(PaperAIError):
    """A question could not be answered because retrieval failed."""
