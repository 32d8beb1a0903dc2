# =============================================================================
# Token Budget Engine — Estimation, Budgets & Truncation
# =============================================================================
#
# Every document is sized against a token budget before it is sent:
#
#   available = token_limit - (prompt_overhead + response_tokens)
#
# If nothing is left for content the request is aborted with BudgetExceeded;
# otherwise the content is cut to a prefix that fits.
#
# Two estimators share one interface:
#   TiktokenEstimator  — exact BPE counts (structured-output backend)
#   CharRatioEstimator — ceil(len / 4)
#                        (free-text backend, whose tokenizer is unknown)
#
# INVARIANTS:
#   estimate(truncate(text, n)) <= n
#   truncate(truncate(text, n), n) == truncate(text, n)
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import tiktoken

from paperai.config import Settings
from paperai.exceptions import BudgetExceeded

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenBudget:
    """Resolved budget for one request."""

    max_tokens: int
    reserved_tokens: int  # prompt overhead + reserved response
    available_tokens: int  # what is left for document content


# ---------------------------------------------------------------------------
# Estimator Protocol
# ---------------------------------------------------------------------------


class TokenEstimator(Protocol):
    """Counts tokens and cuts text to a token limit for one backend."""

    def estimate_tokens(self, text: str, model: str | None = None) -> int:
        ...

    def truncate(self, text: str, max_tokens: int, model: str | None = None) -> str:
        ...


# ---------------------------------------------------------------------------
# Tiktoken Encoders — Cached per Model
# ---------------------------------------------------------------------------
# Loading an encoding reads a BPE file from disk, so encoders are cached.
# Azure deployment names are arbitrary and usually unknown to tiktoken;
# those fall back to cl100k_base.
# ---------------------------------------------------------------------------

_FALLBACK_ENCODING = "cl100k_base"

_encoders: dict[str, tiktoken.Encoding] = {}


def _get_encoder(model: str | None) -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder for a model."""
    key = model or _FALLBACK_ENCODING
    if key not in _encoders:
        if model:
            try:
                _encoders[key] = tiktoken.encoding_for_model(model)
            except KeyError:
                logger.debug(
                    "No tiktoken encoding for model '%s', using %s",
                    model, _FALLBACK_ENCODING,
                )
                _encoders[key] = tiktoken.get_encoding(_FALLBACK_ENCODING)
        else:
            _encoders[key] = tiktoken.get_encoding(_FALLBACK_ENCODING)
    return _encoders[key]


class TiktokenEstimator:
    """Exact token counts with the model's BPE encoding."""

    def __init__(self, default_model: str | None = None) -> None:
        self.default_model = default_model or None

    def _encode(self, text: str, model: str | None) -> list[int]:
        encoder = _get_encoder(model or self.default_model)
        # Documents may literally contain "<|endoftext|>"; count it as text.
        return encoder.encode(text, disallowed_special=())

    def estimate_tokens(self, text: str, model: str | None = None) -> int:
        if not text:
            return 0
        return len(self._encode(text, model))

    def truncate(self, text: str, max_tokens: int, model: str | None = None) -> str:
        if max_tokens <= 0:
            return ""
        tokens = self._encode(text, model)
        if len(tokens) <= max_tokens:
            return text

        encoder = _get_encoder(model or self.default_model)
        # Decoding a token prefix can re-encode to a different count at the
        # cut point (merged BPE pieces, split multi-byte characters); shrink
        # until the re-encoded prefix fits.
        limit = max_tokens
        while limit > 0:
            candidate = encoder.decode(tokens[:limit])
            if len(encoder.encode(candidate, disallowed_special=())) <= max_tokens:
                return candidate
            limit -= 1
        return ""


class CharRatioEstimator:
    """Fixed characters-per-token approximation (default 4)."""

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate_tokens(self, text: str, model: str | None = None) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def truncate(self, text: str, max_tokens: int, model: str | None = None) -> str:
        if max_tokens <= 0:
            return ""
        if self.estimate_tokens(text) <= max_tokens:
            return text
        return text[: max_tokens * self.chars_per_token]


# ---------------------------------------------------------------------------
# Budget Engine
# ---------------------------------------------------------------------------


class TokenBudgetEngine:
    """
    Token arithmetic for one backend.

    Wraps an estimator with the configured limits from Settings. Pure
    computation; no I/O.
    """

    def __init__(self, settings: Settings, estimator: TokenEstimator) -> None:
        self._settings = settings
        self.estimator = estimator

    def estimate_tokens(self, text: str, model: str | None = None) -> int:
        return self.estimator.estimate_tokens(text, model)

    def estimate_prompt_tokens(
        self,
        system_prompt: str,
        extra_prompts: Iterable[str] = (),
        model: str | None = None,
    ) -> int:
        """Total tokens of the fixed prompt parts that precede the content."""
        total = self.estimate_tokens(system_prompt, model)
        for part in extra_prompts:
            if part:
                total += self.estimate_tokens(part, model)
        return total

    def compute_budget(
        self,
        prompt_overhead_tokens: int,
        max_tokens: int | None = None,
        reserved_response_tokens: int | None = None,
    ) -> TokenBudget:
        """
        Resolve how many tokens remain for content.

        Raises:
            BudgetExceeded: If nothing remains. Callers must abort the
                request; truncating to a non-positive budget is not allowed.
        """
        limit = self._settings.token_limit if max_tokens is None else max_tokens
        response = (
            self._settings.response_tokens
            if reserved_response_tokens is None
            else reserved_response_tokens
        )
        reserved = prompt_overhead_tokens + response
        available = limit - reserved

        if available <= 0:
            logger.warning(
                "No available tokens for content. Reserved: %d, Max: %d",
                reserved, limit,
            )
            raise BudgetExceeded(max_tokens=limit, reserved_tokens=reserved)

        logger.debug(
            "Token calculation - Prompt: %d, Reserved: %d, Available: %d",
            prompt_overhead_tokens, reserved, available,
        )
        return TokenBudget(
            max_tokens=limit,
            reserved_tokens=reserved,
            available_tokens=available,
        )

    def truncate(
        self,
        text: str,
        available_tokens: int,
        model: str | None = None,
    ) -> str:
        """Longest estimator-defined prefix of `text` within the budget."""
        return self.estimator.truncate(text, available_tokens, model)
