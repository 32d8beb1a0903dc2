# =============================================================================
# Ollama Provider — Free-Text Backend
# =============================================================================
#
# Calls a local Ollama server's /api/generate endpoint. Ollama is asked for
# JSON (`format: <schema>`), but local models do not reliably honour it, so
# output always goes through normalize_free_text(): a parsed object is used
# directly, text is searched for an embedded JSON object and repaired once.
#
# Token budgets use the chars/4 approximation. The context window sent to
# Ollama (`num_ctx`) is sized per request:
#
#   num_ctx = min(estimated prompt tokens + expected response, token_limit)
#
# WIRE FORMAT:
#   POST {ollama_api_url}/api/generate
#     {model, prompt, system, stream: false, format?: schema,
#      options: {temperature, top_p, num_predict, num_ctx, ...}}
#   → {"response": "<text>" | {...}}
#   GET  {ollama_api_url}/api/ps → {"models": [{"name": ...}, ...]}
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from paperai.config import Settings
from paperai.exceptions import InvalidResponseShape, ProviderUnavailable
from paperai.models.analysis import (
    AnalysisRequest,
    AnalysisResult,
    DocumentMetadata,
    ProviderStatus,
    UsageMetrics,
)
from paperai.services.llm import DOCUMENT_ANALYSIS_SCHEMA, PLAYGROUND_SCHEMA
from paperai.services.normalizer import normalize_free_text
from paperai.services.prompts import (
    FREE_TEXT_PLAYGROUND_SYSTEM_PROMPT,
    TEXT_GENERATION_SYSTEM_PROMPT,
    PromptAssembler,
)
from paperai.services.repository import DocumentRepository
from paperai.services.thumbnails import ThumbnailCache
from paperai.services.tokens import CharRatioEstimator, TokenBudgetEngine
from paperai.services.transcript import PromptTranscript

logger = logging.getLogger(__name__)

ANALYSIS_RESPONSE_ALLOWANCE = 1024
GENERATION_RESPONSE_ALLOWANCE = 512

ANALYSIS_OPTIONS: dict[str, Any] = {
    "temperature": 0.7,
    "top_p": 0.9,
    "repeat_penalty": 1.1,
    "top_k": 7,
    "num_predict": 256,
}


class OllamaProvider:
    """
    Ollama server as a free-text backend.

    Owns one httpx.AsyncClient with the OLLAMA_TIMEOUT timeout. Pass
    `client` to share a pool or to mock transport.
    """

    name = "ollama"

    def __init__(
        self,
        settings: Settings,
        repository: DocumentRepository | None = None,
        client: httpx.AsyncClient | None = None,
        transcript: PromptTranscript | None = None,
    ) -> None:
        self._settings = settings
        self._api_url = settings.ollama_api_url.rstrip("/")
        self._model = settings.ollama_model
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.ollama_timeout),
        )

        self.budget = TokenBudgetEngine(settings, CharRatioEstimator())
        self.prompts = PromptAssembler(settings, self.budget)
        self._thumbnails = ThumbnailCache(settings.image_cache_dir, repository)
        self._transcript = transcript or PromptTranscript(
            settings.prompt_log_path, settings.response_log_path,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _ensure_configured(self) -> None:
        if not self._api_url or not self._model:
            raise ProviderUnavailable(
                "Ollama client not initialized - missing API URL or model"
            )

    # -----------------------------------------------------------------------
    # Document analysis
    # -----------------------------------------------------------------------

    async def analyze_document(self, request: AnalysisRequest) -> AnalysisResult:
        try:
            self._ensure_configured()
            content = self._cap_content(request.content)
            await self._thumbnails.ensure(request.document_id)

            system = self.prompts.build_free_text_system_prompt()
            instructions = self.prompts.build_system_prompt(request)
            overhead = self.budget.estimate_prompt_tokens(instructions, [system])
            budget = self.budget.compute_budget(overhead)
            truncated, encoded = self._fit_encoded(content, budget.available_tokens)

            prompt = f"{instructions}\n\n{encoded}"
            num_ctx = self._num_ctx(
                self.budget.estimate_tokens(prompt), ANALYSIS_RESPONSE_ALLOWANCE,
            )

            data = await self._generate(
                prompt,
                system,
                options={**ANALYSIS_OPTIONS, "num_ctx": num_ctx},
                schema=DOCUMENT_ANALYSIS_SCHEMA,
            )
            document = self._parse(data)
            await self._transcript.write_exchange(prompt, document)

            return AnalysisResult(
                document=DocumentMetadata.model_validate(document),
                metrics=UsageMetrics(),  # Ollama reports no usage
                truncated=len(truncated) < len(request.content),
            )
        except Exception as e:
            logger.error(
                "Error analyzing document %s with Ollama: %s",
                request.document_id, e,
            )
            return AnalysisResult.failed(str(e))

    async def analyze_playground(self, content: str, prompt: str) -> AnalysisResult:
        try:
            self._ensure_configured()
            system = FREE_TEXT_PLAYGROUND_SYSTEM_PROMPT
            overhead = self.budget.estimate_prompt_tokens(prompt, [system])
            budget = self.budget.compute_budget(overhead)
            truncated, encoded = self._fit_encoded(content, budget.available_tokens)

            full_prompt = f"{prompt}\n\n{encoded}"
            num_ctx = self._num_ctx(
                self.budget.estimate_tokens(full_prompt), ANALYSIS_RESPONSE_ALLOWANCE,
            )

            data = await self._generate(
                full_prompt,
                system,
                options={**ANALYSIS_OPTIONS, "num_ctx": num_ctx},
                schema=PLAYGROUND_SCHEMA,
            )
            document = self._parse(data)

            return AnalysisResult(
                document=DocumentMetadata.model_validate(document),
                metrics=UsageMetrics(),
                truncated=len(truncated) < len(content),
            )
        except Exception as e:
            logger.error("Error analyzing playground document with Ollama: %s", e)
            return AnalysisResult.failed(str(e))

    # -----------------------------------------------------------------------
    # Text generation & health
    # -----------------------------------------------------------------------

    async def generate_text(self, prompt: str, temperature: float | None = None) -> str:
        try:
            self._ensure_configured()
            num_ctx = self._num_ctx(
                self.budget.estimate_tokens(prompt), GENERATION_RESPONSE_ALLOWANCE,
            )
            data = await self._generate(
                prompt,
                TEXT_GENERATION_SYSTEM_PROMPT,
                options={
                    "temperature": (
                        self._settings.rag_temperature
                        if temperature is None else temperature
                    ),
                    "top_p": 0.9,
                    "num_predict": 1024,
                    "num_ctx": num_ctx,
                },
            )
            answer = data.get("response")
            if not answer:
                raise InvalidResponseShape("Invalid response from Ollama API")
            return answer if isinstance(answer, str) else json.dumps(answer)
        except Exception as e:
            logger.error("Error generating text with Ollama: %s", e)
            raise

    async def check_status(self) -> ProviderStatus:
        try:
            self._ensure_configured()
            response = await self._client.get(f"{self._api_url}/api/ps")
            response.raise_for_status()
            models = response.json().get("models")

            model_name = None
            if isinstance(models, list) and models and isinstance(models[0], dict):
                name = models[0].get("name")
                model_name = str(name) if name is not None else None
            logger.info("Ollama model name: %s", model_name)
            return ProviderStatus(status="ok", model=model_name)
        except Exception as e:
            logger.error("Error checking Ollama service status: %s", e)
            return ProviderStatus(status="error", error=str(e))

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _cap_content(self, content: str) -> str:
        """Apply the optional character cap (CONTENT_MAX_LENGTH)."""
        limit = self._settings.content_max_length
        if limit and len(content) > limit:
            logger.info("Truncating content to max length: %d", limit)
            return content[:limit]
        return content

    def _fit_encoded(self, content: str, available_tokens: int) -> tuple[str, str]:
        """
        Truncate content so its JSON-encoded form fits the budget.

        The prompt embeds json.dumps(content); quotes, backslashes and
        control characters grow when escaped, so the raw cut is shrunk
        by the escape overhead until the encoded text fits.
        """
        truncated = self.budget.truncate(content, available_tokens)
        encoded = json.dumps(truncated, ensure_ascii=False)
        excess = self.budget.estimate_tokens(encoded) - available_tokens
        while excess > 0 and truncated:
            truncated = self.budget.truncate(
                truncated, self.budget.estimate_tokens(truncated) - excess,
            )
            encoded = json.dumps(truncated, ensure_ascii=False)
            excess = self.budget.estimate_tokens(encoded) - available_tokens
        return truncated, encoded

    def _num_ctx(self, prompt_tokens: int, expected_response_tokens: int) -> int:
        """Context window for one call, capped at the configured limit."""
        num_ctx = min(
            prompt_tokens + expected_response_tokens, self._settings.token_limit,
        )
        logger.debug(
            "Prompt tokens: %d, expected response tokens: %d, num_ctx: %d",
            prompt_tokens, expected_response_tokens, num_ctx,
        )
        return num_ctx

    async def _generate(
        self,
        prompt: str,
        system: str,
        options: dict[str, Any],
        schema: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "system": system,
            "stream": False,
            "options": options,
        }
        if schema is not None:
            payload["format"] = schema

        response = await self._client.post(
            f"{self._api_url}/api/generate", json=payload,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not data:
            raise InvalidResponseShape("Invalid response from Ollama API")
        return data

    def _parse(self, data: dict[str, Any]) -> dict[str, Any]:
        raw = data.get("response")
        if raw is None or raw == "":
            raise InvalidResponseShape("No response data from Ollama API")

        document = normalize_free_text(raw)
        if not document["tags"] and document["correspondent"] is None:
            logger.warning(
                "No tags or correspondent found in Ollama response. Review the "
                "prompt or switch to a structured-output backend."
            )
        return document
