# =============================================================================
# Azure OpenAI Provider — Structured-Output Backend
# =============================================================================
#
# Chat completions against an Azure OpenAI deployment. The JSON schema for
# the analysis record is sent as `response_format`, so the deployment emits
# conforming JSON; the result is still validated by normalize_structured().
#
# Token budgets use tiktoken (exact counts for the deployment's model,
# cl100k_base when the deployment name is not a known model name).
#
# FLOW (analyze_document):
#   1. client ready?          → else ProviderUnavailable
#   2. thumbnail cached       → ThumbnailCache.ensure()
#   3. system prompt          → PromptAssembler.build_system_prompt()
#   4. budget                 → token_limit - (prompt + response_tokens)
#   5. truncate content       → fits available tokens
#   6. chat.completions.create(system, user=content, temperature=0.3)
#   7. normalize_structured() → AnalysisResult with usage metrics
# Any failure along the way becomes AnalysisResult.failed(<message>).
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncAzureOpenAI

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
from paperai.services.normalizer import normalize_structured, strip_code_fences
from paperai.services.prompts import PromptAssembler
from paperai.services.repository import DocumentRepository
from paperai.services.thumbnails import ThumbnailCache
from paperai.services.tokens import (
    TiktokenEstimator,
    TokenBudgetEngine,
    TokenEstimator,
)
from paperai.services.transcript import PromptTranscript

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.3
GENERATION_MAX_TOKENS = 1000
STATUS_CHECK_MAX_TOKENS = 10


def _response_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "schema": schema},
    }


def _message_content(response: Any) -> str:
    """`choices[0].message.content`, or InvalidResponseShape."""
    choices = getattr(response, "choices", None)
    content = choices[0].message.content if choices else None
    if not content:
        raise InvalidResponseShape("Invalid API response structure")
    return content


def _usage(response: Any) -> UsageMetrics:
    usage = getattr(response, "usage", None)
    if usage is None:
        return UsageMetrics()
    return UsageMetrics(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


class AzureOpenAIProvider:
    """
    Azure OpenAI deployment as a structured-output backend.

    The SDK client is created lazily on first use so that a missing key only
    fails the calls that need it (as ProviderUnavailable), not construction.
    """

    name = "azure"

    def __init__(
        self,
        settings: Settings,
        repository: DocumentRepository | None = None,
        client: AsyncAzureOpenAI | None = None,
        transcript: PromptTranscript | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._model = settings.azure_deployment_name

        self.budget = TokenBudgetEngine(
            settings, estimator or TiktokenEstimator(self._model),
        )
        self.prompts = PromptAssembler(settings, self.budget, self._model)
        self._thumbnails = ThumbnailCache(settings.image_cache_dir, repository)
        self._transcript = transcript or PromptTranscript(
            settings.prompt_log_path, settings.response_log_path,
        )

    def _get_client(self) -> AsyncAzureOpenAI:
        """Lazily initialize and cache the Azure OpenAI client."""
        if self._client is None:
            settings = self._settings
            if not (
                settings.azure_api_key
                and settings.azure_endpoint
                and settings.azure_deployment_name
            ):
                raise ProviderUnavailable(
                    "AzureOpenAI client not initialized - missing API key, "
                    "endpoint or deployment name"
                )
            self._client = AsyncAzureOpenAI(
                api_key=settings.azure_api_key,
                azure_endpoint=settings.azure_endpoint,
                azure_deployment=settings.azure_deployment_name,
                api_version=settings.azure_api_version,
            )
            logger.info(
                "Initialized AzureOpenAIProvider (deployment=%s, endpoint=%s)",
                self._model, settings.azure_endpoint,
            )
        return self._client

    # -----------------------------------------------------------------------
    # Document analysis
    # -----------------------------------------------------------------------

    async def analyze_document(self, request: AnalysisRequest) -> AnalysisResult:
        try:
            client = self._get_client()
            await self._thumbnails.ensure(request.document_id)

            system_prompt = self.prompts.build_system_prompt(request)
            prompt_tokens = self.budget.estimate_prompt_tokens(
                system_prompt, model=self._model,
            )
            budget = self.budget.compute_budget(prompt_tokens)
            content = self.budget.truncate(
                request.content, budget.available_tokens, self._model,
            )
            await self._transcript.write_prompt(system_prompt, content)

            return await self._complete_analysis(
                client,
                system_prompt,
                content,
                original_length=len(request.content),
                schema_name="document_analysis",
                schema=DOCUMENT_ANALYSIS_SCHEMA,
            )
        except Exception as e:
            logger.error(
                "Failed to analyze document %s: %s", request.document_id, e,
            )
            return AnalysisResult.failed(str(e))

    async def analyze_playground(self, content: str, prompt: str) -> AnalysisResult:
        try:
            client = self._get_client()

            system_prompt = self.prompts.build_playground_system_prompt(prompt)
            prompt_tokens = self.budget.estimate_prompt_tokens(
                system_prompt, model=self._model,
            )
            budget = self.budget.compute_budget(prompt_tokens)
            truncated = self.budget.truncate(
                content, budget.available_tokens, self._model,
            )

            return await self._complete_analysis(
                client,
                system_prompt,
                truncated,
                original_length=len(content),
                schema_name="playground_analysis",
                schema=PLAYGROUND_SCHEMA,
            )
        except Exception as e:
            logger.error("Failed to analyze playground document: %s", e)
            return AnalysisResult.failed(str(e))

    async def _complete_analysis(
        self,
        client: AsyncAzureOpenAI,
        system_prompt: str,
        content: str,
        original_length: int,
        schema_name: str,
        schema: dict[str, Any],
    ) -> AnalysisResult:
        response = await client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            temperature=ANALYSIS_TEMPERATURE,
            response_format=_response_format(schema_name, schema),
        )

        raw = _message_content(response)
        metrics = _usage(response)
        logger.info(
            "AzureOpenAI request sent (deployment=%s, total tokens=%d)",
            self._model, metrics.total_tokens,
        )

        document = normalize_structured(raw)
        await self._transcript.write_response(strip_code_fences(raw))

        return AnalysisResult(
            document=DocumentMetadata.model_validate(document),
            metrics=metrics,
            truncated=len(content) < original_length,
        )

    # -----------------------------------------------------------------------
    # Text generation & health
    # -----------------------------------------------------------------------

    async def generate_text(self, prompt: str, temperature: float | None = None) -> str:
        try:
            client = self._get_client()
            response = await client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=(
                    self._settings.rag_temperature
                    if temperature is None else temperature
                ),
                max_tokens=GENERATION_MAX_TOKENS,
            )
            return _message_content(response)
        except Exception as e:
            logger.error("Error generating text with AzureOpenAI: %s", e)
            raise

    async def check_status(self) -> ProviderStatus:
        try:
            client = self._get_client()
            response = await client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": "Ping"}],
                temperature=0.7,
                max_tokens=STATUS_CHECK_MAX_TOKENS,
            )
            _message_content(response)
        except Exception as e:
            logger.error("Error checking AzureOpenAI status: %s", e)
            return ProviderStatus(status="error", error=str(e))
        return ProviderStatus(status="ok", model=self._model)
