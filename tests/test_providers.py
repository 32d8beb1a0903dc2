# =============================================================================
# Unit Tests — AI Providers
# =============================================================================
#
# Both backends without network access: the Azure SDK client is replaced by
# an AsyncMock, the Ollama server by an httpx.MockTransport. Token budgets
# use the chars/4 estimator so no tokenizer files are needed.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from paperai.exceptions import ProviderUnavailable
from paperai.models.analysis import AnalysisRequest
from paperai.services.azure import AzureOpenAIProvider
from paperai.services.llm import DOCUMENT_ANALYSIS_SCHEMA, create_ai_provider
from paperai.services.ollama import OllamaProvider
from paperai.services.tokens import CharRatioEstimator


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


ANALYSIS_JSON = json.dumps({
    "title": "Invoice 42",
    "correspondent": "ACME",
    "tags": ["Invoice", "Tax"],
    "document_type": "Invoice",
    "document_date": "2024-03-01",
    "language": "en",
})


def _completion(content: str | None, usage=True):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=(
            SimpleNamespace(prompt_tokens=120, completion_tokens=30, total_tokens=150)
            if usage else None
        ),
    )


def _mock_azure_client(response=None, side_effect=None):
    create = AsyncMock(return_value=response, side_effect=side_effect)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


@pytest.fixture
def azure_settings(make_settings):
    def _make(**overrides):
        values = {
            "ai_provider": "azure",
            "azure_api_key": "test-key",
            "azure_endpoint": "https://example.openai.azure.com",
            "azure_deployment_name": "gpt-4o-mini",
        }
        values.update(overrides)
        return make_settings(**values)

    return _make


def _azure(settings, client=None, repository=None) -> AzureOpenAIProvider:
    return AzureOpenAIProvider(
        settings, repository, client=client, estimator=CharRatioEstimator(),
    )


# ---------------------------------------------------------------------------
# Test: Azure OpenAI Provider
# ---------------------------------------------------------------------------


class TestAzureAnalyzeDocument:

    def test_success(self, azure_settings, make_repository):
        settings = azure_settings()
        client = _mock_azure_client(_completion(ANALYSIS_JSON))
        repository = make_repository(thumbnails={7: b"\x89PNG"})
        provider = _azure(settings, client, repository)

        result = _run(provider.analyze_document(
            AnalysisRequest(content="Invoice 42 from ACME", document_id=7)
        ))

        assert result.error is None
        assert result.document.title == "Invoice 42"
        assert result.document.tags == ["Invoice", "Tax"]
        assert result.metrics.total_tokens == 150
        assert result.truncated is False

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"]["type"] == "json_schema"
        assert kwargs["response_format"]["json_schema"]["schema"] == DOCUMENT_ANALYSIS_SCHEMA
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": "Invoice 42 from ACME"}
        assert kwargs["temperature"] == 0.3

    def test_thumbnail_fetched_once(self, azure_settings, make_repository):
        settings = azure_settings()
        repository = make_repository(thumbnails={7: b"\x89PNG"})
        provider = _azure(settings, _mock_azure_client(_completion(ANALYSIS_JSON)), repository)
        request = AnalysisRequest(content="text", document_id=7)

        _run(provider.analyze_document(request))
        _run(provider.analyze_document(request))

        assert repository.thumbnail_calls == [7]
        cached = provider._thumbnails.path_for(7)
        assert cached.read_bytes() == b"\x89PNG"

    def test_budget_exceeded_sends_nothing(self, azure_settings):
        settings = azure_settings(token_limit=100, response_tokens=50)
        client = _mock_azure_client(_completion(ANALYSIS_JSON))

        result = _run(_azure(settings, client).analyze_document(
            AnalysisRequest(content="anything")
        ))

        assert result.error.startswith("Token limit exceeded")
        assert result.is_empty
        assert result.metrics is None
        client.chat.completions.create.assert_not_awaited()

    def test_long_content_is_truncated(self, azure_settings):
        settings = azure_settings(token_limit=1000, response_tokens=100)
        client = _mock_azure_client(_completion(ANALYSIS_JSON))
        content = "word " * 2000

        result = _run(_azure(settings, client).analyze_document(
            AnalysisRequest(content=content)
        ))

        assert result.error is None
        assert result.truncated is True
        sent = client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
        assert content.startswith(sent)
        assert len(sent) <= (1000 - 100) * 4

    def test_missing_credentials_returns_error_result(self, make_settings):
        settings = make_settings(ai_provider="azure")
        result = _run(_azure(settings).analyze_document(AnalysisRequest(content="x")))
        assert "not initialized" in result.error
        assert result.is_empty

    def test_invalid_shape_returns_error_result(self, azure_settings):
        client = _mock_azure_client(_completion('{"tags": "Invoice", "correspondent": "ACME"}'))
        result = _run(_azure(azure_settings(), client).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert "Invalid response structure" in result.error

    def test_empty_choices_returns_error_result(self, azure_settings):
        client = _mock_azure_client(SimpleNamespace(choices=[], usage=None))
        result = _run(_azure(azure_settings(), client).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert result.error == "Invalid API response structure"

    def test_playground(self, azure_settings):
        client = _mock_azure_client(_completion(ANALYSIS_JSON, usage=False))
        result = _run(_azure(azure_settings(), client).analyze_playground(
            "Invoice 42", "Extract the invoice data.",
        ))
        assert result.document.correspondent == "ACME"
        assert result.metrics.total_tokens == 0
        system = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
        assert system.startswith("Extract the invoice data.\n\n")


class TestAzureTextAndStatus:

    def test_generate_text(self, azure_settings):
        client = _mock_azure_client(_completion("The total is 42 EUR."))
        answer = _run(_azure(azure_settings(), client).generate_text("What is the total?"))
        assert answer == "The total is 42 EUR."
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 1000
        assert kwargs["messages"] == [{"role": "user", "content": "What is the total?"}]

    def test_generate_text_raises_when_unconfigured(self, make_settings):
        with pytest.raises(ProviderUnavailable):
            _run(_azure(make_settings(ai_provider="azure")).generate_text("hi"))

    def test_check_status_ok(self, azure_settings):
        client = _mock_azure_client(_completion("Pong"))
        status = _run(_azure(azure_settings(), client).check_status())
        assert status.status == "ok"
        assert status.model == "gpt-4o-mini"

    def test_check_status_never_raises(self, azure_settings):
        client = _mock_azure_client(side_effect=RuntimeError("401 Unauthorized"))
        status = _run(_azure(azure_settings(), client).check_status())
        assert status.status == "error"
        assert status.error == "401 Unauthorized"


# ---------------------------------------------------------------------------
# Test: Ollama Provider
# ---------------------------------------------------------------------------


class _OllamaServer:
    """MockTransport handler recording request bodies."""

    def __init__(self, generate=None, ps=None, status_code=200):
        self.generate = generate if generate is not None else {"response": ""}
        self.ps = ps if ps is not None else {"models": []}
        self.status_code = status_code
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/ps":
            return httpx.Response(self.status_code, json=self.ps)
        self.bodies.append(json.loads(request.content))
        return httpx.Response(self.status_code, json=self.generate)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class TestOllamaAnalyzeDocument:

    def test_json_extracted_from_prose(self, settings):
        server = _OllamaServer(generate={
            "response": 'Here you go:\n{"title": "Rent", "correspondent": "Landlord", "tags": ["Housing"],}',
        })
        provider = OllamaProvider(settings, client=server.client())

        result = _run(provider.analyze_document(AnalysisRequest(content="Rent for May")))

        assert result.error is None
        assert result.document.title == "Rent"
        assert result.document.tags == ["Housing"]
        assert result.metrics.total_tokens == 0

        body = server.bodies[0]
        assert body["model"] == "llama3.2"
        assert body["stream"] is False
        assert body["format"] == DOCUMENT_ANALYSIS_SCHEMA
        assert body["prompt"].endswith('"Rent for May"')
        assert body["options"]["num_ctx"] == (
            provider.budget.estimate_tokens(body["prompt"]) + 1024
        )

    def test_unparseable_output_is_empty_not_error(self, settings):
        server = _OllamaServer(generate={"response": "I can't help with that."})
        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert result.error is None
        assert result.is_empty

    def test_num_ctx_capped_at_token_limit(self, make_settings):
        settings = make_settings(token_limit=2000, response_tokens=100)
        server = _OllamaServer(generate={"response": '{"tags": []}'})

        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="x" * 20000)
        ))

        assert result.truncated is True
        assert server.bodies[0]["options"]["num_ctx"] == 2000

    def test_content_max_length_applied(self, make_settings):
        settings = make_settings(content_max_length=10)
        server = _OllamaServer(generate={"response": '{"tags": []}'})

        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="abcdefghij" * 10)
        ))

        assert result.truncated is True
        assert server.bodies[0]["prompt"].endswith('"abcdefghij"')

    def test_escaped_content_fits_budget(self, make_settings):
        settings = make_settings(token_limit=4000, response_tokens=100)
        server = _OllamaServer(generate={"response": '{"tags": []}'})
        provider = OllamaProvider(settings, client=server.client())
        request = AnalysisRequest(content='He said "stop"\n\t\\ ' * 2000)

        result = _run(provider.analyze_document(request))

        overhead = provider.budget.estimate_prompt_tokens(
            provider.prompts.build_system_prompt(request),
            [provider.prompts.build_free_text_system_prompt()],
        )
        available = provider.budget.compute_budget(overhead).available_tokens
        encoded = server.bodies[0]["prompt"].rsplit("\n\n", 1)[1]

        assert result.truncated is True
        assert provider.budget.estimate_tokens(encoded) <= available
        assert request.content.startswith(json.loads(encoded))

    def test_missing_response_field(self, settings):
        server = _OllamaServer(generate={"done": True})
        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert result.error == "No response data from Ollama API"

    def test_http_error_returns_error_result(self, settings):
        server = _OllamaServer(generate={"error": "boom"}, status_code=500)
        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert result.error is not None
        assert result.is_empty

    def test_unconfigured_model(self, make_settings):
        settings = make_settings(ollama_model="")
        server = _OllamaServer()
        result = _run(OllamaProvider(settings, client=server.client()).analyze_document(
            AnalysisRequest(content="x")
        ))
        assert "not initialized" in result.error
        assert server.bodies == []


class TestOllamaTextAndStatus:

    def test_generate_text(self, settings):
        server = _OllamaServer(generate={"response": "42 EUR"})
        answer = _run(OllamaProvider(settings, client=server.client()).generate_text("Total?"))

        assert answer == "42 EUR"
        body = server.bodies[0]
        assert "format" not in body
        assert body["options"]["num_predict"] == 1024
        assert body["options"]["temperature"] == 0.1

    def test_generate_text_raises_on_http_error(self, settings):
        server = _OllamaServer(status_code=503)
        with pytest.raises(httpx.HTTPStatusError):
            _run(OllamaProvider(settings, client=server.client()).generate_text("Total?"))

    def test_check_status_reports_loaded_model(self, settings):
        server = _OllamaServer(ps={"models": [{"name": "llama3.2:latest"}]})
        status = _run(OllamaProvider(settings, client=server.client()).check_status())
        assert status.status == "ok"
        assert status.model == "llama3.2:latest"

    def test_check_status_no_models_loaded(self, settings):
        status = _run(OllamaProvider(settings, client=_OllamaServer().client()).check_status())
        assert status.status == "ok"
        assert status.model is None

    def test_check_status_model_entries_not_objects(self, settings):
        server = _OllamaServer(ps={"models": ["llama3.2"]})
        status = _run(OllamaProvider(settings, client=server.client()).check_status())
        assert status.status == "ok"
        assert status.model is None

    def test_check_status_non_string_model_name(self, settings):
        server = _OllamaServer(ps={"models": [{"name": 7}]})
        status = _run(OllamaProvider(settings, client=server.client()).check_status())
        assert status.status == "ok"
        assert status.model == "7"

    def test_check_status_error(self, settings):
        server = _OllamaServer(status_code=500)
        status = _run(OllamaProvider(settings, client=server.client()).check_status())
        assert status.status == "error"
        assert status.error


# ---------------------------------------------------------------------------
# Test: Provider Factory
# ---------------------------------------------------------------------------


class TestCreateAIProvider:

    def test_azure(self, make_settings):
        provider = create_ai_provider(make_settings(ai_provider="azure"))
        assert isinstance(provider, AzureOpenAIProvider)
        assert provider.name == "azure"

    def test_ollama(self, make_settings):
        provider = create_ai_provider(make_settings(ai_provider="ollama"))
        assert isinstance(provider, OllamaProvider)
        _run(provider.aclose())

    def test_unknown_provider(self, settings):
        with pytest.raises(ValueError, match="Unknown AI provider"):
            create_ai_provider(settings.model_copy(update={"ai_provider": "bedrock"}))
