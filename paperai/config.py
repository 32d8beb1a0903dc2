# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All tunables (provider credentials, prompts, token limits, custom fields,
# taxonomy restriction flags, RAG service location) are loaded once into an
# immutable Settings value. Components receive that value at construction;
# nothing below this module reads the process environment.
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Explicit keyword arguments (tests, embedding applications)
#   2. Environment variables (e.g., `TOKEN_LIMIT=8000`)
#   3. Values from the .env file
#   4. Default values defined below
#
# USAGE:
#   from paperai.config import get_settings
#   settings = get_settings()
#   provider = create_ai_provider(settings, repository)
# =============================================================================

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default Prompts
# ---------------------------------------------------------------------------
# The base instruction never names a target language: the model is always
# told to answer in the language of the document it is reading.
# ---------------------------------------------------------------------------

DEFAULT_SYSTEM_PROMPT = (
    "You are a personalized document analyzer. Your task is to analyze "
    "documents and extract relevant information.\n\n"
    "Analyze the document content and extract the following information:\n"
    "1. title: a concise, meaningful title for the document\n"
    "2. correspondent: the sender or institution, without addresses\n"
    "3. tags: up to 4 relevant thematic tags\n"
    "4. document_date: the document date (format: YYYY-MM-DD)\n"
    "5. document_type: a precise type that classifies the document "
    "(e.g. Invoice, Contract, Information)\n"
    "6. language: the document language (e.g. \"de\" or \"en\")\n\n"
    "Write title, tags and document type in the language of the document. "
    "Do not translate them."
)

DEFAULT_MUST_HAVE_PROMPT = """Return the result EXCLUSIVELY as a single JSON object. The Tags, Title and Document_Type MUST be in the language that is used in the document.:
IMPORTANT: The custom_fields are optional and can be left out if not needed, only try to fill out the values if you find a matching information in the document.
Do not change the value of field_name, only fill out the values. If the field is about money only add the number without currency and always use a . for decimal places.
{
  "title": "xxxxx",
  "correspondent": "xxxxxxxx",
  "tags": ["Tag1", "Tag2", "Tag3", "Tag4"],
  "document_type": "Invoice/Contract/...",
  "document_date": "YYYY-MM-DD",
  "language": "en/de/es/...",
  %CUSTOMFIELDS%
}"""


# ---------------------------------------------------------------------------
# Custom Field Definitions
# ---------------------------------------------------------------------------


class CustomFieldDefinition(BaseModel):
    """One archive custom field the model may fill in (e.g. "Amount")."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    value: str
    data_type: str = "string"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Instances are frozen: build a new one (or use `model_copy(update=...)`)
    instead of mutating prompts or limits at runtime.
    """

    # -------------------------------------------------------------------------
    # Provider selection
    # -------------------------------------------------------------------------
    # "azure"  → structured-output backend (schema-enforced JSON)
    # "ollama" → free-text backend (JSON extracted heuristically)
    # -------------------------------------------------------------------------
    ai_provider: Literal["azure", "ollama"] = "ollama"

    # -------------------------------------------------------------------------
    # Azure OpenAI
    # -------------------------------------------------------------------------
    azure_api_key: str = ""
    azure_endpoint: str = ""
    azure_deployment_name: str = ""
    azure_api_version: str = "2024-08-01-preview"

    # -------------------------------------------------------------------------
    # Ollama
    # -------------------------------------------------------------------------
    ollama_api_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    ollama_timeout: float = 1800.0  # seconds; local models can be very slow

    # -------------------------------------------------------------------------
    # Prompting
    # -------------------------------------------------------------------------
    # must_have_prompt carries the JSON shape the model must return and the
    # %CUSTOMFIELDS% placeholder. It is always the last block of the system
    # prompt.
    # -------------------------------------------------------------------------
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    must_have_prompt: str = DEFAULT_MUST_HAVE_PROMPT
    restriction_prompt: str = ""
    custom_fields: Annotated[tuple[CustomFieldDefinition, ...], NoDecode] = ()

    # Taxonomy mode
    use_existing_data: bool = False
    restrict_to_existing_tags: bool = False
    restrict_to_existing_correspondents: bool = False
    restrict_to_existing_document_types: bool = False

    # Predefined-tags mode
    use_prompt_tags: bool = False
    prompt_tags: str = ""
    special_prompt_predefined_tags: str = (
        "You are a document analysis AI. Analyze the document and assign "
        "only tags from the list above that fit the document content."
    )

    # -------------------------------------------------------------------------
    # Token budgets
    # -------------------------------------------------------------------------
    # token_limit: model context size; response_tokens: reserved for output.
    # external_data_max_tokens: sub-budget for caller-supplied context.
    # content_max_length: optional character cap applied before token
    # truncation (free-text backend only).
    # -------------------------------------------------------------------------
    token_limit: int = 128000
    response_tokens: int = 1000
    external_data_max_tokens: int = 500
    content_max_length: int | None = None

    # -------------------------------------------------------------------------
    # Retrieval service (RAG)
    # -------------------------------------------------------------------------
    rag_service_url: str = "http://localhost:8000"
    rag_max_sources: int = 5
    rag_temperature: float = 0.1
    rag_timeout: float = 60.0

    # -------------------------------------------------------------------------
    # Diagnostics (not authoritative state)
    # -------------------------------------------------------------------------
    image_cache_dir: str = "public/images"
    prompt_log_path: str = "logs/prompt.txt"
    response_log_path: str = "logs/response.txt"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _parse_custom_fields(cls, value):
        """
        Accept the CUSTOM_FIELDS environment form `{"custom_fields": [...]}`,
        a bare list, or an already-parsed value. Unparseable JSON yields no
        custom fields.
        """
        if value is None or value == "":
            return ()
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                logger.error("Failed to parse CUSTOM_FIELDS: %s", e)
                return ()
        if isinstance(value, dict):
            value = value.get("custom_fields", [])
        return value

    @property
    def restrictions_enabled(self) -> bool:
        """True when any taxonomy restriction flag is set."""
        return (
            self.restrict_to_existing_tags
            or self.restrict_to_existing_correspondents
            or self.restrict_to_existing_document_types
        )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    Call once at startup and hand the result to the components; tests build
    their own `Settings(...)` instead of patching this one.
    """
    return Settings()
