# =============================================================================
# Prompt Assembler — System Prompts for Document Analysis
# =============================================================================
#
# Builds the system prompt sent with every document. Pure functions of the
# request and the Settings value; no network access, no shared state.
#
# SECTION ORDER (always):
#   1. mode body          — custom prompt | predefined tags | existing
#                           taxonomy | base prompt + restriction block
#   2. external context   — optional, capped at its own token sub-budget
#   3. must-have block    — the JSON shape, with the custom-fields stub
#
# The must-have block is last so the final instruction the model reads is
# "return one JSON object of this shape, in the document's language".
#
# The module also holds the fixed prompts used by the free-text backend and
# for text generation, so every prompt string lives in one place.
# =============================================================================

from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Sequence
from typing import Any

from paperai.config import CustomFieldDefinition, Settings
from paperai.models.analysis import AnalysisRequest
from paperai.services.restrictions import (
    RestrictionRules,
    apply_restrictions,
    build_restriction_block,
)
from paperai.services.tokens import TokenBudgetEngine

logger = logging.getLogger(__name__)

CUSTOM_FIELDS_PLACEHOLDER = "%CUSTOMFIELDS%"
CUSTOM_FIELD_FILL_INSTRUCTION = "Fill in the value based on your analysis"
EXTERNAL_DATA_LABEL = "Additional context from external API:"


# ---------------------------------------------------------------------------
# Fixed Prompts
# ---------------------------------------------------------------------------

PLAYGROUND_MUST_HAVE_PROMPT = """Return the result EXCLUSIVELY as a single JSON object. The Tags and Title MUST be in the language that is used in the document.:
{
  "title": "xxxxx",
  "correspondent": "xxxxxxxx",
  "tags": ["Tag1", "Tag2", "Tag3", "Tag4"],
  "document_date": "YYYY-MM-DD",
  "language": "en/de/es/..."
}"""

FREE_TEXT_ANALYSIS_SYSTEM_PROMPT = """You are a document analyzer. Your task is to analyze documents and extract relevant information. You do not ask back questions.
YOU MUSTNOT: Ask for additional information or clarification, or ask questions about the document, or ask for additional context.
YOU MUSTNOT: Return a response without the desired JSON format.
YOU MUST: Return the result EXCLUSIVELY as a JSON object. The Tags, Title and Document_Type MUST be in the language that is used in the document.:
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
}
ALWAYS USE THE INFORMATION TO FILL OUT THE JSON OBJECT. DO NOT ASK BACK QUESTIONS."""

FREE_TEXT_PLAYGROUND_SYSTEM_PROMPT = """You are a document analyzer. Your task is to analyze documents and extract relevant information. You do not ask back questions.
YOU MUSTNOT: Ask for additional information or clarification, or ask questions about the document, or ask for additional context.
YOU MUSTNOT: Return a response without the desired JSON format.
YOU MUST: Analyze the document content and extract the following information into this structured JSON format and only this format!:
{
  "title": "xxxxx",
  "correspondent": "xxxxxxxx",
  "tags": ["Tag1", "Tag2", "Tag3", "Tag4"],
  "document_type": "Invoice/Contract/...",
  "document_date": "YYYY-MM-DD",
  "language": "en/de/es/..."
}
ALWAYS USE THE INFORMATION TO FILL OUT THE JSON OBJECT. DO NOT ASK BACK QUESTIONS."""

TEXT_GENERATION_SYSTEM_PROMPT = (
    "You are a helpful assistant. Generate a clear, concise, and informative "
    "response to the user's question or request."
)

PREDEFINED_TAGS_INTRO = (
    "Take these tags and try to match one or more to the document content."
)


# ---------------------------------------------------------------------------
# Custom Fields Template
# ---------------------------------------------------------------------------


def build_custom_fields_template(fields: Sequence[CustomFieldDefinition]) -> str:
    """
    Render the `"custom_fields": {...}` stub that replaces %CUSTOMFIELDS%.

    Each field becomes a numbered entry the model fills in:

        "custom_fields": {
          "0": {"field_name": "Amount", "value": "Fill in the value ..."}
        }

    (pretty-printed, body indented four spaces).
    """
    template = {
        str(index): {
            "field_name": field.value,
            "value": CUSTOM_FIELD_FILL_INSTRUCTION,
        }
        for index, field in enumerate(fields)
    }
    body = json.dumps(template, indent=2, ensure_ascii=False)
    return '"custom_fields": ' + textwrap.indent(body, "    ").lstrip()


def _format_names(names: Sequence[str]) -> str:
    return ", ".join(name for name in names if name)


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class PromptAssembler:
    """
    Builds system prompts from Settings and per-request context.

    `budget` is only used to size external context data; the document
    content itself is budgeted by the provider after assembly.
    """

    def __init__(
        self,
        settings: Settings,
        budget: TokenBudgetEngine,
        model: str | None = None,
    ) -> None:
        self._settings = settings
        self._budget = budget
        self._model = model
        self._rules = RestrictionRules.from_settings(settings)

    @property
    def custom_fields_template(self) -> str:
        return build_custom_fields_template(self._settings.custom_fields)

    @property
    def must_have_prompt(self) -> str:
        return self._settings.must_have_prompt.replace(
            CUSTOM_FIELDS_PLACEHOLDER, self.custom_fields_template,
        )

    # -----------------------------------------------------------------------
    # Document analysis
    # -----------------------------------------------------------------------

    def build_system_prompt(self, request: AnalysisRequest) -> str:
        """Assemble the full analysis system prompt for one request."""
        settings = self._settings
        sections: list[str] = []

        if request.custom_prompt:
            logger.debug("Replacing system prompt with custom prompt")
            sections.append(request.custom_prompt)
        elif settings.use_prompt_tags:
            sections.append(PREDEFINED_TAGS_INTRO)
            if settings.prompt_tags:
                sections.append(f"Predefined tags: {settings.prompt_tags}")
            sections.append(settings.special_prompt_predefined_tags)
        elif settings.use_existing_data and not self._rules.any:
            sections.append(
                f"Pre-existing tags: {_format_names(request.existing_tags)}\n\n"
                "Pre-existing correspondents: "
                f"{_format_names(request.existing_correspondents)}\n\n"
                "Pre-existing document types: "
                f"{_format_names(request.existing_document_types)}"
            )
            sections.append(settings.system_prompt)
        else:
            sections.append(settings.system_prompt)
            restriction_block = build_restriction_block(self._rules)
            if settings.restriction_prompt:
                sections.append(settings.restriction_prompt)
            if restriction_block:
                sections.append(restriction_block)

        external = self.prepare_external_data(request.external_data)
        if external:
            sections.append(f"{EXTERNAL_DATA_LABEL}\n{external}")
        logger.debug(
            "External API data: %s", "included" if external else "none",
        )

        sections.append(self.must_have_prompt)
        prompt = "\n\n".join(section for section in sections if section)

        if request.custom_prompt or settings.use_prompt_tags:
            return prompt
        return apply_restrictions(
            prompt,
            request.existing_tags,
            request.existing_correspondents,
            request.existing_document_types,
            self._rules,
        )

    def prepare_external_data(self, data: Any) -> str | None:
        """
        Serialize caller-supplied context and cap it at its token sub-budget.

        Oversized data is truncated, not rejected. Data that cannot be
        serialized is dropped with a warning.
        """
        if data is None or data == "" or data == {} or data == []:
            return None

        if isinstance(data, (dict, list)):
            try:
                text = json.dumps(data, indent=2, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                logger.warning("External API data validation failed: %s", e)
                return None
        else:
            text = str(data)

        limit = self._settings.external_data_max_tokens
        tokens = self._budget.estimate_tokens(text, self._model)
        if tokens > limit:
            logger.warning(
                "External API data (%d tokens) exceeds limit (%d), truncating",
                tokens, limit,
            )
            return self._budget.truncate(text, limit, self._model)

        logger.debug("External API data validated: %d tokens", tokens)
        return text

    # -----------------------------------------------------------------------
    # Playground & free-text backend prompts
    # -----------------------------------------------------------------------

    def build_playground_system_prompt(self, prompt: str) -> str:
        """Caller prompt plus the fixed playground JSON block; no taxonomy."""
        return f"{prompt}\n\n{PLAYGROUND_MUST_HAVE_PROMPT}"

    def build_free_text_system_prompt(self) -> str:
        """Fixed analyzer persona for the free-text backend's `system` field."""
        return FREE_TEXT_ANALYSIS_SYSTEM_PROMPT.replace(
            CUSTOM_FIELDS_PLACEHOLDER, self.custom_fields_template,
        )
