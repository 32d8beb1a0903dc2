# =============================================================================
# Restriction Rules — Limiting the Model to the Existing Taxonomy
# =============================================================================
#
# When restriction flags are set, the system prompt tells the model which
# tags / correspondents / document types it may use instead of inventing
# new ones. The allowed values are injected through placeholders, which may
# also appear in a user-configured SYSTEM_PROMPT:
#
#   %RESTRICTED_TAGS%             → comma list of existing tags
#   %RESTRICTED_CORRESPONDENTS%   → comma list of existing correspondents
#   %RESTRICTED_DOCUMENT_TYPES%   → comma list of existing document types
#
# A placeholder whose flag is off is replaced by an empty string.
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from paperai.config import Settings

TAGS_PLACEHOLDER = "%RESTRICTED_TAGS%"
CORRESPONDENTS_PLACEHOLDER = "%RESTRICTED_CORRESPONDENTS%"
DOCUMENT_TYPES_PLACEHOLDER = "%RESTRICTED_DOCUMENT_TYPES%"

_EMPTY_LIST = "(none)"


@dataclass(frozen=True)
class RestrictionRules:
    """Which parts of the taxonomy the model may not extend."""

    tags: bool = False
    correspondents: bool = False
    document_types: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> RestrictionRules:
        return cls(
            tags=settings.restrict_to_existing_tags,
            correspondents=settings.restrict_to_existing_correspondents,
            document_types=settings.restrict_to_existing_document_types,
        )

    @property
    def any(self) -> bool:
        return self.tags or self.correspondents or self.document_types


def build_restriction_block(rules: RestrictionRules) -> str:
    """Instruction lines for each enabled restriction (placeholders unfilled)."""
    lines: list[str] = []
    if rules.tags:
        lines.append(
            "Only use tags from this list, do not create new tags: "
            f"{TAGS_PLACEHOLDER}"
        )
    if rules.correspondents:
        lines.append(
            "Only use a correspondent from this list, do not create new "
            f"correspondents: {CORRESPONDENTS_PLACEHOLDER}"
        )
    if rules.document_types:
        lines.append(
            "Only use a document type from this list, do not create new "
            f"document types: {DOCUMENT_TYPES_PLACEHOLDER}"
        )
    return "\n".join(lines)


def _join(values: Sequence[str]) -> str:
    return ", ".join(values) or _EMPTY_LIST


def apply_restrictions(
    prompt: str,
    existing_tags: Sequence[str],
    existing_correspondents: Sequence[str],
    existing_document_types: Sequence[str],
    rules: RestrictionRules,
) -> str:
    """Rewrite every restriction placeholder in `prompt`."""
    replacements = {
        TAGS_PLACEHOLDER: _join(existing_tags) if rules.tags else "",
        CORRESPONDENTS_PLACEHOLDER: (
            _join(existing_correspondents) if rules.correspondents else ""
        ),
        DOCUMENT_TYPES_PLACEHOLDER: (
            _join(existing_document_types) if rules.document_types else ""
        ),
    }
    for placeholder, value in replacements.items():
        prompt = prompt.replace(placeholder, value)
    return prompt
