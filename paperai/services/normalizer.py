# =============================================================================
# Response Normalizer — Raw Model Output → Canonical Metadata Record
# =============================================================================
#
# Two paths, one per backend family:
#
#   normalize_structured()  — the backend was constrained by a JSON schema.
#       The payload is already shaped; fill in missing optional keys and
#       check the two fields callers rely on (tags is a list, correspondent
#       is a string). Anything else is InvalidResponseShape.
#
#   normalize_free_text()   — the backend returned prose that should contain
#       a JSON object. Extract the {...} span, parse, and on failure apply a
#       fixed set of repairs and parse exactly once more:
#           ,}  → }      trailing commas before a closing brace
#           ,]  → ]      trailing commas before a closing bracket
#           key: → "key":  bare or single-quoted property names
#       If that still fails, return the canonical empty result.
#
# Both paths strip ```json code fences first.
#
# LIMITS OF THE REPAIR: the key-quoting rewrite is a regex, not a parser. A
# string value containing `word:` (e.g. "Re: invoice") is mangled by it, so
# such output only survives if it parsed before repair.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from paperai.exceptions import InvalidResponseShape, MalformedOutput

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = (
    "title",
    "correspondent",
    "document_type",
    "document_date",
    "language",
)

_CODE_FENCE_OPEN = re.compile(r"```json\n?")
_CODE_FENCE = re.compile(r"```\n?")
_JSON_SPAN = re.compile(r"\{[\s\S]*\}")

_REPAIRS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r",\s*}"), "}"),
    (re.compile(r",\s*]"), "]"),
    (re.compile(r"(['\"])?([a-zA-Z0-9_]+)(['\"])?\s*:"), r'"\2":'),
)


def canonical_empty() -> dict[str, Any]:
    """The fallback record used whenever extraction cannot be trusted."""
    return {"tags": [], "correspondent": None}


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers around (or inside) a payload."""
    text = _CODE_FENCE_OPEN.sub("", text)
    return _CODE_FENCE.sub("", text).strip()


# ---------------------------------------------------------------------------
# Structured Path
# ---------------------------------------------------------------------------


def normalize_structured(payload: str | Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate schema-constrained output.

    Input that already has every field is returned unchanged; missing
    optional fields default to None and a missing tag list to [].

    Raises:
        InvalidResponseShape: Unparseable JSON, a non-object payload, a
            non-list `tags` or a non-string `correspondent`.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(strip_code_fences(payload))
        except json.JSONDecodeError as e:
            logger.error("Failed to parse JSON response: %s", e)
            raise InvalidResponseShape("Invalid JSON response from API") from e

    if not isinstance(payload, Mapping):
        raise InvalidResponseShape(
            "Invalid response structure: expected a JSON object"
        )

    document = dict(payload)
    for key in OPTIONAL_FIELDS:
        document.setdefault(key, None)
    document.setdefault("tags", [])

    if not isinstance(document["tags"], list) or not isinstance(
        document["correspondent"], str
    ):
        raise InvalidResponseShape(
            "Invalid response structure: missing tags array or "
            "correspondent string"
        )
    return document


# ---------------------------------------------------------------------------
# Free-Text Path
# ---------------------------------------------------------------------------


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def _coerce(result: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the known fields, replacing unusable values with defaults."""
    tags = result.get("tags")
    if isinstance(tags, list):
        tags = [_text(tag) for tag in tags if _text(tag)]
    else:
        tags = []
    return {
        "tags": tags,
        "correspondent": _text(result.get("correspondent")),
        "title": _text(result.get("title")),
        "document_date": _text(result.get("document_date")),
        "document_type": _text(result.get("document_type")),
        "language": _text(result.get("language")),
        "custom_fields": result.get("custom_fields") or None,
    }


def repair_json(text: str) -> str:
    """Apply the bounded set of syntactic repairs, in order."""
    for pattern, replacement in _REPAIRS:
        text = pattern.sub(replacement, text)
    return text


def _parse_with_repair(text: str) -> Any:
    """
    Parse, repair once, parse again.

    Raises:
        MalformedOutput: If the repaired text is still not valid JSON.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Error parsing JSON from response: %s", e)
        logger.warning("Attempting to sanitize the JSON...")

    try:
        return json.loads(repair_json(text))
    except json.JSONDecodeError as e:
        raise MalformedOutput(str(e)) from e


def normalize_free_text(payload: str | Mapping[str, Any]) -> dict[str, Any]:
    """
    Best-effort extraction from free-text output. Never raises.

    A mapping (the backend honoured the requested format) is coerced
    directly. Text falls back to the canonical empty result when no object
    can be recovered.
    """
    if isinstance(payload, Mapping):
        logger.debug("Using structured output response")
        return _coerce(payload)

    match = _JSON_SPAN.search(strip_code_fences(payload or ""))
    if not match:
        logger.warning("No JSON object found in model response")
        return canonical_empty()

    try:
        result = _parse_with_repair(match.group(0))
    except MalformedOutput as e:
        logger.warning(
            "Final JSON parsing failed after sanitization (%s). The model "
            "produced invalid JSON; review the prompt or use a "
            "structured-output backend.",
            e,
        )
        return canonical_empty()

    if not isinstance(result, Mapping):
        logger.warning("Model response JSON is not an object")
        return canonical_empty()
    return _coerce(result)
