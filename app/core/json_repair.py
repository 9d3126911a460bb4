"""Lenient recovery of near-valid JSON returned by generative models.

Each repair stage is a pure ``str -> str`` function. ``parse_lenient_json`` runs
them in a fixed order and only falls through to the next stage when parsing
still fails, so well-formed JSON is returned untouched by the first attempt.
"""

import json
import logging
import re
from typing import Any, Callable, Optional

logger = logging.getLogger("uvicorn.error")

STRING_UNIT_FIELDS = ("servingSize",)
NUMERIC_UNIT_FIELDS = (
    "calories",
    "protein",
    "carbohydrates",
    "fat",
    "fiber",
    "sugar",
    "sodium",
)

_CODE_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*|\s*```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_VALUE = re.compile(r":\s*'([^']*)'")
_NUMERIC_LITERAL = re.compile(r"^[+-]?(?:\d+\.?\d*|\d*\.?\d+)(?:[eE][+-]?\d+)?$")
_HAS_LETTER = re.compile(r"[A-Za-z\u4e00-\u9fa5]")
_QUOTED = re.compile(r"^(\".*\"|'.*')$")

_MISSING = object()


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        # Deeply nested input exhausts the decoder stack; treat it as unparseable.
        return _MISSING


def strip_code_fence(text: str) -> str:
    return _CODE_FENCE.sub("", text).strip()


def slice_outer_object(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def _field_value_pattern(field: str) -> re.Pattern:
    return re.compile(rf'("{re.escape(field)}"\s*:\s*)([^,}}\]\s][^,}}\]]*)')


def _quote_string_value(match: re.Match) -> str:
    prefix, raw = match.group(1), match.group(2).strip()
    if _QUOTED.match(raw):
        return f"{prefix}{raw}"
    if _HAS_LETTER.search(raw):
        escaped = raw.replace('"', '\\"')
        return f'{prefix}"{escaped}"'
    return match.group(0)


def _quote_numeric_value(match: re.Match) -> str:
    prefix, raw = match.group(1), match.group(2).strip()
    if _QUOTED.match(raw) or _NUMERIC_LITERAL.match(raw):
        return f"{prefix}{raw}"
    if _HAS_LETTER.search(raw):
        escaped = raw.replace('"', '\\"')
        return f'{prefix}"{escaped}"'
    return match.group(0)


def quote_unit_values(text: str) -> str:
    """Wrap unquoted values such as ``20g`` or ``300mg`` in double quotes."""
    for field in STRING_UNIT_FIELDS:
        text = _field_value_pattern(field).sub(_quote_string_value, text)
    for field in NUMERIC_UNIT_FIELDS:
        text = _field_value_pattern(field).sub(_quote_numeric_value, text)
    return text


def convert_single_quoted_values(text: str) -> str:
    def _replace(match: re.Match) -> str:
        escaped = match.group(1).replace('"', '\\"')
        return f': "{escaped}"'

    return _SINGLE_QUOTED_VALUE.sub(_replace, text)


REPAIR_STAGES: tuple[Callable[[str], str], ...] = (
    slice_outer_object,
    remove_trailing_commas,
    quote_unit_values,
    convert_single_quoted_values,
)


def parse_lenient_json(text: Any, default: Optional[Any] = None) -> Any:
    if not isinstance(text, str):
        return default

    parsed = _try_parse(text)
    if parsed is not _MISSING:
        return parsed

    repaired = strip_code_fence(text)
    parsed = _try_parse(repaired)
    if parsed is not _MISSING:
        return parsed

    for stage in REPAIR_STAGES:
        repaired = stage(repaired)
        parsed = _try_parse(repaired)
        if parsed is not _MISSING:
            return parsed

    logger.warning("json_repair_failed length=%s preview=%r", len(text), text[:120])
    return default


def parse_nutrition_json(text: Any) -> dict[str, Any]:
    parsed = parse_lenient_json(text, default=None)
    if not isinstance(parsed, dict):
        return {"foods": []}
    return parsed
