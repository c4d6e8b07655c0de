import re
import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCED = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')
_OBJECT_SPAN = re.compile(r'\{[\s\S]*\}')
_ARRAY_SPAN = re.compile(r'\[[\s\S]*\]')


def parse_json_from_text(response_text: str) -> Optional[Any]:
    """
    Parse a JSON value out of free-form LLM output.

    Tried in order: the first fenced code block, the whole text, then the
    widest ``{...}`` and ``[...]`` spans, so surrounding commentary is tolerated.

    Args:
        response_text: raw text returned by the LLM

    Returns:
        The parsed value, or None when nothing parseable was found.
    """
    if not response_text:
        return None

    candidates = []
    json_match = _FENCED.search(response_text)
    if json_match and json_match.group(1):
        candidates.append(json_match.group(1))
    candidates.append(response_text.strip())
    for pattern in (_OBJECT_SPAN, _ARRAY_SPAN):
        span = pattern.search(response_text)
        if span:
            candidates.append(span.group(0))

    for content in candidates:
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            continue

    logger.debug(f"No parseable JSON in response: {response_text[:200]}")
    return None


def parse_json_object(response_text: str) -> Optional[dict[str, Any]]:
    """Like ``parse_json_from_text`` but only accepts a JSON object."""
    parsed = parse_json_from_text(response_text)
    return parsed if isinstance(parsed, dict) else None
