"""
Structured extraction of model replies.

Every stage that expects JSON from a model goes through one of the parsers
here. Each parser states the shape it expects and raises FormatError on any
mismatch, so generation and judging failures look the same everywhere and
can be tested without a network.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from utils.exceptions import FormatError

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


def _candidate_json(text: str) -> Optional[str]:
    """Find the JSON payload in a reply, handling markdown code blocks."""
    code_block = _CODE_BLOCK.search(text)
    if code_block:
        return code_block.group(1).strip()

    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        return stripped

    # Outermost object or array embedded in prose
    starts = [i for i in (stripped.find("{"), stripped.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    end = max(stripped.rfind("}"), stripped.rfind("]"))
    if end <= start:
        return None
    return stripped[start : end + 1]


def extract_json(text: str) -> Any:
    """
    Parse the JSON value contained in a model reply.

    Raises:
        FormatError: If no parseable JSON is present.
    """
    candidate = _candidate_json(text or "")
    if candidate is None:
        raise FormatError("No JSON found in model reply", raw=text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise FormatError(f"Model reply is not valid JSON: {e}", raw=text) from e


def _unwrap_list(value: Any, keys: Iterable[str], what: str, raw: str) -> List[Any]:
    """Accept a bare array or an object wrapping one under a known key."""
    if isinstance(value, dict):
        for key in keys:
            if key in value:
                value = value[key]
                break
        else:
            # A single-key object wrapping an array is also accepted
            arrays = [v for v in value.values() if isinstance(v, list)]
            if len(arrays) == 1:
                value = arrays[0]
    if not isinstance(value, list):
        raise FormatError(f"Expected a JSON array of {what}, got {type(value).__name__}", raw=raw)
    return value


def parse_string_array(text: str, expected_count: Optional[int] = None) -> List[str]:
    """
    Parse a JSON array of non-empty strings (e.g. prompt variations).

    With expected_count, extra items are dropped and a short array is an
    error: the result always has exactly expected_count items.
    """
    items = _unwrap_list(extract_json(text), ("variations", "items", "results"), "strings", text)
    if not all(isinstance(item, str) and item.strip() for item in items):
        raise FormatError("Expected every array item to be a non-empty string", raw=text)

    if expected_count is not None:
        if len(items) < expected_count:
            raise FormatError(
                f"Expected {expected_count} items, model returned {len(items)}", raw=text
            )
        if len(items) > expected_count:
            logger.warning(
                "Model returned %d items, keeping the first %d", len(items), expected_count
            )
            items = items[:expected_count]
    return [item.strip() for item in items]


def _clamp_unit(value: Any, field_name: str, raw: str) -> float:
    """Coerce a number into [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise FormatError(f"Value for '{field_name}' is not numeric: {value!r}", raw=raw)
    try:
        number = float(value)
    except ValueError:
        raise FormatError(f"Value for '{field_name}' is not numeric: {value!r}", raw=raw) from None
    if number != number:  # NaN
        raise FormatError(f"Value for '{field_name}' is NaN", raw=raw)
    return min(1.0, max(0.0, number))


def parse_test_cases(text: str) -> List[Dict[str, Any]]:
    """
    Parse an array of {"input": str, "criteria": {name: weight}} objects.

    Weights are clamped to [0, 1]; a missing criteria mapping becomes {}.
    """
    items = _unwrap_list(extract_json(text), ("test_cases", "testCases", "tests"), "test cases", text)
    cases: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise FormatError(f"Test case {index} is not an object", raw=text)
        input_text = item.get("input")
        if not isinstance(input_text, str) or not input_text.strip():
            raise FormatError(f"Test case {index} has no input text", raw=text)
        criteria = item.get("criteria") or {}
        if not isinstance(criteria, dict):
            raise FormatError(f"Test case {index} criteria is not an object", raw=text)
        cases.append(
            {
                "input": input_text.strip(),
                "criteria": {str(k): _clamp_unit(v, str(k), text) for k, v in criteria.items()},
            }
        )
    return cases


def parse_score_map(text: str, criterion_ids: Iterable[str]) -> Dict[str, float]:
    """
    Parse a judge reply mapping criterion id -> score in [0, 1].

    Keys the judge omitted score 0; keys it invented are ignored. Scores may
    also be given as {"score": x} objects.
    """
    value = extract_json(text)
    if isinstance(value, dict) and isinstance(value.get("scores"), dict):
        value = value["scores"]
    if not isinstance(value, dict):
        raise FormatError(f"Expected a JSON object of scores, got {type(value).__name__}", raw=text)

    lowered = {str(k).lower(): v for k, v in value.items()}
    scores: Dict[str, float] = {}
    for criterion_id in criterion_ids:
        raw_score = lowered.get(criterion_id.lower())
        if isinstance(raw_score, dict):
            raw_score = raw_score.get("score")
        if raw_score is None:
            logger.debug("Judge reply missing score for '%s', defaulting to 0", criterion_id)
            scores[criterion_id] = 0.0
        else:
            scores[criterion_id] = _clamp_unit(raw_score, criterion_id, text)
    return scores
