"""
Tolerant parsing of free-form model output into candidate transaction dicts.

Models are asked for a bare JSON array but routinely wrap it in prose or code
fences, or run out of output tokens mid-array.  Parsing is an ordered list of
strategies; each is a pure ``text -> list | None`` function and the first one
that returns a list wins.
"""

import json
import logging
import re
from typing import Callable, Optional

from statement_extractor.errors import ChunkParseFailure

logger = logging.getLogger(__name__)

Strategy = Callable[[str], Optional[list[dict]]]

# Flat objects only; transaction records never nest.
_OBJECT_RE = re.compile(r"\{[^{}]*\}", re.DOTALL)
_TRANSACTION_HINT_RE = re.compile(r'"(?:date|amount)"\s*:', re.IGNORECASE)


def _dicts_only(items) -> Optional[list[dict]]:
    if not isinstance(items, list):
        return None
    return [item for item in items if isinstance(item, dict)]


def _repair_truncated_array(span: str) -> Optional[str]:
    """Trim an unterminated ``[...`` span to its last complete object and re-close it."""
    last_close = span.rfind("}")
    if last_close == -1:
        return None
    return span[: last_close + 1] + "]"


def parse_bracketed_array(text: str) -> Optional[list[dict]]:
    """Parse the outermost ``[...]`` span, repairing a missing closing bracket."""
    start = text.find("[")
    if start == -1:
        return None

    end = text.rfind("]")
    candidates = []
    if end > start:
        candidates.append(text[start : end + 1])
    repaired = _repair_truncated_array(text[start:])
    if repaired:
        candidates.append(repaired)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        items = _dicts_only(parsed)
        if items is not None:
            return items
    return None


def parse_object_fragments(text: str) -> Optional[list[dict]]:
    """Pick out individual transaction-shaped ``{...}`` objects and parse each."""
    records = []
    for match in _OBJECT_RE.finditer(text):
        fragment = match.group(0)
        if not _TRANSACTION_HINT_RE.search(fragment):
            continue
        try:
            obj = json.loads(fragment)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            records.append(obj)
    return records or None


PARSE_STRATEGIES: tuple[Strategy, ...] = (
    parse_bracketed_array,
    parse_object_fragments,
)


def parse_transactions(text: str, strategies: tuple[Strategy, ...] = PARSE_STRATEGIES) -> list[dict]:
    """
    Run *strategies* in order and return the first successful result.

    Raises ``ChunkParseFailure`` when none of them recovers anything.
    """
    if not text or not text.strip():
        raise ChunkParseFailure("Empty model response")

    for strategy in strategies:
        records = strategy(text)
        if records is not None:
            if strategy is not strategies[0]:
                logger.warning("Recovered %d records with fallback %s", len(records), strategy.__name__)
            return records

    raise ChunkParseFailure(f"No transactions could be parsed from response: {text[:200]!r}")
