"""
Merge per-chunk results, validate record shape and drop duplicates.
"""

import logging
import math
import re
from typing import Iterable, Optional

from statement_extractor.models import AggregationResult, TransactionRecord

logger = logging.getLogger(__name__)

_RECIPIENT_KEYS = ("recipient", "payee", "description")
_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")


def _normalise_date(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    m = _DATE_RE.match(value)
    if m:
        day, month, year = m.groups()
        return f"{int(day):02d}/{int(month):02d}/{year}"
    return None


def _normalise_amount(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        try:
            amount = float(value.replace(",", "").strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def _normalise_recipient(raw: dict) -> Optional[str]:
    for key in _RECIPIENT_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def validate_record(raw) -> Optional[TransactionRecord]:
    """Return a ``TransactionRecord`` for a well-formed dict, else ``None``."""
    if isinstance(raw, TransactionRecord):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return None

    date = _normalise_date(raw.get("date"))
    amount = _normalise_amount(raw.get("amount"))
    recipient = _normalise_recipient(raw)
    if date is None or amount is None or recipient is None:
        return None
    return TransactionRecord(date=date, amount=amount, recipient=recipient)


def deduplicate(records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Keep the first record per ``(date, amount, recipient)``, preserving order."""
    seen: set[tuple[str, float, str]] = set()
    unique = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


def aggregate(chunk_results: Iterable[list[dict]]) -> AggregationResult:
    """Concatenate chunk outputs in order, validate each record, then deduplicate."""
    merged = [raw for records in chunk_results for raw in records]
    validated = [r for r in (validate_record(raw) for raw in merged) if r is not None]
    final = deduplicate(validated)

    logger.info(
        "Aggregated transactions: %d total, %d valid, %d after dedup",
        len(merged), len(validated), len(final),
    )
    return AggregationResult(
        transactions=final,
        total=len(merged),
        validated=len(validated),
        final=len(final),
    )
