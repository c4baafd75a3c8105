"""
Helper utilities shared by the codec, the workflow engine and the sync layer.
Includes trace ids, spreadsheet value cleaners and id generation.
"""

import logging
import math
import re
import secrets
import uuid
from typing import Iterable, Optional, Set

logger = logging.getLogger(__name__)

# Quote characters, whitespace and thousands separators
_NUMBER_JUNK = re.compile(r"[\"'\s,]")
_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")
_LEADING_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

# 6 random bytes = 48 bits, 12 hex characters
GENERATED_ID_BYTES = 6


def generate_trace_id() -> str:
    """Generate a unique trace ID for correlating log lines of one operation."""
    return f"trace-{uuid.uuid4().hex[:12]}"


def generate_item_id() -> str:
    """Random opaque id for rows exported without a NO. value."""
    return secrets.token_hex(GENERATED_ID_BYTES)


def clean_value(value: Optional[str]) -> str:
    """Strip one surrounding quote on each side, then whitespace."""
    if not value:
        return ""
    return _EDGE_QUOTES.sub("", value).strip()


def parse_number(value: Optional[str], default: float = 0.0) -> float:
    """
    Parse a spreadsheet number such as ``"1,200"`` or `` 12.5 ``.

    Quotes, whitespace and commas are removed, then the leading numeric part
    is parsed. No numeric prefix, or a non-finite result, returns ``default``.
    """
    if not value:
        return default
    cleaned = _NUMBER_JUNK.sub("", value)
    # Leading numeric prefix, so "12.5mm" still reads as 12.5
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return default
    try:
        number = float(match.group(0))
    except ValueError:
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def to_id_set(ids: Optional[Iterable[str]]) -> Set[str]:
    """Normalize a selection (list, set, None) into a set of ids."""
    if not ids:
        return set()
    return {str(i) for i in ids}
