"""
CSV Codec
=========

Reads the fabrication list exported from the drawing office spreadsheet and
writes the narrower status export.

Import Format
-------------
Header row (ignored), then positional columns:

    NO., ITEM, ASSEMBLY, DESCRIPTION, MATERIAL, LENGTH, Q'TY, WEIGHT, Area, FP

Real exports are messy, so parsing is lossy-tolerant:

- a leading byte-order mark is stripped
- ``\\r\\n``, ``\\n`` and ``\\r`` line endings are all accepted
- commas inside double-quoted spans do not split fields
- thousands separators in numeric columns are removed (``"1,200"`` → 1200)
- blank rows and rows with fewer than two fields are skipped
- a row without a NO. value gets a random id

Only an undecodable byte stream is fatal (``CsvDecodeError``).

Export Format
-------------
``NO,ITEM,ASSEMBLY,STATUS,SHOP`` with one unquoted line per item. Fields
containing commas are written as-is and will not survive a re-import.

Usage:
    items = parse_csv(uploaded_text)
    text = serialize_csv(items)
"""

import logging
import re
from typing import Iterable, List, Optional, Union

from .helpers import clean_value, generate_item_id, parse_number
from .models import ProductItem, ShopLocation, utc_now_iso
from .workflow import INITIAL_STATUS

logger = logging.getLogger(__name__)

BOM = "\ufeff"

# Positional import schema
CSV_COLUMNS = (
    "id",
    "item",
    "assembly",
    "description",
    "material",
    "length",
    "qty",
    "weight",
    "area",
    "fp",
)
CSV_HEADER_LABELS = (
    "NO.", "ITEM", "ASSEMBLY", "DESCRIPTION", "MATERIAL",
    "LENGTH", "Q'TY", "WEIGHT", "Area", "FP",
)
NUMERIC_COLUMNS = frozenset({"length", "qty", "weight", "area"})

EXPORT_HEADER = "NO,ITEM,ASSEMBLY,STATUS,SHOP"

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


class CsvDecodeError(ValueError):
    """Raised when uploaded bytes cannot be decoded as text."""
    pass


def decode_csv_bytes(data: bytes, encoding: str = "utf-8") -> str:
    """Decode an uploaded file; the BOM is handled later by ``parse_csv``."""
    try:
        return data.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise CsvDecodeError(f"Unable to read CSV as {encoding}: {e}") from e


def split_csv_line(line: str) -> List[str]:
    """
    Split one line on commas that are outside double quotes.

    Each ``"`` toggles quote mode and is dropped from the output.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)

    fields.append("".join(current))
    return fields


def _row_to_item(values: List[str], timestamp: str) -> ProductItem:
    record = {}
    for position, column in enumerate(CSV_COLUMNS):
        raw: Optional[str] = values[position] if position < len(values) else None
        if column in NUMERIC_COLUMNS:
            record[column] = parse_number(raw)
        else:
            record[column] = clean_value(raw)

    if not record["id"]:
        record["id"] = generate_item_id()

    return ProductItem(
        **record,
        status=INITIAL_STATUS,
        shop=ShopLocation.NONE,
        updated_at=timestamp,
    )


def parse_csv(text: Union[str, bytes]) -> List[ProductItem]:
    """
    Parse an uploaded fabrication list into items.

    Args:
        text: File contents, either decoded text or raw bytes

    Returns:
        Items in file order, all at the first workflow stage with no shop.
        An empty list means nothing usable was found (not an error).

    Raises:
        CsvDecodeError: If ``text`` is bytes that cannot be decoded
    """
    if isinstance(text, bytes):
        text = decode_csv_bytes(text)

    if not text:
        return []

    if text.startswith(BOM):
        text = text[len(BOM):]

    lines = _LINE_BREAK.split(text.strip())
    if len(lines) < 2:
        return []

    timestamp = utc_now_iso()
    items: List[ProductItem] = []
    skipped = 0

    # Header is discarded unconditionally
    for line in lines[1:]:
        if not line.strip():
            skipped += 1
            continue

        values = split_csv_line(line)
        if len(values) < 2:
            skipped += 1
            continue

        items.append(_row_to_item(values, timestamp))

    if skipped:
        logger.debug(f"Skipped {skipped} blank or malformed CSV row(s)")
    logger.info(f"Parsed {len(items)} item(s) from CSV ({len(lines) - 1} data line(s))")
    return items


def serialize_csv(items: Iterable[ProductItem]) -> str:
    """Status export: ``NO,ITEM,ASSEMBLY,STATUS,SHOP``, no quoting."""
    lines = [EXPORT_HEADER]
    for item in items:
        lines.append(",".join([
            item.id,
            item.item,
            item.assembly,
            item.status.value,
            item.shop.value,
        ]))
    return "\n".join(lines)
