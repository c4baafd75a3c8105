"""
Query Engine
============

Derives what the grid shows from the repository contents: filtered and
sorted item lists, dashboard stats and the options for the filter dropdowns.
Everything here is a pure function of its inputs; nothing is persisted.

Filter Order
------------
1. Archive split - shipped items only, or everything not yet shipped
2. Shop, status, item type, material and FP equality gates (``ALL`` = off)
3. Free-text search over id, item type and description, case-insensitive.
   An item that passed every gate is kept only if the search matches.

Sort Semantics
--------------
- ``status``: position in the workflow sequence, not alphabetical
- ``item``: item type + description, lower-cased, human-language collation
- ``id``: human-language collation (case and accents are minor differences)
- ``length`` / ``weight`` / ``area`` / ``quantity``: numeric

Sorting is stable, so ties keep their input order in both directions.
"""

import functools
import logging
import unicodedata
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import (
    ALL,
    DashboardStats,
    FilterCriteria,
    ItemView,
    ProductItem,
    SortConfig,
    SortDirection,
    SortKey,
    WorkflowStatus,
)
from .workflow import status_index

logger = logging.getLogger(__name__)

Comparator = Callable[[ProductItem, ProductItem], int]

# Status → DashboardStats field. Unreceived and Shop Sorting have no card.
STATS_BUCKETS: Dict[WorkflowStatus, str] = {
    WorkflowStatus.RECEIVED: "received",
    WorkflowStatus.BLASTING: "blasting",
    WorkflowStatus.PAINTING: "painting",
    WorkflowStatus.PACKING: "packing",
    WorkflowStatus.AWAITING_SHIPMENT: "waiting",
    WorkflowStatus.SHIPPED: "shipped",
}


# ============== Filtering ==============

def matches_search(item: ProductItem, term: str) -> bool:
    """Case-insensitive substring match on id, item type or description."""
    needle = term.lower()
    return (
        needle in item.id.lower()
        or needle in item.item.lower()
        or needle in item.description.lower()
    )


def item_matches(item: ProductItem, criteria: FilterCriteria) -> bool:
    """Apply every filter in ``criteria`` to a single item."""
    is_shipped = item.status == WorkflowStatus.SHIPPED
    if criteria.show_shipped != is_shipped:
        return False

    if criteria.shop != ALL and item.shop.value != criteria.shop:
        return False
    if criteria.status != ALL and item.status.value != criteria.status:
        return False
    if criteria.item_type != ALL and item.item != criteria.item_type:
        return False
    if criteria.material != ALL and item.material != criteria.material:
        return False
    if criteria.fp != ALL and item.fp != criteria.fp:
        return False

    if criteria.search:
        return matches_search(item, criteria.search)
    return True


def filter_items(items: Iterable[ProductItem], criteria: Optional[FilterCriteria] = None) -> List[ProductItem]:
    """Items passing ``criteria``, in input order."""
    criteria = criteria or FilterCriteria()
    return [item for item in items if item_matches(item, criteria)]


# ============== Sorting ==============

def collation_key(text: str) -> Tuple[str, str, str, str]:
    """
    Multi-level key ordering text the way a human-language collation does.

    Levels, compared in turn:
    1. base letters, case- and accent-insensitive ("e" == "É")
    2. accents ("e" < "é" < "f")
    3. case, lower before upper ("a" < "A" < "b")
    4. raw code points, so distinct strings never tie

    Does not depend on the process locale.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()
    return (base, decomposed.casefold(), text.swapcase(), text)


def locale_compare(a: str, b: str) -> int:
    """Three-way comparison using ``collation_key``."""
    key_a, key_b = collation_key(a), collation_key(b)
    return (key_a > key_b) - (key_a < key_b)


def _numeric(field: str) -> Comparator:
    def compare(a: ProductItem, b: ProductItem) -> int:
        value_a, value_b = getattr(a, field), getattr(b, field)
        return (value_a > value_b) - (value_a < value_b)
    return compare


def _compare_status(a: ProductItem, b: ProductItem) -> int:
    return status_index(a.status) - status_index(b.status)


def _compare_item(a: ProductItem, b: ProductItem) -> int:
    return locale_compare(
        (a.item + a.description).lower(),
        (b.item + b.description).lower(),
    )


def _compare_id(a: ProductItem, b: ProductItem) -> int:
    return locale_compare(a.id, b.id)


COMPARATORS: Dict[SortKey, Comparator] = {
    SortKey.STATUS: _compare_status,
    SortKey.ITEM: _compare_item,
    SortKey.ID: _compare_id,
    SortKey.LENGTH: _numeric("length"),
    SortKey.WEIGHT: _numeric("weight"),
    SortKey.AREA: _numeric("area"),
    SortKey.QUANTITY: _numeric("qty"),
}


def sort_items(items: Iterable[ProductItem], sort_config: Optional[SortConfig] = None) -> List[ProductItem]:
    """
    Stable sort by ``sort_config``; ``None`` returns a copy in input order.

    Descending order negates the comparator rather than reversing the
    result, so equal items keep their relative order.
    """
    items = list(items)
    if sort_config is None:
        return items

    compare = COMPARATORS[SortKey(sort_config.key)]
    if sort_config.direction == SortDirection.DESC:
        compare = _descending(compare)

    return sorted(items, key=functools.cmp_to_key(compare))


def _descending(compare: Comparator) -> Comparator:
    def negated(a: ProductItem, b: ProductItem) -> int:
        return -compare(a, b)
    return negated


# ============== Aggregates ==============

def calculate_stats(items: Iterable[ProductItem]) -> DashboardStats:
    """Single-pass per-stage counts plus the total."""
    counts = {bucket: 0 for bucket in STATS_BUCKETS.values()}
    total = 0
    for item in items:
        total += 1
        bucket = STATS_BUCKETS.get(item.status)
        if bucket:
            counts[bucket] += 1
    return DashboardStats(total=total, **counts)


def unique_values(items: Iterable[ProductItem], field: str) -> List[str]:
    """Sorted distinct non-empty values of a text field (dropdown options)."""
    return sorted({getattr(item, field) for item in items if getattr(item, field)})


def build_view(
    items: Sequence[ProductItem],
    criteria: Optional[FilterCriteria] = None,
    sort_config: Optional[SortConfig] = None,
) -> ItemView:
    """
    Filter, sort and summarize in one call.

    Stats describe the filtered set; dropdown options come from the full
    collection so a filter can always be widened again.
    """
    filtered = filter_items(items, criteria)
    return ItemView(
        items=sort_items(filtered, sort_config),
        stats=calculate_stats(filtered),
        item_type_options=unique_values(items, "item"),
        material_options=unique_values(items, "material"),
        fp_options=unique_values(items, "fp"),
    )
