"""
Workflow State Machine
======================

Defines the fixed fabrication sequence and the bulk transitions operators
apply to a selection of items.

Sequence
--------
Unreceived → Received → Blasting → Shop Sorting → Painting → Packing →
Awaiting Shipment → Shipped (terminal)

Branch Point
------------
Items leaving Blasting or Shop Sorting go to a physical shop for painting.
Callers check ``needs_shop_assignment`` before a bulk advance and collect a
shop from the operator; ``advance_items`` itself never blocks. With a shop
supplied those items jump straight to Painting with the shop assigned.

All functions here are pure: they return new item lists and leave
unselected items as the very same objects.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .helpers import to_id_set
from .models import ProductItem, ShopLocation, WorkflowStatus, utc_now_iso

logger = logging.getLogger(__name__)

WORKFLOW_SEQUENCE: List[WorkflowStatus] = [
    WorkflowStatus.UNRECEIVED,
    WorkflowStatus.RECEIVED,
    WorkflowStatus.BLASTING,
    WorkflowStatus.SHOP_SORTING,
    WorkflowStatus.PAINTING,
    WorkflowStatus.PACKING,
    WorkflowStatus.AWAITING_SHIPMENT,
    WorkflowStatus.SHIPPED,
]

INITIAL_STATUS = WORKFLOW_SEQUENCE[0]
TERMINAL_STATUS = WORKFLOW_SEQUENCE[-1]

# Stages whose advance needs a shop from the operator
SHOP_BRANCH_STATUSES = frozenset({WorkflowStatus.BLASTING, WorkflowStatus.SHOP_SORTING})

_SEQUENCE_INDEX: Dict[WorkflowStatus, int] = {
    status: index for index, status in enumerate(WORKFLOW_SEQUENCE)
}


def status_index(status) -> int:
    """Position in the sequence; unknown values sort after Shipped."""
    return _SEQUENCE_INDEX.get(status, len(WORKFLOW_SEQUENCE))


def get_next_status(current: WorkflowStatus) -> WorkflowStatus:
    """
    Next stage in the sequence.

    Returns ``current`` unchanged at the terminal stage or for a value that
    is not part of the sequence.
    """
    index = _SEQUENCE_INDEX.get(current)
    if index is None or index == len(WORKFLOW_SEQUENCE) - 1:
        return current
    return WORKFLOW_SEQUENCE[index + 1]


def needs_shop_assignment(items: Iterable[ProductItem], selected_ids: Iterable[str]) -> bool:
    """True if any selected item sits at a shop branch point."""
    selected = to_id_set(selected_ids)
    if not selected:
        return False
    return any(
        item.id in selected and item.status in SHOP_BRANCH_STATUSES
        for item in items
    )


def advance_items(
    items: Sequence[ProductItem],
    selected_ids: Iterable[str],
    forced_shop: Optional[ShopLocation] = None,
    now: Optional[str] = None,
) -> List[ProductItem]:
    """
    Move every selected item one step forward.

    Args:
        items: Current collection (order preserved)
        selected_ids: Ids to advance; unknown ids are ignored
        forced_shop: Shop chosen for items at Blasting / Shop Sorting
        now: Timestamp stamped on every transitioned item

    Returns:
        New list with transitioned copies in place of the selected items
    """
    selected = to_id_set(selected_ids)
    if not selected:
        return list(items)

    timestamp = now or utc_now_iso()
    result: List[ProductItem] = []

    for item in items:
        if item.id not in selected:
            result.append(item)
            continue

        if item.status in SHOP_BRANCH_STATUSES and forced_shop:
            result.append(item.model_copy(update={
                "status": WorkflowStatus.PAINTING,
                "shop": ShopLocation(forced_shop),
                "updated_at": timestamp,
            }))
            continue

        result.append(item.model_copy(update={
            "status": get_next_status(item.status),
            "updated_at": timestamp,
        }))

    logger.debug(f"Advanced {len(selected)} selected item(s), forced_shop={forced_shop}")
    return result


def set_status_items(
    items: Sequence[ProductItem],
    selected_ids: Iterable[str],
    status: WorkflowStatus,
    shop: Optional[ShopLocation] = None,
    now: Optional[str] = None,
) -> List[ProductItem]:
    """
    Manual override: put every selected item at ``status``.

    No check against the sequence is made. ``shop`` replaces the current
    shop only when given; ``None`` keeps whatever the item had.
    """
    selected = to_id_set(selected_ids)
    if not selected:
        return list(items)

    timestamp = now or utc_now_iso()
    target_status = WorkflowStatus(status)
    update = {"status": target_status, "updated_at": timestamp}
    if shop:
        update["shop"] = ShopLocation(shop)

    return [
        item.model_copy(update=update) if item.id in selected else item
        for item in items
    ]
