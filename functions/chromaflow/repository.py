"""
Item Repository
===============

In-memory, insertion-ordered collection of tracked items keyed by id.

The repository is the canonical local state. Sorting and filtering are view
concerns handled by ``query``; nothing here reorders items. Every mutation
marks the repository dirty until ``mark_clean`` is called after a successful
save.
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .helpers import to_id_set
from .models import ImportMode, ImportResult, ProductItem

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested item is missing."""


class ItemRepository:
    """Ordered id → item mapping with merge-by-id import."""

    def __init__(self, items: Optional[Iterable[ProductItem]] = None) -> None:
        self._items: Dict[str, ProductItem] = {}
        self._dirty = False
        if items:
            self._load(items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ProductItem]:
        return iter(self._items.values())

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------
    @property
    def is_dirty(self) -> bool:
        """True while there are changes not yet persisted."""
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    def mark_clean(self) -> None:
        self._dirty = False

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def all_ids(self) -> List[str]:
        return list(self._items.keys())

    def get(self, item_id: str) -> ProductItem:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Item with id {item_id!r} not found") from exc

    def find(self, item_id: str) -> Optional[ProductItem]:
        return self._items.get(item_id)

    def to_list(self) -> List[ProductItem]:
        return list(self._items.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _load(self, items: Iterable[ProductItem]) -> int:
        """Replace contents; the first occurrence of a repeated id wins."""
        self._items = {}
        dropped = 0
        for item in items:
            if item.id in self._items:
                dropped += 1
                continue
            self._items[item.id] = item
        if dropped:
            logger.warning(f"Dropped {dropped} item(s) with repeated ids while loading")
        return dropped

    def import_items(self, new_items: Iterable[ProductItem], mode: ImportMode) -> ImportResult:
        """
        Merge parsed items into the repository.

        Overwrite replaces everything. Append keeps existing items and adds
        only items whose id is not already present (first write wins);
        skipped ids are reported back.
        """
        mode = ImportMode(mode)
        new_items = list(new_items)

        if mode == ImportMode.OVERWRITE:
            previous = len(self._items)
            self._load(new_items)
            self.mark_dirty()
            logger.info(f"Overwrite import: replaced {previous} item(s) with {len(self._items)}")
            return ImportResult(mode=mode, imported=len(self._items))

        duplicate_ids: List[str] = []
        imported = 0
        for item in new_items:
            if item.id in self._items:
                duplicate_ids.append(item.id)
                continue
            self._items[item.id] = item
            imported += 1

        self.mark_dirty()
        logger.info(
            f"Append import: added {imported} item(s), "
            f"skipped {len(duplicate_ids)} duplicate id(s)"
        )
        return ImportResult(
            mode=mode,
            imported=imported,
            duplicates=len(duplicate_ids),
            duplicate_ids=duplicate_ids,
        )

    def delete(self, selected_ids: Iterable[str]) -> int:
        """Remove the selected items; unknown ids are ignored."""
        selected = to_id_set(selected_ids)
        removed = [item_id for item_id in selected if item_id in self._items]
        for item_id in removed:
            del self._items[item_id]
        self.mark_dirty()
        logger.info(f"Deleted {len(removed)} of {len(selected)} selected item(s)")
        return len(removed)

    def apply(self, items: Iterable[ProductItem]) -> None:
        """Replace contents with the result of a workflow command."""
        self._load(items)
        self.mark_dirty()

    def replace_all(self, items: Iterable[ProductItem]) -> None:
        """Replace contents with a persisted snapshot; clears the dirty flag."""
        self._load(items)
        self.mark_clean()
