"""
Sync Bridge
===========

Moves the item collection between the in-memory repository, the shared
document store and the local fallback cache.

Guarantees
----------
- ``load`` never raises: remote → cache → empty, in that order
- ``save`` never raises and writes the remote in one atomic batch; on any
  failure the remote is left untouched and only the cache is written
- every successful remote read or write refreshes the cache
- subscription errors are logged and never end the process

Usage:
    bridge = SyncBridge(get_document_store(), JsonFileCache(config.cache_path))
    items, result = bridge.load()
    result = bridge.save(items)
    unsubscribe = bridge.subscribe(on_items)
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from .helpers import generate_trace_id
from .models import DataSource, LoadResult, ProductItem, SaveResult

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class DocumentStore(Protocol):
    """Contract for the remote shared store."""

    def list_all(self) -> List[Tuple[str, Record]]:
        """All documents as (document id, record) pairs."""

    def batch_write(self, deletes: Iterable[str], upserts: Iterable[Tuple[str, Record]]) -> None:
        """Apply every delete and upsert atomically."""

    def subscribe(
        self,
        on_change: Callable[[List[Tuple[str, Record]]], None],
        on_error: Callable[[Exception], None],
    ) -> Callable[[], None]:
        """Report snapshots until the returned function is called."""


class LocalCache(Protocol):
    """Contract for the local fallback cache."""

    def get(self) -> Optional[List[Record]]:
        """Cached records, or None."""

    def set(self, records: List[Record]) -> None:
        """Replace the cached records."""


def records_to_items(records: Iterable[Tuple[str, Record]]) -> List[ProductItem]:
    """Materialize store documents; invalid records are skipped and logged."""
    items: List[ProductItem] = []
    for doc_id, record in records:
        try:
            data = dict(record)
            data.setdefault("id", doc_id)
            items.append(ProductItem.from_record(data))
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid record {doc_id!r}: {e}")
    return items


def _noop() -> None:
    return None


class SyncBridge:
    """Load / save / subscribe over a document store plus a local cache."""

    def __init__(self, store: DocumentStore, cache: LocalCache):
        self.store = store
        self.cache = cache

    # ============== Cache Helpers ==============

    def _write_cache(self, items: List[ProductItem], trace_id: str = "") -> bool:
        try:
            self.cache.set([item.to_record() for item in items])
            return True
        except Exception as e:
            logger.error(f"[{trace_id}] Failed to write local cache: {e}")
            return False

    def _read_cache(self, trace_id: str) -> Optional[List[ProductItem]]:
        try:
            records = self.cache.get()
        except Exception as e:
            logger.error(f"[{trace_id}] Failed to read local cache: {e}")
            return None
        if not records:
            return None
        return records_to_items(
            (str(record.get("id", "")), record) for record in records if isinstance(record, dict)
        )

    # ============== Operations ==============

    def load(self) -> Tuple[List[ProductItem], LoadResult]:
        """
        Fetch the full collection.

        Returns:
            Tuple of (items, LoadResult). ``source`` tells where the items
            came from; ``success`` is False whenever the remote read failed.
        """
        trace_id = generate_trace_id()

        try:
            items = records_to_items(self.store.list_all())
        except Exception as e:
            logger.error(f"[{trace_id}] Error loading from document store: {e}")
            cached = self._read_cache(trace_id)
            if cached is not None:
                logger.warning(f"[{trace_id}] Using {len(cached)} cached item(s)")
                return cached, LoadResult(
                    success=False,
                    source=DataSource.CACHE,
                    item_count=len(cached),
                    error_message=str(e),
                    trace_id=trace_id,
                )
            return [], LoadResult(
                success=False,
                source=DataSource.EMPTY,
                error_message=str(e),
                trace_id=trace_id,
            )

        self._write_cache(items, trace_id)
        logger.info(f"[{trace_id}] Loaded {len(items)} item(s) from document store")
        return items, LoadResult(
            success=True,
            source=DataSource.REMOTE,
            item_count=len(items),
            trace_id=trace_id,
        )

    def save(self, items: List[ProductItem]) -> SaveResult:
        """
        Make the remote collection equal to ``items``.

        Remote documents whose id is not in ``items`` are deleted and every
        local item is upserted, all in one batch.
        """
        trace_id = generate_trace_id()
        items = list(items)
        local_ids = {item.id for item in items}

        try:
            remote_ids = {doc_id for doc_id, _ in self.store.list_all()}
            deletes = sorted(remote_ids - local_ids)
            upserts = [(item.id, item.to_record()) for item in items]
            self.store.batch_write(deletes, upserts)
        except Exception as e:
            logger.error(f"[{trace_id}] Error saving to document store: {e}")
            cached = self._write_cache(items, trace_id)
            return SaveResult(
                success=False,
                cached=cached,
                error_message=str(e),
                trace_id=trace_id,
            )

        cached = self._write_cache(items, trace_id)
        logger.info(f"[{trace_id}] Saved {len(upserts)} item(s), deleted {len(deletes)} remote item(s)")
        return SaveResult(
            success=True,
            upserted=len(upserts),
            deleted=len(deletes),
            cached=cached,
            trace_id=trace_id,
        )

    def subscribe(self, callback: Callable[[List[ProductItem]], None]) -> Callable[[], None]:
        """
        Forward every remote snapshot to ``callback`` as a list of items.

        Returns a function that ends the subscription. If the subscription
        cannot be set up the failure is logged and a no-op is returned.
        """
        def on_change(snapshot: List[Tuple[str, Record]]) -> None:
            items = records_to_items(snapshot)
            self._write_cache(items)
            callback(items)

        def on_error(error: Exception) -> None:
            logger.error(f"Document store subscription error: {error}")

        try:
            return self.store.subscribe(on_change, on_error)
        except Exception as e:
            logger.error(f"Failed to subscribe to document store: {e}")
            return _noop
