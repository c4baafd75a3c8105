"""
Document Store Client
=====================

Remote persistence for the item collection: one document per item, keyed
by item id, holding the flat 13-field record.

Two implementations share the same three operations:

- ``FirestoreDocumentStore``: Firestore over its REST API
- ``InMemoryDocumentStore``: process-local dict, used when no project is
  configured and in tests

Operations
----------
- ``list_all()`` → ``[(document_id, record), ...]``
- ``batch_write(deletes, upserts)`` → all-or-nothing
- ``subscribe(on_change, on_error)`` → callable that stops the subscription

The REST API has no listen stream, so the Firestore subscription polls the
collection on a daemon thread and reports a snapshot whenever it differs
from the previous one. The first poll always reports.

Usage:
    from chromaflow.document_store import get_document_store

    store = get_document_store()
    for doc_id, record in store.list_all():
        ...
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import AppConfig, get_config

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Snapshot = List[Tuple[str, Record]]
ChangeCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]

LIST_PAGE_SIZE = 300


# ============== Custom Exceptions ==============

class DocumentStoreError(Exception):
    """Base exception for document store operations."""
    pass


class DocumentStoreNotFoundError(DocumentStoreError):
    """Raised when the project, database or collection path does not exist."""
    pass


# ============== Firestore Value Encoding ==============

def encode_value(value: Any) -> Dict[str, Any]:
    """Wrap a Python value in a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    return {"stringValue": str(value)}


def decode_value(typed: Mapping[str, Any]) -> Any:
    """Unwrap a Firestore typed value."""
    if "stringValue" in typed:
        return typed["stringValue"]
    if "doubleValue" in typed:
        return float(typed["doubleValue"])
    if "integerValue" in typed:
        return int(typed["integerValue"])
    if "booleanValue" in typed:
        return bool(typed["booleanValue"])
    if "timestampValue" in typed:
        return typed["timestampValue"]
    if "mapValue" in typed:
        return decode_fields(typed["mapValue"].get("fields", {}))
    if "arrayValue" in typed:
        return [decode_value(v) for v in typed["arrayValue"].get("values", [])]
    return None


def encode_fields(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in record.items()}


def decode_fields(fields: Mapping[str, Any]) -> Record:
    return {key: decode_value(value) for key, value in fields.items()}


def document_id_from_name(name: str) -> str:
    """``projects/p/databases/d/documents/products/1001`` → ``1001``"""
    return name.rsplit("/", 1)[-1]


# ============== Firestore REST Store ==============

class FirestoreDocumentStore:
    """
    Firestore collection accessed over REST.

    Uses a pooled ``requests.Session`` with urllib3 retries for throttling
    and transient server errors. Every failure surfaces as
    ``DocumentStoreError``.
    """

    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or get_config()
        if not self.config.project_id:
            raise DocumentStoreError("FIRESTORE_PROJECT_ID is required for the Firestore store")

        base = self.config.base_url.rstrip("/")
        self.database_path = f"projects/{self.config.project_id}/databases/{self.config.database}"
        self.documents_url = f"{base}/{self.database_path}/documents"
        self.collection = self.config.collection
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
            status_forcelist=list(self.config.retry_status_codes),
            # Commit carries only set/delete writes, so replaying it is safe
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        return session

    def document_name(self, doc_id: str) -> str:
        return f"{self.database_path}/documents/{self.collection}/{doc_id}"

    # ============== Low-level API Methods ==============

    def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        params = dict(params or {})
        if self.config.api_key:
            params["key"] = self.config.api_key

        try:
            response = self._session.request(
                method=method,
                url=url,
                json=json,
                params=params,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise DocumentStoreError(f"Firestore request failed: {e}") from e

        if response.status_code == 404:
            raise DocumentStoreNotFoundError(f"Firestore path not found: {url}")

        if not response.ok:
            try:
                error_body = response.json()
            except ValueError:
                error_body = response.text[:500]
            logger.error(f"Firestore API error: {response.status_code} - {error_body}")
            raise DocumentStoreError(f"Firestore API error {response.status_code}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DocumentStoreError(f"Firestore returned a non-JSON body: {e}") from e

    # ============== Collection Operations ==============

    def list_all(self) -> Snapshot:
        """Every document in the collection, following page tokens."""
        url = f"{self.documents_url}/{self.collection}"
        snapshot: Snapshot = []
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"pageSize": LIST_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token

            body = self._request("GET", url, params=params)
            for document in body.get("documents", []):
                snapshot.append((
                    document_id_from_name(document["name"]),
                    decode_fields(document.get("fields", {})),
                ))

            page_token = body.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(snapshot)} document(s) from {self.collection}")
        return snapshot

    def batch_write(self, deletes: Iterable[str], upserts: Iterable[Tuple[str, Record]]) -> None:
        """
        Delete and overwrite documents in a single commit.

        Firestore applies a commit atomically: either every write lands or
        none does.
        """
        writes: List[Dict[str, Any]] = [
            {"delete": self.document_name(doc_id)} for doc_id in deletes
        ]
        writes.extend(
            {"update": {"name": self.document_name(doc_id), "fields": encode_fields(record)}}
            for doc_id, record in upserts
        )
        if not writes:
            return

        self._request("POST", f"{self.documents_url}:commit", json={"writes": writes})
        logger.info(f"Committed {len(writes)} write(s) to {self.collection}")

    def subscribe(self, on_change: ChangeCallback, on_error: ErrorCallback) -> Callable[[], None]:
        """Poll the collection on a daemon thread; returns a stop function."""
        stop_event = threading.Event()
        interval = self.config.poll_interval

        def poll() -> None:
            last: Optional[Snapshot] = None
            while not stop_event.is_set():
                try:
                    snapshot = self.list_all()
                    if snapshot != last:
                        last = snapshot
                        on_change(snapshot)
                except Exception as e:
                    on_error(e)
                stop_event.wait(interval)

        thread = threading.Thread(target=poll, name=f"firestore-poll-{self.collection}", daemon=True)
        thread.start()
        logger.info(f"Polling {self.collection} every {interval}s")

        return stop_event.set


# ============== In-memory Store ==============

class InMemoryDocumentStore:
    """
    Dict-backed store with the same contract.

    Subscribers are called synchronously: once with the current contents when
    they subscribe, then after every batch write.
    """

    def __init__(self, documents: Optional[Mapping[str, Record]] = None):
        self._documents: Dict[str, Record] = {
            doc_id: dict(record) for doc_id, record in (documents or {}).items()
        }
        self._lock = threading.Lock()
        self._subscribers: List[ChangeCallback] = []

    def _snapshot(self) -> Snapshot:
        return [(doc_id, dict(record)) for doc_id, record in self._documents.items()]

    def list_all(self) -> Snapshot:
        with self._lock:
            return self._snapshot()

    def batch_write(self, deletes: Iterable[str], upserts: Iterable[Tuple[str, Record]]) -> None:
        deletes = list(deletes)
        upserts = [(doc_id, dict(record)) for doc_id, record in upserts]
        with self._lock:
            for doc_id in deletes:
                self._documents.pop(doc_id, None)
            for doc_id, record in upserts:
                self._documents[doc_id] = record
            snapshot = self._snapshot()
            subscribers = list(self._subscribers)

        for callback in subscribers:
            callback(snapshot)

    def subscribe(self, on_change: ChangeCallback, on_error: ErrorCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(on_change)
            snapshot = self._snapshot()
        on_change(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                if on_change in self._subscribers:
                    self._subscribers.remove(on_change)

        return unsubscribe


# ============== Thread-safe Singleton ==============

_store = None
_store_lock = threading.Lock()


def get_document_store(reset: bool = False):
    """
    Get or create the process-wide document store.

    Firestore when a project id is configured, otherwise in-memory.
    """
    global _store

    with _store_lock:
        if reset or _store is None:
            config = get_config()
            if config.uses_remote_store:
                _store = FirestoreDocumentStore(config)
            else:
                _store = InMemoryDocumentStore()
        return _store


def reset_document_store():
    """Reset the singleton store."""
    global _store
    with _store_lock:
        _store = None
