"""
Pytest Configuration and Fixtures for ChromaFlow Tests

This file provides:
- Mock document store with switchable failures and a call log
- Test data factories for items, records and CSV text
- HTTP request mocking for Azure Functions
- Ready-wired bridge and controller fixtures
"""

import pytest
import json
from typing import Dict, Any, List, Optional
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chromaflow.controller import ItemController
from chromaflow.document_store import DocumentStoreError, InMemoryDocumentStore
from chromaflow.local_cache import MemoryCache
from chromaflow.models import ProductItem, ShopLocation, WorkflowStatus
from chromaflow.sync_bridge import SyncBridge


# ============== Custom Pytest Markers ==============

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual modules")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


ADMIN_UID = "admin-uid-001"


# ============== Mock Document Store ==============

class MockDocumentStore(InMemoryDocumentStore):
    """
    In-memory store that can be told to fail.

    Tracks every batch write so tests can assert on what was sent.
    """

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__(documents)
        self.fail_list = False
        self.fail_write = False
        self.fail_subscribe = False
        self.batch_calls: List[Dict[str, Any]] = []
        self.error_callbacks = []

    @property
    def documents(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.list_all())

    def list_all(self):
        if self.fail_list:
            raise DocumentStoreError("list failed")
        return super().list_all()

    def batch_write(self, deletes, upserts):
        deletes, upserts = list(deletes), list(upserts)
        self.batch_calls.append({"deletes": deletes, "upserts": upserts})
        if self.fail_write:
            raise DocumentStoreError("commit failed")
        super().batch_write(deletes, upserts)

    def subscribe(self, on_change, on_error):
        if self.fail_subscribe:
            raise DocumentStoreError("subscribe failed")
        self.error_callbacks.append(on_error)
        return super().subscribe(on_change, on_error)

    def push_external_change(self, documents: Dict[str, Dict[str, Any]]) -> None:
        """Simulate another user saving: replace contents and notify."""
        current = [doc_id for doc_id, _ in InMemoryDocumentStore.list_all(self)]
        InMemoryDocumentStore.batch_write(self, current, list(documents.items()))


# ============== Test Data Factory ==============

class TestDataFactory:
    """Factory for creating test data."""

    __test__ = False

    @staticmethod
    def create_item(
        item_id: str = "1001",
        item: str = "BEAM",
        status: WorkflowStatus = WorkflowStatus.UNRECEIVED,
        shop: ShopLocation = ShopLocation.NONE,
        **kwargs
    ) -> ProductItem:
        """Create an item with sensible defaults."""
        data = {
            "id": item_id,
            "item": item,
            "assembly": f"BM-{item_id}",
            "description": "Base Support",
            "material": "Steel",
            "length": 1200.0,
            "qty": 5.0,
            "weight": 50.5,
            "area": 12.5,
            "fp": "F",
            "status": status,
            "shop": shop,
            "updated_at": "2026-01-01T00:00:00.000Z",
        }
        data.update(kwargs)
        return ProductItem(**data)

    @staticmethod
    def create_items(statuses: List[WorkflowStatus], start_id: int = 1001) -> List[ProductItem]:
        """One item per status, with consecutive ids."""
        return [
            TestDataFactory.create_item(item_id=str(start_id + i), status=status)
            for i, status in enumerate(statuses)
        ]

    @staticmethod
    def create_record(item_id: str = "1001", **kwargs) -> Dict[str, Any]:
        """Flat store record (camelCase keys)."""
        return TestDataFactory.create_item(item_id=item_id, **kwargs).to_record()

    @staticmethod
    def create_csv(rows: List[str], header: str = "NO.,ITEM,ASSEMBLY,DESCRIPTION,MATERIAL,LENGTH,Q'TY,WEIGHT,Area,FP") -> str:
        return "\n".join([header] + rows)


# ============== Mock HTTP Request ==============

class MockHttpRequest:
    """Mock Azure Functions HttpRequest."""

    def __init__(self, body: Any = None, headers: Optional[Dict[str, str]] = None, raw: Optional[bytes] = None):
        self._body = raw if raw is not None else json.dumps(body if body is not None else {}).encode()
        self.headers = headers or {}

    def get_json(self) -> Any:
        return json.loads(self._body)

    def get_body(self) -> bytes:
        return self._body


# ============== Fixtures ==============

@pytest.fixture
def factory():
    """Get test data factory."""
    return TestDataFactory()


@pytest.fixture
def mock_store():
    """Fresh, empty mock document store."""
    return MockDocumentStore()


@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def bridge(mock_store, memory_cache):
    return SyncBridge(mock_store, memory_cache)


@pytest.fixture
def controller(bridge):
    """Controller that has not been started."""
    return ItemController(bridge)


@pytest.fixture
def mock_http_request():
    """Factory for creating mock HTTP requests."""
    def _create(body: Any = None, user_id: Optional[str] = None, raw: Optional[bytes] = None) -> MockHttpRequest:
        headers = {"x-user-id": user_id} if user_id else {}
        return MockHttpRequest(body, headers=headers, raw=raw)
    return _create


@pytest.fixture
def setup_test_environment(tmp_path):
    """Set up environment variables for testing (in-memory store, temp cache)."""
    original_env = os.environ.copy()
    os.environ.pop("FIRESTORE_PROJECT_ID", None)
    os.environ["CHROMAFLOW_ADMIN_UID"] = ADMIN_UID
    os.environ["CHROMAFLOW_CACHE_PATH"] = str(tmp_path / "cache.json")
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def no_dotenv():
    """Keep a developer's .env out of config tests."""
    with patch("chromaflow.config.load_dotenv"):
        yield
