"""
ChromaFlow Core Library
=======================

Tracks fabricated structural components through the painting workflow:
CSV import/export, workflow transitions, filtering, sorting, dashboard
stats and shared persistence.

Modules
-------
models
    Pydantic models and enums (items, filters, results)
csv_codec
    Fabrication list parser and status export writer
workflow
    Workflow sequence and bulk transitions
repository
    Ordered in-memory item collection with merge-by-id import
query
    Filtering, sorting, stats and dropdown options
document_store
    Firestore REST client and in-memory store
local_cache
    JSON file fallback cache
sync_bridge
    Load / save / subscribe over store + cache
controller
    Application state, commands and the command loop
config
    Environment-driven settings

Quick Start
-----------
>>> from chromaflow import (
...     ItemController,
...     SyncBridge,
...     JsonFileCache,
...     get_config,
...     get_document_store,
... )
>>>
>>> config = get_config()
>>> bridge = SyncBridge(get_document_store(), JsonFileCache(config.cache_path))
>>> controller = ItemController(bridge)
>>> controller.start()
>>> controller.view().stats.total
"""

# Data models
from .models import (
    ALL,
    WorkflowStatus,
    ShopLocation,
    SortKey,
    SortDirection,
    ImportMode,
    DataSource,
    NoticeLevel,
    ProductItem,
    DashboardStats,
    SortConfig,
    FilterCriteria,
    ItemView,
    ImportResult,
    LoadResult,
    SaveResult,
    Notice,
)

# Configuration
from .config import (
    AppConfig,
    get_config,
    reset_config,
)

# CSV
from .csv_codec import (
    CsvDecodeError,
    parse_csv,
    serialize_csv,
    split_csv_line,
    CSV_COLUMNS,
    CSV_HEADER_LABELS,
    EXPORT_HEADER,
)

# Workflow
from .workflow import (
    WORKFLOW_SEQUENCE,
    INITIAL_STATUS,
    TERMINAL_STATUS,
    SHOP_BRANCH_STATUSES,
    get_next_status,
    status_index,
    needs_shop_assignment,
    advance_items,
    set_status_items,
)

# Repository
from .repository import (
    ItemRepository,
    RepositoryError,
    RecordNotFoundError,
)

# Query
from .query import (
    filter_items,
    sort_items,
    calculate_stats,
    unique_values,
    build_view,
)

# Persistence
from .document_store import (
    FirestoreDocumentStore,
    InMemoryDocumentStore,
    DocumentStoreError,
    DocumentStoreNotFoundError,
    get_document_store,
    reset_document_store,
)
from .local_cache import (
    JsonFileCache,
    MemoryCache,
)
from .sync_bridge import (
    SyncBridge,
    DocumentStore,
    LocalCache,
)

# Identity
from .identity import (
    IdentityProvider,
    StaticIdentity,
    is_admin,
)

# Controller
from .controller import (
    AppState,
    ItemController,
    reduce,
)

# Helpers
from .helpers import (
    generate_trace_id,
    generate_item_id,
)

__all__ = [
    # Models
    "ALL",
    "WorkflowStatus",
    "ShopLocation",
    "SortKey",
    "SortDirection",
    "ImportMode",
    "DataSource",
    "NoticeLevel",
    "ProductItem",
    "DashboardStats",
    "SortConfig",
    "FilterCriteria",
    "ItemView",
    "ImportResult",
    "LoadResult",
    "SaveResult",
    "Notice",
    # Config
    "AppConfig",
    "get_config",
    "reset_config",
    # CSV
    "CsvDecodeError",
    "parse_csv",
    "serialize_csv",
    "split_csv_line",
    "CSV_COLUMNS",
    "CSV_HEADER_LABELS",
    "EXPORT_HEADER",
    # Workflow
    "WORKFLOW_SEQUENCE",
    "INITIAL_STATUS",
    "TERMINAL_STATUS",
    "SHOP_BRANCH_STATUSES",
    "get_next_status",
    "status_index",
    "needs_shop_assignment",
    "advance_items",
    "set_status_items",
    # Repository
    "ItemRepository",
    "RepositoryError",
    "RecordNotFoundError",
    # Query
    "filter_items",
    "sort_items",
    "calculate_stats",
    "unique_values",
    "build_view",
    # Persistence
    "FirestoreDocumentStore",
    "InMemoryDocumentStore",
    "DocumentStoreError",
    "DocumentStoreNotFoundError",
    "get_document_store",
    "reset_document_store",
    "JsonFileCache",
    "MemoryCache",
    "SyncBridge",
    "DocumentStore",
    "LocalCache",
    # Identity
    "IdentityProvider",
    "StaticIdentity",
    "is_admin",
    # Controller
    "AppState",
    "ItemController",
    "reduce",
    # Helpers
    "generate_trace_id",
    "generate_item_id",
]
