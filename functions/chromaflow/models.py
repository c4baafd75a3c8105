"""
Shared Data Models
==================

Pydantic models and enumerations used across the ChromaFlow fabrication
tracker: the tracked item record, the workflow enums, query parameters and
the result objects returned by the persistence boundary.

Design Principles
-----------------
- **Pydantic v2** for validation and serialization
- **Enums** for constrained values (status, shop, sort key, import mode)
- **Lenient input** for records coming back from the document store
- **camelCase on the wire**: records keep the field names the store was
  populated with (``qty``, ``updatedAt``)

Usage Examples
--------------
Building an item:
    >>> item = ProductItem(id="1001", item="BEAM", length=1200)
    >>> item.status
    <WorkflowStatus.UNRECEIVED: 'Unreceived'>

Serializing for the store:
    >>> item.to_record()["updatedAt"]
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

ALL = "ALL"


class WorkflowStatus(str, Enum):
    """Fabrication stages - values are the labels stored remotely."""
    UNRECEIVED = "Unreceived"
    RECEIVED = "Received (Inbound)"
    BLASTING = "Blasting"
    SHOP_SORTING = "Shop Sorting"
    PAINTING = "Painting"
    PACKING = "Packing"
    AWAITING_SHIPMENT = "Awaiting Shipment"
    SHIPPED = "Shipped"


class ShopLocation(str, Enum):
    """Physical work locations an item can be assigned to."""
    NONE = "None"
    SHOP_A = "Shop A"
    SHOP_B = "Shop B"
    SHOP_C = "Shop C"
    SHOP_D = "Shop D"
    SHOP_E = "Shop E"


class SortKey(str, Enum):
    """Sortable grid columns."""
    STATUS = "status"
    ITEM = "item"
    ID = "id"
    LENGTH = "length"
    WEIGHT = "weight"
    AREA = "area"
    QUANTITY = "quantity"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ImportMode(str, Enum):
    """How parsed CSV rows are merged into the repository."""
    OVERWRITE = "overwrite"
    APPEND = "append"


class DataSource(str, Enum):
    """Where a load result came from."""
    REMOTE = "remote"
    CACHE = "cache"
    EMPTY = "empty"


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    ALERT = "alert"
    INFO = "info"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ============== Entity Models ==============

class ProductItem(BaseModel):
    """
    A tracked structural component.

    Static fields come from the CSV import; ``status``, ``shop`` and
    ``updated_at`` are only changed by workflow commands.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    item: str = ""
    assembly: str = ""
    description: str = ""
    material: str = ""
    length: float = 0.0
    qty: float = 0.0
    weight: float = 0.0
    area: float = 0.0
    fp: str = ""

    status: WorkflowStatus = WorkflowStatus.UNRECEIVED
    shop: ShopLocation = ShopLocation.NONE
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")

    @field_validator("id", "item", "assembly", "description", "material", "fp", mode="before")
    @classmethod
    def coerce_to_string(cls, v):
        """Store exports sometimes hand back numbers for text columns."""
        if v is None:
            return ""
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)

    @field_validator("length", "qty", "weight", "area", mode="before")
    @classmethod
    def coerce_to_float(cls, v):
        if v is None or v == "":
            return 0.0
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        if value != value or value in (float("inf"), float("-inf")):
            return 0.0
        return value

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v):
        if isinstance(v, WorkflowStatus):
            return v
        try:
            return WorkflowStatus(v)
        except ValueError:
            logger.warning(f"Unknown workflow status {v!r} - falling back to {WorkflowStatus.UNRECEIVED.value}")
            return WorkflowStatus.UNRECEIVED

    @field_validator("shop", mode="before")
    @classmethod
    def coerce_shop(cls, v):
        if v is None or v == "":
            return ShopLocation.NONE
        if isinstance(v, ShopLocation):
            return v
        try:
            return ShopLocation(v)
        except ValueError:
            logger.warning(f"Unknown shop {v!r} - falling back to {ShopLocation.NONE.value}")
            return ShopLocation.NONE

    @field_validator("updated_at", mode="before")
    @classmethod
    def coerce_timestamp(cls, v):
        if v is None or v == "":
            return utc_now_iso()
        if isinstance(v, datetime):
            return v.isoformat()
        return str(v)

    def to_record(self) -> Dict[str, Any]:
        """Flat 13-field mapping used by the document store and local cache."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProductItem":
        return cls.model_validate(record)


class DashboardStats(BaseModel):
    """
    Per-stage counts for the dashboard cards.

    Unreceived and Shop Sorting have no bucket of their own but are still
    part of ``total``.
    """
    received: int = 0
    blasting: int = 0
    painting: int = 0
    packing: int = 0
    waiting: int = 0
    shipped: int = 0
    total: int = 0

    def percentage(self, bucket: str) -> int:
        """Rounded share of ``total`` held by a bucket (0 when empty)."""
        if self.total <= 0:
            return 0
        count = getattr(self, bucket)
        # Round half up like the dashboard cards (Python's round() is banker's)
        return int(count * 100 / self.total + 0.5)


# ============== Query Models ==============

class SortConfig(BaseModel):
    """Active grid sort. Transient UI state, never persisted."""
    model_config = ConfigDict(frozen=True)

    key: SortKey
    direction: SortDirection = SortDirection.ASC

    def toggled(self, key: SortKey) -> "SortConfig":
        """Config after clicking a column header."""
        if key == self.key:
            flipped = SortDirection.DESC if self.direction == SortDirection.ASC else SortDirection.ASC
            return SortConfig(key=key, direction=flipped)
        return SortConfig(key=key, direction=SortDirection.ASC)


class FilterCriteria(BaseModel):
    """
    Filter ribbon state.

    Every equality filter is a no-op when left at ``ALL``; ``show_shipped``
    switches between the active and the archived (shipped) view.
    """
    model_config = ConfigDict(frozen=True)

    show_shipped: bool = False
    shop: str = ALL
    status: str = ALL
    item_type: str = ALL
    material: str = ALL
    fp: str = ALL
    search: str = ""

    @field_validator("shop", "status", "item_type", "material", "fp", mode="before")
    @classmethod
    def coerce_filter_value(cls, v):
        if v is None or v == "":
            return ALL
        if isinstance(v, Enum):
            return str(v.value)
        return str(v)

    @field_validator("search", mode="before")
    @classmethod
    def coerce_search(cls, v):
        return "" if v is None else str(v)

    def reset(self) -> "FilterCriteria":
        """Default filters; the archive toggle is left as it is."""
        return FilterCriteria(show_shipped=self.show_shipped)


class ItemView(BaseModel):
    """Everything the grid needs to render one frame."""
    items: List[ProductItem] = Field(default_factory=list)
    stats: DashboardStats = Field(default_factory=DashboardStats)
    item_type_options: List[str] = Field(default_factory=list)
    material_options: List[str] = Field(default_factory=list)
    fp_options: List[str] = Field(default_factory=list)


# ============== Result Models ==============

class ImportResult(BaseModel):
    """Outcome of merging parsed rows into the repository."""
    mode: ImportMode
    imported: int = 0
    duplicates: int = 0
    duplicate_ids: List[str] = Field(default_factory=list)


class LoadResult(BaseModel):
    """Outcome of fetching the collection."""
    success: bool
    source: DataSource
    item_count: int = 0
    error_message: Optional[str] = None
    trace_id: str = ""

    def __bool__(self):
        return self.success


class SaveResult(BaseModel):
    """Outcome of persisting the collection."""
    success: bool
    upserted: int = 0
    deleted: int = 0
    cached: bool = False
    error_message: Optional[str] = None
    trace_id: str = ""

    def __bool__(self):
        return self.success


class Notice(BaseModel):
    """Discrete user-facing notification produced by a command."""
    model_config = ConfigDict(frozen=True)

    level: NoticeLevel
    title: str
    message: str = ""
