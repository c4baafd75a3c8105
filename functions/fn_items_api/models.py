"""
Items API Models
================

Request and response bodies for the items HTTP function.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chromaflow import (
    FilterCriteria,
    ImportMode,
    ShopLocation,
    SortDirection,
    SortKey,
    WorkflowStatus,
)


class ApiCommand(str, Enum):
    VIEW = "view"
    IMPORT = "import"
    EXPORT = "export"
    ADVANCE = "advance"
    SET_STATUS = "set_status"
    DELETE = "delete"
    SAVE = "save"
    ACCEPT_REMOTE = "accept_remote"


# Commands only the admin may run
ADMIN_COMMANDS = frozenset({ApiCommand.IMPORT, ApiCommand.SAVE})


class ResponseStatus(str, Enum):
    OK = "OK"
    NEEDS_SHOP = "NEEDS_SHOP"
    ERROR = "ERROR"
    FORBIDDEN = "FORBIDDEN"


class ItemsApiRequest(BaseModel):
    """
    Body of ``POST /api/items``.

    ``ids`` is the selection for advance / set_status / delete. ``criteria``
    and ``sort_key`` only shape the ``view`` response.
    """
    model_config = ConfigDict(extra="ignore")

    command: ApiCommand
    ids: List[str] = Field(default_factory=list)

    # advance
    forced_shop: Optional[ShopLocation] = None

    # set_status
    status: Optional[WorkflowStatus] = None
    shop: Optional[ShopLocation] = None

    # import
    text: Optional[str] = None
    mode: ImportMode = ImportMode.OVERWRITE

    # view
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)
    sort_key: Optional[SortKey] = None
    sort_direction: SortDirection = SortDirection.ASC

    @field_validator("command", "mode", "sort_direction", mode="before")
    @classmethod
    def coerce_to_lowercase(cls, v):
        if isinstance(v, Enum):
            return v
        return str(v).strip().lower() if v is not None else v

    @field_validator("ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        """Accept a single id or a list of ids of any scalar type."""
        if v is None:
            return []
        if isinstance(v, (str, int, float)):
            v = [v]
        return [str(i) for i in v]

    @field_validator("forced_shop", "shop", "status", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v == "":
            return None
        return v


class ItemsApiResponse(BaseModel):
    """Uniform response envelope."""
    status: ResponseStatus
    command: Optional[ApiCommand] = None
    message: str = ""
    trace_id: str = ""
    processing_time_ms: float = 0.0
    data: Dict[str, Any] = Field(default_factory=dict)
