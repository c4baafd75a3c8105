"""
fn_items_api: Item Tracking Commands
====================================

HTTP surface for the fabrication tracker. One endpoint, one JSON body per
command:

    POST /api/items
    {"command": "advance", "ids": ["1001", "1002"], "forced_shop": "Shop B"}

Commands
--------
- view: filtered / sorted items, dashboard stats and filter options
- import: CSV text, ``mode`` = overwrite | append (admin only)
- export: status CSV (``NO,ITEM,ASSEMBLY,STATUS,SHOP``)
- advance: move the selection one stage forward. If a selected item is at
  Blasting or Shop Sorting and no ``forced_shop`` is given, nothing changes
  and the response status is ``NEEDS_SHOP``.
- set_status: manual override to ``status`` (and ``shop`` when given)
- delete: remove the selection
- save: persist to the document store (admin only)
- accept_remote: drop unsaved edits and take the remote changes reported
  by ``view`` as ``remote_changes_pending``

Edits are held by a process-wide controller until ``save``. The caller is
identified by the ``x-user-id`` header; import and save need the configured
admin id.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import azure.functions as func

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chromaflow import (
    ItemController,
    JsonFileCache,
    NoticeLevel,
    SortConfig,
    StaticIdentity,
    SyncBridge,
    WorkflowStatus,
    build_view,
    generate_trace_id,
    get_config,
    get_document_store,
    is_admin,
    SHOP_BRANCH_STATUSES,
)
from chromaflow.controller import (
    AcceptRemote,
    Advance,
    CancelShopPrompt,
    ClearSelection,
    Delete,
    Import,
    RequestAdvance,
    Select,
    SetStatus,
)
from chromaflow.query import STATS_BUCKETS

from .models import (
    ADMIN_COMMANDS,
    ApiCommand,
    ItemsApiRequest,
    ItemsApiResponse,
    ResponseStatus,
)

logger = logging.getLogger(__name__)

# Handler result: (status, message, data, http status code)
HandlerResult = Tuple[ResponseStatus, str, Dict[str, Any], int]


class RequestValidationError(ValueError):
    """A well-formed body that is missing what the command needs."""
    pass


# ============== Controller Lifecycle ==============

_controller: Optional[ItemController] = None
_controller_lock = threading.Lock()

# Commands mutate one shared state; run them one at a time
_command_lock = threading.Lock()


def get_controller() -> ItemController:
    """Create and start the process-wide controller on first use."""
    global _controller

    with _controller_lock:
        if _controller is None:
            config = get_config()
            bridge = SyncBridge(get_document_store(), JsonFileCache(config.cache_path))
            controller = ItemController(bridge)
            result = controller.start()
            logger.info(
                f"[{result.trace_id}] Items controller started: "
                f"{result.item_count} item(s) from {result.source.value}"
            )
            _controller = controller
        return _controller


def reset_controller() -> None:
    """Stop and forget the controller (for testing)."""
    global _controller
    with _controller_lock:
        if _controller is not None:
            _controller.stop()
        _controller = None


# ============== Command Handlers ==============

def _notice_data(controller: ItemController) -> Dict[str, Any]:
    notice = controller.state.last_notice
    return notice.model_dump(mode="json") if notice else {}


def _selection_count(controller: ItemController, ids) -> int:
    present = {item.id for item in controller.state.items}
    return len(set(ids) & present)


def handle_view(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    sort_config = None
    if request.sort_key:
        sort_config = SortConfig(key=request.sort_key, direction=request.sort_direction)

    view = build_view(controller.state.items, request.criteria, sort_config)
    stats = view.stats
    data = {
        "items": [item.to_record() for item in view.items],
        "stats": stats.model_dump(),
        "percentages": {
            bucket: stats.percentage(bucket)
            for bucket in STATS_BUCKETS.values()
        },
        "item_type_options": view.item_type_options,
        "material_options": view.material_options,
        "fp_options": view.fp_options,
        "has_unsaved_changes": controller.state.has_unsaved_changes,
        "remote_changes_pending": controller.state.pending_snapshot is not None,
    }
    return ResponseStatus.OK, f"{len(view.items)} item(s)", data, 200


def handle_import(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    if request.text is None:
        raise RequestValidationError("'text' is required for import")

    state = controller.execute(Import(text=request.text, mode=request.mode))
    notice = state.last_notice
    data = {"item_count": len(state.items), "notice": _notice_data(controller)}

    if notice is not None and notice.level == NoticeLevel.ALERT:
        logger.warning(f"[{trace_id}] Import rejected: {notice.message}")
        return ResponseStatus.ERROR, notice.message, data, 422

    logger.info(f"[{trace_id}] Import ({request.mode.value}) complete: {len(state.items)} item(s) held")
    return ResponseStatus.OK, notice.message if notice else "", data, 200


def handle_export(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    return ResponseStatus.OK, "", {"csv": controller.export_csv()}, 200


def handle_advance(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    selected = frozenset(request.ids)
    count = _selection_count(controller, selected)
    controller.execute(Select(item_ids=selected))

    if request.forced_shop is not None:
        controller.execute(Advance(forced_shop=request.forced_shop))
    else:
        state = controller.execute(RequestAdvance())
        if state.pending_shop_prompt:
            needs_shop = [
                item.id for item in state.items
                if item.id in selected and item.status in SHOP_BRANCH_STATUSES
            ]
            controller.execute(CancelShopPrompt())
            controller.execute(ClearSelection())
            logger.info(f"[{trace_id}] Advance needs a shop for {len(needs_shop)} item(s)")
            return (
                ResponseStatus.NEEDS_SHOP,
                "Choose a shop for items leaving Blasting or Shop Sorting",
                {"needs_shop_ids": needs_shop},
                200,
            )

    logger.info(f"[{trace_id}] Advanced {count} item(s)")
    return ResponseStatus.OK, f"Advanced {count} item(s)", {"advanced": count}, 200


def handle_set_status(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    if request.status is None:
        raise RequestValidationError("'status' is required for set_status")

    selected = frozenset(request.ids)
    count = _selection_count(controller, selected)
    controller.execute(Select(item_ids=selected))
    controller.execute(SetStatus(status=WorkflowStatus(request.status), shop=request.shop))

    logger.info(f"[{trace_id}] Set {count} item(s) to {request.status.value}")
    return ResponseStatus.OK, f"Updated {count} item(s)", {"updated": count}, 200


def handle_delete(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    selected = frozenset(request.ids)
    count = _selection_count(controller, selected)
    controller.execute(Select(item_ids=selected))
    controller.execute(Delete())

    logger.info(f"[{trace_id}] Deleted {count} item(s)")
    return ResponseStatus.OK, f"Deleted {count} item(s)", {"deleted": count}, 200


def handle_save(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    result = controller.save()
    if result is None:
        return ResponseStatus.OK, "Nothing to save", {"saved": False}, 200

    data = result.model_dump(mode="json")
    if not result:
        logger.error(f"[{trace_id}] Save failed ({result.trace_id}): {result.error_message}")
        return ResponseStatus.ERROR, "Save failed", data, 502

    logger.info(f"[{trace_id}] Saved {result.upserted} item(s), deleted {result.deleted}")
    return ResponseStatus.OK, "Saved", data, 200


def handle_accept_remote(controller: ItemController, request: ItemsApiRequest, trace_id: str) -> HandlerResult:
    if controller.state.pending_snapshot is None:
        return ResponseStatus.OK, "No remote changes pending", {"accepted": False}, 200

    state = controller.execute(AcceptRemote())
    logger.info(f"[{trace_id}] Accepted remote snapshot of {len(state.items)} item(s), local edits dropped")
    return ResponseStatus.OK, "Remote changes applied", {"accepted": True, "item_count": len(state.items)}, 200


COMMAND_HANDLERS: Dict[ApiCommand, Callable[[ItemController, ItemsApiRequest, str], HandlerResult]] = {
    ApiCommand.VIEW: handle_view,
    ApiCommand.IMPORT: handle_import,
    ApiCommand.EXPORT: handle_export,
    ApiCommand.ADVANCE: handle_advance,
    ApiCommand.SET_STATUS: handle_set_status,
    ApiCommand.DELETE: handle_delete,
    ApiCommand.SAVE: handle_save,
    ApiCommand.ACCEPT_REMOTE: handle_accept_remote,
}


# ============== Entry Point ==============

def _json_response(response: ItemsApiResponse, status_code: int) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(response.model_dump(mode="json")),
        status_code=status_code,
        mimetype="application/json",
    )


def main(req: func.HttpRequest) -> func.HttpResponse:
    """Validate, authorize and run one item command."""
    start_time = time.time()
    trace_id = req.headers.get("x-trace-id") or generate_trace_id()

    def elapsed_ms() -> float:
        return round((time.time() - start_time) * 1000, 2)

    try:
        try:
            request = ItemsApiRequest.model_validate(req.get_json())
        except ValueError as e:
            logger.error(f"[{trace_id}] Invalid request body: {e}")
            return _json_response(ItemsApiResponse(
                status=ResponseStatus.ERROR,
                message=f"Invalid request: {str(e)}",
                trace_id=trace_id,
                processing_time_ms=elapsed_ms(),
            ), 400)

        identity = StaticIdentity(req.headers.get("x-user-id"))
        if request.command in ADMIN_COMMANDS and not is_admin(identity, get_config().admin_uid):
            logger.warning(
                f"[{trace_id}] User {identity.current_user_id()!r} "
                f"not allowed to run '{request.command.value}'"
            )
            return _json_response(ItemsApiResponse(
                status=ResponseStatus.FORBIDDEN,
                command=request.command,
                message=f"'{request.command.value}' requires the admin account",
                trace_id=trace_id,
                processing_time_ms=elapsed_ms(),
            ), 403)

        logger.info(f"[{trace_id}] Running '{request.command.value}' for {len(request.ids)} id(s)")

        controller = get_controller()
        handler = COMMAND_HANDLERS[request.command]

        try:
            with _command_lock:
                controller.process_pending()
                status, message, data, status_code = handler(controller, request, trace_id)
        except RequestValidationError as e:
            logger.error(f"[{trace_id}] {e}")
            return _json_response(ItemsApiResponse(
                status=ResponseStatus.ERROR,
                command=request.command,
                message=str(e),
                trace_id=trace_id,
                processing_time_ms=elapsed_ms(),
            ), 400)

        return _json_response(ItemsApiResponse(
            status=status,
            command=request.command,
            message=message,
            trace_id=trace_id,
            processing_time_ms=elapsed_ms(),
            data=data,
        ), status_code)

    except Exception as e:
        logger.exception(f"[{trace_id}] Unexpected error: {e}")
        return _json_response(ItemsApiResponse(
            status=ResponseStatus.ERROR,
            message=f"Internal error: {str(e)}",
            trace_id=trace_id,
            processing_time_ms=elapsed_ms(),
        ), 500)
