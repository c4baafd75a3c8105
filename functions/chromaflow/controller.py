"""
Application Controller
======================

Owns the tracker's state and applies operator commands to it.

State Model
-----------
``AppState`` is an immutable snapshot. Every change goes through
``reduce(state, command)``, a pure function that returns the next state, so
command behaviour can be tested without any I/O.

Event Loop
----------
``ItemController`` keeps the current state and a FIFO inbox. Operator
commands and remote snapshots (pushed from the subscription thread) are both
queued and applied in arrival order by ``process_pending()`` on the caller's
thread. Nothing but the loop ever touches ``state``.

Remote Snapshots vs Local Edits
-------------------------------
A snapshot arriving while a save is running or while there are unsaved
edits is parked in ``pending_snapshot`` instead of replacing the edits.
A successful save drops it (the store now holds the local copy and will
report a fresh snapshot); ``AcceptRemote`` discards local edits in its
favour.
A snapshot equal to the last known remote contents (the initial load, the
last applied snapshot or the last successful save) is ignored.

Usage:
    controller = ItemController(SyncBridge(store, cache))
    controller.start()
    controller.execute(RequestAdvance())
    if controller.state.pending_shop_prompt:
        controller.execute(Advance(forced_shop=ShopLocation.SHOP_B))
    controller.save()
"""

import logging
import queue
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from .csv_codec import CsvDecodeError, parse_csv, serialize_csv
from .models import (
    FilterCriteria,
    ImportMode,
    ItemView,
    LoadResult,
    Notice,
    NoticeLevel,
    ProductItem,
    SaveResult,
    ShopLocation,
    SortConfig,
    SortKey,
    WorkflowStatus,
)
from .query import build_view, filter_items
from .repository import ItemRepository
from .sample_data import sample_items
from .sync_bridge import SyncBridge
from .workflow import advance_items, needs_shop_assignment, set_status_items

logger = logging.getLogger(__name__)


# ============== State ==============

class AppState(BaseModel):
    """Everything the tracker knows at one point in time."""
    model_config = ConfigDict(frozen=True)

    items: Tuple[ProductItem, ...] = ()
    selected_ids: FrozenSet[str] = frozenset()
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)
    sort_config: Optional[SortConfig] = None

    has_unsaved_changes: bool = False
    is_saving: bool = False
    pending_shop_prompt: bool = False
    pending_snapshot: Optional[Tuple[ProductItem, ...]] = None
    # What the store last held as far as this process knows; None = unknown
    last_remote_items: Optional[Tuple[ProductItem, ...]] = None

    last_notice: Optional[Notice] = None


# ============== Commands ==============

class Command(BaseModel):
    model_config = ConfigDict(frozen=True)


class ToggleSelect(Command):
    item_id: str


class Select(Command):
    """Replace the selection with exactly these ids."""
    item_ids: FrozenSet[str]


class SelectAll(Command):
    """Select every visible item, or clear the selection if all are selected."""


class ClearSelection(Command):
    pass


class RequestAdvance(Command):
    """Advance the selection, or ask for a shop first if one is needed."""


class Advance(Command):
    forced_shop: Optional[ShopLocation] = None


class CancelShopPrompt(Command):
    pass


class SetStatus(Command):
    status: WorkflowStatus
    shop: Optional[ShopLocation] = None


class Delete(Command):
    pass


class Import(Command):
    text: Union[str, bytes]
    mode: ImportMode = ImportMode.OVERWRITE


class SetCriteria(Command):
    """Change some filters; fields left as None keep their current value."""
    show_shipped: Optional[bool] = None
    shop: Optional[str] = None
    status: Optional[str] = None
    item_type: Optional[str] = None
    material: Optional[str] = None
    fp: Optional[str] = None
    search: Optional[str] = None


class ResetFilters(Command):
    pass


class SortBy(Command):
    key: SortKey


class ItemsLoaded(Command):
    """
    Initial load; ``unsaved`` marks seeded data that still has to be saved.

    ``remote_items`` is what the store returned when it differs from
    ``items`` (seeding); by default the loaded items are the remote copy.
    """
    items: Tuple[ProductItem, ...]
    unsaved: bool = False
    remote_items: Optional[Tuple[ProductItem, ...]] = None


class SnapshotReceived(Command):
    items: Tuple[ProductItem, ...]


class AcceptRemote(Command):
    """Drop local edits in favour of the parked remote snapshot."""


class SaveStarted(Command):
    pass


class SaveFinished(Command):
    result: SaveResult


# ============== Reducer ==============

def _notice(level: NoticeLevel, title: str, message: str = "") -> Notice:
    return Notice(level=level, title=title, message=message)


def _with_items(state: AppState, items: List[ProductItem], **changes) -> AppState:
    """Local mutation: new items, unsaved, selection and prompt cleared."""
    update = {
        "items": tuple(items),
        "has_unsaved_changes": True,
        "selected_ids": frozenset(),
        "pending_shop_prompt": False,
    }
    update.update(changes)
    return state.model_copy(update=update)


def _toggle_select(state: AppState, command: ToggleSelect) -> AppState:
    selected = set(state.selected_ids)
    if command.item_id in selected:
        selected.discard(command.item_id)
    else:
        selected.add(command.item_id)
    return state.model_copy(update={"selected_ids": frozenset(selected)})


def _select(state: AppState, command: Select) -> AppState:
    return state.model_copy(update={"selected_ids": frozenset(command.item_ids)})


def _select_all(state: AppState, command: SelectAll) -> AppState:
    visible = filter_items(state.items, state.criteria)
    if len(state.selected_ids) == len(visible):
        return state.model_copy(update={"selected_ids": frozenset()})
    return state.model_copy(update={"selected_ids": frozenset(item.id for item in visible)})


def _clear_selection(state: AppState, command: ClearSelection) -> AppState:
    return state.model_copy(update={"selected_ids": frozenset()})


def _request_advance(state: AppState, command: RequestAdvance) -> AppState:
    if not state.selected_ids:
        return state
    if needs_shop_assignment(state.items, state.selected_ids):
        return state.model_copy(update={"pending_shop_prompt": True})
    return _advance(state, Advance())


def _advance(state: AppState, command: Advance) -> AppState:
    if not state.selected_ids:
        return state
    items = advance_items(state.items, state.selected_ids, forced_shop=command.forced_shop)
    return _with_items(state, items)


def _cancel_shop_prompt(state: AppState, command: CancelShopPrompt) -> AppState:
    return state.model_copy(update={"pending_shop_prompt": False})


def _set_status(state: AppState, command: SetStatus) -> AppState:
    if not state.selected_ids:
        return state
    items = set_status_items(state.items, state.selected_ids, command.status, shop=command.shop)
    return _with_items(state, items)


def _delete(state: AppState, command: Delete) -> AppState:
    if not state.selected_ids:
        return state
    repository = ItemRepository(state.items)
    removed = repository.delete(state.selected_ids)
    return _with_items(
        state,
        repository.to_list(),
        last_notice=_notice(NoticeLevel.INFO, "Items deleted", f"Deleted {removed} item(s). Save to apply on the server."),
    )


def _import(state: AppState, command: Import) -> AppState:
    try:
        new_items = parse_csv(command.text)
    except CsvDecodeError as e:
        logger.error(f"CSV parse error: {e}")
        return state.model_copy(update={"last_notice": _notice(
            NoticeLevel.ALERT, "Error", "Failed to parse the CSV file. Check the file format.",
        )})

    if not new_items:
        return state.model_copy(update={"last_notice": _notice(
            NoticeLevel.ALERT,
            "Import failed",
            "No valid rows found in the CSV file. Check that it has a header row and data.",
        )})

    repository = ItemRepository(state.items)
    result = repository.import_items(new_items, command.mode)

    if result.mode == ImportMode.OVERWRITE:
        return _with_items(
            state,
            repository.to_list(),
            criteria=FilterCriteria(),
            last_notice=_notice(
                NoticeLevel.SUCCESS,
                "Import complete",
                f"Replaced existing data with {result.imported} item(s). Save to store them on the server.",
            ),
        )

    message = f"Added {result.imported} item(s)"
    if result.duplicates:
        message += f" ({result.duplicates} duplicate(s) skipped)"
    return _with_items(
        state,
        repository.to_list(),
        last_notice=_notice(NoticeLevel.SUCCESS, "Items added", f"{message}. Save to store them on the server."),
    )


def _set_criteria(state: AppState, command: SetCriteria) -> AppState:
    changes = command.model_dump(exclude_none=True)
    if not changes:
        return state
    criteria = FilterCriteria(**{**state.criteria.model_dump(), **changes})
    return state.model_copy(update={"criteria": criteria})


def _reset_filters(state: AppState, command: ResetFilters) -> AppState:
    return state.model_copy(update={"criteria": state.criteria.reset()})


def _sort_by(state: AppState, command: SortBy) -> AppState:
    if state.sort_config is None:
        sort_config = SortConfig(key=command.key)
    else:
        sort_config = state.sort_config.toggled(command.key)
    return state.model_copy(update={"sort_config": sort_config})


def _replace_from_remote(state: AppState, items: Tuple[ProductItem, ...]) -> AppState:
    present = {item.id for item in items}
    return state.model_copy(update={
        "items": tuple(items),
        "has_unsaved_changes": False,
        "pending_snapshot": None,
        "last_remote_items": tuple(items),
        "selected_ids": frozenset(i for i in state.selected_ids if i in present),
    })


def _items_loaded(state: AppState, command: ItemsLoaded) -> AppState:
    return state.model_copy(update={
        "items": tuple(command.items),
        "has_unsaved_changes": command.unsaved,
        "pending_snapshot": None,
        "last_remote_items": tuple(command.items if command.remote_items is None else command.remote_items),
        "selected_ids": frozenset(),
    })


def _snapshot_received(state: AppState, command: SnapshotReceived) -> AppState:
    if state.last_remote_items is not None and tuple(command.items) == state.last_remote_items:
        # Store still holds what we last saw; nothing new to park or apply
        if state.pending_snapshot is None:
            return state
        return state.model_copy(update={"pending_snapshot": None})
    if state.is_saving or state.has_unsaved_changes:
        logger.info(f"Deferring remote snapshot of {len(command.items)} item(s) - local changes pending")
        return state.model_copy(update={"pending_snapshot": tuple(command.items)})
    return _replace_from_remote(state, command.items)


def _accept_remote(state: AppState, command: AcceptRemote) -> AppState:
    if state.pending_snapshot is None or state.is_saving:
        return state
    return _replace_from_remote(state, state.pending_snapshot)


def _save_started(state: AppState, command: SaveStarted) -> AppState:
    return state.model_copy(update={"is_saving": True})


def _save_finished(state: AppState, command: SaveFinished) -> AppState:
    result = command.result
    if result.success:
        return state.model_copy(update={
            "is_saving": False,
            "has_unsaved_changes": False,
            "pending_snapshot": None,
            "last_remote_items": state.items,
            "last_notice": _notice(NoticeLevel.SUCCESS, "Saved", "Changes have been saved to the server."),
        })

    message = "An error occurred while saving to the server."
    if result.cached:
        message += " A local copy was kept."
    return state.model_copy(update={
        "is_saving": False,
        "last_notice": _notice(NoticeLevel.ALERT, "Save failed", message),
    })


_HANDLERS: Dict[Type[Command], Callable[[AppState, Command], AppState]] = {
    ToggleSelect: _toggle_select,
    Select: _select,
    SelectAll: _select_all,
    ClearSelection: _clear_selection,
    RequestAdvance: _request_advance,
    Advance: _advance,
    CancelShopPrompt: _cancel_shop_prompt,
    SetStatus: _set_status,
    Delete: _delete,
    Import: _import,
    SetCriteria: _set_criteria,
    ResetFilters: _reset_filters,
    SortBy: _sort_by,
    ItemsLoaded: _items_loaded,
    SnapshotReceived: _snapshot_received,
    AcceptRemote: _accept_remote,
    SaveStarted: _save_started,
    SaveFinished: _save_finished,
}


def reduce(state: AppState, command: Command) -> AppState:
    """Apply one command. Unknown command types raise ``TypeError``."""
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unsupported command: {type(command).__name__}")
    return handler(state, command)


# ============== Controller ==============

class ItemController:
    """Single-threaded command loop around ``reduce`` and a ``SyncBridge``."""

    def __init__(self, bridge: SyncBridge, state: Optional[AppState] = None):
        self.bridge = bridge
        self.state = state or AppState()
        self._inbox: "queue.Queue[Command]" = queue.Queue()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def dispatch(self, command: Command) -> None:
        """Queue a command. Safe to call from any thread."""
        self._inbox.put(command)

    def process_pending(self) -> AppState:
        """Apply every queued command in arrival order."""
        while True:
            try:
                command = self._inbox.get_nowait()
            except queue.Empty:
                break
            self.state = reduce(self.state, command)
        return self.state

    def execute(self, command: Command) -> AppState:
        """Queue ``command`` and run the loop until the inbox is empty."""
        self.dispatch(command)
        return self.process_pending()

    def start(self, subscribe: bool = True) -> LoadResult:
        """
        Load the collection and start listening for remote changes.

        An empty collection is seeded with the demo list, marked unsaved.
        """
        items, result = self.bridge.load()
        if items:
            self.execute(ItemsLoaded(items=tuple(items)))
        else:
            logger.info("No items loaded - seeding sample data")
            self.execute(ItemsLoaded(items=tuple(sample_items()), unsaved=True, remote_items=()))

        if subscribe:
            self._unsubscribe = self.bridge.subscribe(self._on_remote_items)
        return result

    def _on_remote_items(self, items: List[ProductItem]) -> None:
        self.dispatch(SnapshotReceived(items=tuple(items)))

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def save(self) -> Optional[SaveResult]:
        """
        Persist the current items.

        Returns None without doing anything when there is nothing to save
        or a save is already running.
        """
        self.process_pending()
        if self.state.is_saving or not self.state.has_unsaved_changes:
            return None

        self.execute(SaveStarted())
        result = self.bridge.save(list(self.state.items))
        self.execute(SaveFinished(result=result))
        return result

    def view(self) -> ItemView:
        return build_view(self.state.items, self.state.criteria, self.state.sort_config)

    def export_csv(self) -> str:
        return serialize_csv(self.state.items)
