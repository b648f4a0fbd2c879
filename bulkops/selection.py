"""
SelectionManager -- caller-local bulk selection state.

Contract:
    Holds the item ids a caller has ticked for a bulk action, a selection
    mode flag, and a select-all flag.  The select-all flag reflects the
    visible item set at the time it was last evaluated (``select_all`` or
    ``evaluate_select_all``); it is not kept in sync when that set changes.

Non-goals:
    - Not thread-safe.  One instance per caller session.
    - No I/O.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from bulkops.domain.types import OperationRequest, OperationType


def item_identity(item: Any) -> str:
    """Id of a visible item: a bare id, a mapping or an object with ``id``/``_id``."""
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        for key in ("id", "_id"):
            if item.get(key) is not None:
                return str(item[key])
        raise ValueError(f"Item has no 'id' or '_id': {item!r}")
    for attr in ("id", "_id"):
        value = getattr(item, attr, None)
        if value is not None:
            return str(value)
    raise ValueError(f"Item has no 'id' or '_id': {item!r}")


class SelectionManager:
    """Ordered selection set plus mode and select-all flags."""

    def __init__(self) -> None:
        # dict keeps insertion order
        self._selected: dict[str, None] = {}
        self._selection_mode = False
        self._select_all = False

    @property
    def selection_mode(self) -> bool:
        return self._selection_mode

    @property
    def select_all_flag(self) -> bool:
        return self._select_all

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def toggle(self, item_id: str) -> bool:
        """Flip membership of ``item_id``.  Returns True if now selected."""
        self._select_all = False
        if item_id in self._selected:
            del self._selected[item_id]
            return False
        self._selected[item_id] = None
        return True

    def select_all(self, items: Iterable[Any]) -> int:
        """Replace the selection with the ids of ``items``."""
        self._selected = dict.fromkeys(item_identity(i) for i in items)
        self._select_all = True
        return len(self._selected)

    def clear(self) -> None:
        self._selected.clear()
        self._select_all = False

    def toggle_selection_mode(self) -> bool:
        """Enter or exit selection mode.  Exiting clears the selection."""
        self._selection_mode = not self._selection_mode
        if not self._selection_mode:
            self.clear()
        return self._selection_mode

    def evaluate_select_all(self, visible_items: Iterable[Any]) -> bool:
        """Recompute the select-all flag against the current visible set."""
        visible = {item_identity(i) for i in visible_items}
        self._select_all = bool(visible) and visible == set(self._selected)
        return self._select_all

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_selected(self, item_id: str) -> bool:
        return item_id in self._selected

    def selected_items(self) -> list[str]:
        return list(self._selected)

    def count(self) -> int:
        return len(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._selected

    # -------------------------------------------------------------------------
    # Submission helpers
    # -------------------------------------------------------------------------

    def to_request(
        self,
        operation_type: OperationType | str,
        params: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        initiated_by: str | None = None,
    ) -> OperationRequest:
        """Build an OperationRequest over the current selection."""
        return OperationRequest(
            operation_type=operation_type,
            item_ids=tuple(self._selected),
            params=dict(params or {}),
            options=dict(options or {}),
            initiated_by=initiated_by,
        )

    def mark_submitted(self) -> None:
        """Clear the selection after a successful submission."""
        self.clear()
