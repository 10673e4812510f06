from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from django.core.exceptions import ValidationError

from rab_items.models import (
    ItemType,
    LineItem,
    PriceSource,
    items_from_dicts,
    items_to_dicts,
)
from rab_items.services.cell_input import parse_quantity, parse_unit_price
from rab_items.services.hierarchy import HierarchyIndex
from rab_items.services.validation import ErrorCollector, NumericParser

logger = logging.getLogger(__name__)

NEW_CATEGORY_DESCRIPTION = "KATEGORI BARU"
NEW_SUB_CATEGORY_DESCRIPTION = "SUB KATEGORI BARU"
NEW_SUB_ITEM_DESCRIPTION = "Sub Item Baru"
NEW_ITEM_QUANTITY = Decimal("1")

UP = "up"
DOWN = "down"

EDITABLE_FIELDS = frozenset({"description", "unit", "quantity", "unit_price", "note", "indent", "price_source"})
IMMUTABLE_FIELDS = frozenset({"id", "type"})
WORK_ITEM_ONLY_FIELDS = frozenset({"quantity", "unit_price", "price_source"})
CELL_FIELDS = frozenset({"quantity", "unit_price"})

Guard = Callable[[], Optional[str]]
BlockedHook = Callable[[str, str], None]


class MutationBlocked(Exception):
    """A store mutation was attempted while the document is read-only."""


def new_item_id(item_type: ItemType) -> str:
    prefix = "cat" if item_type is ItemType.CATEGORY else "item"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass
class EditSession:
    """Transient per-row flags kept apart from the persisted ``LineItem`` records."""

    editing: Set[str] = field(default_factory=set)
    new: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)
    pricing_loading: Set[str] = field(default_factory=set)

    def is_editing(self, item_id: str) -> bool:
        return item_id in self.editing

    def is_new(self, item_id: str) -> bool:
        return item_id in self.new

    def is_deleted(self, item_id: str) -> bool:
        return item_id in self.deleted

    def is_pricing_loading(self, item_id: str) -> bool:
        return item_id in self.pricing_loading

    def flags_for(self, item_id: str) -> Dict[str, bool]:
        return {
            "is_editing": self.is_editing(item_id),
            "is_new": self.is_new(item_id),
            "is_deleted": self.is_deleted(item_id),
            "is_pricing_loading": self.is_pricing_loading(item_id),
        }

    def clear(self) -> None:
        self.editing.clear()
        self.new.clear()
        self.deleted.clear()
        self.pricing_loading.clear()

    def copy(self) -> "EditSession":
        return EditSession(
            editing=set(self.editing),
            new=set(self.new),
            deleted=set(self.deleted),
            pricing_loading=set(self.pricing_loading),
        )

    def to_dict(self) -> dict:
        return {
            "editing": sorted(self.editing),
            "new": sorted(self.new),
            "deleted": sorted(self.deleted),
            "pricing_loading": sorted(self.pricing_loading),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EditSession":
        data = data or {}
        return cls(
            editing=set(data.get("editing") or ()),
            new=set(data.get("new") or ()),
            deleted=set(data.get("deleted") or ()),
            pricing_loading=set(data.get("pricing_loading") or ()),
        )


class LineItemStore:
    """Ordered line-item sequence with soft delete, reordering and row editing.

    Every mutation goes through ``ensure_mutable`` first: when the optional
    ``guard`` returns a reason (document locked, history being viewed) the
    mutation raises ``MutationBlocked`` and the sequence is left untouched.
    """

    def __init__(
        self,
        items: Iterable[LineItem] = (),
        session: Optional[EditSession] = None,
        *,
        dirty: bool = False,
        guard: Optional[Guard] = None,
        on_blocked: Optional[BlockedHook] = None,
        id_factory: Callable[[ItemType], str] = new_item_id,
    ) -> None:
        self._items: List[LineItem] = list(items)
        self._session = session or EditSession()
        self._dirty = dirty
        self._guard = guard
        self._on_blocked = on_blocked
        self._id_factory = id_factory
        self._index: Optional[HierarchyIndex] = None

    # ------------------------------------------------------------------ state

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return tuple(self._items)

    @property
    def session(self) -> EditSession:
        return self._session

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def index(self) -> HierarchyIndex:
        if self._index is None:
            self._index = HierarchyIndex.build(self._items)
        return self._index

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> Optional[LineItem]:
        pos = self.index.position_of(item_id)
        return self._items[pos] if pos is not None else None

    def require(self, item_id: str) -> LineItem:
        item = self.get(item_id)
        if item is None:
            raise ValidationError({"id": [f"Item '{item_id}' tidak ditemukan."]})
        return item

    def visible_items(self, show_deleted: bool = False) -> Tuple[LineItem, ...]:
        if show_deleted:
            return tuple(self._items)
        return tuple(item for item in self._items if item.id not in self._session.deleted)

    def active_work_items(self) -> Tuple[LineItem, ...]:
        return tuple(
            item for item in self._items if item.is_work_item and item.id not in self._session.deleted
        )

    def set_guard(self, guard: Optional[Guard], on_blocked: Optional[BlockedHook] = None) -> None:
        self._guard = guard
        self._on_blocked = on_blocked

    def ensure_mutable(self, action: str) -> None:
        reason = self._guard() if self._guard else None
        if reason:
            logger.warning("Blocked %s: %s", action, reason)
            if self._on_blocked:
                self._on_blocked(action, reason)
            raise MutationBlocked(reason)

    def _changed(self) -> None:
        self._index = None
        self._dirty = True

    # -------------------------------------------------------------- insertion

    def insert_category(self) -> LineItem:
        self.ensure_mutable("insert_category")
        item = LineItem(
            id=self._id_factory(ItemType.CATEGORY),
            type=ItemType.CATEGORY,
            description=NEW_CATEGORY_DESCRIPTION,
        )
        return self._append_new(item)

    def insert_item(self) -> LineItem:
        self.ensure_mutable("insert_item")
        item = LineItem(
            id=self._id_factory(ItemType.WORK_ITEM),
            type=ItemType.WORK_ITEM,
            quantity=NEW_ITEM_QUANTITY,
            price_source=PriceSource.MANUAL,
        )
        return self._append_new(item)

    def _append_new(self, item: LineItem) -> LineItem:
        self._items.append(item)
        self._session.new.add(item.id)
        self._session.editing.add(item.id)
        self._changed()
        return item

    def insert_sub_item(self, parent_id: str) -> Optional[LineItem]:
        """Insert a child after the parent's descendant block; ``None`` if the parent is unknown."""
        self.ensure_mutable("insert_sub_item")
        parent_pos = self.index.position_of(parent_id)
        if parent_pos is None:
            logger.debug("insert_sub_item ignored, unknown parent %s", parent_id)
            return None

        parent = self._items[parent_pos]
        if parent.is_category:
            item = LineItem(
                id=self._id_factory(ItemType.CATEGORY),
                type=ItemType.CATEGORY,
                indent=parent.indent + 1,
                description=NEW_SUB_CATEGORY_DESCRIPTION,
            )
        else:
            item = LineItem(
                id=self._id_factory(ItemType.WORK_ITEM),
                type=ItemType.WORK_ITEM,
                indent=parent.indent + 1,
                description=NEW_SUB_ITEM_DESCRIPTION,
                quantity=NEW_ITEM_QUANTITY,
                price_source=PriceSource.MANUAL,
            )

        insert_at = self.index.block_ends[parent_pos]
        self._items.insert(insert_at, item)
        self._session.new.add(item.id)
        self._session.editing.add(item.id)
        self._changed()
        return item

    # ------------------------------------------------------------- reordering

    def move_item(self, index: int, direction: str) -> bool:
        """Swap one row with its neighbour. Descendants are not carried along."""
        self.ensure_mutable("move_item")
        target = self._target_index(index, direction)
        if target is None:
            return False
        self._items[index], self._items[target] = self._items[target], self._items[index]
        self._changed()
        return True

    def move_block(self, index: int, direction: str) -> bool:
        """Move a node and its contiguous descendants past the adjacent sibling block."""
        self.ensure_mutable("move_block")
        if self._target_index(index, direction) is None:
            return False

        hierarchy = self.index
        if direction == DOWN:
            first = index
            second = hierarchy.next_sibling(index)
        else:
            first = hierarchy.previous_sibling(index)
            second = index
        if first is None or second is None:
            return False

        first_block = self._items[first:second]
        second_block = self._items[second:hierarchy.block_ends[second]]
        self._items[first:hierarchy.block_ends[second]] = second_block + first_block
        self._changed()
        return True

    def _target_index(self, index: int, direction: str) -> Optional[int]:
        if direction not in (UP, DOWN):
            raise ValidationError({"direction": [f"Arah '{direction}' tidak dikenal, gunakan 'up' atau 'down'."]})
        if index < 0 or index >= len(self._items):
            return None
        target = index - 1 if direction == UP else index + 1
        if target < 0 or target >= len(self._items):
            return None
        return target

    # ------------------------------------------------------------ row editing

    def toggle_delete(self, item_id: str) -> bool:
        """Flip the soft-delete flag; returns the new deleted state."""
        self.ensure_mutable("toggle_delete")
        self.require(item_id)
        deleted = self._session.deleted
        if item_id in deleted:
            deleted.discard(item_id)
            now_deleted = False
        else:
            deleted.add(item_id)
            now_deleted = True
        self._dirty = True
        return now_deleted

    def toggle_edit(self, item_id: str) -> bool:
        """Open ``item_id`` for editing (closing every other row) or close it."""
        self.ensure_mutable("toggle_edit")
        self.require(item_id)
        was_editing = item_id in self._session.editing
        self._session.editing.clear()
        if not was_editing:
            self._session.editing.add(item_id)
        return not was_editing

    def save_row(self, item_id: str) -> None:
        self.ensure_mutable("save_row")
        self.require(item_id)
        self._session.editing.discard(item_id)
        self._dirty = True

    def update_field(self, item_id: str, field_name: str, value: Any) -> LineItem:
        self.ensure_mutable("update_field")
        item = self.require(item_id)

        errors = ErrorCollector()
        if field_name in IMMUTABLE_FIELDS:
            errors.add(field_name, f"Field '{field_name}' tidak dapat diubah.")
        elif field_name not in EDITABLE_FIELDS:
            errors.add(field_name, f"Field '{field_name}' tidak dikenal.")
        elif item.is_category and field_name in WORK_ITEM_ONLY_FIELDS:
            errors.add(field_name, "Kategori tidak memiliki volume atau harga.")
        errors.raise_if_any()

        coerced = self._coerce_field(field_name, value, errors)
        errors.raise_if_any()

        updated = item.with_changes(**{field_name: coerced})
        self._replace(updated)
        self._changed()
        return updated

    @staticmethod
    def _coerce_field(field_name: str, value: Any, errors: ErrorCollector) -> Any:
        if field_name in ("description", "unit", "note"):
            return "" if value is None else str(value)
        if field_name == "quantity":
            return NumericParser(errors, field_name).parse(value)
        if field_name == "unit_price":
            price = NumericParser(errors, field_name).parse(value)
            if price is None:
                return Decimal("0")
            if price < 0:
                errors.add(field_name, "Harga satuan tidak boleh negatif.")
            return price
        if field_name == "indent":
            try:
                indent = int(value)
            except (TypeError, ValueError):
                errors.add(field_name, "Indent harus berupa bilangan bulat.")
                return 0
            if indent < 0:
                errors.add(field_name, "Indent tidak boleh negatif.")
            return indent
        if field_name == "price_source":
            if value is None:
                return None
            try:
                return PriceSource(value)
            except ValueError:
                errors.add(field_name, f"Sumber harga '{value}' tidak dikenal.")
                return None
        return value

    def apply_cell_input(self, item_id: str, field_name: str, raw: Any) -> LineItem:
        """Apply a typed cell value (number or ``=`` formula) to quantity or unit price."""
        self.ensure_mutable("apply_cell_input")
        item = self.require(item_id)
        if field_name not in CELL_FIELDS:
            raise ValidationError({field_name: [f"Field '{field_name}' bukan sel angka."]})
        if item.is_category:
            raise ValidationError({field_name: ["Kategori tidak memiliki volume atau harga."]})

        if field_name == "quantity":
            updated = item.with_changes(quantity=parse_quantity(raw))
        else:
            updated = item.with_changes(unit_price=parse_unit_price(raw), price_source=PriceSource.MANUAL)
        self._replace(updated)
        self._changed()
        return updated

    # ----------------------------------------------------- bulk / collaborators

    def write_items(self, updates: Iterable[LineItem]) -> None:
        """Replace existing records by id, keeping their positions."""
        self.ensure_mutable("write_items")
        changed = False
        for updated in updates:
            self.require(updated.id)
            self._replace(updated)
            changed = True
        if changed:
            self._changed()

    def set_pricing_loading(self, item_ids: Iterable[str], loading: bool) -> None:
        target = self._session.pricing_loading
        for item_id in item_ids:
            if loading:
                target.add(item_id)
            else:
                target.discard(item_id)

    def replace_all(self, items: Sequence[LineItem]) -> None:
        """Swap in a whole new sequence (spreadsheet import)."""
        self.ensure_mutable("replace_all")
        self._items = list(items)
        self._session.clear()
        self._changed()

    def commit(self) -> Tuple[LineItem, ...]:
        """Drop soft-deleted rows, clear transient flags and return the new baseline."""
        self.ensure_mutable("commit")
        deleted = self._session.deleted
        removed = sum(1 for item in self._items if item.id in deleted)
        self._items = [item for item in self._items if item.id not in deleted]
        self._session.clear()
        self._index = None
        self._dirty = False
        logger.debug("Committed %d rows, discarded %d soft-deleted rows", len(self._items), removed)
        return tuple(self._items)

    def _replace(self, updated: LineItem) -> None:
        pos = self.index.position_of(updated.id)
        self._items[pos] = updated

    # ---------------------------------------------------------- serialization

    def to_state(self) -> dict:
        return {
            "items": items_to_dicts(self._items),
            "session": self._session.to_dict(),
            "dirty": self._dirty,
        }

    @classmethod
    def from_state(
        cls,
        state: Mapping[str, Any],
        *,
        guard: Optional[Guard] = None,
        on_blocked: Optional[BlockedHook] = None,
    ) -> "LineItemStore":
        return cls(
            items_from_dicts(state.get("items")),
            EditSession.from_dict(state.get("session")),
            dirty=bool(state.get("dirty")),
            guard=guard,
            on_blocked=on_blocked,
        )
