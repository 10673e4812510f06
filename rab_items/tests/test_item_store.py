from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase

from rab_items.models import ItemType, PriceSource
from rab_items.services.item_store import (
    DOWN,
    UP,
    EditSession,
    LineItemStore,
    MutationBlocked,
)
from rab_items.services.subtotals import grand_total
from rab_items.tests.factories import category, work


def ids(items):
    return [item.id for item in items]


class InsertionTests(SimpleTestCase):
    def test_insert_category_and_item_defaults(self):
        store = LineItemStore()
        cat = store.insert_category()
        item = store.insert_item()

        self.assertEqual(cat.description, "KATEGORI BARU")
        self.assertEqual(cat.type, ItemType.CATEGORY)
        self.assertEqual(item.quantity, Decimal("1"))
        self.assertEqual(item.unit_price, Decimal("0"))
        self.assertEqual(item.price_source, PriceSource.MANUAL)
        self.assertEqual(ids(store.items), [cat.id, item.id])
        self.assertTrue(store.session.is_new(item.id))
        self.assertTrue(store.session.is_editing(cat.id))
        self.assertTrue(store.dirty)

    def test_sub_item_goes_after_existing_children(self):
        store = LineItemStore([
            category("a"),
            work("a1", indent=1),
            work("a2", indent=1),
            category("b"),
        ])
        sub = store.insert_sub_item("a")

        self.assertEqual(ids(store.items)[:4], ["a", "a1", "a2", sub.id])
        self.assertEqual(sub.indent, 1)
        self.assertEqual(sub.type, ItemType.CATEGORY)
        self.assertEqual(sub.description, "SUB KATEGORI BARU")

    def test_sub_item_under_work_item_is_work_item(self):
        store = LineItemStore([work("x")])
        sub = store.insert_sub_item("x")
        self.assertEqual(sub.type, ItemType.WORK_ITEM)
        self.assertEqual(sub.description, "Sub Item Baru")
        self.assertEqual(ids(store.items), ["x", sub.id])

    def test_sub_item_for_unknown_parent_is_noop(self):
        store = LineItemStore([category("a")])
        self.assertIsNone(store.insert_sub_item("missing"))
        self.assertEqual(ids(store.items), ["a"])
        self.assertFalse(store.dirty)


class MoveTests(SimpleTestCase):
    def setUp(self):
        self.store = LineItemStore([
            category("a"),
            work("a1", indent=1),
            category("b"),
            work("b1", indent=1),
            work("b2", indent=1),
        ])

    def test_move_item_swaps_single_row(self):
        self.assertTrue(self.store.move_item(2, UP))
        self.assertEqual(ids(self.store.items), ["a", "b", "a1", "b1", "b2"])

    def test_move_item_is_noop_at_boundaries(self):
        self.assertFalse(self.store.move_item(0, UP))
        self.assertFalse(self.store.move_item(4, DOWN))
        self.assertEqual(ids(self.store.items), ["a", "a1", "b", "b1", "b2"])

    def test_move_block_carries_descendants(self):
        self.assertTrue(self.store.move_block(0, DOWN))
        self.assertEqual(ids(self.store.items), ["b", "b1", "b2", "a", "a1"])

    def test_move_block_up(self):
        self.assertTrue(self.store.move_block(2, UP))
        self.assertEqual(ids(self.store.items), ["b", "b1", "b2", "a", "a1"])

    def test_move_block_within_parent(self):
        self.assertTrue(self.store.move_block(4, UP))
        self.assertEqual(ids(self.store.items), ["a", "a1", "b", "b2", "b1"])

    def test_move_block_without_sibling_is_noop(self):
        self.assertFalse(self.store.move_block(1, DOWN))
        self.assertFalse(self.store.move_block(0, UP))
        self.assertEqual(ids(self.store.items), ["a", "a1", "b", "b1", "b2"])

    def test_unknown_direction_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.move_item(1, "left")


class RowEditingTests(SimpleTestCase):
    def setUp(self):
        self.store = LineItemStore([
            category("a"),
            work("a1", "10", "100", indent=1),
            work("a2", "5", "100", indent=1),
        ])

    def test_toggle_delete_twice_restores_contribution(self):
        before = grand_total(self.store.items, self.store.session.deleted)
        self.assertTrue(self.store.toggle_delete("a2"))
        self.assertEqual(grand_total(self.store.items, self.store.session.deleted), Decimal("1000"))
        self.assertFalse(self.store.toggle_delete("a2"))
        self.assertEqual(grand_total(self.store.items, self.store.session.deleted), before)

    def test_visible_items_hide_deleted_unless_requested(self):
        self.store.toggle_delete("a1")
        self.assertEqual(ids(self.store.visible_items()), ["a", "a2"])
        self.assertEqual(ids(self.store.visible_items(show_deleted=True)), ["a", "a1", "a2"])

    def test_toggle_edit_opens_one_row(self):
        self.store.toggle_edit("a1")
        self.store.toggle_edit("a2")
        self.assertEqual(self.store.session.editing, {"a2"})
        self.store.toggle_edit("a2")
        self.assertEqual(self.store.session.editing, set())

    def test_save_row_closes_row_and_marks_dirty(self):
        self.store.toggle_edit("a1")
        self.store.save_row("a1")
        self.assertFalse(self.store.session.is_editing("a1"))
        self.assertTrue(self.store.dirty)

    def test_update_field(self):
        updated = self.store.update_field("a1", "description", "Galian tanah")
        self.assertEqual(updated.description, "Galian tanah")
        self.assertEqual(self.store.get("a1").description, "Galian tanah")
        self.assertTrue(self.store.dirty)

    def test_update_field_rejects_immutable_and_unknown(self):
        for field_name in ("id", "type", "colour"):
            with self.subTest(field=field_name):
                with self.assertRaises(ValidationError):
                    self.store.update_field("a1", field_name, "x")

    def test_update_field_rejects_price_on_category(self):
        with self.assertRaises(ValidationError):
            self.store.update_field("a", "unit_price", "100")

    def test_update_field_rejects_negative_price(self):
        with self.assertRaises(ValidationError):
            self.store.update_field("a1", "unit_price", "-1")
        self.assertEqual(self.store.get("a1").unit_price, Decimal("100"))

    def test_apply_cell_input_price_becomes_manual(self):
        self.store.write_items([self.store.get("a1").with_changes(price_source=PriceSource.AHS)])
        updated = self.store.apply_cell_input("a1", "unit_price", "=1000/3")
        self.assertEqual(updated.unit_price, Decimal("333"))
        self.assertEqual(updated.price_source, PriceSource.MANUAL)

    def test_apply_cell_input_invalid_leaves_item(self):
        before = self.store.items
        with self.assertRaises(ValidationError):
            self.store.apply_cell_input("a1", "quantity", "=2+x")
        self.assertEqual(self.store.items, before)

    def test_commit_discards_deleted_and_clears_session(self):
        self.store.toggle_delete("a2")
        self.store.toggle_edit("a1")
        committed = self.store.commit()
        self.assertEqual(ids(committed), ["a", "a1"])
        self.assertEqual(self.store.session.to_dict(), EditSession().to_dict())
        self.assertFalse(self.store.dirty)

    def test_state_round_trip_keeps_session(self):
        self.store.toggle_delete("a2")
        restored = LineItemStore.from_state(self.store.to_state())
        self.assertEqual(restored.items, self.store.items)
        self.assertTrue(restored.session.is_deleted("a2"))
        self.assertTrue(restored.dirty)


class GuardTests(SimpleTestCase):
    def test_blocked_mutations_leave_items_unchanged(self):
        store = LineItemStore(
            [category("a"), work("a1", "1", "10", indent=1)],
            guard=lambda: "Dokumen terkunci.",
        )
        before = store.to_state()
        operations = [
            store.insert_category,
            store.insert_item,
            lambda: store.insert_sub_item("a"),
            lambda: store.move_item(1, UP),
            lambda: store.move_block(0, DOWN),
            lambda: store.toggle_delete("a1"),
            lambda: store.update_field("a1", "note", "x"),
            lambda: store.apply_cell_input("a1", "quantity", "3"),
            lambda: store.replace_all([]),
            store.commit,
        ]
        for operation in operations:
            with self.assertRaises(MutationBlocked):
                operation()
        self.assertEqual(store.to_state(), before)

    def test_blocked_hook_receives_action_and_reason(self):
        blocked = []
        store = LineItemStore(
            [work("a1")],
            guard=lambda: "Dokumen terkunci.",
            on_blocked=lambda action, reason: blocked.append((action, reason)),
        )
        with self.assertLogs("rab_items.services.item_store", level="WARNING"):
            with self.assertRaises(MutationBlocked):
                store.toggle_delete("a1")
        self.assertEqual(blocked, [("toggle_delete", "Dokumen terkunci.")])

    def test_guard_can_be_lifted(self):
        store = LineItemStore([work("a1")], guard=lambda: "Dokumen terkunci.")
        store.set_guard(None)
        self.assertTrue(store.toggle_delete("a1"))
