"""CartModel tests"""

import pytest

from cart_engine.models.cart import CartState
from cart_engine.services.cart_model import CartModel, compute_coupon_discount


def assert_totals_consistent(state: CartState):
    assert state.subtotal == pytest.approx(sum(i.price * i.quantity for i in state.items))
    assert state.total_quantity == sum(i.quantity for i in state.items)


class TestItems:
    """Item mutations and derived totals"""

    def test_totals_hold_after_every_mutation(self):
        model = CartModel()
        steps = [
            lambda: model.add_item("p1", "Headphones", 50.0),
            lambda: model.add_item("p2", "Sweater", 80.0, quantity=2),
            lambda: model.set_quantity("p1", 4),
            lambda: model.add_item("p3", "Book", 19.99, quantity=3),
            lambda: model.remove_item("p2"),
            lambda: model.set_quantity("p3", 1),
            lambda: model.remove_item("missing"),
        ]
        for step in steps:
            assert_totals_consistent(step())

        assert model.subtotal == pytest.approx(4 * 50.0 + 19.99)
        assert model.total_quantity == 5

    def test_duplicate_add_merges_into_one_line(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0, quantity=1)
        state = model.add_item("p1", "Headphones", 50.0, quantity=2)

        assert len(state.items) == 1
        assert state.items[0].quantity == 3

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_add_is_ignored(self, quantity):
        model = CartModel()
        state = model.add_item("p1", "Headphones", 50.0, quantity=quantity)
        assert state.items == []

    def test_set_quantity_clamps_to_one(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0, quantity=3)
        state = model.set_quantity("p1", 0)
        assert state.find_item("p1").quantity == 1

    def test_snapshot_is_detached(self):
        model = CartModel()
        snapshot = model.add_item("p1", "Headphones", 50.0)
        snapshot.items[0].quantity = 10
        assert model.state.find_item("p1").quantity == 1

    def test_clear_empties_items_and_voids_discounts(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 150.0)
        model.apply_coupon("SAVE10")
        model.apply_gift_card("GIFT-1234", 20)

        state = model.clear()

        assert state.items == []
        assert state.subtotal == 0
        assert state.coupon_discount == 0
        assert state.gift_card_amount_applied == 0
        assert state.gift_card_code is None

    def test_recompute_is_idempotent(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 33.33, quantity=3)
        model.apply_coupon("SAVE10")
        model.apply_gift_card("GIFT-1234", 10)

        first = model.recompute().model_dump()
        second = model.recompute().model_dump()
        assert first == second


class TestCoupons:
    """Coupon rules and re-evaluation"""

    def test_rule_table(self):
        assert compute_coupon_discount(100, "SAVE10") == 10
        assert compute_coupon_discount(99, "FESTIVE20") == 0
        assert compute_coupon_discount(150, "festive20") == 30
        assert compute_coupon_discount(199, "WELCOME50") == 0
        assert compute_coupon_discount(200, " welcome50 ") == 50
        assert compute_coupon_discount(500, "BOGUS") == 0

    def test_code_is_normalized(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0)
        state = model.apply_coupon("  save10 ")
        assert state.coupon_code == "SAVE10"
        assert state.coupon_discount == 5

    def test_rejected_code_is_not_stored(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0)

        assert model.apply_coupon("WELCOME50").coupon_code is None
        assert model.apply_coupon("NOPE").coupon_code is None

    def test_disqualified_coupon_stays_stored_and_requalifies(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 70.0)
        model.add_item("p2", "Sweater", 80.0)

        state = model.apply_coupon("FESTIVE20")
        assert state.coupon_discount == 30

        state = model.remove_item("p1")
        assert state.subtotal == 80
        assert state.coupon_discount == 0
        assert state.coupon_code == "FESTIVE20"
        assert not state.coupon_active

        state = model.add_item("p1", "Headphones", 70.0)
        assert state.coupon_discount == 30
        assert state.coupon_active

    def test_clear_coupon(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0)
        model.apply_coupon("SAVE10")
        state = model.clear_coupon()
        assert state.coupon_code is None
        assert state.coupon_discount == 0


class TestGiftCards:
    """Gift card capping"""

    def test_capped_at_subtotal_minus_coupon(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 100.0)
        model.apply_coupon("FESTIVE20")

        state = model.apply_gift_card("GIFT-1234", 90)

        assert state.coupon_discount == 20
        assert state.gift_card_amount_applied == 80
        assert state.total == 0

    def test_zero_amount_does_not_store_code(self):
        model = CartModel()
        state = model.apply_gift_card("GIFT-1234", 25)
        assert state.gift_card_code is None
        assert state.gift_card_amount_applied == 0

    def test_reclamped_when_subtotal_drops(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 60.0)
        model.add_item("p2", "Book", 40.0)
        model.apply_gift_card("GIFT-1234", 90)

        state = model.remove_item("p1")

        assert state.gift_card_amount_applied == 40
        assert state.gift_card_code == "GIFT-1234"

    def test_amount_rounded(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 60.0)
        state = model.apply_gift_card("GIFT-1234", 10.333)
        assert state.gift_card_amount_applied == 10.33


class TestSaveForLater:
    def test_save_and_move_back(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0, quantity=2)

        state = model.save_for_later("p1")
        assert state.items == []
        assert state.saved[0].id == "p1"
        assert state.saved[0].quantity == 1

        state = model.move_to_cart("p1")
        assert state.saved == []
        assert state.find_item("p1").quantity == 1

    def test_move_back_merges_with_existing_line(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0)
        model.save_for_later("p1")
        model.add_item("p1", "Headphones", 50.0, quantity=2)

        state = model.move_to_cart("p1")
        assert len(state.items) == 1
        assert state.find_item("p1").quantity == 3

    def test_remove_saved(self):
        model = CartModel()
        model.add_item("p1", "Headphones", 50.0)
        model.save_for_later("p1")
        assert model.remove_saved("p1").saved == []
