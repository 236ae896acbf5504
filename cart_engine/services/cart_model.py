"""
Cart state and pricing rules.

CartModel owns the local CartState and re-derives every computed field
after each structural mutation. Invalid input is clamped or ignored,
operations never raise.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..models.cart import CartItem, CartState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponRule:
    """Fixed discount rule"""
    code: str
    percent: float = 0.0
    flat: float = 0.0
    min_subtotal: float = 0.0

    def discount_for(self, subtotal: float) -> float:
        if subtotal < self.min_subtotal:
            return 0.0
        if self.percent:
            return round(subtotal * self.percent, 2)
        return min(self.flat, subtotal)


COUPON_RULES: dict[str, CouponRule] = {
    "SAVE10": CouponRule(code="SAVE10", percent=0.10),
    "FESTIVE20": CouponRule(code="FESTIVE20", percent=0.20, min_subtotal=100),
    "WELCOME50": CouponRule(code="WELCOME50", flat=50, min_subtotal=200),
}


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def compute_coupon_discount(subtotal: float, code: Optional[str]) -> float:
    """Discount a coupon code yields at the given subtotal (0 if unknown)"""
    rule = COUPON_RULES.get(normalize_code(code))
    if rule is None:
        return 0.0
    return rule.discount_for(subtotal)


class CartModel:
    """Single local cart for a session"""

    def __init__(self, state: Optional[CartState] = None):
        self._state = state.model_copy(deep=True) if state else CartState()
        self.recompute()

    @property
    def state(self) -> CartState:
        """Live state; treat as read-only"""
        return self._state

    def snapshot(self) -> CartState:
        """Detached copy of the current state"""
        return self._state.model_copy(deep=True)

    def load(self, state: CartState) -> CartState:
        """Replace the whole state (hydration) and recompute"""
        self._state = state.model_copy(deep=True)
        self.recompute()
        return self.snapshot()

    # ==================== Items ====================

    def add_item(
        self,
        id: str,
        title: str,
        price: float,
        quantity: int = 1,
        image_url: Optional[str] = None,
    ) -> CartState:
        """Add an item, or increase its quantity if already in the cart"""
        if quantity <= 0:
            logger.debug(f"Ignoring add of {id} with non-positive quantity {quantity}")
            return self.snapshot()

        existing = self._state.find_item(id)
        if existing:
            existing.quantity += quantity
        else:
            self._state.items.append(
                CartItem(
                    id=id,
                    title=title,
                    price=max(0.0, price),
                    image_url=image_url,
                    quantity=quantity,
                )
            )

        self.recompute()
        return self.snapshot()

    def remove_item(self, id: str) -> CartState:
        """Remove an item by id"""
        self._state.items = [i for i in self._state.items if i.id != id]
        self.recompute()
        return self.snapshot()

    def set_quantity(self, id: str, quantity: int) -> CartState:
        """Set an item's quantity, clamped to at least 1"""
        item = self._state.find_item(id)
        if item:
            item.quantity = max(1, quantity)
            self.recompute()
        return self.snapshot()

    def replace_items(self, items: Iterable[CartItem]) -> CartState:
        """Replace the line items wholesale, keeping saved items and codes"""
        self._state.items = [
            CartItem(
                id=i.id,
                title=i.title,
                price=i.price,
                image_url=i.image_url,
                quantity=i.quantity,
            )
            for i in items
        ]
        self.recompute()
        return self.snapshot()

    def clear(self) -> CartState:
        """Empty the cart; codes are revalidated against a zero subtotal"""
        self._state.items = []
        self.recompute()
        return self.snapshot()

    # ==================== Coupons & gift cards ====================

    def apply_coupon(self, code: str) -> CartState:
        """
        Apply a coupon from the rule table.

        A code is only stored when it yields a discount now; rejected and
        unknown codes leave no trace.
        """
        normalized = normalize_code(code)
        discount = compute_coupon_discount(self._state.subtotal, normalized)
        self._state.coupon_code = normalized if discount > 0 else None
        self._state.coupon_discount = discount
        self._clamp_gift_card()
        return self.snapshot()

    def clear_coupon(self) -> CartState:
        self._state.coupon_code = None
        self._state.coupon_discount = 0.0
        return self.snapshot()

    def apply_gift_card(self, code: str, amount: float) -> CartState:
        """Apply a gift card, capped at the amount left after the coupon"""
        applied = min(max(0.0, round(amount, 2)), self._gift_card_ceiling())
        self._state.gift_card_code = normalize_code(code) if applied > 0 else None
        self._state.gift_card_amount_applied = applied
        return self.snapshot()

    def clear_gift_card(self) -> CartState:
        self._state.gift_card_code = None
        self._state.gift_card_amount_applied = 0.0
        return self.snapshot()

    # ==================== Save for later ====================

    def save_for_later(self, id: str) -> CartState:
        """Move an item to the saved list (displayed with quantity 1)"""
        item = self._state.find_item(id)
        if item:
            self._state.items.remove(item)
            if not any(s.id == id for s in self._state.saved):
                self._state.saved.append(item.model_copy(update={"quantity": 1}))
            self.recompute()
        return self.snapshot()

    def move_to_cart(self, id: str) -> CartState:
        """Move a saved item back, merging with an existing line"""
        saved = next((s for s in self._state.saved if s.id == id), None)
        if saved:
            self._state.saved.remove(saved)
            existing = self._state.find_item(id)
            if existing:
                existing.quantity += 1
            else:
                self._state.items.append(saved.model_copy(update={"quantity": 1}))
            self.recompute()
        return self.snapshot()

    def remove_saved(self, id: str) -> CartState:
        self._state.saved = [s for s in self._state.saved if s.id != id]
        return self.snapshot()

    # ==================== Derived fields ====================

    def recompute(self) -> CartState:
        """Re-derive totals, coupon discount and gift card cap"""
        state = self._state
        state.subtotal = sum(item.price * item.quantity for item in state.items)
        state.total_quantity = sum(item.quantity for item in state.items)
        # Stored coupon is re-evaluated against the current subtotal
        state.coupon_discount = compute_coupon_discount(state.subtotal, state.coupon_code)
        self._clamp_gift_card()
        return state

    def _gift_card_ceiling(self) -> float:
        return round(max(0.0, self._state.subtotal - self._state.coupon_discount), 2)

    def _clamp_gift_card(self) -> None:
        state = self._state
        ceiling = self._gift_card_ceiling()
        if state.gift_card_amount_applied > ceiling:
            state.gift_card_amount_applied = ceiling
        if state.gift_card_amount_applied <= 0:
            state.gift_card_amount_applied = 0.0
            state.gift_card_code = None

    # ==================== Read-only projections ====================

    @property
    def items(self) -> list[CartItem]:
        return list(self._state.items)

    @property
    def subtotal(self) -> float:
        return self._state.subtotal

    @property
    def total_quantity(self) -> int:
        return self._state.total_quantity

    @property
    def total(self) -> float:
        return self._state.total

    def item_ids(self) -> set[str]:
        return {i.id for i in self._state.items}
