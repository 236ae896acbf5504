"""Cart models"""

from pydantic import BaseModel, Field
from typing import Optional


class CartItem(BaseModel):
    """Line item in the shopper's cart"""
    id: str
    title: str
    price: float = Field(ge=0)
    image_url: Optional[str] = None
    quantity: int = Field(default=1, gt=0)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class CartState(BaseModel):
    """
    Snapshot of the local cart.

    subtotal, total_quantity and the discount amounts are derived by
    CartModel and are never set directly by callers.
    """
    items: list[CartItem] = []
    saved: list[CartItem] = []
    subtotal: float = 0.0
    total_quantity: int = 0
    coupon_code: Optional[str] = None
    coupon_discount: float = 0.0
    gift_card_code: Optional[str] = None
    gift_card_amount_applied: float = 0.0

    @property
    def total(self) -> float:
        """Amount payable after coupon and gift card"""
        return round(max(0.0, self.subtotal - self.coupon_discount - self.gift_card_amount_applied), 2)

    @property
    def coupon_active(self) -> bool:
        """A stored coupon that currently yields a discount"""
        return bool(self.coupon_code) and self.coupon_discount > 0

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)


class ServerCartItem(CartItem):
    """Line item as returned by the backend"""
    available: bool = True


class CartSnapshot(BaseModel):
    """Authoritative cart returned by every backend cart endpoint"""
    items: list[ServerCartItem] = []
    subtotal: float = 0.0
    total_quantity: int = 0

    def find_item(self, item_id: str) -> Optional[ServerCartItem]:
        return next((item for item in self.items if item.id == item_id), None)
