"""Cart storage for the cart server"""

from datetime import datetime, timezone
from typing import Optional

from ..models.cart import Cart, CartDto, CartItemDto, CartLine
from ..models.product import Product
from .products import ProductDatabase, product_db


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CartDatabase:
    """In-memory carts keyed by user id"""

    def __init__(self, products: ProductDatabase = product_db):
        self.products = products
        self.carts: dict[str, Cart] = {}

    def reset(self) -> None:
        self.carts = {}

    def get_or_create_cart(self, user_id: str) -> Cart:
        """Get the user's cart, creating an empty one"""
        cart = self.carts.get(user_id)
        if cart is None:
            now = _now()
            cart = Cart(user_id=user_id, lines=[], created_at=now, updated_at=now)
            self.carts[user_id] = cart
        return cart

    def get_line(self, user_id: str, product_id: str) -> Optional[CartLine]:
        cart = self.get_or_create_cart(user_id)
        return next((line for line in cart.lines if line.product_id == product_id), None)

    def add_item(self, user_id: str, product: Product, quantity: int = 1) -> Cart:
        """Add an item to the cart, merging with an existing line"""
        cart = self.get_or_create_cart(user_id)
        existing = self.get_line(user_id, product.id)
        if existing:
            existing.quantity += quantity
        else:
            cart.lines.append(CartLine(product_id=product.id, quantity=quantity))
        cart.updated_at = _now()
        return cart

    def update_item_quantity(self, user_id: str, product_id: str, quantity: int) -> Optional[Cart]:
        """Update item quantity; zero or less removes the line"""
        cart = self.get_or_create_cart(user_id)
        line = self.get_line(user_id, product_id)
        if not line:
            return None

        if quantity <= 0:
            cart.lines = [line for line in cart.lines if line.product_id != product_id]
        else:
            line.quantity = quantity
        cart.updated_at = _now()
        return cart

    def remove_item(self, user_id: str, product_id: str) -> Cart:
        """Remove an item; removing a missing item is not an error"""
        cart = self.get_or_create_cart(user_id)
        cart.lines = [line for line in cart.lines if line.product_id != product_id]
        cart.updated_at = _now()
        return cart

    def clear_cart(self, user_id: str) -> Cart:
        """Clear all items from cart"""
        cart = self.get_or_create_cart(user_id)
        cart.lines = []
        cart.updated_at = _now()
        return cart

    def to_dto(self, cart: Cart) -> CartDto:
        """Price the cart against the current catalog"""
        items = []
        for line in cart.lines:
            product = self.products.get_product(line.product_id)
            if product is None:
                continue
            items.append(
                CartItemDto(
                    id=product.id,
                    title=product.name,
                    price=product.price,
                    image_url=product.image_url,
                    quantity=line.quantity,
                    available=product.purchasable,
                )
            )
        return self._recalculate_totals(items)

    @staticmethod
    def _recalculate_totals(items: list[CartItemDto]) -> CartDto:
        return CartDto(
            items=items,
            subtotal=round(sum(i.price * i.quantity for i in items), 2),
            total_quantity=sum(i.quantity for i in items),
        )


# Singleton instance
cart_db = CartDatabase()
