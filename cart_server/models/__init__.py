# Cart Server Models

from .product import Product, ProductCategory
from .cart import Cart, CartLine, CartItemDto, CartDto, AddCartItemRequest, UpdateQuantityRequest

__all__ = [
    "Product",
    "ProductCategory",
    "Cart",
    "CartLine",
    "CartItemDto",
    "CartDto",
    "AddCartItemRequest",
    "UpdateQuantityRequest",
]
