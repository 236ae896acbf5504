"""Cart API routes"""

import logging

from fastapi import APIRouter, HTTPException, Header

from ..models.cart import AddCartItemRequest, CartDto, UpdateQuantityRequest
from ..models.product import Product
from ..database.carts import cart_db
from ..database.products import product_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["Cart"])

DEFAULT_USER_ID = "demo-user"


def _get_purchasable_product(product_id: str) -> Product:
    product = product_db.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if not product.purchasable:
        raise HTTPException(status_code=400, detail=f"{product.name} is not available")
    return product


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > product.available_stock:
        raise HTTPException(
            status_code=400,
            detail=f"Insufficient stock. Available: {product.available_stock}",
        )


@router.get("", response_model=CartDto)
async def get_cart(x_user_id: str = Header(DEFAULT_USER_ID)):
    """Get the user's cart"""
    return cart_db.to_dto(cart_db.get_or_create_cart(x_user_id))


@router.post("/items", response_model=CartDto)
async def add_to_cart(request: AddCartItemRequest, x_user_id: str = Header(DEFAULT_USER_ID)):
    """Add an item to the cart"""
    product = _get_purchasable_product(request.product_id)

    existing = cart_db.get_line(x_user_id, product.id)
    _check_stock(product, request.quantity + (existing.quantity if existing else 0))

    cart = cart_db.add_item(x_user_id, product, request.quantity)
    logger.info(f"Added {request.quantity}x {product.id} to cart of {x_user_id}")
    return cart_db.to_dto(cart)


@router.patch("/items/{item_id}", response_model=CartDto)
async def update_cart_item(
    item_id: str,
    request: UpdateQuantityRequest,
    x_user_id: str = Header(DEFAULT_USER_ID),
):
    """Set an item's quantity; zero or less removes it"""
    if request.quantity > 0:
        _check_stock(_get_purchasable_product(item_id), request.quantity)

    cart = cart_db.update_item_quantity(x_user_id, item_id, request.quantity)
    if not cart:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return cart_db.to_dto(cart)


@router.delete("/items/{item_id}", response_model=CartDto)
async def remove_from_cart(item_id: str, x_user_id: str = Header(DEFAULT_USER_ID)):
    """Remove an item from the cart"""
    return cart_db.to_dto(cart_db.remove_item(x_user_id, item_id))


@router.delete("", response_model=CartDto)
async def clear_cart(x_user_id: str = Header(DEFAULT_USER_ID)):
    """Clear all items from cart"""
    return cart_db.to_dto(cart_db.clear_cart(x_user_id))
