"""Cart models for the cart server"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CartLine(BaseModel):
    """Stored line of a user's cart"""
    product_id: str
    quantity: int = Field(gt=0)


class Cart(BaseModel):
    """Stored cart, one per user"""
    user_id: str
    lines: list[CartLine] = []
    created_at: datetime
    updated_at: datetime


class CartItemDto(BaseModel):
    """Cart line as returned to clients"""
    id: str
    title: str
    price: float
    image_url: Optional[str] = None
    quantity: int
    available: bool = True


class CartDto(BaseModel):
    """Authoritative cart snapshot returned by every cart endpoint"""
    items: list[CartItemDto] = []
    subtotal: float = 0.0
    total_quantity: int = 0


class AddCartItemRequest(BaseModel):
    """Request to add item to cart"""
    product_id: str
    quantity: int = Field(default=1, gt=0)


class UpdateQuantityRequest(BaseModel):
    """Request to set a line's quantity; zero or less removes the line"""
    quantity: int
