"""Product models for the cart server"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class ProductCategory(str, Enum):
    ELECTRONICS = "electronics"
    CLOTHING = "clothing"
    HOME = "home"
    SPORTS = "sports"
    BOOKS = "books"


class Product(BaseModel):
    """Product in the catalog"""
    id: str
    name: str
    description: str = ""
    price: float = Field(ge=0)
    currency: str = "USD"
    category: ProductCategory
    sku: str
    image_url: Optional[str] = None
    stock: int = Field(ge=0, default=100)
    reserved: int = Field(ge=0, default=0)
    active: bool = True
    available: bool = True
    discontinued: bool = False

    @property
    def available_stock(self) -> int:
        return max(0, self.stock - self.reserved)

    @property
    def purchasable(self) -> bool:
        return self.active and self.available
