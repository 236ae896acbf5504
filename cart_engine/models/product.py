"""Product models used for cart validation"""

from pydantic import BaseModel, Field
from typing import Optional


class Product(BaseModel):
    """Live product data from the catalog"""
    id: str
    name: str
    price: float = Field(ge=0)
    currency: str = "USD"
    image_url: Optional[str] = None
    stock: int = Field(ge=0, default=0)
    reserved: int = Field(ge=0, default=0)
    active: bool = True
    available: bool = True
    discontinued: bool = False

    @property
    def available_stock(self) -> int:
        return self.stock - self.reserved
