"""Cart validation result models"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class IssueType(str, Enum):
    STOCK = "stock"
    PRICE = "price"
    AVAILABILITY = "availability"
    QUANTITY = "quantity"
    PRODUCT = "product"
    COUPON = "coupon"
    GIFT_CARD = "gift_card"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    """A single validation finding"""
    type: IssueType
    message: str
    item_id: Optional[str] = None
    field: Optional[str] = None
    value: Optional[Any] = None


class CartValidationResult(BaseModel):
    """Errors block checkout, warnings are informational"""
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def total_errors(self) -> int:
        return len(self.errors)

    @property
    def total_warnings(self) -> int:
        return len(self.warnings)

    def merge(self, other: "CartValidationResult") -> "CartValidationResult":
        return CartValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


class StockValidation(BaseModel):
    available: bool
    stock: int
    reserved: int
    message: Optional[str] = None


class PriceValidation(BaseModel):
    current_price: float
    cart_price: float
    has_changed: bool
    discount: Optional[float] = None


class ProductValidation(BaseModel):
    exists: bool
    active: bool
    available: bool
    discontinued: bool


class ValidationSummary(BaseModel):
    can_proceed: bool
    critical_issues: int
    warnings: int
    summary: str
