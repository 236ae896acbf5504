"""Checkout models"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .cart import CartItem


class StepId(str, Enum):
    CART = "cart"
    SHIPPING = "shipping"
    BILLING = "billing"
    PAYMENT = "payment"
    REVIEW = "review"


STEP_ORDER = [StepId.CART, StepId.SHIPPING, StepId.BILLING, StepId.PAYMENT, StepId.REVIEW]


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentType(str, Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    COD = "cod"


class Address(BaseModel):
    """Shipping or billing address"""
    name: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "US"
    phone: Optional[str] = None


class ShippingMethod(BaseModel):
    id: str
    name: str
    description: str
    cost: float = Field(ge=0)
    estimated_days: str  # "5-7" or "1"
    is_available: bool = True
    tracking_available: bool = True

    @property
    def min_days(self) -> int:
        return int(self.estimated_days.split("-")[0])


class PaymentMethodOption(BaseModel):
    id: str
    type: PaymentType
    name: str
    description: str
    is_available: bool = True
    processing_fee: float = 0.0


class CardDetails(BaseModel):
    number: str
    expiry_month: int = Field(ge=1, le=12)
    expiry_year: int
    cvv: str
    name: str


class PaymentDetails(BaseModel):
    method: PaymentType
    card: Optional[CardDetails] = None
    upi_id: Optional[str] = None
    bank: Optional[str] = None
    wallet_provider: Optional[str] = None


class StepValidation(BaseModel):
    is_valid: bool = False
    errors: list[str] = []
    warnings: list[str] = []
    required: list[str] = []


class CheckoutStep(BaseModel):
    id: StepId
    title: str
    description: str
    order: int
    is_completed: bool = False
    is_active: bool = False
    is_optional: bool = False
    validation: StepValidation = Field(default_factory=StepValidation)


# ==================== Checkout data sections ====================

class CartSection(BaseModel):
    items: list[CartItem] = []
    subtotal: float = 0.0
    discount: float = 0.0
    total: float = 0.0


class ShippingSection(BaseModel):
    address: Optional[Address] = None
    method: Optional[ShippingMethod] = None
    cost: float = 0.0


class BillingSection(BaseModel):
    address: Optional[Address] = None
    same_as_shipping: bool = True


class PaymentSection(BaseModel):
    method: Optional[PaymentMethodOption] = None
    details: Optional[PaymentDetails] = None


class OrderSection(BaseModel):
    status: OrderStatus = OrderStatus.PENDING
    confirmation_number: Optional[str] = None
    estimated_delivery: Optional[date] = None


class CheckoutData(BaseModel):
    cart: CartSection = Field(default_factory=CartSection)
    shipping: ShippingSection = Field(default_factory=ShippingSection)
    billing: BillingSection = Field(default_factory=BillingSection)
    payment: PaymentSection = Field(default_factory=PaymentSection)
    order: OrderSection = Field(default_factory=OrderSection)


class CheckoutState(BaseModel):
    """Read-only projection for the presentation layer"""
    current_step: int
    steps: list[CheckoutStep]
    is_completed: bool
    can_proceed: bool
    has_errors: bool
    progress: float


class CheckoutSummary(BaseModel):
    items: int
    subtotal: float
    shipping: float
    tax: float
    discount: float
    processing_fee: float
    total: float
    estimated_delivery: Optional[date] = None


class CheckoutConfirmation(BaseModel):
    """Stamp produced by a completed checkout"""
    confirmation_number: str
    user_id: Optional[str] = None
    total: float
    items: list[CartItem]
    shipping_method: Optional[str] = None
    estimated_delivery: Optional[date] = None
    created_at: datetime
