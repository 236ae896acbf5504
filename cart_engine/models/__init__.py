# Cart Engine Models

from .cart import CartItem, CartState, CartSnapshot, ServerCartItem
from .product import Product
from .validation import (
    IssueType,
    Severity,
    ValidationIssue,
    CartValidationResult,
    ValidationSummary,
)
from .backend import (
    BackendSuccess,
    BackendFailure,
    FailureKind,
    CartResult,
    ProductResult,
    ProductListResult,
)
from .offline import ActionDomain, ActionPriority, OfflineAction, SyncPassResult, QueueStatus
from .sync import ConflictKind, Resolution, CartConflict, ReconcileResult, SyncResult, SyncStatus
from .checkout import (
    StepId,
    STEP_ORDER,
    OrderStatus,
    PaymentType,
    Address,
    ShippingMethod,
    PaymentMethodOption,
    CardDetails,
    PaymentDetails,
    StepValidation,
    CheckoutStep,
    CheckoutData,
    CheckoutState,
    CheckoutSummary,
    CheckoutConfirmation,
)

__all__ = [
    "CartItem",
    "CartState",
    "CartSnapshot",
    "ServerCartItem",
    "Product",
    "IssueType",
    "Severity",
    "ValidationIssue",
    "CartValidationResult",
    "ValidationSummary",
    "BackendSuccess",
    "BackendFailure",
    "FailureKind",
    "CartResult",
    "ProductResult",
    "ProductListResult",
    "ActionDomain",
    "ActionPriority",
    "OfflineAction",
    "SyncPassResult",
    "QueueStatus",
    "ConflictKind",
    "Resolution",
    "CartConflict",
    "ReconcileResult",
    "SyncResult",
    "SyncStatus",
    "StepId",
    "STEP_ORDER",
    "OrderStatus",
    "PaymentType",
    "Address",
    "ShippingMethod",
    "PaymentMethodOption",
    "CardDetails",
    "PaymentDetails",
    "StepValidation",
    "CheckoutStep",
    "CheckoutData",
    "CheckoutState",
    "CheckoutSummary",
    "CheckoutConfirmation",
]
