# Cart Engine Services

from .cart_model import CartModel, CouponRule, COUPON_RULES, compute_coupon_discount
from .validator import CartValidator
from .persistence import CartPersistence
from .backend import CartBackend, HttpCartBackend
from .offline_queue import OfflineActionQueue
from .sync import SyncCoordinator, reconcile, merge_confirmation
from .controller import CartController, create_cart_controller
from .checkout import CheckoutStateMachine, CheckoutRepository

__all__ = [
    "CartModel",
    "CouponRule",
    "COUPON_RULES",
    "compute_coupon_discount",
    "CartValidator",
    "CartPersistence",
    "CartBackend",
    "HttpCartBackend",
    "OfflineActionQueue",
    "SyncCoordinator",
    "reconcile",
    "merge_confirmation",
    "CartController",
    "create_cart_controller",
    "CheckoutStateMachine",
    "CheckoutRepository",
]
