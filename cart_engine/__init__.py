"""
Cart Engine

Client-side cart and checkout consistency engine: optimistic cart
mutations, offline retry queue, server reconciliation and a validated
checkout flow.
"""

from .core import Settings, get_settings, SessionManager, MemoryStorage, FileStorage, create_storage
from .exceptions import CartEngineError, BackendError, StorageError, CheckoutError, SessionClosedError
from .services import (
    CartModel,
    CartValidator,
    CartBackend,
    HttpCartBackend,
    OfflineActionQueue,
    SyncCoordinator,
    CartController,
    create_cart_controller,
    CheckoutStateMachine,
    CheckoutRepository,
)

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "get_settings",
    "SessionManager",
    "MemoryStorage",
    "FileStorage",
    "create_storage",
    "CartEngineError",
    "BackendError",
    "StorageError",
    "CheckoutError",
    "SessionClosedError",
    "CartModel",
    "CartValidator",
    "CartBackend",
    "HttpCartBackend",
    "OfflineActionQueue",
    "SyncCoordinator",
    "CartController",
    "create_cart_controller",
    "CheckoutStateMachine",
    "CheckoutRepository",
]
