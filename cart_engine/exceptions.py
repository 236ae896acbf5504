"""Cart engine exceptions"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models.backend import BackendFailure


class CartEngineError(Exception):
    """Base exception for cart engine errors"""
    pass


class BackendError(CartEngineError):
    """A backend call returned a failure variant"""

    def __init__(self, failure: "BackendFailure"):
        super().__init__(f"{failure.operation} failed ({failure.kind.value}): {failure.message}")
        self.failure = failure

    @property
    def retryable(self) -> bool:
        return self.failure.retryable


class StorageError(CartEngineError):
    """Storage backend could not read or write a value"""
    pass


class CheckoutError(CartEngineError):
    """Checkout state machine was driven into an invalid transition"""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.step_id = step_id


class SessionClosedError(CartEngineError):
    """A command was issued against a controller that has been shut down"""
    pass
