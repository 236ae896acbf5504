"""
Backend response variants.

Every CartBackend call returns either a success carrying the typed
payload or a structured failure. Callers branch on the variant instead
of catching transport exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from .cart import CartSnapshot
from .product import Product

T = TypeVar("T")


class FailureKind(str, Enum):
    """Why a backend call failed"""
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    CLIENT = "client"
    UNAUTHORIZED = "unauthorized"
    INVALID_RESPONSE = "invalid_response"


RETRYABLE_KINDS = frozenset({FailureKind.NETWORK, FailureKind.TIMEOUT, FailureKind.SERVER})


@dataclass(frozen=True)
class BackendSuccess(Generic[T]):
    """Call succeeded with an authoritative payload"""
    value: T
    operation: str = ""

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class BackendFailure:
    """Call failed at the transport or protocol boundary"""
    kind: FailureKind
    message: str
    operation: str = ""
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def unwrap(self):
        from ..exceptions import BackendError
        raise BackendError(self)


CartResult = Union[BackendSuccess[CartSnapshot], BackendFailure]
ProductResult = Union[BackendSuccess[Product], BackendFailure]
ProductListResult = Union[BackendSuccess[list[Product]], BackendFailure]
