"""
Cart Backend Client

The engine talks to the cart service through the CartBackend capability.
HttpCartBackend implements it over HTTP; every cart call returns the full
authoritative cart snapshot or a structured failure.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from ..models.backend import (
    BackendFailure,
    BackendSuccess,
    CartResult,
    FailureKind,
    ProductListResult,
    ProductResult,
)
from ..models.cart import CartSnapshot
from ..models.product import Product

logger = logging.getLogger(__name__)

_PRODUCT_LIST = TypeAdapter(list[Product])


class CartBackend(ABC):
    """Abstract cart service"""

    @abstractmethod
    async def fetch_cart(self, user_id: str) -> CartResult:
        ...

    @abstractmethod
    async def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> CartResult:
        ...

    @abstractmethod
    async def set_quantity(self, user_id: str, item_id: str, quantity: int) -> CartResult:
        ...

    @abstractmethod
    async def remove_item(self, user_id: str, item_id: str) -> CartResult:
        ...

    @abstractmethod
    async def clear_cart(self, user_id: str) -> CartResult:
        ...

    async def get_products(self, product_ids: list[str]) -> ProductListResult:
        """Live product data for validation; optional capability"""
        return BackendFailure(
            kind=FailureKind.CLIENT,
            message="Product lookup not supported by this backend",
            operation="get_products",
        )

    async def close(self) -> None:
        """Release transport resources"""
        return None


class HttpCartBackend(CartBackend):
    """
    HTTP implementation of the cart backend.

    Identity is sent in the x-user-id header; a bearer credential is
    attached when the credential provider returns one.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        credential_provider: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize backend client.

        Args:
            base_url: Base URL of the cart service
            timeout: Per-request timeout in seconds
            credential_provider: Returns an access token or None
            transport: Custom httpx transport (ASGI app in tests)
        """
        self.base_url = base_url.rstrip("/")
        self._credential_provider = credential_provider
        self._http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client"""
        await self._http_client.aclose()

    def _generate_headers(self, user_id: Optional[str]) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if user_id:
            headers["x-user-id"] = user_id
        token = self._credential_provider() if self._credential_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        model: Any,
        user_id: Optional[str] = None,
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ):
        """Make a request and convert the outcome into a result variant"""
        try:
            response = await self._http_client.request(
                method=method,
                url=path,
                headers=self._generate_headers(user_id),
                json=body,
                params=params,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{operation}: request timed out ({e.__class__.__name__})")
            return BackendFailure(FailureKind.TIMEOUT, str(e) or "timeout", operation)
        except httpx.TransportError as e:
            logger.warning(f"{operation}: transport error: {e}")
            return BackendFailure(FailureKind.NETWORK, str(e) or e.__class__.__name__, operation)

        if response.status_code >= 400:
            logger.error(f"{operation} failed: {response.status_code} - {response.text}")
            return BackendFailure(
                kind=self._failure_kind(response.status_code),
                message=self._error_detail(response),
                operation=operation,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            if isinstance(model, TypeAdapter):
                value = model.validate_python(payload)
            else:
                value = model.model_validate(payload)
        except (ValueError, ValidationError) as e:
            logger.error(f"{operation}: invalid response payload: {e}")
            return BackendFailure(
                FailureKind.INVALID_RESPONSE,
                f"Invalid response payload: {e}",
                operation,
                response.status_code,
            )

        return BackendSuccess(value=value, operation=operation)

    @staticmethod
    def _failure_kind(status_code: int) -> FailureKind:
        if status_code in (401, 403):
            return FailureKind.UNAUTHORIZED
        if status_code == 408:
            return FailureKind.TIMEOUT
        if status_code >= 500:
            return FailureKind.SERVER
        return FailureKind.CLIENT

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            detail = response.json().get("detail")
        except (ValueError, AttributeError):
            detail = None
        return str(detail) if detail else response.reason_phrase or f"HTTP {response.status_code}"

    # ==================== Cart APIs ====================

    async def fetch_cart(self, user_id: str) -> CartResult:
        """Get the user's cart"""
        return await self._request("fetch_cart", "GET", "/cart", CartSnapshot, user_id=user_id)

    async def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> CartResult:
        """Add item to cart"""
        return await self._request(
            "add_item",
            "POST",
            "/cart/items",
            CartSnapshot,
            user_id=user_id,
            body={"product_id": product_id, "quantity": quantity},
        )

    async def set_quantity(self, user_id: str, item_id: str, quantity: int) -> CartResult:
        """Update item quantity in cart"""
        return await self._request(
            "set_quantity",
            "PATCH",
            f"/cart/items/{item_id}",
            CartSnapshot,
            user_id=user_id,
            body={"quantity": quantity},
        )

    async def remove_item(self, user_id: str, item_id: str) -> CartResult:
        """Remove item from cart"""
        return await self._request(
            "remove_item", "DELETE", f"/cart/items/{item_id}", CartSnapshot, user_id=user_id
        )

    async def clear_cart(self, user_id: str) -> CartResult:
        """Remove every item from the cart"""
        return await self._request("clear_cart", "DELETE", "/cart", CartSnapshot, user_id=user_id)

    # ==================== Product APIs ====================

    async def get_product(self, product_id: str) -> ProductResult:
        """Get product details"""
        return await self._request("get_product", "GET", f"/products/{product_id}", Product)

    async def get_products(self, product_ids: list[str]) -> ProductListResult:
        """Get several products in one call"""
        return await self._request(
            "get_products",
            "GET",
            "/products",
            _PRODUCT_LIST,
            params={"ids": ",".join(product_ids)},
        )
