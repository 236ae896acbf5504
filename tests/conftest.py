"""Shared fixtures for the cart engine and cart server tests"""

import asyncio
from typing import Optional

import pytest

from cart_engine.core.config import Settings
from cart_engine.core.session import SessionManager
from cart_engine.core.storage import MemoryStorage
from cart_engine.models.backend import BackendFailure, BackendSuccess, FailureKind
from cart_engine.models.cart import CartSnapshot, ServerCartItem
from cart_engine.models.product import Product
from cart_engine.services.backend import CartBackend
from cart_engine.services.controller import CartController
from cart_server.database import cart_db, product_db


class FakeCartBackend(CartBackend):
    """
    In-process cart service.

    Mutations are applied when the call is made. With hold enabled each
    response waits on an asyncio.Event appended to `held`, so tests
    decide the order in which confirmations arrive.
    """

    def __init__(self):
        self.catalog: dict[str, Product] = {}
        self.carts: dict[str, dict[str, int]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: list[FailureKind] = []
        self.offline = False
        self.hold = False
        self.held: list[asyncio.Event] = []

    def add_product(self, id: str, name: str, price: float, stock: int = 100, **kwargs) -> Product:
        product = Product(id=id, name=name, price=price, stock=stock, **kwargs)
        self.catalog[id] = product
        return product

    def snapshot(self, user_id: str) -> CartSnapshot:
        items = [
            ServerCartItem(
                id=pid,
                title=self.catalog[pid].name,
                price=self.catalog[pid].price,
                quantity=quantity,
                available=self.catalog[pid].available,
            )
            for pid, quantity in self.carts.get(user_id, {}).items()
        ]
        return CartSnapshot(
            items=items,
            subtotal=round(sum(i.price * i.quantity for i in items), 2),
            total_quantity=sum(i.quantity for i in items),
        )

    async def _respond(self, operation: str, user_id: str, mutate=None, product_id: Optional[str] = None):
        self.calls.append((operation, user_id))
        if self.offline:
            result = BackendFailure(FailureKind.NETWORK, "connection refused", operation)
        elif self.failures:
            result = BackendFailure(self.failures.pop(0), "scripted failure", operation)
        elif product_id is not None and product_id not in self.catalog:
            result = BackendFailure(FailureKind.CLIENT, "Product not found", operation, 404)
        else:
            if mutate:
                mutate(self.carts.setdefault(user_id, {}))
            result = BackendSuccess(self.snapshot(user_id), operation)

        if self.hold:
            gate = asyncio.Event()
            self.held.append(gate)
            await gate.wait()
        return result

    async def fetch_cart(self, user_id):
        return await self._respond("fetch_cart", user_id)

    async def add_item(self, user_id, product_id, quantity=1):
        def mutate(lines):
            lines[product_id] = lines.get(product_id, 0) + quantity
        return await self._respond("add_item", user_id, mutate, product_id)

    async def set_quantity(self, user_id, item_id, quantity):
        def mutate(lines):
            if quantity <= 0:
                lines.pop(item_id, None)
            else:
                lines[item_id] = quantity
        return await self._respond("set_quantity", user_id, mutate, item_id)

    async def remove_item(self, user_id, item_id):
        return await self._respond("remove_item", user_id, lambda lines: lines.pop(item_id, None))

    async def clear_cart(self, user_id):
        return await self._respond("clear_cart", user_id, lambda lines: lines.clear())

    async def get_products(self, product_ids):
        return BackendSuccess([self.catalog[pid] for pid in product_ids if pid in self.catalog], "get_products")


@pytest.fixture
def settings():
    """Settings with zero backoff so retries are immediately due"""
    return Settings(
        _env_file=None,
        retry_base_delay=0,
        retry_max_delay=0,
        retry_jitter=0,
        initial_load_timeout=0.05,
        max_retries=3,
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def backend():
    fake = FakeCartBackend()
    fake.add_product("p1", "Headphones", 50.0)
    fake.add_product("p2", "Sweater", 80.0)
    fake.add_product("p3", "Book", 20.0)
    return fake


@pytest.fixture
def session_manager(storage, settings):
    return SessionManager(storage, settings.default_user_id)


@pytest.fixture
async def controller(backend, storage, settings, session_manager):
    ctrl = CartController(backend, storage, settings, session_manager)
    yield ctrl
    await ctrl.close()


@pytest.fixture
def settle():
    """Let scheduled tasks run up to their next real suspension point"""
    async def _settle(rounds: int = 10):
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


@pytest.fixture
def reset_server():
    product_db.reset()
    cart_db.reset()
    yield
    product_db.reset()
    cart_db.reset()
