"""Reconciliation and SyncCoordinator tests"""

import asyncio

import pytest

from cart_engine.models.backend import FailureKind
from cart_engine.models.cart import CartItem, CartSnapshot, CartState, ServerCartItem
from cart_engine.models.sync import ConflictKind, Resolution
from cart_engine.services.cart_model import CartModel
from cart_engine.services.offline_queue import OfflineActionQueue
from cart_engine.services.sync import SyncCoordinator, merge_confirmation, reconcile


def local_cart(*items: CartItem, **fields) -> CartState:
    return CartModel(CartState(items=list(items), **fields)).snapshot()


def server_cart(*items: ServerCartItem) -> CartSnapshot:
    return CartSnapshot(
        items=list(items),
        subtotal=sum(i.price * i.quantity for i in items),
        total_quantity=sum(i.quantity for i in items),
    )


def item(id="1", quantity=1, price=10.0, **kwargs) -> CartItem:
    return CartItem(id=id, title=f"Item {id}", price=price, quantity=quantity, **kwargs)


def server_item(id="1", quantity=1, price=10.0, **kwargs) -> ServerCartItem:
    return ServerCartItem(id=id, title=f"Item {id}", price=price, quantity=quantity, **kwargs)


class TestReconcile:
    """Fixed resolution policy"""

    def test_quantity_conflict_local_wins(self):
        result = reconcile(local_cart(item(quantity=3)), server_cart(server_item(quantity=5)))

        assert result.merged.find_item("1").quantity == 3
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.kind == ConflictKind.QUANTITY
        assert conflict.resolution == Resolution.LOCAL
        assert (conflict.local_value, conflict.server_value) == (3, 5)

    def test_price_conflict_server_wins(self):
        result = reconcile(local_cart(item(price=10.0)), server_cart(server_item(price=12.5)))

        assert result.merged.find_item("1").price == 12.5
        assert result.merged.subtotal == 12.5
        assert [(c.kind, c.resolution) for c in result.conflicts] == [(ConflictKind.PRICE, Resolution.SERVER)]

    def test_quantity_and_price_reported_independently(self):
        result = reconcile(
            local_cart(item(quantity=2, price=10.0)),
            server_cart(server_item(quantity=4, price=11.0)),
        )

        merged = result.merged.find_item("1")
        assert (merged.quantity, merged.price) == (2, 11.0)
        assert {c.kind for c in result.conflicts} == {ConflictKind.QUANTITY, ConflictKind.PRICE}
        assert result.merged.subtotal == 22.0

    def test_local_only_item_is_kept(self):
        result = reconcile(local_cart(item("a"), item("b")), server_cart(server_item("a")))

        assert result.merged.find_item("b") is not None
        conflict = result.conflicts[0]
        assert (conflict.kind, conflict.item_id, conflict.resolution) == (ConflictKind.REMOVED, "b", Resolution.LOCAL)
        assert [c.item_id for c in result.local_wins] == ["b"]

    def test_server_only_item_is_adopted(self):
        result = reconcile(local_cart(item("a")), server_cart(server_item("a"), server_item("c", quantity=2)))

        adopted = result.merged.find_item("c")
        assert adopted.quantity == 2
        assert [i.id for i in result.merged.items] == ["a", "c"]
        assert result.conflicts[0].resolution == Resolution.SERVER
        assert result.merged.total_quantity == 3

    def test_unavailable_item_moves_to_saved(self):
        result = reconcile(
            local_cart(item("a", quantity=2), item("b")),
            server_cart(server_item("a", quantity=2, available=False), server_item("b")),
        )

        assert result.merged.find_item("a") is None
        assert [s.id for s in result.merged.saved] == ["a"]
        assert result.conflicts[0].kind == ConflictKind.AVAILABILITY
        assert result.merged.subtotal == 10.0

    def test_identical_carts_have_no_conflicts(self):
        result = reconcile(local_cart(item(quantity=2)), server_cart(server_item(quantity=2)))
        assert result.conflicts == []

    def test_discounts_rederived_after_merge(self):
        local = local_cart(item(price=120.0), coupon_code="FESTIVE20")
        assert local.coupon_discount == 24

        result = reconcile(local, server_cart(server_item(price=60.0)))
        assert result.merged.coupon_discount == 0
        assert result.merged.coupon_code == "FESTIVE20"

    def test_protected_items_are_left_alone(self):
        result = reconcile(
            local_cart(item("a", quantity=3)),
            server_cart(server_item("a", quantity=1, price=99.0), server_item("b")),
            protected_ids={"a", "b"},
        )
        assert result.conflicts == []
        assert result.merged.find_item("a").price == 10.0
        assert result.merged.find_item("b") is None

    def test_reconcile_is_pure(self):
        local = local_cart(item(quantity=3))
        reconcile(local, server_cart(server_item(quantity=5, price=20.0)))
        assert local.find_item("1").quantity == 3
        assert local.find_item("1").price == 10.0


class TestMergeConfirmation:
    """Applying confirmed snapshots"""

    def test_server_wins_for_clean_items(self):
        merged = merge_confirmation(
            local_cart(item("a", quantity=3)),
            server_cart(server_item("a", quantity=2, price=11.0), server_item("b")),
        )
        assert [(i.id, i.quantity, i.price) for i in merged.items] == [("a", 2, 11.0), ("b", 1, 10.0)]

    def test_dirty_items_keep_local_quantity_but_take_price(self):
        merged = merge_confirmation(
            local_cart(item("a", quantity=5)),
            server_cart(server_item("a", quantity=2, price=11.0)),
            protected_ids={"a"},
        )
        assert merged.find_item("a").quantity == 5
        assert merged.find_item("a").price == 11.0

    def test_dirty_removed_item_is_not_resurrected(self):
        merged = merge_confirmation(local_cart(), server_cart(server_item("a")), protected_ids={"a"})
        assert merged.items == []

    def test_protect_all_ignores_server_only_items(self):
        merged = merge_confirmation(local_cart(item("n")), server_cart(server_item("old")), protect_all=True)
        assert [i.id for i in merged.items] == ["n"]


@pytest.fixture
def model():
    return CartModel()


@pytest.fixture
def queue(storage, settings):
    return OfflineActionQueue(storage, settings)


@pytest.fixture
def coordinator(backend, model, queue, settings):
    return SyncCoordinator(backend, model, queue, lambda: "demo-user", settings)


class TestSyncCoordinator:
    """Sync passes against a backend"""

    async def test_sync_adopts_server_and_pushes_local_wins(self, coordinator, backend, model):
        backend.carts["demo-user"] = {"p1": 5, "p2": 1}
        model.add_item("p1", "Headphones", 50.0, quantity=3)
        model.add_item("p3", "Book", 20.0)

        result = await coordinator.sync_cart()

        assert result.success and result.synced
        assert {c.kind for c in result.conflicts} == {ConflictKind.QUANTITY, ConflictKind.REMOVED}
        assert [(i.id, i.quantity) for i in model.items] == [("p1", 3), ("p3", 1), ("p2", 1)]
        assert backend.carts["demo-user"] == {"p1": 3, "p2": 1, "p3": 1}
        status = coordinator.get_sync_status()
        assert status.last_sync_timestamp is not None
        assert not status.has_pending_changes

    async def test_failed_upload_is_queued(self, coordinator, backend, model, queue, monkeypatch):
        model.add_item("p3", "Book", 20.0)
        original_add = backend.add_item

        async def timing_out_add(user_id, product_id, quantity=1):
            backend.failures = [FailureKind.TIMEOUT]
            return await original_add(user_id, product_id, quantity)

        monkeypatch.setattr(backend, "add_item", timing_out_add)

        result = await coordinator.sync_cart()

        assert result.success
        assert not result.synced
        assert queue.pending_count == 1
        action = queue.actions[0]
        assert action.operation == "add"
        assert action.payload["item_id"] == "p3"
        assert coordinator.get_sync_status().has_pending_changes

    async def test_fetch_failure_leaves_model_untouched(self, coordinator, backend, model):
        model.add_item("p1", "Headphones", 50.0)
        backend.offline = True

        result = await coordinator.sync_cart()

        assert not result.success
        assert [i.id for i in model.items] == ["p1"]

    async def test_offline_sync_is_skipped(self, backend, model, storage, settings):
        queue = OfflineActionQueue(storage, settings, is_online=False)
        coordinator = SyncCoordinator(backend, model, queue, lambda: "demo-user", settings)

        result = await coordinator.sync_cart()

        assert not result.success
        assert backend.calls == []

    async def test_force_sync_uploads_given_cart(self, coordinator, backend, model):
        recovered = local_cart(item("p2", quantity=2, price=80.0))

        result = await coordinator.force_sync(recovered)

        assert result.synced
        assert backend.carts["demo-user"] == {"p2": 2}
        assert model.state.find_item("p2").quantity == 2

    async def test_coming_online_syncs(self, backend, model, storage, settings):
        queue = OfflineActionQueue(storage, settings, is_online=False)
        coordinator = SyncCoordinator(backend, model, queue, lambda: "demo-user", settings)
        backend.carts["demo-user"] = {"p1": 1}

        await coordinator.set_online(True)

        assert coordinator.is_online
        assert [i.id for i in model.items] == ["p1"]

    async def test_closed_coordinator_ignores_results(self, coordinator, backend, model, settle):
        backend.carts["demo-user"] = {"p1": 1}
        backend.hold = True

        task = asyncio.create_task(coordinator.sync_cart())
        await settle()
        await coordinator.close()
        backend.held[0].set()
        result = await task

        assert not result.success
        assert model.items == []
