"""
Cart synchronization.

SyncCoordinator merges the local cart with the server's view. Two merge
policies are used:

reconcile()
    Full reconciliation after disconnection or concurrent modification.
    Local-only items are kept (and re-pushed), server-only items are
    adopted, quantity disagreements go to the local value and price
    disagreements go to the server. Unavailable server items are moved to
    the saved list.

merge_confirmation()
    Applies the snapshot returned by a confirmed mutation. The server
    wins on every item except those with newer local intent, which keep
    their local existence and quantity and only take the server price.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from ..core.config import Settings, get_settings
from ..models.backend import BackendFailure
from ..models.cart import CartItem, CartSnapshot, CartState
from ..models.offline import ActionDomain, ActionPriority
from ..models.sync import (
    CartConflict,
    ConflictKind,
    ReconcileResult,
    Resolution,
    SyncResult,
    SyncStatus,
)
from .backend import CartBackend
from .cart_model import CartModel
from .offline_queue import OfflineActionQueue

logger = logging.getLogger(__name__)


def _as_cart_item(item: CartItem) -> CartItem:
    return CartItem(
        id=item.id,
        title=item.title,
        price=item.price,
        image_url=item.image_url,
        quantity=item.quantity,
    )


def _rebuild(local: CartState, items: list[CartItem], saved: Optional[list[CartItem]] = None) -> CartState:
    state = local.model_copy(deep=True)
    state.items = items
    if saved is not None:
        state.saved = saved
    return CartModel(state).snapshot()


def detect_conflicts(
    local: CartState,
    server: CartSnapshot,
    protected_ids: Iterable[str] = (),
    protect_all: bool = False,
) -> list[CartConflict]:
    """List every disagreement between local and server items"""
    if protect_all:
        return []
    protected = set(protected_ids)
    conflicts = []

    for local_item in local.items:
        if local_item.id in protected:
            continue
        server_item = server.find_item(local_item.id)

        if server_item is None:
            conflicts.append(
                CartConflict(
                    kind=ConflictKind.REMOVED,
                    item_id=local_item.id,
                    local_value=local_item.model_dump(),
                    server_value=None,
                    resolution=Resolution.LOCAL,
                )
            )
            continue

        if not server_item.available:
            conflicts.append(
                CartConflict(
                    kind=ConflictKind.AVAILABILITY,
                    item_id=local_item.id,
                    local_value=True,
                    server_value=False,
                    resolution=Resolution.SERVER,
                )
            )
            continue

        if local_item.quantity != server_item.quantity:
            conflicts.append(
                CartConflict(
                    kind=ConflictKind.QUANTITY,
                    item_id=local_item.id,
                    local_value=local_item.quantity,
                    server_value=server_item.quantity,
                    resolution=Resolution.LOCAL,
                )
            )

        if round(local_item.price, 2) != round(server_item.price, 2):
            conflicts.append(
                CartConflict(
                    kind=ConflictKind.PRICE,
                    item_id=local_item.id,
                    local_value=local_item.price,
                    server_value=server_item.price,
                    resolution=Resolution.SERVER,
                )
            )

    local_ids = {i.id for i in local.items}
    for server_item in server.items:
        if server_item.id in local_ids or server_item.id in protected:
            continue
        conflicts.append(
            CartConflict(
                kind=ConflictKind.REMOVED,
                item_id=server_item.id,
                local_value=None,
                server_value=_as_cart_item(server_item).model_dump(),
                resolution=Resolution.SERVER if server_item.available else Resolution.LOCAL,
            )
        )

    return conflicts


def reconcile(
    local: CartState,
    server: CartSnapshot,
    protected_ids: Iterable[str] = (),
    protect_all: bool = False,
) -> ReconcileResult:
    """
    Merge local and server carts using the fixed resolution policy.

    Items in protected_ids have local changes still in flight and are
    left untouched; protect_all leaves the whole local cart untouched.
    """
    conflicts = detect_conflicts(local, server, protected_ids, protect_all)
    by_item: dict[str, list[CartConflict]] = {}
    for conflict in conflicts:
        by_item.setdefault(conflict.item_id, []).append(conflict)

    items: list[CartItem] = []
    saved = [s.model_copy() for s in local.saved]

    for local_item in local.items:
        item = local_item.model_copy()
        unavailable = False
        for conflict in by_item.get(item.id, []):
            if conflict.kind == ConflictKind.AVAILABILITY:
                unavailable = True
            elif conflict.kind == ConflictKind.PRICE and conflict.resolution == Resolution.SERVER:
                item.price = conflict.server_value
            elif conflict.kind == ConflictKind.QUANTITY and conflict.resolution == Resolution.SERVER:
                item.quantity = conflict.server_value
        if unavailable:
            if not any(s.id == item.id for s in saved):
                saved.append(item.model_copy(update={"quantity": 1}))
            continue
        items.append(item)

    for conflict in conflicts:
        if conflict.kind == ConflictKind.REMOVED and conflict.local_value is None:
            if conflict.resolution == Resolution.SERVER:
                items.append(CartItem.model_validate(conflict.server_value))

    return ReconcileResult(merged=_rebuild(local, items, saved), conflicts=conflicts)


def merge_confirmation(
    local: CartState,
    server: CartSnapshot,
    protected_ids: Iterable[str] = (),
    protect_all: bool = False,
) -> CartState:
    """
    Apply a confirmation snapshot without clobbering newer local intent.

    protected_ids keep their local existence and quantity. protect_all
    protects every item, including server-only ones (a newer local
    clear is still pending).
    """
    protected = set(protected_ids)
    items: list[CartItem] = []

    for local_item in local.items:
        server_item = server.find_item(local_item.id)
        if protect_all or local_item.id in protected:
            item = local_item.model_copy()
            if server_item is not None:
                item.price = server_item.price
            items.append(item)
        elif server_item is not None:
            merged = _as_cart_item(server_item)
            merged.image_url = merged.image_url or local_item.image_url
            items.append(merged)

    if not protect_all:
        local_ids = {i.id for i in local.items}
        for server_item in server.items:
            if server_item.id not in local_ids and server_item.id not in protected:
                items.append(_as_cart_item(server_item))

    return _rebuild(local, items)


class SyncCoordinator:
    """Drives reconciliation between the local CartModel and the backend"""

    def __init__(
        self,
        backend: CartBackend,
        model: CartModel,
        queue: OfflineActionQueue,
        user_id_provider: Callable[[], str],
        settings: Optional[Settings] = None,
        protected_ids_provider: Optional[Callable[[], set[str]]] = None,
        clear_pending_provider: Optional[Callable[[], bool]] = None,
        on_applied: Optional[Callable[[CartState], None]] = None,
    ):
        self.backend = backend
        self.model = model
        self.queue = queue
        self.settings = settings or get_settings()
        self._user_id = user_id_provider
        self._protected_ids = protected_ids_provider or (lambda: set())
        self._clear_pending = clear_pending_provider or (lambda: False)
        self._on_applied = on_applied
        self._last_sync: Optional[datetime] = None
        self._dirty = False
        self._sync_in_progress = False
        self._alive = True
        self._timer: Optional[asyncio.Task] = None

    # ==================== Status ====================

    @property
    def is_online(self) -> bool:
        return self.queue.is_online

    def mark_dirty(self) -> None:
        """Local state changed and has not been confirmed yet"""
        self._dirty = True

    def mark_clean(self) -> None:
        self._dirty = False
        self._last_sync = datetime.now(timezone.utc)

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.is_online,
            last_sync_timestamp=self._last_sync,
            has_pending_changes=self._dirty or self.queue.pending_count > 0,
        )

    async def set_online(self, online: bool) -> None:
        """Connectivity change; coming back online flushes the queue then syncs"""
        was_online = self.is_online
        await self.queue.set_online(online)
        if online and not was_online and self._alive:
            await self.sync_cart()

    # ==================== Merge helpers ====================

    def reconcile(self, local: CartState, server: CartSnapshot) -> ReconcileResult:
        return reconcile(local, server, self._protected_ids(), self._clear_pending())

    def apply(self, state: CartState) -> CartState:
        """Install a merged state into the model"""
        snapshot = self.model.load(state)
        if self._on_applied:
            self._on_applied(snapshot)
        return snapshot

    # ==================== Sync passes ====================

    async def sync_cart(self) -> SyncResult:
        """Fetch the server cart, reconcile it into the model and push local wins"""
        if not self.is_online:
            return SyncResult(
                success=False,
                synced=False,
                message="Offline - cart will sync when connection is restored",
            )
        if self._sync_in_progress:
            return SyncResult(success=False, synced=False, message="Sync already in progress")

        self._sync_in_progress = True
        try:
            return await self._sync_once()
        finally:
            self._sync_in_progress = False

    async def force_sync(self, cart: Optional[CartState] = None) -> SyncResult:
        """
        Run one reconciliation and upload pass now.

        When cart is given it replaces the local state first (e.g. a
        recovered backup).
        """
        if cart is not None:
            self.apply(cart)
            self.mark_dirty()
        return await self.sync_cart()

    async def _sync_once(self) -> SyncResult:
        user_id = self._user_id()
        result = await self.backend.fetch_cart(user_id)
        if not self._alive or self._user_id() != user_id:
            return SyncResult(success=False, synced=False, message="Sync abandoned")

        if isinstance(result, BackendFailure):
            logger.warning(f"Failed to sync cart with server: {result.message}")
            return SyncResult(success=False, synced=False, message=f"Sync failed: {result.message}")

        # Reconcile against the current model, not the state at dispatch
        reconciled = self.reconcile(self.model.state, result.value)
        self.apply(reconciled.merged)
        for conflict in reconciled.conflicts:
            logger.info(
                f"Resolved {conflict.kind.value} conflict on {conflict.item_id} "
                f"in favour of {conflict.resolution.value}"
            )

        uploaded = await self._upload(user_id, reconciled)
        if not self._alive or self._user_id() != user_id:
            return SyncResult(success=False, synced=False, message="Sync abandoned")

        if uploaded:
            self.mark_clean()
        if reconciled.conflicts:
            message = f"Cart synced with {len(reconciled.conflicts)} conflict(s) resolved"
        else:
            message = "Cart synced successfully"
        if not uploaded:
            message += "; some changes are queued for retry"
        return SyncResult(success=True, synced=uploaded, conflicts=reconciled.conflicts, message=message)

    async def _upload(self, user_id: str, reconciled: ReconcileResult) -> bool:
        """Push every local-wins decision to the backend"""
        all_ok = True
        for conflict in reconciled.local_wins:
            item = reconciled.merged.find_item(conflict.item_id)
            if item is None:
                continue
            if conflict.kind == ConflictKind.REMOVED:
                operation, payload = "add", {"item_id": item.id, "quantity": item.quantity}
                result = await self.backend.add_item(user_id, item.id, item.quantity)
            else:
                operation, payload = "set_quantity", {"item_id": item.id, "quantity": item.quantity}
                result = await self.backend.set_quantity(user_id, item.id, item.quantity)
            if not self._alive:
                return False

            if isinstance(result, BackendFailure):
                all_ok = False
                if result.retryable:
                    await self.queue.enqueue(
                        ActionDomain.CART,
                        operation,
                        {**payload, "user_id": user_id},
                        priority=ActionPriority.HIGH,
                        sync=False,
                    )
                else:
                    logger.warning(f"Upload of {item.id} rejected by server: {result.message}")
        return all_ok

    # ==================== Periodic sync ====================

    def start(self, interval: Optional[float] = None) -> None:
        """Start the periodic sync timer"""
        if self._timer and not self._timer.done():
            return
        period = interval or self.settings.sync_interval
        self._timer = asyncio.create_task(self._periodic_sync(period))
        logger.debug(f"Cart sync timer started ({period}s)")

    async def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._timer
        self._timer = None

    async def close(self) -> None:
        """Stop timers; later responses are ignored"""
        self._alive = False
        await self.stop()

    async def _periodic_sync(self, interval: float) -> None:
        while self._alive:
            await asyncio.sleep(interval)
            if not (self._alive and self.is_online):
                continue
            try:
                await self.sync_cart()
            except Exception:
                logger.exception("Background sync failed")
