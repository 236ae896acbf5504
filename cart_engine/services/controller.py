"""
Cart controller.

Optimistic-update protocol: each mutating command is applied to the
local CartModel synchronously and returns the new snapshot at once; the
matching backend call runs as a task on the event loop. A confirmation
is merged into the model against the current state, so a stale
confirmation never reverts a newer local edit. Failed calls are queued
for retry without reverting anything.

Commands must be issued from inside a running event loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..core.config import Settings, get_settings
from ..core.session import SessionManager
from ..core.storage import KeyValueStorage, create_storage
from ..exceptions import BackendError, SessionClosedError
from ..models.backend import BackendFailure, CartResult, FailureKind
from ..models.cart import CartSnapshot, CartState
from ..models.offline import ActionDomain, ActionPriority, OfflineAction
from ..models.sync import SyncResult, SyncStatus
from ..models.validation import CartValidationResult
from .backend import CartBackend, HttpCartBackend
from .cart_model import CartModel
from .offline_queue import OfflineActionQueue
from .persistence import CartPersistence
from .sync import SyncCoordinator, merge_confirmation
from .validator import CartValidator

logger = logging.getLogger(__name__)


@dataclass
class PendingOperation:
    """A backend call dispatched for a local mutation"""
    seq: int
    operation: str
    user_id: str
    item_ids: frozenset = field(default_factory=frozenset)
    payload: dict = field(default_factory=dict)


class CartController:
    """Single entry point for cart commands"""

    def __init__(
        self,
        backend: CartBackend,
        storage: KeyValueStorage,
        settings: Optional[Settings] = None,
        session_manager: Optional[SessionManager] = None,
        is_online: bool = True,
        close_backend: bool = False,
    ):
        self.settings = settings or get_settings()
        self.backend = backend
        self._close_backend = close_backend
        self.storage = storage
        self.session_manager = session_manager or SessionManager(storage, self.settings.default_user_id)
        self.persistence = CartPersistence(storage, self.settings.backup_ttl_seconds)
        self.model = CartModel()
        self.queue = OfflineActionQueue(
            storage,
            self.settings,
            is_online=is_online,
            on_drop=self._on_action_dropped,
        )
        self.sync = SyncCoordinator(
            backend,
            self.model,
            self.queue,
            user_id_provider=lambda: self._user_id,
            settings=self.settings,
            protected_ids_provider=self._protected_ids,
            clear_pending_provider=self._clear_pending,
            on_applied=self._persist,
        )
        self.queue.register_handler(ActionDomain.CART, self._deliver_action)

        self._alive = True
        self._is_loading = False
        self._user_id = self.session_manager.active_user_id
        self._pending: dict[int, PendingOperation] = {}
        self._item_seq: dict[str, int] = {}
        self._clear_seq = 0
        self._tasks: set[asyncio.Task] = set()
        self._dropped: list[OfflineAction] = []
        # Sequence numbers carried by persisted actions must stay comparable
        self._seq = max((a.payload.get("seq", 0) for a in self.queue.actions), default=0)

        self._hydrate(self._user_id)
        self._unsubscribe = self.session_manager.subscribe(self._on_user_switched)

    # ==================== Read side ====================

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def state(self) -> CartState:
        return self.model.snapshot()

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def has_pending_sync(self) -> bool:
        """Local changes not yet confirmed by the backend"""
        if self._pending or self._queued_cart_actions():
            return True
        return self.sync.get_sync_status().has_pending_changes

    @property
    def dropped_changes(self) -> list[OfflineAction]:
        """Changes abandoned after exhausting their retries"""
        return list(self._dropped)

    def get_sync_status(self) -> SyncStatus:
        return self.sync.get_sync_status()

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start the periodic sync and offline-queue timers"""
        self._ensure_alive()
        self.sync.start()
        self.queue.start()

    async def load(self, timeout: Optional[float] = None) -> CartState:
        """
        Fetch and reconcile the server cart, waiting at most timeout seconds.

        When the timeout elapses first the current local cart is returned
        and the fetch keeps running; its result is applied when it lands.
        """
        self._ensure_alive()
        wait = self.settings.initial_load_timeout if timeout is None else timeout
        self._is_loading = True
        task = self._track(self._load_from_backend(self._user_id))
        try:
            await asyncio.wait_for(asyncio.shield(task), wait)
        except asyncio.TimeoutError:
            logger.info(f"Cart load exceeded {wait}s, continuing in background")
        return self.model.snapshot()

    async def set_online(self, online: bool) -> None:
        await self.sync.set_online(online)

    async def force_sync(self) -> SyncResult:
        self._ensure_alive()
        return await self.sync.force_sync()

    async def wait_idle(self) -> None:
        """Wait until every dispatched backend call has settled"""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def close(self) -> None:
        """
        Tear down timers and subscriptions.

        In-flight calls are abandoned; their results are ignored.
        """
        if not self._alive:
            return
        self._alive = False
        self._unsubscribe()
        await self.sync.close()
        await self.queue.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.wait(list(self._tasks))
        if self._close_backend:
            await self.backend.close()
        logger.debug(f"Cart controller for {self._user_id} closed")

    # ==================== Commands ====================

    def add(
        self,
        id: str,
        title: str,
        price: float,
        quantity: int = 1,
        image_url: Optional[str] = None,
    ) -> CartState:
        """Add an item (or increase its quantity)"""
        self._ensure_alive()
        if quantity <= 0:
            return self.model.snapshot()
        snapshot = self.model.add_item(id, title, price, quantity, image_url)
        self._dispatch(
            "add",
            [id],
            lambda user_id: self.backend.add_item(user_id, id, quantity),
            {"item_id": id, "quantity": quantity},
        )
        return snapshot

    def remove(self, id: str) -> CartState:
        self._ensure_alive()
        if self.model.state.find_item(id) is None:
            return self.model.snapshot()
        snapshot = self.model.remove_item(id)
        self._dispatch(
            "remove",
            [id],
            lambda user_id: self.backend.remove_item(user_id, id),
            {"item_id": id},
        )
        return snapshot

    def set_qty(self, id: str, quantity: int) -> CartState:
        """Set an item's quantity; zero or less removes the item"""
        self._ensure_alive()
        if quantity <= 0:
            return self.remove(id)
        if self.model.state.find_item(id) is None:
            return self.model.snapshot()
        snapshot = self.model.set_quantity(id, quantity)
        self._dispatch(
            "set_quantity",
            [id],
            lambda user_id: self._set_line(user_id, id, quantity),
            {"item_id": id, "quantity": quantity},
        )
        return snapshot

    def clear(self) -> CartState:
        self._ensure_alive()
        item_ids = sorted(self.model.item_ids())
        snapshot = self.model.clear()
        self._dispatch(
            "clear",
            item_ids,
            lambda user_id: self.backend.clear_cart(user_id),
            {"item_ids": item_ids},
        )
        return snapshot

    def save(self, id: str) -> CartState:
        """Move an item to the saved list; the server cart loses the line"""
        self._ensure_alive()
        if self.model.state.find_item(id) is None:
            return self.model.snapshot()
        snapshot = self.model.save_for_later(id)
        self._dispatch(
            "remove",
            [id],
            lambda user_id: self.backend.remove_item(user_id, id),
            {"item_id": id},
        )
        return snapshot

    def move_saved_to_cart(self, id: str) -> CartState:
        self._ensure_alive()
        if not any(s.id == id for s in self.model.state.saved):
            return self.model.snapshot()
        snapshot = self.model.move_to_cart(id)
        self._dispatch(
            "add",
            [id],
            lambda user_id: self.backend.add_item(user_id, id, 1),
            {"item_id": id, "quantity": 1},
        )
        return snapshot

    def remove_saved(self, id: str) -> CartState:
        self._ensure_alive()
        return self._commit(self.model.remove_saved(id))

    def apply_coupon(self, code: str) -> CartState:
        self._ensure_alive()
        snapshot = self.model.apply_coupon(code)
        if snapshot.coupon_code is None:
            logger.info(f"Coupon {code!r} rejected at subtotal {snapshot.subtotal:.2f}")
        return self._commit(snapshot)

    def clear_coupon(self) -> CartState:
        self._ensure_alive()
        return self._commit(self.model.clear_coupon())

    def apply_gift_card(self, code: str, amount: float) -> CartState:
        self._ensure_alive()
        return self._commit(self.model.apply_gift_card(code, amount))

    def clear_gift_card(self) -> CartState:
        self._ensure_alive()
        return self._commit(self.model.clear_gift_card())

    async def validate(self, for_checkout: bool = False) -> CartValidationResult:
        """Validate the current cart against live product data"""
        self._ensure_alive()
        cart = self.model.snapshot()
        products = None
        if cart.items:
            result = await self.backend.get_products([i.id for i in cart.items])
            if isinstance(result, BackendFailure):
                logger.warning(f"Validating without live product data: {result.message}")
            else:
                products = result.value
        if for_checkout:
            return CartValidator.validate_for_checkout(cart, products)
        return CartValidator.validate_cart(cart, products)

    # ==================== Dispatch ====================

    def _commit(self, snapshot: CartState) -> CartState:
        self._persist(snapshot)
        return snapshot

    def _dispatch(
        self,
        operation: str,
        item_ids: list[str],
        call: Callable[[str], Awaitable[CartResult]],
        payload: dict,
    ) -> None:
        superseded = self._supersede(operation, item_ids)
        if superseded is not None and operation != "clear":
            # The dequeued actions are folded into a push of the local quantities
            item_ids = sorted(set(item_ids) | superseded)
            operation, call, payload = self._convergence(item_ids)

        self._seq += 1
        op = PendingOperation(
            seq=self._seq,
            operation=operation,
            user_id=self._user_id,
            item_ids=frozenset(item_ids),
            payload={**payload, "user_id": self._user_id, "seq": self._seq},
        )
        for item_id in item_ids:
            self._item_seq[item_id] = op.seq
        if operation == "clear":
            self._clear_seq = op.seq

        self._pending[op.seq] = op
        self.sync.mark_dirty()
        self._persist(self.model.state)
        self._track(self._confirm(op, call))

    async def _confirm(self, op: PendingOperation, call: Callable[[str], Awaitable[CartResult]]) -> None:
        try:
            if not self.queue.is_online:
                await self._enqueue(op)
                return

            result = await call(op.user_id)
            if not self._alive:
                return

            if isinstance(result, BackendFailure):
                if result.retryable:
                    logger.warning(f"{op.operation} on {sorted(op.item_ids)} failed ({result.kind.value}), queued for retry")
                    if self._is_superseded(op):
                        op = self._converged(op)
                    await self._enqueue(op)
                else:
                    logger.warning(
                        f"{op.operation} on {sorted(op.item_ids)} rejected ({result.kind.value}): {result.message}"
                    )
                return

            if op.user_id == self._user_id:
                self._apply_confirmation(op.seq, result.value)
        finally:
            self._pending.pop(op.seq, None)

    async def _enqueue(self, op: PendingOperation) -> None:
        await self.queue.enqueue(
            ActionDomain.CART,
            op.operation,
            op.payload,
            priority=ActionPriority.HIGH,
        )

    def _supersede(self, operation: str, item_ids: list[str]) -> Optional[set[str]]:
        """
        Dequeue queued cart actions that a new command makes obsolete.

        An action is obsolete when it touches one of item_ids. A queued
        clear touches the whole cart, and a new clear obsoletes everything.
        Returns the item ids of the dequeued actions, or None when nothing
        was dequeued.
        """
        wanted = set(item_ids)
        obsolete = [
            a for a in self._queued_cart_actions()
            if operation == "clear" or a.operation == "clear" or self._action_item_ids(a) & wanted
        ]
        if not obsolete:
            return None

        touched: set[str] = set()
        for action in obsolete:
            self.queue.dequeue(action.id)
            touched |= self._action_item_ids(action)
        logger.info(f"{operation} on {sorted(wanted)} supersedes {len(obsolete)} queued cart change(s)")
        return touched

    def _is_superseded(self, op: PendingOperation) -> bool:
        """Whether a later command already changed what op was about"""
        if op.user_id != self._user_id:
            return False
        if self._clear_seq > op.seq:
            return True
        if op.operation == "clear":
            return self._seq > op.seq
        return any(self._item_seq.get(item_id, 0) > op.seq for item_id in op.item_ids)

    def _converged(self, op: PendingOperation) -> PendingOperation:
        operation, _, payload = self._convergence(sorted(op.item_ids))
        return PendingOperation(
            seq=op.seq,
            operation=operation,
            user_id=op.user_id,
            item_ids=op.item_ids,
            payload={**payload, "user_id": op.user_id, "seq": op.seq},
        )

    def _convergence(self, item_ids: list[str]) -> tuple[str, Callable[[str], Awaitable[CartResult]], dict]:
        """A call that brings the server lines for item_ids to their local quantities"""
        quantities = {}
        for item_id in item_ids:
            item = self.model.state.find_item(item_id)
            quantities[item_id] = item.quantity if item else 0
        return (
            "sync_items",
            lambda user_id: self._converge(user_id, quantities),
            {"item_ids": list(item_ids), "quantities": quantities},
        )

    async def _converge(self, user_id: str, quantities: dict[str, int]) -> CartResult:
        result = None
        for item_id, quantity in quantities.items():
            result = await self._set_line(user_id, item_id, quantity)
            if isinstance(result, BackendFailure):
                return result
        if result is None:
            return await self.backend.fetch_cart(user_id)
        return result

    async def _set_line(self, user_id: str, item_id: str, quantity: int) -> CartResult:
        """Set an absolute quantity, adding the line if the server lacks it"""
        if quantity <= 0:
            return await self.backend.remove_item(user_id, item_id)
        result = await self.backend.set_quantity(user_id, item_id, quantity)
        if isinstance(result, BackendFailure) and result.kind == FailureKind.CLIENT and result.status_code == 404:
            return await self.backend.add_item(user_id, item_id, quantity)
        return result

    async def _deliver_action(self, action: OfflineAction) -> None:
        """Offline-queue handler for cart actions; raises BackendError on failure"""
        payload = action.payload
        user_id = payload.get("user_id") or self._user_id
        operation = action.operation

        if operation == "add":
            result = await self.backend.add_item(user_id, payload["item_id"], payload.get("quantity", 1))
        elif operation == "set_quantity":
            result = await self._set_line(user_id, payload["item_id"], payload["quantity"])
        elif operation == "sync_items":
            result = await self._converge(user_id, payload["quantities"])
        elif operation == "remove":
            result = await self.backend.remove_item(user_id, payload["item_id"])
        elif operation == "clear":
            result = await self.backend.clear_cart(user_id)
        else:
            raise BackendError(
                BackendFailure(FailureKind.CLIENT, f"Unsupported cart operation: {operation}", operation)
            )

        snapshot = result.unwrap()
        if self._alive and user_id == self._user_id:
            self._apply_confirmation(payload.get("seq", 0), snapshot, exclude_action=action.id)

    def _apply_confirmation(
        self,
        seq: int,
        snapshot: CartSnapshot,
        exclude_action: Optional[str] = None,
    ) -> None:
        """Merge a confirmed snapshot, keeping items with newer local intent"""
        dirty = self._dirty_ids(seq, exclude_action)
        protect_all = self._clear_seq > seq
        merged = merge_confirmation(self.model.state, snapshot, dirty, protect_all)
        self.sync.apply(merged)

        others_pending = any(s != seq for s in self._pending)
        if not others_pending and not self._queued_cart_actions(exclude_action):
            self.sync.mark_clean()

    def _dirty_ids(self, seq: int, exclude_action: Optional[str] = None) -> set[str]:
        dirty = {item_id for item_id, item_seq in self._item_seq.items() if item_seq > seq}
        for other in self._pending.values():
            if other.seq != seq:
                dirty |= other.item_ids
        for action in self._queued_cart_actions(exclude_action):
            dirty |= self._action_item_ids(action)
        return dirty

    def _protected_ids(self) -> set[str]:
        """Items a full reconciliation must not touch"""
        protected: set[str] = set()
        for op in self._pending.values():
            protected |= op.item_ids
        for action in self._queued_cart_actions():
            protected |= self._action_item_ids(action)
        return protected

    def _clear_pending(self) -> bool:
        if any(op.operation == "clear" for op in self._pending.values()):
            return True
        return any(a.operation == "clear" for a in self._queued_cart_actions())

    def _queued_cart_actions(self, exclude_action: Optional[str] = None) -> list[OfflineAction]:
        return [
            a for a in self.queue.actions
            if a.domain == ActionDomain.CART
            and a.id != exclude_action
            and a.payload.get("user_id", self._user_id) == self._user_id
        ]

    @staticmethod
    def _action_item_ids(action: OfflineAction) -> set[str]:
        ids = set(action.payload.get("item_ids") or [])
        if action.payload.get("item_id"):
            ids.add(action.payload["item_id"])
        return ids

    # ==================== Loading & identity ====================

    async def _load_from_backend(self, user_id: str) -> None:
        try:
            result = await self.sync.sync_cart()
            if self._alive and user_id == self._user_id and not result.success:
                logger.warning(f"Cart load for {user_id} did not complete: {result.message}")
        finally:
            if user_id == self._user_id:
                self._is_loading = False

    def _hydrate(self, user_id: str) -> None:
        state = self.persistence.load_snapshot(user_id)
        if not state.items and not state.saved:
            backup = self.persistence.load_backup(user_id)
            if backup and (backup.items or backup.saved):
                logger.info(f"Recovered cart for {user_id} from backup")
                state = backup
        self.model.load(state)

    def _on_user_switched(self, user_id: str) -> None:
        if not self._alive or user_id == self._user_id:
            return
        logger.info(f"Cart identity changed from {self._user_id} to {user_id}")
        self._user_id = user_id
        self._item_seq = {}
        self._hydrate(user_id)

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, cart will be fetched on the next sync")
            return
        self._is_loading = True
        self._track(self._load_from_backend(user_id))

    # ==================== Helpers ====================

    def _persist(self, state: CartState) -> None:
        self.persistence.save_snapshot(self._user_id, state)
        self.persistence.save_backup(state, self._user_id)

    def _on_action_dropped(self, action: OfflineAction) -> None:
        self._dropped.append(action)
        del self._dropped[:-self.settings.max_dropped_actions]
        logger.warning(f"Cart change {action.operation} {action.payload.get('item_id', '')} could not be synced and was dropped")

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Cart background task failed: {task.exception()!r}")

    def _ensure_alive(self) -> None:
        if not self._alive:
            raise SessionClosedError("Cart controller has been closed")


def create_cart_controller(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    session_manager: Optional[SessionManager] = None,
    transport=None,
    is_online: bool = True,
) -> CartController:
    """
    Build a controller talking to the configured cart service over HTTP.

    Requests carry the active session's credential. The controller owns
    the HTTP client and closes it on close().
    """
    settings = settings or get_settings()
    storage = storage or create_storage(settings.storage_dir)
    session_manager = session_manager or SessionManager(storage, settings.default_user_id)
    backend = HttpCartBackend(
        settings.backend_base_url,
        timeout=settings.request_timeout,
        credential_provider=session_manager.current_credential,
        transport=transport,
    )
    return CartController(
        backend,
        storage,
        settings,
        session_manager,
        is_online=is_online,
        close_backend=True,
    )
