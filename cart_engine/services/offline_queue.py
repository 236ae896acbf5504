"""
Offline action queue.

Durable, priority-tagged FIFO of mutations that could not be delivered.
Actions survive restarts through KeyValueStorage and are retried with
exponential backoff until they succeed or exhaust max_retries.

Delivery is done by handlers registered per domain. A handler raises to
signal failure; BackendError with a non-retryable failure drops the
action immediately.
"""

import asyncio
import contextlib
import logging
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from ..core.config import Settings, get_settings
from ..core.storage import KeyValueStorage
from ..exceptions import BackendError, StorageError
from ..models.offline import (
    ActionDomain,
    ActionPriority,
    OfflineAction,
    QueueStatus,
    SyncPassResult,
)

logger = logging.getLogger(__name__)

ActionHandler = Callable[[OfflineAction], Awaitable[Any]]
DropCallback = Callable[[OfflineAction], None]

SUPPORTED_OFFLINE_OPERATIONS: dict[ActionDomain, frozenset] = {
    ActionDomain.CART: frozenset({"add", "set_quantity", "sync_items", "remove", "clear"}),
    ActionDomain.USER: frozenset({"update", "view"}),
    ActionDomain.PRODUCT: frozenset({"view", "search"}),
    ActionDomain.ORDER: frozenset({"view"}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OfflineActionQueue:
    """Durable retry queue for undelivered mutations"""

    STORAGE_KEY = "offline_actions"

    def __init__(
        self,
        storage: KeyValueStorage,
        settings: Optional[Settings] = None,
        is_online: bool = True,
        on_drop: Optional[DropCallback] = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: Callable[[], float] = random.random,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.on_drop = on_drop
        self._clock = clock
        self._random = rng
        self._is_online = is_online
        self._handlers: dict[ActionDomain, ActionHandler] = {}
        self._actions: list[OfflineAction] = []
        self._in_flight: set[str] = set()
        self._sync_in_progress = False
        self._rerun_requested = False
        self._last_sync: Optional[datetime] = None
        self._timer: Optional[asyncio.Task] = None
        self.dropped_actions: list[OfflineAction] = []
        self._load()

    # ==================== Handlers & connectivity ====================

    def register_handler(self, domain: ActionDomain, handler: ActionHandler) -> None:
        """Register the coroutine that delivers actions of a domain"""
        self._handlers[ActionDomain(domain)] = handler

    @property
    def is_online(self) -> bool:
        return self._is_online

    async def set_online(self, online: bool) -> Optional[SyncPassResult]:
        """Update connectivity; going online triggers a sync pass"""
        was_online = self._is_online
        self._is_online = online
        if online and not was_online:
            logger.info("Connection restored, syncing offline actions")
            return await self.sync_all(ignore_backoff=True)
        return None

    @staticmethod
    def is_action_supported_offline(domain: ActionDomain, operation: str) -> bool:
        return operation in SUPPORTED_OFFLINE_OPERATIONS.get(ActionDomain(domain), frozenset())

    # ==================== Queue operations ====================

    @property
    def actions(self) -> list[OfflineAction]:
        """Pending actions in delivery order"""
        return sorted(self._actions, key=lambda a: (a.priority.rank, a.created_at))

    @property
    def pending_count(self) -> int:
        return len(self._actions)

    def get_action(self, action_id: str) -> Optional[OfflineAction]:
        return next((a for a in self._actions if a.id == action_id), None)

    async def enqueue(
        self,
        domain: ActionDomain,
        operation: str,
        payload: Optional[dict] = None,
        priority: ActionPriority = ActionPriority.MEDIUM,
        max_retries: Optional[int] = None,
        sync: bool = True,
    ) -> OfflineAction:
        """
        Add an action to the queue and persist it.

        When online and sync is true, a sync pass is attempted right away.
        """
        action = OfflineAction(
            id=f"offline_{uuid.uuid4().hex}",
            domain=ActionDomain(domain),
            operation=operation,
            payload=payload or {},
            created_at=self._clock(),
            max_retries=max_retries or self.settings.max_retries,
            priority=ActionPriority(priority),
        )
        self._actions.append(action)
        self._persist()
        logger.debug(f"Queued {action.domain.value}/{operation} as {action.id}")

        if sync and self._is_online:
            await self.sync_all()
        return action

    def dequeue(self, action_id: str) -> bool:
        """Remove an action; returns False if it was not queued"""
        before = len(self._actions)
        self._actions = [a for a in self._actions if a.id != action_id]
        if len(self._actions) == before:
            return False
        self._persist()
        return True

    def clear(self) -> None:
        self._actions = []
        self._persist()

    # ==================== Synchronization ====================

    async def sync_all(self, ignore_backoff: bool = False) -> SyncPassResult:
        """
        Attempt every due action once, in delivery order.

        Only one pass runs at a time; a request made during a pass is
        folded into a follow-up pass.
        """
        if not self._is_online:
            return SyncPassResult(skipped=True)

        if self._sync_in_progress:
            self._rerun_requested = True
            return SyncPassResult(skipped=True)

        self._sync_in_progress = True
        total = SyncPassResult()
        try:
            while True:
                self._rerun_requested = False
                result = await self._run_pass(ignore_backoff)
                total.attempted += result.attempted
                total.synced.extend(result.synced)
                total.failed.extend(result.failed)
                total.dropped.extend(result.dropped)
                if not (self._rerun_requested and self._is_online):
                    break
            self._last_sync = self._clock()
        finally:
            self._sync_in_progress = False
        return total

    async def _run_pass(self, ignore_backoff: bool) -> SyncPassResult:
        result = SyncPassResult()
        now = self._clock()

        for action in self.actions:
            if not self._is_online:
                break
            if action.id in self._in_flight or self.get_action(action.id) is None:
                continue
            if not ignore_backoff and action.next_attempt_at and action.next_attempt_at > now:
                continue

            handler = self._handlers.get(action.domain)
            if handler is None:
                logger.debug(f"No handler for {action.domain.value}, leaving {action.id} queued")
                continue

            result.attempted += 1
            self._in_flight.add(action.id)
            try:
                await handler(action)
            except BackendError as e:
                if e.retryable:
                    self._record_failure(action, str(e), result)
                else:
                    logger.warning(f"Dropping {action.id}: non-retryable failure: {e}")
                    self._drop(action, str(e), result)
            except Exception as e:
                self._record_failure(action, f"{e.__class__.__name__}: {e}", result)
            else:
                if self.dequeue(action.id):
                    logger.info(f"Offline action synced: {action.id}")
                result.synced.append(action.id)
            finally:
                self._in_flight.discard(action.id)

        return result

    def _record_failure(self, action: OfflineAction, error: str, result: SyncPassResult) -> None:
        if self.get_action(action.id) is None:
            return
        action.retry_count += 1
        action.last_error = error
        if action.exhausted:
            logger.error(f"Action {action.id} exceeded max retries ({action.max_retries}), removing from queue")
            self._drop(action, error, result)
            return
        delay = self.backoff_delay(action.retry_count)
        action.next_attempt_at = self._clock() + timedelta(seconds=delay)
        result.failed.append(action.id)
        self._persist()
        logger.warning(
            f"Failed to sync action {action.id} (attempt {action.retry_count}/{action.max_retries}), "
            f"retrying in {delay:.2f}s: {error}"
        )

    def _drop(self, action: OfflineAction, error: str, result: SyncPassResult) -> None:
        action.last_error = error
        self.dequeue(action.id)
        self.dropped_actions.append(action)
        del self.dropped_actions[:-self.settings.max_dropped_actions]
        result.dropped.append(action.id)
        if self.on_drop:
            try:
                self.on_drop(action)
            except Exception:
                logger.exception(f"on_drop callback failed for {action.id}")

    def backoff_delay(self, retry_count: int) -> float:
        """Exponential backoff with jitter, in seconds"""
        delay = min(
            self.settings.retry_base_delay * (2 ** max(0, retry_count - 1)),
            self.settings.retry_max_delay,
        )
        return delay + self._random() * self.settings.retry_jitter * delay

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            is_online=self._is_online,
            pending_count=self.pending_count,
            last_sync=self._last_sync,
            sync_in_progress=self._sync_in_progress,
        )

    # ==================== Periodic timer ====================

    def start(self, interval: Optional[float] = None) -> None:
        """Start periodic sync passes on the running event loop"""
        if self._timer and not self._timer.done():
            return
        period = interval or self.settings.queue_sync_interval
        self._timer = asyncio.create_task(self._periodic_sync(period))
        logger.debug(f"Offline queue timer started ({period}s)")

    async def stop(self) -> None:
        """Cancel the periodic timer"""
        if self._timer is None:
            return
        self._timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._timer
        self._timer = None
        logger.debug("Offline queue timer stopped")

    async def _periodic_sync(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._is_online and self._actions:
                try:
                    await self.sync_all()
                except Exception:
                    logger.exception("Periodic offline sync failed")

    # ==================== Persistence ====================

    def _persist(self) -> None:
        try:
            self.storage.set_json(
                self.STORAGE_KEY,
                [a.model_dump(mode="json") for a in self._actions],
            )
        except StorageError as e:
            logger.error(f"Failed to persist offline queue: {e}")

    def _load(self) -> None:
        try:
            raw = self.storage.get_json(self.STORAGE_KEY)
        except StorageError as e:
            logger.warning(f"Discarding unreadable offline queue: {e}")
            self.storage.remove(self.STORAGE_KEY)
            return

        if raw is None:
            return
        if not isinstance(raw, list):
            logger.warning("Discarding malformed offline queue")
            self.storage.remove(self.STORAGE_KEY)
            return

        for entry in raw:
            try:
                self._actions.append(OfflineAction.model_validate(entry))
            except ValueError as e:
                logger.warning(f"Skipping malformed offline action: {e}")
        logger.debug(f"Loaded {len(self._actions)} offline action(s)")
