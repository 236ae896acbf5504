"""
Cart persistence.

Two independent records live in storage:

- the primary snapshot, versioned and keyed by session identity, written
  after every mutation and read when a cart is hydrated;
- a disaster-recovery backup with a TTL, used to rescue an in-progress
  cart across reloads when the primary snapshot is unusable.

Everything written is coerced to primitive types first; anything read
that does not parse is discarded and replaced with an empty cart.
"""

import logging
import math
import time
from typing import Any, Callable, Optional

from ..core.storage import KeyValueStorage
from ..exceptions import StorageError
from ..models.cart import CartState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0.0"
BACKUP_KEY = "cart_backup"


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value else None


def _number(value: Any, cast=float):
    """Coerce to cast, treating unparseable and non-finite values as zero"""
    try:
        number = float(value or 0)
    except (TypeError, ValueError, OverflowError):
        return cast(0)
    if not math.isfinite(number):
        return cast(0)
    return cast(number)


def _coerce_items(raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        item = {
            "id": str(entry.get("id") or ""),
            "title": str(entry.get("title") or ""),
            "price": max(0.0, _number(entry.get("price"))),
            "image_url": _str_or_none(entry.get("image_url")),
            "quantity": _number(entry.get("quantity"), int),
        }
        # Lines without identity or quantity cannot be restored
        if item["id"] and item["quantity"] > 0:
            items.append(item)
    return items


def coerce_cart_state(raw: Any) -> dict:
    """Reduce an arbitrary value to the primitive cart-state shape"""
    raw = raw if isinstance(raw, dict) else {}
    return {
        "items": _coerce_items(raw.get("items")),
        "saved": _coerce_items(raw.get("saved")),
        "subtotal": _number(raw.get("subtotal")),
        "total_quantity": _number(raw.get("total_quantity"), int),
        "coupon_code": _str_or_none(raw.get("coupon_code")),
        "coupon_discount": _number(raw.get("coupon_discount")),
        "gift_card_code": _str_or_none(raw.get("gift_card_code")),
        "gift_card_amount_applied": _number(raw.get("gift_card_amount_applied")),
    }


class CartPersistence:
    """Reads and writes cart snapshots through a KeyValueStorage"""

    def __init__(
        self,
        storage: KeyValueStorage,
        backup_ttl_seconds: int = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.backup_ttl_seconds = backup_ttl_seconds
        self._clock = clock

    @staticmethod
    def snapshot_key(session_key: str) -> str:
        return f"cart_state:{session_key}"

    # ==================== Primary snapshot ====================

    def save_snapshot(self, session_key: str, cart: CartState) -> None:
        """Persist the primary snapshot for a session"""
        record = {
            "version": SNAPSHOT_VERSION,
            "saved_at": self._clock(),
            "cart": coerce_cart_state(cart.model_dump(mode="json")),
        }
        try:
            self.storage.set_json(self.snapshot_key(session_key), record)
        except StorageError as e:
            logger.error(f"Failed to save cart snapshot: {e}")

    def load_snapshot(self, session_key: str) -> CartState:
        """
        Load the primary snapshot.

        Returns an empty cart when nothing is stored. A corrupt or
        incompatible snapshot is discarded.
        """
        key = self.snapshot_key(session_key)
        try:
            record = self.storage.get_json(key)
        except StorageError as e:
            logger.warning(f"Discarding unreadable cart snapshot: {e}")
            self._discard(key)
            return CartState()

        if record is None:
            return CartState()

        if not isinstance(record, dict) or record.get("version") != SNAPSHOT_VERSION:
            logger.warning(f"Discarding cart snapshot with unsupported format for {session_key}")
            self._discard(key)
            return CartState()

        return self._to_state(record.get("cart"), key)

    def clear_snapshot(self, session_key: str) -> None:
        self._discard(self.snapshot_key(session_key))

    # ==================== Backup ====================

    def save_backup(self, cart: CartState, user_id: Optional[str] = None) -> None:
        """Save the recovery backup"""
        backup = {
            "cart": coerce_cart_state(cart.model_dump(mode="json")),
            "timestamp": self._clock(),
            "version": SNAPSHOT_VERSION,
            "user_id": user_id,
        }
        try:
            self.storage.set_json(BACKUP_KEY, backup)
        except StorageError as e:
            logger.error(f"Failed to save cart backup: {e}")

    def load_backup(self, user_id: Optional[str] = None) -> Optional[CartState]:
        """Load the recovery backup if it is fresh and belongs to user_id"""
        try:
            backup = self.storage.get_json(BACKUP_KEY)
        except StorageError as e:
            logger.warning(f"Discarding unreadable cart backup: {e}")
            self.clear_backup()
            return None

        if not isinstance(backup, dict):
            if backup is not None:
                self.clear_backup()
            return None

        timestamp = _number(backup.get("timestamp"))
        if self._clock() - timestamp > self.backup_ttl_seconds:
            logger.info("Cart backup expired, removing")
            self.clear_backup()
            return None

        if user_id is not None and backup.get("user_id") not in (None, user_id):
            return None

        return self._to_state(backup.get("cart"), BACKUP_KEY)

    def clear_backup(self) -> None:
        self._discard(BACKUP_KEY)

    def last_backup_time(self) -> Optional[float]:
        try:
            backup = self.storage.get_json(BACKUP_KEY)
        except StorageError:
            return None
        if isinstance(backup, dict) and backup.get("timestamp") is not None:
            return _number(backup["timestamp"])
        return None

    # ==================== Helpers ====================

    def _to_state(self, raw: Any, key: str) -> CartState:
        try:
            return CartState.model_validate(coerce_cart_state(raw))
        except ValueError as e:
            logger.warning(f"Discarding invalid cart data under '{key}': {e}")
            self._discard(key)
            return CartState()

    def _discard(self, key: str) -> None:
        try:
            self.storage.remove(key)
        except StorageError as e:
            logger.error(f"Failed to remove '{key}': {e}")
