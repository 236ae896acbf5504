"""Reconciliation models"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from .cart import CartState


class ConflictKind(str, Enum):
    QUANTITY = "quantity"
    PRICE = "price"
    AVAILABILITY = "availability"
    REMOVED = "removed"


class Resolution(str, Enum):
    LOCAL = "local"
    SERVER = "server"
    MANUAL = "manual"


class CartConflict(BaseModel):
    """Disagreement between the local and server value of one item field"""
    kind: ConflictKind
    item_id: str
    local_value: Optional[Any] = None
    server_value: Optional[Any] = None
    resolution: Resolution


class ReconcileResult(BaseModel):
    merged: CartState
    conflicts: list[CartConflict] = []

    @property
    def local_wins(self) -> list[CartConflict]:
        return [c for c in self.conflicts if c.resolution == Resolution.LOCAL]


class SyncResult(BaseModel):
    success: bool
    synced: bool
    conflicts: list[CartConflict] = []
    message: str


class SyncStatus(BaseModel):
    is_online: bool
    last_sync_timestamp: Optional[datetime] = None
    has_pending_changes: bool = False
