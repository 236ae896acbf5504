"""Offline action queue models"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ActionDomain(str, Enum):
    CART = "cart"
    ORDER = "order"
    USER = "user"
    PRODUCT = "product"


class ActionPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class OfflineAction(BaseModel):
    """A mutation waiting to be delivered to the backend"""
    id: str
    domain: ActionDomain
    operation: str
    payload: dict[str, Any] = {}
    created_at: datetime
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    priority: ActionPriority = ActionPriority.MEDIUM
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries


class SyncPassResult(BaseModel):
    """Outcome of one pass over the queue"""
    attempted: int = 0
    synced: list[str] = []
    failed: list[str] = []
    dropped: list[str] = []
    skipped: bool = False


class QueueStatus(BaseModel):
    is_online: bool
    pending_count: int
    last_sync: Optional[datetime] = None
    sync_in_progress: bool = False
