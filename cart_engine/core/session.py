"""Session management for the shopper's cart identity"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from dataclasses import dataclass

from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

ACTIVE_USER_KEY = "cart_user_id"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserSession:
    """Shopper session"""
    session_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    access_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    @property
    def has_valid_credential(self) -> bool:
        """Whether a credential can be attached to backend requests"""
        if not self.access_token:
            return False
        if self.token_expires_at is None:
            return True
        return _now() < self.token_expires_at

    def attach_credential(self, token: str, expires_in: Optional[int] = None) -> None:
        """Store a credential issued by the authentication subsystem"""
        self.access_token = token
        self.token_expires_at = _now() + timedelta(seconds=expires_in) if expires_in else None
        self.updated_at = _now()


class SessionManager:
    """
    Manages shopper sessions and the active cart identity.

    The active user id lives in storage so that another actor (a second
    tab, a developer user switcher) can change it; subscribers are told
    about the switch through the storage notification.
    """

    def __init__(self, storage: KeyValueStorage, default_user_id: str = "demo-user"):
        self.storage = storage
        self.default_user_id = default_user_id
        self.sessions: dict[str, UserSession] = {}

    # ==================== Identity ====================

    @property
    def active_user_id(self) -> str:
        """Current cart identity"""
        return self.storage.get(ACTIVE_USER_KEY) or self.default_user_id

    def switch_user(self, user_id: str) -> None:
        """Change the active identity and notify subscribers"""
        if user_id == self.active_user_id and self.storage.get(ACTIVE_USER_KEY) is not None:
            return
        logger.info(f"Switching cart identity to {user_id}")
        self.storage.set(ACTIVE_USER_KEY, user_id)

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """
        Call callback with the new user id whenever the identity changes.

        Returns an unsubscribe callable.
        """
        def on_change(key: str, value: Optional[str]) -> None:
            callback(value or self.default_user_id)

        return self.storage.subscribe(ACTIVE_USER_KEY, on_change)

    # ==================== Credentials ====================

    def sign_in(self, token: str, expires_in: Optional[int] = None, user_id: Optional[str] = None) -> UserSession:
        """
        Record a credential issued for user_id and make it the active identity.

        Any earlier session of the same user is replaced.
        """
        user_id = user_id or self.active_user_id
        now = _now()
        session = UserSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        session.attach_credential(token, expires_in)
        self.sign_out(user_id)
        self.sessions[session.session_id] = session
        logger.info(f"Signed in {user_id} (session {session.session_id})")
        self.switch_user(user_id)
        return session

    def sign_out(self, user_id: Optional[str] = None) -> bool:
        """Forget the session of user_id (or the active identity)"""
        user_id = user_id or self.active_user_id
        stale = [sid for sid, s in self.sessions.items() if s.user_id == user_id]
        for sid in stale:
            del self.sessions[sid]
        return bool(stale)

    def session_for(self, user_id: Optional[str] = None) -> Optional[UserSession]:
        user_id = user_id or self.active_user_id
        return next((s for s in self.sessions.values() if s.user_id == user_id), None)

    def current_credential(self) -> Optional[str]:
        """
        Valid access token for the active identity, if any.

        Passed to HttpCartBackend as its credential provider. An expired
        session is discarded when it is looked up.
        """
        session = self.session_for()
        if session is None:
            return None
        if not session.has_valid_credential:
            logger.info(f"Credential for {session.user_id} expired, discarding session")
            del self.sessions[session.session_id]
            return None
        return session.access_token
