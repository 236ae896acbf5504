# Core modules

from .config import Settings, get_settings
from .session import SessionManager, UserSession
from .storage import KeyValueStorage, MemoryStorage, FileStorage, create_storage

__all__ = [
    "Settings",
    "get_settings",
    "SessionManager",
    "UserSession",
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "create_storage",
]
