"""
Key/value storage for persisted cart state.

Values are JSON strings. Writers publish change notifications to
subscribers of the written key, so collaborators react to changes
(e.g. a session identity switch) instead of polling.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import quote

from ..exceptions import StorageError

logger = logging.getLogger(__name__)

Listener = Callable[[str, Optional[str]], None]


class KeyValueStorage(ABC):
    """Abstract string storage with per-key change notifications"""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _write(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def _delete(self, key: str) -> None:
        ...

    def get(self, key: str) -> Optional[str]:
        """Get the raw value stored under key"""
        return self._read(key)

    def set(self, key: str, value: str) -> None:
        """Store value under key and notify subscribers if it changed"""
        previous = self._read(key)
        self._write(key, value)
        if previous != value:
            self._publish(key, value)

    def remove(self, key: str) -> None:
        """Remove key and notify subscribers if it existed"""
        if self._read(key) is None:
            return
        self._delete(key)
        self._publish(key, None)

    def get_json(self, key: str) -> Any:
        """
        Get a JSON value.

        Returns None when the key is missing. Raises StorageError when the
        stored value is not valid JSON.
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Malformed JSON under '{key}': {e}") from e

    def set_json(self, key: str, value: Any) -> None:
        """Serialize value to JSON and store it"""
        self.set(key, json.dumps(value, sort_keys=True))

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """
        Subscribe to changes of key.

        Returns a callable that removes the subscription.
        """
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _publish(self, key: str, value: Optional[str]) -> None:
        for listener in list(self._listeners.get(key, [])):
            try:
                listener(key, value)
            except Exception:
                logger.exception(f"Storage listener for '{key}' failed")


class MemoryStorage(KeyValueStorage):
    """In-memory storage"""

    def __init__(self):
        super().__init__()
        self._data: dict[str, str] = {}

    def _read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write(self, key: str, value: str) -> None:
        self._data[key] = value

    def _delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage(KeyValueStorage):
    """One JSON file per key inside a directory, survives process restarts"""

    def __init__(self, directory: str):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        # Percent-encoding keeps distinct keys in distinct files
        return self.directory / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_name(f"{path.name}.tmp")
        try:
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e


def create_storage(storage_dir: Optional[str] = None) -> KeyValueStorage:
    """File storage when a directory is configured, memory otherwise"""
    if storage_dir:
        return FileStorage(storage_dir)
    return MemoryStorage()
