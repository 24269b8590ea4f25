# wishlist_sync/core/storage.py
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .logger import get_logger

logger = get_logger(__name__)


class StorageUnavailable(Exception):
    """Write refused: quota exceeded or storage disabled."""


@dataclass(frozen=True)
class StorageEvent:
    key: str
    old_value: Optional[str]
    new_value: Optional[str]
    source: Optional[str] = None


StorageListener = Callable[[StorageEvent], None]


def new_tab_id() -> str:
    return uuid.uuid4().hex


class StorageArea:
    """
    String key-value slot shared by every tab of one browser session.

    Each write or removal raises a StorageEvent for listeners registered by
    the *other* tabs; the writing tab is never notified of its own change.
    """

    def __init__(self, quota_bytes: Optional[int] = None, enabled: bool = True):
        self.quota_bytes = quota_bytes
        self.enabled = enabled
        self._data: Dict[str, str] = {}
        self._listeners: List[Tuple[str, StorageListener]] = []

    def get_item(self, key: str) -> Optional[str]:
        if not self.enabled:
            return None
        return self._data.get(key)

    def set_item(self, key: str, value: str, source: Optional[str] = None) -> None:
        if not self.enabled:
            raise StorageUnavailable("storage is disabled")
        if self.quota_bytes is not None:
            used = sum(
                len(k) + len(v) for k, v in self._data.items() if k != key
            )
            if used + len(key) + len(value) > self.quota_bytes:
                raise StorageUnavailable(
                    f"quota of {self.quota_bytes} bytes exceeded writing {key!r}"
                )
        old = self._data.get(key)
        self._data[key] = value
        self._emit(StorageEvent(key, old, value, source))

    def remove_item(self, key: str, source: Optional[str] = None) -> None:
        if not self.enabled:
            raise StorageUnavailable("storage is disabled")
        if key not in self._data:
            return
        old = self._data.pop(key)
        self._emit(StorageEvent(key, old, None, source))

    def add_listener(self, tab_id: str, handler: StorageListener) -> Callable[[], None]:
        entry = (tab_id, handler)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _emit(self, event: StorageEvent) -> None:
        for tab_id, handler in list(self._listeners):
            if event.source is not None and tab_id == event.source:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.exception(
                    "Storage listener for tab %s failed on key %s: %s",
                    tab_id, event.key, e,
                )
