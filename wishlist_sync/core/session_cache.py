# wishlist_sync/core/session_cache.py
import json
import os
from typing import Callable, List, Optional

from .logger import get_logger
from .models import InvalidItemError, WishlistItem, items_from_json, items_to_json
from .storage import StorageArea, StorageEvent, StorageUnavailable, new_tab_id

logger = get_logger(__name__)

STORAGE_KEY = os.getenv("WISHLIST_STORAGE_KEY", "wishlist").strip() or "wishlist"
MAX_ITEMS = int(os.getenv("WISHLIST_SESSION_MAX_ITEMS", "50"))


class SessionCache:
    """
    Session-scoped persistence of an anonymous visitor's wishlist.

    Reads are fail-safe (anything unreadable is an empty wishlist) and
    writes are best-effort (failures are logged, never raised).
    """

    def __init__(
        self,
        area: StorageArea,
        key: str = STORAGE_KEY,
        tab_id: Optional[str] = None,
        max_items: int = MAX_ITEMS,
    ):
        self.area = area
        self.key = key
        self.tab_id = tab_id or new_tab_id()
        self.max_items = max(1, max_items)

    def load(self) -> List[WishlistItem]:
        raw = self.area.get_item(self.key)
        if raw is None:
            return []
        try:
            return items_from_json(json.loads(raw))
        except (ValueError, InvalidItemError) as e:
            # InvalidItemError is a ValueError; both mean the slot is unusable
            logger.warning("Discarding corrupt wishlist in %r: %s", self.key, e)
            self._discard()
            return []

    def save(self, snapshot: List[WishlistItem]) -> bool:
        items = list(snapshot)
        if len(items) > self.max_items:
            logger.warning(
                "Wishlist has %d items; keeping the first %d in session storage.",
                len(items), self.max_items,
            )
            items = items[: self.max_items]
        try:
            data = json.dumps(items_to_json(items))
            self.area.set_item(self.key, data, source=self.tab_id)
        except (StorageUnavailable, TypeError, ValueError) as e:
            logger.warning("Failed to save wishlist to session storage: %s", e)
            return False
        logger.debug("Saved %d wishlist items to %r.", len(items), self.key)
        return True

    def clear(self) -> None:
        try:
            self.area.remove_item(self.key, source=self.tab_id)
        except StorageUnavailable as e:
            logger.warning("Failed to clear session wishlist: %s", e)

    def subscribe_external(self, handler: Callable[[], None]) -> Callable[[], None]:
        """Call handler when another tab changes this cache's key."""

        def on_event(event: StorageEvent) -> None:
            if event.key == self.key:
                handler()

        return self.area.add_listener(self.tab_id, on_event)

    def _discard(self) -> None:
        try:
            self.area.remove_item(self.key, source=self.tab_id)
        except StorageUnavailable as e:
            logger.debug("Could not discard corrupt wishlist value: %s", e)
