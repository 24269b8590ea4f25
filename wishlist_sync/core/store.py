# wishlist_sync/core/store.py
import datetime
from typing import Callable, List, Optional

from .models import WishlistItem, now_utc


class ItemStore:
    """
    Ordered, id-unique collection of wishlist items.

    Pure in-memory state: no I/O, no notifications. Items stamped by the
    store get an addedAt that never goes backwards, even if the clock does.
    """

    def __init__(
        self,
        items: Optional[List[WishlistItem]] = None,
        clock: Callable[[], datetime.datetime] = now_utc,
    ):
        self._clock = clock
        self._items: List[WishlistItem] = []
        self._last_stamp: Optional[datetime.datetime] = None
        if items:
            self.replace(items)

    def contains(self, product_id: str) -> bool:
        return self.index_of(product_id) is not None

    def get(self, product_id: str) -> Optional[WishlistItem]:
        idx = self.index_of(product_id)
        return self._items[idx] if idx is not None else None

    def index_of(self, product_id: str) -> Optional[int]:
        for idx, it in enumerate(self._items):
            if it.id == product_id:
                return idx
        return None

    def add(self, item: WishlistItem) -> bool:
        if self.contains(item.id):
            return False
        self._items.append(self._stamp(item))
        return True

    def insert(self, index: int, item: WishlistItem) -> bool:
        if self.contains(item.id):
            return False
        index = max(0, min(index, len(self._items)))
        self._items.insert(index, self._stamp(item))
        return True

    def remove(self, product_id: str) -> bool:
        idx = self.index_of(product_id)
        if idx is None:
            return False
        del self._items[idx]
        return True

    def replace(self, items: List[WishlistItem]) -> None:
        self._items = []
        for it in items:
            if not self.contains(it.id):
                self._items.append(self._stamp(it))

    def snapshot(self) -> List[WishlistItem]:
        return list(self._items)

    def count(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def _stamp(self, item: WishlistItem) -> WishlistItem:
        if item.added_at is not None:
            if self._last_stamp is None or item.added_at > self._last_stamp:
                self._last_stamp = item.added_at
            return item
        ts = self._clock()
        if self._last_stamp is not None and ts < self._last_stamp:
            ts = self._last_stamp
        self._last_stamp = ts
        return item.stamped(ts)
