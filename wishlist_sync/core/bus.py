# wishlist_sync/core/bus.py
from dataclasses import dataclass
from typing import Callable, List, Optional

from .logger import get_logger
from .models import WishlistItem
from .session_cache import SessionCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class WishlistChange:
    count: int
    product_id: Optional[str] = None


Handler = Callable[[WishlistChange], None]


class NotificationBus:
    """
    In-process publish/subscribe for wishlist count changes.

    Any number of UI surfaces subscribe; nothing is retained between
    publishes, so late subscribers only see the next change.
    """

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, count: int, product_id: Optional[str] = None) -> None:
        change = WishlistChange(count=count, product_id=product_id)
        logger.debug("Publishing wishlist change: %s", change)
        for handler in list(self._handlers):
            try:
                handler(change)
            except Exception as e:
                logger.exception("Wishlist subscriber %r failed: %s", handler, e)

    def follow(
        self,
        cache: SessionCache,
        reload: Optional[Callable[[List[WishlistItem]], None]] = None,
    ) -> Callable[[], None]:
        """
        Republish when another tab writes the session wishlist.

        The signal only says "something changed"; the count is recomputed
        from what this tab reads back out of the cache.
        """

        def on_external_change() -> None:
            items = cache.load()
            if reload is not None:
                reload(items)
            self.publish(len(items))

        return cache.subscribe_external(on_external_change)

    def __len__(self) -> int:
        return len(self._handlers)
