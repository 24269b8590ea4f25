# wishlist_sync/session.py
import asyncio
import os
from typing import Callable, List, Optional
from urllib.parse import quote

from .core.bus import NotificationBus
from .core.logger import get_logger
from .core.models import WishlistItem
from .core.session_cache import SessionCache
from .migration import MigrationAdapter, MigrationReport
from .remote.client import ServerWishlistClient
from .sync import AnonymousBackend, AuthenticatedBackend, SyncController

logger = get_logger(__name__)

LOGIN_PATH = os.getenv("WISHLIST_LOGIN_PATH", "/account/login")


class AuthenticationRequired(Exception):
    """An account-only wishlist action was attempted by an anonymous visitor."""

    def __init__(self, login_url: str):
        super().__init__(f"Login required: {login_url}")
        self.login_url = login_url


def login_url(return_to: str = "/", login_path: str = LOGIN_PATH) -> str:
    return f"{login_path}?redirect={quote(return_to, safe='')}"


class VisitorSession:
    """
    Wishlist state for one visitor in one tab.

    The backend is picked once per identity state: anonymous visitors write
    to the session cache only, authenticated visitors to their server
    record. Logging in migrates the session wishlist exactly once.
    """

    def __init__(self, cache: SessionCache, bus: Optional[NotificationBus] = None):
        self.cache = cache
        self.bus = bus if bus is not None else NotificationBus()
        self.controller = SyncController(AnonymousBackend(cache), self.bus)
        self.migration: Optional[MigrationAdapter] = None
        self._unfollow: Optional[Callable[[], None]] = None
        self._login: Optional["asyncio.Task[MigrationReport]"] = None

    @property
    def is_authenticated(self) -> bool:
        return self.controller.backend.authenticated

    async def open(self) -> List[WishlistItem]:
        items = await self.controller.load()
        if not self.is_authenticated:
            self._follow_other_tabs()
        return items

    def contains(self, product_id: str) -> bool:
        return self.controller.contains(product_id)

    def count(self) -> int:
        return self.controller.count()

    def items(self) -> List[WishlistItem]:
        return self.controller.snapshot()

    async def toggle(self, product_id: str, item: Optional[WishlistItem] = None) -> bool:
        return await self.controller.toggle(product_id, item)

    async def account_toggle(
        self, product_id: str, item: Optional[WishlistItem] = None, return_to: str = "/"
    ) -> bool:
        """Toggle on the customer's saved wishlist; anonymous visitors must log in first."""
        if not self.is_authenticated:
            raise AuthenticationRequired(login_url(return_to))
        return await self.controller.toggle(product_id, item)

    async def clear(self) -> None:
        await self.controller.clear()

    async def login(self, client: ServerWishlistClient) -> MigrationReport:
        if self._login is None:
            self._login = asyncio.ensure_future(self._log_in(client))
        else:
            logger.debug("Visitor already logging in; reusing that login.")
        return await asyncio.shield(self._login)

    async def _log_in(self, client: ServerWishlistClient) -> MigrationReport:
        try:
            await self.controller.wait_idle()
            self._stop_following()
            self.migration = MigrationAdapter(self.cache, client)
            report = await self.migration.migrate()
        except Exception:
            # Nothing was merged or cleared; the visitor stays anonymous
            self._login = None
            self.migration = None
            self._follow_other_tabs()
            raise

        self.controller.backend = AuthenticatedBackend(client)
        self.controller.replace(report.held)
        logger.info(
            "Visitor logged in; wishlist has %d items (%d migrated, %d failed).",
            self.controller.count(), len(report.migrated), len(report.failed),
        )
        return report

    async def logout(self) -> None:
        if self._login is not None and not self._login.done():
            await asyncio.gather(self._login, return_exceptions=True)
        await self.controller.wait_idle()
        self.controller.backend = AnonymousBackend(self.cache)
        self._login = None
        self.migration = None
        self.controller.replace([])
        self._follow_other_tabs()

    def close(self) -> None:
        self._stop_following()

    def _follow_other_tabs(self) -> None:
        if self._unfollow is None:
            self._unfollow = self.bus.follow(
                self.cache, lambda items: self.controller.replace(items, notify=False)
            )

    def _stop_following(self) -> None:
        if self._unfollow is not None:
            self._unfollow()
            self._unfollow = None
