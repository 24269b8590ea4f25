# wishlist_sync/remote/client.py
import asyncio
import os
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..core.logger import get_logger
from ..core.models import InvalidItemError, WishlistItem, format_timestamp, items_from_json

logger = get_logger(__name__)

API_URL = os.getenv("WISHLIST_API_URL", "http://localhost:3000").rstrip("/")
API_PATH = os.getenv("WISHLIST_API_PATH", "/account/wishlist")
HTTP_TIMEOUT = float(os.getenv("WISHLIST_HTTP_TIMEOUT", "15"))
RETRY_ATTEMPTS = int(os.getenv("WISHLIST_RETRY_ATTEMPTS", "3"))
RETRY_MAX_WAIT = float(os.getenv("WISHLIST_RETRY_MAX_WAIT", "8"))
USER_AGENT = os.getenv("WISHLIST_USER_AGENT", "wishlist-sync/0.1")


class WishlistClientError(Exception):
    """Base class for failures talking to the wishlist record."""

    status: Optional[int] = None

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(WishlistClientError):
    """Transport failure or server-side error; worth retrying."""


class NotAuthenticatedError(WishlistClientError):
    """The visitor has no valid customer session."""


class ValidationError(WishlistClientError):
    """The request was rejected as incomplete or malformed."""


def mutation_payload(action: str, product_id: str, item: Optional[WishlistItem] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"action": action, "productId": product_id}
    if item is not None:
        payload["productTitle"] = item.title
        payload["productHandle"] = item.handle
        if item.image is not None:
            payload["productImage"] = item.image.to_dict()
        if item.price_range is not None:
            payload["productPrice"] = item.price_range.min_variant_price.to_dict()
        if item.added_at is not None:
            payload["addedAt"] = format_timestamp(item.added_at)
        if item.variant_id:
            payload["variantId"] = item.variant_id
    return payload


class ServerWishlistClient:
    """
    Reads and mutates the authenticated visitor's durable wishlist.

    The HTTP exchange is blocking `requests` code run in a worker thread, so
    awaiting a call suspends only the logical operation, not the event loop.
    Transient failures are retried with jittered exponential backoff before
    a NetworkError is raised.
    """

    def __init__(
        self,
        base_url: str = API_URL,
        access_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        path: str = API_PATH,
        timeout: float = HTTP_TIMEOUT,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_max_wait: float = RETRY_MAX_WAIT,
    ):
        self.url = base_url.rstrip("/") + path
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if access_token:
            self.headers["Authorization"] = f"Bearer {access_token}"
        self._retrying = Retrying(
            stop=stop_after_attempt(max(1, retry_attempts)),
            wait=wait_exponential_jitter(
                initial=min(1.0, retry_max_wait), max=retry_max_wait, jitter=min(1.0, retry_max_wait)
            ),
            retry=retry_if_exception_type(NetworkError),
            reraise=True,
        )

    async def load(self) -> List[WishlistItem]:
        body = await asyncio.to_thread(self._send, "GET", None)
        items = self._items_from(body)
        logger.debug("Loaded %d wishlist items from %s", len(items or []), self.url)
        return items or []

    async def add(self, item: WishlistItem) -> Optional[List[WishlistItem]]:
        missing = [f for f in ("id", "title", "handle") if not getattr(item, f)]
        if missing:
            raise ValidationError(f"Cannot add item without {', '.join(missing)}")
        payload = mutation_payload("add", item.id, item)
        body = await asyncio.to_thread(self._send, "POST", payload)
        return self._items_from(body)

    async def remove(self, product_id: str) -> Optional[List[WishlistItem]]:
        if not product_id:
            raise ValidationError("Product ID is required")
        payload = mutation_payload("remove", product_id)
        body = await asyncio.to_thread(self._send, "POST", payload)
        return self._items_from(body)

    def _send(self, method: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        # Each call gets its own retry state; calls may overlap in worker threads
        return self._retrying.copy()(self._exchange, method, payload)

    def _exchange(self, method: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            if method == "GET":
                r = self.session.get(self.url, headers=self.headers, timeout=self.timeout)
            else:
                r = self.session.post(
                    self.url, json=payload, headers=self.headers, timeout=self.timeout
                )
        except requests.RequestException as e:
            logger.warning("Wishlist %s %s failed: %s", method, self.url, e)
            raise NetworkError(str(e)) from e

        status = r.status_code
        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if status >= 400:
            message = body.get("error") or f"HTTP {status}"
            logger.warning("Wishlist %s %s returned %d: %s", method, self.url, status, message)
            if status in (401, 403):
                raise NotAuthenticatedError(message, status)
            if status in (400, 404, 422):
                raise ValidationError(message, status)
            raise NetworkError(message, status)

        if method == "POST" and not body.get("success"):
            raise ValidationError(body.get("error") or "Wishlist mutation was not acknowledged", status)
        return body

    def _items_from(self, body: Dict[str, Any]) -> Optional[List[WishlistItem]]:
        if "items" not in body:
            return None
        try:
            return items_from_json(body["items"])
        except InvalidItemError as e:
            # An unreadable snapshot is not authoritative; keep the optimistic state
            logger.warning("Ignoring malformed wishlist in server response: %s", e)
            return None
