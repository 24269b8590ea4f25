import asyncio
import datetime
import json

import pytest
import pytz
import requests

from wishlist_sync.core.bus import NotificationBus
from wishlist_sync.core.models import Money, PriceRange, ProductImage, WishlistItem
from wishlist_sync.core.session_cache import SessionCache
from wishlist_sync.core.storage import StorageArea
from wishlist_sync.remote.client import ServerWishlistClient, ValidationError
from wishlist_sync.remote.record import WishlistRecordStore

CUSTOMER_ID = "gid://shopify/Customer/1001"


def ts(year=2024, month=1, day=1, hour=0, minute=0):
    return datetime.datetime(year, month, day, hour, minute, tzinfo=pytz.UTC)


def make_item(product_id, added_at=None, with_details=False):
    extra = {}
    if with_details:
        extra = {
            "image": ProductImage(url=f"https://cdn.example.com/{product_id}.jpg", alt_text="Box art"),
            "price_range": PriceRange(Money(amount="249.00", currency_code="SEK")),
            "variant_id": f"{product_id}-v1",
        }
    return WishlistItem(
        id=product_id,
        title=f"Product {product_id}",
        handle=f"product-{product_id.lower()}",
        added_at=added_at,
        **extra,
    )


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class RecordSession:
    """Stands in for requests.Session, answering from a WishlistRecordStore."""

    def __init__(self, record, customer_id=CUSTOMER_ID, failures=0, status=None):
        self.record = record
        self.customer_id = customer_id
        self.failures = failures
        self.status = status
        self.requests = []

    def _respond(self, handler):
        if self.failures > 0:
            self.failures -= 1
            raise requests.ConnectionError("connection reset")
        if self.status is not None:
            return FakeResponse(self.status, {"error": "Internal error"})
        body, status = handler()
        return FakeResponse(status, json.loads(json.dumps(body)))

    def get(self, url, headers=None, timeout=None):
        self.requests.append(("GET", url, None))
        return self._respond(lambda: self.record.handle_load(self.customer_id))

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append(("POST", url, json))
        return self._respond(lambda: self.record.handle_mutation(self.customer_id, json))


class ControlledClient:
    """
    Async client whose responses can be held and released one at a time.

    Mutations take effect on `items` when their response is released, as
    a server would apply them when the request lands.
    """

    def __init__(self, items=None, hold=False, return_items=False, fail_with=None, fail_ids=()):
        self.items = list(items or [])
        self.hold = hold
        self.return_items = return_items
        self.fail_with = fail_with
        self.fail_ids = set(fail_ids)
        self.calls = []
        self.pending = []
        self.load_error = None

    async def load(self):
        self.calls.append(("load", None))
        if self.load_error is not None:
            raise self.load_error
        return list(self.items)

    async def add(self, item):
        self.calls.append(("add", item.id))
        await self._wait()
        if item.id in self.fail_ids:
            raise ValidationError(f"rejected {item.id}", 400)
        if not any(it.id == item.id for it in self.items):
            self.items.append(item)
        return list(self.items) if self.return_items else None

    async def remove(self, product_id):
        self.calls.append(("remove", product_id))
        await self._wait()
        if product_id in self.fail_ids:
            raise ValidationError(f"rejected {product_id}", 400)
        self.items = [it for it in self.items if it.id != product_id]
        return list(self.items) if self.return_items else None

    async def _wait(self):
        if self.hold:
            fut = asyncio.get_running_loop().create_future()
            self.pending.append(fut)
            await fut
        if self.fail_with is not None:
            raise self.fail_with

    def release(self, exc=None):
        fut = self.pending.pop(0)
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(None)

    def ids(self):
        return [it.id for it in self.items]


@pytest.fixture
def area():
    return StorageArea()


@pytest.fixture
def cache(area):
    return SessionCache(area, key="wishlist", tab_id="tab-1")


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def published(bus):
    counts = []
    bus.subscribe(lambda change: counts.append(change.count))
    return counts


@pytest.fixture
def record():
    return WishlistRecordStore(":memory:")


@pytest.fixture
def record_client(record):
    session = RecordSession(record)
    client = ServerWishlistClient(
        base_url="https://shop.example.com",
        access_token="token",
        session=session,
        retry_attempts=3,
        retry_max_wait=0,
    )
    return client, session
