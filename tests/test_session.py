import asyncio

import pytest

from conftest import CUSTOMER_ID, ControlledClient, make_item, ts
from wishlist_sync.core.bus import NotificationBus
from wishlist_sync.core.session_cache import SessionCache
from wishlist_sync.remote.client import NetworkError
from wishlist_sync.session import AuthenticationRequired, VisitorSession, login_url


def test_anonymous_toggles_land_in_session_cache(cache):
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        await session.toggle("P1", make_item("P1"))
        await session.toggle("P2", make_item("P2"))

    asyncio.run(scenario())

    assert not session.is_authenticated
    assert [it.id for it in cache.load()] == ["P1", "P2"]
    assert session.count() == 2


def test_account_toggle_requires_login(cache):
    session = VisitorSession(cache)

    with pytest.raises(AuthenticationRequired) as exc:
        asyncio.run(session.account_toggle("P1", make_item("P1"), return_to="/products/train-set"))

    assert exc.value.login_url == "/account/login?redirect=%2Fproducts%2Ftrain-set"
    assert session.count() == 0
    assert cache.load() == []


def test_login_url_encodes_return_path():
    assert login_url("/wishlist?tab=1") == "/account/login?redirect=%2Fwishlist%3Ftab%3D1"


def test_login_migrates_without_duplicates(cache, record, record_client):
    client, _ = record_client
    # P2 was saved earlier from another device
    record.add(CUSTOMER_ID, make_item("P2", ts(year=2024)))
    bus = NotificationBus()
    counts = []
    bus.subscribe(lambda change: counts.append(change.count))
    session = VisitorSession(cache, bus)

    async def scenario():
        await session.open()
        await session.toggle("P1", make_item("P1"))
        await session.toggle("P2", make_item("P2"))
        assert [it.id for it in cache.load()] == ["P1", "P2"]
        return await session.login(client)

    report = asyncio.run(scenario())

    assert report.ok
    assert session.is_authenticated
    assert [it.id for it in record.load(CUSTOMER_ID)] == ["P2", "P1"]
    assert [it.id for it in session.items()] == ["P2", "P1"]
    assert record.load(CUSTOMER_ID)[0].added_at == ts(year=2024)
    assert cache.load() == []
    assert counts[-1] == 2


def test_authenticated_toggle_goes_to_server(cache):
    client = ControlledClient()
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        await session.login(client)
        return await session.account_toggle("P1", make_item("P1"))

    assert asyncio.run(scenario()) is True
    assert client.ids() == ["P1"]
    assert cache.load() == []


def test_second_login_does_not_migrate_again(cache):
    client = ControlledClient()
    cache.save([make_item("P1", ts())])
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        first = await session.login(client)
        second = await session.login(client)
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert [c for c in client.calls if c[0] == "add"] == [("add", "P1")]


def test_failed_login_keeps_visitor_anonymous(cache):
    client = ControlledClient()
    client.load_error = NetworkError("offline")
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        await session.toggle("P1", make_item("P1"))
        await session.login(client)

    with pytest.raises(NetworkError):
        asyncio.run(scenario())

    assert not session.is_authenticated
    assert [it.id for it in cache.load()] == ["P1"]
    assert session.contains("P1")


def test_logout_starts_an_empty_anonymous_wishlist(cache):
    client = ControlledClient(items=[make_item("P1", ts())])
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        await session.login(client)
        assert session.count() == 1
        await session.logout()

    asyncio.run(scenario())

    assert not session.is_authenticated
    assert session.count() == 0


def test_other_tab_sees_anonymous_changes(area):
    first = VisitorSession(SessionCache(area, tab_id="tab-1"))
    second = VisitorSession(SessionCache(area, tab_id="tab-2"))
    counts = []
    second.bus.subscribe(lambda change: counts.append(change.count))

    async def scenario():
        await first.open()
        await second.open()
        await first.toggle("P1", make_item("P1"))

    asyncio.run(scenario())

    assert second.contains("P1")
    assert counts[-1] == 1

    second.close()
    asyncio.run(first.toggle("P2", make_item("P2")))
    assert not second.contains("P2")


def test_concurrent_logins_migrate_once(cache):
    client = ControlledClient()
    cache.save([make_item("P1", ts())])
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        return await asyncio.gather(session.login(client), session.login(client))

    first, second = asyncio.run(scenario())

    assert first is second
    assert client.calls == [("load", None), ("add", "P1")]
    assert session.is_authenticated


class OneLoadClient(ControlledClient):
    """Server that goes away right after answering the first load."""

    async def load(self):
        items = await super().load()
        self.load_error = NetworkError("offline")
        return items


def test_login_shows_the_merged_server_record(cache):
    client = OneLoadClient(items=[make_item("S", ts())])
    cache.save([make_item("P1", ts(hour=1))])
    session = VisitorSession(cache)

    async def scenario():
        await session.open()
        await session.login(client)

    asyncio.run(scenario())

    assert session.is_authenticated
    assert [it.id for it in session.items()] == client.ids() == ["S", "P1"]


def test_clear_empties_every_tab(area):
    first = VisitorSession(SessionCache(area, tab_id="tab-1"))
    second = VisitorSession(SessionCache(area, tab_id="tab-2"))

    async def scenario():
        await first.open()
        await second.open()
        await first.toggle("P1", make_item("P1"))
        await first.toggle("P2", make_item("P2"))
        assert second.count() == 2
        await first.clear()

    asyncio.run(scenario())

    assert first.count() == 0
    assert second.count() == 0
    assert area.get_item(first.cache.key) is None


def test_clear_removes_saved_items_from_the_server(cache):
    client = ControlledClient(items=[make_item("P1", ts()), make_item("P2", ts(hour=1))])
    session = VisitorSession(cache)
    counts = []
    session.bus.subscribe(lambda change: counts.append(change.count))

    async def scenario():
        await session.open()
        await session.login(client)
        await session.clear()

    asyncio.run(scenario())

    assert client.ids() == []
    assert session.count() == 0
    assert counts[-1] == 0
    assert sorted(c for c in client.calls if c[0] == "remove") == [("remove", "P1"), ("remove", "P2")]
