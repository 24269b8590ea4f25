# wishlist_sync/sync.py
import asyncio
import enum
from dataclasses import dataclass
from typing import Dict, List, Optional

from .core.bus import NotificationBus
from .core.diff import diff_items, index_items
from .core.logger import get_logger
from .core.models import InvalidItemError, WishlistItem
from .core.session_cache import SessionCache
from .core.store import ItemStore
from .remote.client import ServerWishlistClient

logger = get_logger(__name__)


class OperationState(enum.Enum):
    IDLE = "idle"
    APPLYING = "applying"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class AnonymousBackend:
    """Session-only durability: the session cache is authoritative."""

    authenticated = False

    def __init__(self, cache: SessionCache):
        self.cache = cache

    async def load(self) -> List[WishlistItem]:
        return self.cache.load()

    async def write(
        self,
        product_id: str,
        present: bool,
        item: Optional[WishlistItem],
        snapshot: List[WishlistItem],
    ) -> Optional[List[WishlistItem]]:
        # Best effort: a refused write leaves the wishlist in memory only
        if snapshot:
            self.cache.save(snapshot)
        else:
            self.cache.clear()
        return None


class AuthenticatedBackend:
    """The customer's server-side record is authoritative."""

    authenticated = True

    def __init__(self, client: ServerWishlistClient):
        self.client = client

    async def load(self) -> List[WishlistItem]:
        return await self.client.load()

    async def write(
        self,
        product_id: str,
        present: bool,
        item: Optional[WishlistItem],
        snapshot: List[WishlistItem],
    ) -> Optional[List[WishlistItem]]:
        if present:
            return await self.client.add(item)
        return await self.client.remove(product_id)


@dataclass
class _Operation:
    product_id: str
    desired: bool
    committed: bool
    item: Optional[WishlistItem]
    entry: Optional[WishlistItem]
    position: Optional[int]
    state: OperationState = OperationState.APPLYING
    task: Optional["asyncio.Task[bool]"] = None


class SyncController:
    """
    Owner of the in-memory wishlist and the only code that mutates it.

    Every toggle is applied to the ItemStore and published first, then
    written to whichever backend is authoritative for the visitor. A failed
    write puts the product back the way it was; a second toggle of the same
    product while the first is still being written is folded into the same
    operation so only the final desired state is sent.
    """

    def __init__(
        self,
        backend,
        bus: NotificationBus,
        store: Optional[ItemStore] = None,
    ):
        self.backend = backend
        self.bus = bus
        self._store = store if store is not None else ItemStore()
        self._ops: Dict[str, _Operation] = {}
        self._outcomes: Dict[str, OperationState] = {}

    def contains(self, product_id: str) -> bool:
        return self._store.contains(product_id)

    def count(self) -> int:
        return self._store.count()

    def snapshot(self) -> List[WishlistItem]:
        return self._store.snapshot()

    def state(self, product_id: str) -> OperationState:
        op = self._ops.get(product_id)
        if op is not None:
            return op.state
        return self._outcomes.get(product_id, OperationState.IDLE)

    async def load(self) -> List[WishlistItem]:
        items = await self.backend.load()
        self.replace(items)
        return self.snapshot()

    def replace(self, items: List[WishlistItem], notify: bool = True) -> None:
        self._store.replace(items)
        if notify:
            self.bus.publish(self._store.count())

    async def toggle(self, product_id: str, item: Optional[WishlistItem] = None) -> bool:
        """
        Flip membership of product_id and return the resulting membership.

        `item` is required when the product is not yet in the wishlist.
        Backend errors are re-raised after the store has been rolled back.
        """
        present = self._store.contains(product_id)
        desired = not present
        if desired:
            if item is None:
                raise InvalidItemError(f"Item data is required to add {product_id!r}")
            if item.id != product_id:
                raise InvalidItemError(
                    f"Item id {item.id!r} does not match product {product_id!r}"
                )

        op = self._begin(product_id, desired, item)
        # The commit outlives a cancelled caller
        return await asyncio.shield(op.task)

    async def clear(self) -> None:
        """
        Remove every product from the wishlist.

        The empty wishlist is published once, then each removal is written
        as its own operation. Products whose removal fails are put back and
        the first error is re-raised.
        """
        product_ids = [it.id for it in self._store.snapshot()]
        if not product_ids:
            return
        ops = [self._begin(pid, False, None, notify=False) for pid in product_ids]
        self.bus.publish(self._store.count())

        tasks = list(dict.fromkeys(op.task for op in ops))
        results = await asyncio.shield(asyncio.gather(*tasks, return_exceptions=True))
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            logger.warning(
                "Failed to remove %d of %d wishlist items.", len(errors), len(product_ids)
            )
            raise errors[0]

    async def wait_idle(self) -> None:
        while self._ops:
            tasks = [op.task for op in self._ops.values() if op.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    def _begin(
        self,
        product_id: str,
        desired: bool,
        item: Optional[WishlistItem],
        notify: bool = True,
    ) -> _Operation:
        op = self._ops.get(product_id)
        if op is None:
            before = self._store.snapshot()
            position = next(
                (i for i, it in enumerate(before) if it.id == product_id), None
            )
            op = _Operation(
                product_id=product_id,
                desired=desired,
                committed=position is not None,
                item=item,
                entry=before[position] if position is not None else None,
                position=position,
            )
            self._ops[product_id] = op
            self._apply(op, notify)
            op.task = asyncio.ensure_future(self._commit(op))
            op.task.add_done_callback(self._log_outcome)
        else:
            logger.debug(
                "Coalescing toggle of %s into in-flight operation (desired=%s).",
                product_id, desired,
            )
            op.desired = desired
            if item is not None:
                op.item = item
            self._apply(op, notify)
        return op

    def _apply(self, op: _Operation, notify: bool = True) -> None:
        if op.desired:
            changed = self._store.add(op.item)
            op.entry = self._store.get(op.product_id)
        else:
            changed = self._store.remove(op.product_id)
        if changed and notify:
            self.bus.publish(self._store.count(), op.product_id)

    async def _commit(self, op: _Operation) -> bool:
        try:
            while op.desired != op.committed:
                target = op.desired
                op.state = OperationState.COMMITTING
                try:
                    authoritative = await self.backend.write(
                        op.product_id, target, op.entry or op.item, self._store.snapshot()
                    )
                except Exception as e:
                    if op.desired != target:
                        logger.info(
                            "Write of %s failed after being superseded; discarding: %s",
                            op.product_id, e,
                        )
                        continue
                    self._rollback(op)
                    raise

                op.committed = target
                if op.desired != target:
                    logger.debug(
                        "Discarding stale response for %s (wrote %s, now want %s).",
                        op.product_id, target, op.desired,
                    )
                    continue
                if authoritative is not None:
                    self._reconcile(op, authoritative)

            op.state = OperationState.COMMITTED
            return op.desired
        finally:
            self._outcomes[op.product_id] = op.state
            self._ops.pop(op.product_id, None)

    def _rollback(self, op: _Operation) -> None:
        op.state = OperationState.ROLLED_BACK
        if op.committed:
            entry = op.entry or op.item
            position = op.position if op.position is not None else self._store.count()
            changed = self._store.insert(position, entry)
        else:
            changed = self._store.remove(op.product_id)
        logger.warning(
            "Rolled back %s to %s.",
            op.product_id, "present" if op.committed else "absent",
        )
        if changed:
            self.bus.publish(self._store.count(), op.product_id)

    def _reconcile(self, op: _Operation, authoritative: List[WishlistItem]) -> None:
        target = list(index_items(authoritative).values())

        # Products still waiting on their own write keep their optimistic state
        for pid, other in self._ops.items():
            if other is op:
                continue
            ids = [it.id for it in target]
            if other.desired and pid not in ids and other.entry is not None:
                target.append(other.entry)
            elif not other.desired and pid in ids:
                target = [it for it in target if it.id != pid]

        current = self._store.snapshot()
        if [it.id for it in current] == [it.id for it in target]:
            return

        added, removed = diff_items(index_items(current), target)
        logger.info(
            "Reconciled wishlist with server after %s: +%d -%d.",
            op.product_id, len(added), len(removed),
        )
        self._store.replace(target)
        self.bus.publish(self._store.count(), op.product_id)

    @staticmethod
    def _log_outcome(task: "asyncio.Task[bool]") -> None:
        if task.cancelled():
            return
        e = task.exception()
        if e is not None:
            logger.warning("Wishlist operation failed: %s", e)
