# wishlist_sync/migration.py
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .core.diff import diff_items, index_items, merge_earliest
from .core.logger import get_logger
from .core.models import WishlistItem
from .core.session_cache import SessionCache
from .remote.client import ServerWishlistClient, WishlistClientError

logger = get_logger(__name__)


@dataclass
class MigrationReport:
    merged: List[WishlistItem] = field(default_factory=list)
    migrated: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    # What the server record holds once the run is over
    held: List[WishlistItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "merged": len(self.merged),
            "migrated": len(self.migrated),
            "failed": len(self.failed),
        }


class MigrationAdapter:
    """
    One-shot merge of an anonymous session wishlist into the customer's
    server record, run when the visitor logs in.

    Per-item failures are collected rather than aborting the run, and the
    session cache is cleared afterwards whatever happened, so a permanently
    failing item is never replayed. Concurrent callers share one run.
    """

    def __init__(self, cache: SessionCache, client: ServerWishlistClient):
        self.cache = cache
        self.client = client
        self._report: Optional[MigrationReport] = None
        self._task: Optional["asyncio.Task[MigrationReport]"] = None

    @property
    def done(self) -> bool:
        return self._report is not None

    async def migrate(self) -> MigrationReport:
        if self._report is not None:
            logger.debug("Migration already ran for this login; skipping.")
            return self._report
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        else:
            logger.debug("Migration already in progress; waiting for it.")
        return await asyncio.shield(self._task)

    async def _run(self) -> MigrationReport:
        try:
            local_items = self.cache.load()
            server_items = await self.client.load()
        except Exception:
            # Nothing was written; a later call starts over
            self._task = None
            raise
        server_map = index_items(server_items)

        report = MigrationReport(merged=merge_earliest(local_items, server_items))
        merged_map = index_items(report.merged)

        local_only, _ = diff_items(server_map, local_items)
        earlier_locally = [
            it for it in index_items(local_items).values()
            if it.id in server_map and merged_map[it.id] is it
        ]

        for it in local_only:
            try:
                await self.client.add(it)
                report.migrated.append(it.id)
            except WishlistClientError as e:
                logger.warning("Failed to migrate wishlist item %s: %s", it.id, e)
                report.failed[it.id] = str(e)

        # The record keeps the earlier addedAt of a product it already holds
        for it in earlier_locally:
            try:
                await self.client.add(it)
                report.migrated.append(it.id)
            except WishlistClientError as e:
                logger.warning("Failed to backdate wishlist item %s: %s", it.id, e)
                report.failed[it.id] = str(e)

        held = []
        for it in report.merged:
            if it.id not in report.failed:
                held.append(it)
            elif it.id in server_map:
                held.append(server_map[it.id])
        report.held = merge_earliest(held, [])

        self.cache.clear()
        self._report = report
        logger.info("Wishlist migration finished: %s", report.summary)
        return report
