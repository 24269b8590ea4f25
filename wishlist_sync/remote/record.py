# wishlist_sync/remote/record.py
import json
import os
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from ..core.logger import get_logger
from ..core.models import (
    InvalidItemError,
    PriceRange,
    ProductImage,
    WishlistItem,
    format_timestamp,
    items_to_json,
    now_utc,
    parse_timestamp,
)

logger = get_logger(__name__)

DB_PATH = os.getenv("WISHLIST_DB_PATH", "data/wishlist_records.sqlite3")


class WishlistRecordStore:
    """
    Durable per-customer wishlist record, kept in SQLite.

    Items are kept in addedAt order; a freshly added item is normally the
    newest one, so adds append. Every insert and removal is also written to
    `events`.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._memory_con: Optional[sqlite3.Connection] = None
        if db_path == ":memory:":
            # A private in-memory database only lives as long as its connection
            self._memory_con = sqlite3.connect(":memory:", check_same_thread=False)
        self.ensure_db()

    def _connect(self) -> sqlite3.Connection:
        if self._memory_con is not None:
            return self._memory_con
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def ensure_db(self):
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    customer_id TEXT,
                    product_id TEXT,
                    title TEXT,
                    handle TEXT,
                    image_json TEXT,
                    price_json TEXT,
                    variant_id TEXT,
                    added_at TEXT,
                    PRIMARY KEY (customer_id, product_id)
                )
            """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts TEXT,
                    customer_id TEXT,
                    event_type TEXT,   -- added|removed
                    product_id TEXT,
                    title TEXT
                )
            """
            )
            con.commit()

    def load(self, customer_id: str) -> List[WishlistItem]:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                SELECT product_id, title, handle, image_json, price_json, variant_id, added_at
                FROM items
                WHERE customer_id=?
                ORDER BY added_at, rowid
            """,
                (customer_id,),
            )
            rows = cur.fetchall()

        out: List[WishlistItem] = []
        for row in rows:
            product_id, title, handle, image_json, price_json, variant_id, added_at = row
            out.append(
                WishlistItem(
                    id=product_id,
                    title=title,
                    handle=handle,
                    image=ProductImage.from_dict(json.loads(image_json)) if image_json else None,
                    price_range=PriceRange.from_dict(json.loads(price_json)) if price_json else None,
                    added_at=parse_timestamp(added_at),
                    variant_id=variant_id,
                )
            )
        return out

    def add(self, customer_id: str, item: WishlistItem) -> bool:
        """
        Insert the item unless the customer already has it.

        Adding a product the customer already has is not an insert, but an
        earlier addedAt than the stored one moves the stored one back.
        """
        if item.added_at is None:
            item = item.stamped(now_utc())
        ts = format_timestamp(now_utc())
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                "SELECT added_at FROM items WHERE customer_id=? AND product_id=?",
                (customer_id, item.id),
            )
            row = cur.fetchone()
            if row is not None:
                stored = parse_timestamp(row[0])
                if stored is None or item.added_at < stored:
                    cur.execute(
                        "UPDATE items SET added_at=? WHERE customer_id=? AND product_id=?",
                        (format_timestamp(item.added_at), customer_id, item.id),
                    )
                    con.commit()
                    logger.info(
                        "Backdated wishlist item %s for customer %s to %s",
                        item.id, customer_id, format_timestamp(item.added_at),
                    )
                return False

            cur.execute(
                """
                INSERT INTO items (
                    customer_id, product_id, title, handle,
                    image_json, price_json, variant_id, added_at
                )
                VALUES (?,?,?,?,?,?,?,?)
                ON CONFLICT(customer_id, product_id) DO NOTHING
            """,
                (
                    customer_id,
                    item.id,
                    item.title,
                    item.handle,
                    json.dumps(item.image.to_dict()) if item.image else None,
                    json.dumps(item.price_range.to_dict()) if item.price_range else None,
                    item.variant_id,
                    format_timestamp(item.added_at),
                ),
            )
            added = cur.rowcount > 0
            if added:
                cur.execute(
                    """
                    INSERT INTO events (ts, customer_id, event_type, product_id, title)
                    VALUES (?,?,?,?,?)
                """,
                    (ts, customer_id, "added", item.id, item.title),
                )
            con.commit()
        return added

    def remove(self, customer_id: str, product_id: str) -> bool:
        ts = format_timestamp(now_utc())
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                "SELECT title FROM items WHERE customer_id=? AND product_id=?",
                (customer_id, product_id),
            )
            row = cur.fetchone()
            if row is None:
                return False
            cur.execute(
                "DELETE FROM items WHERE customer_id=? AND product_id=?",
                (customer_id, product_id),
            )
            cur.execute(
                """
                INSERT INTO events (ts, customer_id, event_type, product_id, title)
                VALUES (?,?,?,?,?)
            """,
                (ts, customer_id, "removed", product_id, row[0]),
            )
            con.commit()
        return True

    def events(self, customer_id: str) -> List[Tuple[str, str]]:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                "SELECT event_type, product_id FROM events WHERE customer_id=? ORDER BY id",
                (customer_id,),
            )
            return [(r[0], r[1]) for r in cur.fetchall()]

    def handle_load(self, customer_id: Optional[str]) -> Tuple[Dict[str, Any], int]:
        if not customer_id:
            return {"error": "Customer not logged in"}, 401
        return {"items": items_to_json(self.load(customer_id))}, 200

    def handle_mutation(
        self, customer_id: Optional[str], payload: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], int]:
        """
        Apply one add/remove request and answer with the post-mutation record.
        """
        if not customer_id:
            return {"error": "Customer not logged in"}, 401

        action = payload.get("action")
        product_id = payload.get("productId")
        if not product_id:
            return {"error": "Product ID is required"}, 400

        if action == "add":
            try:
                item = WishlistItem.from_dict(
                    {
                        "id": product_id,
                        "title": payload.get("productTitle"),
                        "handle": payload.get("productHandle"),
                        "image": payload.get("productImage"),
                        "priceRange": payload.get("productPrice"),
                        "addedAt": payload.get("addedAt"),
                        "variantId": payload.get("variantId"),
                    }
                )
            except InvalidItemError as e:
                return {"error": str(e)}, 400
            changed = self.add(customer_id, item)
            message = "Added to wishlist"
        elif action == "remove":
            changed = self.remove(customer_id, product_id)
            message = "Removed from wishlist"
        else:
            return {"error": f"Unknown action: {action!r}"}, 400

        logger.info(
            "Wishlist %s for customer %s: product=%s changed=%s",
            action, customer_id, product_id, changed,
        )
        return {
            "success": True,
            "action": action,
            "productId": product_id,
            "message": message,
            "items": items_to_json(self.load(customer_id)),
        }, 200
