# wishlist_sync/sharing.py
import base64
import binascii
import json
from typing import List, Optional
from urllib.parse import urlencode

from .core.logger import get_logger
from .core.models import InvalidItemError, WishlistItem, format_timestamp, now_utc

logger = get_logger(__name__)

DEFAULT_SHARE_TITLE = "Check out my wishlist!"
SHARED_ITEM_TITLE = "Shared Product"


def create_share_url(
    items: List[WishlistItem], base_url: str, title: Optional[str] = None
) -> str:
    """
    Build a link that carries a minimal copy of the wishlist.

    Only id, handle, title and variant travel in the link to keep it short;
    images and prices are not shared.
    """
    base = base_url.rstrip("/")
    if not items:
        return f"{base}/wishlist"

    share_data = {
        "items": [
            {
                "id": it.id,
                "handle": it.handle,
                "title": it.title,
                "variantId": it.variant_id,
            }
            for it in items
        ],
        "title": title or DEFAULT_SHARE_TITLE,
        "createdAt": format_timestamp(now_utc()),
    }
    encoded = base64.urlsafe_b64encode(json.dumps(share_data).encode("utf-8")).decode("ascii")
    return f"{base}/wishlist/shared?{urlencode({'data': encoded})}"


def load_shared(encoded: str) -> Optional[List[WishlistItem]]:
    """Decode the `data` parameter of a shared link; None if it is unusable."""
    try:
        raw = base64.urlsafe_b64decode(encoded.encode("ascii") + b"=" * (-len(encoded) % 4))
        share_data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        logger.warning("Failed to decode shared wishlist: %s", e)
        return None

    if not isinstance(share_data, dict) or not isinstance(share_data.get("items"), list):
        return None

    created_at = share_data.get("createdAt") or format_timestamp(now_utc())
    try:
        return [
            WishlistItem.from_dict(
                {
                    "id": entry.get("id"),
                    "title": entry.get("title") or SHARED_ITEM_TITLE,
                    "handle": entry.get("handle"),
                    "variantId": entry.get("variantId"),
                    "addedAt": created_at,
                }
            )
            for entry in share_data["items"]
            if isinstance(entry, dict)
        ]
    except InvalidItemError as e:
        logger.warning("Shared wishlist has an unusable entry: %s", e)
        return None
