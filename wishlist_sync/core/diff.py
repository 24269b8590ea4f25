# wishlist_sync/core/diff.py
from typing import Dict, List, Tuple

from .models import WishlistItem


def index_items(items: List[WishlistItem]) -> Dict[str, WishlistItem]:
    """Map id -> item, keeping the first occurrence of a duplicated id."""
    out: Dict[str, WishlistItem] = {}
    for it in items:
        out.setdefault(it.id, it)
    return out


def diff_items(
    previous: Dict[str, WishlistItem], current: List[WishlistItem]
) -> Tuple[List[WishlistItem], List[WishlistItem]]:
    """
    Compute added and removed items between previous and current.
    - previous: mapping id -> WishlistItem
    - current: list of WishlistItems
    Returns:
      (added_items in current order, removed_items in previous order)
    """
    new_map = index_items(current)

    added = [it for iid, it in new_map.items() if iid not in previous]
    removed = [it for iid, it in previous.items() if iid not in new_map]
    return added, removed


def merge_earliest(
    left: List[WishlistItem], right: List[WishlistItem]
) -> List[WishlistItem]:
    """
    Union of two wishlists keyed by id.

    For ids present on both sides the entry with the earlier addedAt wins;
    an entry without a timestamp loses to one that has it. The result is
    ordered by addedAt, undated entries last in their original order.
    """
    merged = index_items(right)
    for it in left:
        other = merged.get(it.id)
        if other is None:
            merged[it.id] = it
        elif it.added_at is not None and (
            other.added_at is None or it.added_at < other.added_at
        ):
            merged[it.id] = it

    items = list(merged.values())
    dated = sorted(
        (it for it in items if it.added_at is not None), key=lambda it: it.added_at
    )
    undated = [it for it in items if it.added_at is None]
    return dated + undated
