# wishlist_sync/core/models.py
import datetime
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

import pytz


class InvalidItemError(ValueError):
    """A wishlist entry is missing a required field or is not an object."""


def now_utc() -> datetime.datetime:
    return datetime.datetime.now(tz=pytz.UTC)


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        ts = value
    elif isinstance(value, str):
        try:
            ts = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidItemError(f"Invalid addedAt timestamp: {value!r}") from e
    else:
        raise InvalidItemError(f"Invalid addedAt timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = pytz.UTC.localize(ts)
    return ts.astimezone(pytz.UTC)


def format_timestamp(ts: Optional[datetime.datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.astimezone(pytz.UTC).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class ProductImage:
    url: str
    alt_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "altText": self.alt_text}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ProductImage"]:
        if not data:
            return None
        if not isinstance(data, dict) or not data.get("url"):
            raise InvalidItemError(f"Invalid image snapshot: {data!r}")
        return cls(url=str(data["url"]), alt_text=data.get("altText"))


@dataclass(frozen=True)
class Money:
    amount: str
    currency_code: str

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currencyCode": self.currency_code}


@dataclass(frozen=True)
class PriceRange:
    min_variant_price: Money

    def to_dict(self) -> Dict[str, Any]:
        return {"minVariantPrice": self.min_variant_price.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["PriceRange"]:
        if not data:
            return None
        # Button surfaces submit the bare {amount, currencyCode} price
        price = data.get("minVariantPrice", data) if isinstance(data, dict) else None
        if not isinstance(price, dict) or "amount" not in price:
            raise InvalidItemError(f"Invalid price snapshot: {data!r}")
        return cls(
            min_variant_price=Money(
                amount=str(price["amount"]),
                currency_code=str(price.get("currencyCode") or ""),
            )
        )


@dataclass(frozen=True)
class WishlistItem:
    """
    Snapshot of one product a visitor wants to remember.

    Display fields are captured when the item is added and never re-fetched.
    `added_at` is None until a store stamps it on insertion.
    """
    id: str
    title: str
    handle: str
    image: Optional[ProductImage] = None
    price_range: Optional[PriceRange] = None
    added_at: Optional[datetime.datetime] = None
    variant_id: Optional[str] = None

    def stamped(self, added_at: datetime.datetime) -> "WishlistItem":
        return replace(self, added_at=added_at)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "handle": self.handle,
        }
        if self.image is not None:
            out["featuredImage"] = self.image.to_dict()
        if self.price_range is not None:
            out["priceRange"] = self.price_range.to_dict()
        out["addedAt"] = format_timestamp(self.added_at)
        if self.variant_id:
            out["variantId"] = self.variant_id
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "WishlistItem":
        if not isinstance(data, dict):
            raise InvalidItemError(f"Wishlist entry must be an object: {data!r}")
        missing = [k for k in ("id", "title", "handle") if not data.get(k)]
        if missing:
            raise InvalidItemError(
                f"Wishlist entry missing {', '.join(missing)}: {data!r}"
            )
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            handle=str(data["handle"]),
            image=ProductImage.from_dict(data.get("featuredImage") or data.get("image")),
            price_range=PriceRange.from_dict(data.get("priceRange")),
            added_at=parse_timestamp(data.get("addedAt")),
            variant_id=data.get("variantId") or None,
        )


def items_from_json(data: Any) -> List[WishlistItem]:
    if not isinstance(data, list):
        raise InvalidItemError(f"Wishlist must be a JSON array, got {type(data).__name__}")
    return [WishlistItem.from_dict(d) for d in data]


def items_to_json(items: List[WishlistItem]) -> List[Dict[str, Any]]:
    return [it.to_dict() for it in items]
