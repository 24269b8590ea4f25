# wishlist_sync/__init__.py
from .core.bus import NotificationBus, WishlistChange
from .core.models import InvalidItemError, Money, PriceRange, ProductImage, WishlistItem
from .core.session_cache import SessionCache
from .core.storage import StorageArea, StorageEvent, StorageUnavailable
from .core.store import ItemStore
from .migration import MigrationAdapter, MigrationReport
from .remote.client import (
    NetworkError,
    NotAuthenticatedError,
    ServerWishlistClient,
    ValidationError,
    WishlistClientError,
)
from .remote.record import WishlistRecordStore
from .session import AuthenticationRequired, VisitorSession, login_url
from .sharing import create_share_url, load_shared
from .sync import AnonymousBackend, AuthenticatedBackend, OperationState, SyncController

__version__ = "0.1.0"
