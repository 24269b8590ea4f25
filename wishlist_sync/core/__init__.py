# wishlist_sync/core/__init__.py
