# wishlist_sync/remote/__init__.py
