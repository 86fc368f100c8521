"""Data models exposed by the offline sync layer."""
from .cache_item import CacheItem
from .kv_entry import KeyValueEntry
from .sync_operation import SyncMethod, SyncOperation

__all__ = ["CacheItem", "KeyValueEntry", "SyncMethod", "SyncOperation"]
