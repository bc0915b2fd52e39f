"""
Keyed resource caches for the console.

Every domain (activity, balances, expenses, groups, users) keeps its data in
a KeyedResourceCache: entries scoped by a positive integer key, loads
coalesced per key, LRU-bounded, and rolled back to the last good data on
transient failures.
"""

from .coordinator import LoadCoordinator, LoadOptions, Reporter, Transport, is_valid_key
from .engine import KeyedResourceCache
from .eviction import DEFAULT_CAPACITY, LruEvictionPolicy
from .recovery import ClassifiedError, ErrorKind, ErrorRecoveryPolicy, extract_payload_message
from .store import CacheEntry, CacheStatus, CacheStore
from .views import DerivedViewLayer, KeyView

__all__ = [
    "CacheEntry",
    "CacheStatus",
    "CacheStore",
    "ClassifiedError",
    "DEFAULT_CAPACITY",
    "DerivedViewLayer",
    "ErrorKind",
    "ErrorRecoveryPolicy",
    "KeyView",
    "KeyedResourceCache",
    "LoadCoordinator",
    "LoadOptions",
    "LruEvictionPolicy",
    "Reporter",
    "Transport",
    "extract_payload_message",
    "is_valid_key",
]
