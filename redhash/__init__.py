"""
redhash - structured records and full-text search on Redis

Stores nested records as flat Redis hashes under a key namespace and
keeps a per-collection search index of their field values.

Core components:
- RecordStore: save/get/search/clear against one Redis server
- KeyNamespace: prefix + separator key construction
- flatten/unflatten/coerce_types: record <-> hash field encoding
- SearchIndex: in-memory full-text index per collection

Configuration:
- StoreConfig / RedisConfig: typed settings
- load_config: defaults, YAML, REDHASH_* environment, overrides
"""

__version__ = "0.3.0"

from typing import Any, Optional

from redhash.core.codec import coerce_types, flatten, unflatten
from redhash.core.config import (
    RedisConfig,
    SaveOptions,
    SearchOptions,
    StoreConfig,
    load_config,
)
from redhash.core.errors import EncodingError, RedhashError, StoreConnectionError
from redhash.core.keys import KeyNamespace
from redhash.core.search import IndexRegistry, SearchIndex
from redhash.core.store import RecordStore, create_client


def connect(config: Optional[StoreConfig] = None, **overrides: Any) -> RecordStore:
    """Open a RecordStore.

    Args:
        config: Base configuration (defaults to load_config())
        **overrides: Deep-merged over the base configuration

    Returns:
        A connected RecordStore; close it with close() or a ``with`` block
    """
    config = config or load_config()
    store = RecordStore(config.merged(overrides))
    store.open()
    return store


__all__ = [
    "connect",
    # Core
    "RecordStore",
    "KeyNamespace",
    "SearchIndex",
    "IndexRegistry",
    "create_client",
    "flatten",
    "unflatten",
    "coerce_types",
    # Config
    "StoreConfig",
    "RedisConfig",
    "SaveOptions",
    "SearchOptions",
    "load_config",
    # Errors
    "RedhashError",
    "StoreConnectionError",
    "EncodingError",
]
