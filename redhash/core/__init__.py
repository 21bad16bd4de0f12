"""Core abstractions for redhash - keys, codec, search index, store."""

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

__all__ = [
    # Keys
    "KeyNamespace",
    # Codec
    "flatten",
    "unflatten",
    "coerce_types",
    # Search
    "SearchIndex",
    "IndexRegistry",
    # Store
    "RecordStore",
    "create_client",
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
