"""
RecordStore - save, fetch and search records kept as Redis hashes.

A RecordStore owns its Redis clients, its configuration and the search
indexes of the collections it has saved into. Nothing is shared between
stores; open() and close() (or a ``with`` block) bound the connection.

    with RecordStore(StoreConfig(prefix="app")) as store:
        user = store.save({"username": "alice"}, collection="users")
        store.search({"q": "alice", "collection": "users"})

save() updates the collection index before it writes the hash, and the
two steps are not atomic with each other: a failed write can leave
index entries pointing at a key that was never stored.
"""

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import redis

from redhash.core.codec import coerce_types, decode, encode, flatten, leaf_name
from redhash.core.config import RedisConfig, SaveOptions, SearchOptions, StoreConfig
from redhash.core.errors import StoreConnectionError
from redhash.core.keys import KeyNamespace, unique_token
from redhash.core.search import IndexRegistry

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RedisConfig], redis.Redis]

Record = Dict[str, Any]


def create_client(config: RedisConfig) -> redis.Redis:
    """Build a redis-py client from connection settings.

    Responses are decoded to ``str`` unless ``options`` says otherwise.
    """
    kwargs = dict(config.options)
    kwargs.setdefault("decode_responses", True)

    if config.socket:
        return redis.Redis(
            unix_socket_path=config.socket,
            password=config.auth,
            db=config.db,
            **kwargs,
        )
    return redis.Redis(
        host=config.host,
        port=config.port,
        password=config.auth,
        db=config.db,
        **kwargs,
    )


def _normalize_keys(keys: Iterable[Any]) -> List[str]:
    """Flatten key arguments, drop empty ones and duplicates, keep order."""
    seen: Dict[str, None] = {}
    for item in keys:
        if item is None:
            continue
        if isinstance(item, (str, bytes)):
            candidates: Iterable[Any] = [item]
        elif isinstance(item, Iterable):
            candidates = item
        else:
            candidates = [str(item)]
        for key in candidates:
            if isinstance(key, bytes):
                key = key.decode()
            if key:
                seen.setdefault(str(key), None)
    return list(seen)


class RecordStore:
    """Records as flattened Redis hashes with a per-collection search index."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Create a store. No connection is made until open() or first use.

        Args:
            config: Store configuration (defaults to StoreConfig())
            client_factory: Callable building a Redis client from RedisConfig
        """
        self._initial_config = config or StoreConfig()
        self.config = self._initial_config
        self._client_factory = client_factory or create_client
        self._client: Optional[redis.Redis] = None
        self._publisher: Optional[redis.Redis] = None
        self._subscriber_client: Optional[redis.Redis] = None
        self._subscriber: Optional[Any] = None
        self._indexes = IndexRegistry()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure(self, **overrides: Any) -> StoreConfig:
        """Deep-merge overrides into the configuration.

        Keys built afterwards use the new prefix and separator. Connection
        settings take effect on the next open().
        """
        self.config = self.config.merged(overrides)
        return self.config

    @property
    def connected(self) -> bool:
        return self._client is not None

    def open(self) -> redis.Redis:
        """Connect to Redis if not already connected.

        Raises:
            StoreConnectionError: If the server is unreachable or rejects auth
        """
        if self._client is not None:
            return self._client

        settings = self.config.redis
        client = self._client_factory(settings)
        try:
            client.ping()
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
            client.close()
            raise StoreConnectionError(
                f"Cannot connect to Redis at {settings.socket or f'{settings.host}:{settings.port}'}: {exc}"
            ) from exc
        except Exception:
            client.close()
            raise

        logger.info(
            "Connected to Redis at %s (db %d)",
            settings.socket or f"{settings.host}:{settings.port}",
            settings.db,
        )
        self._client = client
        return client

    connect = open

    def close(self) -> None:
        """Close the main client and the pub/sub pair, if open."""
        if self._subscriber is not None:
            self._subscriber.close()
        for client in (self._subscriber_client, self._publisher, self._client):
            if client is not None:
                client.close()

        if self._client is not None:
            logger.info("Disconnected from Redis")
        self._client = None
        self._publisher = None
        self._subscriber_client = None
        self._subscriber = None

    disconnect = close

    def reset(self) -> None:
        """Return to the freshly constructed state.

        Closes every client, restores the construction-time configuration
        and drops all search indexes.
        """
        self.close()
        self.config = self._initial_config
        self._indexes.clear()

    def __enter__(self) -> "RecordStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def client(self) -> redis.Redis:
        """The main Redis client, connecting on first use."""
        return self.open()

    def multi(self) -> redis.client.Pipeline:
        """A MULTI/EXEC pipeline on the main client."""
        return self.client.pipeline(transaction=True)

    def pubsub(self) -> Tuple[redis.Redis, Any]:
        """Dedicated publisher client and subscriber, created on first call."""
        if self._publisher is None:
            self._publisher = self._client_factory(self.config.redis)
        if self._subscriber is None:
            self._subscriber_client = self._client_factory(self.config.redis)
            self._subscriber = self._subscriber_client.pubsub()
        return self._publisher, self._subscriber

    def server_info(self) -> Dict[str, Any]:
        """Server details reported by INFO."""
        return self.client.info()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @property
    def namespace(self) -> KeyNamespace:
        return KeyNamespace(self.config.prefix, self.config.separator)

    def generate_key(self, *segments: Any) -> str:
        return self.namespace.key(*segments)

    def index_key(self, collection: str) -> str:
        return self.namespace.index_key(collection)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def save(
        self,
        record: Mapping,
        options: Optional[Union[SaveOptions, Mapping]] = None,
        **overrides: Any,
    ) -> Record:
        """Store a record as a hash and index its field values.

        Args:
            record: Nested mapping to store; an existing ``_id`` is kept
            options: SaveOptions or a mapping of its fields
            **overrides: index, collection or ignore, applied over options

        Returns:
            A type-coerced copy of the record including its ``_id``

        Raises:
            EncodingError: If a field value cannot be stored
            redis.exceptions.RedisError: If Redis rejects a command
        """
        opts = self._save_options(options, overrides)

        record = copy.deepcopy(dict(record))
        if not record.get("_id"):
            record["_id"] = self.generate_key(opts.collection, unique_token())
        key = str(record["_id"])

        fields = encode(flatten(record))

        if opts.index:
            self._index_fields(opts.collection, key, fields, opts.ignored)

        with self.multi() as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping=fields)
            pipe.execute()

        logger.debug("Saved %s (%d fields, indexed=%s)", key, len(fields), opts.index)
        return coerce_types(record)

    create = save

    def get(self, *keys: Any) -> Union[Optional[Record], List[Optional[Record]]]:
        """Fetch records by key in one MULTI batch of HGETALL.

        Each argument is a key or an iterable of keys. Empty keys and
        duplicates are dropped.

        Returns:
            For a single string argument, the record or None if absent.
            Otherwise a list of records (None for absent keys) in key order.
        """
        single = len(keys) == 1 and isinstance(keys[0], (str, bytes))
        wanted = _normalize_keys(keys)

        if not wanted:
            return None if single else []

        with self.multi() as pipe:
            for key in wanted:
                pipe.hgetall(key)
            results = pipe.execute()

        records = [decode(fields) if fields else None for fields in results]
        logger.debug("Fetched %d of %d keys", sum(r is not None for r in records), len(wanted))

        if single:
            return records[0]
        return records

    def search(
        self,
        query: Union[str, SearchOptions, Mapping, None] = None,
        **overrides: Any,
    ) -> List[Record]:
        """Find records in a collection by their indexed field values.

        Args:
            query: Search term, or SearchOptions / mapping with q, collection, type
            **overrides: q, collection or type, applied over query

        Returns:
            Matching records; empty when the term is blank or the collection
            has no index in this store yet
        """
        opts = self._search_options(query, overrides)
        search_index = self._indexes.get(self.index_key(opts.collection))

        if search_index is None or not opts.q.strip():
            return []

        keys = search_index.query(opts.q, opts.type)
        logger.debug("Search %r in %s matched %d keys", opts.q, opts.collection, len(keys))
        if not keys:
            return []

        return [record for record in self.get(keys) if record is not None]

    def clear(self, pattern: Optional[str] = None) -> int:
        """Delete every key under the prefix, or under ``prefix:pattern:``.

        Search indexes are left untouched.

        Returns:
            Number of keys deleted
        """
        glob = self.namespace.pattern(pattern or [])
        keys = self.client.keys(glob)
        if not keys:
            return 0

        with self.multi() as pipe:
            for key in keys:
                pipe.delete(key)
            deleted = sum(pipe.execute())

        logger.debug("Cleared %d keys matching %s", deleted, glob)
        return deleted

    def reindex(self, collection: Optional[str] = None, ignore: Iterable[str] = ()) -> int:
        """Index the hashes already stored under a collection.

        Indexes only live in the process that built them; this rebuilds
        one from Redis. Existing entries are kept, so running it twice
        indexes values twice without changing search results.

        Returns:
            Number of records indexed
        """
        opts = SaveOptions(collection=collection or SaveOptions().collection, ignore=list(ignore))
        keys = self.client.keys(self.namespace.pattern(opts.collection))
        if not keys:
            return 0

        with self.multi() as pipe:
            for key in keys:
                pipe.hgetall(key)
            results = pipe.execute()

        count = 0
        for key, fields in zip(keys, results):
            if fields:
                self._index_fields(opts.collection, key, fields, opts.ignored)
                count += 1

        logger.info("Reindexed %d records in %s", count, opts.collection)
        return count

    def _index_fields(
        self, collection: str, key: str, fields: Mapping, ignored: set
    ) -> None:
        search_index = self._indexes.get_or_create(self.index_key(collection))
        for path, value in fields.items():
            if leaf_name(path) not in ignored:
                search_index.index(value, key)

    # ------------------------------------------------------------------
    # Option handling
    # ------------------------------------------------------------------

    @staticmethod
    def _save_options(
        options: Optional[Union[SaveOptions, Mapping]], overrides: Mapping
    ) -> SaveOptions:
        if isinstance(options, SaveOptions):
            base = options
        else:
            base = SaveOptions.model_validate(dict(options or {}))
        return base.merged(dict(overrides))

    @staticmethod
    def _search_options(
        query: Union[str, SearchOptions, Mapping, None], overrides: Mapping
    ) -> SearchOptions:
        if isinstance(query, SearchOptions):
            base = query
        elif isinstance(query, Mapping):
            base = SearchOptions.model_validate(dict(query))
        else:
            base = SearchOptions(q=query or "")
        return base.merged(dict(overrides))
