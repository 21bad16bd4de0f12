"""Tests for RecordStore against an in-process Redis."""

import sys
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis
from pydantic import ValidationError

from redhash.core.config import SaveOptions, SearchOptions, StoreConfig
from redhash.core.errors import EncodingError, StoreConnectionError
from redhash.core.store import RecordStore


class TestLifecycle:
    """Tests for connecting, closing, configuring and resetting."""

    def test_lazy_connect(self, store):
        """Test commands connect on first use."""
        assert not store.connected
        store.save({"username": "alice"})
        assert store.connected

    def test_context_manager(self, client_factory):
        """Test with-block opens and closes."""
        with RecordStore(client_factory=client_factory) as store:
            assert store.connected
        assert not store.connected

    def test_connect_and_disconnect_aliases(self, store):
        """Test public connect/disconnect names."""
        store.connect()
        assert store.connected
        store.disconnect()
        assert not store.connected

    def test_unreachable_server(self, unreachable_factory):
        """Test connection failures surface as StoreConnectionError."""
        store = RecordStore(client_factory=unreachable_factory)
        with pytest.raises(StoreConnectionError, match="Cannot connect"):
            store.open()
        assert not store.connected

    def test_unreachable_server_on_save(self, unreachable_factory):
        """Test operations are not retried after a connection failure."""
        store = RecordStore(client_factory=unreachable_factory)
        with pytest.raises(StoreConnectionError):
            store.save({"username": "alice"})

    def test_configure_changes_later_keys(self, store):
        """Test configuration changes apply to keys built afterwards."""
        before = store.generate_key("a", "b")
        store.configure(prefix="app", separator="/")
        assert store.generate_key("a", "b") == "app/a/b"
        assert before == "paywell:a:b"

    def test_configure_deep_merges_redis(self, store):
        """Test nested connection settings merge."""
        store.configure(redis={"db": 3})
        assert store.config.redis.db == 3
        assert store.config.redis.host == "127.0.0.1"

    def test_configure_validates(self, store):
        """Test invalid settings are rejected."""
        with pytest.raises(ValidationError):
            store.configure(prefix="")

    def test_reset(self, store, sample_user):
        """Test reset restores the freshly constructed state."""
        store.configure(prefix="app")
        store.save(sample_user)
        store.pubsub()

        store.reset()

        assert not store.connected
        assert store.config == StoreConfig()
        assert store.search("alice") == []

    def test_reset_keeps_construction_config(self, client_factory):
        """Test reset returns to the config passed at construction."""
        store = RecordStore(StoreConfig(prefix="app"), client_factory=client_factory)
        store.configure(prefix="other")
        store.reset()
        assert store.config.prefix == "app"

    def test_reset_while_index_held(self, store):
        """Test an index fetched before reset keeps working."""
        saved = store.save({"username": "alice"})
        held = store._indexes.get(store.index_key("hash"))

        store.reset()

        assert held.query("alice") == [saved["_id"]]
        assert store.search("alice") == []
        store.save({"username": "alice"})
        assert len(store.search("alice")) == 1

    def test_open_closes_client_on_other_errors(self):
        """Test a client whose PING fails otherwise is closed and the error kept."""
        client = MagicMock()
        client.ping.side_effect = redis.exceptions.ResponseError("NOAUTH Authentication required")
        store = RecordStore(client_factory=lambda config: client)

        with pytest.raises(redis.exceptions.ResponseError):
            store.open()

        client.close.assert_called_once()
        assert not store.connected

    def test_reset_when_idle(self, store):
        """Test reset is safe before any connection."""
        store.reset()
        store.reset()
        assert not store.connected

    def test_server_info(self):
        """Test INFO passthrough."""
        client = MagicMock()
        client.info.return_value = {"redis_version": "7.2.4"}
        store = RecordStore(client_factory=lambda config: client)
        assert store.server_info() == {"redis_version": "7.2.4"}

    def test_client_built_from_config(self):
        """Test the factory receives the connection settings."""
        seen = []

        def factory(config):
            seen.append(config)
            return MagicMock()

        store = RecordStore(StoreConfig(redis={"host": "cache", "port": 6380}), client_factory=factory)
        store.open()
        assert seen[0].host == "cache"
        assert seen[0].port == 6380

    def test_pubsub_pair(self, store):
        """Test pub/sub clients are created once and closed with the store."""
        publisher, subscriber = store.pubsub()
        again = store.pubsub()
        assert again[0] is publisher
        assert again[1] is subscriber

        subscriber.subscribe("events")
        assert publisher.publish("events", "hello") == 1

        store.close()
        assert store.pubsub()[0] is not publisher


class TestSave:
    """Tests for RecordStore.save."""

    def test_assigns_id(self, store, sample_user):
        """Test generated _id under the default collection."""
        saved = store.save(sample_user)
        assert saved["_id"].startswith("paywell:hash:")
        assert store.namespace.parse(saved["_id"])[0] == "hash"
        assert "_id" not in sample_user

    def test_collection_in_id(self, store):
        """Test collection option shapes the key."""
        saved = store.save({"username": "alice"}, collection="users")
        assert saved["_id"].startswith("paywell:users:")

    def test_keeps_existing_id(self, store):
        """Test upsert by explicit _id."""
        key = store.generate_key("users", "alice")
        saved = store.save({"_id": key, "username": "alice"})
        assert saved["_id"] == key

    def test_returns_record(self, store, sample_user):
        """Test the returned record matches the input plus _id."""
        saved = store.save(sample_user)
        assert saved == {**sample_user, "_id": saved["_id"]}

    @pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no int digit limit")
    def test_oversized_digit_string(self, store):
        """Test a digit string past the int() limit saves and reads back."""
        digits = "1" * 5000
        saved = store.save({"n": digits})
        assert saved["n"] == digits
        assert store.get(saved["_id"]) == saved

    def test_returns_coerced_record(self, store):
        """Test numeric strings are coerced in the returned record."""
        saved = store.save({"age": "30"})
        assert saved["age"] == 30

    def test_persists_flat_hash(self, store, sample_user):
        """Test the stored hash holds dotted fields."""
        saved = store.save(sample_user)
        fields = store.client.hgetall(saved["_id"])
        assert fields["address.city"] == "Dar es Salaam"
        assert fields["roles.1"] == "editor"
        assert fields["_id"] == saved["_id"]

    def test_resave_replaces_hash(self, store):
        """Test fields missing from a re-save are removed."""
        saved = store.save({"username": "alice", "nickname": "al"})
        store.save({"_id": saved["_id"], "username": "alice"})
        assert store.get(saved["_id"]) == {"_id": saved["_id"], "username": "alice"}

    def test_options_object(self, store):
        """Test SaveOptions and keyword overrides combine."""
        saved = store.save({"username": "alice"}, SaveOptions(collection="users"), index=False)
        assert saved["_id"].startswith("paywell:users:")
        assert store.search({"q": "alice", "collection": "users"}) == []

    def test_options_mapping(self, store):
        """Test options given as a mapping."""
        saved = store.save({"username": "alice"}, {"collection": "users"})
        assert store.search({"q": "alice", "collection": "users"}) == [saved]

    def test_unencodable_value(self, store):
        """Test EncodingError before anything is written or indexed."""
        with pytest.raises(EncodingError):
            store.save({"username": "alice", "tags": {"a", "b"}})
        assert store.client.keys("*") == []
        assert store.search("alice") == []

    def test_create_alias(self, store):
        """Test create is save."""
        saved = store.create({"username": "alice"})
        assert store.get(saved["_id"])["username"] == "alice"

    def test_date_becomes_timestamp(self, store):
        """Test dates are stored as epoch milliseconds."""
        when = datetime(2020, 1, 1, tzinfo=timezone.utc)
        saved = store.save({"joined": when})
        assert saved["joined"] == when
        assert store.get(saved["_id"])["joined"] == 1577836800000

    def test_booleans_and_none(self, store):
        """Test lossy storage of booleans and None."""
        saved = store.save({"active": True, "nickname": None})
        assert store.get(saved["_id"]) == {"_id": saved["_id"], "active": "true"}


class TestGet:
    """Tests for RecordStore.get."""

    def test_round_trip(self, store, sample_user):
        """Test get returns what save returned."""
        saved = store.save(sample_user)
        assert store.get(saved["_id"]) == saved

    def test_many_keeps_order(self, store):
        """Test list results follow key order."""
        first = store.save({"username": "alice"})
        second = store.save({"username": "bob"})
        assert store.get([second["_id"], first["_id"]]) == [second, first]

    def test_positional_keys(self, store):
        """Test several positional keys return a list."""
        first = store.save({"username": "alice"})
        second = store.save({"username": "bob"})
        assert store.get(first["_id"], second["_id"]) == [first, second]

    def test_list_of_one(self, store):
        """Test a list argument always returns a list."""
        saved = store.save({"username": "alice"})
        assert store.get([saved["_id"]]) == [saved]

    def test_dedupes_and_filters(self, store):
        """Test duplicate and empty keys are dropped."""
        saved = store.save({"username": "alice"})
        assert store.get([saved["_id"], "", None, saved["_id"]]) == [saved]

    def test_missing(self, store):
        """Test absent keys."""
        saved = store.save({"username": "alice"})
        assert store.get("paywell:hash:missing") is None
        assert store.get(["paywell:hash:missing", saved["_id"]]) == [None, saved]

    def test_bytes_keys(self, store):
        """Test bytes keys are decoded, not split into characters."""
        saved = store.save({"username": "alice"})
        key = saved["_id"].encode()
        assert store.get(key) == saved
        assert store.get([key, saved["_id"]]) == [saved]

    def test_no_keys(self, store):
        """Test empty requests."""
        assert store.get() == []
        assert store.get([]) == []
        assert store.get("") is None


class TestSearch:
    """Tests for RecordStore.search."""

    def test_collection_search(self, store):
        """Test save then search in a named collection."""
        saved = store.save({"username": "alice"}, collection="users")
        assert store.search({"q": "alice", "collection": "users"}) == [saved]

    def test_string_query(self, store, sample_user):
        """Test bare string queries use the default collection."""
        saved = store.save(sample_user)
        assert store.search("alice") == [saved]

    def test_nested_fields_indexed(self, store, sample_user):
        """Test values under nested paths are searchable."""
        saved = store.save(sample_user)
        assert store.search("Salaam") == [saved]
        assert store.search("editor") == [saved]

    def test_collections_are_separate(self, store):
        """Test search does not cross collections."""
        default = store.save({"username": "alice"})
        store.save({"username": "alice"}, collection="users")
        assert store.search("alice") == [default]

    def test_no_index_yet(self, store):
        """Test collections never indexed give empty results."""
        assert store.search("nonexistent-term") == []
        assert store.search({"q": "alice", "collection": "users"}) == []

    def test_blank_query(self, store):
        """Test blank terms give empty results."""
        store.save({"username": "alice"})
        assert store.search("") == []
        assert store.search("   ") == []
        assert store.search() == []

    def test_modes(self, store):
        """Test and/or combination."""
        alice = store.save({"first": "alice", "last": "smith"})
        bob = store.save({"first": "bob", "last": "smith"})
        assert store.search({"q": "alice smith", "type": "and"}) == [alice]
        assert store.search(SearchOptions(q="alice bob")) == [alice, bob]
        assert store.search("alice bob", type="and") == []

    def test_invalid_mode(self, store):
        """Test unknown modes fail validation."""
        with pytest.raises(ValidationError):
            store.search({"q": "alice", "type": "xor"})

    def test_id_never_indexed(self, store):
        """Test _id is ignored even when ignore is given."""
        saved = store.save({"username": "alice"}, collection="users", ignore=["email"])
        assert store.search({"q": "users", "collection": "users"}) == []
        assert store.search({"q": saved["_id"], "collection": "users"}) == []

    def test_ignored_fields(self, store):
        """Test ignore matches the last path segment."""
        store.save({"username": "alice", "secret": {"token": "hunter2"}}, ignore=["token"])
        assert store.search("hunter2") == []
        assert len(store.search("alice")) == 1

    def test_index_disabled(self, store):
        """Test index=False skips indexing."""
        store.save({"username": "alice"}, index=False)
        assert store.search("alice") == []

    def test_cleared_records_skipped(self, store):
        """Test index hits for deleted records are dropped from results."""
        store.save({"username": "alice"})
        store.clear()
        assert store.search("alice") == []

    def test_same_id_saved_twice(self, store):
        """Test last write wins for the hash, index keeps both values."""
        key = store.generate_key("hash", "shared")
        store.save({"_id": key, "username": "alice"})
        latest = store.save({"_id": key, "username": "bob"})

        assert store.get(key) == latest
        assert store.search("alice") == [latest]
        assert store.search("bob") == [latest]

    def test_reindex(self, store, client_factory, sample_user):
        """Test a second store rebuilds the index from Redis."""
        saved = store.save(sample_user, collection="users")
        store.save({"username": "bob"})

        other = RecordStore(client_factory=client_factory)
        assert other.search({"q": "alice", "collection": "users"}) == []
        assert other.reindex("users") == 1
        assert other.search({"q": "alice", "collection": "users"}) == [saved]
        other.reset()


class TestClear:
    """Tests for RecordStore.clear."""

    def test_clear_all(self, store):
        """Test every key under the prefix is deleted."""
        first = store.save({"username": "alice"})
        second = store.save({"username": "bob"}, collection="users")
        assert store.clear() == 2
        assert store.get([first["_id"], second["_id"]]) == [None, None]

    def test_clear_pattern(self, store):
        """Test clearing one collection."""
        kept = store.save({"username": "alice"})
        gone = store.save({"username": "bob"}, collection="users")
        assert store.clear("users") == 1
        assert store.get(gone["_id"]) is None
        assert store.get(kept["_id"]) == kept

    def test_clear_leaves_other_prefixes(self, store):
        """Test keys outside the prefix survive."""
        store.client.set("other:key", "value")
        store.save({"username": "alice"})
        store.clear()
        assert store.client.get("other:key") == "value"

    def test_clear_empty(self, store):
        """Test nothing to delete."""
        assert store.clear() == 0
