"""
Shared pytest fixtures for redhash tests.

Provides fixtures for:
- An in-process Redis server (fakeredis) shared by every client of a test
- Client factories wired to that server
- A RecordStore using the default configuration
- Sample records
"""

from typing import Any, Callable, Dict
from unittest.mock import MagicMock

import fakeredis
import pytest
import redis

from redhash.core.config import RedisConfig
from redhash.core.store import RecordStore


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    """Fresh fake Redis server; data is shared by all clients built on it."""
    return fakeredis.FakeServer()


@pytest.fixture
def client_factory(redis_server: fakeredis.FakeServer) -> Callable[[RedisConfig], redis.Redis]:
    """Client factory returning fakeredis clients bound to redis_server."""

    def factory(config: RedisConfig) -> redis.Redis:
        return fakeredis.FakeRedis(server=redis_server, decode_responses=True)

    return factory


@pytest.fixture
def store(client_factory) -> RecordStore:
    """RecordStore with default configuration on the fake server."""
    record_store = RecordStore(client_factory=client_factory)
    yield record_store
    record_store.reset()


@pytest.fixture
def unreachable_factory() -> Callable[[RedisConfig], MagicMock]:
    """Client factory whose clients fail PING like a refused connection."""

    def factory(config: RedisConfig) -> MagicMock:
        client = MagicMock()
        client.ping.side_effect = redis.exceptions.ConnectionError("Connection refused")
        return client

    return factory


@pytest.fixture
def sample_user() -> Dict[str, Any]:
    """Nested record with scalars, a mapping and a list."""
    return {
        "username": "alice",
        "email": "alice@example.com",
        "age": 30,
        "score": 4.5,
        "address": {"city": "Dar es Salaam", "street": "Samora Avenue"},
        "roles": ["admin", "editor"],
    }
