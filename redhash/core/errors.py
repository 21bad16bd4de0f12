"""Exceptions raised by redhash.

Command failures from Redis itself are not wrapped: they reach the caller
as the ``redis.exceptions.RedisError`` subclass redis-py raised.
"""


class RedhashError(Exception):
    """Base class for redhash errors."""


class StoreConnectionError(RedhashError):
    """The Redis server could not be reached or rejected the credentials."""


class EncodingError(RedhashError, ValueError):
    """A record value has no representation in a Redis hash field."""

    def __init__(self, path: str, value: object):
        self.path = path
        self.value = value
        super().__init__(f"Cannot store {type(value).__name__} value at '{path}'")
