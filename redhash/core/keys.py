"""
KeyNamespace - hierarchical Redis key construction.

Keys are the prefix followed by path segments, joined with the separator:

    paywell:users:3f1c...   (prefix "paywell", separator ":")
"""

import uuid
from typing import Any, Iterable, List

from redhash.core.config import DEFAULT_PREFIX, DEFAULT_SEPARATOR


def unique_token() -> str:
    """Time-based unique segment for keys built without explicit segments."""
    return str(uuid.uuid1())


def _flatten_segments(segments: Iterable[Any]) -> List[str]:
    flat: List[str] = []
    for segment in segments:
        if isinstance(segment, (list, tuple)):
            flat.extend(_flatten_segments(segment))
        else:
            flat.append(str(segment))
    return flat


class KeyNamespace:
    """Builds and parses keys under a fixed prefix."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, separator: str = DEFAULT_SEPARATOR):
        self.prefix = prefix
        self.separator = separator

    def __repr__(self) -> str:
        return f"KeyNamespace(prefix={self.prefix!r}, separator={self.separator!r})"

    def key(self, *segments: Any) -> str:
        """Join the prefix and segments into a key.

        Segments may be nested lists or tuples; they are flattened in
        order. With no segments a fresh unique token is used, so each
        such call returns a distinct key.

        Examples:
            >>> ns = KeyNamespace()
            >>> ns.key("users", 1)
            'paywell:users:1'
            >>> ns.key(["users", "search"])
            'paywell:users:search'
        """
        parts = _flatten_segments(segments)
        if not parts:
            parts = [unique_token()]
        return self.separator.join([self.prefix, *parts])

    def index_key(self, collection: str) -> str:
        """Key naming a collection's search index."""
        return self.key(collection, "search")

    def pattern(self, *segments: Any) -> str:
        """Glob matching every key under the prefix, optionally narrowed by segments."""
        parts = [p for p in _flatten_segments(segments) if p]
        return self.separator.join([self.prefix, *parts, "*"])

    def owns(self, key: str) -> bool:
        return key.startswith(self.prefix + self.separator)

    def parse(self, key: str) -> List[str]:
        """Split a key into the segments that follow the prefix.

        Raises:
            ValueError: If key does not start with this namespace's prefix
        """
        if not self.owns(key):
            raise ValueError(f"Key '{key}' is not under prefix '{self.prefix}'")
        return key[len(self.prefix) + len(self.separator):].split(self.separator)
