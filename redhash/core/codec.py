"""
RecordCodec - nested records to flat Redis hash fields and back.

A record is flattened into dotted paths, one per leaf:

    {"name": "alice", "address": {"city": "Dar"}, "tags": ["a", "b"]}
    ->
    {"name": "alice", "address.city": "Dar", "tags.0": "a", "tags.1": "b"}

Redis only stores strings, so records read back are passed through
coerce_types() to turn numeric strings into numbers again.
"""

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from typing import Any, Dict

from redhash.core.errors import EncodingError

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "."

# Whole-string decimal literals only: no whitespace, no hex, no nan/inf.
NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
INDEX_RE = re.compile(r"^(0|[1-9][0-9]*)$")

_OMIT = object()


# ---------------------------------------------------------------------------
# Structural flatten / unflatten
# ---------------------------------------------------------------------------

def flatten(record: Mapping, separator: str = PATH_SEPARATOR) -> Dict[str, Any]:
    """Flatten a nested record into a single-level dict of dotted paths.

    List items use their index as the path segment. Empty mappings and
    lists are kept as leaf values so that unflatten() restores them.

    Raises:
        TypeError: If record is not a mapping
    """
    if not isinstance(record, Mapping):
        raise TypeError(f"Expected a mapping, got {type(record).__name__}")

    flat: Dict[str, Any] = {}

    def walk(value: Any, path: str) -> None:
        if isinstance(value, Mapping):
            children = [(str(k), v) for k, v in value.items()]
        elif isinstance(value, (list, tuple)):
            children = [(str(i), v) for i, v in enumerate(value)]
        else:
            flat[path] = value
            return

        if not children and path:
            flat[path] = {} if isinstance(value, Mapping) else []
            return

        for segment, child in children:
            walk(child, f"{path}{separator}{segment}" if path else segment)

    walk(record, "")
    return flat


class _Container:
    """Intermediate node used while re-nesting paths."""

    __slots__ = ("is_list", "items")

    def __init__(self, is_list: bool):
        self.is_list = is_list
        self.items: Dict[str, Any] = {}

    def accepts(self, segment: str) -> bool:
        return not self.is_list or bool(INDEX_RE.match(segment))

    def build(self) -> Any:
        if self.is_list:
            ordered = sorted(self.items, key=int)
            return [_materialize(self.items[k]) for k in ordered]
        return {k: _materialize(v) for k, v in self.items.items()}


def _materialize(node: Any) -> Any:
    return node.build() if isinstance(node, _Container) else node


def _container_for(value: Any) -> Any:
    """Empty mapping/list leaves become containers other paths may extend."""
    if isinstance(value, Mapping) and not value:
        return _Container(is_list=False)
    if isinstance(value, (list, tuple)) and not value:
        return _Container(is_list=True)
    return value


def unflatten(flat: Mapping, separator: str = PATH_SEPARATOR) -> Dict[str, Any]:
    """Re-nest a flat dict of dotted paths into a record.

    A level whose first child segment is a list index becomes a list,
    ordered by index with gaps closed. The first path to establish a
    level's shape wins: later paths that contradict it (a named field
    under a list, a child under a scalar, a scalar over a container) are
    dropped with a warning.
    """
    root = _Container(is_list=False)

    for path, value in flat.items():
        parts = str(path).split(separator)
        node = root
        conflict = False

        for depth, part in enumerate(parts[:-1]):
            if not node.accepts(part):
                conflict = True
                break
            child = node.items.get(part)
            if child is None and part not in node.items:
                child = _Container(is_list=bool(INDEX_RE.match(parts[depth + 1])))
                node.items[part] = child
            if not isinstance(child, _Container):
                conflict = True
                break
            node = child

        leaf = parts[-1]
        if not conflict and node.accepts(leaf):
            if leaf not in node.items:
                node.items[leaf] = _container_for(value)
                continue
            existing = node.items[leaf]
            replacement = _container_for(value)
            if (
                isinstance(existing, _Container)
                and isinstance(replacement, _Container)
                and existing.is_list == replacement.is_list
            ):
                continue

        logger.warning("Dropping conflicting flat path %r", path)

    return root.build()


# ---------------------------------------------------------------------------
# Type coercion on read
# ---------------------------------------------------------------------------

def _coerce_scalar(value: Any) -> Any:
    if isinstance(value, str) and NUMERIC_RE.match(value):
        if any(c in value for c in ".eE"):
            return float(value)
        try:
            return int(value)
        except ValueError:
            # past the interpreter's int digit limit
            return value
    return value


def coerce_types(record: Any) -> Any:
    """Convert string leaves that are whole numeric literals into numbers.

    "42" -> 42, "-1.5" -> -1.5, "1e3" -> 1000.0. Empty strings,
    "true"/"false", " 42", "42abc" and similar are left alone.
    Returns a new structure; the input is not modified.
    """
    if isinstance(record, Mapping):
        return {k: coerce_types(v) for k, v in record.items()}
    if isinstance(record, (list, tuple)):
        return [coerce_types(v) for v in record]
    return _coerce_scalar(record)


# ---------------------------------------------------------------------------
# Storage encoding
# ---------------------------------------------------------------------------

def to_timestamp(value: date) -> int:
    """Epoch milliseconds. Plain dates are taken as midnight UTC."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time(), tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def encode_value(path: str, value: Any) -> Any:
    """Encode one flat leaf as a Redis hash field value.

    Returns the module-private omit marker for None and empty containers,
    which have no hash field representation.

    Raises:
        EncodingError: If the value cannot be stored
    """
    if value is None:
        return _OMIT
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, bytes, int, float)):
        return value
    if isinstance(value, date):
        return to_timestamp(value)
    if isinstance(value, (Mapping, list, tuple)) and not value:
        return _OMIT
    raise EncodingError(path, value)


def encode(flat: Mapping) -> Dict[str, Any]:
    """Encode a flat map for HSET, dropping fields with no stored form."""
    encoded: Dict[str, Any] = {}
    for path, value in flat.items():
        stored = encode_value(path, value)
        if stored is not _OMIT:
            encoded[path] = stored
    return encoded


def decode(fields: Mapping) -> Dict[str, Any]:
    """Rebuild a typed record from the fields returned by HGETALL."""
    return coerce_types(unflatten(fields))


def leaf_name(path: str, separator: str = PATH_SEPARATOR) -> str:
    """Last segment of a dotted path: ``"address.city"`` -> ``"city"``."""
    return path.split(separator)[-1]
