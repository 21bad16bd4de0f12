"""
SearchIndex - per-collection full-text index over saved record fields.

Each index is an in-memory SQLite FTS5 table of (value, key) rows, one
row per indexed field value. Indexes live only in this process; they
are not rebuilt from Redis and disappear when the registry is cleared.

Indexing is append-only: saving a record again adds rows for its new
values and keeps the old ones.
"""

import logging
import re
import sqlite3
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SEARCH_MODES = ("and", "or")

_WORD_RE = re.compile(r"[^\W_]")


def tokenize(term: str) -> List[str]:
    """Split a query on whitespace, dropping tokens with no letters or digits."""
    return [t for t in str(term).split() if _WORD_RE.search(t)]


def _escape_fts_token(token: str) -> str:
    """Quote a token as an FTS5 prefix phrase.

    Quoting keeps FTS5 operators and punctuation literal; the trailing
    ``*`` makes the last word of the phrase a prefix match.
    """
    escaped = token.replace('"', '""')
    return f'"{escaped}" *'


class SearchIndex:
    """In-memory FTS5 index mapping field values to record keys."""

    def __init__(self, name: str):
        """Create an empty index.

        Args:
            name: Index key this index is registered under
        """
        self.name = name
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.executescript("""
            CREATE VIRTUAL TABLE terms USING fts5(
                value,
                record_key UNINDEXED,
                tokenize = 'unicode61'
            );
        """)

    def __repr__(self) -> str:
        return f"SearchIndex({self.name!r})"

    def index(self, value: Any, key: str) -> None:
        """Register that the record at ``key`` contains ``value``.

        Args:
            value: Field value; stringified before indexing
            key: Record key
        """
        with self._lock:
            self._conn.execute(
                "INSERT INTO terms (value, record_key) VALUES (?, ?)", (str(value), key)
            )

    def _keys_for(self, token: str) -> List[str]:
        rows = self._conn.execute(
            """
            SELECT record_key FROM terms
            WHERE terms MATCH ?
            GROUP BY record_key
            ORDER BY MIN(rowid)
            """,
            (_escape_fts_token(token),),
        ).fetchall()
        return [row[0] for row in rows]

    def query(self, term: str, mode: str = "or") -> List[str]:
        """Keys whose indexed values match the whitespace tokens of ``term``.

        Args:
            term: Free-form query
            mode: "or" for keys matching any token, "and" for keys matching all

        Returns:
            Matching keys, grouped by query token, earliest indexed first
            within each token

        Raises:
            ValueError: If mode is not "and" or "or"
        """
        mode = mode.lower()
        if mode not in SEARCH_MODES:
            raise ValueError(f"Invalid search mode: {mode!r}. Valid: {SEARCH_MODES}")

        tokens = tokenize(term)
        if not tokens:
            return []

        with self._lock:
            matches = [self._keys_for(token) for token in tokens]

        if mode == "and":
            common = set(matches[0]).intersection(*matches[1:])
            return [key for key in matches[0] if key in common]

        seen: Dict[str, None] = {}
        for keys in matches:
            for key in keys:
                seen.setdefault(key, None)
        return list(seen)

    def size(self) -> int:
        """Number of indexed (value, key) rows."""
        with self._lock:
            result = self._conn.execute("SELECT COUNT(*) FROM terms").fetchone()
        return result[0] if result else 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class IndexRegistry:
    """Lazily created SearchIndex per index key."""

    def __init__(self):
        self._lock = threading.RLock()
        self._indexes: Dict[str, SearchIndex] = {}

    def get(self, index_key: str) -> Optional[SearchIndex]:
        with self._lock:
            return self._indexes.get(index_key)

    def get_or_create(self, index_key: str) -> SearchIndex:
        with self._lock:
            search_index = self._indexes.get(index_key)
            if search_index is None:
                logger.debug("Creating search index %s", index_key)
                search_index = SearchIndex(index_key)
                self._indexes[index_key] = search_index
            return search_index

    def clear(self) -> None:
        """Forget every index.

        Indexes are not closed here; a caller may still hold one mid-query.
        Their connections close when they are garbage-collected.
        """
        with self._lock:
            self._indexes.clear()

    def __contains__(self, index_key: object) -> bool:
        with self._lock:
            return index_key in self._indexes

    def __len__(self) -> int:
        with self._lock:
            return len(self._indexes)
