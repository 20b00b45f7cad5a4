"""
Recency cache: a bounded, deduplicated, most-recent-first list of played
songs per graph.

Index 0 is the song played last. Read ``previous_song_id`` *before* recording a
new play to learn which song the new one follows.
"""

from __future__ import annotations
from typing import List, Optional

from loguru import logger

from songmap.cache.list_cache import ListCache
from songmap.errors import InvalidArgumentError
from songmap.models import RecencyEntry

SEPARATOR = "::"


def encode_entry(song_id: int, song_name: str) -> str:
    return f"{song_id}{SEPARATOR}{song_name}"


def decode_entry(raw: str) -> Optional[RecencyEntry]:
    """Parse ``"<id>::<name>"``; None for malformed entries."""
    song_id, sep, song_name = raw.partition(SEPARATOR)
    if not sep:
        return None
    try:
        return RecencyEntry(int(song_id), song_name)
    except ValueError:
        return None


class RecencyCache:
    def __init__(self, backend: ListCache, default_limit: int = 100,
                 key_prefix: str = "history:graph:", retrying=None):
        """
        Args:
            backend: Ordered-list store
            default_limit: Entries kept per graph when no limit is passed
            key_prefix: Prefix of the per-graph list key
            retrying: Optional tenacity ``Retrying`` wrapped around backend calls
        """
        if default_limit < 1:
            raise InvalidArgumentError(f"History limit must be positive, got {default_limit}")
        self.backend = backend
        self.default_limit = default_limit
        self.key_prefix = key_prefix
        self._retrying = retrying

    def _call(self, fn, *args):
        if self._retrying is None:
            return fn(*args)
        return self._retrying(fn, *args)

    def _key(self, graph_id) -> str:
        return f"{self.key_prefix}{graph_id}"

    def record_play(self, graph_id, song_id: int, song_name: str, limit: Optional[int] = None) -> int:
        """
        Move ``song_id`` to the front of the graph's history.

        Any earlier occurrence of the song is removed first, then the list is
        trimmed to ``limit`` entries. Returns the resulting length.
        """
        limit = self.default_limit if limit is None else limit
        if limit < 1:
            raise InvalidArgumentError(f"History limit must be positive, got {limit}")
        length = self._call(
            self.backend.push_front_unique,
            self._key(graph_id),
            encode_entry(song_id, song_name),
            f"{song_id}{SEPARATOR}",
            limit,
        )
        logger.debug(f"History for graph {graph_id}: {song_id} ({song_name}) at head, {length} entries")
        return length

    def previous_song_id(self, graph_id) -> Optional[int]:
        raw = self._call(self.backend.head, self._key(graph_id))
        if raw is None:
            return None
        entry = decode_entry(raw)
        if entry is None:
            logger.warning(f"Ignoring malformed history entry for graph {graph_id}: {raw!r}")
            return None
        return entry.song_id

    def full_history(self, graph_id) -> List[RecencyEntry]:
        entries = []
        for raw in self._call(self.backend.range, self._key(graph_id)):
            entry = decode_entry(raw)
            if entry is None:
                logger.warning(f"Skipping malformed history entry for graph {graph_id}: {raw!r}")
                continue
            entries.append(entry)
        return entries

    def song_before(self, graph_id, song_id: int) -> Optional[int]:
        """
        The song heard before ``song_id``.

        If ``song_id`` is at the head (it was just recorded), that is index 1;
        otherwise ``song_id`` has not been recorded yet and the head is the
        song before it.
        """
        history = self.full_history(graph_id)
        if not history:
            return None
        if history[0].song_id == song_id:
            return history[1].song_id if len(history) > 1 else None
        return history[0].song_id

    def clear(self, graph_id) -> None:
        """Drop the graph's whole history."""
        self._call(self.backend.delete, self._key(graph_id))
        logger.debug(f"Cleared history for graph {graph_id}")
