"""
Song/edge repository.

Validates arguments and namespace tags, retries idempotent calls on store
outages and logs mutations. All counter arithmetic happens inside the store in
one atomic statement; nothing here reads a counter to write it back.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from loguru import logger

from songmap.errors import InvalidArgumentError, NotFoundError
from songmap.identifiers import require_text, validate_identifier
from songmap.models import (
    EdgeDetail,
    Increments,
    Neighbor,
    NextEdge,
    NodeDetail,
    Song,
    UNKNOWN_ARTIST,
)
from songmap.store.base import GraphStore


def normalize_artist(artist: Optional[str]) -> str:
    if artist is None or not str(artist).strip():
        return UNKNOWN_ARTIST
    return str(artist)


class SongRepository:
    def __init__(self, store: GraphStore, retrying=None):
        """
        Args:
            store: Graph store backend
            retrying: Optional tenacity ``Retrying`` for idempotent calls
        """
        self.store = store
        self._retrying = retrying

    def _idempotent(self, fn, *args):
        if self._retrying is None:
            return fn(*args)
        return self._retrying(fn, *args)

    # --- mutations ---

    def upsert_song(self, namespace: str, name: str, artist: Optional[str],
                    increments: Increments, listened_at: Optional[datetime] = None) -> Song:
        """
        Find-or-create the (name, artist) song in ``namespace`` and add ``increments``.

        Returns:
            The song with its counters after accumulation
        """
        validate_identifier(namespace, "namespace tag")
        name = require_text(name, "Song name")
        if not increments.is_valid():
            raise InvalidArgumentError("Counter increments must be non-negative")
        listened_at = listened_at or datetime.now(timezone.utc)
        song = self._idempotent(
            self.store.upsert_song, namespace, name, normalize_artist(artist), increments, listened_at
        )
        logger.debug(f"Upserted song {song.id} [{song.name} / {song.artist}] in {namespace}: "
                     f"listenCount={song.listen_count}")
        return song

    def upsert_edge(self, namespace: str, from_id: int, to_id: int,
                    jump_delta: int = 1, user_select_delta: int = 0, random_delta: int = 0) -> NextEdge:
        """
        Create the NEXT edge from_id -> to_id or accumulate onto it.

        Raises:
            InvalidArgumentError: for a self-loop or negative deltas
            NotFoundError: if either song is not in ``namespace``
        """
        validate_identifier(namespace, "namespace tag")
        if from_id == to_id:
            raise InvalidArgumentError(f"Refusing to create self-loop on song {from_id}")
        if min(jump_delta, user_select_delta, random_delta) < 0:
            raise InvalidArgumentError("Edge deltas must be non-negative")
        edge = self._idempotent(
            self.store.upsert_edge, namespace, from_id, to_id, jump_delta, user_select_delta, random_delta
        )
        if edge is None:
            raise NotFoundError(f"Songs {from_id} and {to_id} are not both in namespace {namespace}")
        logger.debug(f"Upserted NEXT {from_id} -> {to_id} in {namespace}: jumpCount={edge.jump_count}")
        return edge

    def delete_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> int:
        from_name = require_text(from_name, "From-name")
        to_name = require_text(to_name, "To-name")
        if namespace is not None:
            validate_identifier(namespace, "namespace tag")
        deleted = self.store.delete_edge(from_name, to_name, namespace)
        logger.info(f"Deleted {deleted} NEXT edge(s) between [{from_name}] and [{to_name}]")
        return deleted

    def delete_node(self, namespace: str, name: str) -> int:
        """
        Delete every song called ``name`` in ``namespace`` and all their edges.

        Songs are matched by name only, so same-titled songs by different
        artists are removed together.
        """
        validate_identifier(namespace, "namespace tag")
        name = require_text(name, "Song name")
        deleted = self.store.delete_node(namespace, name)
        if deleted > 1:
            logger.warning(f"Deleted {deleted} songs named [{name}] in {namespace}")
        else:
            logger.info(f"Deleted {deleted} song(s) named [{name}] in {namespace}")
        return deleted

    # --- reads ---

    def find_neighbors(self, song_id: int) -> List[Neighbor]:
        return self._idempotent(self.store.neighbors, song_id)

    def find_by_id(self, song_id: int) -> Optional[Song]:
        return self._idempotent(self.store.get_song, song_id)

    def find_by_identity(self, namespace: str, name: str, artist: Optional[str] = None) -> Optional[Song]:
        validate_identifier(namespace, "namespace tag")
        name = require_text(name, "Song name")
        return self._idempotent(self.store.find_song, namespace, name, normalize_artist(artist))

    def find_node_detail(self, song_id: int) -> Optional[NodeDetail]:
        return self._idempotent(self.store.node_detail, song_id)

    def find_edge(self, edge_id: int) -> Optional[NextEdge]:
        return self._idempotent(self.store.get_edge, edge_id)

    def find_edge_by_names(self, from_name: str, to_name: str,
                           namespace: Optional[str] = None) -> Optional[NextEdge]:
        from_name = require_text(from_name, "From-name")
        to_name = require_text(to_name, "To-name")
        if namespace is not None:
            validate_identifier(namespace, "namespace tag")
        return self._idempotent(self.store.find_edge, from_name, to_name, namespace)

    def find_edge_detail(self, edge_id: int) -> Optional[EdgeDetail]:
        return self._idempotent(self.store.edge_detail, edge_id)

    def snapshot(self, namespace: str) -> Tuple[List[Song], List[NextEdge]]:
        validate_identifier(namespace, "namespace tag")
        return self._idempotent(self.store.snapshot, namespace)

    # --- bulk properties ---

    def set_node_property(self, key: str, value: Any) -> int:
        return self._idempotent(self.store.set_node_property, validate_identifier(key, "property key"), value)

    def remove_node_property(self, key: str) -> int:
        return self._idempotent(self.store.remove_node_property, validate_identifier(key, "property key"))

    def set_edge_property(self, key: str, value: Any) -> int:
        return self._idempotent(self.store.set_edge_property, validate_identifier(key, "property key"), value)

    def remove_edge_property(self, key: str) -> int:
        return self._idempotent(self.store.remove_edge_property, validate_identifier(key, "property key"))
