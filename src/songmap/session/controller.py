"""
Listening session controller.

Turns a single listen event into graph mutations: the song is found or
created with its counters bumped, the previous song in the graph's history is
linked to it with a NEXT edge (unless a new chain was requested), and the
history is advanced.
"""

from __future__ import annotations
from typing import Optional

from loguru import logger

from songmap.cache.recency import RecencyCache
from songmap.errors import NotFoundError
from songmap.graph.repository import SongRepository
from songmap.identifiers import require_text
from songmap.models import Increments, Song
from songmap.namespace.manager import GraphNamespaceManager


class ListeningSessionController:
    def __init__(self, namespaces: GraphNamespaceManager, repository: SongRepository,
                 recency: RecencyCache, history_limit: Optional[int] = None):
        self.namespaces = namespaces
        self.repository = repository
        self.recency = recency
        self.history_limit = history_limit

    def add_song(self, user_id, graph_id, name: str, artist: Optional[str] = None,
                 force_new_chain: bool = False, is_random: bool = False,
                 is_full_play: bool = True, is_skip: bool = False) -> Song:
        """
        Record one listen of ``(name, artist)`` in a user's graph.

        Args:
            user_id: Authenticated caller
            graph_id: Graph the listen belongs to
            name: Song title (required)
            artist: Artist, ``"Unknown"`` when missing
            force_new_chain: Start a disconnected chain instead of linking
                the previous song to this one
            is_random: Chosen by shuffle rather than by the user
            is_full_play: Played to the end
            is_skip: Skipped part-way

        Returns:
            The song with its updated counters

        Raises:
            NotFoundError / ForbiddenError: graph missing or not owned by the caller
            InvalidArgumentError: empty song name
        """
        name = require_text(name, "Song name")
        namespace = self.namespaces.resolve_namespace(user_id, graph_id)

        # must be read before this play is recorded
        previous_id = self.recency.previous_song_id(graph_id)

        increments = Increments.for_listen(is_random, is_full_play, is_skip)
        song = self.repository.upsert_song(namespace, name, artist, increments)

        if previous_id is not None and not force_new_chain and previous_id != song.id:
            try:
                self.repository.upsert_edge(
                    namespace,
                    previous_id,
                    song.id,
                    jump_delta=1,
                    user_select_delta=0 if is_random else 1,
                    random_delta=1 if is_random else 0,
                )
            except NotFoundError:
                # previous song was deleted since it was played
                logger.warning(f"Previous song {previous_id} no longer in graph {graph_id}; chain not extended")
        elif force_new_chain:
            logger.debug(f"New chain in graph {graph_id} at song {song.id}")

        self.recency.record_play(graph_id, song.id, song.name, self.history_limit)
        logger.info(f"User {user_id} listened to [{song.name} / {song.artist}] in graph {graph_id} "
                    f"(listenCount={song.listen_count})")
        return song

    def listen_song(self, user_id, graph_id, name: str, artist: Optional[str] = None,
                    is_random: bool = False, is_full_play: bool = True, is_skip: bool = False) -> Song:
        return self.add_song(user_id, graph_id, name, artist, False, is_random, is_full_play, is_skip)

    def new_listen_song(self, user_id, graph_id, name: str, artist: Optional[str] = None,
                        is_random: bool = False, is_full_play: bool = True, is_skip: bool = False) -> Song:
        """Record a listen without linking it to the previous song."""
        return self.add_song(user_id, graph_id, name, artist, True, is_random, is_full_play, is_skip)
