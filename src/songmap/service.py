"""
SongMap service.

One object exposing every public operation: graph lifecycle, listening,
recommendations, inspection and bulk property administration. Built from
``Settings`` with ``SongMapService.from_settings``.
"""

from __future__ import annotations
import contextlib
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from songmap.admin.properties import PropertyAdministrator
from songmap.cache.list_cache import ListCache, RedisListCache, SQLiteListCache
from songmap.cache.recency import RecencyCache
from songmap.config import Settings, load_settings
from songmap.errors import InvalidArgumentError, NotFoundError
from songmap.graph.listening_graph import ListeningGraph
from songmap.graph.repository import SongRepository
from songmap.models import (
    GRAPH_KIND_EMPTY,
    GraphInfo,
    QueryResult,
    RecencyEntry,
    ScoredSong,
    Song,
)
from songmap.namespace.manager import GraphNamespaceManager
from songmap.ranking.recommender import RecommendationEngine
from songmap.ranking.weights import RankWeights
from songmap.session.controller import ListeningSessionController
from songmap.store.base import GraphStore
from songmap.store.neo4j_graph import Neo4jGraphStore
from songmap.store.retry import build_retrying
from songmap.store.sqlite_graph import SQLiteGraphStore


def build_graph_store(settings: Settings) -> GraphStore:
    graph = settings.graph
    if graph.backend == "neo4j":
        logger.info(f"Using Neo4j graph store at {graph.neo4j_uri}")
        return Neo4jGraphStore(
            uri=graph.neo4j_uri,
            user=graph.neo4j_user,
            password=graph.neo4j_password,
            database=graph.neo4j_database,
            timeout=settings.store_timeout,
        )
    logger.info(f"Using SQLite graph store at {graph.path}")
    return SQLiteGraphStore(graph.path, timeout=settings.store_timeout)


def build_list_cache(settings: Settings) -> ListCache:
    history = settings.history
    if history.backend == "redis":
        logger.info(f"Using Redis history cache at {history.redis_url}")
        return RedisListCache(history.redis_url, timeout=settings.store_timeout)
    logger.info(f"Using SQLite history cache at {history.path}")
    return SQLiteListCache(history.path, timeout=settings.store_timeout)


class SongMapService:
    """Public operations over one graph store and one history cache."""

    def __init__(self, store: GraphStore, list_cache: ListCache,
                 weights: Optional[RankWeights] = None, history_limit: int = 100,
                 history_key_prefix: str = "history:graph:", template_namespace: str = "base_Song",
                 template_edge_seed: int = 1, tag_attempts: int = 3, retrying=None):
        self.store = store
        self.list_cache = list_cache
        self.repository = SongRepository(store, retrying=retrying)
        self.recency = RecencyCache(list_cache, history_limit, history_key_prefix, retrying=retrying)
        self.namespaces = GraphNamespaceManager(store, template_namespace, template_edge_seed, tag_attempts)
        self.session = ListeningSessionController(self.namespaces, self.repository, self.recency, history_limit)
        self.recommender = RecommendationEngine(self.repository, weights)
        self.properties = PropertyAdministrator(self.repository)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SongMapService":
        settings = settings or load_settings()
        retrying = build_retrying(settings.retry.attempts, settings.retry.wait_min, settings.retry.wait_max)
        store = build_graph_store(settings)
        try:
            list_cache = build_list_cache(settings)
        except Exception:
            store.close()
            raise
        return cls(
            store,
            list_cache,
            weights=settings.ranking,
            history_limit=settings.history.limit,
            history_key_prefix=settings.history.key_prefix,
            template_namespace=settings.graph.template_namespace,
            template_edge_seed=settings.graph.template_edge_seed,
            tag_attempts=settings.graph.tag_attempts,
            retrying=retrying,
        )

    # ------------------------------------------------------------------
    # Graph lifecycle
    # ------------------------------------------------------------------

    def create_graph(self, user_id, kind: str = GRAPH_KIND_EMPTY, name: Optional[str] = None) -> GraphInfo:
        return self.namespaces.create_namespace(user_id, kind, name)

    def delete_graph(self, user_id, graph_id) -> GraphInfo:
        """
        Delete graph metadata and its recency list. Songs and edges under its
        tag are kept.

        Graph ids may be reused by the store, so a stale list would leak into
        the next graph that gets the same id.
        """
        graph = self.namespaces.delete_namespace(user_id, graph_id)
        self.recency.clear(graph.id)
        return graph

    def list_graphs(self, user_id) -> List[GraphInfo]:
        return self.namespaces.list_graphs(user_id)

    def graph_data(self, user_id, graph_id) -> Dict[str, Any]:
        """Visualisation payload (nodes, links) plus statistics for one graph."""
        namespace = self.namespaces.resolve_namespace(user_id, graph_id)
        view = ListeningGraph(self.repository)
        stats = view.build(namespace)
        data = view.to_graph_data()
        data["stats"] = stats
        return data

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    def listen_song(self, user_id, graph_id, name: str, artist: Optional[str] = None,
                    is_random: bool = False, is_full_play: bool = True, is_skip: bool = False) -> Song:
        return self.session.listen_song(user_id, graph_id, name, artist, is_random, is_full_play, is_skip)

    def new_listen_song(self, user_id, graph_id, name: str, artist: Optional[str] = None,
                        is_random: bool = False, is_full_play: bool = True, is_skip: bool = False) -> Song:
        return self.session.new_listen_song(user_id, graph_id, name, artist, is_random, is_full_play, is_skip)

    def history(self, user_id, graph_id) -> List[RecencyEntry]:
        self.namespaces.resolve_namespace(user_id, graph_id)
        return self.recency.full_history(graph_id)

    def recommend_next(self, user_id, graph_id, current_song_id: int,
                       previous_song_id: Optional[int] = None, now: Optional[datetime] = None,
                       limit: Optional[int] = None) -> List[ScoredSong]:
        """
        Rank candidate next songs after ``current_song_id`` in a user's graph.

        When ``previous_song_id`` is not given it is taken from the graph's
        history: the entry just before ``current_song_id``.

        Raises:
            NotFoundError: the song does not exist in this graph
        """
        namespace = self.namespaces.resolve_namespace(user_id, graph_id)
        current = self.repository.find_by_id(current_song_id)
        if current is None or current.namespace != namespace:
            raise NotFoundError(f"Song {current_song_id} not found in graph {graph_id}")
        if previous_song_id is None:
            previous_song_id = self.recency.song_before(graph_id, current_song_id)
        return self.recommender.recommend_next(current_song_id, previous_song_id, now=now, limit=limit)

    # ------------------------------------------------------------------
    # Inspection and deletion
    # ------------------------------------------------------------------

    def query_node(self, song_id: Optional[int] = None, name: Optional[str] = None,
                   artist: Optional[str] = None, namespace: Optional[str] = None,
                   detail: bool = False) -> QueryResult:
        """
        Look a song up by id, or by ``(namespace, name, artist)``.

        Addresses storage directly, so it keeps working after the owning
        graph's metadata has been deleted.

        Args:
            detail: Return the song with its adjacent edges and songs

        Raises:
            InvalidArgumentError: neither an id nor a namespace and name were given
            NotFoundError: no such song
        """
        if song_id is None:
            if namespace is None or name is None:
                raise InvalidArgumentError("Provide a song id, or a namespace and a song name")
            song = self.repository.find_by_identity(namespace, name, artist)
            if song is None:
                raise NotFoundError(f"Song [{name} / {artist or 'Unknown'}] not found in {namespace}")
            song_id = song.id
        elif not detail:
            song = self.repository.find_by_id(song_id)
            if song is None:
                raise NotFoundError(f"Song {song_id} not found")

        if detail:
            node = self.repository.find_node_detail(song_id)
            if node is None:
                raise NotFoundError(f"Song {song_id} not found")
            return QueryResult.detailed(node)
        return QueryResult.bare(song)

    def query_edge(self, edge_id: Optional[int] = None, from_name: Optional[str] = None,
                   to_name: Optional[str] = None, namespace: Optional[str] = None,
                   detail: bool = False) -> QueryResult:
        """Look a NEXT edge up by id, or by source and target song names."""
        if edge_id is None:
            if from_name is None or to_name is None:
                raise InvalidArgumentError("Provide an edge id, or both song names")
            edge = self.repository.find_edge_by_names(from_name, to_name, namespace)
            if edge is None:
                raise NotFoundError(f"No NEXT edge from [{from_name}] to [{to_name}]")
            edge_id = edge.id
        elif not detail:
            edge = self.repository.find_edge(edge_id)
            if edge is None:
                raise NotFoundError(f"Edge {edge_id} not found")

        if detail:
            bundle = self.repository.find_edge_detail(edge_id)
            if bundle is None:
                raise NotFoundError(f"Edge {edge_id} not found")
            return QueryResult.detailed(bundle)
        return QueryResult.bare(edge)

    def delete_connection(self, user_id, graph_id, from_name: str, to_name: str) -> int:
        """Delete the NEXT edge(s) between two song names in a user's graph."""
        namespace = self.namespaces.resolve_namespace(user_id, graph_id)
        return self.repository.delete_edge(from_name, to_name, namespace)

    def delete_node(self, user_id, graph_id, name: str) -> int:
        """Delete every song called ``name`` in a user's graph, with its edges."""
        namespace = self.namespaces.resolve_namespace(user_id, graph_id)
        return self.repository.delete_node(namespace, name)

    # ------------------------------------------------------------------
    # Bulk properties
    # ------------------------------------------------------------------

    def add_node_property(self, key: str, type_name: str, value_text: str) -> int:
        return self.properties.add_node_property(key, type_name, value_text)

    def remove_node_property(self, key: str) -> int:
        return self.properties.remove_node_property(key)

    def add_edge_property(self, key: str, type_name: str, value_text: str) -> int:
        return self.properties.add_edge_property(key, type_name, value_text)

    def remove_edge_property(self, key: str) -> int:
        return self.properties.remove_edge_property(key)

    @contextlib.contextmanager
    def call_timeout(self, seconds: Optional[float]):
        """
        Run the operations called inside the block with ``seconds`` as the
        store timeout, e.g. a request deadline.

        A Redis history cache keeps the socket timeout it was built with.
        """
        with contextlib.ExitStack() as stack:
            stack.enter_context(self.store.call_timeout(seconds))
            if isinstance(self.list_cache, SQLiteListCache):
                stack.enter_context(self.list_cache.call_timeout(seconds))
            yield

    def close(self):
        self.list_cache.close()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
