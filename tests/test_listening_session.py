"""
Tests for the listening session controller (chain building).
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from songmap.cache.list_cache import SQLiteListCache
from songmap.cache.recency import RecencyCache
from songmap.errors import ForbiddenError, InvalidArgumentError, NotFoundError
from songmap.graph.repository import SongRepository
from songmap.namespace.manager import GraphNamespaceManager
from songmap.session.controller import ListeningSessionController
from songmap.store.sqlite_graph import SQLiteGraphStore

USER = 10


class TestListeningSessionController:
    """Tests for add_song / listen_song / new_listen_song."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = SQLiteGraphStore(Path(self.temp_dir) / "songmap.db")
        self.list_cache = SQLiteListCache(Path(self.temp_dir) / "history.db")
        self.repo = SongRepository(self.store)
        self.recency = RecencyCache(self.list_cache, default_limit=100)
        self.namespaces = GraphNamespaceManager(self.store)
        self.controller = ListeningSessionController(self.namespaces, self.repo, self.recency)
        self.graph = self.namespaces.create_namespace(USER, "empty")

    def teardown_method(self):
        self.list_cache.close()
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _edge(self, a, b):
        return self.repo.find_edge_by_names(a, b, self.graph.tag)

    def test_consecutive_listens_create_edge(self):
        """A then B links A -> B."""
        a = self.controller.listen_song(USER, self.graph.id, "A", "Band")
        b = self.controller.listen_song(USER, self.graph.id, "B", "Band")
        edge = self._edge("A", "B")
        assert edge is not None
        assert (edge.source_id, edge.target_id) == (a.id, b.id)
        assert edge.jump_count == 1
        assert edge.user_select_count == 1
        assert edge.random_select_count == 0
        assert self._edge("B", "A") is None

    def test_repeated_transition_accumulates(self):
        for _ in range(3):
            self.controller.listen_song(USER, self.graph.id, "A")
            self.controller.listen_song(USER, self.graph.id, "B")
        assert self._edge("A", "B").jump_count == 3
        # B -> A happens between rounds
        assert self._edge("B", "A").jump_count == 2

    def test_same_song_twice_no_self_loop(self):
        first = self.controller.listen_song(USER, self.graph.id, "A", "Band")
        second = self.controller.listen_song(USER, self.graph.id, "A", "Band")
        assert second.id == first.id
        assert second.listen_count == first.listen_count + 1 == 2
        assert self.repo.find_neighbors(first.id) == []

    def test_new_listen_breaks_chain(self):
        """newListen records history but never links the previous song."""
        self.controller.listen_song(USER, self.graph.id, "A")
        b = self.controller.new_listen_song(USER, self.graph.id, "B")
        assert self._edge("A", "B") is None
        assert self.recency.previous_song_id(self.graph.id) == b.id

        # the chain continues from B afterwards
        self.controller.listen_song(USER, self.graph.id, "C")
        assert self._edge("B", "C") is not None

    def test_random_listen_counters(self):
        self.controller.listen_song(USER, self.graph.id, "A")
        b = self.controller.listen_song(USER, self.graph.id, "B", is_random=True,
                                        is_full_play=False, is_skip=True)
        assert b.random_select_count == 1
        assert b.user_select_count == 0
        assert b.full_play_count == 0
        assert b.skip_count == 1
        edge = self._edge("A", "B")
        assert edge.random_select_count == 1
        assert edge.user_select_count == 0
        assert edge.jump_count == 1

    def test_history_advances(self):
        a = self.controller.listen_song(USER, self.graph.id, "A")
        b = self.controller.listen_song(USER, self.graph.id, "B")
        self.controller.listen_song(USER, self.graph.id, "A")
        assert [e.song_id for e in self.recency.full_history(self.graph.id)] == [a.id, b.id]

    def test_default_artist(self):
        song = self.controller.listen_song(USER, self.graph.id, "A")
        assert song.artist == "Unknown"

    def test_empty_name_rejected(self):
        with pytest.raises(InvalidArgumentError):
            self.controller.listen_song(USER, self.graph.id, "  ")
        assert self.recency.full_history(self.graph.id) == []

    def test_ownership_enforced(self):
        with pytest.raises(ForbiddenError):
            self.controller.listen_song(USER + 1, self.graph.id, "A")
        with pytest.raises(NotFoundError):
            self.controller.listen_song(USER, self.graph.id + 100, "A")

    def test_graphs_do_not_share_chains(self):
        other = self.namespaces.create_namespace(USER, "empty")
        a = self.controller.listen_song(USER, self.graph.id, "A")
        a_other = self.controller.listen_song(USER, other.id, "A")
        self.controller.listen_song(USER, other.id, "B")
        assert a.id != a_other.id
        assert self._edge("A", "B") is None
        assert self.repo.find_edge_by_names("A", "B", other.tag) is not None

    def test_deleted_previous_song_does_not_block_listen(self):
        self.controller.listen_song(USER, self.graph.id, "A")
        self.repo.delete_node(self.graph.tag, "A")
        song = self.controller.listen_song(USER, self.graph.id, "B")
        assert self.recency.previous_song_id(self.graph.id) == song.id
        assert self.repo.find_neighbors(song.id) == []
