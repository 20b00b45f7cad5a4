"""
Tests for the SQLite graph store and the song/edge repository on top of it.
"""

import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from songmap.errors import ConflictError, InvalidArgumentError, NotFoundError
from songmap.graph.repository import SongRepository
from songmap.models import DIRECTION_IN, DIRECTION_OUT, Increments
from songmap.store.sqlite_graph import SQLiteGraphStore

NS = "G_u1_test"
OTHER = "G_u2_test"
LISTEN = Increments.for_listen(is_random=False, is_full_play=True, is_skip=False)


class TestSQLiteGraphStore:
    """Tests for SQLiteGraphStore through SongRepository."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "songmap.db"
        self.store = SQLiteGraphStore(self.db_path)
        self.repo = SongRepository(self.store)

    def teardown_method(self):
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_store_initialization(self):
        assert self.db_path.exists()
        assert self.repo.snapshot(NS) == ([], [])

    def test_call_timeout_sets_lock_wait(self):
        def busy_ms():
            with self.store._read() as cursor:
                cursor.execute("PRAGMA busy_timeout")
                return cursor.fetchone()[0]

        assert busy_ms() == 5000
        with self.store.call_timeout(0.25):
            assert busy_ms() == 250
        assert busy_ms() == 5000

    def test_upsert_song_creates_then_accumulates(self):
        """Second upsert adds onto the counters of the same node."""
        first = self.repo.upsert_song(NS, "Song A", "Band", LISTEN)
        assert first.listen_count == 1
        assert first.full_play_count == 1
        assert first.user_select_count == 1
        assert first.random_select_count == 0
        assert first.listened_at is not None

        random_skip = Increments.for_listen(is_random=True, is_full_play=False, is_skip=True)
        second = self.repo.upsert_song(NS, "Song A", "Band", random_skip)
        assert second.id == first.id
        assert second.listen_count == 2
        assert second.full_play_count == 1
        assert second.skip_count == 1
        assert second.user_select_count == 1
        assert second.random_select_count == 1

    def test_identity_includes_artist_and_namespace(self):
        a = self.repo.upsert_song(NS, "Song", "Band 1", LISTEN)
        b = self.repo.upsert_song(NS, "Song", "Band 2", LISTEN)
        c = self.repo.upsert_song(OTHER, "Song", "Band 1", LISTEN)
        assert len({a.id, b.id, c.id}) == 3
        assert c.namespace == OTHER

    def test_missing_artist_defaults_to_unknown(self):
        song = self.repo.upsert_song(NS, "Untitled", None, LISTEN)
        assert song.artist == "Unknown"
        again = self.repo.upsert_song(NS, "Untitled", "  ", LISTEN)
        assert again.id == song.id
        assert self.repo.find_by_identity(NS, "Untitled").id == song.id

    def test_upsert_song_validates_input(self):
        with pytest.raises(InvalidArgumentError):
            self.repo.upsert_song(NS, "", "Band", LISTEN)
        with pytest.raises(InvalidArgumentError):
            self.repo.upsert_song("bad-tag", "Song", "Band", LISTEN)
        with pytest.raises(InvalidArgumentError):
            self.repo.upsert_song(NS, "Song", "Band", Increments(listen=-1))

    def test_upsert_edge_merges(self):
        """Repeated transitions increment a single edge."""
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        b = self.repo.upsert_song(NS, "B", "X", LISTEN)
        edge = self.repo.upsert_edge(NS, a.id, b.id, 1, 1, 0)
        assert (edge.source_id, edge.target_id) == (a.id, b.id)
        assert edge.jump_count == 1

        again = self.repo.upsert_edge(NS, a.id, b.id, 1, 0, 1)
        assert again.id == edge.id
        assert again.jump_count == 2
        assert again.user_select_count == 1
        assert again.random_select_count == 1
        assert len(self.repo.snapshot(NS)[1]) == 1

    def test_upsert_edge_rejects_self_loop(self):
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        with pytest.raises(InvalidArgumentError):
            self.repo.upsert_edge(NS, a.id, a.id)
        # the schema refuses it as well
        with pytest.raises(ConflictError):
            self.store.upsert_edge(NS, a.id, a.id, 1, 0, 0)

    def test_upsert_edge_across_namespaces_not_found(self):
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        b = self.repo.upsert_song(OTHER, "B", "X", LISTEN)
        with pytest.raises(NotFoundError):
            self.repo.upsert_edge(NS, a.id, b.id)

    def test_neighbors_both_directions(self):
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        b = self.repo.upsert_song(NS, "B", "X", LISTEN)
        c = self.repo.upsert_song(NS, "C", "X", LISTEN)
        self.repo.upsert_edge(NS, a.id, b.id)
        self.repo.upsert_edge(NS, c.id, b.id)
        self.repo.upsert_edge(NS, b.id, a.id)

        neighbors = self.repo.find_neighbors(b.id)
        pairs = sorted((n.direction, n.song.name) for n in neighbors)
        assert pairs == [(DIRECTION_IN, "A"), (DIRECTION_IN, "C"), (DIRECTION_OUT, "A")]
        assert self.repo.find_neighbors(999) == []

    def test_node_and_edge_detail(self):
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        b = self.repo.upsert_song(NS, "B", "X", LISTEN)
        edge = self.repo.upsert_edge(NS, a.id, b.id)

        detail = self.repo.find_node_detail(a.id)
        assert detail.song.id == a.id
        assert [(e.id, s.id) for e, s in detail.outgoing] == [(edge.id, b.id)]
        assert detail.incoming == []

        edge_detail = self.repo.find_edge_detail(edge.id)
        assert edge_detail.source.name == "A"
        assert edge_detail.target.name == "B"
        assert self.repo.find_edge(edge.id).jump_count == 1
        assert self.repo.find_edge_by_names("A", "B", NS).id == edge.id
        assert self.repo.find_edge_by_names("B", "A") is None
        assert self.repo.find_node_detail(999) is None

    def test_delete_edge_scoped_by_namespace(self):
        for ns in (NS, OTHER):
            a = self.repo.upsert_song(ns, "A", "X", LISTEN)
            b = self.repo.upsert_song(ns, "B", "X", LISTEN)
            self.repo.upsert_edge(ns, a.id, b.id)

        assert self.repo.delete_edge("A", "B", NS) == 1
        assert self.repo.find_edge_by_names("A", "B", NS) is None
        assert self.repo.find_edge_by_names("A", "B", OTHER) is not None

    def test_delete_node_removes_all_same_named_songs_and_edges(self):
        """Same-titled songs by different artists go together."""
        a1 = self.repo.upsert_song(NS, "A", "X", LISTEN)
        a2 = self.repo.upsert_song(NS, "A", "Y", LISTEN)
        b = self.repo.upsert_song(NS, "B", "X", LISTEN)
        self.repo.upsert_edge(NS, a1.id, b.id)
        self.repo.upsert_edge(NS, b.id, a2.id)
        kept = self.repo.upsert_song(OTHER, "A", "X", LISTEN)

        assert self.repo.delete_node(NS, "A") == 2
        songs, edges = self.repo.snapshot(NS)
        assert [s.id for s in songs] == [b.id]
        assert edges == []
        assert self.repo.find_by_id(kept.id) is not None

    def test_clone_namespace(self):
        """Clone copies identity and properties, zeroes counters, seeds edges."""
        a = self.repo.upsert_song("base_Song", "A", "X", Increments(listen=5, user_select=5))
        b = self.repo.upsert_song("base_Song", "B", "X", Increments(listen=2))
        self.repo.upsert_edge("base_Song", a.id, b.id, 7, 3, 1)
        self.repo.set_node_property("genre", "rock")

        nodes, edges = self.store.clone_namespace("base_Song", NS, 1)
        assert (nodes, edges) == (2, 1)

        songs, cloned_edges = self.repo.snapshot(NS)
        assert {s.name for s in songs} == {"A", "B"}
        for song in songs:
            assert song.listen_count == 0
            assert song.user_select_count == 0
            assert song.listened_at is None
            assert song.properties["isTemplateCopy"] is True
            assert song.properties["genre"] == "rock"
        assert cloned_edges[0].jump_count == 1
        assert cloned_edges[0].user_select_count == 0
        assert cloned_edges[0].random_select_count == 0
        # template untouched
        assert self.repo.find_by_id(a.id).listen_count == 5

    def test_graph_metadata(self):
        graph = self.store.create_graph("7", "Mine", "G_u7_abc", "empty", "red")
        assert graph.owner_id == "7"
        assert graph.tag == "G_u7_abc"
        assert self.store.get_graph(graph.id) == graph
        assert [g.id for g in self.store.list_graphs("7")] == [graph.id]

        with pytest.raises(ConflictError):
            self.store.create_graph("8", "Theirs", "G_u7_abc", "empty", "blue")

        self.store.delete_graph(graph.id)
        assert self.store.get_graph(graph.id) is None
        assert self.store.list_graphs("7") == []

    def test_concurrent_upserts_do_not_lose_increments(self):
        """Two connections hammering the same song keep every increment."""
        other = SQLiteGraphStore(self.db_path)
        repos = [self.repo, SongRepository(other)]

        def worker(repo):
            for _ in range(10):
                repo.upsert_song(NS, "Hot", "X", LISTEN)

        threads = [threading.Thread(target=worker, args=(repos[i % 2],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        other.close()

        assert self.repo.find_by_identity(NS, "Hot", "X").listen_count == 40


class TestBulkProperties:
    """Tests for JSON-column property mutation."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = SQLiteGraphStore(Path(self.temp_dir) / "songmap.db")
        self.repo = SongRepository(self.store)
        a = self.repo.upsert_song(NS, "A", "X", LISTEN)
        b = self.repo.upsert_song(OTHER, "B", "X", LISTEN)
        self.a, self.b = a, b
        self.repo.upsert_edge(NS, a.id, self.repo.upsert_song(NS, "C", "X", LISTEN).id)

    def teardown_method(self):
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_set_node_property_spans_namespaces(self):
        assert self.repo.set_node_property("mood", "happy") == 3
        assert self.repo.find_by_id(self.a.id).properties == {"mood": "happy"}
        assert self.repo.find_by_id(self.b.id).properties == {"mood": "happy"}

    def test_typed_values_survive(self):
        self.repo.set_node_property("rating", 4.5)
        self.repo.set_node_property("explicit", False)
        props = self.repo.find_by_id(self.a.id).properties
        assert props == {"rating": 4.5, "explicit": False}

    def test_remove_property_counts_only_carriers(self):
        self.repo.set_edge_property("weightHint", 3)
        assert self.repo.remove_edge_property("weightHint") == 1
        assert self.repo.remove_edge_property("weightHint") == 0
        assert self.repo.remove_node_property("missing") == 0

    def test_unsafe_key_rejected(self):
        with pytest.raises(InvalidArgumentError):
            self.repo.set_node_property("mood') --", "x")
        with pytest.raises(InvalidArgumentError):
            self.store.set_edge_property("a.b", 1)
