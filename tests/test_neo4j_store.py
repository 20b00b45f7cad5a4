"""
Tests for the Neo4j graph store with a mocked driver.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import ServiceUnavailable

from songmap.errors import ConflictError, InvalidArgumentError, StoreUnavailableError
from songmap.models import DIRECTION_IN, DIRECTION_OUT, Increments
from songmap.store.neo4j_graph import Neo4jGraphStore

NS = "G_u1_abc"
LISTENED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def song_row(song_id, name, prefix="song", **props):
    base = {"name": name, "artist": "Band", "listenCount": 1, "userSelectCount": 1}
    base.update(props)
    return {
        f"{prefix}Id": song_id,
        f"{prefix}Labels": ["Song", NS],
        f"{prefix}Props": base,
    }


def edge_row(edge_id, source, target, **props):
    base = {"jumpCount": 1, "userSelectCount": 1, "randomSelectCount": 0}
    base.update(props)
    return {"edgeId": edge_id, "edgeSource": source, "edgeTarget": target, "edgeProps": base}


class TestNeo4jGraphStore:
    """Tests for Neo4jGraphStore."""

    def setup_method(self):
        self.driver = MagicMock()
        self.session = MagicMock()
        self.driver.session.return_value.__enter__.return_value = self.session
        self.results = []
        self.session.run.side_effect = self._run
        self.store = Neo4jGraphStore(driver=self.driver, timeout=3.0)
        self.session.run.reset_mock()

    def _run(self, query, params=None):
        result = MagicMock()
        result.data.return_value = self.results.pop(0) if self.results else []
        return result

    def _last_query(self):
        query, params = self.session.run.call_args.args
        return query.text, params

    def test_schema_constraint_on_start(self):
        driver = MagicMock()
        session = driver.session.return_value.__enter__.return_value
        Neo4jGraphStore(driver=driver)
        assert "CREATE CONSTRAINT" in session.run.call_args.args[0].text

    def test_requires_password_without_driver(self):
        with pytest.raises(StoreUnavailableError):
            Neo4jGraphStore(password=None)

    def test_upsert_song_single_merge(self):
        self.results.append([song_row(5, "A", listenCount=3, listenedAt=LISTENED, mood="happy")])
        song = self.store.upsert_song(NS, "A", "Band", Increments(listen=1, user_select=1), LISTENED)

        text, params = self._last_query()
        assert text.startswith(f"MERGE (n:Song:`{NS}` {{name: $name, artist: $artist}})")
        assert "ON MATCH SET" in text
        assert "coalesce(n.listenCount, 0) + $listenInc" in text
        assert params["listenInc"] == 1
        assert params["randomSelectInc"] == 0
        assert song.id == 5
        assert song.namespace == NS
        assert song.listen_count == 3
        assert song.listened_at == LISTENED
        assert song.properties == {"mood": "happy"}

    def test_unsafe_namespace_never_reaches_driver(self):
        with pytest.raises(InvalidArgumentError):
            self.store.upsert_song("x`) DETACH DELETE n //", "A", "Band", Increments(listen=1), LISTENED)
        self.session.run.assert_not_called()

    def test_upsert_edge_missing_songs(self):
        self.results.append([])
        assert self.store.upsert_edge(NS, 1, 2, 1, 1, 0) is None

    def test_upsert_edge(self):
        self.results.append([edge_row(9, 1, 2, jumpCount=4)])
        edge = self.store.upsert_edge(NS, 1, 2, 1, 1, 0)
        text, params = self._last_query()
        assert "MERGE (prev)-[r:NEXT]->(curr)" in text
        assert params == {"fromId": 1, "toId": 2, "jump": 1, "userSelect": 1, "random": 0}
        assert (edge.id, edge.source_id, edge.target_id, edge.jump_count) == (9, 1, 2, 4)

    def test_neighbors_keep_direction(self):
        out_row = {"direction": "OUT", **edge_row(9, 1, 2), **song_row(2, "B")}
        in_row = {"direction": "IN", **edge_row(10, 3, 1), **song_row(3, "C")}
        self.results.append([out_row, in_row])
        neighbors = self.store.neighbors(1)
        assert [(n.direction, n.song.name) for n in neighbors] == [(DIRECTION_OUT, "B"), (DIRECTION_IN, "C")]
        assert "UNION ALL" in self._last_query()[0]

    def test_create_graph_conflict(self):
        self.results.append([])
        with pytest.raises(ConflictError):
            self.store.create_graph("1", "Mine", NS, "empty", "red")

    def test_create_graph(self):
        self.results.append([{
            "graphId": 4,
            "ownerId": "1",
            "graphProps": {"name": "Mine", "nodeLabel": NS, "type": "empty", "coverColor": "red",
                           "createdAt": LISTENED, "updatedAt": LISTENED},
        }])
        graph = self.store.create_graph("1", "Mine", NS, "empty", "red")
        assert (graph.id, graph.owner_id, graph.tag, graph.kind) == (4, "1", NS, "empty")

    def test_bulk_property_key_spliced_after_validation(self):
        self.results.append([{"updated": 7}])
        assert self.store.set_node_property("mood", "happy") == 7
        text, params = self._last_query()
        assert "SET n.`mood` = $val" in text
        assert params == {"val": "happy"}

        with pytest.raises(InvalidArgumentError):
            self.store.remove_edge_property("mood` = 1 //")

    def test_delete_edge_scoped(self):
        self.results.append([{"deleted": 1}])
        assert self.store.delete_edge("A", "B", NS) == 1
        assert f"(a:Song:`{NS}` {{name: $fromName}})" in self._last_query()[0]

    def test_driver_errors_translated(self):
        self.session.run.side_effect = ServiceUnavailable("down")
        with pytest.raises(StoreUnavailableError):
            self.store.get_song(1)

    def test_clone_runs_in_one_transaction(self):
        tx = MagicMock()
        tx.closed.return_value = True
        first, second = MagicMock(), MagicMock()
        first.data.return_value = [{"copied": 3}]
        second.data.return_value = [{"copied": 2}]
        tx.run.side_effect = [first, second]
        self.session.begin_transaction.return_value = tx

        assert self.store.clone_namespace("base_Song", NS, 1) == (3, 2)
        tx.commit.assert_called_once()
        assert tx.run.call_args_list[1].args[1] == {"seed": 1}

    def test_call_timeout_overrides_default(self):
        self.store.get_song(1)
        assert self.session.run.call_args.args[0].timeout == 3.0
        with self.store.call_timeout(0.5):
            self.store.get_song(1)
            assert self.session.run.call_args.args[0].timeout == 0.5
        self.store.get_song(1)
        assert self.session.run.call_args.args[0].timeout == 3.0

    def test_call_timeout_reaches_transactions(self):
        tx = MagicMock()
        tx.closed.return_value = True
        tx.run.return_value.data.return_value = [{"copied": 0}]
        self.session.begin_transaction.return_value = tx
        with self.store.call_timeout(1.5):
            self.store.clone_namespace("base_Song", NS, 1)
        self.session.begin_transaction.assert_called_once_with(timeout=1.5)

    def test_close(self):
        self.store.close()
        self.driver.close.assert_called_once()
