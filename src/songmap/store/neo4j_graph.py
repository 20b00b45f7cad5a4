"""
Neo4j-backed graph store.

Each listening graph is a dynamic node label (the namespace tag) on top of the
shared ``Song`` label. Labels and property names cannot be bound as Cypher
parameters, so every tag and key is validated before it is spliced into the
query text; all values are bound as parameters.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from neo4j import GraphDatabase, Query
from neo4j.exceptions import (
    ConstraintError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from songmap.errors import (
    ConflictError,
    SongMapError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from songmap.identifiers import validate_identifier
from songmap.models import (
    DIRECTION_IN,
    DIRECTION_OUT,
    EdgeDetail,
    GraphInfo,
    Increments,
    Neighbor,
    NextEdge,
    NodeDetail,
    Song,
    UNKNOWN_ARTIST,
)
from songmap.store.timeouts import CallTimeout

_SONG_COUNTERS = {
    "listenCount": "listen_count",
    "fullPlayCount": "full_play_count",
    "skipCount": "skip_count",
    "userSelectCount": "user_select_count",
    "randomSelectCount": "random_select_count",
}
_EDGE_COUNTERS = {
    "jumpCount": "jump_count",
    "userSelectCount": "user_select_count",
    "randomSelectCount": "random_select_count",
}

_SONG_RETURN = "id({v}) AS {p}Id, labels({v}) AS {p}Labels, {v}{{.*}} AS {p}Props"
_EDGE_RETURN = ("id({v}) AS edgeId, id(startNode({v})) AS edgeSource, "
                "id(endNode({v})) AS edgeTarget, {v}{{.*}} AS edgeProps")


def _label(tag: str) -> str:
    return f"`{validate_identifier(tag, 'namespace tag')}`"


def _native(value):
    if value is not None and hasattr(value, "to_native"):
        value = value.to_native()
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _song(record: Dict[str, Any], prefix: str = "song") -> Song:
    props = dict(record[f"{prefix}Props"] or {})
    labels = [l for l in (record.get(f"{prefix}Labels") or []) if l != "Song"]
    song = Song(
        id=record[f"{prefix}Id"],
        namespace=labels[0] if labels else "",
        name=props.pop("name"),
        artist=props.pop("artist", None) or UNKNOWN_ARTIST,
        listened_at=_native(props.pop("listenedAt", None)),
    )
    for prop, attr in _SONG_COUNTERS.items():
        setattr(song, attr, int(props.pop(prop, 0) or 0))
    song.properties = props
    return song


def _edge(record: Dict[str, Any]) -> NextEdge:
    props = dict(record["edgeProps"] or {})
    edge = NextEdge(id=record["edgeId"], source_id=record["edgeSource"], target_id=record["edgeTarget"])
    for prop, attr in _EDGE_COUNTERS.items():
        setattr(edge, attr, int(props.pop(prop, 0) or 0))
    edge.properties = props
    return edge


def _graph(record: Dict[str, Any]) -> GraphInfo:
    props = record["graphProps"]
    return GraphInfo(
        id=record["graphId"],
        owner_id=str(record["ownerId"]),
        name=props.get("name"),
        tag=props.get("nodeLabel"),
        kind=props.get("type"),
        cover_color=props.get("coverColor"),
        created_at=_native(props.get("createdAt")),
        updated_at=_native(props.get("updatedAt")),
    )


def translate_neo4j_error(exc: Exception) -> SongMapError:
    """Map a driver exception onto the SongMap error taxonomy."""
    if isinstance(exc, ConstraintError):
        return ConflictError(f"Constraint violated: {exc}")
    code = getattr(exc, "code", "") or ""
    if "TimedOut" in code or "Timeout" in code:
        return StoreTimeoutError(f"Neo4j timed out: {exc}")
    if isinstance(exc, (ServiceUnavailable, SessionExpired, TransientError)):
        return StoreUnavailableError(f"Neo4j unavailable: {exc}")
    return StoreUnavailableError(f"Neo4j query failed: {exc}")


class Neo4jGraphStore:
    """Graph store over a Neo4j database."""

    def __init__(self, uri: str = "bolt://localhost:7687", user: str = "neo4j",
                 password: Optional[str] = None, database: Optional[str] = None,
                 timeout: float = 5.0, driver=None):
        """
        Args:
            uri: Bolt URI
            user: Username
            password: Password (required unless ``driver`` is given)
            database: Database name; None uses the server default
            timeout: Default per-query timeout in seconds
            driver: Pre-built driver, mainly for tests
        """
        if driver is None:
            if not password:
                raise StoreUnavailableError("NEO4J_PASSWORD is required for the neo4j graph backend")
            driver = GraphDatabase.driver(
                uri,
                auth=(user, password),
                max_connection_lifetime=3600,
                connection_acquisition_timeout=timeout,
                keep_alive=True,
            )
        self.driver = driver
        self.database = database
        self._timeouts = CallTimeout(timeout)
        self._ensure_schema()

    def call_timeout(self, seconds):
        """Context manager overriding the query timeout for calls made by this thread."""
        return self._timeouts.scope(seconds)

    def _session(self):
        if self.database:
            return self.driver.session(database=self.database)
        return self.driver.session()

    def _run(self, cypher: str, **params) -> List[Dict[str, Any]]:
        try:
            with self._session() as session:
                result = session.run(Query(cypher, timeout=self._timeouts.current), params)
                return result.data()
        except (Neo4jError, DriverError) as e:
            logger.error(f"Neo4j query failed: {e}")
            raise translate_neo4j_error(e)

    def _run_in_transaction(self, statements: Iterable[Tuple[str, Dict[str, Any]]]) -> List[List[Dict[str, Any]]]:
        results = []
        try:
            with self._session() as session:
                tx = session.begin_transaction(timeout=self._timeouts.current)
                try:
                    for cypher, params in statements:
                        results.append(tx.run(cypher, params).data())
                    tx.commit()
                finally:
                    if not tx.closed():
                        tx.rollback()
        except (Neo4jError, DriverError) as e:
            logger.error(f"Neo4j transaction failed: {e}")
            raise translate_neo4j_error(e)
        return results

    def _ensure_schema(self):
        self._run(
            "CREATE CONSTRAINT songmap_graph_tag IF NOT EXISTS "
            "FOR (g:GraphInfo) REQUIRE g.nodeLabel IS UNIQUE"
        )

    # ------------------------------------------------------------------
    # Graph metadata
    # ------------------------------------------------------------------

    def create_graph(self, owner_id: str, name: str, tag: str, kind: str, cover_color: str) -> GraphInfo:
        validate_identifier(tag, "namespace tag")
        rows = self._run(
            "OPTIONAL MATCH (existing:GraphInfo {nodeLabel: $tag}) "
            "WITH existing WHERE existing IS NULL "
            "MERGE (u:User {userId: $ownerId}) "
            "CREATE (g:GraphInfo {name: $name, nodeLabel: $tag, type: $kind, "
            "    coverColor: $color, createdAt: $now, updatedAt: $now}) "
            "CREATE (u)-[:OWNS]->(g) "
            "RETURN id(g) AS graphId, g{.*} AS graphProps, u.userId AS ownerId",
            ownerId=str(owner_id), name=name, tag=tag, kind=kind, color=cover_color,
            now=datetime.now(timezone.utc),
        )
        if not rows:
            raise ConflictError(f"Namespace tag already in use: {tag}")
        return _graph(rows[0])

    def get_graph(self, graph_id: int) -> Optional[GraphInfo]:
        rows = self._run(
            "MATCH (u:User)-[:OWNS]->(g:GraphInfo) WHERE id(g) = $id "
            "RETURN id(g) AS graphId, g{.*} AS graphProps, u.userId AS ownerId",
            id=graph_id,
        )
        return _graph(rows[0]) if rows else None

    def list_graphs(self, owner_id: str) -> List[GraphInfo]:
        rows = self._run(
            "MATCH (u:User {userId: $ownerId})-[:OWNS]->(g:GraphInfo) "
            "RETURN id(g) AS graphId, g{.*} AS graphProps, u.userId AS ownerId "
            "ORDER BY graphId",
            ownerId=str(owner_id),
        )
        return [_graph(row) for row in rows]

    def delete_graph(self, graph_id: int) -> None:
        self._run("MATCH (g:GraphInfo) WHERE id(g) = $id DETACH DELETE g", id=graph_id)

    def prepare_namespace(self, tag: str) -> None:
        label = _label(tag)
        self._run(
            f"CREATE CONSTRAINT `songmap_{tag}_identity` IF NOT EXISTS "
            f"FOR (s:{label}) REQUIRE (s.name, s.artist) IS UNIQUE"
        )

    def clone_namespace(self, source_tag: str, target_tag: str, edge_seed: int) -> Tuple[int, int]:
        source, target = _label(source_tag), _label(target_tag)
        copy_nodes = (
            f"MATCH (source:Song:{source}) "
            f"CREATE (target:Song:{target}) "
            "SET target = properties(source), "
            "    target.isTemplateCopy = true, "
            "    target.listenCount = 0, "
            "    target.fullPlayCount = 0, "
            "    target.skipCount = 0, "
            "    target.userSelectCount = 0, "
            "    target.randomSelectCount = 0 "
            "REMOVE target.listenedAt "
            "RETURN count(target) AS copied"
        )
        copy_edges = (
            f"MATCH (sourceA:Song:{source})-[r:NEXT]->(sourceB:Song:{source}) "
            f"MATCH (targetA:Song:{target} {{name: sourceA.name, artist: sourceA.artist}}) "
            f"MATCH (targetB:Song:{target} {{name: sourceB.name, artist: sourceB.artist}}) "
            "MERGE (targetA)-[newR:NEXT]->(targetB) "
            "SET newR = properties(r), "
            "    newR.jumpCount = $seed, "
            "    newR.userSelectCount = 0, "
            "    newR.randomSelectCount = 0 "
            "RETURN count(newR) AS copied"
        )
        nodes, edges = self._run_in_transaction([(copy_nodes, {}), (copy_edges, {"seed": edge_seed})])
        return nodes[0]["copied"], edges[0]["copied"]

    # ------------------------------------------------------------------
    # Songs and edges
    # ------------------------------------------------------------------

    def upsert_song(self, namespace: str, name: str, artist: str,
                    increments: Increments, listened_at: datetime) -> Song:
        label = _label(namespace)
        rows = self._run(
            f"MERGE (n:Song:{label} {{name: $name, artist: $artist}}) "
            "ON CREATE SET "
            "   n.listenCount = $listenInc, "
            "   n.listenedAt = $listenedAt, "
            "   n.fullPlayCount = $fullPlayInc, "
            "   n.skipCount = $skipInc, "
            "   n.userSelectCount = $userSelectInc, "
            "   n.randomSelectCount = $randomSelectInc "
            "ON MATCH SET "
            "   n.listenCount = coalesce(n.listenCount, 0) + $listenInc, "
            "   n.listenedAt = $listenedAt, "
            "   n.fullPlayCount = coalesce(n.fullPlayCount, 0) + $fullPlayInc, "
            "   n.skipCount = coalesce(n.skipCount, 0) + $skipInc, "
            "   n.userSelectCount = coalesce(n.userSelectCount, 0) + $userSelectInc, "
            "   n.randomSelectCount = coalesce(n.randomSelectCount, 0) + $randomSelectInc "
            f"RETURN {_SONG_RETURN.format(v='n', p='song')}",
            name=name, artist=artist, listenedAt=listened_at,
            listenInc=increments.listen, fullPlayInc=increments.full_play,
            skipInc=increments.skip, userSelectInc=increments.user_select,
            randomSelectInc=increments.random_select,
        )
        return _song(rows[0])

    def upsert_edge(self, namespace: str, from_id: int, to_id: int,
                    jump_delta: int, user_select_delta: int, random_delta: int) -> Optional[NextEdge]:
        label = _label(namespace)
        rows = self._run(
            f"MATCH (prev:Song:{label}) WHERE id(prev) = $fromId "
            f"MATCH (curr:Song:{label}) WHERE id(curr) = $toId "
            "MERGE (prev)-[r:NEXT]->(curr) "
            "ON CREATE SET "
            "   r.jumpCount = $jump, "
            "   r.userSelectCount = $userSelect, "
            "   r.randomSelectCount = $random "
            "ON MATCH SET "
            "   r.jumpCount = coalesce(r.jumpCount, 0) + $jump, "
            "   r.userSelectCount = coalesce(r.userSelectCount, 0) + $userSelect, "
            "   r.randomSelectCount = coalesce(r.randomSelectCount, 0) + $random "
            f"RETURN {_EDGE_RETURN.format(v='r')}",
            fromId=from_id, toId=to_id, jump=jump_delta,
            userSelect=user_select_delta, random=random_delta,
        )
        return _edge(rows[0]) if rows else None

    def delete_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> int:
        scope = f":{_label(namespace)}" if namespace is not None else ""
        rows = self._run(
            f"MATCH (a:Song{scope} {{name: $fromName}})-[r:NEXT]->(b:Song{scope} {{name: $toName}}) "
            "DELETE r RETURN count(r) AS deleted",
            fromName=from_name, toName=to_name,
        )
        return rows[0]["deleted"] if rows else 0

    def delete_node(self, namespace: str, name: str) -> int:
        label = _label(namespace)
        rows = self._run(
            f"MATCH (n:Song:{label}) WHERE n.name = $name "
            "WITH collect(n) AS nodes "
            "FOREACH (x IN nodes | DETACH DELETE x) "
            "RETURN size(nodes) AS deleted",
            name=name,
        )
        return rows[0]["deleted"] if rows else 0

    def get_song(self, song_id: int) -> Optional[Song]:
        rows = self._run(
            f"MATCH (n:Song) WHERE id(n) = $id RETURN {_SONG_RETURN.format(v='n', p='song')}",
            id=song_id,
        )
        return _song(rows[0]) if rows else None

    def find_song(self, namespace: str, name: str, artist: str) -> Optional[Song]:
        label = _label(namespace)
        rows = self._run(
            f"MATCH (n:Song:{label} {{name: $name, artist: $artist}}) "
            f"RETURN {_SONG_RETURN.format(v='n', p='song')} LIMIT 1",
            name=name, artist=artist,
        )
        return _song(rows[0]) if rows else None

    def neighbors(self, song_id: int) -> List[Neighbor]:
        returns = f"{_EDGE_RETURN.format(v='r')}, {_SONG_RETURN.format(v='m', p='song')}"
        rows = self._run(
            "MATCH (n:Song)-[r:NEXT]->(m:Song) WHERE id(n) = $id "
            f"RETURN 'OUT' AS direction, {returns} "
            "UNION ALL "
            "MATCH (m:Song)-[r:NEXT]->(n:Song) WHERE id(n) = $id "
            f"RETURN 'IN' AS direction, {returns}",
            id=song_id,
        )
        return [Neighbor(row["direction"], _edge(row), _song(row)) for row in rows]

    def node_detail(self, song_id: int) -> Optional[NodeDetail]:
        song = self.get_song(song_id)
        if song is None:
            return None
        detail = NodeDetail(song=song)
        for neighbor in self.neighbors(song_id):
            if neighbor.direction == DIRECTION_OUT:
                detail.outgoing.append((neighbor.edge, neighbor.song))
            elif neighbor.direction == DIRECTION_IN:
                detail.incoming.append((neighbor.edge, neighbor.song))
        return detail

    def _edge_query(self, match: str, **params) -> List[Dict[str, Any]]:
        return self._run(
            f"{match} RETURN {_EDGE_RETURN.format(v='r')}, "
            f"{_SONG_RETURN.format(v='s', p='source')}, {_SONG_RETURN.format(v='t', p='target')} "
            "ORDER BY edgeId LIMIT 1",
            **params,
        )

    def get_edge(self, edge_id: int) -> Optional[NextEdge]:
        rows = self._edge_query("MATCH (s:Song)-[r:NEXT]->(t:Song) WHERE id(r) = $id", id=edge_id)
        return _edge(rows[0]) if rows else None

    def find_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> Optional[NextEdge]:
        scope = f":{_label(namespace)}" if namespace is not None else ""
        rows = self._edge_query(
            f"MATCH (s:Song{scope} {{name: $fromName}})-[r:NEXT]->(t:Song{scope} {{name: $toName}})",
            fromName=from_name, toName=to_name,
        )
        return _edge(rows[0]) if rows else None

    def edge_detail(self, edge_id: int) -> Optional[EdgeDetail]:
        rows = self._edge_query("MATCH (s:Song)-[r:NEXT]->(t:Song) WHERE id(r) = $id", id=edge_id)
        if not rows:
            return None
        row = rows[0]
        return EdgeDetail(edge=_edge(row), source=_song(row, "source"), target=_song(row, "target"))

    def snapshot(self, namespace: str) -> Tuple[List[Song], List[NextEdge]]:
        label = _label(namespace)
        song_rows = self._run(
            f"MATCH (n:Song:{label}) RETURN {_SONG_RETURN.format(v='n', p='song')} ORDER BY songId"
        )
        edge_rows = self._run(
            f"MATCH (:Song:{label})-[r:NEXT]->(:Song:{label}) "
            f"RETURN {_EDGE_RETURN.format(v='r')} ORDER BY edgeId"
        )
        return [_song(row) for row in song_rows], [_edge(row) for row in edge_rows]

    # ------------------------------------------------------------------
    # Bulk properties
    # ------------------------------------------------------------------

    def set_node_property(self, key: str, value: Any) -> int:
        key = validate_identifier(key, "property key")
        rows = self._run(f"MATCH (n:Song) SET n.`{key}` = $val RETURN count(n) AS updated", val=value)
        return rows[0]["updated"] if rows else 0

    def remove_node_property(self, key: str) -> int:
        key = validate_identifier(key, "property key")
        rows = self._run(
            f"MATCH (n:Song) WHERE n.`{key}` IS NOT NULL REMOVE n.`{key}` RETURN count(n) AS updated"
        )
        return rows[0]["updated"] if rows else 0

    def set_edge_property(self, key: str, value: Any) -> int:
        key = validate_identifier(key, "property key")
        rows = self._run(f"MATCH ()-[r:NEXT]->() SET r.`{key}` = $val RETURN count(r) AS updated", val=value)
        return rows[0]["updated"] if rows else 0

    def remove_edge_property(self, key: str) -> int:
        key = validate_identifier(key, "property key")
        rows = self._run(
            f"MATCH ()-[r:NEXT]->() WHERE r.`{key}` IS NOT NULL REMOVE r.`{key}` RETURN count(r) AS updated"
        )
        return rows[0]["updated"] if rows else 0

    def close(self) -> None:
        if self.driver:
            self.driver.close()
            self.driver = None
