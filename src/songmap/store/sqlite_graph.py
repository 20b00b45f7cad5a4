"""
SQLite-backed graph store.

Adjacency-list schema:
- graphs / graph_owners: graph metadata and the user -> graph ownership relation
- songs: one row per (namespace, name, artist) with interaction counters
- next_edges: one row per ordered (source, target) pair

Counter accumulation is a single ``INSERT ... ON CONFLICT DO UPDATE`` statement,
so concurrent listens never lose an increment. Dynamic properties live in a
JSON column; the property key becomes part of the JSON path, which is why
keys are validated before use.
"""

from __future__ import annotations
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from songmap.errors import ConflictError
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
)
from songmap.store.sqlite_base import SQLiteDatabase

_EDGE_COLUMNS = """
    e.edge_id AS e_edge_id,
    e.source_id AS e_source_id,
    e.target_id AS e_target_id,
    e.jump_count AS e_jump_count,
    e.user_select_count AS e_user_select_count,
    e.random_select_count AS e_random_select_count,
    e.properties AS e_properties
"""


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_props(raw: Optional[str]) -> Dict[str, Any]:
    return json.loads(raw) if raw else {}


def _row_to_song(row: sqlite3.Row) -> Song:
    return Song(
        id=row["song_id"],
        namespace=row["namespace"],
        name=row["name"],
        artist=row["artist"],
        listened_at=_parse_ts(row["listened_at"]),
        listen_count=row["listen_count"] or 0,
        full_play_count=row["full_play_count"] or 0,
        skip_count=row["skip_count"] or 0,
        user_select_count=row["user_select_count"] or 0,
        random_select_count=row["random_select_count"] or 0,
        properties=_load_props(row["properties"]),
    )


def _row_to_edge(row: sqlite3.Row, prefix: str = "") -> NextEdge:
    return NextEdge(
        id=row[f"{prefix}edge_id"],
        source_id=row[f"{prefix}source_id"],
        target_id=row[f"{prefix}target_id"],
        jump_count=row[f"{prefix}jump_count"] or 0,
        user_select_count=row[f"{prefix}user_select_count"] or 0,
        random_select_count=row[f"{prefix}random_select_count"] or 0,
        properties=_load_props(row[f"{prefix}properties"]),
    )


def _row_to_graph(row: sqlite3.Row) -> GraphInfo:
    return GraphInfo(
        id=row["graph_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        tag=row["tag"],
        kind=row["kind"],
        cover_color=row["cover_color"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


class SQLiteGraphStore(SQLiteDatabase):
    """Graph store for a single SQLite file."""

    def __init__(self, db_path: str | Path = "data/cache/songmap.db", timeout: float = 5.0):
        super().__init__(db_path, timeout=timeout)
        logger.debug(f"SQLite graph store ready at {self.db_path}")

    def _create_schema(self, cursor: sqlite3.Cursor):
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS graphs (
                graph_id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                tag TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL,
                cover_color TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS graph_owners (
                owner_id TEXT NOT NULL,
                graph_id INTEGER NOT NULL,
                PRIMARY KEY (owner_id, graph_id),
                FOREIGN KEY (graph_id) REFERENCES graphs(graph_id) ON DELETE CASCADE
            )
        """)

        # Songs deliberately have no FK to graphs: deleting a graph leaves its data.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS songs (
                song_id INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                name TEXT NOT NULL,
                artist TEXT NOT NULL,
                listened_at TEXT,
                listen_count INTEGER NOT NULL DEFAULT 0,
                full_play_count INTEGER NOT NULL DEFAULT 0,
                skip_count INTEGER NOT NULL DEFAULT 0,
                user_select_count INTEGER NOT NULL DEFAULT 0,
                random_select_count INTEGER NOT NULL DEFAULT 0,
                properties TEXT NOT NULL DEFAULT '{}',
                UNIQUE (namespace, name, artist)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS next_edges (
                edge_id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_id INTEGER NOT NULL,
                target_id INTEGER NOT NULL,
                jump_count INTEGER NOT NULL DEFAULT 0,
                user_select_count INTEGER NOT NULL DEFAULT 0,
                random_select_count INTEGER NOT NULL DEFAULT 0,
                properties TEXT NOT NULL DEFAULT '{}',
                UNIQUE (source_id, target_id),
                CHECK (source_id != target_id),
                FOREIGN KEY (source_id) REFERENCES songs(song_id) ON DELETE CASCADE,
                FOREIGN KEY (target_id) REFERENCES songs(song_id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_songs_namespace_name ON songs(namespace, name)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_edges_target ON next_edges(target_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_owners_graph ON graph_owners(graph_id)")

    # ------------------------------------------------------------------
    # Graph metadata
    # ------------------------------------------------------------------

    def create_graph(self, owner_id: str, name: str, tag: str, kind: str, cover_color: str) -> GraphInfo:
        validate_identifier(tag, "namespace tag")
        now = _now().isoformat()
        with self._transaction() as cursor:
            cursor.execute("SELECT 1 FROM graphs WHERE tag = ?", (tag,))
            if cursor.fetchone():
                raise ConflictError(f"Namespace tag already in use: {tag}")
            cursor.execute("""
                INSERT INTO graphs (name, tag, kind, cover_color, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (name, tag, kind, cover_color, now, now))
            graph_id = cursor.lastrowid
            cursor.execute(
                "INSERT INTO graph_owners (owner_id, graph_id) VALUES (?, ?)",
                (str(owner_id), graph_id),
            )
        return self.get_graph(graph_id)

    def get_graph(self, graph_id: int) -> Optional[GraphInfo]:
        with self._read() as cursor:
            cursor.execute("""
                SELECT g.*, o.owner_id
                FROM graphs g JOIN graph_owners o ON o.graph_id = g.graph_id
                WHERE g.graph_id = ?
            """, (graph_id,))
            row = cursor.fetchone()
        return _row_to_graph(row) if row else None

    def list_graphs(self, owner_id: str) -> List[GraphInfo]:
        with self._read() as cursor:
            cursor.execute("""
                SELECT g.*, o.owner_id
                FROM graphs g JOIN graph_owners o ON o.graph_id = g.graph_id
                WHERE o.owner_id = ?
                ORDER BY g.graph_id
            """, (str(owner_id),))
            return [_row_to_graph(row) for row in cursor.fetchall()]

    def delete_graph(self, graph_id: int) -> None:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM graph_owners WHERE graph_id = ?", (graph_id,))
            cursor.execute("DELETE FROM graphs WHERE graph_id = ?", (graph_id,))

    def prepare_namespace(self, tag: str) -> None:
        # (namespace, name, artist) is already unique table-wide
        validate_identifier(tag, "namespace tag")

    def clone_namespace(self, source_tag: str, target_tag: str, edge_seed: int) -> Tuple[int, int]:
        validate_identifier(source_tag, "namespace tag")
        validate_identifier(target_tag, "namespace tag")
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO songs (
                    namespace, name, artist, listened_at,
                    listen_count, full_play_count, skip_count,
                    user_select_count, random_select_count, properties
                )
                SELECT ?, name, artist, NULL, 0, 0, 0, 0, 0,
                       json_set(COALESCE(properties, '{}'), '$.isTemplateCopy', json('true'))
                FROM songs WHERE namespace = ?
            """, (target_tag, source_tag))
            nodes = cursor.rowcount

            cursor.execute("""
                INSERT INTO next_edges (
                    source_id, target_id, jump_count,
                    user_select_count, random_select_count, properties
                )
                SELECT ta.song_id, tb.song_id, ?, 0, 0, COALESCE(e.properties, '{}')
                FROM next_edges e
                JOIN songs sa ON sa.song_id = e.source_id
                JOIN songs sb ON sb.song_id = e.target_id
                JOIN songs ta ON ta.namespace = ? AND ta.name = sa.name AND ta.artist = sa.artist
                JOIN songs tb ON tb.namespace = ? AND tb.name = sb.name AND tb.artist = sb.artist
                WHERE sa.namespace = ? AND sb.namespace = ?
            """, (edge_seed, target_tag, target_tag, source_tag, source_tag))
            edges = cursor.rowcount
        return nodes, edges

    # ------------------------------------------------------------------
    # Songs and edges
    # ------------------------------------------------------------------

    def upsert_song(self, namespace: str, name: str, artist: str,
                    increments: Increments, listened_at: datetime) -> Song:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO songs (
                    namespace, name, artist, listened_at,
                    listen_count, full_play_count, skip_count,
                    user_select_count, random_select_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (namespace, name, artist) DO UPDATE SET
                    listened_at = excluded.listened_at,
                    listen_count = COALESCE(songs.listen_count, 0) + excluded.listen_count,
                    full_play_count = COALESCE(songs.full_play_count, 0) + excluded.full_play_count,
                    skip_count = COALESCE(songs.skip_count, 0) + excluded.skip_count,
                    user_select_count = COALESCE(songs.user_select_count, 0) + excluded.user_select_count,
                    random_select_count = COALESCE(songs.random_select_count, 0) + excluded.random_select_count
                RETURNING *
            """, (
                namespace, name, artist, listened_at.isoformat(),
                increments.listen, increments.full_play, increments.skip,
                increments.user_select, increments.random_select,
            ))
            row = cursor.fetchone()
        return _row_to_song(row)

    def upsert_edge(self, namespace: str, from_id: int, to_id: int,
                    jump_delta: int, user_select_delta: int, random_delta: int) -> Optional[NextEdge]:
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO next_edges (source_id, target_id, jump_count, user_select_count, random_select_count)
                SELECT src.song_id, dst.song_id, ?, ?, ?
                FROM songs AS src, songs AS dst
                WHERE src.song_id = ? AND dst.song_id = ?
                  AND src.namespace = ? AND dst.namespace = ?
                ON CONFLICT (source_id, target_id) DO UPDATE SET
                    jump_count = COALESCE(next_edges.jump_count, 0) + excluded.jump_count,
                    user_select_count = COALESCE(next_edges.user_select_count, 0) + excluded.user_select_count,
                    random_select_count = COALESCE(next_edges.random_select_count, 0) + excluded.random_select_count
                RETURNING *
            """, (jump_delta, user_select_delta, random_delta, from_id, to_id, namespace, namespace))
            row = cursor.fetchone()
        return _row_to_edge(row) if row else None

    def delete_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> int:
        query = """
            DELETE FROM next_edges WHERE edge_id IN (
                SELECT e.edge_id FROM next_edges e
                JOIN songs a ON a.song_id = e.source_id
                JOIN songs b ON b.song_id = e.target_id
                WHERE a.name = ? AND b.name = ?
        """
        params: List[Any] = [from_name, to_name]
        if namespace is not None:
            query += " AND a.namespace = ? AND b.namespace = ?"
            params += [namespace, namespace]
        query += ")"
        with self._transaction() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def delete_node(self, namespace: str, name: str) -> int:
        # edges go with the node through ON DELETE CASCADE
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM songs WHERE namespace = ? AND name = ?", (namespace, name))
            return cursor.rowcount

    def get_song(self, song_id: int) -> Optional[Song]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM songs WHERE song_id = ?", (song_id,))
            row = cursor.fetchone()
        return _row_to_song(row) if row else None

    def find_song(self, namespace: str, name: str, artist: str) -> Optional[Song]:
        with self._read() as cursor:
            cursor.execute(
                "SELECT * FROM songs WHERE namespace = ? AND name = ? AND artist = ?",
                (namespace, name, artist),
            )
            row = cursor.fetchone()
        return _row_to_song(row) if row else None

    def _adjacent(self, cursor: sqlite3.Cursor, song_id: int, direction: str) -> List[Tuple[NextEdge, Song]]:
        if direction == DIRECTION_OUT:
            join, where = "s.song_id = e.target_id", "e.source_id = ?"
        else:
            join, where = "s.song_id = e.source_id", "e.target_id = ?"
        cursor.execute(
            f"SELECT {_EDGE_COLUMNS}, s.* FROM next_edges e JOIN songs s ON {join} "
            f"WHERE {where} ORDER BY e.edge_id",
            (song_id,),
        )
        return [(_row_to_edge(row, prefix="e_"), _row_to_song(row)) for row in cursor.fetchall()]

    def neighbors(self, song_id: int) -> List[Neighbor]:
        with self._read() as cursor:
            outgoing = self._adjacent(cursor, song_id, DIRECTION_OUT)
            incoming = self._adjacent(cursor, song_id, DIRECTION_IN)
        result = [Neighbor(DIRECTION_OUT, edge, song) for edge, song in outgoing]
        result += [Neighbor(DIRECTION_IN, edge, song) for edge, song in incoming]
        return result

    def node_detail(self, song_id: int) -> Optional[NodeDetail]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM songs WHERE song_id = ?", (song_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return NodeDetail(
                song=_row_to_song(row),
                outgoing=self._adjacent(cursor, song_id, DIRECTION_OUT),
                incoming=self._adjacent(cursor, song_id, DIRECTION_IN),
            )

    def get_edge(self, edge_id: int) -> Optional[NextEdge]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM next_edges WHERE edge_id = ?", (edge_id,))
            row = cursor.fetchone()
        return _row_to_edge(row) if row else None

    def find_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> Optional[NextEdge]:
        query = """
            SELECT e.* FROM next_edges e
            JOIN songs a ON a.song_id = e.source_id
            JOIN songs b ON b.song_id = e.target_id
            WHERE a.name = ? AND b.name = ?
        """
        params: List[Any] = [from_name, to_name]
        if namespace is not None:
            query += " AND a.namespace = ? AND b.namespace = ?"
            params += [namespace, namespace]
        query += " ORDER BY e.edge_id LIMIT 1"
        with self._read() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
        return _row_to_edge(row) if row else None

    def edge_detail(self, edge_id: int) -> Optional[EdgeDetail]:
        edge = self.get_edge(edge_id)
        if edge is None:
            return None
        return EdgeDetail(edge=edge, source=self.get_song(edge.source_id), target=self.get_song(edge.target_id))

    def snapshot(self, namespace: str) -> Tuple[List[Song], List[NextEdge]]:
        with self._read() as cursor:
            cursor.execute("SELECT * FROM songs WHERE namespace = ? ORDER BY song_id", (namespace,))
            songs = [_row_to_song(row) for row in cursor.fetchall()]
            cursor.execute("""
                SELECT e.* FROM next_edges e
                JOIN songs s ON s.song_id = e.source_id
                WHERE s.namespace = ?
                ORDER BY e.edge_id
            """, (namespace,))
            edges = [_row_to_edge(row) for row in cursor.fetchall()]
        return songs, edges

    # ------------------------------------------------------------------
    # Bulk properties
    # ------------------------------------------------------------------

    def _set_property(self, table: str, key: str, value: Any) -> int:
        path = f"$.{validate_identifier(key, 'property key')}"
        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE {table} SET properties = json_set(COALESCE(properties, '{{}}'), ?, json(?))",
                (path, json.dumps(value)),
            )
            return cursor.rowcount

    def _remove_property(self, table: str, key: str) -> int:
        path = f"$.{validate_identifier(key, 'property key')}"
        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE {table} SET properties = json_remove(properties, ?) "
                f"WHERE json_type(properties, ?) IS NOT NULL",
                (path, path),
            )
            return cursor.rowcount

    def set_node_property(self, key: str, value: Any) -> int:
        return self._set_property("songs", key, value)

    def remove_node_property(self, key: str) -> int:
        return self._remove_property("songs", key)

    def set_edge_property(self, key: str, value: Any) -> int:
        return self._set_property("next_edges", key, value)

    def remove_edge_property(self, key: str) -> int:
        return self._remove_property("next_edges", key)
