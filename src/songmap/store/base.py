"""
Graph store port.

Uses ``typing.Protocol`` for structural subtyping; the SQLite and Neo4j
adapters both implement it. Namespace tags and property keys reaching a store
have already been validated as safe identifiers, but adapters that splice them
into query text validate again.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, List, Optional, Protocol, Tuple

from songmap.models import (
    EdgeDetail,
    GraphInfo,
    Increments,
    Neighbor,
    NextEdge,
    NodeDetail,
    Song,
)


class GraphStore(Protocol):
    """Durable listening-graph storage."""

    # --- graph metadata ---

    def create_graph(self, owner_id: str, name: str, tag: str, kind: str, cover_color: str) -> GraphInfo:
        """Persist metadata and ownership. Raises ConflictError on tag collision."""
        ...

    def get_graph(self, graph_id: int) -> Optional[GraphInfo]:
        ...

    def list_graphs(self, owner_id: str) -> List[GraphInfo]:
        ...

    def delete_graph(self, graph_id: int) -> None:
        """Remove metadata and ownership only; nodes and edges stay."""
        ...

    def prepare_namespace(self, tag: str) -> None:
        """Create per-namespace indexes or constraints, if the backend needs any."""
        ...

    def clone_namespace(self, source_tag: str, target_tag: str, edge_seed: int) -> Tuple[int, int]:
        """Copy nodes and edges from one tag to another. Returns (nodes, edges) copied."""
        ...

    # --- songs and NEXT edges ---

    def upsert_song(self, namespace: str, name: str, artist: str,
                    increments: Increments, listened_at: datetime) -> Song:
        """Atomic find-or-create of (name, artist) with counter accumulation."""
        ...

    def upsert_edge(self, namespace: str, from_id: int, to_id: int,
                    jump_delta: int, user_select_delta: int, random_delta: int) -> Optional[NextEdge]:
        """Atomic merge of the NEXT edge; None if either song is not in the namespace."""
        ...

    def delete_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> int:
        ...

    def delete_node(self, namespace: str, name: str) -> int:
        ...

    def get_song(self, song_id: int) -> Optional[Song]:
        ...

    def find_song(self, namespace: str, name: str, artist: str) -> Optional[Song]:
        ...

    def neighbors(self, song_id: int) -> List[Neighbor]:
        ...

    def node_detail(self, song_id: int) -> Optional[NodeDetail]:
        ...

    def get_edge(self, edge_id: int) -> Optional[NextEdge]:
        ...

    def find_edge(self, from_name: str, to_name: str, namespace: Optional[str] = None) -> Optional[NextEdge]:
        ...

    def edge_detail(self, edge_id: int) -> Optional[EdgeDetail]:
        ...

    def snapshot(self, namespace: str) -> Tuple[List[Song], List[NextEdge]]:
        ...

    # --- bulk properties (whole label class) ---

    def set_node_property(self, key: str, value: Any) -> int:
        ...

    def remove_node_property(self, key: str) -> int:
        ...

    def set_edge_property(self, key: str, value: Any) -> int:
        ...

    def remove_edge_property(self, key: str) -> int:
        ...

    def call_timeout(self, seconds: Optional[float]):
        """Context manager overriding the timeout of calls made by this thread."""
        ...

    def close(self) -> None:
        ...
