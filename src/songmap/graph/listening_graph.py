"""
Listening graph representation using NetworkX.

This module provides an in-memory view of one namespace, built from the
graph store, for visualisation payloads, statistics and JSON export.
"""

from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import networkx as nx
from loguru import logger

from songmap.graph.repository import SongRepository

MAX_SYMBOL_SIZE = 60
HOT_LISTEN_COUNT = 10


class ListeningGraph:
    """
    NetworkX-based representation of a single listening graph.

    Nodes are songs (keyed by song id) carrying name, artist and counters;
    edges are NEXT relationships weighted by jump count.
    """

    def __init__(self, repository: SongRepository):
        self.repository = repository
        self.graph = nx.DiGraph()
        self.namespace: Optional[str] = None

    def build(self, namespace: str) -> Dict[str, Any]:
        """
        Load every song and NEXT edge of ``namespace``.

        Returns:
            Statistics about the built graph
        """
        songs, edges = self.repository.snapshot(namespace)
        self.graph = nx.DiGraph()
        self.namespace = namespace

        for song in songs:
            self.graph.add_node(
                song.id,
                name=song.name,
                artist=song.artist,
                listen_count=song.listen_count,
                full_play_count=song.full_play_count,
                skip_count=song.skip_count,
            )

        for edge in edges:
            if edge.source_id not in self.graph or edge.target_id not in self.graph:
                continue
            self.graph.add_edge(
                edge.source_id,
                edge.target_id,
                edge_id=edge.id,
                weight=edge.jump_count or 1,
                user_select_count=edge.user_select_count,
                random_select_count=edge.random_select_count,
            )

        stats = self.get_graph_stats()
        logger.info(f"Listening graph {namespace} loaded: {stats['nodes']} nodes, {stats['edges']} edges")
        return stats

    def to_graph_data(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Visualisation payload: nodes sized by listen count, links weighted by jumps.

        symbolSize is 20 + 2 per listen, capped at 60; category 1 marks songs
        heard more than 10 times.
        """
        nodes = []
        for node_id, data in self.graph.nodes(data=True):
            listen_count = data.get("listen_count", 0)
            nodes.append({
                "id": str(node_id),
                "name": data.get("name"),
                "artist": data.get("artist"),
                "symbolSize": min(20 + listen_count * 2, MAX_SYMBOL_SIZE),
                "category": 1 if listen_count > HOT_LISTEN_COUNT else 0,
            })

        links = [
            {"source": str(u), "target": str(v), "value": data.get("weight", 1)}
            for u, v, data in self.graph.edges(data=True)
        ]
        return {"nodes": nodes, "links": links}

    def get_graph_stats(self) -> Dict[str, Any]:
        """Get statistics about the graph."""
        if self.graph.number_of_nodes() == 0:
            return {
                "nodes": 0,
                "edges": 0,
                "density": 0.0,
                "avg_degree": 0.0,
                "chains": 0,
            }

        degrees = [d for n, d in self.graph.degree()]
        return {
            "nodes": self.graph.number_of_nodes(),
            "edges": self.graph.number_of_edges(),
            "density": nx.density(self.graph),
            "avg_degree": sum(degrees) / len(degrees),
            "max_degree": max(degrees),
            # disconnected sub-chains, e.g. started with a new listen
            "chains": nx.number_weakly_connected_components(self.graph),
            "total_jumps": sum(d.get("weight", 0) for _, _, d in self.graph.edges(data=True)),
        }

    def get_path(self, src_song_id: int, dst_song_id: int) -> Optional[List[int]]:
        """Shortest listening path between two songs, or None."""
        try:
            return nx.shortest_path(self.graph, src_song_id, dst_song_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

    def export_to_json(self, output_path: str | Path):
        """
        Export the graph to JSON format (node-link data).

        Args:
            output_path: Path to save the JSON file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = nx.node_link_data(self.graph)

        with open(output_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Graph exported to {output_path}")
