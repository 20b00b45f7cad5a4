"""
Store module for SongMap.

Graph store backends (SQLite adjacency lists, Neo4j labels) and the retry
policy applied to idempotent store calls.
"""

from .base import GraphStore
from .neo4j_graph import Neo4jGraphStore
from .retry import build_retrying
from .sqlite_graph import SQLiteGraphStore

__all__ = ["GraphStore", "Neo4jGraphStore", "SQLiteGraphStore", "build_retrying"]
