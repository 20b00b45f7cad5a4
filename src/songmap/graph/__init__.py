"""
Graph module for SongMap.

This module provides the song/edge repository and the NetworkX view of a
listening graph.
"""

from .listening_graph import ListeningGraph
from .repository import SongRepository

__all__ = ["ListeningGraph", "SongRepository"]
