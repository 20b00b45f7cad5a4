"""
Namespace module for SongMap.

Per-user, per-graph isolation tags and graph lifecycle.
"""

from .manager import COVER_COLORS, GraphNamespaceManager

__all__ = ["COVER_COLORS", "GraphNamespaceManager"]
