"""
SongMap: listening graphs and next-song recommendations.

Songs are nodes, "played next" transitions are weighted NEXT edges, and every
user graph lives in its own namespace of a shared store.
"""

__version__ = "0.1.0"
