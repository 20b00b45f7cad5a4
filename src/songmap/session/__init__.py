"""
Session module for SongMap.

Listen events and chain building.
"""

from .controller import ListeningSessionController

__all__ = ["ListeningSessionController"]
