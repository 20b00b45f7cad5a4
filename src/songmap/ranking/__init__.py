"""
Ranking module for SongMap.

Scores candidate next songs from the listening graph.
"""

from .recommender import RecommendationEngine
from .weights import RankWeights

__all__ = ["RankWeights", "RecommendationEngine"]
