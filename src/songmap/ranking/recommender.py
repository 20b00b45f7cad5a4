"""
Next-song recommendation.

Scores every graph neighbor of the current song by:

    final = max(edge + node_weight * node, min_base) * direction * freshness

where ``edge`` and ``node`` weigh user selections, jumps and random picks,
``direction`` favours forward (OUT) neighbors over backtracking (IN) ones and
suppresses the song just played, and ``freshness`` recovers from 0 towards 1
as minutes pass since the neighbor was last heard.
"""

from __future__ import annotations
import math
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger

from songmap.graph.repository import SongRepository
from songmap.models import DIRECTION_OUT, Neighbor, ScoredSong
from songmap.ranking.weights import RankWeights


class RecommendationEngine:
    def __init__(self, repository: SongRepository, weights: Optional[RankWeights] = None):
        self.repository = repository
        self.weights = weights or RankWeights()

    def edge_score(self, neighbor: Neighbor) -> float:
        w = self.weights
        edge = neighbor.edge
        return (edge.user_select_count * w.w_user_select
                + edge.jump_count * w.w_jump
                - edge.random_select_count * w.w_random)

    def node_score(self, neighbor: Neighbor) -> float:
        w = self.weights
        song = neighbor.song
        return song.user_select_count * w.w_user_select - song.random_select_count * w.w_random

    def direction_factor(self, neighbor: Neighbor, previous_song_id: Optional[int]) -> float:
        if previous_song_id is not None and neighbor.song.id == previous_song_id:
            return self.weights.dir_repeat
        if neighbor.direction == DIRECTION_OUT:
            return self.weights.dir_forward
        return self.weights.dir_backward

    def freshness_factor(self, listened_at: Optional[datetime], now: datetime) -> float:
        """1 - exp(-lambda * whole minutes since last listen); 1.0 if never heard."""
        if listened_at is None:
            return 1.0
        if listened_at.tzinfo is None:
            listened_at = listened_at.replace(tzinfo=timezone.utc)
        minutes = max(int((now - listened_at).total_seconds() // 60), 0)
        return 1.0 - math.exp(-self.weights.cooling_lambda * minutes)

    def score(self, neighbor: Neighbor, previous_song_id: Optional[int], now: datetime) -> ScoredSong:
        edge_score = self.edge_score(neighbor)
        node_score = self.node_score(neighbor)
        base_score = max(edge_score + self.weights.node_weight * node_score, self.weights.min_base_score)
        direction = self.direction_factor(neighbor, previous_song_id)
        freshness = self.freshness_factor(neighbor.song.listened_at, now)

        reason = (f"Base:{base_score:.1f}(Edge:{edge_score:.1f}, Node:{node_score:.1f}) "
                  f"* Dir:{direction:.1f} * Fresh:{freshness:.2f}")
        return ScoredSong(
            song=neighbor.song,
            score=base_score * direction * freshness,
            reason=reason,
            direction=neighbor.direction,
            edge_score=edge_score,
            node_score=node_score,
            base_score=base_score,
            direction_factor=direction,
            freshness_factor=freshness,
        )

    def recommend_next(self, current_song_id: int, previous_song_id: Optional[int] = None,
                       now: Optional[datetime] = None, limit: Optional[int] = None) -> List[ScoredSong]:
        """
        Rank the neighbors of ``current_song_id``.

        A neighbor linked in both directions is scored once per edge. Ties are
        broken by neighbor id so results are reproducible.

        Args:
            current_song_id: Song being played
            previous_song_id: Song played before it, heavily suppressed
            now: Reference time for freshness, defaults to the current UTC time
            limit: Maximum number of results

        Returns:
            Scored neighbors, best first; empty when the song has no neighbors
        """
        now = now or datetime.now(timezone.utc)
        neighbors = self.repository.find_neighbors(current_song_id)
        if not neighbors:
            logger.debug(f"Song {current_song_id} has no neighbors, nothing to recommend")
            return []

        scored = [self.score(n, previous_song_id, now) for n in neighbors]
        scored.sort(key=lambda s: (-s.score, s.song.id))

        if limit is not None:
            scored = scored[:limit]
        logger.debug(f"Recommended {len(scored)} song(s) after {current_song_id}"
                     + (f", top {scored[0].song.id} ({scored[0].score:.3f})" if scored else ""))
        return scored
