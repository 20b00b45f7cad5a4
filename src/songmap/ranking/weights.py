"""Scoring weights for next-song recommendations."""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class RankWeights:
    # interaction weights
    w_user_select: float = 5.0
    w_jump: float = 1.0
    w_random: float = 0.8

    # direction factors
    dir_forward: float = 1.0
    dir_backward: float = 0.5
    dir_repeat: float = 0.1

    # freshness recovers to ~0.5 after about an hour at 0.01
    cooling_lambda: float = 0.01

    node_weight: float = 0.2
    min_base_score: float = 0.1
