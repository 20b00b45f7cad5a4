"""
Data model for listening graphs.

Songs are nodes identified by ``(namespace, name, artist)``; NEXT edges carry
"played immediately after" counters between two songs of the same namespace.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

UNKNOWN_ARTIST = "Unknown"

DIRECTION_OUT = "OUT"
DIRECTION_IN = "IN"

GRAPH_KIND_EMPTY = "empty"
GRAPH_KIND_TEMPLATE = "template"

# Attributes owned by the core; bulk property mutation may not touch them.
SONG_BUILTIN_KEYS = frozenset({
    "id", "namespace", "name", "artist", "listenedAt",
    "listenCount", "fullPlayCount", "skipCount",
    "userSelectCount", "randomSelectCount",
})
EDGE_BUILTIN_KEYS = frozenset({
    "id", "jumpCount", "userSelectCount", "randomSelectCount",
})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Song:
    id: int
    namespace: str
    name: str
    artist: str = UNKNOWN_ARTIST
    listened_at: Optional[datetime] = None
    listen_count: int = 0
    full_play_count: int = 0
    skip_count: int = 0
    user_select_count: int = 0
    random_select_count: int = 0
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.properties)
        data.update({
            "id": self.id,
            "namespace": self.namespace,
            "name": self.name,
            "artist": self.artist,
            "listenedAt": _iso(self.listened_at),
            "listenCount": self.listen_count,
            "fullPlayCount": self.full_play_count,
            "skipCount": self.skip_count,
            "userSelectCount": self.user_select_count,
            "randomSelectCount": self.random_select_count,
        })
        return data


@dataclass
class NextEdge:
    id: int
    source_id: int
    target_id: int
    jump_count: int = 0
    user_select_count: int = 0
    random_select_count: int = 0
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.properties)
        data.update({
            "id": self.id,
            "source": self.source_id,
            "target": self.target_id,
            "jumpCount": self.jump_count,
            "userSelectCount": self.user_select_count,
            "randomSelectCount": self.random_select_count,
        })
        return data


@dataclass(frozen=True)
class Increments:
    """Counter deltas applied to a song on one listen."""

    listen: int = 0
    full_play: int = 0
    skip: int = 0
    user_select: int = 0
    random_select: int = 0

    @classmethod
    def for_listen(cls, is_random: bool, is_full_play: bool, is_skip: bool) -> "Increments":
        return cls(
            listen=1,
            full_play=1 if is_full_play else 0,
            skip=1 if is_skip else 0,
            user_select=0 if is_random else 1,
            random_select=1 if is_random else 0,
        )

    def is_valid(self) -> bool:
        return min(self.listen, self.full_play, self.skip,
                   self.user_select, self.random_select) >= 0


@dataclass
class Neighbor:
    direction: str
    edge: NextEdge
    song: Song


@dataclass
class NodeDetail:
    song: Song
    outgoing: List[Tuple[NextEdge, Song]] = field(default_factory=list)
    incoming: List[Tuple[NextEdge, Song]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "self": self.song.to_dict(),
            "outgoing": [{"edge": e.to_dict(), "target": s.to_dict()} for e, s in self.outgoing],
            "incoming": [{"edge": e.to_dict(), "source": s.to_dict()} for e, s in self.incoming],
        }


@dataclass
class EdgeDetail:
    edge: NextEdge
    source: Song
    target: Song

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edge": self.edge.to_dict(),
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
        }


@dataclass(frozen=True)
class QueryResult:
    """Either a bare entity or a detail bundle, chosen by the caller's flag."""

    kind: str
    value: Union[Song, NextEdge, NodeDetail, EdgeDetail]

    BARE = "bare"
    DETAIL = "detail"

    @classmethod
    def bare(cls, value) -> "QueryResult":
        return cls(cls.BARE, value)

    @classmethod
    def detailed(cls, value) -> "QueryResult":
        return cls(cls.DETAIL, value)

    @property
    def is_detail(self) -> bool:
        return self.kind == self.DETAIL

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "value": self.value.to_dict()}


@dataclass
class GraphInfo:
    id: int
    owner_id: str
    name: str
    tag: str
    kind: str
    cover_color: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "nodeLabel": self.tag,
            "type": self.kind,
            "coverColor": self.cover_color,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class RecencyEntry:
    song_id: int
    song_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.song_id, "name": self.song_name}


@dataclass
class ScoredSong:
    song: Song
    score: float
    reason: str
    direction: str
    edge_score: float
    node_score: float
    base_score: float
    direction_factor: float
    freshness_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "song": self.song.to_dict(),
            "score": self.score,
            "reason": self.reason,
            "direction": self.direction,
        }
