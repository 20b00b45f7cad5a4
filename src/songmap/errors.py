"""
Error taxonomy for SongMap.

Every failure surfaced by the core carries a ``kind`` so callers can map it
to a response without inspecting backend exceptions.
"""

from __future__ import annotations
from typing import Any


class SongMapError(Exception):
    """Base exception for all SongMap errors."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{type(self).__name__}: {self.message}"


class NotFoundError(SongMapError):
    """Graph, song or edge does not exist."""

    kind = "not_found"


class ForbiddenError(SongMapError):
    """Graph exists but is owned by another user."""

    kind = "forbidden"


class InvalidArgumentError(SongMapError):
    """Empty required text, unsafe identifier or untypeable value."""

    kind = "invalid_argument"


class ConflictError(SongMapError):
    """Concurrent structural mutation, e.g. a namespace tag collision."""

    kind = "conflict"


class PartialCloneError(ConflictError):
    """
    Template cloning failed after the graph metadata was persisted.

    The graph is left in place; callers must repair or delete it.
    """

    kind = "partial_clone"

    def __init__(self, message: str, graph: Any):
        super().__init__(message)
        self.graph = graph


class StoreUnavailableError(SongMapError):
    """Backing store failed. The only retryable kind."""

    kind = "store_unavailable"


class StoreTimeoutError(StoreUnavailableError):
    """Backing store did not respond in time."""

    kind = "timeout"
