"""
Per-call store timeouts.

Stores are built with a default timeout. A caller can tighten or relax it for
the calls it makes inside a ``scope`` block; the override is per thread, so
concurrent requests keep their own deadlines.
"""

from __future__ import annotations
import contextlib
import threading
from typing import Optional

from songmap.errors import InvalidArgumentError


class CallTimeout:
    def __init__(self, default: float):
        if default <= 0:
            raise InvalidArgumentError(f"Store timeout must be positive, got {default}")
        self.default = default
        self._local = threading.local()

    @property
    def current(self) -> float:
        """Timeout in seconds for a call made now on this thread."""
        return getattr(self._local, "seconds", None) or self.default

    @contextlib.contextmanager
    def scope(self, seconds: Optional[float]):
        """Use ``seconds`` for store calls made by this thread inside the block; None keeps the current value."""
        if seconds is None:
            yield self.current
            return
        if seconds <= 0:
            raise InvalidArgumentError(f"Store timeout must be positive, got {seconds}")
        previous = getattr(self._local, "seconds", None)
        self._local.seconds = seconds
        try:
            yield seconds
        finally:
            self._local.seconds = previous
