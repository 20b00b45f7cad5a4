"""
Shared SQLite plumbing for the local graph store and list cache.

One connection per instance, guarded by a lock; writes run inside
``BEGIN IMMEDIATE`` so concurrent writers are serialised by SQLite itself.
"""

from __future__ import annotations
import contextlib
import sqlite3
import threading
from pathlib import Path

from loguru import logger

from songmap.errors import (
    ConflictError,
    SongMapError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from songmap.store.timeouts import CallTimeout


def translate_sqlite_error(exc: sqlite3.Error) -> SongMapError:
    """Map a sqlite3 exception onto the SongMap error taxonomy."""
    if isinstance(exc, sqlite3.IntegrityError):
        return ConflictError(f"Constraint violated: {exc}")
    if isinstance(exc, sqlite3.OperationalError):
        text = str(exc).lower()
        if "locked" in text or "busy" in text:
            return StoreTimeoutError(f"SQLite store timed out: {exc}")
    return StoreUnavailableError(f"SQLite store failed: {exc}")


class SQLiteDatabase:
    """Connection owner with transaction helpers. Subclasses create their schema."""

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        """
        Open (and create if needed) the database file.

        Args:
            db_path: Path to the SQLite file, or ``":memory:"``
            timeout: Default seconds to wait on a locked database before failing
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._timeouts = CallTimeout(timeout)
        self._busy_ms = int(timeout * 1000)
        try:
            self.conn = sqlite3.connect(
                self.db_path,
                timeout=timeout,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise translate_sqlite_error(e)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        with self._transaction() as cursor:
            self._create_schema(cursor)

    def _create_schema(self, cursor: sqlite3.Cursor):
        raise NotImplementedError

    def call_timeout(self, seconds):
        """Context manager overriding the lock wait for calls made by this thread."""
        return self._timeouts.scope(seconds)

    def _apply_timeout(self):
        busy_ms = int(self._timeouts.current * 1000)
        if busy_ms != self._busy_ms:
            self.conn.execute(f"PRAGMA busy_timeout = {busy_ms}")
            self._busy_ms = busy_ms

    @contextlib.contextmanager
    def _transaction(self):
        """Write transaction; rolls back and translates errors."""
        with self._lock:
            cursor = self.conn.cursor()
            try:
                self._apply_timeout()
                cursor.execute("BEGIN IMMEDIATE")
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                logger.error(f"SQLite transaction failed on {self.db_path}: {e}")
                raise translate_sqlite_error(e)
            except Exception:
                self._rollback()
                raise
            finally:
                cursor.close()

    @contextlib.contextmanager
    def _read(self):
        with self._lock:
            cursor = self.conn.cursor()
            try:
                self._apply_timeout()
                yield cursor
            except sqlite3.Error as e:
                logger.error(f"SQLite read failed on {self.db_path}: {e}")
                raise translate_sqlite_error(e)
            finally:
                cursor.close()

    def _rollback(self):
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
