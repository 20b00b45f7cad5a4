"""
Tests for the recency cache over the SQLite and Redis list backends.
"""

import shutil
import tempfile
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import redis

from songmap.cache.list_cache import RedisListCache, SQLiteListCache
from songmap.cache.recency import RecencyCache, decode_entry, encode_entry
from songmap.errors import InvalidArgumentError, StoreTimeoutError, StoreUnavailableError
from songmap.models import RecencyEntry
from songmap.store.retry import build_retrying


class TestEntryFormat:
    """Tests for the "<id>::<name>" entry encoding."""

    def test_encode(self):
        assert encode_entry(12, "Song A") == "12::Song A"

    def test_decode_keeps_separator_in_name(self):
        assert decode_entry("5::A::B") == RecencyEntry(5, "A::B")

    @pytest.mark.parametrize("raw", ["garbage", "x::Song", "::Song"])
    def test_decode_malformed(self, raw):
        assert decode_entry(raw) is None


class TestSQLiteRecencyCache:
    """Tests for RecencyCache on SQLiteListCache."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "history.db"
        self.backend = SQLiteListCache(self.db_path)
        self.cache = RecencyCache(self.backend, default_limit=3)

    def teardown_method(self):
        self.backend.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _ids(self, graph_id=1):
        return [e.song_id for e in self.cache.full_history(graph_id)]

    def test_empty_history(self):
        assert self.cache.previous_song_id(1) is None
        assert self.cache.full_history(1) == []
        assert self.cache.song_before(1, 5) is None

    def test_most_recent_first(self):
        self.cache.record_play(1, 10, "A")
        self.cache.record_play(1, 11, "B")
        assert self.cache.previous_song_id(1) == 11
        assert self.cache.full_history(1) == [RecencyEntry(11, "B"), RecencyEntry(10, "A")]

    def test_limit_is_never_exceeded(self):
        for song_id in range(1, 6):
            length = self.cache.record_play(1, song_id, f"S{song_id}")
            assert length <= 3
        assert self._ids() == [5, 4, 3]

    def test_explicit_limit(self):
        for song_id in range(1, 6):
            self.cache.record_play(1, song_id, f"S{song_id}", limit=2)
        assert self._ids() == [5, 4]
        with pytest.raises(InvalidArgumentError):
            self.cache.record_play(1, 6, "S6", limit=0)

    def test_duplicate_moves_to_front(self):
        """Replaying a song moves it to the head without growing the list."""
        self.cache.record_play(1, 1, "A")
        self.cache.record_play(1, 2, "B")
        assert self.cache.record_play(1, 1, "A") == 2
        assert self._ids() == [1, 2]

    def test_dedup_matches_whole_id(self):
        """Song 1 must not evict song 12."""
        self.cache.record_play(1, 12, "L")
        self.cache.record_play(1, 1, "A")
        assert self._ids() == [1, 12]

    def test_graphs_are_independent(self):
        self.cache.record_play(1, 10, "A")
        self.cache.record_play(2, 20, "B")
        assert self._ids(1) == [10]
        assert self._ids(2) == [20]

    def test_clear_drops_one_graph(self):
        self.cache.record_play(1, 10, "A")
        self.cache.record_play(2, 20, "B")
        self.cache.clear(1)
        assert self._ids(1) == []
        assert self._ids(2) == [20]

    def test_malformed_entries_skipped(self):
        self.cache.record_play(1, 10, "A")
        self.backend.push_front_unique("history:graph:1", "garbage", "garbage", 10)
        assert self.cache.previous_song_id(1) is None
        assert self._ids() == [10]

    def test_song_before(self):
        self.cache.record_play(1, 10, "A")
        self.cache.record_play(1, 11, "B")
        # 11 was just recorded: the song before it is index 1
        assert self.cache.song_before(1, 11) == 10
        # 12 not recorded yet: the head is what came before it
        assert self.cache.song_before(1, 12) == 11
        self.cache.record_play(1, 13, "C")
        self.cache.record_play(1, 13, "C")
        assert self.cache.song_before(1, 13) == 11

    def test_history_survives_reopen(self):
        self.cache.record_play(1, 10, "A")
        self.backend.close()
        self.backend = SQLiteListCache(self.db_path)
        assert RecencyCache(self.backend).previous_song_id(1) == 10

    def test_concurrent_pushes_keep_cap_and_uniqueness(self):
        other = SQLiteListCache(self.db_path)
        caches = [self.cache, RecencyCache(other, default_limit=3)]

        def worker(i):
            for song_id in range(10):
                caches[i % 2].record_play(1, song_id, f"S{song_id}")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        other.close()

        ids = self._ids()
        assert len(ids) <= 3
        assert len(ids) == len(set(ids))

    def test_invalid_default_limit(self):
        with pytest.raises(InvalidArgumentError):
            RecencyCache(self.backend, default_limit=0)


class TestRedisListCache:
    """Tests for RedisListCache with a mocked client."""

    def setup_method(self):
        self.client = MagicMock()
        self.script = MagicMock(return_value=2)
        self.client.register_script.return_value = self.script
        self.backend = RedisListCache(client=self.client)

    def test_push_runs_single_script(self):
        cache = RecencyCache(self.backend, default_limit=100)
        assert cache.record_play(7, 42, "Song") == 2
        self.script.assert_called_once_with(keys=["history:graph:7"], args=["42::Song", "42::", 100])

    def test_previous_song_id_peeks_head(self):
        self.client.lindex.return_value = "5::Song"
        assert RecencyCache(self.backend).previous_song_id(3) == 5
        self.client.lindex.assert_called_once_with("history:graph:3", 0)

    def test_full_history(self):
        self.client.lrange.return_value = ["2::B", "bad", "1::A"]
        history = RecencyCache(self.backend).full_history(3)
        assert history == [RecencyEntry(2, "B"), RecencyEntry(1, "A")]

    def test_clear_deletes_key(self):
        RecencyCache(self.backend).clear(3)
        self.client.delete.assert_called_once_with("history:graph:3")

    def test_errors_translated(self):
        self.client.lindex.side_effect = redis.TimeoutError("slow")
        with pytest.raises(StoreTimeoutError):
            self.backend.head("k")
        self.client.lrange.side_effect = redis.ConnectionError("down")
        with pytest.raises(StoreUnavailableError):
            self.backend.range("k")

    def test_retry_on_outage(self):
        self.client.lindex.side_effect = [redis.ConnectionError("down"), "7::X"]
        cache = RecencyCache(self.backend, retrying=build_retrying(attempts=3, wait_min=0, wait_max=0))
        assert cache.previous_song_id(1) == 7
        assert self.client.lindex.call_count == 2

    def test_close(self):
        self.backend.close()
        self.client.close.assert_called_once()
