# tests/test_allocator.py
"""Tests for application id allocation."""

import tempfile
import threading
from pathlib import Path

import pytest

from utilreg.allocator import IdentityAllocator


@pytest.fixture
def store_dir():
    """Create temporary allocator directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestIdentityAllocator:
    """Test IdentityAllocator class."""

    def test_starts_at_one(self, store_dir):
        allocator = IdentityAllocator(store_dir)
        assert allocator.last() == 0
        assert allocator.next() == 1
        assert allocator.next() == 2
        assert allocator.last() == 2

    def test_counter_survives_restart(self, store_dir):
        first = IdentityAllocator(store_dir)
        first.next()
        first.next()

        second = IdentityAllocator(store_dir)
        assert second.last() == 2
        assert second.next() == 3

    def test_counter_file_written_before_return(self, store_dir):
        allocator = IdentityAllocator(store_dir)
        allocator.next()
        assert (store_dir / "counter.json").exists()
        assert not (store_dir / "counter.tmp").exists()

    def test_concurrent_ids_are_dense_and_unique(self, store_dir):
        allocator = IdentityAllocator(store_dir)
        results = []
        results_lock = threading.Lock()

        def worker():
            for _ in range(25):
                value = allocator.next()
                with results_lock:
                    results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(1, 201))
