# utilreg/allocator.py
"""
Application identifier allocation.

Ids start at 1 and grow by one per call. The last issued value is written
to disk before it is handed out, so a restarted allocator never repeats or
regresses.
"""

import json
import logging
import os
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class IdentityAllocator:
    """
    Durable, thread-safe counter for application ids.

    Structure:
        store_dir/
            counter.json      # {"version": "1.0", "last_app_id": N}
    """

    def __init__(self, store_dir: Path | str):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._last = 0
        self._load()

    def _counter_path(self) -> Path:
        return self.store_dir / "counter.json"

    def _load(self):
        """Load the last issued id from disk."""
        path = self._counter_path()
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            self._last = int(data.get("last_app_id", 0))
            logger.debug(f"Allocator resumed at {self._last}")

    def _save(self, value: int):
        """Persist the counter via write-then-rename so a crash leaves the old value."""
        path = self._counter_path()
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump({"version": "1.0", "last_app_id": value}, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def next(self) -> int:
        """Issue the next application id."""
        with self._lock:
            value = self._last + 1
            self._save(value)
            self._last = value
            return value

    def release(self, value: int):
        """
        Take back the most recently issued id.

        Used when the record for a freshly issued id could not be stored,
        so the next caller receives the same value and no gap is left.
        """
        with self._lock:
            if value != self._last:
                raise ValueError(f"Can only release the last issued id {self._last}, not {value}")
            self._save(value - 1)
            self._last = value - 1
            logger.warning(f"Released app id {value}")

    def last(self) -> int:
        """The most recently issued id, or 0 if none was issued."""
        with self._lock:
            return self._last
