# utilreg/ledger.py
"""
The ledger ties the allocator, registry, notification log and emitter to
one data directory.

Example:
    with Ledger("/var/lib/utilreg") as ledger:
        app_id = ledger.register_app("ipfs://info", caller=owner_id)
        ledger.register_collections(app_id, [(1, "0xc1")], caller=owner_id)
        ledger.set_app_update_module(app_id, "ipfs://module", caller=owner_id)
        ledger.update_app_status(app_id, "ipfs://update-1", caller=owner_id)
"""

import fcntl
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .allocator import IdentityAllocator
from .emitter import EventEmitter
from .errors import LedgerLocked
from .events import EventLog, Notification, StatusUpdate
from .registry import Application, ApplicationRegistry, CollectionRef

logger = logging.getLogger(__name__)


class Ledger:
    """
    Entry point for registry operations.

    A ledger holds an exclusive lock on its directory until `close()`, so
    two processes can never issue ids or sequence numbers from the same
    store. Use it as a context manager for short-lived access.

    Structure:
        base_dir/
            ledger.lock
            allocator/counter.json
            registry/apps/<app_id>.json
            events/events.jsonl
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock_file = self._acquire()

        try:
            self.allocator = IdentityAllocator(self.base_dir / "allocator")
            self.events = EventLog(self.base_dir / "events")
            self.registry = ApplicationRegistry(
                self.base_dir / "registry", self.allocator, self.events,
            )
        except Exception:
            self.close()
            raise
        self.emitter = EventEmitter(self.registry, self.events)
        logger.debug(
            f"Ledger opened at {self.base_dir}: {len(self.registry)} apps, "
            f"{len(self.events)} events"
        )

    def _acquire(self):
        lock_file = open(self.base_dir / "ledger.lock", "a")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise LedgerLocked(f"Ledger at {self.base_dir} is in use by another process")
        return lock_file

    def close(self):
        """Release the directory lock."""
        if self._lock_file is not None:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
            self._lock_file.close()
            self._lock_file = None

    @property
    def closed(self) -> bool:
        return self._lock_file is None

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, *exc):
        self.close()

    def register_app(self, info_locator: str, caller: str) -> int:
        return self.registry.register_app(info_locator, caller)

    def register_collections(
        self,
        app_id: int,
        entries: Iterable[Tuple[int, bytes | str]],
        caller: str,
    ) -> List[CollectionRef]:
        return self.registry.register_collections(app_id, entries, caller)

    def register_collections_parallel(
        self,
        app_id: int,
        chain_ids: Sequence[int],
        addresses: Sequence[bytes | str],
        caller: str,
    ) -> List[CollectionRef]:
        return self.registry.register_collections_parallel(app_id, chain_ids, addresses, caller)

    def set_app_update_module(self, app_id: int, module_locator: str, caller: str) -> None:
        self.registry.set_app_update_module(app_id, module_locator, caller)

    def transfer_app_owner(self, app_id: int, new_owner: str, caller: str) -> None:
        self.registry.transfer_app_owner(app_id, new_owner, caller)

    def change_app_info(self, app_id: int, new_info_locator: str, caller: str) -> None:
        self.registry.change_app_info(app_id, new_info_locator, caller)

    def update_app_status(self, app_id: int, update_url: str, caller: str) -> StatusUpdate:
        return self.emitter.update_app_status(app_id, update_url, caller)

    def get_app(self, app_id: int) -> Optional[Application]:
        return self.registry.get(app_id)

    def list_apps(self) -> List[Application]:
        return self.registry.list()

    def status_history(self, app_id: int) -> List[StatusUpdate]:
        return self.emitter.history(app_id)

    def notifications(self, since: int = 0, app_id: int = None) -> List[Notification]:
        return self.events.list(since=since, app_id=app_id)
