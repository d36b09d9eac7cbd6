# utilreg/registry.py
"""
Application registry.

The registry stores Application records and the collections each one has
claimed, enabling:
- Sequentially numbered applications with a single controlling owner
- Idempotent collection claims (an address is registered once per app)
- Owner-gated updates to the info and update-module locators
- Explicit ownership transfer

Every mutating operation passes through `owned()`, which takes the
application's lock and runs the ownership guard before any change is made.
"""

import json
import logging
import os
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .allocator import IdentityAllocator
from .errors import ArgumentMismatch, InvalidOwner, NotFound, Unauthorized
from .events import (
    APP_REGISTERED,
    COLLECTION_REGISTERED,
    INFO_CHANGED,
    OWNER_TRANSFERRED,
    UPDATE_MODULE_SET,
    EventLog,
    Notification,
)

logger = logging.getLogger(__name__)


_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")


def normalize_address(address: bytes | str) -> str:
    """
    Canonical text form of a collection address.

    Bytes become 0x-prefixed lowercase hex and 0x-prefixed hex strings are
    lowercased, so "0xC1" and "0xc1" name the same collection. Any other
    string is opaque and kept as given, apart from surrounding whitespace.
    """
    if isinstance(address, (bytes, bytearray)):
        text = "0x" + bytes(address).hex()
    elif isinstance(address, str):
        text = address.strip()
        if _HEX_RE.match(text):
            text = text.lower()
    else:
        raise TypeError(f"Collection address must be bytes or str, not {type(address).__name__}")
    if text.lower() in ("", "0x"):
        raise ValueError("Collection address must not be empty")
    return text


@dataclass(frozen=True)
class CollectionRef:
    """
    A collection claimed by an application.

    Attributes:
        app_id: Owning application
        chain_id: Network the address was first registered under
        address: Normalized collection address
        registered_at: Timestamp of the claim
    """
    app_id: int
    chain_id: int
    address: str
    registered_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "chain_id": self.chain_id,
            "address": self.address,
            "registered_at": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionRef":
        return cls(
            app_id=data["app_id"],
            chain_id=data["chain_id"],
            address=data["address"],
            registered_at=data.get("registered_at", time.time()),
        )


@dataclass
class Application:
    """
    A registered application.

    Instances held by the registry are replaced, never edited in place, so
    a reference returned by `get()` is a consistent snapshot.

    Attributes:
        app_id: Sequential identifier, starting at 1
        owner: Identity allowed to mutate this application
        info_locator: Where the application's description lives
        update_module_locator: Where its update module lives ("" if unset)
        collections: Claimed collections keyed by normalized address,
            in registration order
        created_at: Timestamp of registration
    """
    app_id: int
    owner: str
    info_locator: str
    update_module_locator: str = ""
    collections: Dict[str, CollectionRef] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    @property
    def has_update_module(self) -> bool:
        return bool(self.update_module_locator)

    def has_collection(self, address: bytes | str) -> bool:
        return normalize_address(address) in self.collections

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "owner": self.owner,
            "info_locator": self.info_locator,
            "update_module_locator": self.update_module_locator,
            "collections": [c.to_dict() for c in self.collections.values()],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        refs = [CollectionRef.from_dict(c) for c in data.get("collections", [])]
        return cls(
            app_id=data["app_id"],
            owner=data["owner"],
            info_locator=data.get("info_locator", ""),
            update_module_locator=data.get("update_module_locator", ""),
            collections={ref.address: ref for ref in refs},
            created_at=data.get("created_at", time.time()),
        )


class ApplicationRegistry:
    """
    Persistent store of applications.

    Each application is saved to its own file, so writes for unrelated
    applications never contend.

    Structure:
        registry_dir/
            apps/
                <app_id>.json
    """

    def __init__(
        self,
        registry_dir: Path | str,
        allocator: IdentityAllocator,
        events: EventLog,
    ):
        """
        Initialize the registry.

        Args:
            registry_dir: Directory to store application records
            allocator: Source of new application ids
            events: Log receiving the registry's notifications
        """
        self.registry_dir = Path(registry_dir)
        self._apps_dir().mkdir(parents=True, exist_ok=True)
        self.allocator = allocator
        self.events = events
        self._apps: Dict[int, Application] = {}
        self._app_locks: Dict[int, threading.Lock] = {}
        self._lock = threading.Lock()
        self._register_lock = threading.Lock()
        self._load()

    def _apps_dir(self) -> Path:
        return self.registry_dir / "apps"

    def _app_path(self, app_id: int) -> Path:
        return self._apps_dir() / f"{app_id}.json"

    def _load(self):
        """Load application records from disk."""
        for path in sorted(self._apps_dir().glob("*.json")):
            try:
                with open(path) as f:
                    app = Application.from_dict(json.load(f))
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Failed to load application record {path.name}: {e}")
                continue
            self._apps[app.app_id] = app
            self._app_locks[app.app_id] = threading.Lock()

        if self._apps and max(self._apps) > self.allocator.last():
            logger.warning(
                f"Registry holds app {max(self._apps)} but allocator is at "
                f"{self.allocator.last()}"
            )

    def _save(self, app: Application):
        """Write one application record via write-then-rename."""
        path = self._app_path(app.app_id)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(app.to_dict(), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def _commit(
        self,
        previous: Optional[Application],
        app: Application,
        events: List[Tuple[str, Dict[str, Any]]],
    ) -> List[Notification]:
        """
        Persist a new version of an application with its notifications, then publish it.

        If the notifications cannot be appended the previous record is put
        back, so a failed operation leaves neither a state change nor an event.
        """
        self._save(app)
        try:
            notifications = self.events.append_batch(events)
        except Exception:
            if previous is None:
                self._app_path(app.app_id).unlink(missing_ok=True)
            else:
                self._save(previous)
            raise
        with self._lock:
            self._apps[app.app_id] = app
            self._app_locks.setdefault(app.app_id, threading.Lock())
        return notifications

    def _lock_for(self, app_id: int) -> threading.Lock:
        with self._lock:
            lock = self._app_locks.get(app_id)
        if lock is None:
            raise NotFound(app_id)
        return lock

    # Authorization

    def require_owner(self, app_id: int, caller: str) -> Application:
        """
        Ownership guard shared by every mutating operation.

        Returns:
            The current Application record

        Raises:
            NotFound: app_id has no record
            Unauthorized: caller is not the current owner
        """
        app = self.get(app_id)
        if app is None:
            raise NotFound(app_id)
        if not caller or caller != app.owner:
            logger.warning(f"Rejected call on app {app_id} by {caller or '<anonymous>'}")
            raise Unauthorized(app_id, caller)
        return app

    @contextmanager
    def owned(self, app_id: int, caller: str) -> Iterator[Application]:
        """
        Hold an application's lock with the ownership guard passed.

        Everything done inside the block is serialized with every other
        mutation of the same application.
        """
        with self._lock_for(app_id):
            yield self.require_owner(app_id, caller)

    # Mutations

    def register_app(self, info_locator: str, caller: str) -> int:
        """
        Register a new application owned by the caller.

        Args:
            info_locator: Locator of the application's description
            caller: Authenticated identity of the registering caller

        Returns:
            The new app_id
        """
        if not caller:
            raise InvalidOwner("An application owner must not be empty")

        # Serialized so ids are published and announced in id order
        with self._register_lock:
            app_id = self.allocator.next()
            app = Application(app_id=app_id, owner=caller, info_locator=info_locator)
            try:
                self._commit(None, app, [
                    (APP_REGISTERED, dict(app_id=app_id, owner=caller, info_locator=info_locator)),
                ])
            except Exception:
                self.allocator.release(app_id)
                raise

        logger.info(f"Registered app {app_id} for {caller}")
        return app_id

    def register_collections(
        self,
        app_id: int,
        entries: Iterable[Tuple[int, bytes | str]],
        caller: str,
    ) -> List[CollectionRef]:
        """
        Claim collections for an application.

        Entries are processed in order. An address the application already
        holds is skipped without error, even when it arrives with a different
        chain id; the new chain id is dropped.

        Args:
            app_id: Target application
            entries: (chain_id, address) pairs
            caller: Authenticated caller identity

        Returns:
            The collections that were newly registered
        """
        with self.owned(app_id, caller) as app:
            pairs = [(int(chain_id), normalize_address(address)) for chain_id, address in entries]

            collections = dict(app.collections)
            added: List[CollectionRef] = []
            for chain_id, address in pairs:
                if address in collections:
                    logger.debug(f"App {app_id} already holds {address}, skipping")
                    continue
                ref = CollectionRef(app_id=app_id, chain_id=chain_id, address=address)
                collections[address] = ref
                added.append(ref)

            if not added:
                return []

            self._commit(app, replace(app, collections=collections), [
                (COLLECTION_REGISTERED, dict(
                    app_id=app_id, chain_id=ref.chain_id, collection_address=ref.address,
                ))
                for ref in added
            ])

        logger.info(f"App {app_id} registered {len(added)} collection(s)")
        return added

    def register_collections_parallel(
        self,
        app_id: int,
        chain_ids: Sequence[int],
        addresses: Sequence[bytes | str],
        caller: str,
    ) -> List[CollectionRef]:
        """Parallel-array form of register_collections."""
        self.require_owner(app_id, caller)
        if len(chain_ids) != len(addresses):
            raise ArgumentMismatch(
                f"Got {len(chain_ids)} chain ids for {len(addresses)} addresses"
            )
        return self.register_collections(app_id, zip(chain_ids, addresses), caller)

    def set_app_update_module(self, app_id: int, module_locator: str, caller: str) -> None:
        """Set (or clear, with "") the application's update-module locator."""
        with self.owned(app_id, caller) as app:
            self._commit(app, replace(app, update_module_locator=module_locator), [
                (UPDATE_MODULE_SET, dict(app_id=app_id, update_module_locator=module_locator)),
            ])
        logger.info(f"App {app_id} update module set to {module_locator!r}")

    def transfer_app_owner(self, app_id: int, new_owner: str, caller: str) -> None:
        """Hand control of an application to another identity."""
        with self.owned(app_id, caller) as app:
            if not new_owner:
                raise InvalidOwner("Cannot transfer an application to an empty owner")
            self._commit(app, replace(app, owner=new_owner), [
                (OWNER_TRANSFERRED, dict(app_id=app_id, new_owner=new_owner)),
            ])
        logger.info(f"App {app_id} transferred from {caller} to {new_owner}")

    def change_app_info(self, app_id: int, new_info_locator: str, caller: str) -> None:
        """Replace the application's info locator."""
        with self.owned(app_id, caller) as app:
            self._commit(app, replace(app, info_locator=new_info_locator), [
                (INFO_CHANGED, dict(app_id=app_id, info_locator=new_info_locator)),
            ])
        logger.info(f"App {app_id} info changed to {new_info_locator!r}")

    # Queries

    def get(self, app_id: int) -> Optional[Application]:
        """Get an application by id."""
        with self._lock:
            return self._apps.get(app_id)

    def list(self) -> List[Application]:
        """List all applications in id order."""
        with self._lock:
            return [self._apps[app_id] for app_id in sorted(self._apps)]

    def collections(self, app_id: int) -> List[CollectionRef]:
        """An application's collections in registration order."""
        app = self.get(app_id)
        if app is None:
            raise NotFound(app_id)
        return list(app.collections.values())

    def apps_for_collection(self, address: bytes | str) -> List[Application]:
        """Find applications that have claimed an address, on any chain."""
        key = normalize_address(address)
        return [a for a in self.list() if key in a.collections]

    def apps_owned_by(self, owner: str) -> List[Application]:
        """Find applications controlled by an identity."""
        return [a for a in self.list() if a.owner == owner]

    def __contains__(self, app_id: int) -> bool:
        with self._lock:
            return app_id in self._apps

    def __len__(self) -> int:
        with self._lock:
            return len(self._apps)

    def __iter__(self):
        return iter(self.list())
