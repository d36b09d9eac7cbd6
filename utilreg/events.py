# utilreg/events.py
"""
Append-only notification log.

Every externally observable change to the registry is recorded here as a
Notification. The log is a JSON-lines file: one record per line, appended
and never rewritten. Consumers (indexers, UIs) read it in sequence order.

Notification types and their field order:
- AppRegistered(app_id, owner, info_locator)
- CollectionRegistered(app_id, chain_id, collection_address)
- UpdateModuleSet(app_id, update_module_locator)
- OwnerTransferred(app_id, new_owner)
- InfoChanged(app_id, info_locator)
- AppStatusUpdated(app_id, update_url)
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

APP_REGISTERED = "AppRegistered"
COLLECTION_REGISTERED = "CollectionRegistered"
UPDATE_MODULE_SET = "UpdateModuleSet"
OWNER_TRANSFERRED = "OwnerTransferred"
INFO_CHANGED = "InfoChanged"
APP_STATUS_UPDATED = "AppStatusUpdated"

EVENT_FIELDS: Dict[str, tuple] = {
    APP_REGISTERED: ("app_id", "owner", "info_locator"),
    COLLECTION_REGISTERED: ("app_id", "chain_id", "collection_address"),
    UPDATE_MODULE_SET: ("app_id", "update_module_locator"),
    OWNER_TRANSFERRED: ("app_id", "new_owner"),
    INFO_CHANGED: ("app_id", "info_locator"),
    APP_STATUS_UPDATED: ("app_id", "update_url"),
}


@dataclass(frozen=True)
class Notification:
    """
    One entry of the notification log.

    Attributes:
        sequence: Global 1-based position in the log
        event_type: One of the EVENT_FIELDS keys
        data: Event fields, in the order given by EVENT_FIELDS
        position: For AppStatusUpdated, the 1-based index among that
            application's status updates; None otherwise
        created_at: Timestamp when appended
    """
    sequence: int
    event_type: str
    data: Dict[str, Any]
    position: Optional[int] = None
    created_at: float = field(default_factory=time.time)

    @property
    def app_id(self) -> int:
        return self.data["app_id"]

    @property
    def fields(self) -> tuple:
        """Field values in their declared order."""
        return tuple(self.data[name] for name in EVENT_FIELDS[self.event_type])

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "sequence": self.sequence,
            "event_type": self.event_type,
            "data": dict(self.data),
            "created_at": self.created_at,
        }
        if self.position is not None:
            data["position"] = self.position
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        event_type = data["event_type"]
        raw = data["data"]
        return cls(
            sequence=data["sequence"],
            event_type=event_type,
            data={name: raw[name] for name in EVENT_FIELDS[event_type]},
            position=data.get("position"),
            created_at=data.get("created_at", time.time()),
        )


@dataclass(frozen=True)
class StatusUpdate:
    """A status-update event as seen from one application's history."""
    app_id: int
    update_url: str
    position: int
    sequence: int
    created_at: float

    @classmethod
    def from_notification(cls, notification: Notification) -> "StatusUpdate":
        return cls(
            app_id=notification.app_id,
            update_url=notification.data["update_url"],
            position=notification.position,
            sequence=notification.sequence,
            created_at=notification.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "update_url": self.update_url,
            "position": self.position,
            "sequence": self.sequence,
            "created_at": self.created_at,
        }


class EventLog:
    """
    Persistent append-only log of notifications.

    Structure:
        store_dir/
            events.jsonl      # One Notification per line
    """

    def __init__(self, store_dir: Path | str):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._events: List[Notification] = []
        self._by_app: Dict[int, List[Notification]] = {}
        self._status_counts: Dict[int, int] = {}
        self._load()

    def _log_path(self) -> Path:
        return self.store_dir / "events.jsonl"

    def _load(self):
        """Load the log from disk."""
        log_path = self._log_path()
        if not log_path.exists():
            return
        with open(log_path, "rb") as f:
            raw = f.read()

        complete = raw.rfind(b"\n") + 1
        if complete < len(raw):
            # A write interrupted mid-line; drop it so appends start clean
            logger.warning(f"Truncating {len(raw) - complete} bytes of torn write in {log_path}")
            with open(log_path, "r+b") as f:
                f.truncate(complete)

        for line_no, line in enumerate(raw[:complete].splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                notification = Notification.from_dict(json.loads(line.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Skipping unreadable event at line {line_no}: {e}")
                continue
            self._index(notification)

    def _index(self, notification: Notification):
        self._events.append(notification)
        self._by_app.setdefault(notification.app_id, []).append(notification)
        if notification.event_type == APP_STATUS_UPDATED:
            self._status_counts[notification.app_id] = notification.position

    def _write(self, notifications: List[Notification]):
        """Append records in one write; on failure the file is cut back to its old size."""
        data = "".join(json.dumps(n.to_dict()) + "\n" for n in notifications).encode("utf-8")
        with open(self._log_path(), "ab", buffering=0) as f:
            start = f.seek(0, os.SEEK_END)
            try:
                view = memoryview(data)
                while view:
                    view = view[f.write(view):]
                os.fsync(f.fileno())
            except OSError:
                os.ftruncate(f.fileno(), start)
                raise

    def append(self, event_type: str, **values: Any) -> Notification:
        """
        Append a notification.

        Args:
            event_type: One of the EVENT_FIELDS keys
            **values: Exactly the fields declared for event_type

        Returns:
            The stored Notification with its sequence (and position, for
            status updates) assigned
        """
        return self.append_batch([(event_type, values)])[0]

    def append_batch(self, entries: List[Tuple[str, Dict[str, Any]]]) -> List[Notification]:
        """
        Append several notifications as one unit.

        Either every entry is written and indexed, or none is.
        """
        for event_type, values in entries:
            names = EVENT_FIELDS.get(event_type)
            if names is None:
                raise ValueError(f"Unknown event type: {event_type}")
            if set(values) != set(names):
                raise ValueError(f"{event_type} takes fields {names}, got {tuple(values)}")

        with self._lock:
            sequence = self._next_sequence()
            counts: Dict[int, int] = {}
            notifications = []
            for offset, (event_type, values) in enumerate(entries):
                position = None
                if event_type == APP_STATUS_UPDATED:
                    app_id = values["app_id"]
                    position = counts.get(app_id, self._status_counts.get(app_id, 0)) + 1
                    counts[app_id] = position
                notifications.append(Notification(
                    sequence=sequence + offset,
                    event_type=event_type,
                    data={name: values[name] for name in EVENT_FIELDS[event_type]},
                    position=position,
                ))
            if notifications:
                self._write(notifications)
            for notification in notifications:
                self._index(notification)

        for notification in notifications:
            logger.debug(f"Event {notification.sequence}: {notification.event_type}{notification.fields}")
        return notifications

    def list(
        self,
        since: int = 0,
        app_id: int = None,
        event_type: str = None,
    ) -> List[Notification]:
        """
        List notifications in sequence order.

        Args:
            since: Only return notifications with sequence > since
            app_id: Restrict to one application
            event_type: Restrict to one notification type
        """
        with self._lock:
            source = self._by_app.get(app_id, []) if app_id is not None else self._events
            return [
                n for n in source
                if n.sequence > since and (event_type is None or n.event_type == event_type)
            ]

    def status_updates(self, app_id: int) -> List[StatusUpdate]:
        """An application's status updates, oldest first."""
        return [
            StatusUpdate.from_notification(n)
            for n in self.list(app_id=app_id, event_type=APP_STATUS_UPDATED)
        ]

    def _next_sequence(self) -> int:
        return self._events[-1].sequence + 1 if self._events else 1

    def last_sequence(self) -> int:
        with self._lock:
            return self._events[-1].sequence if self._events else 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self.list())
