# utilreg - Event-driven utility registry
#
# A ledger where independent applications register themselves, claim
# collections of external assets, publish an update module describing how
# they interpret those assets, and then emit an append-only stream of
# status updates. Each application's history is its own; the same asset
# can evolve differently in different applications.
#
# Core concepts:
# - Application: a numbered record with an owner, info and module locators
# - Collection: an external asset group (chain id + address) an app claims
# - Notification: an immutable entry in the append-only event log
# - Ledger: the allocator, registry, log and emitter under one directory

from .errors import (
    RegistryError,
    NotFound,
    Unauthorized,
    ArgumentMismatch,
    ModuleNotConfigured,
    InvalidOwner,
    LedgerLocked,
)
from .allocator import IdentityAllocator
from .events import EventLog, Notification, StatusUpdate
from .registry import Application, ApplicationRegistry, CollectionRef, normalize_address
from .emitter import EventEmitter
from .ledger import Ledger
from .module import UpdateModule

__all__ = [
    # Errors
    "RegistryError",
    "NotFound",
    "Unauthorized",
    "ArgumentMismatch",
    "ModuleNotConfigured",
    "InvalidOwner",
    "LedgerLocked",
    # Core
    "IdentityAllocator",
    "EventLog",
    "Notification",
    "StatusUpdate",
    "Application",
    "ApplicationRegistry",
    "CollectionRef",
    "normalize_address",
    "EventEmitter",
    "Ledger",
    # Documents
    "UpdateModule",
]

__version__ = "0.1.0"
