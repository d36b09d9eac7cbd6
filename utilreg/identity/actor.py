# utilreg/identity/actor.py
"""
Actor management.

An Actor is an identity with:
- Username and display name
- RSA key pair for signing requests (the private half only on the
  actor's own machine)
- An id URL, used as the owner identity in the registry
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)

DOMAIN = "utilreg.local"


def _generate_keypair() -> tuple[bytes, bytes]:
    """Generate RSA key pair for signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def _check_public_key(public_pem: bytes) -> None:
    """Raise ValueError unless public_pem is an RSA public key."""
    key = serialization.load_pem_public_key(public_pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Only RSA public keys are supported")


@dataclass
class Actor:
    """
    A caller identity.

    Attributes:
        username: Unique username (e.g., "alice")
        display_name: Human-readable name
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key, None for remote actors
        created_at: Timestamp of creation
    """
    username: str
    display_name: str
    public_key: bytes
    private_key: Optional[bytes] = None
    created_at: float = field(default_factory=time.time)
    domain: str = DOMAIN

    @property
    def id(self) -> str:
        """Actor ID (URL); this is the identity recorded as an app owner."""
        return f"https://{self.domain}/users/{self.username}"

    @property
    def key_id(self) -> str:
        """Key ID carried in request signatures."""
        return f"{self.id}#main-key"

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    def public(self) -> "Actor":
        """Copy without the private key."""
        return replace(self, private_key=None)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the public part for storage."""
        return {
            "username": self.username,
            "display_name": self.display_name,
            "public_key": self.public_key.decode("utf-8"),
            "created_at": self.created_at,
            "domain": self.domain,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Deserialize from storage."""
        return cls(
            username=data["username"],
            display_name=data.get("display_name") or data["username"],
            public_key=data["public_key"].encode("utf-8"),
            created_at=data.get("created_at", time.time()),
            domain=data.get("domain", DOMAIN),
        )

    @classmethod
    def create(cls, username: str, display_name: str = None, domain: str = DOMAIN) -> "Actor":
        """Create a new actor with generated keys."""
        private_pem, public_pem = _generate_keypair()
        return cls(
            username=username,
            display_name=display_name or username,
            public_key=public_pem,
            private_key=private_pem,
            domain=domain,
        )


class ActorStore:
    """
    Persistent storage for actors.

    Structure:
        store_dir/
            actors.json       # Public part of every known actor
            keys/
                <username>.pem  # Private keys of locally created actors
    """

    def __init__(self, store_dir: Path | str, domain: str = DOMAIN):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.domain = domain
        self._actors: Dict[str, Actor] = {}
        self._lock = threading.Lock()
        self._load()

    def _index_path(self) -> Path:
        return self.store_dir / "actors.json"

    def _key_path(self, username: str) -> Path:
        return self.store_dir / "keys" / f"{username}.pem"

    def _load(self):
        """Load actors from disk."""
        index_path = self._index_path()
        if index_path.exists():
            with open(index_path) as f:
                data = json.load(f)
            self._actors = {
                username: Actor.from_dict(actor_data)
                for username, actor_data in data.get("actors", {}).items()
            }

    def _save(self):
        """Save actors to disk."""
        data = {
            "version": "1.0",
            "domain": self.domain,
            "actors": {
                username: actor.to_dict()
                for username, actor in self._actors.items()
            },
        }
        with open(self._index_path(), "w") as f:
            json.dump(data, f, indent=2)

    def create(self, username: str, display_name: str = None) -> Actor:
        """Create a local actor, keeping its private key in keys/."""
        with self._lock:
            if username in self._actors:
                raise ValueError(f"Actor {username} already exists")

            actor = Actor.create(username, display_name, domain=self.domain)
            key_path = self._key_path(username)
            key_path.parent.mkdir(parents=True, exist_ok=True)
            key_path.write_bytes(actor.private_key)
            os.chmod(key_path, 0o600)

            self._actors[username] = actor.public()
            self._save()

        logger.info(f"Created actor {actor.id}")
        return actor

    def add(self, username: str, public_key: bytes | str, display_name: str = None) -> Actor:
        """Register a remote actor by its public key."""
        if isinstance(public_key, str):
            public_key = public_key.encode("utf-8")
        _check_public_key(public_key)

        with self._lock:
            if username in self._actors:
                raise ValueError(f"Actor {username} already exists")
            actor = Actor(
                username=username,
                display_name=display_name or username,
                public_key=public_key,
                domain=self.domain,
            )
            self._actors[username] = actor
            self._save()

        logger.info(f"Added actor {actor.id}")
        return actor

    def get(self, username: str) -> Optional[Actor]:
        """Get an actor by username, with its private key when held locally."""
        with self._lock:
            actor = self._actors.get(username)
        if actor is None:
            return None
        key_path = self._key_path(username)
        if key_path.exists():
            return replace(actor, private_key=key_path.read_bytes())
        return actor

    def get_by_id(self, actor_id: str) -> Optional[Actor]:
        """Resolve an actor id URL or key id to a known actor."""
        actor_id = actor_id.split("#", 1)[0]
        if "/users/" not in actor_id:
            return None
        username = actor_id.split("/users/")[-1]
        actor = self.get(username)
        if actor and actor.id == actor_id:
            return actor
        return None

    def list(self) -> list[Actor]:
        """List all actors."""
        with self._lock:
            return list(self._actors.values())

    def __contains__(self, username: str) -> bool:
        return username in self._actors

    def __len__(self) -> int:
        return len(self._actors)
