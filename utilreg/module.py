# utilreg/module.py
"""
Update-module documents.

An update module tells consumers how to read an application's status
updates: it names a set of global attributes and, for each collection, the
subset of attributes that collection takes part in. The registry itself
only stores the module's locator; this model is for tooling that writes or
checks the document before its locator is published.

Example document:
    {
      "name": "Dungeon Crawler",
      "attributes": ["hp", "level", "xp"],
      "collections": [
        {"chain_id": 1, "address": "0xc1", "attributes": [0, 1]}
      ]
    }
"""

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .registry import normalize_address


def _stable_hash(data: Any, algorithm: str = "sha3_256") -> str:
    """Create stable hash from arbitrary data."""
    json_str = json.dumps(data, sort_keys=True, separators=(",", ":"))
    hasher = hashlib.new(algorithm)
    hasher.update(json_str.encode())
    return hasher.hexdigest()


@dataclass
class ModuleCollection:
    """A collection's participation in an update module."""
    chain_id: int
    address: str
    attributes: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "attributes": list(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleCollection":
        return cls(
            chain_id=int(data["chain_id"]),
            address=normalize_address(data["address"]),
            attributes=[int(i) for i in data.get("attributes", [])],
        )


@dataclass
class UpdateModule:
    """
    Parsed update-module document.

    Attributes:
        name: Application name
        attributes: Global attribute names
        collections: Per-collection attribute subsets
    """
    name: str
    attributes: List[str]
    collections: List[ModuleCollection] = field(default_factory=list)

    @property
    def content_hash(self) -> str:
        """SHA3-256 of the canonical document."""
        return _stable_hash(self.to_dict())

    def validate(self) -> List[str]:
        """Return a list of problems; empty if the document is well formed."""
        errors = []
        if not self.name:
            errors.append("Module name is empty")
        if len(set(self.attributes)) != len(self.attributes):
            errors.append("Attribute names are not unique")

        seen = set()
        for coll in self.collections:
            key = (coll.chain_id, coll.address)
            if key in seen:
                errors.append(f"Collection {coll.address} on chain {coll.chain_id} listed twice")
            seen.add(key)
            for index in coll.attributes:
                if not 0 <= index < len(self.attributes):
                    errors.append(
                        f"Collection {coll.address} references attribute {index}, "
                        f"but only {len(self.attributes)} are defined"
                    )
        return errors

    def attributes_for(self, chain_id: int, address: bytes | str) -> Optional[List[str]]:
        """Attribute names a collection participates in, or None if unlisted."""
        address = normalize_address(address)
        for coll in self.collections:
            if coll.chain_id == chain_id and coll.address == address:
                return [self.attributes[i] for i in coll.attributes]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "attributes": list(self.attributes),
            "collections": [c.to_dict() for c in self.collections],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdateModule":
        return cls(
            name=data.get("name", ""),
            attributes=list(data.get("attributes", [])),
            collections=[ModuleCollection.from_dict(c) for c in data.get("collections", [])],
        )

    @classmethod
    def from_json(cls, text: str) -> "UpdateModule":
        return cls.from_dict(json.loads(text))

    @classmethod
    def from_file(cls, path: Path | str) -> "UpdateModule":
        with open(path) as f:
            return cls.from_dict(json.load(f))
