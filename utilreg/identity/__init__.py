# utilreg/identity/__init__.py
"""
Caller identities for the registry service.

The registry core only sees an identity string. This package is how the
service establishes that string:
- Actor: a named identity with an RSA key pair; its id is the owner string
- ActorStore: known actors and their public keys
- Request signatures: proof that an HTTP request came from an actor
- ReplayGuard: refuses a signed request seen before
"""

from .actor import Actor, ActorStore, DOMAIN
from .signatures import ReplayGuard, sign_request, verify_request, parse_signature_header

__all__ = [
    "Actor",
    "ActorStore",
    "DOMAIN",
    "sign_request",
    "verify_request",
    "parse_signature_header",
    "ReplayGuard",
]
