# utilreg/identity/signatures.py
"""
Request signatures.

Uses RSA-SHA256 signatures in the style of the HTTP Signatures draft:
the signed string covers the request target, the Date header, a SHA-256
digest of the body and a one-time nonce. ReplayGuard lets a server refuse
a signature it has already accepted while that signature is still fresh.
"""

import base64
import hashlib
import logging
import re
import threading
import time
import uuid
from email.utils import formatdate, parsedate_to_datetime
from typing import Dict, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .actor import Actor

logger = logging.getLogger(__name__)

SIGNED_HEADERS = "(request-target) date digest nonce"
MAX_CLOCK_SKEW = 300

_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


def _digest(body: bytes) -> str:
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def _signing_string(method: str, path: str, date: str, digest: str, nonce: str) -> bytes:
    return (
        f"(request-target): {method.lower()} {path}\n"
        f"date: {date}\n"
        f"digest: {digest}\n"
        f"nonce: {nonce}"
    ).encode("utf-8")


def parse_signature_header(value: str) -> Dict[str, str]:
    """Split a Signature header into its key="value" parameters."""
    return dict(_PARAM_RE.findall(value or ""))


def sign_request(
    actor: Actor,
    method: str,
    path: str,
    body: bytes = b"",
    date: str = None,
) -> Dict[str, str]:
    """
    Sign a request with the actor's private key.

    Args:
        actor: Actor holding a private key
        method: HTTP method
        path: Request path including any query string
        body: Raw request body
        date: RFC 7231 date; defaults to now

    Returns:
        Headers to send with the request (X-Actor, Date, Digest, Nonce,
        Signature)
    """
    if not actor.can_sign:
        raise ValueError(f"Actor {actor.username} has no private key")

    private_key = serialization.load_pem_private_key(
        actor.private_key,
        password=None,
    )
    date = date or formatdate(usegmt=True)
    digest = _digest(body)
    nonce = uuid.uuid4().hex

    signature_bytes = private_key.sign(
        _signing_string(method, path, date, digest, nonce),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    signature_value = base64.b64encode(signature_bytes).decode("utf-8")

    return {
        "X-Actor": actor.id,
        "Date": date,
        "Digest": digest,
        "Nonce": nonce,
        "Signature": (
            f'keyId="{actor.key_id}",algorithm="rsa-sha256",'
            f'headers="{SIGNED_HEADERS}",signature="{signature_value}"'
        ),
    }


def verify_request(
    headers: Mapping[str, str],
    method: str,
    path: str,
    body: bytes,
    actor: Actor,
    max_skew: Optional[float] = MAX_CLOCK_SKEW,
) -> bool:
    """
    Verify that a request was signed by the given actor.

    Args:
        headers: Request headers
        method: HTTP method
        path: Request path including any query string
        body: Raw request body
        actor: The claimed signer (public key needed)
        max_skew: Allowed distance between the Date header and now, in
            seconds; None disables the check

    Returns:
        True if the signature, digest and date all check out
    """
    params = parse_signature_header(headers.get("Signature", ""))
    if params.get("keyId") != actor.key_id or "signature" not in params:
        return False

    date = headers.get("Date")
    nonce = headers.get("Nonce")
    if not date or not nonce:
        return False

    digest = _digest(body)
    if headers.get("Digest", digest) != digest:
        return False

    try:
        if max_skew is not None:
            sent_at = parsedate_to_datetime(date).timestamp()
            if abs(time.time() - sent_at) > max_skew:
                logger.debug(f"Stale request date from {actor.id}: {date}")
                return False

        public_key = serialization.load_pem_public_key(actor.public_key)
        public_key.verify(
            base64.b64decode(params["signature"]),
            _signing_string(method, path, date, digest, nonce),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True

    except (InvalidSignature, TypeError, ValueError):
        return False


class ReplayGuard:
    """
    Remembers accepted signatures for as long as their Date stays fresh.

    A request replayed inside the clock-skew window carries a signature the
    guard has already seen; outside the window verify_request rejects it.
    """

    def __init__(self, window: float = MAX_CLOCK_SKEW):
        self.window = window
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def accept(self, signature: str) -> bool:
        """Record a signature; False if it was already accepted."""
        now = time.time()
        with self._lock:
            # Twice the window covers dates skewed either way
            expired = [s for s, seen_at in self._seen.items() if now - seen_at > 2 * self.window]
            for s in expired:
                del self._seen[s]
            if signature in self._seen:
                return False
            self._seen[signature] = now
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
