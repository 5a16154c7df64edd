"""
Credential hashing for PrivDB.

Passwords are never stored in plaintext. The registry hands the plaintext to
a CredentialHasher and keeps only the digest.

Invariants:
    - Digests are fixed-length lowercase hex strings
    - Verification compares digests, never plaintexts
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Protocol, runtime_checkable


@runtime_checkable
class CredentialHasher(Protocol):
    """One-way digest for password storage and verification."""

    def hash(self, plaintext: str) -> str:
        ...


class Sha256Hasher:
    """SHA-256 hex digest of the UTF-8 encoded password.

    Example:
        >>> len(Sha256Hasher().hash("pw1"))
        64
    """

    digest_size = 64

    def hash(self, plaintext: str) -> str:
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def verify(hasher: CredentialHasher, candidate: str, stored_digest: str) -> bool:
    """Check a candidate password against a stored digest.

    Whitespace and newlines picked up around the stored digest (or produced
    by the hasher) are ignored.

    Args:
        hasher: Hasher that produced the stored digest
        candidate: Plaintext password to check
        stored_digest: Digest read from storage

    Returns:
        True if the digests match
    """
    computed = hasher.hash(candidate).strip()
    return hmac.compare_digest(computed.encode("utf-8"), stored_digest.strip().encode("utf-8"))
