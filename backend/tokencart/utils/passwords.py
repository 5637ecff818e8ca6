"""Credential hashing - bcrypt over a SHA-256 pre-hash of the secret"""
import base64
import hashlib
import hmac
from typing import NamedTuple, Optional

import bcrypt

from tokencart.errors import HashingError


class HashedCredential(NamedTuple):
    """What gets persisted for a secret. The secret itself never is."""

    hash_value: str
    salt: str


def _prehash(secret: str) -> bytes:
    # bcrypt truncates (or rejects) input past 72 bytes and stops at NUL;
    # a base64 SHA-256 digest is 44 printable bytes for any secret.
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.b64encode(digest)


class CredentialHasher:
    """Salted, slow one-way hashing of secrets.

    Example::

        hasher = CredentialHasher(rounds=12)
        stored = hasher.hash("pw123")
        hasher.verify("pw123", stored.hash_value, stored.salt)  # True
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._dummy: Optional[HashedCredential] = None

    def hash(self, secret: str) -> HashedCredential:
        """Hash ``secret`` with a freshly generated salt.

        Raises:
            HashingError: the salt could not be generated (entropy source failure).
        """
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
        except (OSError, NotImplementedError) as exc:
            raise HashingError("could not generate a salt") from exc

        hash_value = bcrypt.hashpw(_prehash(secret), salt)
        return HashedCredential(hash_value=hash_value.decode("ascii"), salt=salt.decode("ascii"))

    def verify(self, secret: str, hash_value: str, salt: str) -> bool:
        """Recompute the hash with the stored salt and compare in constant time.

        Returns False on mismatch and on corrupt stored values; never raises for them.
        """
        try:
            computed = bcrypt.hashpw(_prehash(secret), salt.encode("ascii"))
        except (ValueError, UnicodeEncodeError):
            return False
        return hmac.compare_digest(computed, hash_value.encode("ascii", "replace"))

    def verify_dummy(self, secret: str) -> bool:
        """Spend the same work as a real verification, for unknown identifiers."""
        if self._dummy is None:
            self._dummy = self.hash("tokencart-dummy-credential")
        self.verify(secret, self._dummy.hash_value, self._dummy.salt)
        return False
