"""
Cryptographic primitives for API keys.

Secrets are verified with salted PBKDF2-HMAC-SHA512 so that a leaked table
cannot be brute forced cheaply. Rate-limit bucketing and lookup use a fast,
deterministic SHA-256 fingerprint instead, which only has to be collision
resistant.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re
import secrets
from typing import Any, Optional

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SECRET_BYTES = 32
SECRET_LENGTH = 43  # 32 bytes, unpadded base64url
SALT_BYTES = 32
DERIVED_KEY_BYTES = 64
DEFAULT_ITERATIONS = 100_000
HASH_SEPARATOR = ":"

_SURFACE_FORMAT = re.compile(r"[A-Za-z0-9_-]{%d}" % SECRET_LENGTH)


class CryptoPrimitives:
    """Generate, hash and verify API key secrets."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations
        self._dummy_hash: Optional[str] = None

    def generate_secret(self) -> str:
        """Return a fresh 43-character base64url secret (no padding)."""
        raw = secrets.token_bytes(SECRET_BYTES)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def derive_hash(self, secret: str) -> str:
        """Return ``salt:hex(pbkdf2(secret, salt))`` with a fresh random salt."""
        salt = secrets.token_hex(SALT_BYTES)
        return f"{salt}{HASH_SEPARATOR}{self._derive(secret, salt)}"

    def verify(self, secret: Any, stored_hash: Any) -> bool:
        """Recompute the derivation with the stored salt and compare in constant time."""
        if not isinstance(secret, str) or not isinstance(stored_hash, str):
            return False
        salt, _, expected = stored_hash.partition(HASH_SEPARATOR)
        if not salt or not expected:
            return False
        return self.constant_time_equal(expected, self._derive(secret, salt))

    @staticmethod
    def constant_time_equal(a: Any, b: Any) -> bool:
        """
        Compare two hex digests without short-circuiting on the first mismatch.

        Length is not treated as secret. Empty, non-string or non-hex input
        compares unequal instead of raising.
        """
        if not isinstance(a, str) or not isinstance(b, str):
            return False
        if len(a) != len(b) or not a:
            return False
        try:
            left = bytes.fromhex(a)
            right = bytes.fromhex(b)
        except ValueError:
            logger.debug("Hash comparison on malformed hex input")
            return False
        return constant_time.bytes_eq(left, right)

    @staticmethod
    def is_valid_surface_format(value: Any) -> bool:
        """Exactly 43 characters of ``[A-Za-z0-9_-]``; anything else is rejected."""
        if not isinstance(value, str):
            return False
        return _SURFACE_FORMAT.fullmatch(value) is not None

    @staticmethod
    def fast_hash(value: str) -> str:
        """Hex SHA-256 of ``value``. Used for fingerprints, never for verification."""
        return hashlib.sha256(value.encode("utf-8")).hexdigest()

    @property
    def dummy_hash(self) -> str:
        """
        A stored hash no secret matches.

        Verifying against it costs the same as a real verification, so an
        unknown fingerprint takes as long to reject as a wrong secret.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.derive_hash(self.generate_secret())
        return self._dummy_hash

    def _derive(self, secret: str, salt: str) -> str:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=DERIVED_KEY_BYTES,
            salt=salt.encode("utf-8"),
            iterations=self.iterations,
        )
        return kdf.derive(secret.encode("utf-8")).hex()
