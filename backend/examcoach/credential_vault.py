# examcoach/credential_vault.py
from __future__ import annotations

import secrets
from typing import Optional, Tuple

from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

SALT_BYTES = 32  # 256 bits
DIGEST = "sha256"
DEFAULT_ROUNDS = 120_000


class CredentialVault:
    """
    Salted password digests stored as raw (hash, salt) byte pairs.

    Digest is PBKDF2-HMAC-SHA256 over the plaintext with a fresh 256-bit
    salt per call. Plaintext is never stored or logged.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        if rounds < 1:
            raise ValueError("rounds must be positive")
        self.rounds = rounds

    def _digest(self, plaintext: str, salt: bytes) -> bytes:
        return pbkdf2_hmac(DIGEST, plaintext.encode("utf-8"), salt, self.rounds)

    def set_credential(self, plaintext: Optional[str]) -> Tuple[Optional[bytes], Optional[bytes]]:
        """
        Returns (hash, salt). An empty password means "remove password"
        and returns (None, None).
        """
        if not plaintext:
            return None, None
        salt = secrets.token_bytes(SALT_BYTES)
        return self._digest(plaintext, salt), salt

    def verify(self, plaintext: Optional[str], hash_: Optional[bytes], salt: Optional[bytes]) -> bool:
        # Missing or malformed material reads as "no credential set".
        if not hash_ or not salt or plaintext is None:
            return False
        if not isinstance(hash_, (bytes, bytearray)) or not isinstance(salt, (bytes, bytearray)):
            return False
        if len(salt) < SALT_BYTES:
            return False
        return consteq(self._digest(plaintext, bytes(salt)), bytes(hash_))
