"""
Credential Module - password hashing and verification

Stored hashes are self-describing strings carrying their own salt:
  scrypt$<n>$<r>$<p>$<salt_b64>$<hex>
"""

from __future__ import annotations

import hmac
import os
from typing import Optional

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from linechat.common.utils import b64d, b64e


class PasswordHasher:
    """Hashes and verifies login passwords."""

    SALT_BYTES = 16
    DKLEN = 32  # 256-bit

    SCRYPT_PREFIX = "scrypt"
    SCRYPT_N = 2**14
    SCRYPT_R = 8
    SCRYPT_P = 1

    def __init__(
        self,
        pepper: Optional[bytes] = None,
        n: int = SCRYPT_N,
        r: int = SCRYPT_R,
        p: int = SCRYPT_P,
    ):
        """
        Args:
            pepper: Optional application-level secret appended to the password.
                    If not provided, reads LINECHAT_PWD_PEPPER from env (UTF-8).
            n, r, p: scrypt cost parameters for newly created hashes.
        """
        if pepper is not None:
            self.pepper = pepper
        else:
            env_pepper = os.environ.get("LINECHAT_PWD_PEPPER")
            self.pepper = env_pepper.encode("utf-8") if env_pepper else None
        self.n = n
        self.r = r
        self.p = p

    @staticmethod
    def generate_salt(length: int = SALT_BYTES) -> bytes:
        """Generate cryptographically secure random salt."""
        return os.urandom(length)

    def _password_bytes(self, password: str) -> bytes:
        pwd_bytes = password.encode("utf-8")
        if self.pepper:
            pwd_bytes += self.pepper
        return pwd_bytes

    def _derive_scrypt(self, salt: bytes, password: str, n: int, r: int, p: int, dklen: int) -> bytes:
        kdf = Scrypt(salt=salt, length=dklen, n=n, r=r, p=p)
        return kdf.derive(self._password_bytes(password))

    def hash(self, password: str) -> str:
        """Hash a password with a fresh salt; returns the versioned scrypt string."""
        salt = self.generate_salt()
        dk = self._derive_scrypt(salt, password, self.n, self.r, self.p, self.DKLEN)
        return f"{self.SCRYPT_PREFIX}${self.n}${self.r}${self.p}${b64e(salt)}${dk.hex()}"

    def verify(self, stored_hash: str, password: str) -> bool:
        """Verify password using constant-time comparison. Unknown formats never verify."""
        if isinstance(stored_hash, bytes):
            try:
                stored_hash = stored_hash.decode("utf-8")
            except UnicodeDecodeError:
                return False

        parts = stored_hash.split("$")
        if parts[0] != self.SCRYPT_PREFIX or len(parts) != 6:
            return False

        _, n_s, r_s, p_s, salt_b64, hex_digest = parts
        try:
            dk = self._derive_scrypt(
                b64d(salt_b64), password, int(n_s), int(r_s), int(p_s), len(hex_digest) // 2
            )
        except ValueError:
            return False

        return hmac.compare_digest(dk.hex(), hex_digest)
