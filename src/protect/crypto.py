from __future__ import annotations

import os
from typing import Callable, Optional, Tuple

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.config import PAGE_KEY_BYTES, decode_page_key
from common.envelope import IV_BYTES, b64encode


class PageSealer:
    """
    Encrypt-only handle on the shared page key (AES-256-GCM).

    There is no decrypt operation: the server only ever seals. Each `seal`
    draws a fresh 12-byte IV from the OS CSPRNG.
    """

    def __init__(self, key: bytes, *, random_bytes: Callable[[int], bytes] = os.urandom) -> None:
        if len(key) != PAGE_KEY_BYTES:
            raise ValueError(f"key must be {PAGE_KEY_BYTES} bytes")
        self.__aead = AESGCM(key)
        self._random_bytes = random_bytes

    @classmethod
    def from_b64(cls, raw: str | bytes) -> "PageSealer":
        return cls(decode_page_key(raw))

    def seal(self, plaintext: bytes, *, associated_data: Optional[bytes] = None) -> Tuple[bytes, bytes]:
        """Return `(ciphertext_with_tag, iv)`."""
        iv = self._random_bytes(IV_BYTES)
        ciphertext = self.__aead.encrypt(iv, bytes(plaintext), associated_data)
        return ciphertext, iv


def encrypt(asset_bytes: bytes, key: bytes) -> Tuple[str, str]:
    """Encrypt an asset for JSON transport; returns `(ciphertext_b64, iv_b64)`."""
    ciphertext, iv = PageSealer(key).seal(asset_bytes)
    return b64encode(ciphertext), b64encode(iv)


__all__ = ["PageSealer", "encrypt"]
