from __future__ import annotations

import logging
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.config import PAGE_KEY_BYTES, decode_page_key
from common.envelope import IV_MAX_BYTES, IV_MIN_BYTES, b64decode_strict
from common.errors import IntegrityError


logger = logging.getLogger(__name__)


class PageOpener:
    """Decrypt-only handle on the shared page key (AES-256-GCM)."""

    def __init__(self, key: bytes) -> None:
        if len(key) != PAGE_KEY_BYTES:
            raise ValueError(f"key must be {PAGE_KEY_BYTES} bytes")
        self.__aead = AESGCM(key)

    @classmethod
    def from_b64(cls, raw: str | bytes) -> "PageOpener":
        return cls(decode_page_key(raw))

    def open(self, ciphertext: bytes, iv: bytes, *, associated_data: Optional[bytes] = None) -> bytes:
        """Verify and decrypt. Any failure raises IntegrityError with no output."""
        if not (IV_MIN_BYTES <= len(iv) <= IV_MAX_BYTES):
            raise IntegrityError(f"IV must be {IV_MIN_BYTES}-{IV_MAX_BYTES} bytes, got {len(iv)}")
        try:
            return self.__aead.decrypt(iv, bytes(ciphertext), associated_data)
        except InvalidTag as ex:
            raise IntegrityError("Authentication failed: payload tampered or wrong key") from ex


def decrypt(ciphertext_b64: str, iv_b64: str, key: bytes) -> bytes:
    """Reverse `protect.crypto.encrypt`."""
    ciphertext = b64decode_strict(ciphertext_b64, "ciphertext")
    iv = b64decode_strict(iv_b64, "iv")
    return PageOpener(key).open(ciphertext, iv)


class ScopedAsset:
    """
    Decrypted page bytes owned by one page view.

    Released deterministically by the viewer on page change or teardown (or by
    leaving a `with` block). The buffer is zeroed on release and any later
    access raises RuntimeError, so a stale page can never be rendered.
    """

    def __init__(self, data: bytes, *, label: str = "") -> None:
        self._buf: Optional[bytearray] = bytearray(data)
        self._size = len(data)
        self.label = label

    @property
    def released(self) -> bool:
        return self._buf is None

    @property
    def size(self) -> int:
        return self._size

    def bytes(self) -> bytes:
        if self._buf is None:
            raise RuntimeError(f"asset {self.label or '<unnamed>'} already released")
        return bytes(self._buf)

    def release(self) -> None:
        if self._buf is None:
            return
        self._buf[:] = bytes(len(self._buf))
        self._buf = None
        logger.debug("Released asset %s (%d bytes)", self.label, self._size)

    def __enter__(self) -> "ScopedAsset":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["PageOpener", "ScopedAsset", "decrypt"]
