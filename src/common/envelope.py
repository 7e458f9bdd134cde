from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .errors import IntegrityError


IV_BYTES = 12
IV_MIN_BYTES = 12
IV_MAX_BYTES = 16


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode_strict(value: str, what: str) -> bytes:
    """Decode standard base64, mapping malformed input to IntegrityError."""
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as ex:
        raise IntegrityError(f"{what} is not valid base64") from ex


class EncryptedPayload(BaseModel):
    """
    Wire envelope of one encrypted asset delivery.

    Transient: generated per request and never persisted. `ciphertext` carries
    the AES-GCM tag in its last 16 bytes; `iv` is the per-request nonce.
    """

    ciphertext: str = Field(..., alias="encryptedPdf")
    iv: str
    meta: Optional[Dict[str, Any]] = None
    encrypted: bool = True

    model_config = {"populate_by_name": True}

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"encryptedPdf": self.ciphertext, "iv": self.iv}
        if self.meta is not None:
            body["meta"] = self.meta
            body["encrypted"] = True
        return body


__all__ = [
    "EncryptedPayload",
    "IV_BYTES",
    "IV_MAX_BYTES",
    "IV_MIN_BYTES",
    "b64decode_strict",
    "b64encode",
]
