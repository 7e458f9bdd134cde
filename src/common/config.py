from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError


# Environment variable names for the content service
ENV_ASSET_BUCKET = "ASSET_BUCKET"
ENV_PARAM_PREFIX = "PARAM_PREFIX"
ENV_SIGNED_URL_TTL = "SIGNED_URL_TTL"
ENV_METADATA_PREFIX = "METADATA_PREFIX"

# Backward-compatible fallbacks
FALLBACK_ENV_ASSET_BUCKET = "WORKSHEET_ASSET_BUCKET"
FALLBACK_ENV_PARAM_PREFIX = "WORKSHEET_PARAM_PREFIX"

# SSM parameter names under PARAM_PREFIX
PARAM_PAGE_KEY = "page_encryption_key"

PAGE_KEY_BYTES = 32


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise ConfigurationError(f"Missing required configuration: {what}")
    return v


def load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    """Read decrypted SecureString parameters `{prefix}{name}` from SSM.

    Missing parameters (or ones we may not read) come back as None so the
    caller decides which are required.
    """
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def decode_page_key(raw: str | bytes | None) -> bytes:
    """Decode the shared page key (standard or URL-safe base64 of 32 bytes)."""
    if raw is None or raw == "" or raw == b"":
        raise ConfigurationError("Page encryption key is not configured")
    data = raw.encode("ascii") if isinstance(raw, str) else bytes(raw)
    data = data.strip()
    try:
        if b"-" in data or b"_" in data:
            key = base64.urlsafe_b64decode(data)
        else:
            key = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as ex:
        raise ConfigurationError("Page encryption key is not valid base64") from ex
    if len(key) != PAGE_KEY_BYTES:
        raise ConfigurationError(
            f"Page encryption key must decode to {PAGE_KEY_BYTES} bytes, got {len(key)}"
        )
    return key


@dataclass
class ServiceConfig:
    """Settings for the content service handlers.

    Built once per cold start by `from_env()` and then passed explicitly; no
    handler code reads the environment directly.
    """

    bucket: str
    page_key: Optional[bytes] = None
    signed_url_ttl: int = 300
    metadata_prefix: str = "data/"

    @classmethod
    def from_env(cls, *, require_key: bool = True) -> "ServiceConfig":
        bucket = _getenv(ENV_ASSET_BUCKET) or _getenv(FALLBACK_ENV_ASSET_BUCKET)
        prefix = _getenv(ENV_PARAM_PREFIX) or _getenv(FALLBACK_ENV_PARAM_PREFIX)
        bucket = _require(bucket, ENV_ASSET_BUCKET)

        page_key: Optional[bytes] = None
        if prefix:
            params = load_ssm_params(prefix, [PARAM_PAGE_KEY])
            raw_key = params.get(PARAM_PAGE_KEY)
            if raw_key is not None:
                page_key = decode_page_key(raw_key)
        if require_key and page_key is None:
            raise ConfigurationError(
                f"Missing required configuration: {prefix or ENV_PARAM_PREFIX}{PARAM_PAGE_KEY}"
            )

        ttl_raw = _getenv(ENV_SIGNED_URL_TTL, "300")
        try:
            ttl = int(ttl_raw or "300")
        except ValueError as ex:
            raise ConfigurationError(f"{ENV_SIGNED_URL_TTL} must be an integer") from ex

        return cls(
            bucket=bucket,
            page_key=page_key,
            signed_url_ttl=ttl,
            metadata_prefix=_getenv(ENV_METADATA_PREFIX, "data/") or "data/",
        )

    def require_page_key(self) -> bytes:
        if self.page_key is None:
            raise ConfigurationError("Page encryption key is not configured")
        return self.page_key


class AvatarTiming(BaseModel):
    """Segment boundaries inside the avatar video (seconds)."""

    idle_end: float = Field(default=9.9, description="T_idle; idle loop is [0, idle_end)")
    talk_start: float = Field(default=10.0, description="T_talk; talking loop is [talk_start, duration)")
    loop_epsilon: float = Field(default=0.1, description="Distance from a segment end that triggers a loop")
    fallback_duration: float = Field(default=20.0, description="Used until the video reports its duration")


class ViewerConfig(BaseModel):
    """Client-side settings injected into the page viewer.

    Replaces ambient lookups (browser storage, module globals): the host builds
    one instance per viewer and it lives exactly as long as the viewer.
    """

    api_base: str = Field(..., description="Base URL of the content functions")
    api_key: Optional[str] = Field(default=None, description="Sent as `apikey` and bearer token")
    user_id: Optional[str] = Field(default=None, description="Requester identity for owner-scoped assets")
    page_key: Optional[str] = Field(default=None, description="Base64 shared key; None disables encrypted delivery")
    audio_base: str = Field(default="/audio", description="Root of the narration audio tree")
    avatar_video: str = Field(default="/video/default.mp4")
    request_timeout: float = 15.0
    max_attempts: int = 4
    audio_ready_timeout: float = 3.0
    narration_delay: float = 0.5
    avatar: AvatarTiming = Field(default_factory=AvatarTiming)

    def decoded_page_key(self) -> bytes:
        return decode_page_key(self.page_key)


__all__ = [
    "AvatarTiming",
    "ServiceConfig",
    "ViewerConfig",
    "decode_page_key",
    "load_ssm_params",
]
