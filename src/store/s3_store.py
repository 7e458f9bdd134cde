from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from common.errors import BadRequestError, NotFoundError


logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_MISSING_CODES = ("NoSuchKey", "404", "NotFound")


def validate_id(value: Optional[str], what: str = "worksheetId") -> str:
    """Reject ids that could escape their storage prefix."""
    if not value or not isinstance(value, str):
        raise BadRequestError(f"{what} is required")
    if not _ID_RE.match(value):
        raise BadRequestError(f"Invalid {what} format")
    return value


@dataclass(frozen=True)
class AssetRef:
    bucket: str
    key: str
    size: int = 0
    etag: Optional[str] = None


def candidate_keys(
    worksheet_id: str,
    *,
    page_index: Optional[int] = None,
    owner_id: Optional[str] = None,
) -> List[str]:
    """Storage keys to try for an asset, most specific first.

    - owner-scoped: `{ownerId}/{worksheetId}/{page}.pdf` (or `{ownerId}/{worksheetId}.pdf`)
    - legacy flat:  `{worksheetId}/{page}.pdf` (or `{worksheetId}.pdf`)
    """
    leaf = f"{worksheet_id}/{page_index}.pdf" if page_index is not None else f"{worksheet_id}.pdf"
    keys: List[str] = []
    if owner_id:
        keys.append(f"{owner_id}/{leaf}")
    keys.append(leaf)
    return keys


def _is_missing(e: ClientError) -> bool:
    code = e.response.get("Error", {}).get("Code")
    return code in _MISSING_CODES


class S3AssetStore:
    """
    Read-only access to page assets and static metadata in one S3 bucket.

    Usage
    - `resolve(worksheet_id, page_index=..., owner_id=...)` walks the candidate
      keys and returns the first that exists; both missing → `NotFoundError`.
    - `read(ref)` returns the full object bytes; `read_range(ref, start, end)`
      an inclusive byte range.
    - `presigned_url(ref, ttl)` a time-bounded GET URL for plain delivery.
    - `get_json(key)` loads a JSON document (static worksheet metadata).
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    # -------- Resolution --------
    def head(self, key: str) -> Optional[AssetRef]:
        try:
            resp = self._s3.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise
        return AssetRef(
            bucket=self._bucket,
            key=key,
            size=int(resp.get("ContentLength") or 0),
            etag=resp.get("ETag"),
        )

    def resolve(
        self,
        worksheet_id: str,
        *,
        page_index: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> AssetRef:
        keys = candidate_keys(worksheet_id, page_index=page_index, owner_id=owner_id)
        for key in keys:
            ref = self.head(key)
            if ref is not None:
                logger.debug("Resolved asset %s/%s", self._bucket, key)
                return ref
            logger.debug("Asset not at %s/%s", self._bucket, key)
        raise NotFoundError(
            "PDF not found",
            details=f"No asset at any of: {', '.join(keys)}",
        )

    # -------- Reads --------
    def read(self, ref: AssetRef) -> bytes:
        try:
            resp = self._s3.get_object(Bucket=ref.bucket, Key=ref.key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError("PDF not found", details=ref.key) from e
            raise
        return resp["Body"].read()

    def read_range(self, ref: AssetRef, start: int, end: int) -> bytes:
        try:
            resp = self._s3.get_object(
                Bucket=ref.bucket, Key=ref.key, Range=f"bytes={start}-{end}"
            )
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError("PDF not found", details=ref.key) from e
            raise
        return resp["Body"].read()

    def resolve_and_read(
        self,
        worksheet_id: str,
        *,
        page_index: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> Tuple[bytes, AssetRef]:
        ref = self.resolve(worksheet_id, page_index=page_index, owner_id=owner_id)
        return self.read(ref), ref

    def presigned_url(self, ref: AssetRef, ttl: int) -> str:
        return self._s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": ref.bucket, "Key": ref.key},
            ExpiresIn=int(ttl),
        )

    def get_json(self, key: str) -> Dict[str, Any]:
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError("Worksheet not found", details=key) from e
            raise
        body = resp["Body"].read()
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as ex:
            raise ValueError(f"Invalid JSON at s3://{self._bucket}/{key}") from ex


__all__ = [
    "AssetRef",
    "S3AssetStore",
    "candidate_keys",
    "validate_id",
]
