from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Optional, Tuple

from common.config import ServiceConfig
from common.envelope import EncryptedPayload, b64encode
from common.errors import (
    BadRequestError,
    ConfigurationError,
    NotFoundError,
    RangeNotSatisfiableError,
    WorksheetError,
)
from store.catalog import WorksheetCatalog
from store.s3_store import AssetRef, S3AssetStore, validate_id

from .crypto import PageSealer


logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, range",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}

_RANGE_RE = re.compile(r"bytes=(\d+)-(\d*)")


def _utcnow() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def parse_range_header(range_header: str, size: int) -> Optional[Tuple[int, int]]:
    """Parse `bytes=start-[end]` against an object of `size` bytes.

    Returns an inclusive `(start, end)` or None if malformed or unsatisfiable.
    """
    m = _RANGE_RE.match(range_header or "")
    if not m:
        return None
    start = int(m.group(1))
    end = int(m.group(2)) if m.group(2) else size - 1
    if start >= size or end >= size or start > end:
        return None
    return start, end


def _parse_page_index(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise BadRequestError("pageIndex must be an integer")
    try:
        page = int(raw)
    except (TypeError, ValueError) as ex:
        raise BadRequestError("pageIndex must be an integer") from ex
    if page < 0:
        raise BadRequestError("pageIndex must be >= 0")
    return page


@dataclass
class StreamResult:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class ContentService:
    """
    Server side of page delivery.

    - `encrypted_content`: resolve (owner path, then legacy path), seal with a
      fresh IV, optionally bundle worksheet metadata.
    - `plain_content`: worksheet metadata plus a time-bounded signed URL.
    - `stream`: raw bytes with single-range support.
    - `secrets_status` / `test_encryption`: operator self-checks.

    Every successful asset access writes one record to the `audit` logger.
    """

    def __init__(
        self,
        *,
        config: ServiceConfig,
        store: S3AssetStore,
        catalog: Optional[WorksheetCatalog] = None,
        sealer_factory: Callable[[bytes], PageSealer] = PageSealer,
        clock: Callable[[], str] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._catalog = catalog or WorksheetCatalog(store=store, static_prefix=config.metadata_prefix)
        self._sealer_factory = sealer_factory
        self._clock = clock

    # --------------- Public API ---------------
    def encrypted_content(
        self,
        worksheet_id: Optional[str],
        user_id: Optional[str],
        *,
        page_index: Optional[int] = None,
        include_meta: bool = True,
    ) -> Dict[str, Any]:
        worksheet_id = validate_id(worksheet_id)
        if user_id is not None:
            user_id = validate_id(user_id, "userId")
        try:
            key = self._config.require_page_key()
        except ConfigurationError:
            logger.error("Encrypted delivery requested but the page key is not configured")
            raise

        plaintext, ref = self._store.resolve_and_read(
            worksheet_id, page_index=page_index, owner_id=user_id
        )
        ciphertext, iv = self._sealer_factory(key).seal(plaintext)

        meta: Optional[Dict[str, Any]] = None
        if include_meta:
            meta = self._catalog.load(worksheet_id).to_payload()

        self._audit(user_id, ref, "encrypted")
        payload = EncryptedPayload(ciphertext=b64encode(ciphertext), iv=b64encode(iv), meta=meta)
        return payload.to_payload()

    def plain_content(
        self,
        worksheet_id: Optional[str],
        *,
        page_index: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        worksheet_id = validate_id(worksheet_id)
        if user_id is not None:
            user_id = validate_id(user_id, "userId")
        meta = self._catalog.load(worksheet_id)
        ref = self._store.resolve(worksheet_id, page_index=page_index, owner_id=user_id)
        url = self._store.presigned_url(ref, self._config.signed_url_ttl)
        self._audit(user_id, ref, "signed-url")
        return {"meta": meta.to_payload(), "pdfUrl": url}

    def stream(
        self,
        worksheet_id: Optional[str],
        *,
        range_header: Optional[str] = None,
        page_index: Optional[int] = None,
        user_id: Optional[str] = None,
        head_only: bool = False,
    ) -> StreamResult:
        worksheet_id = validate_id(worksheet_id, "Worksheet ID")
        if not self._catalog.exists(worksheet_id):
            raise NotFoundError("Worksheet not found", details=f"No worksheet found with ID: {worksheet_id}")

        ref = self._store.resolve(worksheet_id, page_index=page_index, owner_id=user_id)
        headers = {
            "Content-Type": "application/pdf",
            "Accept-Ranges": "bytes",
            "Cache-Control": "public, max-age=3600",
            "ETag": f'"{worksheet_id}-{ref.size}"',
        }

        if range_header and ref.size > 0:
            span = parse_range_header(range_header, ref.size)
            if span is None:
                raise RangeNotSatisfiableError("Invalid range", size=ref.size)
            start, end = span
            body = b"" if head_only else self._store.read_range(ref, start, end)
            headers["Content-Length"] = str(end - start + 1)
            headers["Content-Range"] = f"bytes {start}-{end}/{ref.size}"
            self._audit(user_id, ref, "range")
            return StreamResult(status=206, headers=headers, body=body)

        body = b"" if head_only else self._store.read(ref)
        headers["Content-Length"] = str(ref.size or len(body))
        self._audit(user_id, ref, "stream")
        return StreamResult(status=200, headers=headers, body=body)

    def secrets_status(self) -> Dict[str, Any]:
        ready = self._config.page_key is not None
        return {
            "secrets": {"PAGE_ENCRYPTION_KEY": "Set" if ready else "Missing"},
            "status": "Ready" if ready else "Needs Configuration",
            "instructions": (
                "All secrets are configured!"
                if ready
                else "Please set page_encryption_key under PARAM_PREFIX in SSM Parameter Store"
            ),
        }

    def test_encryption(self) -> Dict[str, Any]:
        # Imported here: the viewer package is the decrypting side
        from viewer.opener import PageOpener

        key = self._config.require_page_key()
        sample = b"Test PDF data"
        ciphertext, iv = self._sealer_factory(key).seal(sample)
        opened = PageOpener(key).open(ciphertext, iv)
        return {
            "success": opened == sample,
            "message": "Encryption/decryption test completed successfully",
        }

    # --------------- Internal ---------------
    def _audit(self, requester: Optional[str], ref: AssetRef, channel: str) -> None:
        audit_logger.info(
            "asset_access requester=%s asset=%s channel=%s at=%s",
            requester or "anonymous",
            ref.key,
            channel,
            self._clock(),
        )


# --------------- Lambda plumbing ---------------
def _response(status: int, body: Any, *, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {**CORS_HEADERS, "Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(body),
    }


def _error_response(err: WorksheetError) -> Dict[str, Any]:
    extra: Dict[str, str] = {}
    if isinstance(err, RangeNotSatisfiableError):
        extra["Content-Range"] = f"bytes */{err.size}"
    return _response(err.status, err.to_payload(), headers=extra)


def _method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = (event.get("requestContext") or {}).get("http", {}).get("method")
    return str(method or "POST").upper()


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError as ex:
        raise BadRequestError("Request body must be JSON") from ex
    if not isinstance(data, dict):
        raise BadRequestError("Request body must be a JSON object")
    return data


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    headers = event.get("headers") or {}
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


def _build_service(*, require_key: bool) -> ContentService:
    config = ServiceConfig.from_env(require_key=require_key)
    store = S3AssetStore(bucket=config.bucket)
    return ContentService(config=config, store=store)


def _dispatch(event: Dict[str, Any], fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
    if _method(event) == "OPTIONS":
        return {"statusCode": 200, "headers": dict(CORS_HEADERS), "body": "ok"}
    try:
        return fn(event)
    except ConfigurationError as err:
        logger.error("Configuration error: %s", err.message)
        return _error_response(err)
    except WorksheetError as err:
        if err.status >= 500:
            logger.error("Request failed: %s (%s)", err.message, err.details)
        else:
            logger.info("Request rejected: %s", err.message)
        return _error_response(err)
    except Exception:
        logger.exception("Unexpected error in content handler")
        return _response(500, {"error": "Internal server error"})


def encrypted_worksheet_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """`{worksheetId, userId, pageIndex?}` → `{encryptedPdf, iv, meta?, encrypted?}`."""

    def run(ev: Dict[str, Any]) -> Dict[str, Any]:
        body = _json_body(ev)
        service = _build_service(require_key=True)
        result = service.encrypted_content(
            body.get("worksheetId"),
            body.get("userId"),
            page_index=_parse_page_index(body.get("pageIndex")),
            include_meta=bool(body.get("includeMeta", True)),
        )
        return _response(200, result)

    return _dispatch(event, run)


def worksheet_data_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """`{worksheetId, pageIndex?}` → `{meta, pdfUrl}`."""

    def run(ev: Dict[str, Any]) -> Dict[str, Any]:
        body = _json_body(ev)
        service = _build_service(require_key=False)
        result = service.plain_content(
            body.get("worksheetId"),
            page_index=_parse_page_index(body.get("pageIndex")),
            user_id=body.get("userId"),
        )
        return _response(200, result)

    return _dispatch(event, run)


def stream_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """`GET ?id=&page=` with optional `Range` header → raw PDF bytes."""

    def run(ev: Dict[str, Any]) -> Dict[str, Any]:
        method = _method(ev)
        if method not in ("GET", "HEAD"):
            return _response(405, {"error": "Method not allowed"})
        params = ev.get("queryStringParameters") or {}
        service = _build_service(require_key=False)
        result = service.stream(
            params.get("id"),
            range_header=_header(ev, "range"),
            page_index=_parse_page_index(params.get("page")),
            head_only=method == "HEAD",
        )
        return {
            "statusCode": result.status,
            "headers": {**CORS_HEADERS, **result.headers},
            "body": base64.b64encode(result.body).decode("ascii"),
            "isBase64Encoded": True,
        }

    return _dispatch(event, run)


def setup_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Operator self-check: `{action: "check-secrets" | "test-encryption"}`."""

    def run(ev: Dict[str, Any]) -> Dict[str, Any]:
        action = _json_body(ev).get("action")
        service = _build_service(require_key=False)
        if action == "check-secrets":
            return _response(200, service.secrets_status())
        if action == "test-encryption":
            try:
                return _response(200, service.test_encryption())
            except ConfigurationError:
                return _response(400, {"error": "PAGE_ENCRYPTION_KEY not found"})
        return _response(400, {"error": "Invalid action"})

    return _dispatch(event, run)


__all__ = [
    "CORS_HEADERS",
    "ContentService",
    "StreamResult",
    "encrypted_worksheet_handler",
    "parse_range_header",
    "setup_handler",
    "stream_handler",
    "worksheet_data_handler",
]
