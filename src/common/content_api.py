from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx

from .errors import BadRequestError, FallbackRequired, NetworkError, NotFoundError, WorksheetError


ENCRYPTED_PATH = "/get-encrypted-worksheet"
WORKSHEET_DATA_PATH = "/get-worksheet-data"

_RETRYABLE_STATUS = (429, 502, 503, 504)


class ContentApiClient:
    """
    Client for the content functions (encrypted and plain page delivery).

    Notes
    - JSON request bodies; `apikey` and bearer headers when an API key is set.
    - Transport errors, timeouts, 429, 502, 503 and 504 are retried with
      exponential backoff; exhausting the attempts raises `NetworkError`.
    - 404 → `NotFoundError`, 400 → `BadRequestError`, 501 with
      `{fallback: true}` → `FallbackRequired`. Any other status, 500
      included, is a non-retryable `WorksheetError` with the server's message.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        max_attempts: int = 4,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._sleep = sleep
        headers: Dict[str, str] = {}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=self._base_url, timeout=self._timeout, headers=headers)
        if client is not None and headers:
            self._client.headers.update(headers)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ContentApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def get_encrypted_worksheet(
        self,
        worksheet_id: str,
        *,
        user_id: Optional[str] = None,
        page_index: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Returns `{encryptedPdf, iv, meta?, encrypted?}`."""
        body: Dict[str, Any] = {"worksheetId": worksheet_id}
        if user_id is not None:
            body["userId"] = user_id
        if page_index is not None:
            body["pageIndex"] = page_index
        data = self._request_json("POST", self._url(ENCRYPTED_PATH), body)
        if not isinstance(data.get("encryptedPdf"), str) or not isinstance(data.get("iv"), str):
            raise WorksheetError("Malformed encrypted content response")
        return data

    def get_worksheet_data(self, worksheet_id: str, *, page_index: Optional[int] = None) -> Dict[str, Any]:
        """Returns `{meta, pdfUrl}`."""
        body: Dict[str, Any] = {"worksheetId": worksheet_id}
        if page_index is not None:
            body["pageIndex"] = page_index
        data = self._request_json("POST", self._url(WORKSHEET_DATA_PATH), body)
        if not isinstance(data.get("meta"), dict):
            raise WorksheetError("Malformed worksheet data response")
        return data

    def download(self, url: str) -> bytes:
        """Fetch raw bytes (e.g. a signed asset URL)."""
        resp = self._send("GET", url, None)
        return resp.content

    # --------------- Internal ---------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _request_json(self, method: str, url: str, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        resp = self._send(method, url, body)
        try:
            data = resp.json()
        except ValueError as exc:
            raise WorksheetError("Failed to parse JSON from content API") from exc
        if not isinstance(data, dict):
            raise WorksheetError("Content API returned a non-object payload")
        return data

    def _send(self, method: str, url: str, body: Optional[Dict[str, Any]]) -> httpx.Response:
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.request(method, url, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if 200 <= resp.status_code < 300:
                    return resp
                if resp.status_code in _RETRYABLE_STATUS:
                    last_exc = WorksheetError(
                        f"HTTP {resp.status_code} from content API",
                        details=_error_text(resp),
                    )
                else:
                    raise _status_error(resp)

            attempt += 1
            if attempt < self._max_attempts:
                self._sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        raise NetworkError("Content request failed after retries", details=str(last_exc)) from last_exc


def _error_body(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _error_text(resp: httpx.Response) -> str:
    body = _error_body(resp)
    if body is not None and isinstance(body.get("error"), str):
        return body["error"]
    return resp.text[:200]


def _status_error(resp: httpx.Response) -> WorksheetError:
    text = _error_text(resp)
    if resp.status_code == 404:
        return NotFoundError(text or "Not found")
    if resp.status_code == 400:
        return BadRequestError(text or "Bad request")
    if resp.status_code == 501 and (_error_body(resp) or {}).get("fallback") is True:
        return FallbackRequired(text or "Encrypted delivery unavailable")
    if text:
        return WorksheetError(text, details=f"HTTP {resp.status_code} from content API")
    return WorksheetError(f"HTTP {resp.status_code} from content API")


__all__ = ["ContentApiClient", "ENCRYPTED_PATH", "WORKSHEET_DATA_PATH"]
