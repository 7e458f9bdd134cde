from __future__ import annotations

from typing import Any, Dict, Optional


class WorksheetError(RuntimeError):
    """Base error for worksheet delivery and playback.

    Subclasses set `status` (HTTP status used when the error crosses a handler
    boundary) and `retryable` (whether a user-facing retry action makes sense).
    """

    status: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(WorksheetError):
    """A required secret or setting is missing. Operator-facing."""

    status = 500


class BadRequestError(WorksheetError):
    """Request payload failed validation."""

    status = 400


class NotFoundError(WorksheetError):
    """Asset, region or document is absent."""

    status = 404
    retryable = True


class RangeNotSatisfiableError(WorksheetError):
    """Requested byte range lies outside the asset."""

    status = 416

    def __init__(self, message: str, *, size: int) -> None:
        super().__init__(message)
        self.size = size


class IntegrityError(WorksheetError):
    """Authentication tag check failed (tampering or wrong key).

    Fatal for the request; no partial plaintext is ever returned.
    """

    status = 500


class NetworkError(WorksheetError):
    """Transient transport failure that survived the bounded retries."""

    status = 503
    retryable = True


class FallbackRequired(WorksheetError):
    """Encrypted delivery is unavailable; the plain request path should be used."""

    status = 501


class PlaybackError(WorksheetError):
    """Audio or video failed to load or play. The session continues silently."""

    status = 500
    retryable = True


__all__ = [
    "WorksheetError",
    "ConfigurationError",
    "BadRequestError",
    "NotFoundError",
    "RangeNotSatisfiableError",
    "IntegrityError",
    "NetworkError",
    "FallbackRequired",
    "PlaybackError",
]
