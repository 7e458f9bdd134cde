from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

from common.errors import NotFoundError, WorksheetError

from .models import GuidedWorksheet, Region, RegionWorksheet, parse_worksheet_meta
from .s3_store import S3AssetStore


logger = logging.getLogger(__name__)


class RepositoryUnavailable(RuntimeError):
    """The relational store cannot serve this query (e.g. tables not migrated)."""


class WorksheetRepository(Protocol):
    """Read API of the relational store (rows as plain dicts)."""

    def fetch_worksheet(self, worksheet_id: str) -> Optional[Dict[str, Any]]:
        ...

    def fetch_regions(self, worksheet_id: str) -> List[Dict[str, Any]]:
        ...


def _row_to_payload(row: Dict[str, Any], regions: List[Dict[str, Any]]) -> Dict[str, Any]:
    ordered = sorted(regions, key=lambda r: int(r.get("page") or 0))
    return {
        "mode": "regions",
        "documentName": row.get("document_name") or "",
        "documentId": row.get("document_id") or "",
        "drmProtectedPages": row.get("drm_protected_pages") or [],
        "drmProtected": bool(row.get("drm_protected") or False),
        "regions": ordered,
    }


class WorksheetCatalog:
    """
    Worksheet metadata lookup: database first, static JSON second.

    - With a repository configured, rows are read from it. When it raises
      `RepositoryUnavailable` the static file is used instead.
    - Without a repository, metadata comes from `{prefix}{worksheetId}.json`
      in the asset bucket.
    - Unknown worksheet → `NotFoundError`; malformed payload → `WorksheetError`.
    """

    def __init__(
        self,
        *,
        store: S3AssetStore,
        repository: Optional[WorksheetRepository] = None,
        static_prefix: str = "data/",
    ) -> None:
        self._store = store
        self._repo = repository
        self._prefix = static_prefix

    def static_key(self, worksheet_id: str) -> str:
        return f"{self._prefix}{worksheet_id}.json"

    def load(self, worksheet_id: str) -> Union[RegionWorksheet, GuidedWorksheet]:
        raw: Optional[Dict[str, Any]] = None
        if self._repo is not None:
            try:
                row = self._repo.fetch_worksheet(worksheet_id)
                if row is None:
                    raise NotFoundError("Worksheet not found", details=f"No worksheet found with ID: {worksheet_id}")
                raw = _row_to_payload(row, self._repo.fetch_regions(worksheet_id))
            except RepositoryUnavailable as ex:
                logger.warning("Worksheet tables unavailable (%s); using static metadata", ex)
                raw = None

        if raw is None:
            raw = self._store.get_json(self.static_key(worksheet_id))

        try:
            return parse_worksheet_meta(raw)
        except (ValidationError, TypeError) as ex:
            raise WorksheetError("Invalid worksheet metadata", details=str(ex)) from ex

    def exists(self, worksheet_id: str) -> bool:
        try:
            self.load(worksheet_id)
        except NotFoundError:
            return False
        return True

    def regions_for_page(self, worksheet_id: str, page: int) -> List[Region]:
        meta = self.load(worksheet_id)
        if isinstance(meta, RegionWorksheet):
            return meta.regions_for_page(page)
        return []


__all__ = [
    "RepositoryUnavailable",
    "WorksheetCatalog",
    "WorksheetRepository",
]
