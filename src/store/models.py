from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class Region(BaseModel):
    """
    A named, page-positioned hit-box with an ordered narration script.

    Geometry is stored in natural (unscaled) page coordinates. `description`
    holds the narration steps in order; step N pairs with the audio clip
    `{regionName}_{N+1}.mp3`.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    page: int
    x: float
    y: float
    width: float
    height: float
    type: str = "region"
    name: str
    description: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("description", mode="before")
    @classmethod
    def _null_description(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def steps(self) -> List[str]:
        return list(self.description)


class GuidanceItem(BaseModel):
    """A titled narration script without geometry (guided worksheets)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str
    description: str = ""

    @property
    def name(self) -> str:
        return self.title

    @property
    def steps(self) -> List[str]:
        # One step per non-blank line
        return [p for p in self.description.split("\n") if p.strip() != ""]


class GuidedPage(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    page_number: int
    page_description: str = ""
    guidance: List[GuidanceItem] = Field(default_factory=list)


class RegionWorksheet(BaseModel):
    """Worksheet whose narration is attached to regions drawn over page assets."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mode: Literal["regions"] = "regions"
    document_name: str = Field(default="", alias="documentName")
    document_id: str = Field(default="", alias="documentId")
    drm_protected_pages: Union[List[int], bool] = Field(default_factory=list, alias="drmProtectedPages")
    drm_protected: bool = Field(default=False, alias="drmProtected")
    regions: List[Region] = Field(default_factory=list)

    @field_validator("drm_protected_pages", mode="before")
    @classmethod
    def _null_pages(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("drm_protected", mode="before")
    @classmethod
    def _null_flag(cls, v: Any) -> Any:
        return False if v is None else v

    def is_page_protected(self, page: int) -> bool:
        if self.drm_protected:
            return True
        if isinstance(self.drm_protected_pages, bool):
            return self.drm_protected_pages
        return page in self.drm_protected_pages

    def regions_for_page(self, page: int) -> List[Region]:
        return [r for r in self.regions if r.page == page]

    def to_payload(self) -> Dict[str, Any]:
        """JSON shape served to clients (`meta` of the content responses)."""
        return {
            "documentName": self.document_name,
            "documentId": self.document_id,
            "drmProtectedPages": self.drm_protected_pages,
            "drmProtected": self.drm_protected,
            "regions": [r.model_dump() for r in self.regions],
        }


class GuidedWorksheet(BaseModel):
    """Worksheet narrated page by page through titled guidance items."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mode: Literal["auto"] = "auto"
    document_name: str = Field(default="", alias="documentName")
    data: List[GuidedPage] = Field(default_factory=list)

    def page(self, page_number: int) -> Optional[GuidedPage]:
        for p in self.data:
            if p.page_number == page_number:
                return p
        return None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "documentName": self.document_name,
            "data": [p.model_dump() for p in self.data],
        }


WorksheetMeta = Annotated[Union[RegionWorksheet, GuidedWorksheet], Field(discriminator="mode")]

_META_ADAPTER: TypeAdapter[Union[RegionWorksheet, GuidedWorksheet]] = TypeAdapter(WorksheetMeta)


def tag_worksheet_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `raw` carrying an explicit `mode` discriminant.

    Stored payloads predate the discriminant: a guided worksheet is recognised
    by its page-wise `data` list, everything else is region based.
    """
    if "mode" in raw and raw["mode"] in ("regions", "auto"):
        return dict(raw)
    tagged = dict(raw)
    tagged["mode"] = "auto" if isinstance(raw.get("data"), list) else "regions"
    return tagged


def parse_worksheet_meta(raw: Dict[str, Any]) -> Union[RegionWorksheet, GuidedWorksheet]:
    """Validate a raw metadata payload into the tagged union.

    Raises pydantic.ValidationError for malformed payloads.
    """
    if not isinstance(raw, dict):
        raise TypeError("worksheet metadata must be a JSON object")
    return _META_ADAPTER.validate_python(tag_worksheet_payload(raw))


__all__ = [
    "GuidanceItem",
    "GuidedPage",
    "GuidedWorksheet",
    "Region",
    "RegionWorksheet",
    "WorksheetMeta",
    "parse_worksheet_meta",
    "tag_worksheet_payload",
]
