from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from store.models import Region

from .layout import LayoutTransform, Rect


@dataclass(frozen=True)
class ClearWindow:
    """
    One unblurred copy of the page, clipped to a region.

    `clip` is the window in container coordinates. Inside it the full page
    (`content_width` x `content_height`) is drawn shifted by
    `(content_left, content_top)` so the region's pixels line up exactly with
    the blurred page underneath.
    """

    region_id: str
    clip: Rect
    content_left: float
    content_top: float
    content_width: float
    content_height: float


@dataclass(frozen=True)
class OverlayPlan:
    transform: LayoutTransform
    base: Rect
    blurred: bool
    windows: List[ClearWindow]


def compose(
    regions: Sequence[Region],
    transform: LayoutTransform,
    natural_width: float,
    natural_height: float,
    *,
    protected: bool,
) -> OverlayPlan:
    """Build the blurred base layer and its clear windows from one transform.

    Purely cosmetic: the full page bytes are already on the client.
    """
    page_w, page_h = transform.scale(natural_width, natural_height)
    base = Rect(left=transform.offset_left, top=transform.offset_top, width=page_w, height=page_h)
    if not protected:
        return OverlayPlan(transform=transform, base=base, blurred=False, windows=[])

    windows: List[ClearWindow] = []
    for region in regions:
        clip = transform.place(region.x, region.y, region.width, region.height)
        windows.append(
            ClearWindow(
                region_id=region.id,
                clip=clip,
                content_left=-region.x * transform.scale_factor,
                content_top=-region.y * transform.scale_factor,
                content_width=page_w,
                content_height=page_h,
            )
        )
    return OverlayPlan(transform=transform, base=base, blurred=True, windows=windows)


def hit_regions(regions: Sequence[Region], transform: LayoutTransform) -> List[tuple[Region, Rect]]:
    """Clickable rects for each region, from the same transform as the overlay."""
    return [(r, transform.place(r.x, r.y, r.width, r.height)) for r in regions]


def region_at(
    regions: Sequence[Region], transform: LayoutTransform, x: float, y: float
) -> Optional[Region]:
    """Topmost region under a container-relative point (later regions win)."""
    hit: Optional[Region] = None
    for region, rect in hit_regions(regions, transform):
        if rect.left <= x < rect.left + rect.width and rect.top <= y < rect.top + rect.height:
            hit = region
    return hit


__all__ = ["ClearWindow", "OverlayPlan", "compose", "hit_regions", "region_at"]
