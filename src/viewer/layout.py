from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class LayoutTransform:
    """Maps natural page coordinates onto the rendered surface."""

    scale_factor: float
    offset_top: float
    offset_left: float

    def place(self, x: float, y: float, width: float, height: float) -> Rect:
        """Screen rect of a natural-coordinate box: `position * scale + offset`."""
        return Rect(
            left=x * self.scale_factor + self.offset_left,
            top=y * self.scale_factor + self.offset_top,
            width=width * self.scale_factor,
            height=height * self.scale_factor,
        )

    def scale(self, width: float, height: float) -> tuple[float, float]:
        return width * self.scale_factor, height * self.scale_factor


def recompute(
    natural_width: float,
    natural_height: float,
    rendered_rect: Rect,
    container_rect: Rect,
) -> LayoutTransform:
    """Transform between stored (natural) coordinates and the rendered page.

    `scale_factor = rendered.width / natural_width` and the offset is the
    rendered page's top-left relative to its container.
    """
    if natural_width <= 0 or natural_height <= 0:
        raise ValueError("natural dimensions must be positive")
    return LayoutTransform(
        scale_factor=rendered_rect.width / natural_width,
        offset_top=rendered_rect.top - container_rect.top,
        offset_left=rendered_rect.left - container_rect.left,
    )


Listener = Callable[[LayoutTransform], None]


class LayoutMapper:
    """
    Owns the current LayoutTransform for one page surface.

    The host reports surface geometry through `page_loaded`, `resized` and
    `pixel_ratio_changed`; each recomputes and notifies listeners. Until a page
    with known natural size has been measured, `transform` is None.
    """

    def __init__(self) -> None:
        self._natural: Optional[tuple[float, float]] = None
        self._rendered: Optional[Rect] = None
        self._container: Optional[Rect] = None
        self._pixel_ratio = 1.0
        self._transform: Optional[LayoutTransform] = None
        self._listeners: List[Listener] = []

    @property
    def transform(self) -> Optional[LayoutTransform]:
        return self._transform

    @property
    def natural_size(self) -> Optional[tuple[float, float]]:
        return self._natural

    @property
    def pixel_ratio(self) -> float:
        return self._pixel_ratio

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def page_loaded(self, natural_width: float, natural_height: float, rendered: Rect, container: Rect) -> LayoutTransform:
        self._natural = (natural_width, natural_height)
        return self._update(rendered, container, reason="page")

    def resized(self, rendered: Rect, container: Rect) -> Optional[LayoutTransform]:
        if self._natural is None:
            return None
        return self._update(rendered, container, reason="resize")

    def pixel_ratio_changed(self, ratio: float, rendered: Rect, container: Rect) -> Optional[LayoutTransform]:
        self._pixel_ratio = ratio
        if self._natural is None:
            return None
        return self._update(rendered, container, reason="pixel-ratio")

    def reset(self) -> None:
        """Forget the page (navigation); listeners stay subscribed."""
        self._natural = None
        self._rendered = None
        self._container = None
        self._transform = None

    def _update(self, rendered: Rect, container: Rect, *, reason: str) -> LayoutTransform:
        assert self._natural is not None
        self._rendered = rendered
        self._container = container
        nw, nh = self._natural
        self._transform = recompute(nw, nh, rendered, container)
        logger.debug(
            "Layout recomputed (%s): scale=%s top=%s left=%s",
            reason,
            self._transform.scale_factor,
            self._transform.offset_top,
            self._transform.offset_left,
        )
        for listener in list(self._listeners):
            listener(self._transform)
        return self._transform


__all__ = ["LayoutMapper", "LayoutTransform", "Rect", "recompute"]
