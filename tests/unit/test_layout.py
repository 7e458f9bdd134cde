from __future__ import annotations

import pytest

from viewer.layout import LayoutMapper, LayoutTransform, Rect, recompute


CONTAINER = Rect(left=10.0, top=20.0, width=600.0, height=900.0)


def test_half_scale_maps_stored_region():
    rendered = Rect(left=30.0, top=60.0, width=400.0, height=500.0)
    t = recompute(800, 1000, rendered, CONTAINER)

    assert t.scale_factor == 0.5
    assert (t.offset_left, t.offset_top) == (20.0, 40.0)

    placed = t.place(100, 100, 50, 50)
    assert placed == Rect(left=50.0 + 20.0, top=50.0 + 40.0, width=25.0, height=25.0)


def test_offset_is_zero_when_page_fills_container():
    t = recompute(800, 1000, CONTAINER, CONTAINER)
    assert t.scale_factor == pytest.approx(0.75)
    assert t.place(0, 0, 800, 1000) == Rect(left=0.0, top=0.0, width=600.0, height=750.0)


@pytest.mark.parametrize("w,h", [(0, 100), (100, 0), (-1, 5)])
def test_non_positive_natural_size_rejected(w, h):
    with pytest.raises(ValueError):
        recompute(w, h, CONTAINER, CONTAINER)


def test_mapper_recomputes_on_every_trigger_and_notifies():
    mapper = LayoutMapper()
    seen: list[LayoutTransform] = []
    unsubscribe = mapper.subscribe(seen.append)

    assert mapper.transform is None
    assert mapper.resized(CONTAINER, CONTAINER) is None  # nothing loaded yet

    mapper.page_loaded(800, 1000, Rect(10, 20, 400, 500), CONTAINER)
    assert mapper.transform is not None and mapper.transform.scale_factor == 0.5

    mapper.resized(Rect(10, 20, 800, 1000), CONTAINER)
    assert mapper.transform.scale_factor == 1.0

    mapper.pixel_ratio_changed(2.0, Rect(10, 20, 200, 250), CONTAINER)
    assert mapper.transform.scale_factor == 0.25
    assert mapper.pixel_ratio == 2.0

    assert [s.scale_factor for s in seen] == [0.5, 1.0, 0.25]

    unsubscribe()
    mapper.resized(Rect(10, 20, 400, 500), CONTAINER)
    assert len(seen) == 3


def test_mapper_reset_forgets_page():
    mapper = LayoutMapper()
    mapper.page_loaded(800, 1000, Rect(10, 20, 400, 500), CONTAINER)
    mapper.reset()
    assert mapper.transform is None
    assert mapper.natural_size is None
    assert mapper.resized(CONTAINER, CONTAINER) is None
