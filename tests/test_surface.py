import numpy as np
import pytest

from surface import Surface, StampBuffer


def test_disc_stamp_paints_premultiplied_colour():
    surface = Surface(20, 20)
    stamps = StampBuffer()
    stamps.disc(5.0, 5.0, 2.0, (255, 0, 0), 1.0)
    surface.composite(stamps)
    assert surface.pixels[5, 5] == pytest.approx([1.0, 0.0, 0.0, 1.0])
    assert surface.pixels[15, 15, 3] == 0.0
    assert stamps.count == 0


def test_stamps_composite_source_over_in_order():
    surface = Surface(10, 10)
    stamps = StampBuffer()
    stamps.disc(5.0, 5.0, 1.0, (255, 0, 0), 0.5)
    stamps.disc(5.0, 5.0, 1.0, (0, 0, 255), 0.5)
    surface.composite(stamps)
    r, g, b, a = surface.pixels[5, 5]
    assert a == pytest.approx(0.75)
    assert b == pytest.approx(0.5)
    assert r == pytest.approx(0.25)


def test_capsule_stamp_covers_segment():
    surface = Surface(40, 10)
    stamps = StampBuffer()
    stamps.push(5.0, 5.0, 35.0, 5.0, 1.5, (0, 255, 0), 1.0)
    surface.composite(stamps)
    assert surface.pixels[5, 5:35, 3].min() == pytest.approx(1.0)
    assert surface.pixels[0, 20, 3] == 0.0


def test_out_of_bounds_stamp_is_clipped():
    surface = Surface(10, 10)
    stamps = StampBuffer()
    stamps.disc(-50.0, -50.0, 5.0, (255, 255, 255))
    stamps.disc(0.0, 0.0, 2.0, (255, 255, 255))
    surface.composite(stamps)
    assert surface.pixels[0, 0, 3] == pytest.approx(1.0)


def test_stamp_buffer_grows():
    stamps = StampBuffer(1)
    for i in range(5):
        stamps.disc(i, i, 1.0, (1, 2, 3))
    assert stamps.count == 5
    assert stamps.data.shape[0] >= 5
    assert stamps.data[4, 0] == 4


def test_resize_stretches_paint_and_resets_wetness():
    surface = Surface(10, 10)
    stamps = StampBuffer()
    stamps.disc(5.0, 5.0, 1.0, (255, 0, 0))
    surface.composite(stamps)
    surface.wetness[5, 5] = 200
    surface.resize(20, 20)
    assert surface.pixels.shape == (20, 20, 4)
    assert surface.pixels[10, 10, 3] == pytest.approx(1.0)
    assert surface.wetness.shape == (20, 20)
    assert surface.wetness.max() == 0


def test_to_rgba_unpremultiplies():
    surface = Surface(4, 4)
    surface.pixels[1, 1] = (0.5, 0.0, 0.0, 0.5)
    rgba = surface.to_rgba()
    assert tuple(rgba[1, 1]) == (255, 0, 0, 127)
    assert tuple(rgba[0, 0]) == (0, 0, 0, 0)


def test_composite_over_background():
    surface = Surface(2, 2)
    surface.pixels[0, 0] = (1.0, 0.0, 0.0, 1.0)
    rgb = surface.composite_over((0, 0, 255))
    assert tuple(rgb[0, 0]) == (255, 0, 0)
    assert tuple(rgb[1, 1]) == (0, 0, 255)
