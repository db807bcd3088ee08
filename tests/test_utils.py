import math

from utils import hex_to_rgb, clamp, clamp_parameter, FALLBACK_RGB


def test_hex_to_rgb_long_and_short_forms():
    assert hex_to_rgb('#7a0000') == (122, 0, 0)
    assert hex_to_rgb('#abc') == (170, 187, 204)
    assert hex_to_rgb('2b95ff') == (43, 149, 255)


def test_hex_to_rgb_falls_back_to_red():
    assert hex_to_rgb('#12345') == FALLBACK_RGB
    assert hex_to_rgb('#gggggg') == FALLBACK_RGB
    assert hex_to_rgb(None) == FALLBACK_RGB


def test_clamp():
    assert clamp(5, 0, 1) == 1
    assert clamp(-5, 0, 1) == 0
    assert clamp(0.5, 0, 1) == 0.5


def test_clamp_parameter_ranges():
    assert clamp_parameter('viscosity', 2.0, 0.2) == 1.0
    assert clamp_parameter('viscosity', -1, 0.2) == 0.0
    assert clamp_parameter('density', '75', 50.0) == 75.0


def test_clamp_parameter_integer_range():
    value = clamp_parameter('substeps', 3.7, 3)
    assert value == 3
    assert isinstance(value, int)
    assert clamp_parameter('substeps', 0, 3) == 1


def test_clamp_parameter_keeps_current_for_junk():
    assert clamp_parameter('viscosity', 'thick', 0.2) == 0.2
    assert clamp_parameter('viscosity', None, 0.2) == 0.2
    assert clamp_parameter('viscosity', math.nan, 0.2) == 0.2


def test_clamp_parameter_unknown_name_is_unbounded():
    assert clamp_parameter('anything', 1e9, 0.0) == 1e9
