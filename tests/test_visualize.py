"""Phase colouring and SVG / TikZ rendering."""

import math

import pytest

from u1heatbath.gauge_field import U1GaugeField
from u1heatbath.random_source import RandomSource
from u1heatbath.visualize import (
    links_3d_tikz, phase_to_rgb, plaquette_plane_svg, plaquette_plane_tikz, wrap_phase, write_svg,
)


class TestPhaseColor:

    def test_wrap_phase(self):
        assert wrap_phase(0.0) == 0.0
        assert wrap_phase(-0.5) == pytest.approx(2 * math.pi - 0.5)
        assert wrap_phase(2 * math.pi + 0.25) == pytest.approx(0.25)
        for phi in (-7.0, -1e-18, 3.0, 13.0):
            assert 0.0 <= wrap_phase(phi) < 2 * math.pi

    def test_segment_colors(self):
        d = math.pi / 3
        assert phase_to_rgb(0.0) == (255, 0, 0)
        assert phase_to_rgb(0.5 * d) == (255, 127, 0)
        assert phase_to_rgb(1.5 * d)[1:] == (255, 0)
        assert phase_to_rgb(2.5 * d)[:2] == (0, 255)
        assert phase_to_rgb(3.5 * d)[::2] == (0, 255)
        assert phase_to_rgb(4.5 * d)[1:] == (0, 255)
        assert phase_to_rgb(5.5 * d)[:2] == (255, 0)

    def test_off_wheel_is_black(self):
        assert phase_to_rgb(-0.1) == (0, 0, 0)
        assert phase_to_rgb(7.0) == (0, 0, 0)

    def test_channels_in_range(self):
        for n in range(629):
            rgb = phase_to_rgb(n * 0.01)
            assert all(0 <= c <= 255 for c in rgb)


class TestRendering:

    def test_svg_uniform_field(self):
        f = U1GaugeField.create_uniform(4)
        svg = plaquette_plane_svg(f)
        assert svg.startswith('<svg xmlns="http://www.w3.org/2000/svg" width="220" height="220">')
        assert svg.rstrip().endswith("</svg>")
        assert svg.count("<rect") == 16
        assert svg.count('fill="#FF0000"') == 16
        assert svg.count("<circle") == 16
        assert 'x="160" y="160"' in svg

    def test_write_svg(self, tmp_path):
        f = U1GaugeField.create_random(2, RandomSource(3))
        path = write_svg(f, str(tmp_path / "plane.svg"))
        text = (tmp_path / "plane.svg").read_text(encoding="utf-8")
        assert path.endswith("plane.svg")
        assert text == plaquette_plane_svg(f)

    def test_tikz_plane(self):
        f = U1GaugeField.create_uniform(3)
        tikz = plaquette_plane_tikz(f)
        assert tikz.startswith("\\begin{tikzpicture}")
        assert tikz.count("\\fill[") == 9
        assert tikz.count("\\filldraw[black]") == 9
        assert "{RGB}{255,0,0}" in tikz

    def test_tikz_links(self):
        f = U1GaugeField.create_random(2, RandomSource(8))
        tikz = links_3d_tikz(f)
        assert tikz.startswith("\\tdplotsetmaincoords")
        assert tikz.count("\\draw[") == 3 * 2 ** 3
        assert tikz.count("\\filldraw[black]") == 2 ** 3
