# u1heatbath/visualize.py
# =============================================================================
# EN: Render link / plaquette phases of a lattice slice as SVG or TikZ.
# JA: 格子の断面のリンク・プラークエット位相を SVG / TikZ で描画する。
# =============================================================================

from typing import List, Tuple

import math

from .gauge_field import U1GaugeField

TWO_PI = 2.0 * math.pi
_SEGMENT = math.pi / 3.0  # one hue segment


def wrap_phase(phi: float) -> float:
    """Wrap an angle into [0, 2π)."""
    phi = math.fmod(phi, TWO_PI)
    if phi < 0.0:
        phi += TWO_PI
    # fmod of a tiny negative number can land exactly on 2π
    return 0.0 if phi >= TWO_PI else phi


def phase_to_rgb(phi: float) -> Tuple[int, int, int]:
    r"""
    EN: Map a phase in [0, 2π] to RGB on a 6-segment hue wheel
        (red → yellow → green → cyan → blue → magenta → red); each segment
        spans π/3 and ramps one channel linearly. Anything off the wheel
        is black.
    JA: [0, 2π] の位相を6分割の色相環で RGB に変換する。範囲外は黒。
    """
    d = _SEGMENT

    def ramp(start: float) -> int:
        return int((phi - start) * 255.0 / d)

    if 0.0 <= phi <= d:
        return (255, ramp(0.0), 0)
    if d < phi <= 2.0 * d:
        return (255 - ramp(d), 255, 0)
    if 2.0 * d < phi <= 3.0 * d:
        return (0, 255, ramp(2.0 * d))
    if 3.0 * d < phi <= 4.0 * d:
        return (0, 255 - ramp(3.0 * d), 255)
    if 4.0 * d < phi <= 5.0 * d:
        return (ramp(4.0 * d), 0, 255)
    if 5.0 * d < phi <= 6.0 * d:
        return (255, 0, 255 - ramp(5.0 * d))
    return (0, 0, 0)


def _plane_plaquettes(field: U1GaugeField) -> List[Tuple[int, int, float]]:
    """(i, j, wrapped (0,1)-plaquette phase) on the plane k = l = W//2."""
    lat = field.lat
    W = lat.W
    p = W // 2
    out = []
    for i in range(W):
        for j in range(W):
            site = lat.site_index(i, j, p, p)
            out.append((i, j, wrap_phase(field.plaquette(site, 0, 1))))
    return out


# -----------------------------------------------------------------------------
# SVG
# -----------------------------------------------------------------------------
def plaquette_plane_svg(field: U1GaugeField, cell: int = 50, margin: int = 10) -> str:
    """
    EN: SVG of the (0,1) plaquettes of the plane k = l = W//2, one colored
        square per plaquette plus a dot per site.
    JA: k = l = W//2 平面の (0,1) プラークエットを色付き正方形で描いた SVG。
    """
    W = field.width
    size = cell * W + 2 * margin
    lines = [f'<svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}">']
    for i, j, phi in _plane_plaquettes(field):
        r, g, b = phase_to_rgb(phi)
        lines.append(
            f'<rect x="{i * cell + margin}" y="{j * cell + margin}" '
            f'width="{cell}" height="{cell}" fill="#{r:02X}{g:02X}{b:02X}"/>'
        )
    for i in range(W):
        for j in range(W):
            lines.append(
                f'<circle cx="{i * cell + margin}" cy="{j * cell + margin}" r="5" fill="#FFFFFF"/>'
            )
    lines.append("</svg>")
    return "\n".join(lines) + "\n"


def write_svg(field: U1GaugeField, path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(plaquette_plane_svg(field))
    return path


# -----------------------------------------------------------------------------
# TikZ
# -----------------------------------------------------------------------------
def plaquette_plane_tikz(field: U1GaugeField) -> str:
    """TikZ picture of the same plaquette plane as plaquette_plane_svg."""
    W = field.width
    lines = ["\\begin{tikzpicture}"]
    for i, j, phi in _plane_plaquettes(field):
        r, g, b = phase_to_rgb(phi)
        lines.append(f"\\definecolor{{color{i}{j}}}{{RGB}}{{{r},{g},{b}}} ;")
        lines.append(f"\\fill[color{i}{j}] ({i},{j}) rectangle ({i + 1},{j + 1}) ;")
    for i in range(W):
        for j in range(W):
            lines.append(f"\\filldraw[black] ({i},{j}) circle (2pt) ;")
    lines.append("\\end{tikzpicture}")
    return "\n".join(lines) + "\n"


def links_3d_tikz(field: U1GaugeField) -> str:
    r"""
    EN: tikz-3dplot drawing of the axis-0/1/2 links of the 3D slice l = W//2;
        each link is colored by its wrapped phase.
    JA: l = W//2 の3次元断面について、0/1/2 方向のリンクを位相で色付けして描く。
    """
    lat = field.lat
    W = lat.W
    p = W // 2
    lines = ["\\tdplotsetmaincoords{22}{22}", "\\begin{tikzpicture}[tdplot_main_coords]"]
    for i in range(W):
        for j in range(W):
            for k in range(W):
                site = lat.site_index(i, j, k, p)
                lines.append(f"\\filldraw[black] ({i},{j},{k}) circle (2pt) ;")
                ends = ((i + 1, j, k), (i, j + 1, k), (i, j, k + 1))
                for axis, end in enumerate(ends):
                    r, g, b = phase_to_rgb(wrap_phase(field.angle(site, axis)))
                    name = f"color{i}{j}{k}{axis + 1}"
                    lines.append(f"\\definecolor{{{name}}}{{RGB}}{{{r},{g},{b}}} ;")
                    lines.append(
                        f"\\draw[{name}, thick] ({i},{j},{k}) -- ({end[0]},{end[1]},{end[2]}) ;"
                    )
    lines.append("\\end{tikzpicture}")
    return "\n".join(lines) + "\n"
