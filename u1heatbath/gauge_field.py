# u1heatbath/gauge_field.py
# =============================================================================
# EN: U(1) link-angle configuration on the 4D periodic lattice.
# JA: 4次元周期格子上の U(1) リンク角度配位。
# =============================================================================

from __future__ import annotations
from typing import Any, Dict

import math
import torch

from .lattice import NDIM, Lattice, average_action, wilson_loop
from .random_source import RandomSource


class U1GaugeField:
    r"""
    EN: Link angles theta_mu(n) in one flat float64 buffer of shape (W^4, 4).
        U_mu(n) = exp(i theta_mu(n)). ``theta`` is a numpy view sharing memory
        with ``links`` and is what the scalar heatbath loop reads and writes.
    JA: リンク角 theta_mu(n) を (W^4, 4) の連続 float64 バッファに保持。
        ``theta`` は ``links`` とメモリを共有する numpy ビューで、
        ヒートバスのスカラーループはこちらを読み書きする。

    Attributes:
        lat:   Lattice geometry
        links: (W^4, 4) float64 tensor
        theta: flat numpy view, index 4*site + axis
    """

    def __init__(self, lat: Lattice, links: torch.Tensor | None = None):
        self.lat = lat
        if links is None:
            links = torch.zeros(lat.volume, NDIM, dtype=torch.float64)
        else:
            links = links.detach().to(dtype=torch.float64, device="cpu").contiguous()
            if tuple(links.shape) != (lat.volume, NDIM):
                raise ValueError(
                    f"links must have shape ({lat.volume}, {NDIM}), got {tuple(links.shape)}"
                )
        self.links = links
        self.theta = self.links.view(-1).numpy()

    # ----- constructors / 生成 -----
    @classmethod
    def create_uniform(cls, width: int) -> "U1GaugeField":
        """Cold start: every angle is 0.0."""
        return cls(Lattice(width))

    @classmethod
    def create_random(cls, width: int, rng: RandomSource) -> "U1GaugeField":
        """Hot start: every angle uniform in [0, 2π)."""
        lat = Lattice(width)
        return cls(lat, rng.uniform_tensor(lat.volume, NDIM) * (2.0 * math.pi))

    @property
    def width(self) -> int:
        return self.lat.W

    # ----- element access / 要素アクセス -----
    def get(self, i: int, j: int, k: int, l: int, axis: int) -> float:
        """Angle of U_axis at (i,j,k,l); coordinates wrap modulo W."""
        return self.angle(self.lat.site_index(i, j, k, l), axis)

    def set(self, i: int, j: int, k: int, l: int, axis: int, value: float) -> None:
        self.set_angle(self.lat.site_index(i, j, k, l), axis, value)

    def angle(self, site: int, axis: int) -> float:
        if not 0 <= axis < NDIM:
            raise ValueError(f"axis must be in [0, {NDIM}), got {axis}")
        return float(self.theta[NDIM * site + axis])

    def set_angle(self, site: int, axis: int, value: float) -> None:
        if not 0 <= axis < NDIM:
            raise ValueError(f"axis must be in [0, {NDIM}), got {axis}")
        self.theta[NDIM * site + axis] = value

    # ----- observables / 観測量 -----
    def plaquette(self, site: int, mu: int, nu: int) -> float:
        """
        EN: Plaquette phase at ``site`` in the (mu, nu) plane.
        JA: サイト ``site`` の (mu, nu) 平面のプラークエット位相。
        """
        th = self.theta
        fwd = self.lat.fwd
        return float(
            th[NDIM * site + mu]
            + th[NDIM * fwd[NDIM * site + mu] + nu]
            - th[NDIM * fwd[NDIM * site + nu] + mu]
            - th[NDIM * site + nu]
        )

    def average_action(self) -> float:
        return average_action(self.links, self.lat)

    def wilson_loop(self, R: int, T: int) -> float:
        return wilson_loop(self.links, self.lat, R, T)

    # ----- gauge transforms / ゲージ変換 -----
    def shift(self, constant: float) -> None:
        """Add a global constant to every link angle (in place)."""
        self.links += constant

    def random_gauge_transform(self, rng: RandomSource) -> None:
        r"""
        EN: Local gauge transform theta_mu(n) -> theta_mu(n) + lam(n) - lam(n+mu)
            with lam(n) uniform in [0, 2π). Plaquettes are unchanged mod 2π.
        JA: 局所ゲージ変換。lam(n) は [0, 2π) の一様乱数。
        """
        lam = rng.uniform_tensor(self.lat.volume) * (2.0 * math.pi)
        fwd = torch.tensor(self.lat.fwd, dtype=torch.long).view(-1, NDIM)
        self.links += lam[:, None] - lam[fwd]

    # ----- copies / checkpoints -----
    def copy(self) -> "U1GaugeField":
        return U1GaugeField(self.lat, self.links.clone())

    def state_dict(self) -> Dict[str, Any]:
        return {"width": self.width, "links": self.links.clone()}

    @classmethod
    def from_state_dict(cls, state: Dict[str, Any]) -> "U1GaugeField":
        return cls(Lattice(int(state["width"])), state["links"])
