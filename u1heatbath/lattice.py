# u1heatbath/lattice.py
# =============================================================================
# EN: 4D periodic hypercubic lattice geometry and gauge-invariant observables.
# JA: 4次元周期超立方格子の幾何と、ゲージ不変量の計算。
# =============================================================================

from array import array
from dataclasses import dataclass, field
from typing import Iterator, Tuple

import math
import torch


NDIM = 4  # EN: fixed dimensionality / JA: 次元は4で固定

# EN: (mu, nu) with mu < nu, in the order the plaquette sum visits them.
# JA: mu < nu の平面の並び（プラークエット和の順序）。
PLANES: Tuple[Tuple[int, int], ...] = tuple(
    (mu, nu) for mu in range(NDIM - 1) for nu in range(mu + 1, NDIM)
)


# -----------------------------------------------------------------------------
# Lattice geometry / 格子幾何
# -----------------------------------------------------------------------------
@dataclass
class Lattice:
    r"""EN: 4D periodic lattice of width W on every axis (flat site indexing).
        JA: 全軸で幅 W の4次元周期格子（サイトは一次元インデックス）。

    Site (i,j,k,l) lives at ``((i*W + j)*W + k)*W + l``; the last axis is the
    fastest-running one.
    """
    W: int = 4  # EN: linear size / JA: 一辺のサイズ
    fwd: array = field(init=False, repr=False)
    bwd: array = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.W, bool) or int(self.W) != self.W or self.W < 1:
            raise ValueError(f"lattice width must be a positive integer, got {self.W!r}")
        self.W = int(self.W)
        # flat int64 neighbour tables, same layout as the links:
        #   fwd[NDIM*s + mu] = s + mu^,  bwd[NDIM*s + mu] = s - mu^
        W = self.W
        idx = torch.arange(self.volume, dtype=torch.int64).reshape(W, W, W, W)
        up = torch.stack([_shift(idx, 1, mu) for mu in range(NDIM)], dim=-1)
        down = torch.stack([_shift(idx, -1, mu) for mu in range(NDIM)], dim=-1)
        self.fwd = array("q", up.reshape(-1).numpy().tobytes())
        self.bwd = array("q", down.reshape(-1).numpy().tobytes())

    # ----- sizes / サイズ -----
    @property
    def volume(self) -> int:
        """Number of sites W^4."""
        return self.W ** NDIM

    @property
    def num_links(self) -> int:
        return NDIM * self.volume

    @property
    def num_plaquettes(self) -> int:
        """6 plaquettes per site in 4D."""
        return len(PLANES) * self.volume

    # ----- coordinate helpers / 座標補助 -----
    def site_index(self, i: int, j: int, k: int, l: int) -> int:
        """Flat index of (i,j,k,l); every coordinate is reduced modulo W."""
        W = self.W
        return (((i % W) * W + (j % W)) * W + (k % W)) * W + (l % W)

    def coords(self, site: int) -> Tuple[int, int, int, int]:
        """Inverse of site_index."""
        W = self.W
        site, l = divmod(site, W)
        site, k = divmod(site, W)
        i, j = divmod(site, W)
        return (i, j, k, l)

    # ----- neighbors / 近傍 -----
    def neighbor(self, site: int, mu: int) -> int:
        """Periodic forward neighbor s + mu^."""
        return self.fwd[NDIM * site + mu]

    def prev_neighbor(self, site: int, mu: int) -> int:
        """Periodic backward neighbor s - mu^."""
        return self.bwd[NDIM * site + mu]

    # ----- iterators / 反復子 -----
    def iter_sites(self) -> Iterator[int]:
        """Iterate all sites in ascending (i,j,k,l) order."""
        return iter(range(self.volume))

    def iter_links(self) -> Iterator[Tuple[int, int]]:
        """Iterate all oriented links (site, mu) in sweep order."""
        for s in self.iter_sites():
            for mu in range(NDIM):
                yield (s, mu)

    def iter_plaquettes(self) -> Iterator[Tuple[int, int, int]]:
        """Iterate all plaquettes (site, mu, nu) with mu < nu."""
        for s in self.iter_sites():
            for mu, nu in PLANES:
                yield (s, mu, nu)


# -----------------------------------------------------------------------------
# Helpers / 補助関数
# -----------------------------------------------------------------------------
def _grid(links: torch.Tensor, lat: Lattice) -> torch.Tensor:
    """(V,4) flat links -> (W,W,W,W,4) view."""
    W = lat.W
    return links.reshape(W, W, W, W, NDIM)


def _shift(x: torch.Tensor, steps: int, dim: int) -> torch.Tensor:
    """out[n] = x[n + steps * dim^] with periodic wraparound."""
    if steps == 0:
        return x
    return torch.roll(x, shifts=-steps, dims=dim)


# -----------------------------------------------------------------------------
# Gauge-invariant observables / ゲージ不変量
# -----------------------------------------------------------------------------
def plaquette_angles(links: torch.Tensor, lat: Lattice) -> torch.Tensor:
    r"""
    EN: Plaquette phases phi_{mu nu}(n) for all sites and all 6 planes.
    JA: 全サイト・全6平面のプラークエット位相。

        phi = theta_mu(n) + theta_nu(n+mu) - theta_mu(n+nu) - theta_nu(n)

    Args:
        links: (W^4, 4) float link angles
        lat: Lattice
    Returns:
        (6, W, W, W, W) tensor, planes in PLANES order
    """
    th = _grid(links, lat)
    phis = []
    for mu, nu in PLANES:
        t_mu = th[..., mu]
        t_nu = th[..., nu]
        phis.append(t_mu + _shift(t_nu, 1, mu) - _shift(t_mu, 1, nu) - t_nu)
    return torch.stack(phis)


def average_action(links: torch.Tensor, lat: Lattice) -> float:
    r"""
    EN: Wilson action density  sum_P (1 - cos phi_P) / (6 W^4).
    JA: プラークエットあたりの平均作用  sum_P (1 - cos phi_P) / (6 W^4)。
    """
    phi = plaquette_angles(links, lat)
    total = (1.0 - torch.cos(phi)).sum()
    return float(total.item()) / lat.num_plaquettes


def wilson_loop(links: torch.Tensor, lat: Lattice, R: int, T: int) -> float:
    r"""
    EN: Mean cos of an R×T Wilson loop, averaged over base points and planes.
    JA: R×T ウィルソンループの cos を、起点と平面について平均。

    The loop runs +mu R steps, +nu T steps, then back; for R=T=1 it is the
    plaquette, so wilson_loop(.., 1, 1) == 1 - average_action(..).
    """
    if R < 1 or T < 1:
        raise ValueError(f"Wilson loop needs R, T >= 1 (got R={R}, T={T})")
    th = _grid(links, lat)
    acc = 0.0
    for mu, nu in PLANES:
        t_mu = th[..., mu]
        t_nu = th[..., nu]
        loop = torch.zeros_like(t_mu)
        # bottom (+mu) and top (-mu)
        for a in range(R):
            loop = loop + _shift(t_mu, a, mu)
            loop = loop - _shift(_shift(t_mu, a, mu), T, nu)
        # right (+nu) and left (-nu)
        for b in range(T):
            loop = loop + _shift(_shift(t_nu, b, nu), R, mu)
            loop = loop - _shift(t_nu, b, nu)
        acc += float(torch.cos(loop).mean().item())
    return acc / len(PLANES)


def creutz_ratio(links: torch.Tensor, lat: Lattice, R: int) -> float:
    r"""
    EN: Creutz ratio χ(R,R):
        χ(R,R) = -log( W(R,R) W(R-1,R-1) / ( W(R,R-1) W(R-1,R) ) )
    JA: Creutz 比 χ(R,R)。

    Args:
        links: (W^4, 4) link angles
        lat: Lattice
        R: loop linear size (must be ≥2)
    """
    if R < 2:
        raise ValueError("Creutz ratio requires R ≥ 2")

    WRR = wilson_loop(links, lat, R, R)
    WmRmR = wilson_loop(links, lat, R - 1, R - 1)
    WRm = wilson_loop(links, lat, R, R - 1)
    WmR = wilson_loop(links, lat, R - 1, R)

    eps = torch.finfo(torch.float64).eps
    return -math.log(
        (abs(WRR) + eps) * (abs(WmRmR) + eps) /
        ((abs(WRm) + eps) * (abs(WmR) + eps))
    )
