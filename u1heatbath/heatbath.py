# u1heatbath/heatbath.py
# =============================================================================
# EN: Heatbath Monte Carlo for compact U(1) with the Wilson plaquette action:
#     local staples, the conditional link-angle sampler, and sweep drivers.
# JA: Wilson プラークエット作用のコンパクト U(1) に対するヒートバス法：
#     局所ステープル、条件付きリンク角サンプラー、スイープ。
# =============================================================================

from __future__ import annotations
from typing import Optional

import cmath
import math

from .gauge_field import U1GaugeField
from .lattice import NDIM
from .random_source import RandomSource


# EN: max_x [sin(πx/2) - x] on [-1, 1]; makes the envelope dominate the target.
# JA: [-1, 1] 上の sin(πx/2) - x の最大値。包絡関数が目標密度を上回るための定数。
ACCEPTANCE_CONSTANT = 0.2105137

# EN: rejection cap per draw. Acceptance decays like exp(-C·alpha·beta), so
#     very large couplings can run into it.
# JA: 1回のサンプルあたりの棄却上限。受理率は exp(-C·alpha·beta) 程度で落ちる。
DEFAULT_MAX_TRIES = 1_000_000

# above this prefactor the proposal uses the overflow-free form
_LARGE_PREFACTOR = 1.0

HALF_PI = 0.5 * math.pi


class SamplerError(RuntimeError):
    """Raised when the rejection sampler exceeds its iteration cap."""


# -----------------------------------------------------------------------------
# Conditional angle sampler / 条件付き角度サンプラー
# -----------------------------------------------------------------------------
def acceptance_probability(x: float, prefactor: float) -> float:
    r"""
    EN: Target/envelope ratio for the x-variable, normalized to at most 1:

            exp((cos((π/2)(1-x)) - x) p) / exp(C p)
          = exp(p (cos((π/2)(1-x)) - x - C))

        The second form is used; it never overflows since the exponent is <= 0.
    JA: x 変数に対する目標密度／包絡関数の比（最大 1 に正規化）。
        オーバーフローしない第2の形を使う。
    """
    return math.exp(prefactor * (math.cos(HALF_PI * (1.0 - x)) - x - ACCEPTANCE_CONSTANT))


def propose_x(prefactor: float, u: float) -> float:
    r"""
    EN: Inverse-CDF draw on [-1, 1] from the envelope density ∝ exp(p x):

            x = -1 + (1/p) ln(1 + (e^{2p} - 1) u)

        Rewritten as 1 + ln(u + (1-u) e^{-2p}) / p for large p so that
        e^{2p} is never formed.
    JA: 包絡密度 exp(p x) からの逆関数法サンプリング。
        p が大きい場合は e^{2p} を作らない等価な形に書き換える。
    """
    if prefactor > _LARGE_PREFACTOR:
        inner = u + (1.0 - u) * math.exp(-2.0 * prefactor)
        if inner <= 0.0:
            return -1.0
        return 1.0 + math.log(inner) / prefactor
    return -1.0 + math.log1p(math.expm1(2.0 * prefactor) * u) / prefactor


def sample_theta(
    alpha: float,
    beta: float,
    rng: RandomSource,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> float:
    r"""
    EN: Draw theta ∈ [-π, π] with density ∝ exp(alpha·beta·cos θ).

        1. p = alpha·beta
        2. propose x from the exponential envelope (propose_x)
        3. accept with acceptance_probability(x, p) against a second uniform
        4. θ = (π/2)(1 - x), sign flipped with probability 1/2
        5. otherwise retry

        alpha·beta == 0 (vanishing staple) makes the conditional distribution
        flat, and θ is drawn uniformly on [-π, π) instead.

    JA: 密度 exp(alpha·beta·cos θ) に従う θ を棄却法で生成する。
        alpha·beta == 0 の場合は [-π, π) の一様分布から生成する。

    Args:
        alpha: staple magnitude |S| (>= 0)
        beta: inverse coupling (> 0)
        rng: RandomSource
        max_tries: rejection cap
    Returns:
        float angle
    Raises:
        ValueError: invalid alpha / beta
        SamplerError: no acceptance within max_tries proposals
    """
    if not math.isfinite(beta) or beta <= 0.0:
        raise ValueError(f"beta must be a finite positive number, got {beta!r}")
    if not math.isfinite(alpha) or alpha < 0.0:
        raise ValueError(f"staple magnitude must be finite and non-negative, got {alpha!r}")

    prefactor = alpha * beta
    if prefactor == 0.0:
        return math.pi * (2.0 * rng.uniform() - 1.0)

    for _ in range(max_tries):
        x = propose_x(prefactor, rng.uniform())
        if rng.uniform() < acceptance_probability(x, prefactor):
            theta = HALF_PI * (1.0 - x)
            if rng.coin():
                theta = -theta
            return theta

    raise SamplerError(
        f"rejection sampler made {max_tries} proposals without acceptance "
        f"(alpha={alpha:.6g}, beta={beta:.6g})"
    )


# -----------------------------------------------------------------------------
# Local staple / 局所ステープル
# -----------------------------------------------------------------------------
def staple(field: U1GaugeField, site: int, axis: int) -> complex:
    r"""
    EN: Sum of the 6 staples around the link U_m(s), m = axis:

            sum_{n != m}  exp(i[ θ_n(s+m) - θ_m(s+n) - θ_n(s) ])
                        + exp(i[-θ_m(s-n) - θ_n(s-n+m) + θ_n(s-n) ])

        so that the local action is -β |S| cos(θ_m(s) + arg S).
    JA: リンク U_m(s) を含む6つのプラークエットから、そのリンクを除いた部分の和。
    """
    th = field.theta
    fwd = field.lat.fwd
    bwd = field.lat.bwd
    m = axis
    s_m = fwd[NDIM * site + m]

    re = 0.0
    im = 0.0
    for n in range(NDIM):
        if n == m:
            continue
        # forward staple
        s_n = fwd[NDIM * site + n]
        a = th[NDIM * s_m + n] - th[NDIM * s_n + m] - th[NDIM * site + n]
        re += math.cos(a)
        im += math.sin(a)

        # backward staple
        s_b = bwd[NDIM * site + n]
        s_bm = fwd[NDIM * s_b + m]
        a = -th[NDIM * s_b + m] - th[NDIM * s_bm + n] + th[NDIM * s_b + n]
        re += math.cos(a)
        im += math.sin(a)
    return complex(re, im)


# -----------------------------------------------------------------------------
# Updates / 更新
# -----------------------------------------------------------------------------
def update_link(
    field: U1GaugeField,
    site: int,
    axis: int,
    beta: float,
    rng: RandomSource,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> float:
    """
    EN: One heatbath draw for U_axis(site); stores θ - arg(S) and returns it.
    JA: 1本のリンクのヒートバス更新。θ - arg(S) を格納して返す。
    """
    S = staple(field, site, axis)
    theta = sample_theta(abs(S), beta, rng, max_tries) - cmath.phase(S)
    field.theta[NDIM * site + axis] = theta
    return theta


def heatbath_sweep(
    field: U1GaugeField,
    beta: float,
    rng: RandomSource,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> None:
    """
    EN: Full sweep: every site in ascending (i,j,k,l), every axis, once.
        Each staple sees the links already updated earlier in the sweep.
    JA: 全サイト・全方向を1回ずつ順番に更新する（逐次的な Gibbs 更新）。
    """
    for site in range(field.lat.volume):
        for axis in range(NDIM):
            update_link(field, site, axis, beta, rng, max_tries)


def heatbath_update(
    field: U1GaugeField,
    beta: float,
    rng: RandomSource,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> float:
    """Single heatbath draw on a uniformly chosen (site, axis)."""
    site = rng.randint(field.lat.volume)
    axis = rng.randint(NDIM)
    return update_link(field, site, axis, beta, rng, max_tries)


def random_sweep(
    field: U1GaugeField,
    beta: float,
    rng: RandomSource,
    max_tries: int = DEFAULT_MAX_TRIES,
) -> None:
    """As many random single-link updates as the lattice has links."""
    for _ in range(field.lat.num_links):
        heatbath_update(field, beta, rng, max_tries)


# -----------------------------------------------------------------------------
# Engine facade / エンジン
# -----------------------------------------------------------------------------
_COLD = ("uniform", "cold", "ordered")
_HOT = ("random", "hot")


def construct(width: int, mode: str = "uniform", rng: Optional[RandomSource] = None) -> U1GaugeField:
    """
    EN: Build a lattice in a cold ("uniform") or hot ("random") start.
    JA: コールドスタート（"uniform"）またはホットスタート（"random"）で格子を作る。
    """
    if mode in _COLD:
        return U1GaugeField.create_uniform(width)
    if mode in _HOT:
        if rng is None:
            raise ValueError("a random start needs a RandomSource")
        return U1GaugeField.create_random(width, rng)
    raise ValueError(f"unknown start mode {mode!r} (expected one of {_COLD + _HOT})")


class HeatbathEngine:
    """
    EN: Owns one field and drives its Markov chain at fixed beta.
    JA: 1つの配位を保持し、固定 beta でマルコフ連鎖を進める。

    mode="sweep" uses ordered full sweeps; mode="random" counts a sweep as
    num_links random single-link updates.
    """

    MODES = ("sweep", "random")

    def __init__(
        self,
        field: U1GaugeField,
        beta: float,
        rng: RandomSource,
        mode: str = "sweep",
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> None:
        if not math.isfinite(beta) or beta <= 0.0:
            raise ValueError(f"beta must be a finite positive number, got {beta!r}")
        if mode not in self.MODES:
            raise ValueError(f"unknown update mode {mode!r} (expected one of {self.MODES})")
        if max_tries < 1:
            raise ValueError(f"max_tries must be >= 1, got {max_tries}")
        self.field = field
        self.beta = float(beta)
        self.rng = rng
        self.mode = mode
        self.max_tries = int(max_tries)
        self.sweeps_done = 0

    def sweep(self, n: int = 1) -> None:
        step = heatbath_sweep if self.mode == "sweep" else random_sweep
        for _ in range(n):
            step(self.field, self.beta, self.rng, self.max_tries)
            self.sweeps_done += 1

    def update(self) -> float:
        return heatbath_update(self.field, self.beta, self.rng, self.max_tries)

    def read_action(self) -> float:
        return self.field.average_action()

    def get_link(self, i: int, j: int, k: int, l: int, axis: int) -> float:
        return self.field.get(i, j, k, l, axis)
