"""Heatbath sampler, staples and Markov-chain behaviour."""

import cmath
import math

import numpy as np
import pytest
from scipy import stats

from u1heatbath.gauge_field import U1GaugeField
from u1heatbath.heatbath import (
    ACCEPTANCE_CONSTANT, HeatbathEngine, SamplerError, acceptance_probability,
    construct, heatbath_update, propose_x, sample_theta, staple, update_link,
)
from u1heatbath.random_source import RandomSource


def local_action(field, site, axis):
    """Sum of 1 - cos over the 6 plaquettes containing U_axis(site)."""
    lat = field.lat
    total = 0.0
    for n in range(4):
        if n == axis:
            continue
        mu, nu = (axis, n) if axis < n else (n, axis)
        total += 1.0 - math.cos(field.plaquette(site, mu, nu))
        back = lat.prev_neighbor(site, n)
        total += 1.0 - math.cos(field.plaquette(back, mu, nu))
    return total


class TestSampler:
    """Conditional angle distribution exp(alpha*beta*cos(theta))."""

    @pytest.mark.parametrize("alpha,beta", [(2.0, 1.0), (0.5, 1.0), (3.0, 2.0)])
    def test_matches_von_mises(self, alpha, beta):
        rng = RandomSource(2024)
        samples = np.array([sample_theta(alpha, beta, rng) for _ in range(3000)])
        assert np.all(np.abs(samples) <= math.pi)
        result = stats.kstest(samples, stats.vonmises(alpha * beta).cdf)
        assert result.pvalue > 0.001

    def test_sign_symmetry(self):
        rng = RandomSource(5)
        samples = np.array([sample_theta(1.5, 1.0, rng) for _ in range(4000)])
        frac_pos = float(np.mean(samples > 0))
        assert abs(frac_pos - 0.5) < 0.04
        assert abs(float(np.mean(np.sin(samples)))) < 0.05

    def test_zero_staple_is_uniform(self):
        rng = RandomSource(6)
        samples = np.array([sample_theta(0.0, 1.0, rng) for _ in range(3000)])
        assert samples.min() >= -math.pi and samples.max() < math.pi
        result = stats.kstest(samples, stats.uniform(loc=-math.pi, scale=2 * math.pi).cdf)
        assert result.pvalue > 0.001

    @pytest.mark.parametrize("alpha,beta", [(-1.0, 1.0), (1.0, 0.0), (1.0, -2.0),
                                            (float("nan"), 1.0), (1.0, float("inf"))])
    def test_invalid_inputs(self, alpha, beta):
        with pytest.raises(ValueError):
            sample_theta(alpha, beta, RandomSource(0))

    def test_iteration_cap(self):
        # acceptance ~ exp(-C p) is hopeless at p = 1e4
        with pytest.raises(SamplerError):
            sample_theta(6.0, 2000.0, RandomSource(1), max_tries=5)

    def test_large_coupling_concentrates(self):
        rng = RandomSource(3)
        samples = [sample_theta(6.0, 5.0, rng) for _ in range(200)]
        assert max(abs(t) for t in samples) < 1.0


class TestEnvelope:
    """Proposal and acceptance functions."""

    def test_acceptance_bounded(self):
        for p in (0.01, 0.5, 1.0, 4.0, 30.0, 200.0):
            for x in np.linspace(-1.0, 1.0, 401):
                a = acceptance_probability(float(x), p)
                # C sits ~2e-7 below the true maximum
                assert 0.0 <= a <= math.exp(1e-6 * p)

    def test_acceptance_closed_forms_agree(self):
        for p in (0.1, 1.0, 3.0, 10.0):
            for x in np.linspace(-1.0, 1.0, 21):
                x = float(x)
                ratio = math.exp((math.cos(0.5 * math.pi * (1 - x)) - x) * p) / math.exp(ACCEPTANCE_CONSTANT * p)
                assert acceptance_probability(x, p) == pytest.approx(ratio, rel=1e-12)

    def test_acceptance_constant_is_envelope_bound(self):
        xs = np.linspace(-1.0, 1.0, 200001)
        peak = float(np.max(np.sin(0.5 * np.pi * xs) - xs))
        assert peak == pytest.approx(ACCEPTANCE_CONSTANT, abs=1e-6)

    def test_propose_range(self):
        for p in (1e-6, 0.3, 1.0, 1.5, 50.0, 800.0):
            for u in (0.0, 1e-12, 0.25, 0.5, 0.999999):
                x = propose_x(p, u)
                assert -1.0 <= x <= 1.0 + 1e-12

    def test_propose_forms_agree_near_switch(self):
        # the overflow-free form used above the switch equals the textbook one
        for p in (0.9, 1.2, 3.0):
            for u in (0.1, 0.5, 0.9):
                textbook = -1.0 + math.log(1.0 + (math.exp(2 * p) - 1.0) * u) / p
                assert propose_x(p, u) == pytest.approx(textbook, abs=1e-12)


class TestStaple:

    def test_uniform_field_staple(self):
        f = U1GaugeField.create_uniform(3)
        S = staple(f, 0, 2)
        assert S.real == pytest.approx(6.0)
        assert S.imag == pytest.approx(0.0)

    def test_local_action_form(self):
        # local action = const - Re(U S) = const - |S| cos(theta + arg S)
        f = U1GaugeField.create_random(3, RandomSource(12))
        site, axis = 17, 1
        S = staple(f, site, axis)
        values = []
        for theta in (0.0, 0.4, 1.9, -2.5):
            f.set_angle(site, axis, theta)
            values.append(local_action(f, site, axis) + abs(S) * math.cos(theta + cmath.phase(S)))
        assert max(values) - min(values) < 1e-10
        assert values[0] == pytest.approx(6.0)

    def test_update_link_stores_shifted_angle(self):
        f = U1GaugeField.create_random(2, RandomSource(1))
        S = staple(f, 3, 0)
        rng = RandomSource(99)
        replay = RandomSource(99)
        stored = update_link(f, 3, 0, 1.0, rng)
        expected = sample_theta(abs(S), 1.0, replay) - cmath.phase(S)
        assert stored == expected
        assert f.angle(3, 0) == expected


class TestEngine:

    def test_construct_modes(self):
        assert construct(2, "uniform").average_action() == 0.0
        assert construct(2, "ordered").average_action() == 0.0
        hot = construct(2, "random", RandomSource(1))
        assert hot.average_action() > 0.2
        with pytest.raises(ValueError):
            construct(2, "random")
        with pytest.raises(ValueError):
            construct(2, "lukewarm", RandomSource(1))

    def test_engine_arguments(self):
        f = construct(2)
        with pytest.raises(ValueError):
            HeatbathEngine(f, 0.0, RandomSource(1))
        with pytest.raises(ValueError):
            HeatbathEngine(f, 1.0, RandomSource(1), mode="checkerboard")

    def test_single_update_touches_one_link(self):
        f = construct(2, "random", RandomSource(3))
        before = f.links.clone()
        heatbath_update(f, 1.0, RandomSource(4))
        changed = (f.links != before).sum().item()
        assert changed == 1

    def test_seeded_chains_agree(self):
        runs = []
        for _ in range(2):
            rng = RandomSource(77)
            eng = HeatbathEngine(construct(2, "random", rng), 1.0, rng)
            eng.sweep(3)
            runs.append(eng.field.links.clone())
        assert bool((runs[0] == runs[1]).all())

    def test_ordered_start_beta_one(self):
        rng = RandomSource(2718)
        eng = HeatbathEngine(construct(4, "ordered"), 1.0, rng)
        eng.sweep(100)
        assert eng.sweeps_done == 100
        action = eng.read_action()
        assert 0.0 < action < 1.0
        assert 0.3 < action < 0.75

    def test_random_mode_sweeps(self):
        rng = RandomSource(31)
        eng = HeatbathEngine(construct(2, "ordered"), 1.0, rng, mode="random")
        eng.sweep(20)
        assert eng.sweeps_done == 20
        assert 0.0 < eng.read_action() < 1.0

    def test_weak_coupling_from_random_start(self):
        rng = RandomSource(1234)
        eng = HeatbathEngine(construct(2, "random", rng), 4.0, rng)
        start = eng.read_action()
        eng.sweep(100)
        values = []
        for _ in range(50):
            eng.sweep()
            values.append(eng.read_action())
        # free-field estimate 1/(4 beta)
        assert float(np.mean(values)) < 0.15
        assert float(np.mean(values)) < start

    def test_get_link(self):
        f = construct(2)
        f.set(1, 0, 1, 0, 2, 0.25)
        eng = HeatbathEngine(f, 1.0, RandomSource(0))
        assert eng.get_link(1, 0, 1, 0, 2) == 0.25
