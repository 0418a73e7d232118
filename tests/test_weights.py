"""Tests for particle log-weight utilities."""

import math

import jax.numpy as jnp
import numpy as np
import pytest

from conftest import coin_program
from ppinfer import ParticleFilterConfig, Runtime
from ppinfer.algorithms.particle_filter import ParticleFilter
from ppinfer.core.runtime import Done
from ppinfer.core.weights import compute_ess, log_mean_exp, normalize_log_weights


class TestLogMeanExp:
    """Tests for the average particle weight."""

    def test_weights_after_one_factor(self):
        """Half the particles at log 0.9 and half at log 0.1 average to log 0.5."""
        log_weights = np.log([0.9, 0.1, 0.9, 0.1])

        result = log_mean_exp(log_weights)

        assert isinstance(result, float)
        assert result == pytest.approx(math.log(0.5), abs=1e-12)

    def test_dead_particles_count_as_zero(self):
        """Particles at -inf lower the average but do not make it -inf."""
        log_weights = np.array([0.0, -np.inf, -np.inf, -np.inf])

        assert log_mean_exp(log_weights) == pytest.approx(math.log(0.25), abs=1e-12)

    def test_all_dead(self):
        """A population without weight averages to -inf."""
        assert log_mean_exp(np.full(5, -np.inf)) == -math.inf

    def test_differences_below_single_precision(self):
        """Weights that agree to seven digits still average exactly."""
        log_weights = np.array([1000.0, 1000.0 + 2e-5])
        expected = 1000.0 + math.log((1.0 + math.exp(2e-5)) / 2.0)

        assert abs(log_mean_exp(log_weights) - expected) < 1e-9

    def test_normalization_constant_of_filter(self):
        """The filter reports its evidence estimate in double precision."""
        runtime = Runtime(seed=0)
        config = ParticleFilterConfig(n_particles=2)
        pf = ParticleFilter(runtime, {}, lambda store, dist: Done(dist), "", coin_program, config)
        for p, w in zip(pf.particles, [1000.0, 1000.0 + 2e-5]):
            p.weight = w
            p.active = False

        dist = runtime.drive(pf.finish())

        expected = 1000.0 + math.log((1.0 + math.exp(2e-5)) / 2.0)
        assert abs(dist.normalization_constant - expected) < 1e-9


class TestComputeESS:
    """Tests for the effective sample size of a population."""

    def test_equal_weights(self):
        """Equal weights give ESS = N."""
        ess = compute_ess(jnp.zeros(50))

        np.testing.assert_allclose(ess, 50.0, rtol=1e-5)

    def test_single_live_particle(self):
        """One live particle among dead ones gives ESS = 1."""
        log_weights = jnp.full(50, -jnp.inf).at[7].set(0.0)

        np.testing.assert_allclose(compute_ess(log_weights), 1.0, rtol=1e-5)

    def test_weights_after_one_factor(self):
        """Two particles at log 0.9 and log 0.1 give ESS = 1 / (0.81 + 0.01)."""
        log_weights = jnp.log(jnp.array([0.9, 0.1]))

        np.testing.assert_allclose(compute_ess(log_weights), 1.0 / 0.82, rtol=1e-5)


class TestNormalizeLogWeights:
    """Tests for log-weight normalization."""

    def test_dead_particles_stay_dead(self):
        """-inf entries stay -inf and the rest sum to one."""
        log_weights = jnp.array([0.0, -jnp.inf, math.log(3.0)])

        weights = jnp.exp(normalize_log_weights(log_weights))

        np.testing.assert_allclose(weights, [0.25, 0.0, 0.75], rtol=1e-5)
