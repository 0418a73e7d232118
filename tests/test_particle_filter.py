"""Tests for the particle filter."""

import math

import jax
import jax.scipy.stats as jstats
import pytest

from conftest import coin_program, impossible_program
from ppinfer import ParticleFilterConfig, Runtime, factor, particle_filter, sample
from ppinfer.errors import ZeroWeightError
from ppinfer.models.distributions import Distribution, bernoulli, gaussian


class Wide(Distribution):
    """N(0, 1.5) regardless of the target's parameters."""

    is_continuous = True

    def sample(self, key, params):
        return float(1.5 * jax.random.normal(key))

    def score(self, params, value):
        return jstats.norm.logpdf(value, 0.0, 1.5)


def two_factor_program(store, k, address):
    """x, y ~ Bernoulli(0.5), each followed by a factor."""

    def got_x(s, x):
        def got_y(s, y):
            return factor(s, lambda s: k(s, (x, y)), address + "fy", 0.0 if y else math.log(0.5))

        return factor(
            s,
            lambda s: sample(s, got_y, address + "y", bernoulli, (0.5,)),
            address + "fx",
            math.log(0.9 if x else 0.1),
        )

    return sample(store, got_x, address + "x", bernoulli, (0.5,))


def importance_program(store, k, address):
    """x ~ N(0, 1) proposed from a wider Gaussian."""
    return sample(store, k, address + "x", gaussian.with_importance(Wide()), (0.0, 1.0))


def early_exit_program(store, k, address):
    """Half the particles exit before the factor the rest reach."""

    def got_x(s, x):
        if x:
            return k(s, "early")
        return factor(s, lambda s: k(s, "late"), address + "f", math.log(0.5))

    return sample(store, got_x, address + "x", bernoulli, (0.5,))


def run_pf(runtime, program, **options):
    return runtime.infer(particle_filter, program, config=ParticleFilterConfig(**options))


class TestParticleFilterPosterior:
    """Tests for posterior and evidence estimates."""

    def test_coin_posterior(self):
        """The filter recovers P(x) = 0.9."""
        runtime = Runtime(seed=1)

        dist = run_pf(runtime, coin_program, n_particles=1000)

        assert dist.probability(True) == pytest.approx(0.9, abs=0.04)
        assert runtime.handlers.depth == 1

    def test_normalization_constant(self):
        """The evidence estimate approximates log 0.5."""
        runtime = Runtime(seed=2)

        dist = run_pf(runtime, coin_program, n_particles=1000)

        assert dist.normalization_constant == pytest.approx(math.log(0.5), abs=0.06)

    def test_two_factors(self):
        """Evidence multiplies across factors: 0.5 * 0.75."""
        runtime = Runtime(seed=3)

        dist = run_pf(runtime, two_factor_program, n_particles=1000)

        assert dist.normalization_constant == pytest.approx(math.log(0.375), abs=0.08)
        p_x = sum(p for (x, _), p in dist.items() if x)
        assert p_x == pytest.approx(0.9, abs=0.05)

    def test_importance_distribution(self):
        """Sampling from an importance distribution keeps the evidence unbiased."""
        runtime = Runtime(seed=4)

        dist = run_pf(runtime, importance_program, n_particles=1000)

        assert dist.normalization_constant == pytest.approx(0.0, abs=0.1)

    def test_particles_exit_at_different_times(self):
        """Particles that exit early are not resumed again."""
        runtime = Runtime(seed=5)

        dist = run_pf(runtime, early_exit_program, n_particles=200)

        assert set(dist.support()) <= {"early", "late"}
        assert runtime.handlers.depth == 1


class TestParticleFilterResampling:
    """Tests for resampling and history."""

    @pytest.mark.parametrize("method", ["residual", "multinomial", "systematic", "stratified"])
    def test_resampling_methods(self, method):
        """Every resampling method yields the coin posterior."""
        runtime = Runtime(seed=6)

        dist = run_pf(runtime, coin_program, n_particles=500, resampling_method=method)

        assert dist.probability(True) == pytest.approx(0.9, abs=0.06)

    def test_history(self, runtime):
        """Each resampling stores the population before and after."""
        dist = run_pf(runtime, two_factor_program, n_particles=20, save_history=True)

        assert len(dist.particle_history) == 4
        assert all(len(population) == 20 for population in dist.particle_history)

    def test_without_history(self, runtime):
        """Without history only the final population is kept."""
        dist = run_pf(runtime, coin_program, n_particles=20)

        assert len(dist.particle_history) == 1
        assert all(not p.active for p in dist.particle_history[0])

    def test_trace_of_random_particle(self, runtime):
        """The result carries the sampled values of one final particle."""
        dist = run_pf(runtime, two_factor_program, n_particles=20)

        assert len(dist.trace) == 2
        assert all(isinstance(v, bool) for v in dist.trace)


class TestParticleFilterZeroWeight:
    """Tests for populations without weight."""

    def test_strict_raises(self, runtime):
        """In strict mode an all -inf population is an error."""
        with pytest.raises(ZeroWeightError):
            run_pf(runtime, impossible_program, n_particles=10)

        assert runtime.handlers.depth == 1

    def test_non_strict_returns_zero_evidence(self, runtime, caplog):
        """Outside strict mode the filter warns and finishes."""
        dist = run_pf(runtime, impossible_program, n_particles=10, strict=False)

        assert dist.normalization_constant == -math.inf
        assert "skipping resampling" in caplog.text
        assert runtime.handlers.depth == 1

    def test_keyword_options_override_config(self, runtime):
        """Keyword options are merged over the configuration."""
        with pytest.raises(ZeroWeightError):
            runtime.infer(
                particle_filter,
                impossible_program,
                config=ParticleFilterConfig(n_particles=5, strict=False),
                strict=True,
            )
