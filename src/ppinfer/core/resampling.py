"""Resampling schemes for the particle filter.

- Residual resampling (default): keeps ``floor(N * w_i)`` copies of every
  particle and draws the remainder multinomially from the fractional parts
- Systematic resampling (single uniform, lowest variance)
- Multinomial resampling
- Stratified resampling

Every scheme maps unnormalized log-weights to ``N`` ancestor indices.
"""

from __future__ import annotations

from typing import Literal

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jax.scipy.special import logsumexp
from jaxtyping import Array, Float, Int, PRNGKeyArray, jaxtyped

from ppinfer.core.weights import log_mean_exp

__all__ = [
    "ResamplingMethod",
    "residual_counts",
    "residual_resample",
    "systematic_resample",
    "multinomial_resample",
    "stratified_resample",
    "resample",
]

ResamplingMethod = Literal["residual", "systematic", "multinomial", "stratified"]

_COUNT_TOLERANCE = 1e-9


def _normalized(log_weights):
    return jnp.exp(log_weights - logsumexp(log_weights))


@jaxtyped(typechecker=beartype)
def residual_counts(
    log_weights: Float[Array, " n_particles"],
) -> tuple[Int[Array, " n_particles"], Float[Array, " n_particles"]]:
    """Deterministic copy counts and fractional remainders.

    The scaled weights ``w_i = exp(log_weights_i - avg)`` (``avg`` being the
    log mean weight, so they sum to ``N``) are formed in float64 and floored
    with a small tolerance, so a population of equal weights keeps exactly
    one copy of every particle.

    Returns
    -------
    counts : Array
        ``floor(w_i)``, the number of guaranteed copies of particle ``i``.
    remainders : Array
        ``w_i - counts``.
    """
    log_w = np.asarray(log_weights, dtype=np.float64)
    scaled = np.exp(log_w - log_mean_exp(log_w))
    counts = np.floor(scaled + _COUNT_TOLERANCE).astype(np.int32)
    remainders = np.maximum(scaled - counts, 0.0)
    return jnp.asarray(counts), jnp.asarray(remainders, dtype=jnp.float32)


@jaxtyped(typechecker=beartype)
def residual_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Residual resampling.

    The deterministic copies come first, followed by the
    ``N - sum(counts)`` indices drawn in proportion to the remainders.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    n_particles = log_weights.shape[0]
    counts, remainders = residual_counts(log_weights)
    n_deterministic = jnp.sum(counts)

    total = jnp.sum(remainders)
    residual_probs = jnp.where(total > 0, remainders / jnp.where(total > 0, total, 1.0), 1.0 / n_particles)

    det_indices = jnp.repeat(jnp.arange(n_particles), counts, total_repeat_length=n_particles)
    stoch_indices = jax.random.choice(
        key, n_particles, shape=(n_particles,), p=residual_probs, replace=True
    )

    idx = jnp.arange(n_particles)
    return jnp.where(idx < n_deterministic, det_indices, stoch_indices)


@jaxtyped(typechecker=beartype)
def systematic_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Systematic resampling: one uniform offset, ``N`` evenly spaced positions."""
    n_particles = log_weights.shape[0]
    cumsum = jnp.cumsum(_normalized(log_weights))
    u0 = jax.random.uniform(key) / n_particles
    positions = u0 + jnp.arange(n_particles) / n_particles
    return jnp.minimum(jnp.searchsorted(cumsum, positions), n_particles - 1)


@jaxtyped(typechecker=beartype)
def multinomial_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Multinomial resampling: ``N`` independent categorical draws."""
    n_particles = log_weights.shape[0]
    return jax.random.categorical(key, log_weights - logsumexp(log_weights), shape=(n_particles,))


@jaxtyped(typechecker=beartype)
def stratified_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Stratified resampling: one uniform draw inside each of ``N`` strata."""
    n_particles = log_weights.shape[0]
    cumsum = jnp.cumsum(_normalized(log_weights))
    u = jax.random.uniform(key, shape=(n_particles,))
    positions = (jnp.arange(n_particles) + u) / n_particles
    return jnp.minimum(jnp.searchsorted(cumsum, positions), n_particles - 1)


def resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
    method: ResamplingMethod = "residual",
) -> Int[Array, " n_particles"]:
    """Resample particles according to ``method``.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).
    method : str
        "residual", "systematic", "multinomial" or "stratified".

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    methods = {
        "residual": residual_resample,
        "systematic": systematic_resample,
        "multinomial": multinomial_resample,
        "stratified": stratified_resample,
    }
    if method not in methods:
        raise ValueError(f"unknown resampling method {method!r}")
    return methods[method](key, log_weights)
