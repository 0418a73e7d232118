"""Log-weight utilities for importance sampling and SMC."""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jax.scipy.special import logsumexp
from jaxtyping import Array, Float, jaxtyped

__all__ = [
    "log_mean_exp",
    "normalize_log_weights",
    "compute_ess",
]


@jaxtyped(typechecker=beartype)
def log_mean_exp(log_values: Float[np.ndarray, " n"]) -> float:
    """Compute ``log(mean(exp(log_values)))`` stably, in double precision.

    Particle weights accumulate one factor at a time and can differ by
    less than single precision resolves, so population averages are
    taken in float64. Returns ``-inf`` when every value is ``-inf``.
    """
    log_values = np.asarray(log_values, dtype=np.float64)
    return float(np.logaddexp.reduce(log_values) - np.log(log_values.shape[0]))


@jaxtyped(typechecker=beartype)
def normalize_log_weights(log_weights: Float[Array, " n_particles"]) -> Float[Array, " n_particles"]:
    """Normalize log-weights so that ``exp`` of them sums to one."""
    return log_weights - logsumexp(log_weights)


@jaxtyped(typechecker=beartype)
def compute_ess(log_weights: Float[Array, " n_particles"]) -> Float[Array, ""]:
    """Effective sample size ``1 / sum(w_i^2)`` of normalized weights.

    Parameters
    ----------
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    ess : Array
        Effective sample size, between 1 and ``n_particles``.
    """
    log_w = normalize_log_weights(log_weights)
    return jnp.exp(-logsumexp(2.0 * log_w))
