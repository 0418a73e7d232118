"""Reference distributions."""

from __future__ import annotations

from ppinfer.models.distributions import (
    Bernoulli,
    Discrete,
    Distribution,
    Gaussian,
    GaussianDrift,
    RandomInteger,
    Uniform,
    bernoulli,
    discrete,
    gaussian,
    random_integer,
    uniform,
)

__all__ = [
    "Distribution",
    "Bernoulli",
    "RandomInteger",
    "Discrete",
    "Gaussian",
    "Uniform",
    "GaussianDrift",
    "bernoulli",
    "random_integer",
    "discrete",
    "gaussian",
    "uniform",
]
