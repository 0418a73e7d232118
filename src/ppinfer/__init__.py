"""Inference engine for probabilistic programs.

Programs are written in continuation-passing style and suspend at random
choices and factor statements; inference algorithms are handlers that
decide how execution continues from those points.

Inference:
- Single-site Metropolis-Hastings (MH)
- Locally annealed reversible jump (LARJ)
- Particle filtering with residual resampling
- MCMC chains assembled from kernel combinators
"""

from __future__ import annotations

from ppinfer.aggregation import MAP, Histogram, Marginal
from ppinfer.algorithms import initialize, mcmc, particle_filter
from ppinfer.config import LARJOptions, MCMCConfig, MHOptions, ParticleFilterConfig
from ppinfer.core.runtime import (
    Runtime,
    cps_iterate,
    factor,
    sample,
    sample_with_factor,
    with_importance_dist,
)
from ppinfer.core.trace import AcceptanceInfo, Choice, Trace
from ppinfer.futures import finish_all_futures, future, set_future_policy

__all__ = [
    "Runtime",
    "sample",
    "factor",
    "sample_with_factor",
    "with_importance_dist",
    "cps_iterate",
    "Trace",
    "Choice",
    "AcceptanceInfo",
    "mcmc",
    "particle_filter",
    "initialize",
    "Marginal",
    "Histogram",
    "MAP",
    "MHOptions",
    "LARJOptions",
    "MCMCConfig",
    "ParticleFilterConfig",
    "future",
    "finish_all_futures",
    "set_future_policy",
]
