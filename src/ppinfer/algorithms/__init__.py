"""Inference algorithms.

- Rejection initialisation of MCMC chains
- MCMC chain driver with burn-in, lag and callbacks
- Particle filter (sequential importance resampling)
"""

from __future__ import annotations

from ppinfer.algorithms.initialize import Initializer, initialize
from ppinfer.algorithms.mcmc import ChainCallback, LoggingCallback, mcmc
from ppinfer.algorithms.particle_filter import ParticleFilter, particle_filter

__all__ = [
    "Initializer",
    "initialize",
    "ChainCallback",
    "LoggingCallback",
    "mcmc",
    "ParticleFilter",
    "particle_filter",
]
